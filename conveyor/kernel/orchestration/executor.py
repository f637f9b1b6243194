"""PipelineExecutor: drives a Run to completion against a PipelineDefinition.

Batches from :meth:`PipelineDefinition.topological_order` are processed
strictly in order. Stages inside a batch are dispatched concurrently up to
``max_concurrency`` and the executor waits for the whole batch before
moving on. A stage only runs once every dependency succeeded: when a stage
fails, every stage downstream of it is marked skipped, and independent
branches keep running. A gating failure (a gating stage, or a
``QualityGateFailed`` / ``BuildFailed`` kind) also makes the run a failure
instead of unstable.

All ledger writes go through one writer task fed by a queue, so the ledger
only ever has a single writer no matter how many stages run at once.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, cast

from conveyor.kernel.credentials import CredentialGrant, CredentialVault
from conveyor.kernel.domain.dag import PipelineDefinition, StageSpec
from conveyor.kernel.domain.run import (
    Run,
    StageResult,
    StageStatus,
    new_run_id,
)
from conveyor.kernel.exceptions import (
    ConfigurationError,
    ErrorKind,
    RunStateError,
    UnknownAdapterError,
)
from conveyor.kernel.logging import get_logger
from conveyor.kernel.orchestration.events import (
    BatchCompleted,
    BatchStarted,
    EventBus,
    RunCompleted,
    RunStarted,
    StageFailed,
    StageSkipped,
    StageStarted,
    StageSucceeded,
)
from conveyor.kernel.orchestration.retry import RetryConfig
from conveyor.kernel.orchestration.stage_runner import StageRunner
from conveyor.kernel.ports.adapter import Capability, InvocationContext, ToolAdapter
from conveyor.kernel.ports.ledger import RunLedger, RunRecord
from conveyor.kernel.ports.secret import SecretStore

logger = get_logger(__name__)

DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_ABORT_POLL_INTERVAL = 0.5

_FINISHED = (StageStatus.SUCCESS, StageStatus.FAILURE)


def _duration_ms(start_time: float) -> float:
    return (time.perf_counter() - start_time) * 1000


class _LedgerWriter:
    """Single writer task draining an append queue into the ledger."""

    def __init__(self, ledger: RunLedger, run_id: str) -> None:
        self._ledger = ledger
        self._run_id = run_id
        self._queue: asyncio.Queue[StageResult | None] = asyncio.Queue()
        self._error: Exception | None = None
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._drain(), name=f"ledger-writer-{self._run_id}")

    def submit(self, result: StageResult) -> None:
        self._queue.put_nowait(result)

    async def flush(self) -> None:
        """Wait until everything submitted so far is appended."""
        await self._queue.join()
        if self._error is not None:
            error, self._error = self._error, None
            raise error

    async def close(self) -> None:
        if self._task is None:
            return
        self._queue.put_nowait(None)
        await self._task
        self._task = None
        if self._error is not None:
            raise self._error

    async def _drain(self) -> None:
        while True:
            result = await self._queue.get()
            try:
                if result is None:
                    return
                await self._ledger.aappend(self._run_id, result.stage, result)
            except Exception as e:
                logger.error(f"Ledger append failed for run '{self._run_id}': {e}")
                self._error = self._error or e
            finally:
                self._queue.task_done()


class PipelineExecutor:
    """Execute pipeline definitions, record every StageResult, honor aborts.

    Parameters
    ----------
    adapters : Mapping[str, ToolAdapter]
        Adapter instances by tool id
    ledger : RunLedger
        Where runs and StageResult generations are appended
    secrets : SecretStore | None
        Backing store for the per-run CredentialVault
    grants : Mapping[str, CredentialGrant] | None
        Declared credentials and their scopes
    max_concurrency : int
        Upper bound on concurrently running stages inside a batch
    stage_timeout : float | None
        Default per-stage timeout in seconds; None runs without one
    retry : RetryConfig | None
        Backoff policy for transient adapter failures
    endpoints : Mapping[str, str] | None
        Collaborator endpoints handed to adapters
    workspace_root : Path
        Parent directory of per-run workspaces
    logs_dir : Path | None
        Where captured stage output is written
    event_bus : EventBus | None
        Lifecycle event observers

    Examples
    --------
    Example usage::

        executor = PipelineExecutor(adapters, InMemoryRunLedger())
        run = await executor.run(definition, commit="ab12cd3")
        run.status  # RunStatus.SUCCESS
    """

    def __init__(
        self,
        adapters: Mapping[str, ToolAdapter],
        ledger: RunLedger,
        *,
        secrets: SecretStore | None = None,
        grants: Mapping[str, CredentialGrant] | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        stage_timeout: float | None = None,
        retry: RetryConfig | None = None,
        endpoints: Mapping[str, str] | None = None,
        workspace_root: Path | str = Path(".conveyor/workspaces"),
        logs_dir: Path | str | None = None,
        event_bus: EventBus | None = None,
        abort_poll_interval: float = DEFAULT_ABORT_POLL_INTERVAL,
    ) -> None:
        if max_concurrency < 1:
            raise ConfigurationError("executor", "max_concurrency must be positive")
        self.adapters = dict(adapters)
        self.ledger = ledger
        self.secrets = secrets
        self.grants = dict(grants or {})
        self.max_concurrency = max_concurrency
        self.endpoints = dict(endpoints or {})
        self.workspace_root = Path(workspace_root)
        self.logs_dir = Path(logs_dir) if logs_dir is not None else None
        self.event_bus = event_bus or EventBus()
        self.abort_poll_interval = abort_poll_interval
        self.stage_runner = StageRunner(retry=retry, default_timeout=stage_timeout)
        if stage_timeout is None:
            logger.warning("No stage timeout configured; stages run without a time limit")

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def run(
        self,
        definition: PipelineDefinition,
        commit: str,
        *,
        branch: str | None = None,
        build_number: int | None = None,
        document: Mapping[str, Any] | None = None,
        run_id: str | None = None,
    ) -> Run:
        """Create a Run for ``commit`` and drive it to a terminal state.

        Raises
        ------
        UnknownAdapterError
            If a stage references an adapter this executor does not have;
            raised before the Run is created.
        """
        self._check_adapters(definition)

        if build_number is None:
            build_number = await self.ledger.anext_build_number(definition.name)
        record = RunRecord(
            run_id=run_id or new_run_id(),
            pipeline_name=definition.name,
            commit=commit,
            branch=branch,
            build_number=build_number,
            definition=dict(document or {}),
        )
        await self.ledger.acreate_run(record)

        run = Run(
            run_id=record.run_id,
            pipeline_name=definition.name,
            commit=commit,
            branch=branch,
            build_number=build_number,
            results={
                spec.name: StageResult(stage=spec.name, gating=self._is_gating(spec))
                for spec in definition
            },
        )
        return await self._execute(definition, run, targets=set(run.results))

    async def retry(self, definition: PipelineDefinition, run_id: str, from_stage: str) -> Run:
        """Re-execute ``from_stage`` and everything downstream of it.

        Prior results are kept in the ledger; the retried stages get a new
        generation. Upstream stages are not re-executed.

        Raises
        ------
        RunStateError
            If the run is still in progress, ``from_stage`` is unknown, or an
            upstream stage never produced usable results.
        """
        self._check_adapters(definition)
        record = await self.ledger.aget_run(run_id)
        if not record.finished:
            raise RunStateError(run_id, "run is still in progress")
        if from_stage not in definition:
            raise RunStateError(run_id, f"pipeline has no stage '{from_stage}'")

        latest = await self.ledger.alatest(run_id)
        for name in sorted(definition.ancestors(from_stage)):
            upstream = latest.get(name)
            if upstream is None or upstream.status not in _FINISHED:
                raise RunStateError(
                    run_id, f"upstream stage '{name}' has not run; retry from '{name}' instead"
                )
            if upstream.status is StageStatus.FAILURE:
                raise RunStateError(
                    run_id, f"upstream stage '{name}' failed; retry from '{name}' instead"
                )

        record.attempt += 1
        record.finished_at = None
        record.aborted = False
        await self.ledger.aupdate_run(record)

        # stages an abort left unresolved are resumed as well
        unresolved = {name for name, r in latest.items() if not r.status.is_resolved}
        targets = {from_stage} | definition.descendants(from_stage) | unresolved
        results: dict[str, StageResult] = {}
        for spec in definition:
            previous = latest.get(spec.name) or StageResult(
                stage=spec.name, gating=self._is_gating(spec)
            )
            results[spec.name] = previous.next_generation() if spec.name in targets else previous

        run = Run(
            run_id=record.run_id,
            pipeline_name=record.pipeline_name,
            commit=record.commit,
            branch=record.branch,
            build_number=record.build_number,
            attempt=record.attempt,
            results=results,
        )
        logger.info(
            f"Retrying run '{run_id}' from stage '{from_stage}' "
            f"({len(targets)} stages, attempt {record.attempt})"
        )
        return await self._execute(definition, run, targets=targets)

    async def abort(self, run_id: str) -> RunRecord:
        """Request an abort; the executor driving the run stops dispatching.

        Raises
        ------
        RunStateError
            If the run already finished
        """
        record = await self.ledger.aget_run(run_id)
        if record.finished:
            raise RunStateError(run_id, "run already finished")
        return await self.ledger.arequest_abort(run_id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self, definition: PipelineDefinition, run: Run, targets: set[str]) -> Run:
        start_time = time.perf_counter()
        cancel_event = asyncio.Event()
        writer = _LedgerWriter(self.ledger, run.run_id)
        writer.start()
        watcher = asyncio.create_task(self._watch_abort(run.run_id, cancel_event))

        with CredentialVault(self.secrets, self.grants) as vault:
            try:
                for name in sorted(targets):
                    writer.submit(run.results[name])
                await writer.flush()

                await self.event_bus.notify(
                    RunStarted(
                        run_id=run.run_id,
                        pipeline=definition.name,
                        commit=run.commit,
                        total_stages=len(targets),
                        attempt=run.attempt,
                    )
                )
                await self._run_batches(definition, run, targets, cancel_event, vault, writer)
            finally:
                watcher.cancel()
                try:
                    await watcher
                except asyncio.CancelledError:
                    pass
                await writer.close()

        await self._finish(run, cancel_event)
        await self.event_bus.notify(
            RunCompleted(
                run_id=run.run_id,
                status=str(run.status),
                duration_ms=_duration_ms(start_time),
                failed_stages=tuple(r.stage for r in run.failed_stages()),
            )
        )
        return run

    async def _run_batches(
        self,
        definition: PipelineDefinition,
        run: Run,
        targets: set[str],
        cancel_event: asyncio.Event,
        vault: CredentialVault,
        writer: _LedgerWriter,
    ) -> None:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        for batch_index, batch in enumerate(definition.topological_order()):
            if cancel_event.is_set():
                logger.warning(f"Run '{run.run_id}' aborted; not dispatching batch {batch_index}")
                return

            pending = [
                spec
                for spec in batch
                if spec.name in targets and run.results[spec.name].status is StageStatus.PENDING
            ]
            runnable = []
            for spec in pending:
                blocked = sorted(
                    dep for dep in spec.deps if run.results[dep].status is not StageStatus.SUCCESS
                )
                if blocked:
                    await self._skip_blocked(run, spec.name, blocked, writer)
                else:
                    runnable.append(spec)
            if not runnable:
                continue

            batch_start = time.perf_counter()
            names = tuple(spec.name for spec in runnable)
            await self.event_bus.notify(BatchStarted(batch_index=batch_index, stages=names))

            async def run_with_limit(spec: StageSpec, index: int = batch_index) -> None:
                async with semaphore:
                    await self._run_stage(definition, spec, run, index, cancel_event, vault, writer)

            outcomes = await asyncio.gather(
                *[run_with_limit(spec) for spec in runnable], return_exceptions=True
            )
            for spec, outcome in zip(runnable, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    logger.error(f"Stage '{spec.name}' escaped the stage boundary: {outcome}")
                    self._record_crash(run, spec.name, outcome, vault, writer)

            # an abort leaves downstream stages pending so a retry can resume them
            failed = [
                name
                for name in names
                if run.results[name].status is StageStatus.FAILURE and not cancel_event.is_set()
            ]
            for name in failed:
                await self._skip_downstream(definition, run, name, targets, writer)
            await writer.flush()

            await self.event_bus.notify(
                BatchCompleted(
                    batch_index=batch_index,
                    stages=names,
                    duration_ms=_duration_ms(batch_start),
                    halted=any(run.results[name].fails_run for name in failed),
                )
            )

    async def _run_stage(
        self,
        definition: PipelineDefinition,
        spec: StageSpec,
        run: Run,
        batch_index: int,
        cancel_event: asyncio.Event,
        vault: CredentialVault,
        writer: _LedgerWriter,
    ) -> None:
        if cancel_event.is_set():
            return

        adapter = self.adapters[spec.invocation.tool_id]
        running = run.results[spec.name].start()
        self._record(run, running, writer)
        await self.event_bus.notify(
            StageStarted(
                name=spec.name,
                tool_id=spec.invocation.tool_id,
                batch_index=batch_index,
                generation=running.generation,
            )
        )

        context = InvocationContext(
            run_id=run.run_id,
            stage=spec.name,
            tool_id=spec.invocation.tool_id,
            commit=run.commit,
            build_number=run.build_number,
            branch=run.branch,
            workspace=self.workspace_root / run.run_id,
            cancel_event=cancel_event,
            upstream={name: run.results[name] for name in sorted(definition.ancestors(spec.name))},
            endpoints=self.endpoints,
            log_path=self._log_path(run.run_id, running),
            redact=vault.redact,
        )
        final = await self.stage_runner.run(spec, adapter, running, context, vault)
        self._record(run, final, writer)

        if final.status is StageStatus.SUCCESS:
            await self.event_bus.notify(
                StageSucceeded(
                    name=spec.name,
                    duration_ms=final.duration_ms or 0.0,
                    metrics=dict(final.metrics),
                )
            )
        else:
            await self.event_bus.notify(
                StageFailed(
                    name=spec.name,
                    error_kind=str(final.error_kind),
                    message=final.message or "",
                    gating=final.gating,
                )
            )

    async def _skip_downstream(
        self,
        definition: PipelineDefinition,
        run: Run,
        failed: str,
        targets: set[str],
        writer: _LedgerWriter,
    ) -> None:
        reason = f"upstream stage '{failed}' failed ({run.results[failed].error_kind})"
        downstream = definition.descendants(failed)
        for spec in definition:
            name = spec.name
            if name not in targets or name not in downstream:
                continue
            if run.results[name].status is not StageStatus.PENDING:
                continue
            self._record(run, run.results[name].skip(reason), writer)
            await self.event_bus.notify(StageSkipped(name=name, reason=reason))

    async def _skip_blocked(
        self, run: Run, name: str, blocked: list[str], writer: _LedgerWriter
    ) -> None:
        states = ", ".join(f"'{dep}' ({run.results[dep].status})" for dep in blocked)
        reason = f"upstream stage {states} did not succeed"
        self._record(run, run.results[name].skip(reason), writer)
        await self.event_bus.notify(StageSkipped(name=name, reason=reason))

    async def _watch_abort(self, run_id: str, cancel_event: asyncio.Event) -> None:
        """Poll the ledger abort flag and raise the cooperative cancel signal."""
        while not cancel_event.is_set():
            record = await self.ledger.aget_run(run_id)
            if record.aborted:
                logger.warning(f"Abort requested for run '{run_id}'")
                cancel_event.set()
                return
            await asyncio.sleep(self.abort_poll_interval)

    async def _finish(self, run: Run, cancel_event: asyncio.Event) -> None:
        record = await self.ledger.aget_run(run.run_id)
        unresolved = any(not r.status.is_resolved for r in run.results.values())
        if record.aborted or cancel_event.is_set():
            if unresolved:
                run.mark_aborted()
            else:
                logger.info(f"Abort for run '{run.run_id}' arrived after every stage resolved")
        run.seal()
        await self.ledger.afinish_run(run.run_id, cast(datetime, run.finished_at), run.aborted)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record(self, run: Run, result: StageResult, writer: _LedgerWriter) -> None:
        run.record(result)
        writer.submit(result)

    def _record_crash(
        self,
        run: Run,
        stage: str,
        error: BaseException,
        vault: CredentialVault,
        writer: _LedgerWriter,
    ) -> None:
        current = run.results[stage]
        if current.status is StageStatus.PENDING:
            current = current.start()
        if current.status is StageStatus.RUNNING:
            message = vault.redact(f"{type(error).__name__}: {error}")
            self._record(run, current.fail(ErrorKind.INTERNAL, message), writer)

    def _log_path(self, run_id: str, result: StageResult) -> Path | None:
        if self.logs_dir is None:
            return None
        return self.logs_dir / run_id / f"{result.stage}.{result.generation}.log"

    def _is_gating(self, spec: StageSpec) -> bool:
        adapter = self.adapters.get(spec.invocation.tool_id)
        capability = getattr(adapter, "capability", None)
        return spec.gating or capability == Capability.ANALYSIS

    def _check_adapters(self, definition: PipelineDefinition) -> None:
        for spec in definition:
            if spec.invocation.tool_id not in self.adapters:
                raise UnknownAdapterError(spec.name, spec.invocation.tool_id, list(self.adapters))
