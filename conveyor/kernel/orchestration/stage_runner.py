"""Runs one stage invocation and turns its outcome into a StageResult.

This is the stage boundary: credential resolution, the per-stage timeout,
transient-failure retry and exception conversion all happen here, so the
executor only ever sees finished StageResults.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from conveyor.kernel.credentials import CredentialVault, StageScope
from conveyor.kernel.exceptions import AdapterError, ErrorKind
from conveyor.kernel.logging import get_logger
from conveyor.kernel.orchestration.retry import RetryConfig, execute_with_retry

if TYPE_CHECKING:
    from conveyor.kernel.domain.dag import StageSpec
    from conveyor.kernel.domain.run import StageResult
    from conveyor.kernel.ports.adapter import AdapterOutcome, InvocationContext, ToolAdapter

logger = get_logger(__name__)


class StageRunner:
    """Invoke a stage's adapter with bounded retry and an optional timeout.

    Parameters
    ----------
    retry : RetryConfig
        Backoff policy for transient failures
    default_timeout : float | None
        Per-invocation timeout in seconds when the stage declares none
    """

    def __init__(self, retry: RetryConfig | None = None, default_timeout: float | None = None):
        self.retry = retry or RetryConfig()
        self.default_timeout = default_timeout

    async def run(
        self,
        spec: StageSpec,
        adapter: ToolAdapter,
        running: StageResult,
        context: InvocationContext,
        vault: CredentialVault,
    ) -> StageResult:
        """Execute ``spec`` and return the terminal StageResult.

        Never raises for adapter failures; only cancellation of the calling
        task propagates.
        """
        timeout = spec.timeout if spec.timeout is not None else self.default_timeout
        scope = StageScope(stage=spec.name, tool_id=spec.invocation.tool_id)
        attempts = 0

        async def invoke_once() -> AdapterOutcome:
            nonlocal attempts
            attempts += 1
            context.check_cancelled()
            async with vault.session(spec.invocation.credentials, scope) as handles:
                try:
                    async with asyncio.timeout(timeout):
                        outcome = await adapter.ainvoke(spec.invocation.params, handles, context)
                except TimeoutError as e:
                    raise AdapterError(
                        f"Stage '{spec.name}' exceeded its {timeout}s timeout",
                        kind=ErrorKind.TIMEOUT,
                    ) from e
            if not outcome.succeeded:
                raise AdapterError(
                    outcome.message or f"{spec.invocation.tool_id} reported failure",
                    kind=outcome.error_kind or ErrorKind.INTERNAL,
                    metrics=outcome.metrics,
                )
            return outcome

        def on_retry(attempt: int, max_attempts: int, error: Exception, delay: float) -> None:
            logger.warning(
                f"Stage '{spec.name}' attempt {attempt}/{max_attempts} failed "
                f"({getattr(error, 'kind', type(error).__name__)}); retrying in {delay:.1f}s"
            )

        try:
            outcome = await execute_with_retry(
                invoke_once, self.retry, on_retry=on_retry, cancel_event=context.cancel_event
            )
        except AdapterError as e:
            return running.fail(
                e.kind,
                vault.redact(e.message),
                metrics=vault.redact_value(e.metrics),
                log_ref=context.log_ref,
                attempts=attempts,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Adapter '{spec.invocation.tool_id}' crashed in stage '{spec.name}'")
            return running.fail(
                ErrorKind.INTERNAL,
                vault.redact(f"{type(e).__name__}: {e}"),
                log_ref=context.log_ref,
                attempts=attempts,
            )

        return running.succeed(
            metrics=vault.redact_value(outcome.metrics),
            artifact=outcome.artifact,
            image=outcome.image,
            log_ref=outcome.raw_log_ref or context.log_ref,
            attempts=attempts,
        )
