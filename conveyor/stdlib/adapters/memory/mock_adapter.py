"""Scriptable adapter driven entirely by its stage parameters.

Used by tests and for dry runs of pipeline documents: each stage says how
the mock should behave (succeed, fail with a given kind, fail transiently
a number of times, take a while, or hang until the run is aborted).
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from conveyor.kernel.domain.artifacts import ArtifactReference, ImageReference
from conveyor.kernel.domain.run import MetricValue
from conveyor.kernel.exceptions import AdapterError, ErrorKind, StageAbortedError
from conveyor.kernel.logging import get_logger
from conveyor.kernel.ports.adapter import AdapterOutcome, Capability
from conveyor.stdlib.adapters.base import AdapterParams, ConveyorAdapter

if TYPE_CHECKING:
    from conveyor.kernel.credentials import CredentialHandle
    from conveyor.kernel.ports.adapter import InvocationContext

logger = get_logger(__name__)


class MockArtifact(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    group: str
    name: str
    version: str
    packaging: str = "jar"
    checksum: str | None = None


class MockParams(AdapterParams):
    """Behaviour of one mock stage.

    Attributes
    ----------
    outcome : {"success", "failure"}
        Final outcome once ``fail_times`` has been used up
    error_kind : ErrorKind
        Kind reported for failures
    fail_times : int
        Number of leading invocations that raise ``error_kind`` first
    delay : float
        Seconds to take, interrupted by an abort
    wait_for_cancel : bool
        Block until the run is aborted
    artifact, image
        Produce an artifact reference, or an image for ``image`` built
        from the run's build number and commit
    """

    outcome: Literal["success", "failure"] = "success"
    error_kind: ErrorKind = ErrorKind.INTERNAL
    message: str | None = None
    metrics: dict[str, MetricValue] = Field(default_factory=dict)
    fail_times: int = Field(default=0, ge=0)
    delay: float = Field(default=0.0, ge=0)
    wait_for_cancel: bool = False
    artifact: MockArtifact | None = None
    image: str | None = None


@dataclass(slots=True)
class MockCall:
    """One recorded invocation."""

    run_id: str
    stage: str
    params: dict[str, Any]
    credentials: dict[str, CredentialHandle]
    commit: str
    build_number: int


class MockAdapter(ConveyorAdapter, tool_id="mock"):
    """Adapter whose behaviour is scripted by stage parameters.

    Examples
    --------
    Example usage::

        mock = MockAdapter()
        executor = PipelineExecutor({"mock": mock}, InMemoryRunLedger())
        ...
        [call.stage for call in mock.calls]
    """

    Params = MockParams

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.calls: list[MockCall] = []
        self._invocations: dict[tuple[str, str], int] = {}

    def calls_for(self, stage: str) -> list[MockCall]:
        return [call for call in self.calls if call.stage == stage]

    def reset(self) -> None:
        self.calls.clear()
        self._invocations.clear()

    async def ainvoke(
        self,
        params: Mapping[str, Any],
        credentials: Mapping[str, CredentialHandle],
        context: InvocationContext,
    ) -> AdapterOutcome:
        p: MockParams = self.parse_params(params)
        self.calls.append(
            MockCall(
                run_id=context.run_id,
                stage=context.stage,
                params=dict(params),
                credentials=dict(credentials),
                commit=context.commit,
                build_number=context.build_number,
            )
        )
        key = (context.run_id, context.stage)
        self._invocations[key] = count = self._invocations.get(key, 0) + 1
        context.write_log(f"mock invocation {count} of stage '{context.stage}'")

        if p.wait_for_cancel:
            await context.cancel_event.wait()
            raise StageAbortedError(f"Stage '{context.stage}' aborted")
        if p.delay:
            try:
                await asyncio.wait_for(context.cancel_event.wait(), p.delay)
            except TimeoutError:
                pass
            else:
                raise StageAbortedError(f"Stage '{context.stage}' aborted")

        message = p.message or f"mock failure in '{context.stage}'"
        if count <= p.fail_times:
            raise AdapterError(message, kind=p.error_kind, metrics=p.metrics)
        if p.outcome == "failure":
            return AdapterOutcome.failure(p.error_kind, message, metrics=p.metrics)

        artifact = None
        if p.artifact is not None:
            artifact = ArtifactReference(
                **p.artifact.model_dump(), fingerprint=context.commit_hash
            )
        image = None
        if p.image is not None:
            upstream = context.upstream_artifact(required=False)
            image = ImageReference.for_build(
                p.image,
                context.build_number,
                context.commit_hash,
                upstream.fingerprint if upstream else None,
            )
        return AdapterOutcome.success(
            metrics=p.metrics, artifact=artifact, image=image, message=p.message
        )
