"""Port interface for external tool adapters.

Every collaborator the pipeline talks to (SCM, static analysis, build tool,
artifact repository, image builder, registry) sits behind the same narrow
capability: ``ainvoke(params, credentials, context) -> AdapterOutcome``.
Adapters either return an outcome or raise an :class:`AdapterError`; the
stage runner turns both into a StageResult.
"""

from __future__ import annotations

import asyncio
from abc import abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar, Literal, Protocol, overload, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from conveyor.kernel.domain.artifacts import ArtifactReference, ImageReference
from conveyor.kernel.domain.run import MetricValue, StageResult, StageStatus
from conveyor.kernel.exceptions import ErrorKind, MissingInputError, StageAbortedError

if TYPE_CHECKING:
    from conveyor.kernel.credentials import CredentialHandle


class Capability(StrEnum):
    """What kind of collaborator an adapter fronts."""

    SCM = "scm"
    ANALYSIS = "analysis"
    BUILD = "build"
    ARTIFACT_STORE = "artifact_store"
    IMAGE_BUILDER = "image_builder"
    REGISTRY = "registry"
    DEPLOY = "deploy"
    GENERIC = "generic"


class OutcomeStatus(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class AdapterOutcome(BaseModel):
    """Structured result of one adapter invocation."""

    model_config = ConfigDict(frozen=True)

    status: OutcomeStatus
    metrics: dict[str, MetricValue] = Field(default_factory=dict)
    artifact: ArtifactReference | None = None
    image: ImageReference | None = None
    raw_log_ref: str | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None

    @classmethod
    def success(
        cls,
        *,
        metrics: Mapping[str, MetricValue] | None = None,
        artifact: ArtifactReference | None = None,
        image: ImageReference | None = None,
        raw_log_ref: str | None = None,
        message: str | None = None,
    ) -> AdapterOutcome:
        return cls(
            status=OutcomeStatus.SUCCESS,
            metrics=dict(metrics or {}),
            artifact=artifact,
            image=image,
            raw_log_ref=raw_log_ref,
            message=message,
        )

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        metrics: Mapping[str, MetricValue] | None = None,
        raw_log_ref: str | None = None,
    ) -> AdapterOutcome:
        return cls(
            status=OutcomeStatus.FAILURE,
            error_kind=kind,
            message=message,
            metrics=dict(metrics or {}),
            raw_log_ref=raw_log_ref,
        )

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS


def _finish_order(result: StageResult) -> float:
    return result.finished_at.timestamp() if result.finished_at else 0.0


@dataclass(slots=True)
class InvocationContext:
    """Everything an adapter may know about the invocation besides its params.

    Attributes
    ----------
    cancel_event : asyncio.Event
        Cooperative cancellation signal; set when the Run is aborted
    upstream : Mapping[str, StageResult]
        Latest results of every transitive upstream stage
    endpoints : Mapping[str, str]
        Configured collaborator endpoints (analysis server, registry, ...)
    redact : Callable[[str], str]
        Scrubs live credential values from text destined for logs
    """

    run_id: str
    stage: str
    tool_id: str
    commit: str
    build_number: int = 1
    branch: str | None = None
    workspace: Path = field(default_factory=Path.cwd)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    upstream: Mapping[str, StageResult] = field(default_factory=dict)
    endpoints: Mapping[str, str] = field(default_factory=dict)
    log_path: Path | None = None
    redact: Callable[[str], str] = field(default=lambda text: text)

    @property
    def commit_hash(self) -> str:
        """Commit hash resolved by an upstream SCM stage, falling back to the trigger's."""
        for result in self.upstream.values():
            resolved = result.metrics.get("commit_hash")
            if result.status is StageStatus.SUCCESS and isinstance(resolved, str) and resolved:
                return resolved
        return self.commit

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self) -> None:
        """Raise StageAbortedError if the Run has been aborted."""
        if self.cancel_event.is_set():
            raise StageAbortedError(f"Stage '{self.stage}' aborted by operator")

    @overload
    def upstream_artifact(self, required: Literal[True] = ...) -> ArtifactReference: ...

    @overload
    def upstream_artifact(self, required: bool) -> ArtifactReference | None: ...

    def upstream_artifact(self, required: bool = True) -> ArtifactReference | None:
        """Most recently finished upstream artifact reference."""
        candidates = [
            r for r in self.upstream.values() if r.status is StageStatus.SUCCESS and r.artifact
        ]
        if not candidates:
            if required:
                raise MissingInputError(f"Stage '{self.stage}' needs an upstream artifact")
            return None
        latest = max(candidates, key=_finish_order)
        return latest.artifact

    @overload
    def upstream_image(self, required: Literal[True] = ...) -> ImageReference: ...

    @overload
    def upstream_image(self, required: bool) -> ImageReference | None: ...

    def upstream_image(self, required: bool = True) -> ImageReference | None:
        """Most recently finished upstream image reference."""
        candidates = [
            r for r in self.upstream.values() if r.status is StageStatus.SUCCESS and r.image
        ]
        if not candidates:
            if required:
                raise MissingInputError(f"Stage '{self.stage}' needs an upstream image")
            return None
        latest = max(candidates, key=_finish_order)
        return latest.image

    def endpoint(self, name: str, override: str | None = None) -> str:
        """Configured endpoint ``name``; a stage parameter may override it."""
        if override:
            return override
        value = self.endpoints.get(name)
        if not value:
            raise MissingInputError(
                f"Stage '{self.stage}' needs endpoint '{name}' but none is configured"
            )
        return value

    def write_log(self, text: str) -> None:
        """Append redacted output to this stage's captured log."""
        if self.log_path is None or not text:
            return
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        with self.log_path.open("a", encoding="utf-8") as fh:
            fh.write(self.redact(text))
            if not text.endswith("\n"):
                fh.write("\n")

    @property
    def log_ref(self) -> str | None:
        if self.log_path is not None and self.log_path.exists():
            return str(self.log_path)
        return None


@runtime_checkable
class ToolAdapter(Protocol):
    """Capability every external tool adapter implements.

    Adapters declare a ``tool_id`` (referenced by pipeline documents), a
    ``capability`` and optionally a pydantic ``Params`` model that stage
    parameters are validated against when the pipeline is loaded.
    """

    tool_id: ClassVar[str]
    capability: ClassVar[Capability]

    @abstractmethod
    async def ainvoke(
        self,
        params: Mapping[str, Any],
        credentials: Mapping[str, CredentialHandle],
        context: InvocationContext,
    ) -> AdapterOutcome:
        """Run the external tool for one stage.

        Raises
        ------
        AdapterError
            Structured failure; its ``kind`` is recorded on the StageResult
        """
        ...
