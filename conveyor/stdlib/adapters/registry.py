"""Adapter registry: the tool ids a pipeline document may reference."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from conveyor.drivers.http_client import HttpClientDriver
from conveyor.drivers.process import ProcessRunner
from conveyor.kernel.exceptions import InvalidStageParamsError
from conveyor.kernel.logging import get_logger
from conveyor.kernel.ports.adapter import Capability, ToolAdapter
from conveyor.stdlib.adapters.base import ConveyorAdapter

logger = get_logger(__name__)

_BUILTIN_PACKAGE = "conveyor.stdlib.adapters"


class AdapterRegistry(Mapping[str, ToolAdapter]):
    """Tool id to adapter instance lookup.

    Being a Mapping, a registry can be handed to
    :class:`~conveyor.kernel.orchestration.executor.PipelineExecutor` as is.
    """

    def __init__(self, adapters: Mapping[str, ToolAdapter] | None = None) -> None:
        self._adapters: dict[str, ToolAdapter] = {}
        for tool_id, adapter in (adapters or {}).items():
            self.register(adapter, tool_id)

    def register(
        self, adapter: ToolAdapter, tool_id: str | None = None, *, replace: bool = True
    ) -> None:
        """Register ``adapter`` under ``tool_id`` (defaults to ``adapter.tool_id``).

        Raises
        ------
        ValueError
            If the id is taken and ``replace`` is False
        """
        key = tool_id or adapter.tool_id
        if not replace and key in self._adapters:
            raise ValueError(f"Adapter '{key}' is already registered")
        if key in self._adapters:
            logger.debug("Replacing adapter '{}'", key)
        self._adapters[key] = adapter

    def __getitem__(self, tool_id: str) -> ToolAdapter:
        return self._adapters[tool_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)

    def ids(self) -> list[str]:
        return sorted(self._adapters)

    def capability(self, tool_id: str) -> Capability:
        return getattr(self._adapters[tool_id], "capability", Capability.GENERIC)

    def validate_params(
        self, stage: str, tool_id: str, params: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Validate stage parameters against the adapter's ``Params`` model.

        Adapters without a model accept anything. Returns the parameters with
        defaults filled in.

        Raises
        ------
        InvalidStageParamsError
            If validation fails
        """
        model: type[BaseModel] | None = getattr(self._adapters[tool_id], "Params", None)
        if model is None:
            return dict(params)
        try:
            validated = model.model_validate(dict(params))
        except ValidationError as e:
            reasons = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            )
            raise InvalidStageParamsError(stage, tool_id, reasons) from e
        return validated.model_dump(mode="json", exclude_unset=True)


def default_registry(
    *,
    runner: ProcessRunner | None = None,
    http_factory: Callable[..., HttpClientDriver] | None = None,
) -> AdapterRegistry:
    """Registry holding one instance of every built-in adapter.

    Parameters
    ----------
    runner : ProcessRunner | None
        Shared subprocess driver for command-line adapters
    http_factory : Callable[..., HttpClientDriver] | None
        Factory for HTTP drivers (tests pass one bound to a mock transport)
    """
    registry = AdapterRegistry()
    for tool_id, adapter_cls in sorted(ConveyorAdapter._registry.items()):
        if not adapter_cls.__module__.startswith(_BUILTIN_PACKAGE):
            continue
        registry.register(adapter_cls(runner=runner, http_factory=http_factory), tool_id)
    return registry
