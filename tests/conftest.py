"""Shared pytest fixtures for conveyor tests.

- ``mock_adapter`` / ``adapters``: in-process adapters keyed by tool id
- ``ledger``: a fresh in-memory run ledger
- ``make_stage``: builds StageSpecs for the mock adapter
- ``make_executor``: PipelineExecutor factory with fast retry and abort polling
- ``make_context`` / ``make_handle``: adapter invocation inputs
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from pydantic import SecretStr

from conveyor.kernel.config.loader import clear_config_cache
from conveyor.kernel.credentials import CredentialHandle, StageScope
from conveyor.kernel.domain.dag import AdapterInvocation, StageSpec
from conveyor.kernel.orchestration.executor import PipelineExecutor
from conveyor.kernel.orchestration.retry import RetryConfig
from conveyor.kernel.ports.adapter import InvocationContext
from conveyor.stdlib.adapters.memory import (
    MemoryArtifactStore,
    MemoryImageBuilder,
    MemoryRegistry,
    MockAdapter,
)
from conveyor.stdlib.ledger import InMemoryRunLedger


@pytest.fixture(autouse=True)
def _clear_config_cache() -> None:
    clear_config_cache()


@pytest.fixture
def mock_adapter() -> MockAdapter:
    return MockAdapter()


@pytest.fixture
def adapters(mock_adapter: MockAdapter) -> dict[str, Any]:
    return {
        "mock": mock_adapter,
        "memory_artifact_store": MemoryArtifactStore(),
        "memory_image_builder": MemoryImageBuilder(),
        "memory_registry": MemoryRegistry(),
    }


@pytest.fixture
def ledger() -> InMemoryRunLedger:
    return InMemoryRunLedger()


@pytest.fixture
def make_stage() -> Callable[..., StageSpec]:
    def _make(
        name: str,
        *deps: str,
        tool_id: str = "mock",
        gating: bool = False,
        timeout: float | None = None,
        credentials: tuple[str, ...] = (),
        **params: Any,
    ) -> StageSpec:
        return StageSpec(
            name=name,
            invocation=AdapterInvocation(tool_id, params, credentials),
            deps=frozenset(deps),
            gating=gating,
            timeout=timeout,
        )

    return _make


@pytest.fixture
def make_executor(
    adapters: dict[str, Any], ledger: InMemoryRunLedger, tmp_path: Any
) -> Callable[..., PipelineExecutor]:
    def _make(**kwargs: Any) -> PipelineExecutor:
        options: dict[str, Any] = {
            "retry": RetryConfig(max_attempts=3, delay=0.0),
            "workspace_root": tmp_path / "workspaces",
            "logs_dir": tmp_path / "logs",
            "abort_poll_interval": 0.01,
            "stage_timeout": 5.0,
        }
        options.update(kwargs)
        return PipelineExecutor(adapters, ledger, **options)

    return _make


@pytest.fixture
def make_context(tmp_path: Any) -> Callable[..., InvocationContext]:
    """InvocationContext factory rooted in ``tmp_path``."""

    def _make(stage: str = "stage", tool_id: str = "mock", **kwargs: Any) -> InvocationContext:
        options: dict[str, Any] = {
            "run_id": "run-1",
            "commit": "ab12cd34ef56",
            "workspace": tmp_path / "workspace",
            "log_path": tmp_path / "logs" / f"{stage}.1.log",
        }
        options.update(kwargs)
        return InvocationContext(stage=stage, tool_id=tool_id, **options)

    return _make


@pytest.fixture
def make_handle() -> Callable[..., CredentialHandle]:
    """Live CredentialHandle for a literal value."""

    def _make(name: str, value: str, stage: str = "stage") -> CredentialHandle:
        return CredentialHandle(name, SecretStr(value), StageScope(stage=stage, tool_id=name))

    return _make
