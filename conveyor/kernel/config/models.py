"""Configuration data models for conveyor."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from conveyor.kernel.credentials import CredentialGrant
from conveyor.kernel.exceptions import ConfigurationError
from conveyor.kernel.orchestration.retry import RetryConfig

# Endpoint names adapters look up in the ``endpoints`` section
ENDPOINT_SCM = "scm_base_url"
ENDPOINT_ANALYSIS = "analysis_server"
ENDPOINT_ARTIFACT_STORE = "artifact_store"
ENDPOINT_ARTIFACT_REPOSITORY = "artifact_repository"
ENDPOINT_REGISTRY = "registry"
KNOWN_ENDPOINTS = frozenset({
    ENDPOINT_SCM,
    ENDPOINT_ANALYSIS,
    ENDPOINT_ARTIFACT_STORE,
    ENDPOINT_ARTIFACT_REPOSITORY,
    ENDPOINT_REGISTRY,
})


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Logging configuration.

    Examples
    --------
    YAML configuration::

        spec:
          logging:
            level: DEBUG
            format: rich

    Environment variable overrides::

        export CONVEYOR_LOG_LEVEL=DEBUG
        export CONVEYOR_LOG_FORMAT=json
        export CONVEYOR_LOG_FILE=/var/log/conveyor/conveyor.log
    """

    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "structured", "rich"] = "structured"
    output_file: str | None = None
    use_color: bool = True
    include_timestamp: bool = True


@dataclass(frozen=True, slots=True)
class RetrySettings:
    """Backoff policy for transient adapter failures."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff: float = 2.0
    max_delay: float = 60.0

    def to_retry_config(self) -> RetryConfig:
        try:
            return RetryConfig(
                max_attempts=self.max_attempts,
                delay=self.initial_delay,
                backoff=self.backoff,
                max_delay=self.max_delay,
            )
        except ValueError as e:
            raise ConfigurationError("executor.retry", str(e)) from e


@dataclass(frozen=True, slots=True)
class ExecutorConfig:
    """Scheduling limits.

    Attributes
    ----------
    max_concurrency : int
        Stages running at once inside one batch
    stage_timeout : float | None
        Default per-stage timeout in seconds; must be set explicitly per
        deployment, None means stages may run forever
    abort_poll_interval : float
        How often a running executor checks the ledger for abort requests
    """

    max_concurrency: int = 4
    stage_timeout: float | None = None
    abort_poll_interval: float = 0.5
    retry: RetrySettings = field(default_factory=RetrySettings)

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ConfigurationError("executor", "max_concurrency must be positive")
        if self.stage_timeout is not None and self.stage_timeout <= 0:
            raise ConfigurationError("executor", "stage_timeout must be positive")


@dataclass(frozen=True, slots=True)
class CredentialConfig:
    """A declared credential: where its value lives and who may read it."""

    name: str
    env: str
    scopes: tuple[str, ...] = ()

    def to_grant(self) -> CredentialGrant:
        return CredentialGrant(name=self.name, key=self.env, scopes=frozenset(self.scopes))


@dataclass(slots=True)
class ConveyorConfig:
    """Root configuration.

    Attributes
    ----------
    endpoints : dict[str, str]
        Collaborator endpoints (``analysis_server``, ``artifact_store``,
        ``artifact_repository``, ``registry``, ``scm_base_url``)
    credentials : dict[str, CredentialConfig]
        Declared credentials by name
    watch_branches : list[str]
        Branches whose pushes trigger a run (glob patterns allowed)
    ledger_path : str | None
        SQLite ledger file; None keeps the ledger in memory
    """

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    endpoints: dict[str, str] = field(default_factory=dict)
    credentials: dict[str, CredentialConfig] = field(default_factory=dict)
    watch_branches: list[str] = field(default_factory=lambda: ["main", "master"])
    ledger_path: str | None = ".conveyor/ledger.db"
    workspace_root: str = ".conveyor/workspaces"
    logs_dir: str | None = ".conveyor/logs"
    secret_env_prefix: str = ""

    def grants(self) -> dict[str, CredentialGrant]:
        return {name: cred.to_grant() for name, cred in self.credentials.items()}
