"""Configuration models and loading."""

from conveyor.kernel.config.loader import ConfigLoader, clear_config_cache, load_config
from conveyor.kernel.config.models import (
    ConveyorConfig,
    CredentialConfig,
    ExecutorConfig,
    LoggingConfig,
    RetrySettings,
)

__all__ = [
    "ConfigLoader",
    "ConveyorConfig",
    "CredentialConfig",
    "ExecutorConfig",
    "LoggingConfig",
    "RetrySettings",
    "clear_config_cache",
    "load_config",
]
