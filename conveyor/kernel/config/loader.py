"""Configuration loader for conveyor.

Supports two config sources:

1. **kind: Config YAML** - canonical format, loaded via explicit path or
   ``CONVEYOR_CONFIG_PATH`` env var.
2. **pyproject.toml [tool.conveyor]** - auto-discovery fallback.

When neither is found the defaults of :class:`ConveyorConfig` apply.
"""

from __future__ import annotations

import os
import re
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

import yaml

from conveyor.kernel.config.models import (
    KNOWN_ENDPOINTS,
    ConveyorConfig,
    CredentialConfig,
    ExecutorConfig,
    LoggingConfig,
    RetrySettings,
)
from conveyor.kernel.exceptions import ConfigurationError
from conveyor.kernel.logging import get_logger

_TRUTHY_VALUES = frozenset({"true", "1", "yes", "on", "enabled"})
_FALSY_VALUES = frozenset({"false", "0", "no", "off", "disabled"})

logger = get_logger(__name__)


def _parse_bool_env(value: str) -> bool:
    """Parse boolean from environment variable value.

    Raises
    ------
    ValueError
        If value is not a recognized boolean string
    """
    normalized = value.lower().strip()
    if normalized in _TRUTHY_VALUES:
        return True
    if normalized in _FALSY_VALUES:
        return False
    expected = _TRUTHY_VALUES | _FALSY_VALUES
    raise ValueError(f"Invalid boolean value: {value!r}. Expected one of: {expected}")


class ConfigLoader:
    """Loads and processes conveyor configuration files."""

    ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

    def load_config_file(self, path: str | Path | None = None) -> ConveyorConfig:
        """Load configuration from YAML or pyproject.toml.

        Raises
        ------
        FileNotFoundError
            If an explicit path does not exist, or nothing was discovered
        ConfigurationError
            If the file content is invalid
        """
        config_path = self._find_config_file(path)
        return self._load_and_parse(config_path)

    def _load_and_parse(self, config_path: Path) -> ConveyorConfig:
        logger.info("Loading configuration from {path}", path=config_path)
        if config_path.suffix in (".yaml", ".yml"):
            return self._load_yaml_config(config_path)
        return self._load_toml_config(config_path)

    def _load_yaml_config(self, config_path: Path) -> ConveyorConfig:
        with config_path.open("r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(str(config_path), f"invalid YAML: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                str(config_path), f"expected a mapping, got {type(data).__name__}"
            )

        kind = data.get("kind")
        if kind != "Config":
            raise ConfigurationError(
                str(config_path),
                f"YAML config files must use 'kind: Config', got 'kind: {kind}'",
            )

        spec = data.get("spec", {})
        if not isinstance(spec, dict):
            raise ConfigurationError(str(config_path), "'spec' must be a mapping")

        return self._parse_config(self._substitute_env_vars(spec))

    def _load_toml_config(self, config_path: Path) -> ConveyorConfig:
        with config_path.open("rb") as f:
            data = tomllib.load(f)

        if config_path.name == "pyproject.toml":
            conveyor_data = data.get("tool", {}).get("conveyor", {})
            if not conveyor_data:
                logger.warning("No [tool.conveyor] section found in pyproject.toml, using defaults")
                return self._parse_config({})
        elif "tool" in data and "conveyor" in data.get("tool", {}):
            conveyor_data = data["tool"]["conveyor"]
        else:
            conveyor_data = data

        return self._parse_config(self._substitute_env_vars(conveyor_data))

    def _find_config_file(self, path: str | Path | None) -> Path:
        """Find configuration file.

        Discovery order:
        1. Explicit path argument
        2. ``CONVEYOR_CONFIG_PATH`` env var
        3. ``pyproject.toml`` with ``[tool.conveyor]`` in CWD or a parent
        """
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            return config_path

        if env_path := os.getenv("CONVEYOR_CONFIG_PATH"):
            config_path = Path(env_path)
            if config_path.exists():
                logger.debug("Using config from CONVEYOR_CONFIG_PATH: {}", config_path)
                return config_path
            logger.warning("CONVEYOR_CONFIG_PATH set but file not found: {}", config_path)

        current = Path.cwd()
        while True:
            pyproject = current / "pyproject.toml"
            if pyproject.exists():
                with pyproject.open("rb") as f:
                    data = tomllib.load(f)
                if "conveyor" in data.get("tool", {}):
                    return pyproject
            if current == current.parent:
                break
            current = current.parent

        raise FileNotFoundError(
            "No configuration file found. Provide a kind: Config YAML path, "
            "set CONVEYOR_CONFIG_PATH, or add [tool.conveyor] to pyproject.toml"
        )

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively replace ``${VAR}`` placeholders with environment values."""
        if isinstance(data, str):

            def replacer(match: re.Match[str]) -> str:
                var_name = match.group(1)
                value = os.environ.get(var_name)
                if value is None:
                    logger.debug(
                        "Environment variable ${{{var_name}}} not found, keeping placeholder",
                        var_name=var_name,
                    )
                    return match.group(0)
                return value

            return self.ENV_VAR_PATTERN.sub(replacer, data)

        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}

        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]

        return data

    def _parse_config(self, data: dict[str, Any]) -> ConveyorConfig:
        """Parse format-agnostic configuration data into ConveyorConfig."""
        config = ConveyorConfig()
        config.logging = self._parse_logging_config(data.get("logging", {}))
        config.executor = self._parse_executor_config(data.get("executor", {}))

        endpoints = data.get("endpoints", {})
        if not isinstance(endpoints, dict):
            raise ConfigurationError("endpoints", "must be a mapping of name to URL")
        for name in sorted(set(endpoints) - KNOWN_ENDPOINTS):
            logger.warning("Unknown endpoint '{}' in configuration", name)
        config.endpoints = {str(k): str(v) for k, v in endpoints.items() if v is not None}

        config.credentials = self._parse_credentials(data.get("credentials", {}))

        if "watch_branches" in data:
            branches = data["watch_branches"]
            if isinstance(branches, str) or not isinstance(branches, list):
                raise ConfigurationError("watch_branches", "must be a list of branch names")
            config.watch_branches = [str(b) for b in branches]

        for key in ("ledger_path", "logs_dir"):
            if key in data:
                setattr(config, key, str(data[key]) if data[key] is not None else None)
        if "workspace_root" in data:
            config.workspace_root = str(data["workspace_root"])
        if "secret_env_prefix" in data:
            config.secret_env_prefix = str(data["secret_env_prefix"])
        return config

    def _parse_executor_config(self, executor_data: dict[str, Any]) -> ExecutorConfig:
        """Parse executor limits with environment variable overrides.

        - CONVEYOR_MAX_CONCURRENCY: Concurrent stages per batch
        - CONVEYOR_STAGE_TIMEOUT: Default per-stage timeout in seconds
        """
        max_concurrency = executor_data.get("max_concurrency", 4)
        stage_timeout = executor_data.get("stage_timeout")
        abort_poll_interval = executor_data.get("abort_poll_interval", 0.5)
        retry_data = executor_data.get("retry", {}) or {}

        if env_concurrency := os.getenv("CONVEYOR_MAX_CONCURRENCY"):
            max_concurrency = env_concurrency
            logger.debug("Overriding max_concurrency from env: {}", max_concurrency)
        if env_timeout := os.getenv("CONVEYOR_STAGE_TIMEOUT"):
            stage_timeout = env_timeout
            logger.debug("Overriding stage_timeout from env: {}", stage_timeout)

        try:
            retry = RetrySettings(
                max_attempts=int(retry_data.get("max_attempts", 3)),
                initial_delay=float(retry_data.get("initial_delay", 1.0)),
                backoff=float(retry_data.get("backoff", 2.0)),
                max_delay=float(retry_data.get("max_delay", 60.0)),
            )
            config = ExecutorConfig(
                max_concurrency=int(max_concurrency),
                stage_timeout=float(stage_timeout) if stage_timeout is not None else None,
                abort_poll_interval=float(abort_poll_interval),
                retry=retry,
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError("executor", str(e)) from e
        retry.to_retry_config()
        return config

    def _parse_credentials(self, credentials_data: Any) -> dict[str, CredentialConfig]:
        if not isinstance(credentials_data, dict):
            raise ConfigurationError("credentials", "must be a mapping of name to declaration")
        credentials: dict[str, CredentialConfig] = {}
        for name, decl in credentials_data.items():
            if isinstance(decl, str):
                decl = {"env": decl}
            if not isinstance(decl, dict) or "env" not in decl:
                raise ConfigurationError(f"credentials.{name}", "needs an 'env' key")
            scopes = decl.get("scopes", [])
            if isinstance(scopes, str):
                scopes = [scopes]
            credentials[name] = CredentialConfig(
                name=name, env=str(decl["env"]), scopes=tuple(str(s) for s in scopes)
            )
        return credentials

    def _parse_logging_config(self, logging_data: dict[str, Any]) -> LoggingConfig:
        """Parse logging configuration with environment variable overrides.

        Environment variables take precedence over config file values:
        - CONVEYOR_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        - CONVEYOR_LOG_FORMAT: Output format (console, json, structured, rich)
        - CONVEYOR_LOG_FILE: Optional file path for log output
        - CONVEYOR_LOG_COLOR: Use color output (true/false)
        """
        level = logging_data.get("level", "INFO")
        format_type = logging_data.get("format", "structured")
        output_file = logging_data.get("output_file")
        use_color = logging_data.get("use_color", True)
        include_timestamp = logging_data.get("include_timestamp", True)

        if env_level := os.getenv("CONVEYOR_LOG_LEVEL"):
            level = env_level.upper()
            logger.debug("Overriding log level from env: {}", level)
        if env_format := os.getenv("CONVEYOR_LOG_FORMAT"):
            format_type = env_format.lower()
            logger.debug("Overriding log format from env: {}", format_type)
        if env_file := os.getenv("CONVEYOR_LOG_FILE"):
            output_file = env_file
            logger.debug("Overriding log file from env: {}", output_file)
        if env_color := os.getenv("CONVEYOR_LOG_COLOR"):
            try:
                use_color = _parse_bool_env(env_color)
            except ValueError as e:
                logger.warning("Invalid CONVEYOR_LOG_COLOR value: {}", e)

        return LoggingConfig(
            level=cast("Any", str(level).upper()),
            format=cast("Any", format_type),
            output_file=output_file,
            use_color=use_color,
            include_timestamp=include_timestamp,
        )


@lru_cache(maxsize=32)
def _cached_load_config(path_str: str | None) -> ConveyorConfig:
    loader = ConfigLoader()
    try:
        return loader.load_config_file(Path(path_str) if path_str else None)
    except FileNotFoundError:
        if path_str:
            raise
        logger.info("No configuration file found, using defaults")
        return loader._parse_config({})


def load_config(path: str | Path | None = None) -> ConveyorConfig:
    """Load configuration from file, or defaults when nothing is discovered.

    An explicit ``path`` that does not exist raises FileNotFoundError.
    """
    return _cached_load_config(str(path) if path else None)


def clear_config_cache() -> None:
    """Forget cached configurations (tests, or after editing the file)."""
    _cached_load_config.cache_clear()
