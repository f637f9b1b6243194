"""Environment variable based secret store."""

from __future__ import annotations

import os
from typing import Any

from pydantic import SecretStr

from conveyor.kernel.logging import get_logger
from conveyor.kernel.ports.secret import SecretStore

logger = get_logger(__name__)


class EnvSecretStore(SecretStore):
    """Secret store that reads from environment variables.

    Suitable for CI hosts where the agent injects credentials as env vars
    (the way Jenkins ``withCredentials`` does).

    Examples
    --------
    Basic usage::

        store = EnvSecretStore(env_prefix="CONVEYOR_SECRET_")
        token = await store.aget_secret("SONAR_TOKEN")
        token.get_secret_value()
    """

    env_prefix: str
    allow_empty: bool

    def __init__(
        self,
        env_prefix: str = "",
        allow_empty: bool = False,
        environ: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the store.

        Args
        ----
            env_prefix: Prefix prepended to every key when looking it up.
            allow_empty: Allow empty secret values. Default: False.
            environ: Mapping to read instead of ``os.environ`` (tests).
        """
        self.env_prefix = env_prefix
        self.allow_empty = allow_empty
        self._environ = environ

    @property
    def _env(self) -> dict[str, str] | os._Environ[str]:
        return os.environ if self._environ is None else self._environ

    async def aget_secret(self, key: str) -> SecretStr:
        env_var_name = f"{self.env_prefix}{key}"
        value = self._env.get(env_var_name)

        if value is None:
            raise KeyError(
                f"Secret '{key}' not found in environment variables (looked for: {env_var_name})"
            )
        if value == "" and not self.allow_empty:
            raise ValueError(
                f"Secret '{key}' cannot be empty (set allow_empty=True to allow empty secrets)"
            )

        logger.debug(f"Retrieved secret '{key}' from environment")
        return SecretStr(value)

    async def alist_secret_names(self) -> list[str]:
        return sorted(
            name.removeprefix(self.env_prefix)
            for name in self._env
            if name.startswith(self.env_prefix)
        )


class StaticSecretStore(SecretStore):
    """In-memory secret store for tests and dry runs."""

    def __init__(self, secrets: dict[str, str] | None = None) -> None:
        self._secrets = dict(secrets or {})

    def set(self, key: str, value: str) -> None:
        self._secrets[key] = value

    async def aget_secret(self, key: str) -> SecretStr:
        if key not in self._secrets:
            raise KeyError(f"Secret '{key}' not found")
        return SecretStr(self._secrets[key])

    async def alist_secret_names(self) -> list[str]:
        return sorted(self._secrets)
