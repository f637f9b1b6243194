"""Credential Vault: scoped, redacted access to named secrets.

Stages never see a secret store directly. They ask the vault for a named
credential and get back a :class:`CredentialHandle` that only lives for the
duration of one adapter invocation. Every value the vault has handed out is
remembered for the lifetime of the vault (the Run) so it can be scrubbed
from log lines and ledger messages.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from pydantic import SecretStr

from conveyor.kernel.exceptions import AccessDeniedError, CredentialNotFoundError
from conveyor.kernel.logging import get_logger, register_redactor, unregister_redactor
from conveyor.kernel.ports.secret import SecretStore

logger = get_logger(__name__)

REDACTED = "***"
ANY_SCOPE = "*"


@dataclass(frozen=True, slots=True)
class StageScope:
    """Identity of the stage invocation asking for a credential."""

    stage: str
    tool_id: str


@dataclass(frozen=True, slots=True)
class CredentialGrant:
    """Declaration of a credential and who may read it.

    Attributes
    ----------
    name : str
        Credential name used in pipeline documents (e.g. ``"nexus-credentials"``)
    key : str
        Key in the backing SecretStore
    scopes : frozenset[str]
        Stage names or adapter ids allowed to resolve it; ``"*"`` allows all
    """

    name: str
    key: str
    scopes: frozenset[str] = field(default_factory=frozenset)

    def allows(self, scope: StageScope) -> bool:
        return bool({ANY_SCOPE, scope.stage, scope.tool_id} & self.scopes)


class CredentialHandle:
    """Scoped, time-bounded access to one credential value.

    The value is only reachable through :meth:`reveal` and only until the
    owning invocation completes.
    """

    __slots__ = ("name", "scope", "_value", "_expired")

    def __init__(self, name: str, value: SecretStr, scope: StageScope) -> None:
        self.name = name
        self.scope = scope
        self._value = value
        self._expired = False

    def reveal(self) -> str:
        if self._expired:
            raise AccessDeniedError(
                f"Credential '{self.name}' handle expired "
                f"after stage '{self.scope.stage}' completed"
            )
        return self._value.get_secret_value()

    def expire(self) -> None:
        self._expired = True
        self._value = SecretStr("")

    @property
    def expired(self) -> bool:
        return self._expired

    def __repr__(self) -> str:
        state = "expired" if self._expired else "live"
        return f"CredentialHandle('{self.name}', {state})"


class CredentialVault:
    """Resolve named credentials for stages within their declared scope.

    Parameters
    ----------
    store : SecretStore
        Where raw values come from
    grants : Mapping[str, CredentialGrant]
        Declared credentials by name; anything not declared is NotFound

    Examples
    --------
    Example usage::

        vault = CredentialVault(store, {"sonar-token": CredentialGrant(
            "sonar-token", "SONAR_TOKEN", frozenset({"sonarqube"}))})
        handle = await vault.resolve("sonar-token", StageScope("analyze", "sonarqube"))
        handle.reveal()
    """

    def __init__(
        self,
        store: SecretStore | None = None,
        grants: Mapping[str, CredentialGrant] | None = None,
    ) -> None:
        self._store = store
        self._grants: dict[str, CredentialGrant] = dict(grants or {})
        self._live_values: set[str] = set()
        self._closed = False
        register_redactor(self.redact)

    @property
    def grants(self) -> Mapping[str, CredentialGrant]:
        return self._grants

    async def resolve(self, name: str, scope: StageScope) -> CredentialHandle:
        """Resolve ``name`` for the requesting stage.

        Raises
        ------
        CredentialNotFoundError
            If no grant is declared or the store has no value for it
        AccessDeniedError
            If ``scope`` is outside the grant's declared scopes
        """
        grant = self._grants.get(name)
        if grant is None or self._store is None:
            raise CredentialNotFoundError(f"Credential '{name}' is not declared")
        if not grant.allows(scope):
            logger.warning(
                "Stage '{}' ({}) denied access to credential '{}'", scope.stage, scope.tool_id, name
            )
            raise AccessDeniedError(
                f"Stage '{scope.stage}' ({scope.tool_id}) may not read credential '{name}'"
            )
        try:
            value = await self._store.aget_secret(grant.key)
        except (KeyError, ValueError) as e:
            raise CredentialNotFoundError(f"Credential '{name}' has no value: {e}") from e

        raw = value.get_secret_value()
        if raw:
            # credentials embedded in URLs appear percent-encoded
            self._live_values.update({raw, quote(raw, safe="")})
        logger.debug("Resolved credential '{}' for stage '{}'", name, scope.stage)
        return CredentialHandle(name, value, scope)

    @asynccontextmanager
    async def session(
        self, names: Iterable[str], scope: StageScope
    ) -> AsyncIterator[dict[str, CredentialHandle]]:
        """Resolve ``names`` for one invocation and expire the handles afterwards."""
        handles: dict[str, CredentialHandle] = {}
        try:
            for name in names:
                handles[name] = await self.resolve(name, scope)
            yield handles
        finally:
            for handle in handles.values():
                handle.expire()

    def redact(self, text: str) -> str:
        """Replace every live credential literal in ``text`` with ``***``."""
        if not text or not self._live_values:
            return text
        for value in sorted(self._live_values, key=len, reverse=True):
            text = text.replace(value, REDACTED)
        return text

    def redact_value(self, value: Any) -> Any:
        """Redact strings nested inside metrics-like values."""
        if isinstance(value, str):
            return self.redact(value)
        if isinstance(value, Mapping):
            return {k: self.redact_value(v) for k, v in value.items()}
        if isinstance(value, list | tuple):
            return type(value)(self.redact_value(v) for v in value)
        return value

    def close(self) -> None:
        """End of the Run: forget live values and stop redacting."""
        if self._closed:
            return
        unregister_redactor(self.redact)
        self._live_values.clear()
        self._closed = True

    def __enter__(self) -> CredentialVault:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
