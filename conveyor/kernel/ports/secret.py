"""Port interface for secret stores (environment, KeyVault, Vault, etc.)."""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable

from pydantic import SecretStr


@runtime_checkable
class SecretStore(Protocol):
    """Backing store the CredentialVault reads raw secret values from.

    Stores know nothing about scopes; access control lives in the vault.
    Values are returned wrapped in ``SecretStr`` so they never show up in
    reprs or tracebacks.
    """

    @abstractmethod
    async def aget_secret(self, key: str) -> SecretStr:
        """Retrieve a single secret by key.

        Raises
        ------
        KeyError
            If the secret does not exist
        ValueError
            If the secret value is empty
        """
        ...

    async def alist_secret_names(self) -> list[str]:
        """List secret names available in this store (may be empty)."""
        return []
