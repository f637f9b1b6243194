"""Secret store implementations."""

from conveyor.stdlib.secrets.env_store import EnvSecretStore, StaticSecretStore

__all__ = ["EnvSecretStore", "StaticSecretStore"]
