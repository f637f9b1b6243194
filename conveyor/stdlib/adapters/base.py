"""Base class for tool adapters with auto-registration via ``__init_subclass__``."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict, ValidationError

from conveyor.drivers.http_client import HttpClientDriver
from conveyor.drivers.process import ProcessRunner
from conveyor.kernel.exceptions import AdapterError, CredentialNotFoundError, ErrorKind
from conveyor.kernel.ports.adapter import Capability

if TYPE_CHECKING:
    from conveyor.kernel.credentials import CredentialHandle
    from conveyor.kernel.ports.adapter import AdapterOutcome, InvocationContext

# Directory inside a run workspace the SCM adapter checks sources out into
SOURCE_DIR = "source"


class AdapterParams(BaseModel):
    """Base model for adapter parameters (unknown keys are rejected)."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class ConveyorAdapter(ABC):
    """Base class that registers adapters when ``tool_id`` is provided.

    Examples
    --------
    Example usage::

        class MavenAdapter(ConveyorAdapter, tool_id="maven", capability=Capability.BUILD):
            Params = MavenParams

            async def ainvoke(self, params, credentials, context): ...
    """

    tool_id: ClassVar[str]
    capability: ClassVar[Capability] = Capability.GENERIC
    Params: ClassVar[type[AdapterParams]] = AdapterParams

    _registry: ClassVar[dict[str, type[ConveyorAdapter]]] = {}
    """Auto-populated by ``__init_subclass__``: tool id -> adapter class."""

    def __init__(
        self,
        *,
        runner: ProcessRunner | None = None,
        http_factory: Callable[..., HttpClientDriver] | None = None,
    ) -> None:
        self.runner = runner or ProcessRunner()
        self.http_factory = http_factory or HttpClientDriver

    def __init_subclass__(
        cls,
        *,
        tool_id: str | None = None,
        capability: Capability | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init_subclass__(**kwargs)
        if capability is not None:
            cls.capability = capability
        if tool_id:
            cls.tool_id = tool_id
            ConveyorAdapter._registry[tool_id] = cls

    @classmethod
    def validate_params(cls, params: Mapping[str, Any]) -> AdapterParams:
        """Validate stage parameters against :attr:`Params`.

        Raises
        ------
        pydantic.ValidationError
            If the parameters do not match
        """
        return cls.Params.model_validate(dict(params))

    def parse_params(self, params: Mapping[str, Any]) -> Any:
        """Validate parameters at invocation time."""
        try:
            return self.validate_params(params)
        except ValidationError as e:
            raise AdapterError(
                f"Invalid parameters for '{self.tool_id}': {e}", kind=ErrorKind.INVALID_DEFINITION
            ) from e

    @abstractmethod
    async def ainvoke(
        self,
        params: Mapping[str, Any],
        credentials: Mapping[str, CredentialHandle],
        context: InvocationContext,
    ) -> AdapterOutcome:
        """Run the tool for one stage invocation."""


def require_credential(
    credentials: Mapping[str, CredentialHandle], name: str | None
) -> CredentialHandle | None:
    """Handle for ``name`` if the stage declared it, None if no name is configured."""
    if name is None:
        return None
    handle = credentials.get(name)
    if handle is None:
        raise CredentialNotFoundError(
            f"Credential '{name}' is required but not listed in the stage's credentials"
        )
    return handle


def split_user_password(value: str) -> tuple[str, str]:
    """Split a ``user:password`` credential value.

    >>> split_user_password("admin:s3cr:et")
    ('admin', 's3cr:et')
    """
    user, sep, password = value.partition(":")
    if not sep:
        raise AdapterError(
            "Credential value must have the form 'user:password'", kind=ErrorKind.ACCESS_DENIED
        )
    return user, password
