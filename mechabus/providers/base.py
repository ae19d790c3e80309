"""Abstract provider interface for the Mechabus gateway.

Any actuator backend (remote HTTP switch, local output line) implements this
interface, so the dispatcher never needs to know which one it is talking to.
"""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass, field
from typing import Any, Union

Level = Union[bool, int]


class ProviderKind(str, enum.Enum):
    REMOTE = "remote"
    LOCAL_ACTUATOR = "local-actuator"


class ProviderError(Exception):
    """Base error raised by provider backends."""


class ProviderUnavailable(ProviderError):
    """Raised when a remote backend cannot be reached or replies garbage."""


class ProviderFault(ProviderError):
    """Raised when a local output line fails."""


@dataclass
class ProviderState:
    """Snapshot of a provider's state at the time of a get/set."""

    id: str
    on: Level
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_on(self) -> bool:
        return bool(self.on)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data["id"] = self.id
        data["on"] = self.on
        return data


class Provider(abc.ABC):
    """Abstract interface for any actuator backend."""

    kind: ProviderKind

    def __init__(self, provider_id: str) -> None:
        self.id = provider_id

    @abc.abstractmethod
    async def get(self) -> ProviderState:
        """Read the current state.

        Raises :class:`ProviderError` on backend failure.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def set(self, value: Level) -> ProviderState:
        """Drive the backend to *value* and return the resulting state.

        Raises :class:`ProviderError` on backend failure.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release backend resources."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id!r} ({self.kind.value})>"
