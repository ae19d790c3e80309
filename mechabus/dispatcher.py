"""Uniform get/set entry point over every provider backend.

The dispatcher resolves ids through the :class:`ProviderRegistry`, turns
backend failures into request-level errors and reports every committed set
to an observer (the safety timer) before handing the result back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from mechabus.errors import BadRequest, GatewayError, InternalFailure, Unreachable
from mechabus.providers import (
    Level,
    Provider,
    ProviderError,
    ProviderKind,
    ProviderRegistry,
    ProviderState,
)

logger = logging.getLogger(__name__)

StateObserver = Callable[[ProviderState], None]

_FAILURES: dict[ProviderKind, type[GatewayError]] = {
    ProviderKind.REMOTE: Unreachable,
    ProviderKind.LOCAL_ACTUATOR: InternalFailure,
}


@dataclass(frozen=True)
class Intent:
    """Either an absolute target value or a toggle, never both."""

    value: Optional[Level] = None
    toggle: bool = False

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> Intent:
        """Parse a ``set`` payload.

        The absolute value may be given as ``on`` or ``state``; a toggle as
        ``toggle: <truthy>`` or ``action: "toggle"``.
        """
        value = data.get("on", data.get("state"))
        toggle = bool(data.get("toggle")) or data.get("action") == "toggle"

        if value is not None and not isinstance(value, (bool, int)):
            if isinstance(value, str) and value.isdigit():
                value = int(value)
            else:
                raise BadRequest(f"Invalid state value: {value!r}", data.get("id"))
        if (value is None) == (not toggle):
            raise BadRequest("Invalid request: give exactly one of state or toggle", data.get("id"))
        return cls(value=value, toggle=toggle)


def flip(level: Level) -> Level:
    if isinstance(level, bool):
        return not level
    return 0 if level else 1


class Dispatcher:
    """Routes get/set calls to the right backend."""

    def __init__(
        self,
        registry: ProviderRegistry,
        observer: StateObserver | None = None,
    ) -> None:
        self.registry = registry
        self.observer = observer

    async def get_state(self, provider_id: str) -> ProviderState:
        provider = self.registry.resolve(provider_id)
        return await self._call(provider, provider.get())

    async def set_state(
        self,
        provider_id: str,
        intent: Intent,
        notify: bool = True,
    ) -> ProviderState:
        """Apply *intent* to *provider_id*.

        With *notify* set (the default) the observer sees the new state
        before this coroutine returns.
        """
        provider = self.registry.resolve(provider_id)
        if intent.toggle:
            current = await self._call(provider, provider.get())
            target = flip(current.on)
        else:
            target = intent.value

        state = await self._call(provider, provider.set(target))
        logger.info("%s set to %r", provider_id, state.on)

        if notify and self.observer is not None:
            self.observer(state)
        return state

    @staticmethod
    async def _call(provider: Provider, op) -> ProviderState:
        try:
            state = await op
        except ProviderError as exc:
            logger.warning("Provider %s failed: %s", provider.id, exc)
            raise _FAILURES[provider.kind](str(exc), provider.id) from exc
        state.id = provider.id
        return state
