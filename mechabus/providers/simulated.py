"""Simulated remote switch for development without controllers on the LAN."""

from __future__ import annotations

import asyncio
import random

from .base import Level, Provider, ProviderKind, ProviderState


class SimulatedSwitch(Provider):
    """In-memory stand-in for :class:`RemoteSwitch`.

    Starts in a random state unless *initial* is given, and answers after
    *latency* seconds, roughly like a controller on a busy WiFi network.
    """

    kind = ProviderKind.REMOTE

    def __init__(
        self,
        provider_id: str,
        address: str = "",
        latency: float = 0.2,
        initial: int | None = None,
    ) -> None:
        super().__init__(provider_id)
        self.address = address
        self.latency = latency
        self._level: int = random.randint(0, 1) if initial is None else initial

    async def get(self) -> ProviderState:
        await asyncio.sleep(self.latency)
        return self._state()

    async def set(self, value: Level) -> ProviderState:
        await asyncio.sleep(self.latency)
        self._level = int(value)
        return self._state()

    def _state(self) -> ProviderState:
        return ProviderState(self.id, self._level, {"address": self.address, "simulated": True})
