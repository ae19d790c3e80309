"""Safety timer — bounded on-duration for selected actuators.

States per actuator: Idle → Armed(deadline) → Idle

  A committed "on" arms a deadline at now + max_on
  A committed "off" cancels the pending deadline
  Deadline expiry forces the actuator off and broadcasts the forced state
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping

from mechabus.errors import GatewayError
from mechabus.providers import ProviderState

logger = logging.getLogger(__name__)

ForceOff = Callable[[str], Awaitable[ProviderState]]
Announce = Callable[[ProviderState], Awaitable[None]]


@dataclass
class TimerEntry:
    deadline: float
    task: asyncio.Task | None = field(default=None, repr=False)


class SafetyTimerController:
    """Enforces a maximum continuous on-time per actuator."""

    def __init__(
        self,
        limits: Mapping[str, float],
        force_off: ForceOff,
        announce: Announce,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limits = dict(limits)
        self._force_off = force_off
        self._announce = announce
        self._clock = clock
        self._entries: dict[str, TimerEntry] = {}

    def observe(self, state: ProviderState) -> None:
        """Feed a committed state change into the state machine."""
        limit = self.limits.get(state.id)
        if limit is None:
            return

        entry = self._entries.get(state.id)
        if state.is_on:
            if entry is None:
                self._arm(state.id, limit)
            elif entry.deadline <= self._clock() and (entry.task is None or entry.task.done()):
                # Stale entry whose expiry never ran.
                logger.warning("Safety deadline for %s already passed, firing now", state.id)
                self._entries.pop(state.id, None)
                self._arm(state.id, 0.0)
        elif entry is not None:
            self._cancel(state.id)

    def pending(self) -> dict[str, float]:
        """Armed actuator ids mapped to their deadlines."""
        return {pid: entry.deadline for pid, entry in self._entries.items()}

    def is_armed(self, provider_id: str) -> bool:
        return provider_id in self._entries

    async def close(self) -> None:
        """Cancel every pending deadline (shutdown only)."""
        tasks = [e.task for e in self._entries.values() if e.task is not None]
        self._entries.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _arm(self, provider_id: str, duration: float) -> None:
        entry = TimerEntry(deadline=self._clock() + duration)
        self._entries[provider_id] = entry
        entry.task = asyncio.get_running_loop().create_task(self._expire(provider_id, entry))
        logger.info("Safety timer armed for %s (%.0fs)", provider_id, duration)

    def _cancel(self, provider_id: str) -> None:
        entry = self._entries.pop(provider_id)
        if entry.task is not None:
            entry.task.cancel()
        logger.info("Safety timer cancelled for %s", provider_id)

    async def _expire(self, provider_id: str, entry: TimerEntry) -> None:
        await asyncio.sleep(max(0.0, entry.deadline - self._clock()))

        if self._entries.get(provider_id) is not entry:
            return
        del self._entries[provider_id]

        logger.warning("Safety timer expired for %s — forcing off", provider_id)
        try:
            state = await self._force_off(provider_id)
        except GatewayError as exc:
            logger.error("Forced shutoff of %s failed: %s", provider_id, exc.message)
            return
        await self._announce(state)
