"""Locally wired actuators (relays, valves, pumps) driven from output lines.

Supports:
  - gpio: a BCM pin on the host via ``RPi.GPIO``
  - any object implementing :class:`OutputLine` (used for tests and
    alternative I/O boards)
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from .base import Level, Provider, ProviderFault, ProviderKind, ProviderState

logger = logging.getLogger(__name__)


class OutputLine(ABC):
    """A physical binary output."""

    @abstractmethod
    def read(self) -> int:
        """Return the current output level (0 or 1)."""

    @abstractmethod
    def write(self, level: int) -> None:
        """Drive the output to *level*."""

    def close(self) -> None:
        """Clean up resources."""


class GPIOLine(OutputLine):
    """Single BCM GPIO pin configured as an output."""

    def __init__(self, pin: int) -> None:
        self.pin = pin
        self._gpio = None
        try:
            import RPi.GPIO as GPIO

            self._gpio = GPIO
            GPIO.setmode(GPIO.BCM)
            GPIO.setup(pin, GPIO.OUT)
            GPIO.output(pin, GPIO.LOW)
        except (ImportError, RuntimeError) as e:
            logger.warning("GPIO not available for pin %d: %s", pin, e)

    def read(self) -> int:
        if self._gpio is None:
            raise ProviderFault(f"GPIO pin {self.pin} unavailable")
        return int(self._gpio.input(self.pin))

    def write(self, level: int) -> None:
        if self._gpio is None:
            raise ProviderFault(f"GPIO pin {self.pin} unavailable")
        self._gpio.output(self.pin, self._gpio.HIGH if level else self._gpio.LOW)

    def close(self) -> None:
        if self._gpio:
            self._gpio.output(self.pin, self._gpio.LOW)
            self._gpio.cleanup(self.pin)


class LocalActuator(Provider):
    """Binary actuator attached to an :class:`OutputLine`."""

    kind = ProviderKind.LOCAL_ACTUATOR

    def __init__(self, provider_id: str, line: OutputLine) -> None:
        super().__init__(provider_id)
        self.line = line

    async def get(self) -> ProviderState:
        level = await self._call(self.line.read)
        return self._state(level)

    async def set(self, value: Level) -> ProviderState:
        target = 1 if value else 0
        await self._call(self.line.write, target)
        return self._state(target)

    async def aclose(self) -> None:
        self.line.close()

    def _state(self, level: int) -> ProviderState:
        pin = getattr(self.line, "pin", None)
        return ProviderState(self.id, bool(level), {"line": pin} if pin is not None else {})

    async def _call(self, func, *args):
        # Line drivers block; keep them off the event loop.
        try:
            return await asyncio.to_thread(func, *args)
        except ProviderFault:
            raise
        except Exception as exc:
            raise ProviderFault(f"Output line for {self.id} failed: {exc}") from exc
