"""Tests for the safety timer state machine."""

from __future__ import annotations

import asyncio

import pytest

from mechabus.errors import InternalFailure
from mechabus.providers import ProviderState


class Harness:
    """Records forced shutoffs and announcements."""

    def __init__(self, fail: bool = False) -> None:
        self.forced: list[str] = []
        self.announced: list[ProviderState] = []
        self.fail = fail

    async def force_off(self, provider_id: str) -> ProviderState:
        self.forced.append(provider_id)
        if self.fail:
            raise InternalFailure("line stuck", provider_id)
        return ProviderState(provider_id, False)

    async def announce(self, state: ProviderState) -> None:
        self.announced.append(state)


def _controller(harness: Harness, limit: float = 0.05, **kwargs):
    from mechabus.safety_timer import SafetyTimerController

    return SafetyTimerController(
        {"pump": limit}, harness.force_off, harness.announce, **kwargs
    )


class TestSafetyTimer:
    @pytest.mark.asyncio
    async def test_expiry_forces_off_once(self):
        h = Harness()
        ctl = _controller(h)
        ctl.observe(ProviderState("pump", True))
        assert ctl.is_armed("pump")

        await asyncio.sleep(0.2)

        assert h.forced == ["pump"]
        assert [s.to_dict() for s in h.announced] == [{"id": "pump", "on": False}]
        assert ctl.pending() == {}

    @pytest.mark.asyncio
    async def test_disarm_before_deadline(self):
        h = Harness()
        ctl = _controller(h)
        ctl.observe(ProviderState("pump", True))
        ctl.observe(ProviderState("pump", False))
        await asyncio.sleep(0.15)
        assert h.forced == []
        assert h.announced == []
        assert ctl.pending() == {}

    @pytest.mark.asyncio
    async def test_repeated_on_does_not_rearm(self):
        h = Harness()
        ctl = _controller(h, limit=0.1)
        ctl.observe(ProviderState("pump", True))
        deadline = ctl.pending()["pump"]
        await asyncio.sleep(0.02)
        ctl.observe(ProviderState("pump", 1))
        assert ctl.pending()["pump"] == deadline
        await asyncio.sleep(0.2)
        assert h.forced == ["pump"]

    @pytest.mark.asyncio
    async def test_duplicate_off_is_noop(self):
        h = Harness()
        ctl = _controller(h)
        ctl.observe(ProviderState("pump", False))
        ctl.observe(ProviderState("pump", False))
        assert ctl.pending() == {}

    @pytest.mark.asyncio
    async def test_untimed_actuator_ignored(self):
        h = Harness()
        ctl = _controller(h)
        ctl.observe(ProviderState("porch", True))
        assert ctl.pending() == {}

    @pytest.mark.asyncio
    async def test_past_deadline_fires_immediately(self):
        h = Harness()
        now = [1000.0]
        ctl = _controller(h, limit=60, clock=lambda: now[0])
        ctl.observe(ProviderState("pump", True))
        # Simulate an expiry that never ran.
        entry = ctl._entries["pump"]
        entry.task.cancel()
        await asyncio.sleep(0)
        now[0] += 120

        ctl.observe(ProviderState("pump", True))
        await asyncio.sleep(0.05)

        assert h.forced == ["pump"]
        assert ctl.pending() == {}

    @pytest.mark.asyncio
    async def test_failed_shutoff_returns_to_idle(self):
        h = Harness(fail=True)
        ctl = _controller(h)
        ctl.observe(ProviderState("pump", True))
        await asyncio.sleep(0.2)
        assert h.forced == ["pump"]
        assert h.announced == []
        assert ctl.pending() == {}

    @pytest.mark.asyncio
    async def test_rearm_after_expiry(self):
        h = Harness()
        ctl = _controller(h)
        ctl.observe(ProviderState("pump", True))
        await asyncio.sleep(0.15)
        ctl.observe(ProviderState("pump", True))
        assert ctl.is_armed("pump")
        await asyncio.sleep(0.15)
        assert h.forced == ["pump", "pump"]

    @pytest.mark.asyncio
    async def test_close_cancels_pending(self):
        h = Harness()
        ctl = _controller(h)
        ctl.observe(ProviderState("pump", True))
        await ctl.close()
        await asyncio.sleep(0.1)
        assert h.forced == []
        assert ctl.pending() == {}
