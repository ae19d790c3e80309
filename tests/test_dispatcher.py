"""Tests for the dispatcher and intent parsing."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from conftest import FakeLine
from mechabus.dispatcher import Dispatcher, Intent, flip
from mechabus.errors import BadRequest, InternalFailure, NotFound, Unreachable
from mechabus.providers import (
    LocalActuator,
    ProviderRegistry,
    ProviderUnavailable,
    SimulatedSwitch,
)


class TestIntent:
    def test_absolute_on(self):
        assert Intent.from_data({"id": "x", "on": True}) == Intent(value=True)

    def test_state_alias(self):
        assert Intent.from_data({"id": "x", "state": 0}) == Intent(value=0)

    def test_numeric_string(self):
        assert Intent.from_data({"state": "1"}) == Intent(value=1)

    def test_toggle(self):
        assert Intent.from_data({"toggle": 1}) == Intent(toggle=True)

    def test_action_toggle(self):
        assert Intent.from_data({"action": "toggle"}) == Intent(toggle=True)

    def test_neither_is_bad_request(self):
        with pytest.raises(BadRequest) as info:
            Intent.from_data({"id": "pump"})
        assert info.value.code == 400
        assert info.value.provider_id == "pump"

    def test_toggle_zero_is_not_a_toggle(self):
        with pytest.raises(BadRequest):
            Intent.from_data({"toggle": 0})

    def test_both_is_bad_request(self):
        with pytest.raises(BadRequest):
            Intent.from_data({"on": True, "toggle": 1})

    def test_garbage_value(self):
        with pytest.raises(BadRequest, match="Invalid state"):
            Intent.from_data({"state": "bright"})


def test_flip():
    assert flip(True) is False
    assert flip(False) is True
    assert flip(0) == 1
    assert flip(200) == 0


class TestGetState:
    @pytest.mark.asyncio
    async def test_known_ids_are_tagged(self, registry):
        d = Dispatcher(registry)
        for provider_id in registry.ids():
            state = await d.get_state(provider_id)
            assert state.id == provider_id

    @pytest.mark.asyncio
    async def test_unknown_never_contacts_backend(self, registry):
        d = Dispatcher(registry)
        with patch.object(SimulatedSwitch, "get", new_callable=AsyncMock) as get, \
                patch.object(SimulatedSwitch, "set", new_callable=AsyncMock) as set_:
            with pytest.raises(NotFound):
                await d.get_state("attic")
            with pytest.raises(NotFound):
                await d.set_state("attic", Intent(toggle=True))
        get.assert_not_called()
        set_.assert_not_called()

    @pytest.mark.asyncio
    async def test_remote_failure_is_unreachable(self):
        sw = SimulatedSwitch("porch", latency=0)
        d = Dispatcher(ProviderRegistry([sw]))
        with patch.object(sw, "get", AsyncMock(side_effect=ProviderUnavailable("timeout"))):
            with pytest.raises(Unreachable) as info:
                await d.get_state("porch")
        assert info.value.code == 502
        assert info.value.provider_id == "porch"

    @pytest.mark.asyncio
    async def test_local_failure_is_internal(self):
        d = Dispatcher(ProviderRegistry([LocalActuator("pump", FakeLine(fail=True))]))
        with pytest.raises(InternalFailure) as info:
            await d.get_state("pump")
        assert info.value.code == 500


class TestSetState:
    @pytest.mark.asyncio
    async def test_absolute(self, registry, pump_line):
        d = Dispatcher(registry)
        state = await d.set_state("pump", Intent(value=True))
        assert state.on is True
        assert pump_line.writes == [1]

    @pytest.mark.asyncio
    async def test_toggle_twice_restores(self, registry):
        d = Dispatcher(registry)
        for provider_id in ("porch", "garage", "pump"):
            before = (await d.get_state(provider_id)).on
            await d.set_state(provider_id, Intent(toggle=True))
            after = await d.set_state(provider_id, Intent(toggle=True))
            assert bool(after.on) == bool(before)

    @pytest.mark.asyncio
    async def test_observer_sees_state_before_return(self, registry):
        seen = []
        d = Dispatcher(registry, observer=seen.append)
        state = await d.set_state("pump", Intent(toggle=True))
        assert seen == [state]

    @pytest.mark.asyncio
    async def test_notify_false_skips_observer(self, registry):
        seen = []
        d = Dispatcher(registry, observer=seen.append)
        await d.set_state("pump", Intent(value=False), notify=False)
        assert seen == []

    @pytest.mark.asyncio
    async def test_failed_set_not_observed(self):
        seen = []
        d = Dispatcher(
            ProviderRegistry([LocalActuator("pump", FakeLine(fail=True))]),
            observer=seen.append,
        )
        with pytest.raises(InternalFailure):
            await d.set_state("pump", Intent(value=True))
        assert seen == []
