"""
Tests for advisory slot reservation and detached side channels.
"""

import logging

import pytest

from core import background
from core.slots import SlotReservationClient


class TestSlotReservation:

    @pytest.mark.asyncio
    async def test_reserve_uses_default_cooldown(self, profiles):
        slots = SlotReservationClient(profiles, cooldown_seconds=10)

        await slots.reserve(None, "https://s1.example.net")

        profiles.request_generation_slot.assert_awaited_once_with(10, "https://s1.example.net")

    @pytest.mark.asyncio
    async def test_reserve_never_raises(self, profiles):
        profiles.request_generation_slot.side_effect = RuntimeError("coordinator down")
        slots = SlotReservationClient(profiles)

        await slots.reserve(5, "https://s1.example.net")

        profiles.request_generation_slot.assert_awaited_once_with(5, "https://s1.example.net")

    @pytest.mark.asyncio
    async def test_detached_reservation(self, profiles):
        slots = SlotReservationClient(profiles, cooldown_seconds=3)

        task = slots.reserve_detached("https://s2.example.net")
        assert task is not None
        await background.drain()

        assert task.done()
        profiles.request_generation_slot.assert_awaited_once_with(3, "https://s2.example.net")

    def test_no_coordinator_is_a_no_op(self):
        assert SlotReservationClient(None).reserve_detached("https://s1.example.net") is None


class TestDetachedTasks:

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, caplog):
        async def boom():
            raise ValueError("side channel failed")

        with caplog.at_level(logging.WARNING, logger="core.background"):
            task = background.spawn_detached(boom(), name="usage:test")
            await background.drain()

        assert task.done()
        assert background.pending_count() == 0
        assert "usage:test" in caplog.text
        assert "side channel failed" in caplog.text
