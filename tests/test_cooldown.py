"""Tests for the risky-mode cooldown."""

from datetime import timedelta

import pytest

from conftest import NOW
from volleyprono.predictions.cooldown import (
    can_use_risky,
    cooldown_status,
    get_last_used,
    mark_risky_used,
    release_risky,
)


class TestCooldownStatus:
    def test_never_used(self):
        status = cooldown_status(None, NOW)
        assert status.allowed
        assert status.next_available is None

    def test_six_days_later_denied(self):
        last_used = NOW - timedelta(days=6)
        status = cooldown_status(last_used, NOW)
        assert not status.allowed
        assert status.next_available == last_used + timedelta(days=7)

    def test_one_second_short_denied(self):
        status = cooldown_status(NOW - timedelta(days=7) + timedelta(seconds=1), NOW)
        assert not status.allowed

    def test_exactly_seven_days_allowed(self):
        assert cooldown_status(NOW - timedelta(days=7), NOW).allowed

    def test_custom_window(self):
        assert cooldown_status(NOW - timedelta(days=2), NOW, cooldown_days=2).allowed


class TestCooldownStore:
    @pytest.mark.asyncio
    async def test_mark_then_check(self, session, group):
        await mark_risky_used(session, user_id=7, group_id=group.id, now=NOW)
        await session.commit()

        status = await can_use_risky(session, 7, group.id, NOW + timedelta(days=3))
        assert not status.allowed
        assert status.next_available == NOW + timedelta(days=7)

        status = await can_use_risky(session, 7, group.id, NOW + timedelta(days=7))
        assert status.allowed

    @pytest.mark.asyncio
    async def test_mark_updates_existing_row(self, session, group):
        await mark_risky_used(session, 7, group.id, NOW)
        await session.commit()
        later = NOW + timedelta(days=8)
        await mark_risky_used(session, 7, group.id, later)
        await session.commit()

        assert await get_last_used(session, 7, group.id) == later

    @pytest.mark.asyncio
    async def test_scoped_per_group(self, session, group):
        await mark_risky_used(session, 7, group.id, NOW)
        await session.commit()

        assert (await can_use_risky(session, 7, group.id + 1, NOW)).allowed
        assert (await can_use_risky(session, 8, group.id, NOW)).allowed

    @pytest.mark.asyncio
    async def test_release(self, session, group):
        await mark_risky_used(session, 7, group.id, NOW)
        await session.commit()
        await release_risky(session, 7, group.id)
        await session.commit()

        assert await get_last_used(session, 7, group.id) is None
