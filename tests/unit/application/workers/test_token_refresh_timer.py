"""Tests for TokenRefreshTimer."""

import asyncio
import logging
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from spotkeeper.application.workers import TokenRefreshTimer


async def drain() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestTokenRefreshTimer:
    """Test arming, firing and cancelling."""

    async def test_fires_with_armed_generation(self, now: datetime) -> None:
        callback = AsyncMock()
        timer = TokenRefreshTimer(callback, clock=lambda: now)

        timer.schedule(now - timedelta(seconds=5), generation=7)
        assert timer.is_scheduled
        await drain()

        callback.assert_awaited_once_with(7)
        assert not timer.is_scheduled
        assert timer.fire_at is None

    async def test_cancel_prevents_fire(self, now: datetime) -> None:
        callback = AsyncMock()
        timer = TokenRefreshTimer(callback, clock=lambda: now)

        timer.schedule(now, generation=1)
        timer.cancel()
        await drain()

        callback.assert_not_called()
        assert not timer.is_scheduled

    async def test_rescheduling_replaces_pending_fire(self, now: datetime) -> None:
        callback = AsyncMock()
        timer = TokenRefreshTimer(callback, clock=lambda: now)

        timer.schedule(now + timedelta(hours=1), generation=1)
        timer.schedule(now, generation=2)
        await drain()

        callback.assert_awaited_once_with(2)

    async def test_future_fire_is_pending(self, now: datetime) -> None:
        timer = TokenRefreshTimer(AsyncMock(), clock=lambda: now)
        fire_at = now + timedelta(minutes=58)

        timer.schedule(fire_at, generation=1)

        assert timer.fire_at == fire_at
        timer.cancel()

    async def test_callback_can_rearm_from_inside_the_fire(self, now: datetime) -> None:
        timer: TokenRefreshTimer
        fired: list[int] = []

        async def callback(generation: int) -> None:
            fired.append(generation)
            timer.schedule(now + timedelta(hours=1), generation + 1)

        timer = TokenRefreshTimer(callback, clock=lambda: now)
        timer.schedule(now, generation=1)
        await drain()

        assert fired == [1]
        assert timer.is_scheduled
        timer.cancel()

    async def test_callback_failure_is_logged(
        self, now: datetime, caplog: pytest.LogCaptureFixture
    ) -> None:
        timer = TokenRefreshTimer(AsyncMock(side_effect=RuntimeError("boom")), clock=lambda: now)

        with caplog.at_level(logging.ERROR):
            timer.schedule(now, generation=1)
            await drain()

        assert "Scheduled token refresh failed" in caplog.text

    def test_cancel_without_schedule_is_fine(self) -> None:
        timer = TokenRefreshTimer(AsyncMock())
        timer.cancel()
        assert not timer.is_scheduled
