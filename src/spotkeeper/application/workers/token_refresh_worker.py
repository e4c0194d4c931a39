"""Token Refresh Timer - refreshes the access token shortly before it expires.

Hey future me - this is a ONE-SHOT timer, not a polling loop!

Spotify access tokens live one hour. Instead of waking up every N seconds to ask "expiring yet?",
AuthSessionManager arms this timer for (expiration_date - safety margin). When it fires, the
manager refreshes and re-arms it for the NEW expiration. Deauthorizing cancels it.

The timer passes the session GENERATION it was armed for back to the callback. If the user logged
out (or switched accounts) while the sleep was pending and cancellation lost the race, the
manager sees a stale generation and ignores the fire.

Lifecycle:
- Armed by AuthSessionManager.schedule_auto_refresh()
- Runs as a single asyncio task (re-arming replaces the task)
- Cancelled by cancel() on deauthorize / close
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TokenRefreshTimer:
    """One-shot asyncio timer that calls back with the generation it was armed for."""

    def __init__(
        self,
        callback: Callable[[int], Awaitable[None]],
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the timer.

        Args:
            callback: Coroutine function called with the armed generation
            clock: Returns "now" (tests freeze time with this)
        """
        self._callback = callback
        self._clock = clock or _utc_now
        self._task: asyncio.Task[None] | None = None
        self._fire_at: datetime | None = None

    @property
    def is_scheduled(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def fire_at(self) -> datetime | None:
        """When the pending fire is due (None if not armed)."""
        return self._fire_at if self.is_scheduled else None

    def schedule(self, fire_at: datetime, generation: int) -> None:
        """Arm the timer, replacing any pending fire.

        Must be called from a running event loop.
        """
        self.cancel()
        delay = max(0.0, (fire_at - self._clock()).total_seconds())
        self._fire_at = fire_at
        self._task = asyncio.create_task(
            self._run(delay, generation), name=f"token-refresh-{generation}"
        )
        logger.debug(
            "Token refresh armed for %s (in %.0fs, generation %d)",
            fire_at.isoformat(),
            delay,
            generation,
        )

    def cancel(self) -> None:
        """Disarm the timer. Safe to call when nothing is armed."""
        task = self._task
        self._task = None
        self._fire_at = None
        if task is None or task.done():
            return
        task.cancel()
        logger.debug("Token refresh timer cancelled")

    # Yo, once the sleep is over the fire is "spent": we detach ourselves BEFORE calling back. The
    # callback usually re-arms the timer (refresh succeeded), and schedule() must not cancel the
    # task that is still running that very callback.
    async def _run(self, delay: float, generation: int) -> None:
        await asyncio.sleep(delay)
        if self._task is asyncio.current_task():
            self._task = None
            self._fire_at = None
        try:
            await self._callback(generation)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Log but don't crash - the next successful refresh re-arms us
            logger.exception("Scheduled token refresh failed: %s", e)
