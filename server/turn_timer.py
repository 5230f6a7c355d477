"""
Per-table turn timer for timed games.

One TurnTimer belongs to each table and holds at most one pending asyncio
task. Arming it for a new turn replaces the previous turn's task. The
callback receives the seat and the turn number captured when the timer was
armed; deciding whether that turn is still current is the callback's job,
under the table lock.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

ExpireCallback = Callable[[int, int], Awaitable[None]]


class TurnTimer:
    """Schedules the timeout for the player whose turn it is."""

    def __init__(self, on_expire: ExpireCallback) -> None:
        self.on_expire = on_expire
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self, seat: int, turn_num: int, delay_ms: int) -> None:
        """
        Fire `on_expire(seat, turn_num)` after `delay_ms` milliseconds.

        Replaces any pending timer. Must be called from a running event loop.
        """
        self.cancel()
        self._task = asyncio.create_task(self._run(seat, turn_num, max(delay_ms, 0)))

    def cancel(self) -> None:
        """Cancel the pending timer, unless it is the task calling us."""
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()

    async def _run(self, seat: int, turn_num: int, delay_ms: int) -> None:
        try:
            await asyncio.sleep(delay_ms / 1000)
        except asyncio.CancelledError:
            return
        try:
            await self.on_expire(seat, turn_num)
        except Exception as e:
            logger.error(f"Turn timer callback failed for seat {seat}, turn {turn_num}: {e}", exc_info=True)
