"""
Requests-per-minute pacing for the API gateway.

The pacer keeps a rolling "next allowed slot". Each call takes
``max(now, previous_slot + 60 / rpm)`` as its slot and commits it before
suspending, so concurrent callers always get distinct slots.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RpmPacer:
    """Minimum-interval pacing between request starts."""

    def __init__(self, requests_per_minute: int,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        """
        Args:
            requests_per_minute: Allowed request starts per minute; 0 disables pacing
            clock: Monotonic time source in seconds
            sleep: Coroutine used to wait
        """
        self._clock = clock
        self._sleep = sleep
        self._last_slot: Optional[float] = None
        self.requests_per_minute = requests_per_minute

    @property
    def interval(self) -> float:
        """Seconds between two request starts."""
        if self.requests_per_minute <= 0:
            return 0.0
        return 60.0 / self.requests_per_minute

    def set_requests_per_minute(self, requests_per_minute: int) -> None:
        self.requests_per_minute = requests_per_minute

    def reserve(self) -> float:
        """
        Claim the next slot and return how long to wait for it.

        Runs without suspending, so the compute and the commit of the slot
        cannot interleave with another caller.
        """
        now = self._clock()
        if self._last_slot is None or self.interval == 0.0:
            slot = now
        else:
            slot = max(now, self._last_slot + self.interval)
        self._last_slot = slot
        return slot - now

    async def acquire(self) -> None:
        """Wait until this caller's slot is reached."""
        delay = self.reserve()
        if delay > 0:
            logger.debug(f"Pacing request for {delay:.2f}s ({self.requests_per_minute} RPM)")
            await self._sleep(delay)
