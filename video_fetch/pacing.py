"""Minimum spacing between the starts of successive downloads."""

import asyncio
import time
from typing import Awaitable, Callable, Optional

from .logger import TransferLogger
from .models import PacingSettings


class PacingState:
    """Start time of the most recent download, shared by every submission."""

    def __init__(self) -> None:
        self.last_download_start: Optional[float] = None


class PacingGate:
    """Suspends callers until enough time has passed since the previous download start.

    Waiters are queued on an asyncio lock so that submissions arriving in the
    same tick each measure their spacing from the one admitted before them.
    """

    def __init__(
        self,
        settings: Optional[PacingSettings] = None,
        state: Optional[PacingState] = None,
        logger: Optional[TransferLogger] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or PacingSettings()
        self.state = state or PacingState()
        self.logger = logger or TransferLogger()
        self._clock = clock
        self._sleep = sleep
        self._lock: Optional[asyncio.Lock] = None

    async def wait_for_slot(self) -> float:
        """Wait for a free slot. Returns the number of seconds waited."""
        if not self.settings.enabled:
            return 0.0

        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            waited = 0.0
            last_start = self.state.last_download_start
            elapsed = None if last_start is None else self._clock() - last_start
            if elapsed is not None and elapsed < self.settings.min_interval:
                waited = min(self.settings.min_interval - elapsed, self.settings.max_wait)
                self.logger.info(f"Waiting {waited:.1f}s before the next download")
                await self._sleep(waited)
            self.state.last_download_start = self._clock()
            return waited
