from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

Sleep = Callable[[float], Awaitable[None]]


class DispatchGate:
    """Caps concurrent provider calls and spaces out their start times.

    The semaphore bounds how many calls are in flight; the spacing gate puts
    a floor on the time between two consecutive dispatch starts, process
    wide, which the semaphore alone cannot express.
    """

    def __init__(
        self,
        max_parallel: int = 2,
        min_spacing_seconds: float = 0.0,
        release_delay_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.max_parallel = max(1, int(max_parallel or 1))
        self.min_spacing_seconds = max(0.0, float(min_spacing_seconds or 0.0))
        self.release_delay_seconds = max(0.0, float(release_delay_seconds or 0.0))
        self._clock = clock
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(self.max_parallel)
        self._spacing_lock = asyncio.Lock()
        self._last_start: Optional[float] = None
        self._active = 0
        self.log = logger or logging.getLogger(__name__)

    @property
    def active(self) -> int:
        return self._active

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one concurrency slot for the duration of a provider exchange."""
        async with self._semaphore:
            self._active += 1
            try:
                yield
            finally:
                if self.release_delay_seconds:
                    await self._sleep(self.release_delay_seconds)
                self._active -= 1

    async def wait_turn(self) -> None:
        """Block until the next dispatch is allowed to start."""
        async with self._spacing_lock:
            if self.min_spacing_seconds and self._last_start is not None:
                wait = self._last_start + self.min_spacing_seconds - self._clock()
                if wait > 0:
                    self.log.info("provider dispatch spacing wait", extra={"wait_seconds": round(wait, 3)})
                    await self._sleep(wait)
            self._last_start = self._clock()
