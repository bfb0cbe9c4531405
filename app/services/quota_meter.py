from __future__ import annotations

import time
from collections import deque
from typing import Callable, Deque, Optional

from app.models.domain import QuotaSnapshot


class QuotaMeter:
    """Sliding-window counter of provider attempts and in-flight calls.

    Only flags approaching load through ``is_near_limit``; it never rejects.
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        soft_limit: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.window_seconds = window_seconds
        self.soft_limit = soft_limit
        self._clock = clock
        self._attempts: Deque[float] = deque()
        self._in_flight = 0
        self._last_rate_limit_at: Optional[float] = None
        self._last_success_at: Optional[float] = None

    def note_attempt(self) -> QuotaSnapshot:
        now = self._clock()
        self._prune(now)
        self._attempts.append(now)
        self._in_flight += 1
        return self.get_snapshot()

    def note_success(self) -> QuotaSnapshot:
        self._release()
        self._last_success_at = self._clock()
        return self.get_snapshot()

    def note_failure(self) -> QuotaSnapshot:
        self._release()
        return self.get_snapshot()

    def note_rate_limited(self) -> QuotaSnapshot:
        self._release()
        self._last_rate_limit_at = self._clock()
        return self.get_snapshot()

    def get_snapshot(self) -> QuotaSnapshot:
        self._prune(self._clock())
        count = len(self._attempts)
        return QuotaSnapshot(
            requests_in_window=count,
            in_flight=self._in_flight,
            last_rate_limit_at=self._last_rate_limit_at,
            last_success_at=self._last_success_at,
            soft_limit=self.soft_limit,
            is_near_limit=count >= self.soft_limit,
        )

    def _release(self) -> None:
        self._in_flight = max(0, self._in_flight - 1)

    def _prune(self, now: float) -> None:
        while self._attempts and now - self._attempts[0] > self.window_seconds:
            self._attempts.popleft()
