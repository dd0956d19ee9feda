"""Client-side request quota tracking for rate-limited backends."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

MINUTE_SECONDS = 60.0
DAY_SECONDS = 24 * 3_600.0


@dataclass(slots=True)
class QuotaDecision:
    allowed: bool
    reason: str | None = None
    wait_seconds: float = 0.0


@dataclass(slots=True)
class QuotaUsage:
    requests_this_minute: int
    requests_today: int
    minute_limit: int
    daily_limit: int

    @property
    def minute_remaining(self) -> int:
        return max(0, self.minute_limit - self.requests_this_minute)

    @property
    def daily_remaining(self) -> int:
        return max(0, self.daily_limit - self.requests_today)


class QuotaMonitor:
    """Sliding per-minute and per-day request windows.

    `can_make_request` never blocks; callers turn a refusal into a quota
    error so routing can move on to another backend.
    """

    def __init__(
        self,
        *,
        requests_per_minute: int,
        requests_per_day: int,
        warning_ratio: float = 0.8,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._minute_limit = requests_per_minute
        self._daily_limit = requests_per_day
        self._warning_ratio = warning_ratio
        self._clock = clock
        self._requests: deque[float] = deque()
        self._warned = False

    def can_make_request(self) -> QuotaDecision:
        now = self._clock()
        self._expire(now)
        if len(self._requests) >= self._daily_limit:
            return QuotaDecision(
                allowed=False,
                reason=f"daily request limit of {self._daily_limit} reached",
                wait_seconds=self._requests[0] + DAY_SECONDS - now,
            )
        recent = self._recent(now)
        if len(recent) >= self._minute_limit:
            return QuotaDecision(
                allowed=False,
                reason=f"per-minute request limit of {self._minute_limit} reached",
                wait_seconds=recent[0] + MINUTE_SECONDS - now,
            )
        return QuotaDecision(allowed=True)

    def track_request(self) -> None:
        now = self._clock()
        self._expire(now)
        self._requests.append(now)
        used = len(self._requests)
        if used >= self._daily_limit * self._warning_ratio and not self._warned:
            self._warned = True
            logger.warning("Daily quota at %d of %d requests", used, self._daily_limit)

    def usage(self) -> QuotaUsage:
        now = self._clock()
        self._expire(now)
        return QuotaUsage(
            requests_this_minute=len(self._recent(now)),
            requests_today=len(self._requests),
            minute_limit=self._minute_limit,
            daily_limit=self._daily_limit,
        )

    def _expire(self, now: float) -> None:
        while self._requests and now - self._requests[0] >= DAY_SECONDS:
            self._requests.popleft()
        if len(self._requests) < self._daily_limit * self._warning_ratio:
            self._warned = False

    def _recent(self, now: float) -> list[float]:
        return [stamp for stamp in self._requests if now - stamp < MINUTE_SECONDS]
