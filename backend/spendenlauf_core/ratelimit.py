from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple


logger = logging.getLogger(__name__)

HOUR = 60 * 60
DAY = 24 * HOUR


class CounterStore(Protocol):
    def get(self, key: str, now: float) -> int: ...

    def incr(self, key: str, ttl: float, now: float) -> int: ...

    def sweep(self, now: float) -> None: ...


class MemoryCounterStore:
    """Process-local counters with expiry.

    Only good for a single process; several API workers need a shared store
    with the same three methods.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[int, float]] = {}

    def get(self, key: str, now: float) -> int:
        entry = self._entries.get(key)
        if entry is None or entry[1] <= now:
            return 0
        return entry[0]

    def incr(self, key: str, ttl: float, now: float) -> int:
        count = self.get(key, now) + 1
        self._entries[key] = (count, now + ttl)
        return count

    def sweep(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class RateLimitDecision:
    allowed: bool
    error: Optional[str] = None


class RateLimiter:
    """Caps submissions per identifier per clock hour and clock day."""

    def __init__(
        self,
        store: CounterStore | None = None,
        per_hour: int | None = None,
        per_day: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store if store is not None else MemoryCounterStore()
        self.per_hour = per_hour if per_hour is not None else int(os.getenv("RATE_LIMIT_PER_HOUR", "5"))
        self.per_day = per_day if per_day is not None else int(os.getenv("RATE_LIMIT_PER_DAY", "10"))
        self.clock = clock
        # API handlers run on a thread pool; check and record must not interleave
        self._lock = threading.Lock()

    @staticmethod
    def _keys(identifier: str, now: float) -> Tuple[str, str]:
        return (
            f"{identifier}_hourly_{int(now // HOUR)}",
            f"{identifier}_daily_{int(now // DAY)}",
        )

    def check(self, identifier: str) -> RateLimitDecision:
        now = self.clock()
        self.store.sweep(now)
        hourly_key, daily_key = self._keys(identifier, now)

        if self.store.get(hourly_key, now) >= self.per_hour:
            return RateLimitDecision(
                False,
                "Zu viele Anmeldungen in der letzten Stunde. Bitte versuchen Sie es später erneut.",
            )
        if self.store.get(daily_key, now) >= self.per_day:
            return RateLimitDecision(
                False,
                "Zu viele Anmeldungen heute. Bitte versuchen Sie es morgen erneut.",
            )
        return RateLimitDecision(True)

    def record(self, identifier: str) -> None:
        now = self.clock()
        hourly_key, daily_key = self._keys(identifier, now)
        self.store.incr(hourly_key, DAY, now)
        self.store.incr(daily_key, DAY, now)

    def allow(self, identifier: str) -> RateLimitDecision:
        """Check the limits and count the attempt when it is allowed."""
        with self._lock:
            decision = self.check(identifier)
            if decision.allowed:
                self.record(identifier)
        if not decision.allowed:
            logger.info("Rate limit reached for %s", identifier)
        return decision
