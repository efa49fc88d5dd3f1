from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

from spendenlauf_core.ratelimit import DAY, HOUR, MemoryCounterStore, RateLimiter


class _Clock:
    def __init__(self, start: float) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _limiter(clock: _Clock, store: MemoryCounterStore | None = None) -> RateLimiter:
    return RateLimiter(store=store, per_hour=5, per_day=10, clock=clock)


def test_sixth_attempt_in_hour_is_rejected() -> None:
    clock = _Clock(100 * DAY + 60)
    limiter = _limiter(clock)

    for _ in range(5):
        assert limiter.allow("client").allowed

    decision = limiter.allow("client")
    assert not decision.allowed
    assert decision.error == "Zu viele Anmeldungen in der letzten Stunde. Bitte versuchen Sie es später erneut."

    clock.advance(HOUR)
    assert limiter.allow("client").allowed


def test_daily_cap_applies_across_hours() -> None:
    clock = _Clock(100 * DAY + 60)
    limiter = _limiter(clock)

    for _ in range(5):
        assert limiter.allow("client").allowed
    clock.advance(HOUR)
    for _ in range(5):
        assert limiter.allow("client").allowed
    clock.advance(HOUR)

    decision = limiter.allow("client")
    assert not decision.allowed
    assert decision.error == "Zu viele Anmeldungen heute. Bitte versuchen Sie es morgen erneut."

    clock.advance(DAY)
    assert limiter.allow("client").allowed


def test_rejected_attempts_are_not_counted() -> None:
    clock = _Clock(100 * DAY)
    store = MemoryCounterStore()
    limiter = _limiter(clock, store)

    for _ in range(8):
        limiter.allow("client")

    hourly = f"client_hourly_{int(clock.now // HOUR)}"
    assert store.get(hourly, clock.now) == 5


def test_identifiers_are_independent() -> None:
    clock = _Clock(100 * DAY)
    limiter = _limiter(clock)

    for _ in range(5):
        limiter.allow("a")

    assert not limiter.check("a").allowed
    assert limiter.check("b").allowed


def test_expired_counters_are_swept() -> None:
    clock = _Clock(100 * DAY)
    store = MemoryCounterStore()
    limiter = _limiter(clock, store)

    limiter.allow("client")
    assert len(store) == 2

    clock.advance(2 * DAY)
    limiter.check("client")
    assert len(store) == 0


def test_limits_read_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_PER_HOUR", "2")
    monkeypatch.setenv("RATE_LIMIT_PER_DAY", "3")

    limiter = RateLimiter(clock=_Clock(100 * DAY))

    assert limiter.per_hour == 2
    assert limiter.per_day == 3


class _SlowStore(MemoryCounterStore):
    """Widens the gap between reading and incrementing a counter."""

    def get(self, key: str, now: float) -> int:
        count = super().get(key, now)
        time.sleep(0.01)
        return count


def test_concurrent_attempts_respect_hourly_cap() -> None:
    limiter = RateLimiter(store=_SlowStore(), per_hour=5, per_day=10, clock=_Clock(100 * DAY))
    barrier = threading.Barrier(12)

    def attempt(_: int) -> bool:
        barrier.wait()
        return limiter.allow("client").allowed

    with ThreadPoolExecutor(max_workers=12) as pool:
        outcomes = list(pool.map(attempt, range(12)))

    assert outcomes.count(True) == 5
