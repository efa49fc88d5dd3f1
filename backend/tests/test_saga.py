from __future__ import annotations

from typing import List

from spendenlauf_core.saga import Saga


def test_compensations_run_newest_first() -> None:
    calls: List[str] = []
    saga = Saga("signup")
    saga.on_failure("first", lambda: calls.append("first"))
    saga.on_failure("second", lambda: calls.append("second"))

    assert saga.compensate() == []
    assert calls == ["second", "first"]


def test_forward_order_when_requested() -> None:
    calls: List[str] = []
    saga = Saga("team", reverse=False)
    saga.on_failure("team", lambda: calls.append("team"))
    saga.on_failure("member", lambda: calls.append("member"))

    saga.compensate()
    assert calls == ["team", "member"]


def test_failing_step_does_not_stop_the_rest(caplog) -> None:
    calls: List[str] = []

    def broken() -> None:
        raise RuntimeError("connection reset")

    saga = Saga("children")
    saga.on_failure("delete guardian", lambda: calls.append("guardian"))
    saga.on_failure("delete team", broken)

    with caplog.at_level("ERROR"):
        failures = saga.compensate()

    assert calls == ["guardian"]
    assert failures == ["delete team: connection reset"]
    assert "partially applied" in caplog.text


def test_compensate_runs_each_step_once() -> None:
    calls: List[str] = []
    saga = Saga("signup")
    saga.on_failure("only", lambda: calls.append("only"))

    saga.compensate()
    saga.compensate()

    assert calls == ["only"]
