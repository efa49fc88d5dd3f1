from __future__ import annotations

import copy
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import pytest

from spendenlauf_core import RateLimiter, RegistrationStore, RegistrationWorkflow
from spendenlauf_core.models import TableNames
from spendenlauf_core.supabase import BackendError


EVENT_ID = "event-2025"


class FakeBackend:
    """In-memory stand-in for :class:`SupabaseBackend` that records every call."""

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            "events": [],
            "teams": [],
            "participants": [],
            "guardians": [],
            "timeslots": [],
        }
        self.calls: List[Tuple[str, str, Any]] = []
        self._failures: Dict[Tuple[str, str], Exception] = {}
        self._sequence = 0

    # ---- test helpers -----------------------------------------------------

    def seed(self, table: str, **row: Any) -> Dict[str, Any]:
        self.tables[table].append(dict(row))
        return row

    def fail_on(self, method: str, table: str, exc: Exception | None = None) -> None:
        self._failures[(method, table)] = exc or BackendError("boom", status_code=500)

    def writes(self) -> List[Tuple[str, str, Any]]:
        return [call for call in self.calls if call[0] in ("insert", "update", "delete")]

    def _maybe_fail(self, method: str, table: str) -> None:
        exc = self._failures.get((method, table))
        if exc is not None:
            raise exc

    def _next_id(self, table: str) -> str:
        self._sequence += 1
        return f"{table}-{self._sequence}"

    @staticmethod
    def _matches(row: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
        return all(row.get(column) == value for column, value in (filters or {}).items())

    # ---- backend interface ----------------------------------------------

    def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
    ) -> List[Dict[str, Any]]:
        self.calls.append(("select", table, dict(filters or {})))
        self._maybe_fail("select", table)
        rows = [copy.deepcopy(row) for row in self.tables[table] if self._matches(row, filters)]
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda row: str(row.get(column) or ""), reverse=direction == "desc")
        if limit is not None:
            rows = rows[:limit]
        return rows

    def count(self, table: str, filters: Mapping[str, Any] | None = None) -> int:
        self.calls.append(("count", table, dict(filters or {})))
        self._maybe_fail("count", table)
        return sum(1 for row in self.tables[table] if self._matches(row, filters))

    def insert(self, table: str, rows: Any) -> List[Dict[str, Any]]:
        batch = [rows] if isinstance(rows, dict) else list(rows)
        self.calls.append(("insert", table, copy.deepcopy(batch)))
        self._maybe_fail("insert", table)
        created = []
        for row in batch:
            stored = dict(row)
            stored["id"] = self._next_id(table)
            stored["created_at"] = f"2025-05-01T10:00:{self._sequence:02d}"
            if table == "teams":
                stored["readable_team_id"] = f"T{self._sequence:03d}"
            created.append(stored)
        self.tables[table].extend(created)
        return copy.deepcopy(created)

    def update(self, table: str, row_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("update", table, (row_id, dict(values))))
        self._maybe_fail("update", table)
        for row in self.tables[table]:
            if row.get("id") == row_id:
                row.update(values)
                return copy.deepcopy(row)
        raise BackendError(f"No {table} row with id {row_id}", status_code=404)

    def delete(self, table: str, row_id: str) -> None:
        self.calls.append(("delete", table, row_id))
        self._maybe_fail("delete", table)
        self.tables[table] = [row for row in self.tables[table] if row.get("id") != row_id]

    def rpc(self, name: str, args: Dict[str, Any] | None = None) -> Any:
        args = args or {}
        self.calls.append(("rpc", name, dict(args)))
        self._maybe_fail("rpc", name)
        if name == "lookup_team_by_id_or_name":
            wanted = str(args["team_identifier"]).lower()
            return [
                copy.deepcopy(row)
                for row in self.tables["teams"]
                if str(row.get("readable_team_id") or "").lower() == wanted
                or str(row.get("name") or "").lower() == wanted
            ]
        if name == "ensure_children_timeslot_exists":
            for row in self.tables["timeslots"]:
                if row.get("event_id") == args.get("p_event_id") and row.get("type") == "children":
                    return row["id"]
            slot = {
                "id": self._next_id("timeslots"),
                "event_id": args.get("p_event_id"),
                "name": "Kinderlauf",
                "time": "13:30:00",
                "type": "children",
                "max_participants": 0,
            }
            self.tables["timeslots"].append(slot)
            return slot["id"]
        raise AssertionError(f"unexpected rpc {name}")


class RecordingNotifier:
    def __init__(self, outcome: bool = True, error: Exception | None = None) -> None:
        self.outcome = outcome
        self.error = error
        self.sent: List[Any] = []

    def dispatch(self, requests) -> List[bool]:
        self.sent.extend(requests)
        if self.error is not None:
            raise self.error
        return [self.outcome] * len(requests)


@pytest.fixture
def backend() -> FakeBackend:
    fake = FakeBackend()
    fake.seed("events", id=EVENT_ID, name="2. Lüneburger Spendenlauf", date="2025-06-14", registration_open=True)
    fake.seed("events", id="event-2024", name="1. Lüneburger Spendenlauf", date="2024-06-15", registration_open=False)
    fake.seed(
        "timeslots",
        id="slot-morning",
        event_id=EVENT_ID,
        name="Durchlauf 1",
        time="10:00:00",
        type="normal",
        max_participants=100,
    )
    fake.seed(
        "timeslots",
        id="slot-small",
        event_id=EVENT_ID,
        name="Durchlauf 2",
        time="11:30:00",
        type="normal",
        max_participants=2,
    )
    return fake


@pytest.fixture
def store(backend: FakeBackend) -> RegistrationStore:
    return RegistrationStore(backend=backend, tables=TableNames())  # type: ignore[arg-type]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_workflow(store: RegistrationStore, notifier: RecordingNotifier) -> Callable[..., RegistrationWorkflow]:
    def factory(per_hour: int = 5, per_day: int = 10, notifier_override: Optional[RecordingNotifier] = None):
        limiter = RateLimiter(per_hour=per_hour, per_day=per_day, clock=lambda: 1_750_000_000.0)
        return RegistrationWorkflow(store, limiter, notifier_override or notifier)  # type: ignore[arg-type]

    return factory


@pytest.fixture
def workflow(make_workflow) -> RegistrationWorkflow:
    return make_workflow()
