from __future__ import annotations

import threading
from typing import Any, Dict, List

from spendenlauf_core import notifications as notifications_module
from spendenlauf_core.models import Guardian, Participant, Team, Timeslot
from spendenlauf_core.notifications import (
    ConfirmationNotifier,
    ConfirmationRequest,
    children_confirmation,
    individual_confirmation,
    team_confirmations,
)


class _EdgeFunctionClient:
    posted: List[Dict[str, Any]] = []
    _lock = threading.Lock()

    def __init__(self, *args, **kwargs) -> None:
        pass

    def __enter__(self) -> "_EdgeFunctionClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - nothing to clean
        return None

    def post(self, endpoint: str, json: Dict[str, Any], headers: Dict[str, str]):
        with _EdgeFunctionClient._lock:
            _EdgeFunctionClient.posted.append({"endpoint": endpoint, "json": json, "headers": headers})
        request = notifications_module.httpx.Request("POST", endpoint)
        if json["email"].startswith("bounce"):
            return notifications_module.httpx.Response(200, request=request, json={"success": False, "error": "rejected"})
        if json["email"].startswith("down"):
            return notifications_module.httpx.Response(500, request=request, json={"error": "boom"})
        return notifications_module.httpx.Response(200, request=request, json={"success": True, "emailId": "m-1"})


def _slot() -> Timeslot:
    return Timeslot(id="slot-1", event_id="e1", name="Durchlauf 1", time="10:00:00")


def test_payload_uses_camel_case_and_skips_empty_fields() -> None:
    request = ConfirmationRequest(email="anna@gmx.de", first_name="Anna", registration_type="individual", start_time="10:00")

    assert request.to_payload() == {
        "firstName": "Anna",
        "email": "anna@gmx.de",
        "registrationType": "individual",
        "startTime": "10:00",
    }


def test_confirmation_builders() -> None:
    anna = Participant(event_id="e1", first_name="Anna", last_name="Schmidt", age=34, email="anna@gmx.de")
    individual = individual_confirmation(anna, _slot())
    assert individual.start_time == "10:00"

    team = Team(id="t1", event_id="e1", name="Die Läufer", readable_team_id="T001", shared_email=True, team_email="team@gmx.de")
    members = [
        Participant(event_id="e1", first_name="Jonas", last_name="Becker", age=28, email="team@gmx.de"),
        Participant(event_id="e1", first_name="Lea", last_name="Wagner", age=31, email="team@gmx.de"),
    ]
    requests = team_confirmations(members, team, _slot())
    assert [r.first_name for r in requests] == ["Jonas", "Lea", "Die Läufer"]
    assert {r.readable_team_id for r in requests} == {"T001"}
    assert {r.team_start_time for r in requests} == {"10:00"}

    guardian = Guardian(first_name="Maria", last_name="Schulz", email="maria@posteo.de")
    assert children_confirmation(guardian).registration_type == "children"


def test_dispatch_reports_each_outcome(monkeypatch) -> None:
    _EdgeFunctionClient.posted = []
    monkeypatch.setattr(notifications_module.httpx, "Client", _EdgeFunctionClient)
    notifier = ConfirmationNotifier(url="https://example.supabase.co/functions/v1/send-confirmation-email", key="anon")

    outcomes = notifier.dispatch([
        ConfirmationRequest(email="anna@gmx.de", first_name="Anna", registration_type="individual"),
        ConfirmationRequest(email="bounce@gmx.de", first_name="Ben", registration_type="individual"),
        ConfirmationRequest(email="down@gmx.de", first_name="Cem", registration_type="individual"),
    ])

    assert outcomes == [True, False, False]
    assert len(_EdgeFunctionClient.posted) == 3
    assert all(item["headers"]["Authorization"] == "Bearer anon" for item in _EdgeFunctionClient.posted)


def test_dispatch_without_endpoint_sends_nothing(monkeypatch, caplog) -> None:
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("CONFIRMATION_EMAIL_URL", raising=False)
    notifier = ConfirmationNotifier()

    with caplog.at_level("WARNING"):
        outcomes = notifier.dispatch([ConfirmationRequest(email="anna@gmx.de", first_name="Anna", registration_type="individual")])

    assert outcomes == [False]
    assert "not configured" in caplog.text
    assert notifier.dispatch([]) == []


def test_endpoint_defaults_to_supabase_function(monkeypatch) -> None:
    monkeypatch.delenv("CONFIRMATION_EMAIL_URL", raising=False)
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co/")

    assert ConfirmationNotifier().url == "https://example.supabase.co/functions/v1/send-confirmation-email"
