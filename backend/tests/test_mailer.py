from __future__ import annotations

from typing import Any, Dict, List

import pytest

from spendenlauf_core import mailer as mailer_module
from spendenlauf_core.mailer import SUBJECT, ConfirmationMail, ResendMailer


class _ResendClient:
    posted: List[Dict[str, Any]] = []
    status = 200

    def __init__(self, *args, **kwargs) -> None:
        pass

    def __enter__(self) -> "_ResendClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - nothing to clean
        return None

    def post(self, endpoint: str, json: Dict[str, Any], headers: Dict[str, str]):
        _ResendClient.posted.append({"endpoint": endpoint, "json": json, "headers": headers})
        request = mailer_module.httpx.Request("POST", endpoint)
        if _ResendClient.status >= 400:
            return mailer_module.httpx.Response(_ResendClient.status, request=request, json={"message": "invalid from"})
        return mailer_module.httpx.Response(200, request=request, json={"id": "email-123"})


def test_unknown_registration_type() -> None:
    with pytest.raises(ValueError):
        ConfirmationMail(first_name="Anna", registration_type="relay")


def test_individual_mail_mentions_start_time() -> None:
    text = ConfirmationMail(first_name="Anna", registration_type="individual", start_time="10:00").text()

    assert text.startswith("Hallo Anna,")
    assert "Durchlauf um 10:00" in text
    assert "Das Bundeswehr Spendenlauf-Team" in text


def test_team_mail_mentions_team_id() -> None:
    mail = ConfirmationMail(
        first_name="Jonas",
        registration_type="team",
        team_name="Die Läufer",
        team_start_time="11:30",
        readable_team_id="T007",
    )

    assert "Euer Team Die Läufer ist für den Durchlauf um 11:30 angemeldet." in mail.text()
    assert "T007" in mail.html()


def test_children_mail_uses_fixed_start() -> None:
    assert "Startzeit: 13:30" in ConfirmationMail(first_name="Maria", registration_type="children").text()


def test_html_escapes_names() -> None:
    html = ConfirmationMail(first_name="<Anna>", registration_type="children").html()

    assert "&lt;Anna&gt;" in html
    assert "<Anna>" not in html


def test_send_requires_api_key() -> None:
    mailer = ResendMailer(api_key="")

    with pytest.raises(RuntimeError, match="RESEND_API_KEY"):
        mailer.send("anna@gmx.de", ConfirmationMail(first_name="Anna", registration_type="children"))


def test_send_posts_to_resend(monkeypatch) -> None:
    _ResendClient.posted = []
    _ResendClient.status = 200
    monkeypatch.setattr(mailer_module.httpx, "Client", _ResendClient)
    mailer = ResendMailer(api_key="re_test", sender="Spendenlauf <info@spendenlauf-bw-lg.de>")

    data = mailer.send("anna@gmx.de", ConfirmationMail(first_name="Anna", registration_type="individual", start_time="10:00"))

    assert data == {"id": "email-123"}
    sent = _ResendClient.posted[0]
    assert sent["endpoint"] == "https://api.resend.com/emails"
    assert sent["json"]["to"] == ["anna@gmx.de"]
    assert sent["json"]["subject"] == SUBJECT
    assert sent["json"]["from"] == "Spendenlauf <info@spendenlauf-bw-lg.de>"
    assert sent["headers"]["Authorization"] == "Bearer re_test"


def test_send_failure_raises(monkeypatch) -> None:
    _ResendClient.posted = []
    _ResendClient.status = 422
    monkeypatch.setattr(mailer_module.httpx, "Client", _ResendClient)

    with pytest.raises(RuntimeError, match="Failed to send email"):
        ResendMailer(api_key="re_test").send("anna@gmx.de", ConfirmationMail(first_name="Anna", registration_type="children"))
