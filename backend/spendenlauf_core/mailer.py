from __future__ import annotations

import html
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx


logger = logging.getLogger(__name__)

SUBJECT = "Bestätigung zur Anmeldung – 2. Lüneburger Spendenlauf"
CHILDREN_START_TIME = "13:30"
INSTAGRAM_URL = "https://instagram.com/spendenlauf_luenburg/"
FAQ_URL = "https://spendenlauf-bw-lg.de/FAQs"

FURTHER_INFO = [
    "Es stehen nur wenige Parkplätze zur Verfügung (wir empfehlen, zu Fuß oder mit öffentlichen Verkehrsmitteln anzukommen).",
    "Taschen können wir während der Laufzeit trocken beherbergen.",
    "Nehmt Familie und Freunde zum Anfeuern mit: Vor Ort gibt es kleine Imbissstände und viel Programm für Kinder.",
    "Unsere Sponsoren übernehmen die Spenden für gelaufene Runden. Trotzdem freuen wir uns, wenn ihr eure "
    "erlaufenen Beträge durch einen eigenen Beitrag unterstützt (bar / online möglich).",
    "Kinder können wir (auf eigene Verantwortung) während der Laufzeiten betreuen",
]

REGISTRATION_TYPES = ("individual", "team", "children")


@dataclass
class ConfirmationMail:
    """Content of the registration confirmation for one recipient."""

    first_name: str
    registration_type: str
    start_time: Optional[str] = None
    team_name: Optional[str] = None
    team_start_time: Optional[str] = None
    readable_team_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.registration_type not in REGISTRATION_TYPES:
            raise ValueError(f"Unknown registration type '{self.registration_type}'")

    def _intro(self) -> List[str]:
        if self.registration_type == "individual":
            return [
                f"Du hast dich erfolgreich für den Durchlauf um {self.start_time} angemeldet.",
                "Wir bitten dich, 30 Minuten vor Laufbeginn vor Ort zu sein, um deine Startnummer "
                "abzuholen und die Einweisung zu erhalten.",
            ]
        if self.registration_type == "team":
            lines = [f"Euer Team {self.team_name} ist für den Durchlauf um {self.team_start_time} angemeldet."]
            if self.readable_team_id:
                lines.append(
                    f"Eure Team-ID lautet {self.readable_team_id}. Weitere Läufer können sich damit eurem Team anschließen."
                )
            lines.append(
                "Wir bitten Euch, 30 Minuten vor Laufbeginn vor Ort zu sein, um eure Startnummer "
                "abzuholen und die Einweisung zu erhalten."
            )
            return lines
        return [
            "Ihr habt euch erfolgreich für den Kinderlauf angemeldet.",
            f"Startzeit: {CHILDREN_START_TIME}",
            "Wir bitten Euch, 30 Minuten vor Laufbeginn vor Ort zu sein, um die Startnummer(n) "
            "abzuholen und die Einweisung zu erhalten.",
        ]

    def text(self) -> str:
        lines = [f"Hallo {self.first_name},", ""]
        for paragraph in self._intro():
            lines.extend([paragraph, ""])
        lines.append("Weitere Infos:")
        lines.extend(f"• {item}" for item in FURTHER_INFO)
        lines.extend([
            "",
            f"Folgt uns auf Instagram: {INSTAGRAM_URL}",
            f"Bei Fragen: {FAQ_URL}",
            "",
            "Mit sportlichen Grüßen,",
            "Das Bundeswehr Spendenlauf-Team",
        ])
        return "\n".join(lines)

    def html(self) -> str:
        def p(content: str) -> str:
            return f"<p style='font-size:14px;line-height:24px;color:#333'>{content}</p>"

        body = [
            "<h1 style='font-size:24px;color:#333'>2. Lüneburger Spendenlauf</h1>",
            p(f"Hallo {html.escape(self.first_name)},"),
        ]
        body.extend(p(html.escape(paragraph)) for paragraph in self._intro())
        body.append(p("<strong>Weitere Infos:</strong>"))
        body.append("<ul>" + "".join(f"<li>{html.escape(item)}</li>" for item in FURTHER_INFO) + "</ul>")
        body.append(p(f"Folgt uns auf <a href='{INSTAGRAM_URL}'>Instagram</a>, um Bilder des Spendenlaufs zu sehen."))
        body.append(
            p(f"Bei Fragen antwortet einfach auf diese E-Mail oder schaut in unseren <a href='{FAQ_URL}'>FAQ</a>.")
        )
        body.append(p("Mit sportlichen Grüßen,<br>Das Bundeswehr Spendenlauf-Team"))

        return (
            "<html><head><title>" + html.escape(SUBJECT) + "</title></head>"
            "<body style='background-color:#ffffff;font-family:sans-serif'>"
            "<div style='margin-left:20px;padding:0 12px'>" + "".join(body) + "</div></body></html>"
        )


class ResendMailer:
    """Delivers mails through the Resend HTTP API."""

    endpoint = "https://api.resend.com/emails"

    def __init__(self, api_key: str | None = None, sender: str | None = None, timeout: float = 10.0) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("RESEND_API_KEY", "")
        self.sender = sender or os.getenv("RESEND_FROM") or "Spendenlauf Lüneburg <onboarding@resend.dev>"
        self.timeout = timeout

    def send(self, recipient: str, mail: ConfirmationMail) -> Dict[str, Any]:
        if not self.api_key:
            raise RuntimeError("RESEND_API_KEY is not configured")

        payload = {
            "from": self.sender,
            "to": [recipient],
            "subject": SUBJECT,
            "html": mail.html(),
            "text": mail.text(),
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        logger.info("Sending confirmation email to %s (type %s)", recipient, mail.registration_type)
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.endpoint, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise RuntimeError(f"Failed to send email: {exc.response.text or exc}") from exc
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Failed to send email: {exc}") from exc

        return data if isinstance(data, dict) else {}
