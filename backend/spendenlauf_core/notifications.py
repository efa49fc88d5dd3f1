from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .models import Guardian, Participant, Team, Timeslot


logger = logging.getLogger(__name__)


@dataclass
class ConfirmationRequest:
    email: str
    first_name: str
    registration_type: str  # individual | team | children
    start_time: Optional[str] = None
    team_name: Optional[str] = None
    team_start_time: Optional[str] = None
    readable_team_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "firstName": self.first_name,
            "email": self.email,
            "registrationType": self.registration_type,
        }
        if self.start_time:
            payload["startTime"] = self.start_time
        if self.team_name:
            payload["teamName"] = self.team_name
        if self.team_start_time:
            payload["teamStartTime"] = self.team_start_time
        if self.readable_team_id:
            payload["readableTeamId"] = self.readable_team_id
        return payload


def individual_confirmation(participant: Participant, timeslot: Timeslot) -> ConfirmationRequest:
    return ConfirmationRequest(
        email=participant.email or "",
        first_name=participant.first_name,
        registration_type="individual",
        start_time=timeslot.display_time,
    )


def team_confirmations(members: Sequence[Participant], team: Team, timeslot: Timeslot) -> List[ConfirmationRequest]:
    """One mail per member, plus one to the shared team address when set."""
    requests = [
        ConfirmationRequest(
            email=member.email or "",
            first_name=member.first_name,
            registration_type="team",
            team_name=team.name,
            team_start_time=timeslot.display_time,
            readable_team_id=team.readable_team_id,
        )
        for member in members
        if member.email
    ]
    if team.shared_email and team.team_email:
        requests.append(
            ConfirmationRequest(
                email=team.team_email,
                first_name=team.name,
                registration_type="team",
                team_name=team.name,
                team_start_time=timeslot.display_time,
                readable_team_id=team.readable_team_id,
            )
        )
    return requests


def children_confirmation(guardian: Guardian) -> ConfirmationRequest:
    return ConfirmationRequest(
        email=guardian.email,
        first_name=guardian.first_name,
        registration_type="children",
    )


class ConfirmationNotifier:
    """Sends confirmation mails through the ``send-confirmation-email`` endpoint.

    Best effort: every request is fired concurrently and the outcomes are
    only logged.
    """

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        timeout: float = 10.0,
        max_workers: int = 4,
    ) -> None:
        supabase_url = os.getenv("SUPABASE_URL", "").rstrip("/")
        default_url = f"{supabase_url}/functions/v1/send-confirmation-email" if supabase_url else ""
        self.url = url if url is not None else (os.getenv("CONFIRMATION_EMAIL_URL") or default_url)
        self.key = key if key is not None else (
            os.getenv("SUPABASE_ANON_KEY")
            or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
            or os.getenv("SUPABASE_SERVICE_KEY")
            or ""
        )
        self.timeout = timeout
        self.max_workers = max_workers

    def dispatch(self, requests: Sequence[ConfirmationRequest]) -> List[bool]:
        if not requests:
            return []
        if not self.url:
            logger.warning("Confirmation email endpoint not configured; %d mail(s) not sent", len(requests))
            return [False] * len(requests)

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(requests))) as pool:
            return list(pool.map(self._send, requests))

    def _send(self, request: ConfirmationRequest) -> bool:
        headers = {"Content-Type": "application/json"}
        if self.key:
            headers["apikey"] = self.key
            headers["Authorization"] = f"Bearer {self.key}"

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, json=request.to_payload(), headers=headers)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Confirmation email to %s failed (%s)", request.email, exc)
            return False

        if isinstance(payload, dict) and payload.get("success") is False:
            logger.warning("Confirmation email to %s rejected: %s", request.email, payload.get("error"))
            return False

        email_id = payload.get("emailId") if isinstance(payload, dict) else None
        logger.info("Confirmation email sent to %s (%s)", request.email, email_id)
        return True
