from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .errors import RegistrationError, describe_write_error
from .models import Event, Guardian, Participant, TableNames, Team, Timeslot
from .supabase import BackendError, SupabaseBackend


logger = logging.getLogger(__name__)


def normalize_team_name(name: str) -> str:
    """Case and whitespace insensitive key: ``"Die Läufer"`` -> ``"dieläufer"``."""
    return "".join((name or "").lower().split())


@dataclass
class TimeslotFill:
    timeslot: Timeslot
    current: int

    @property
    def capacity(self) -> int:
        return self.timeslot.max_participants

    @property
    def remaining(self) -> Optional[int]:
        if self.capacity <= 0:
            return None
        return max(self.capacity - self.current, 0)

    @property
    def percentage(self) -> float:
        return (self.current / max(self.capacity, 1)) * 100

    @property
    def is_full(self) -> bool:
        return self.capacity > 0 and self.current >= self.capacity


class RegistrationStore:
    """Registration data held in Supabase: events, teams, timeslots, people."""

    def __init__(self, backend: SupabaseBackend | None = None, tables: TableNames | None = None) -> None:
        self.backend = backend if backend is not None else SupabaseBackend()
        self.tables = tables or TableNames.from_env()

    # ------------------------------------------------------------------
    # Events

    def resolve_active_event(self) -> Event:
        # More than one open event is a data error; the first row wins.
        rows = self.backend.select(self.tables.events, {"registration_open": True}, limit=1)
        if not rows:
            raise RegistrationError("Keine aktive Veranstaltung gefunden. Die Anmeldung ist derzeit geschlossen.")
        return Event.from_row(rows[0])

    # ------------------------------------------------------------------
    # Teams

    def resolve_team(self, identifier: str, event: Event) -> Team:
        """Find a team of ``event`` by readable id or name."""
        rows = self.backend.rpc("lookup_team_by_id_or_name", {"team_identifier": identifier.strip()})
        candidates = [row for row in (rows or []) if isinstance(row, dict)]
        for row in candidates:
            if str(row.get("event_id") or "") == event.id:
                return Team.from_row(row)
        raise RegistrationError(
            f"Team '{identifier}' wurde nicht gefunden. Bitte überprüfen Sie die Team-ID oder den Teamnamen.",
            {"team_identifier": "Team nicht gefunden"},
        )

    def ensure_team_name_available(self, name: str, event: Event) -> None:
        wanted = normalize_team_name(name)
        rows = self.backend.select(
            self.tables.teams,
            {"event_id": event.id},
            columns="id,name,readable_team_id",
        )
        for row in rows:
            if normalize_team_name(str(row.get("name") or "")) == wanted:
                readable = row.get("readable_team_id") or "?"
                raise RegistrationError(
                    f'Ein Team mit dem Namen "{row.get("name")}" existiert bereits (Team-ID: {readable}). '
                    "Wenn Sie diesem Team beitreten möchten, nutzen Sie bitte die Team-ID.",
                    {"team_name": "Teamname bereits vergeben"},
                )

    def create_team(
        self,
        name: str,
        event: Event,
        shared_email: bool = False,
        team_email: str | None = None,
    ) -> Team:
        self.ensure_team_name_available(name, event)
        team = Team(id="", event_id=event.id, name=name, shared_email=shared_email, team_email=team_email)
        try:
            rows = self.backend.insert(self.tables.teams, team.to_row())
        except BackendError as exc:
            raise RegistrationError(describe_write_error(exc, "teams")) from exc
        if not rows:
            raise RuntimeError("Unexpected response when creating team")
        created = Team.from_row(rows[0])
        logger.info("Created team %s (%s) for event %s", created.name, created.readable_team_id, event.id)
        return created

    def delete_team(self, team_id: str) -> None:
        self.backend.delete(self.tables.teams, team_id)

    # ------------------------------------------------------------------
    # Timeslots

    def list_timeslots(self, event: Event, slot_type: str | None = None) -> List[Timeslot]:
        filters: Dict[str, Any] = {"event_id": event.id}
        if slot_type:
            filters["type"] = slot_type
        rows = self.backend.select(self.tables.timeslots, filters, order="time.asc")
        return [Timeslot.from_row(row) for row in rows]

    def timeslot_fill(self, event: Event) -> List[TimeslotFill]:
        """Fill level per slot, counted from participant rows at read time."""
        return [
            TimeslotFill(slot, self.backend.count(self.tables.participants, {"timeslot_id": slot.id}))
            for slot in self.list_timeslots(event)
        ]

    def require_timeslot(self, timeslot_id: str, event: Event, seats: int = 1) -> Timeslot:
        """Load a slot of ``event`` and refuse it when it cannot take ``seats`` more runners.

        The count is read before the insert without any reservation, so two
        concurrent signups can still overfill a slot by a few seats.
        """
        rows = self.backend.select(self.tables.timeslots, {"id": timeslot_id, "event_id": event.id}, limit=1)
        if not rows:
            raise RegistrationError("Die gewählte Startzeit existiert nicht.", {"timeslot_id": "Ungültige Startzeit"})
        slot = Timeslot.from_row(rows[0])
        if slot.max_participants > 0:
            current = self.backend.count(self.tables.participants, {"timeslot_id": slot.id})
            if current + seats > slot.max_participants:
                raise RegistrationError(
                    f"Der Durchlauf um {slot.display_time} Uhr ist leider ausgebucht.",
                    {"timeslot_id": "Startzeit ausgebucht"},
                )
        return slot

    def children_timeslot(self, event: Event) -> Timeslot:
        slot_id = self.backend.rpc("ensure_children_timeslot_exists", {"p_event_id": event.id})
        if isinstance(slot_id, list):
            slot_id = slot_id[0] if slot_id else None
        if not slot_id:
            raise RuntimeError("Supabase did not return a children's timeslot")
        rows = self.backend.select(self.tables.timeslots, {"id": str(slot_id)}, limit=1)
        if not rows:
            raise RuntimeError(f"Children's timeslot {slot_id} not found")
        return Timeslot.from_row(rows[0])

    # ------------------------------------------------------------------
    # Participants and guardians

    def find_standalone_candidate(self, first_name: str, last_name: str, email: str, event: Event) -> Optional[Participant]:
        rows = self.backend.select(
            self.tables.participants,
            {
                "first_name": first_name,
                "last_name": last_name,
                "email": email,
                "event_id": event.id,
                "participant_type": "adult",
            },
            limit=1,
        )
        return Participant.from_row(rows[0]) if rows else None

    def insert_participants(self, participants: Sequence[Participant]) -> List[Participant]:
        """Insert all rows in one request; a failure leaves none of them behind."""
        try:
            rows = self.backend.insert(self.tables.participants, [p.to_row() for p in participants])
        except BackendError as exc:
            raise RegistrationError(describe_write_error(exc, "participants")) from exc
        return [Participant.from_row(row) for row in rows]

    def assign_participant(self, participant: Participant) -> Participant:
        """Write team, timeslot and the refreshed personal fields of an existing row."""
        values = {
            "team_id": participant.team_id,
            "timeslot_id": participant.timeslot_id,
            "age": participant.age,
            "gender": participant.gender,
            "future_event_consent": participant.future_event_consent,
        }
        try:
            row = self.backend.update(self.tables.participants, str(participant.id), values)
        except BackendError as exc:
            raise RegistrationError(describe_write_error(exc, "participants")) from exc
        return Participant.from_row(row)

    def release_participant(self, participant_id: str) -> None:
        self.backend.update(self.tables.participants, participant_id, {"team_id": None})

    def insert_guardian(self, guardian: Guardian) -> Guardian:
        try:
            rows = self.backend.insert(self.tables.guardians, guardian.to_row())
        except BackendError as exc:
            raise RegistrationError(describe_write_error(exc, "guardians")) from exc
        if not rows:
            raise RuntimeError("Unexpected response when creating guardian")
        return Guardian.from_row(rows[0])

    def delete_guardian(self, guardian_id: str) -> None:
        self.backend.delete(self.tables.guardians, guardian_id)

    # ------------------------------------------------------------------
    # Admin statistics

    def dashboard_stats(self) -> Dict[str, Any]:
        participants = self.backend.select(
            self.tables.participants,
            columns="id,first_name,last_name,participant_type,created_at",
            order="created_at.desc",
        )
        events = self.backend.select(self.tables.events, columns="id")
        by_type: Dict[str, int] = {}
        for row in participants:
            kind = str(row.get("participant_type") or "unknown")
            by_type[kind] = by_type.get(kind, 0) + 1

        fill: List[TimeslotFill] = []
        try:
            fill = self.timeslot_fill(self.resolve_active_event())
        except RegistrationError:
            logger.info("No open event; dashboard shows no timeslot fill rates")

        return {
            "totalParticipants": len(participants),
            "totalEvents": len(events),
            "participantsByType": by_type,
            "timeslotFillRates": [
                {
                    "id": item.timeslot.id,
                    "name": item.timeslot.name,
                    "time": item.timeslot.display_time,
                    "current": item.current,
                    "max": item.capacity,
                    "percentage": round(item.percentage, 1),
                }
                for item in fill
            ],
            "recentParticipants": participants[:5],
        }
