from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


CHILD_AGE_LIMIT = 10

GENDER_TO_STORAGE = {
    "männlich": "male",
    "weiblich": "female",
    "divers": "other",
    "male": "male",
    "female": "female",
    "other": "other",
}


def participant_type_for_age(age: int) -> str:
    return "child" if age < CHILD_AGE_LIMIT else "adult"


def storage_gender(value: str | None) -> str | None:
    """Translate a display gender (``männlich``/``weiblich``/``divers``) to its stored value."""
    if value is None:
        return None
    key = value.strip().lower()
    if not key:
        return None
    if key not in GENDER_TO_STORAGE:
        raise ValueError(f"Unknown gender '{value}'")
    return GENDER_TO_STORAGE[key]


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass
class TableNames:
    events: str = "events"
    teams: str = "teams"
    participants: str = "participants"
    guardians: str = "guardians"
    timeslots: str = "timeslots"

    @classmethod
    def from_env(cls) -> "TableNames":
        return cls(
            events=os.getenv("SUPABASE_EVENTS_TABLE", "events"),
            teams=os.getenv("SUPABASE_TEAMS_TABLE", "teams"),
            participants=os.getenv("SUPABASE_PARTICIPANTS_TABLE", "participants"),
            guardians=os.getenv("SUPABASE_GUARDIANS_TABLE", "guardians"),
            timeslots=os.getenv("SUPABASE_TIMESLOTS_TABLE", "timeslots"),
        )


@dataclass
class Event:
    id: str
    name: str
    date: Optional[str] = None
    registration_open: bool = False
    is_active: bool = False

    @property
    def year(self) -> Optional[int]:
        if self.date and len(self.date) >= 4 and self.date[:4].isdigit():
            return int(self.date[:4])
        return None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Event":
        return cls(
            id=str(row["id"]),
            name=str(row.get("name") or ""),
            date=_str_or_none(row.get("date")),
            registration_open=bool(row.get("registration_open")),
            is_active=bool(row.get("is_active")),
        )


@dataclass
class Team:
    id: str
    event_id: str
    name: str
    readable_team_id: Optional[str] = None
    shared_email: bool = False
    team_email: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Team":
        return cls(
            id=str(row["id"]),
            event_id=str(row.get("event_id") or ""),
            name=str(row.get("name") or ""),
            readable_team_id=_str_or_none(row.get("readable_team_id")),
            shared_email=bool(row.get("shared_email")),
            team_email=_str_or_none(row.get("team_email")),
        )

    def to_row(self) -> Dict[str, Any]:
        # id and readable_team_id are assigned by the database
        return {
            "event_id": self.event_id,
            "name": self.name,
            "shared_email": self.shared_email,
            "team_email": self.team_email,
        }


@dataclass
class Timeslot:
    id: str
    event_id: str
    name: str
    time: str
    type: str = "normal"
    max_participants: int = 0
    description: Optional[str] = None

    @property
    def display_time(self) -> str:
        # Postgres time columns come back as HH:MM:SS
        return self.time[:5] if len(self.time) >= 5 else self.time

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Timeslot":
        try:
            capacity = int(row.get("max_participants") or 0)
        except (TypeError, ValueError):
            capacity = 0
        return cls(
            id=str(row["id"]),
            event_id=str(row.get("event_id") or ""),
            name=str(row.get("name") or ""),
            time=str(row.get("time") or ""),
            type=str(row.get("type") or "normal"),
            max_participants=capacity,
            description=_str_or_none(row.get("Description") or row.get("description")),
        )


@dataclass
class Guardian:
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Guardian":
        return cls(
            id=_str_or_none(row.get("id")),
            first_name=str(row.get("first_name") or ""),
            last_name=str(row.get("last_name") or ""),
            email=str(row.get("email") or ""),
            phone=_str_or_none(row.get("phone")),
            address=_str_or_none(row.get("address")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
        }


@dataclass
class Participant:
    """A runner row.

    ``participant_type`` follows the age unless set explicitly; adults must
    carry an email (enforced by a check constraint in the database).
    """

    event_id: str
    first_name: str
    last_name: str
    age: int
    gender: Optional[str] = None
    email: Optional[str] = None
    team_id: Optional[str] = None
    guardian_id: Optional[str] = None
    timeslot_id: Optional[str] = None
    runner_number: Optional[int] = None
    future_event_consent: bool = False
    participant_type: str = field(default="")
    id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.participant_type:
            self.participant_type = participant_type_for_age(self.age)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Participant":
        runner_number = row.get("runner_number")
        return cls(
            id=_str_or_none(row.get("id")),
            event_id=str(row.get("event_id") or ""),
            first_name=str(row.get("first_name") or ""),
            last_name=str(row.get("last_name") or ""),
            age=int(row.get("age") or 0),
            gender=_str_or_none(row.get("gender")),
            email=_str_or_none(row.get("email")),
            team_id=_str_or_none(row.get("team_id")),
            guardian_id=_str_or_none(row.get("guardian_id")),
            timeslot_id=_str_or_none(row.get("timeslot_id")),
            runner_number=int(runner_number) if runner_number is not None else None,
            future_event_consent=bool(row.get("future_event_consent")),
            participant_type=str(row.get("participant_type") or ""),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "age": self.age,
            "gender": self.gender,
            "email": self.email,
            "team_id": self.team_id,
            "guardian_id": self.guardian_id,
            "timeslot_id": self.timeslot_id,
            "participant_type": self.participant_type,
            "future_event_consent": self.future_event_consent,
        }
