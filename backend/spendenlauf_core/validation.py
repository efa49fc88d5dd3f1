"""Structural validation of the three signup forms.

The models only check shape (lengths, ranges, enums and cross-field rules);
content safety is checked separately in :mod:`spendenlauf_core.security`
right before a submission is processed.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Type

from email_validator import EmailNotValidError, validate_email as _validate_email_address
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator
from pydantic_core import PydanticCustomError

from .errors import ValidationFailed
from .models import CHILD_AGE_LIMIT, storage_gender


INDIVIDUAL_AGE_RANGE = (3, 110)
TEAM_MEMBER_AGE_RANGE = (16, 99)
CHILD_AGE_RANGE = (1, CHILD_AGE_LIMIT - 1)

_TYPE_MESSAGES = {
    "missing": "Dieses Feld ist erforderlich.",
    "int_parsing": "Bitte geben Sie eine ganze Zahl ein.",
    "int_from_float": "Bitte geben Sie eine ganze Zahl ein.",
    "int_type": "Bitte geben Sie eine ganze Zahl ein.",
    "string_type": "Ungültige Eingabe.",
    "bool_parsing": "Ungültige Auswahl.",
    "bool_type": "Ungültige Auswahl.",
    "list_type": "Ungültige Liste.",
    "model_type": "Ungültige Angaben.",
    "model_attributes_type": "Ungültige Angaben.",
}


def _fail(field: str, message: str) -> PydanticCustomError:
    return PydanticCustomError("signup_rule", message, {"field": field})


def _min_length(value: str, minimum: int, message: str) -> str:
    if len(value) < minimum:
        raise PydanticCustomError("too_short", message)
    return value


def _valid_email(value: str) -> str:
    try:
        result = _validate_email_address(value, check_deliverability=False)
    except EmailNotValidError:
        raise PydanticCustomError("email", "Bitte geben Sie eine gültige E-Mail-Adresse ein")
    return result.normalized.lower()


def _age_in(value: int, bounds: tuple[int, int]) -> int:
    low, high = bounds
    if value < low:
        raise PydanticCustomError("age_too_low", "Mindestalter {low} Jahre", {"low": low})
    if value > high:
        raise PydanticCustomError("age_too_high", "Maximalalter {high} Jahre", {"high": high})
    return value


def _gender_value(value: str) -> str:
    try:
        gender = storage_gender(value)
    except ValueError:
        gender = None
    if gender is None:
        raise PydanticCustomError("gender", "Bitte wählen Sie ein Geschlecht")
    return gender


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class _Form(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


class IndividualSignup(_Form):
    first_name: str
    last_name: str
    email: str
    age: int
    gender: str
    timeslot_id: Optional[str] = None
    join_existing_team: bool = False
    team_identifier: Optional[str] = None
    future_event_consent: bool = False

    @field_validator("timeslot_id", "team_identifier", mode="before")
    @classmethod
    def _optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("first_name")
    @classmethod
    def _first_name(cls, value: str) -> str:
        return _min_length(value, 2, "Vorname muss mindestens 2 Zeichen haben")

    @field_validator("last_name")
    @classmethod
    def _last_name(cls, value: str) -> str:
        return _min_length(value, 2, "Nachname muss mindestens 2 Zeichen haben")

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return _valid_email(value)

    @field_validator("age")
    @classmethod
    def _age(cls, value: int) -> int:
        return _age_in(value, INDIVIDUAL_AGE_RANGE)

    @field_validator("gender")
    @classmethod
    def _gender(cls, value: str) -> str:
        return _gender_value(value)

    @model_validator(mode="after")
    def _cross_field(self) -> "IndividualSignup":
        if self.join_existing_team and not self.team_identifier:
            raise _fail("team_identifier", "Bitte geben Sie die Team-ID oder den Teamnamen ein")
        if self.age >= CHILD_AGE_LIMIT and not self.timeslot_id:
            raise _fail("timeslot_id", "Bitte wählen Sie eine Startzeit")
        if self.age < CHILD_AGE_LIMIT:
            # children run in the children's slot; a submitted choice is dropped
            self.timeslot_id = None
        if not self.join_existing_team:
            self.team_identifier = None
        return self


class TeamMemberInput(_Form):
    first_name: str
    last_name: str
    email: Optional[str] = None
    age: int
    gender: str

    @field_validator("email", mode="before")
    @classmethod
    def _optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("first_name")
    @classmethod
    def _first_name(cls, value: str) -> str:
        return _min_length(value, 2, "Vorname muss mindestens 2 Zeichen haben")

    @field_validator("last_name")
    @classmethod
    def _last_name(cls, value: str) -> str:
        return _min_length(value, 2, "Nachname muss mindestens 2 Zeichen haben")

    @field_validator("email")
    @classmethod
    def _email(cls, value: Optional[str]) -> Optional[str]:
        return _valid_email(value) if value is not None else None

    @field_validator("age")
    @classmethod
    def _age(cls, value: int) -> int:
        return _age_in(value, TEAM_MEMBER_AGE_RANGE)

    @field_validator("gender")
    @classmethod
    def _gender(cls, value: str) -> str:
        return _gender_value(value)


class TeamSignup(_Form):
    team_name: str
    members: List[TeamMemberInput]
    shared_email: bool = False
    team_email: Optional[str] = None
    timeslot_id: Optional[str] = None
    future_event_consent: bool = False

    @field_validator("team_email", "timeslot_id", mode="before")
    @classmethod
    def _optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("team_name")
    @classmethod
    def _team_name(cls, value: str) -> str:
        return _min_length(value, 2, "Teamname muss mindestens 2 Zeichen haben")

    @field_validator("members")
    @classmethod
    def _members(cls, value: List[TeamMemberInput]) -> List[TeamMemberInput]:
        if not value:
            raise PydanticCustomError("too_short", "Das Team braucht mindestens ein Mitglied")
        return value

    @model_validator(mode="after")
    def _cross_field(self) -> "TeamSignup":
        if self.shared_email:
            if not self.team_email:
                raise _fail("team_email", "Bitte geben Sie eine gemeinsame E-Mail-Adresse ein")
            try:
                self.team_email = _valid_email(self.team_email)
            except PydanticCustomError as exc:
                raise _fail("team_email", exc.message())
            for member in self.members:
                member.email = self.team_email
        else:
            self.team_email = None
            for index, member in enumerate(self.members):
                if not member.email:
                    raise _fail(f"members.{index}.email", "Bitte geben Sie eine gültige E-Mail-Adresse ein")
        seen = set()
        for index, member in enumerate(self.members):
            identity = (member.first_name.lower(), member.last_name.lower(), member.email)
            if identity in seen:
                raise _fail(f"members.{index}", "Diese Person ist bereits im Team eingetragen")
            seen.add(identity)
        if not self.timeslot_id:
            raise _fail("timeslot_id", "Bitte wählen Sie eine Startzeit für das Team")
        return self


class ChildInput(_Form):
    first_name: str
    last_name: str
    age: int
    gender: Optional[str] = None

    @field_validator("gender", mode="before")
    @classmethod
    def _optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("first_name")
    @classmethod
    def _first_name(cls, value: str) -> str:
        return _min_length(value, 2, "Vorname muss mindestens 2 Zeichen haben")

    @field_validator("last_name")
    @classmethod
    def _last_name(cls, value: str) -> str:
        return _min_length(value, 2, "Nachname muss mindestens 2 Zeichen haben")

    @field_validator("age")
    @classmethod
    def _age(cls, value: int) -> int:
        return _age_in(value, CHILD_AGE_RANGE)

    @field_validator("gender")
    @classmethod
    def _gender(cls, value: Optional[str]) -> Optional[str]:
        return _gender_value(value) if value is not None else None


class GuardianInput(_Form):
    first_name: str
    last_name: str
    email: str
    phone: str
    address: Optional[str] = None

    @field_validator("address", mode="before")
    @classmethod
    def _optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("first_name", "last_name")
    @classmethod
    def _name(cls, value: str) -> str:
        return _min_length(value, 2, "Name des Erziehungsberechtigten erforderlich")

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return _valid_email(value)

    @field_validator("phone")
    @classmethod
    def _phone(cls, value: str) -> str:
        return _min_length(value, 5, "Bitte geben Sie eine gültige Telefonnummer ein")


class ChildrenSignup(_Form):
    children: List[ChildInput]
    guardian: GuardianInput
    team_name: Optional[str] = None
    join_existing_team: bool = False
    team_identifier: Optional[str] = None
    future_event_consent: bool = False

    @field_validator("team_name", "team_identifier", mode="before")
    @classmethod
    def _optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("children")
    @classmethod
    def _children(cls, value: List[ChildInput]) -> List[ChildInput]:
        if not value:
            raise PydanticCustomError("too_short", "Bitte melden Sie mindestens ein Kind an")
        return value

    @model_validator(mode="after")
    def _cross_field(self) -> "ChildrenSignup":
        if self.join_existing_team:
            if not self.team_identifier:
                raise _fail("team_identifier", "Bitte geben Sie die Team-ID oder den Teamnamen ein")
            self.team_name = None
        else:
            self.team_identifier = None
            if len(self.children) > 1 and not self.team_name:
                raise _fail("team_name", "Für mehrere Kinder ist ein Teamname erforderlich")
            if self.team_name is not None and len(self.team_name) < 2:
                raise _fail("team_name", "Teamname muss mindestens 2 Zeichen haben")
        return self


SIGNUP_FORMS: Dict[str, Type[_Form]] = {
    "individual": IndividualSignup,
    "team": TeamSignup,
    "children": ChildrenSignup,
}


def field_errors(exc: ValidationError) -> Dict[str, str]:
    """Flatten a pydantic error into ``{"members.0.email": "message"}``."""
    errors: Dict[str, str] = {}
    for err in exc.errors():
        ctx = err.get("ctx") or {}
        field = ctx.get("field")
        if isinstance(field, str) and field:
            key = field
        else:
            key = ".".join(str(part) for part in err.get("loc", ())) or "__all__"
        message = _TYPE_MESSAGES.get(err.get("type", ""), err.get("msg", "Ungültige Eingabe."))
        errors.setdefault(key, message)
    return errors


def validate_signup(kind: str, data: Mapping[str, Any]) -> _Form:
    """Validate a raw form; raises :class:`ValidationFailed` with field errors."""
    try:
        form = SIGNUP_FORMS[kind]
    except KeyError:
        raise ValueError(f"Unknown registration type '{kind}'") from None
    try:
        return form.model_validate(dict(data))
    except ValidationError as exc:
        raise ValidationFailed(field_errors(exc)) from exc
