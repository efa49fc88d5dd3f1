"""Registration workflow for individual, team and children's-run signups.

Every submission runs strictly in order: structural validation, content and
rate-limit checks, event lookup, team resolution, participant writes and
finally the confirmation mails. Supabase offers no transaction across these
requests, so completed writes are undone through a :class:`Saga` when a later
step fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar, cast

from .errors import RateLimitExceeded, RegistrationError
from .models import CHILD_AGE_LIMIT, Event, Guardian, Participant, Team, Timeslot
from .notifications import (
    ConfirmationNotifier,
    ConfirmationRequest,
    children_confirmation,
    individual_confirmation,
    team_confirmations,
)
from .ratelimit import RateLimiter
from .registrar import (
    child_rows,
    guardian_record,
    individual_row,
    plan_team_members,
    seats_needed,
    team_rows,
)
from .saga import Saga
from .security import check_fields
from .store import RegistrationStore
from .validation import ChildrenSignup, IndividualSignup, TeamSignup, validate_signup


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RegistrationResult:
    kind: str
    event: Event
    participants: List[Participant] = field(default_factory=list)
    timeslot: Optional[Timeslot] = None
    team: Optional[Team] = None
    team_created: bool = False
    guardian: Optional[Guardian] = None
    updated_participants: List[Participant] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.kind == "team" and self.team is not None:
            count = len(self.participants) + len(self.updated_participants)
            return (
                f'Team "{self.team.name}" mit {count} Personen wurde registriert '
                f"(Team-ID: {self.team.readable_team_id or '-'})."
            )
        if self.kind == "children":
            names = ", ".join(p.full_name for p in self.participants)
            return f"{names} wurde(n) für den Kinderlauf angemeldet."
        person = self.participants[0] if self.participants else None
        time = self.timeslot.display_time if self.timeslot else ""
        return f"{person.full_name if person else ''} wurde für {time} Uhr angemeldet."


class RegistrationWorkflow:
    def __init__(
        self,
        store: RegistrationStore,
        rate_limiter: RateLimiter,
        notifier: ConfirmationNotifier,
    ) -> None:
        self.store = store
        self.rate_limiter = rate_limiter
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Entry points

    def register(self, kind: str, data: Mapping[str, Any], client_id: str) -> RegistrationResult:
        handlers: Dict[str, Callable[[Mapping[str, Any], str], RegistrationResult]] = {
            "individual": self.register_individual,
            "team": self.register_team,
            "children": self.register_children,
        }
        if kind not in handlers:
            raise ValueError(f"Unknown registration type '{kind}'")
        return handlers[kind](data, client_id)

    def register_individual(self, data: Mapping[str, Any], client_id: str) -> RegistrationResult:
        form = cast(IndividualSignup, validate_signup("individual", data))
        check_fields(
            names=[("first_name", form.first_name), ("last_name", form.last_name)],
            emails=[("email", form.email)],
        )
        self._check_rate_limit(client_id)

        event = self.store.resolve_active_event()
        team = self.store.resolve_team(form.team_identifier, event) if form.team_identifier else None
        if form.age < CHILD_AGE_LIMIT:
            timeslot = self.store.children_timeslot(event)
        else:
            timeslot = self.store.require_timeslot(str(form.timeslot_id), event)

        created = self.store.insert_participants([individual_row(form, event, timeslot, team)])
        result = RegistrationResult(kind="individual", event=event, participants=created, timeslot=timeslot, team=team)
        logger.info("Individual registration for event %s: %s", event.id, result.message)

        if created:
            self._notify([individual_confirmation(created[0], timeslot)])
        return result

    def register_team(self, data: Mapping[str, Any], client_id: str) -> RegistrationResult:
        form = cast(TeamSignup, validate_signup("team", data))
        names = []
        emails = [("team_email", form.team_email)] if form.team_email else []
        for index, member in enumerate(form.members):
            names.append((f"members.{index}.first_name", member.first_name))
            names.append((f"members.{index}.last_name", member.last_name))
            emails.append((f"members.{index}.email", member.email or ""))
        check_fields(names=names, emails=emails)
        self._check_rate_limit(client_id)

        event = self.store.resolve_active_event()
        decisions = plan_team_members(self.store, form.members, event)
        timeslot = self.store.require_timeslot(str(form.timeslot_id), event, seats=seats_needed(decisions, str(form.timeslot_id)))

        # the new team row goes first, then members are released
        saga = Saga(f"team signup '{form.team_name}'", reverse=False)
        team = self.store.create_team(form.team_name, event, shared_email=form.shared_email, team_email=form.team_email)
        saga.on_failure(f"delete team {team.id}", lambda: self.store.delete_team(team.id))

        updates, inserts = team_rows(decisions, event, team, timeslot, form.future_event_consent)

        def apply_writes() -> tuple[List[Participant], List[Participant]]:
            updated: List[Participant] = []
            for participant in updates:
                updated.append(self.store.assign_participant(participant))
                participant_id = str(participant.id)
                saga.on_failure(
                    f"release participant {participant_id}",
                    lambda participant_id=participant_id: self.store.release_participant(participant_id),
                )
            created = self.store.insert_participants(inserts) if inserts else []
            return updated, created

        updated, created = self._run(saga, apply_writes)
        result = RegistrationResult(
            kind="team",
            event=event,
            participants=created,
            updated_participants=updated,
            timeslot=timeslot,
            team=team,
            team_created=True,
        )
        logger.info("Team registration for event %s: %s", event.id, result.message)

        self._notify(team_confirmations(updated + created, team, timeslot))
        return result

    def register_children(self, data: Mapping[str, Any], client_id: str) -> RegistrationResult:
        form = cast(ChildrenSignup, validate_signup("children", data))
        names = []
        for index, child in enumerate(form.children):
            names.append((f"children.{index}.first_name", child.first_name))
            names.append((f"children.{index}.last_name", child.last_name))
        names.append(("guardian.first_name", form.guardian.first_name))
        names.append(("guardian.last_name", form.guardian.last_name))
        check_fields(
            names=names,
            emails=[("guardian.email", form.guardian.email)],
            phones=[("guardian.phone", form.guardian.phone)],
            addresses=[("guardian.address", form.guardian.address)] if form.guardian.address else [],
        )
        self._check_rate_limit(client_id)

        event = self.store.resolve_active_event()
        team = self.store.resolve_team(form.team_identifier, event) if form.team_identifier else None
        if team is None and form.team_name:
            # a taken name must fail before the guardian row is written
            self.store.ensure_team_name_available(form.team_name, event)
        timeslot = self.store.children_timeslot(event)

        saga = Saga(f"children signup for {form.guardian.email}")

        def apply_writes() -> tuple[Guardian, Optional[Team], List[Participant]]:
            guardian = self.store.insert_guardian(guardian_record(form))
            saga.on_failure(f"delete guardian {guardian.id}", lambda: self.store.delete_guardian(str(guardian.id)))

            joined = team
            if joined is None and form.team_name:
                joined = self.store.create_team(form.team_name, event)
                new_team_id = joined.id
                saga.on_failure(f"delete team {new_team_id}", lambda: self.store.delete_team(new_team_id))

            created = self.store.insert_participants(child_rows(form, event, guardian, timeslot, joined))
            return guardian, joined, created

        guardian, joined_team, created = self._run(saga, apply_writes)
        result = RegistrationResult(
            kind="children",
            event=event,
            participants=created,
            timeslot=timeslot,
            team=joined_team,
            team_created=team is None and joined_team is not None,
            guardian=guardian,
        )
        logger.info("Children registration for event %s: %s", event.id, result.message)

        self._notify([children_confirmation(guardian)])
        return result

    # ------------------------------------------------------------------
    # Helpers

    def _check_rate_limit(self, client_id: str) -> None:
        decision = self.rate_limiter.allow(client_id)
        if not decision.allowed:
            raise RateLimitExceeded(decision.error or "Zu viele Anmeldungen.")

    @staticmethod
    def _run(saga: Saga, writes: Callable[[], T]) -> T:
        try:
            return writes()
        except Exception as exc:
            failures = saga.compensate()
            if isinstance(exc, RegistrationError):
                exc.compensation_failures = failures
            raise

    def _notify(self, requests: List[ConfirmationRequest]) -> None:
        # mails never affect the outcome of a registration
        try:
            outcomes = self.notifier.dispatch(requests)
        except Exception:
            logger.exception("Dispatching confirmation emails failed")
            return
        failed = sum(1 for ok in outcomes if not ok)
        if failed:
            logger.warning("%d of %d confirmation email(s) could not be sent", failed, len(outcomes))
