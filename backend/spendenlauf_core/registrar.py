from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .errors import RegistrationError
from .models import Event, Guardian, Participant, Team, Timeslot
from .store import RegistrationStore
from .validation import ChildrenSignup, IndividualSignup, TeamMemberInput


@dataclass
class MemberDecision:
    """Whether a team member becomes a new row or claims an existing one."""

    index: int
    member: TeamMemberInput
    existing: Optional[Participant] = None

    @property
    def is_update(self) -> bool:
        return self.existing is not None


def plan_team_members(store: RegistrationStore, members: Sequence[TeamMemberInput], event: Event) -> List[MemberDecision]:
    """Look up every member before anything is written.

    A member who registered on their own earlier (same first name, last name,
    email and event, adult) is picked up by the team instead of being added
    twice. A member who is already on a team blocks the whole submission.
    """
    decisions: List[MemberDecision] = []
    for index, member in enumerate(members):
        existing = store.find_standalone_candidate(member.first_name, member.last_name, member.email or "", event)
        if existing is not None and existing.team_id:
            raise RegistrationError(
                f"{member.first_name} {member.last_name} ist bereits in einem anderen Team angemeldet.",
                {f"members.{index}": "Bereits in einem Team angemeldet"},
            )
        decisions.append(MemberDecision(index=index, member=member, existing=existing))
    return decisions


def seats_needed(decisions: Sequence[MemberDecision], timeslot_id: str) -> int:
    """Runners that will newly occupy ``timeslot_id``."""
    return sum(
        1 for decision in decisions
        if decision.existing is None or decision.existing.timeslot_id != timeslot_id
    )


def team_rows(
    decisions: Sequence[MemberDecision],
    event: Event,
    team: Team,
    timeslot: Timeslot,
    future_event_consent: bool = False,
) -> Tuple[List[Participant], List[Participant]]:
    """Split planned members into ``(updates, inserts)`` bound to ``team`` and ``timeslot``."""
    updates: List[Participant] = []
    inserts: List[Participant] = []
    for decision in decisions:
        member = decision.member
        if decision.existing is not None:
            existing = decision.existing
            existing.team_id = team.id
            existing.timeslot_id = timeslot.id
            existing.age = member.age
            existing.gender = member.gender
            existing.future_event_consent = future_event_consent or existing.future_event_consent
            updates.append(existing)
            continue
        inserts.append(
            Participant(
                event_id=event.id,
                first_name=member.first_name,
                last_name=member.last_name,
                email=member.email,
                age=member.age,
                gender=member.gender,
                team_id=team.id,
                timeslot_id=timeslot.id,
                participant_type="adult",
                future_event_consent=future_event_consent,
            )
        )
    return updates, inserts


def individual_row(
    form: IndividualSignup,
    event: Event,
    timeslot: Timeslot,
    team: Team | None = None,
) -> Participant:
    return Participant(
        event_id=event.id,
        first_name=form.first_name,
        last_name=form.last_name,
        email=form.email,
        age=form.age,
        gender=form.gender,
        team_id=team.id if team else None,
        timeslot_id=timeslot.id,
        future_event_consent=form.future_event_consent,
    )


def guardian_record(form: ChildrenSignup) -> Guardian:
    guardian = form.guardian
    return Guardian(
        first_name=guardian.first_name,
        last_name=guardian.last_name,
        email=guardian.email,
        phone=guardian.phone,
        address=guardian.address,
    )


def child_rows(
    form: ChildrenSignup,
    event: Event,
    guardian: Guardian,
    timeslot: Timeslot,
    team: Team | None = None,
) -> List[Participant]:
    return [
        Participant(
            event_id=event.id,
            first_name=child.first_name,
            last_name=child.last_name,
            age=child.age,
            gender=child.gender,
            guardian_id=guardian.id,
            team_id=team.id if team else None,
            timeslot_id=timeslot.id,
            participant_type="child",
            future_event_consent=form.future_event_consent,
        )
        for child in form.children
    ]
