from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from spendenlauf_core import (
    ConfirmationNotifier,
    RateLimitExceeded,
    RateLimiter,
    RegistrationError,
    RegistrationResult,
    RegistrationStore,
    RegistrationWorkflow,
    ValidationFailed,
)
from spendenlauf_core.mailer import ConfirmationMail, ResendMailer
from spendenlauf_core.security import CaptchaSigner, client_identifier

app = FastAPI(title="Spendenlauf Registration API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = logging.getLogger(__name__)

REGISTRATION_KINDS = ("individual", "team", "children")


class EventResponse(BaseModel):
    id: str
    name: str
    date: Optional[str] = None
    year: Optional[int] = None
    registration_open: bool = Field(alias="registrationOpen")

    model_config = ConfigDict(populate_by_name=True)


class TimeslotResponse(BaseModel):
    id: str
    name: str
    time: str
    type: str
    description: Optional[str] = None
    max_participants: int = Field(alias="maxParticipants")
    current: int
    remaining: Optional[int] = None
    percentage: float
    is_full: bool = Field(alias="isFull")

    model_config = ConfigDict(populate_by_name=True)


class TimeslotListResponse(BaseModel):
    event: EventResponse
    timeslots: List[TimeslotResponse]


class CaptchaResponse(BaseModel):
    question: str
    token: str


class RegistrationRequest(BaseModel):
    form: Dict[str, Any]
    captcha_token: str = Field(alias="captchaToken")
    captcha_answer: str = Field(alias="captchaAnswer")

    model_config = ConfigDict(populate_by_name=True)


class RegisteredParticipantModel(BaseModel):
    id: Optional[str] = None
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    participant_type: str = Field(alias="participantType")
    timeslot_id: Optional[str] = Field(default=None, alias="timeslotId")
    team_id: Optional[str] = Field(default=None, alias="teamId")

    model_config = ConfigDict(populate_by_name=True)


class RegisteredTeamModel(BaseModel):
    id: str
    name: str
    readable_team_id: Optional[str] = Field(default=None, alias="readableTeamId")
    created: bool

    model_config = ConfigDict(populate_by_name=True)


class RegistrationResponse(BaseModel):
    kind: str
    message: str
    event_id: str = Field(alias="eventId")
    start_time: Optional[str] = Field(default=None, alias="startTime")
    participants: List[RegisteredParticipantModel]
    team: Optional[RegisteredTeamModel] = None

    model_config = ConfigDict(populate_by_name=True)


class EmailRequestModel(BaseModel):
    first_name: str = Field(alias="firstName")
    email: str
    registration_type: str = Field(alias="registrationType")
    start_time: Optional[str] = Field(default=None, alias="startTime")
    team_name: Optional[str] = Field(default=None, alias="teamName")
    team_start_time: Optional[str] = Field(default=None, alias="teamStartTime")
    readable_team_id: Optional[str] = Field(default=None, alias="readableTeamId")

    model_config = ConfigDict(populate_by_name=True)


class TimeslotFillModel(BaseModel):
    id: str
    name: str
    time: str
    current: int
    max: int
    percentage: float


class DashboardStatsResponse(BaseModel):
    total_participants: int = Field(alias="totalParticipants")
    total_events: int = Field(alias="totalEvents")
    participants_by_type: Dict[str, int] = Field(alias="participantsByType")
    timeslot_fill_rates: List[TimeslotFillModel] = Field(alias="timeslotFillRates")
    recent_participants: List[Dict[str, Any]] = Field(alias="recentParticipants")

    model_config = ConfigDict(populate_by_name=True)


@lru_cache(maxsize=1)
def store() -> RegistrationStore:
    return RegistrationStore()


@lru_cache(maxsize=1)
def workflow() -> RegistrationWorkflow:
    return RegistrationWorkflow(store(), RateLimiter(), ConfirmationNotifier())


@lru_cache(maxsize=1)
def captcha() -> CaptchaSigner:
    return CaptchaSigner()


@lru_cache(maxsize=1)
def mailer() -> ResendMailer:
    return ResendMailer()


def _trust_proxy_headers() -> bool:
    return os.getenv("TRUST_PROXY_HEADERS", "").strip().lower() in ("1", "true", "yes")


def _caller_id(request: Request) -> str:
    host = request.client.host if request.client else None
    # X-Forwarded-For is client controlled unless a proxy in front overwrites it
    forwarded = request.headers.get("x-forwarded-for", "") if _trust_proxy_headers() else ""
    if forwarded.split(",")[0].strip():
        host = forwarded.split(",")[0].strip()
    return client_identifier(host, request.headers.get("user-agent"))


def require_admin(authorization: str = Header(default="")) -> Dict[str, Any]:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Authorization token is required")

    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Authorization token is required")

    supabase_url = os.getenv("SUPABASE_URL", "").rstrip("/")
    supabase_anon_key = os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_SERVICE_KEY")
    if not supabase_url or not supabase_anon_key:
        raise HTTPException(status_code=500, detail="Supabase configuration is incomplete")

    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }

    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.get(f"{supabase_url}/auth/v1/user", headers=headers)
            response.raise_for_status()
            user = response.json()

            role_response = client.post(
                f"{supabase_url}/rest/v1/rpc/has_role",
                json={"_role": "admin", "_user_id": str(user.get("id") or "")},
                headers={**headers, "Content-Type": "application/json"},
            )
            role_response.raise_for_status()
            is_admin = role_response.json()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code if exc.response is not None else 502
        if status in (401, 403):
            raise HTTPException(status_code=401, detail="Invalid authentication token") from exc
        raise HTTPException(status_code=502, detail="Failed to verify authentication token") from exc
    except httpx.HTTPError as exc:
        raise HTTPException(status_code=502, detail="Failed to verify authentication token") from exc

    if not str(user.get("id") or "").strip():
        raise HTTPException(status_code=401, detail="Invalid authentication token")
    if is_admin is not True:
        raise HTTPException(status_code=403, detail="Admin role required")
    return user


def _registration_response(result: RegistrationResult) -> RegistrationResponse:
    people = result.updated_participants + result.participants
    team = None
    if result.team is not None:
        team = RegisteredTeamModel(
            id=result.team.id,
            name=result.team.name,
            readableTeamId=result.team.readable_team_id,
            created=result.team_created,
        )
    return RegistrationResponse(
        kind=result.kind,
        message=result.message,
        eventId=result.event.id,
        startTime=result.timeslot.display_time if result.timeslot else None,
        participants=[
            RegisteredParticipantModel(
                id=person.id,
                firstName=person.first_name,
                lastName=person.last_name,
                participantType=person.participant_type,
                timeslotId=person.timeslot_id,
                teamId=person.team_id,
            )
            for person in people
        ],
        team=team,
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/events/active", response_model=EventResponse)
def active_event():
    try:
        event = store().resolve_active_event()
    except RegistrationError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return EventResponse(
        id=event.id,
        name=event.name,
        date=event.date,
        year=event.year,
        registrationOpen=event.registration_open,
    )


@app.get("/timeslots", response_model=TimeslotListResponse)
def timeslots(slot_type: Optional[str] = Query(default=None, alias="type")):
    try:
        event = store().resolve_active_event()
        fill = store().timeslot_fill(event)
    except RegistrationError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return TimeslotListResponse(
        event=EventResponse(
            id=event.id,
            name=event.name,
            date=event.date,
            year=event.year,
            registrationOpen=event.registration_open,
        ),
        timeslots=[
            TimeslotResponse(
                id=item.timeslot.id,
                name=item.timeslot.name,
                time=item.timeslot.display_time,
                type=item.timeslot.type,
                description=item.timeslot.description,
                maxParticipants=item.capacity,
                current=item.current,
                remaining=item.remaining,
                percentage=round(item.percentage, 1),
                isFull=item.is_full,
            )
            for item in fill
            if not slot_type or item.timeslot.type == slot_type
        ],
    )


@app.get("/captcha", response_model=CaptchaResponse)
def new_captcha():
    return CaptchaResponse(**captcha().issue())


@app.post("/registrations/{kind}", response_model=RegistrationResponse, status_code=201)
def register(kind: str, payload: RegistrationRequest, request: Request):
    if kind not in REGISTRATION_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown registration type '{kind}'")
    if not captcha().verify(payload.captcha_token, payload.captcha_answer):
        raise HTTPException(
            status_code=400,
            detail={"message": "Sicherheitsprüfung fehlgeschlagen. Bitte lösen Sie die Aufgabe erneut.", "errors": {}},
        )

    try:
        result = workflow().register(kind, payload.form, _caller_id(request))
    except ValidationFailed as exc:
        raise HTTPException(status_code=422, detail={"message": exc.message, "errors": exc.errors}) from exc
    except RateLimitExceeded as exc:
        raise HTTPException(status_code=429, detail={"message": exc.message, "errors": {}}) from exc
    except RegistrationError as exc:
        raise HTTPException(status_code=400, detail={"message": exc.message, "errors": exc.errors}) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return _registration_response(result)


@app.post("/send-confirmation-email")
def send_confirmation_email(payload: EmailRequestModel):
    logger.info("Sending confirmation email to: %s Type: %s", payload.email, payload.registration_type)
    try:
        mail = ConfirmationMail(
            first_name=payload.first_name,
            registration_type=payload.registration_type,
            start_time=payload.start_time,
            team_name=payload.team_name,
            team_start_time=payload.team_start_time,
            readable_team_id=payload.readable_team_id,
        )
        data = mailer().send(payload.email, mail)
    except (ValueError, RuntimeError) as exc:
        logger.error("Error in send-confirmation-email: %s", exc)
        return JSONResponse(status_code=500, content={"error": str(exc), "success": False})

    return {
        "success": True,
        "message": "Confirmation email sent successfully",
        "emailId": data.get("id"),
    }


@app.get("/admin/stats", response_model=DashboardStatsResponse)
def admin_stats(user: Dict[str, Any] = Depends(require_admin)):
    try:
        stats = store().dashboard_stats()
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return DashboardStatsResponse(**stats)
