"""
Game API routes.

Endpoints:
- POST   `/api/sessions`: register the device and start a session.
- GET    `/api/sessions/{id}`: current snapshot (also a presence heartbeat).
- DELETE `/api/sessions/{id}`: close the session.
- POST   `/api/sessions/{id}/samples|heading|sensor-error|retry`: sensor input.
- POST   `/api/sessions/{id}/reveal|scratch|ar-shown|camera-error|codes`: reveal and verify.
- POST   `/api/sessions/{id}/team|team/invites|team/join`: team play.
- GET    `/api/sessions/{id}/directions`: map app links to the target.
- GET    `/api/players/online`, GET `/api/health`.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Header, Request
from pydantic import BaseModel, Field

from treasurehunt.core.geo import GeoPoint
from treasurehunt.core.smoothing import GpsSample
from treasurehunt.core.time import now_ms
from treasurehunt.game.errors import SensorErrorKind
from treasurehunt.game.navigation import Platform, detect_platform
from treasurehunt.game.players import fingerprint_from_traits, online_players, register_player, touch
from treasurehunt.game.session import GameSession, SessionSnapshot

from .errors import http_error, translate_errors

router = APIRouter()


class CreateSessionRequest(BaseModel):
    fingerprint: str | None = None
    traits: dict[str, str] | None = None
    display_name: str | None = None


class SampleRequest(BaseModel):
    lat: float
    lon: float
    accuracy_m: float | None = Field(default=None, ge=0)
    captured_at_ms: int | None = None


class HeadingRequest(BaseModel):
    heading: float


class SensorErrorRequest(BaseModel):
    kind: SensorErrorKind
    message: str | None = None


class ScratchRequest(BaseModel):
    fraction: float = Field(..., ge=0, le=1)


class CameraErrorRequest(BaseModel):
    message: str | None = None


class CodeRequest(BaseModel):
    code: str


class JoinTeamRequest(BaseModel):
    invite_code: str


class InviteResponse(BaseModel):
    code: str
    url: str
    expires_at: datetime


class DirectionsResponse(BaseModel):
    platform: Platform
    primary: str
    fallback: str | None = None


def _session(request: Request, session_id: str) -> GameSession:
    session = request.app.state.sessions.get(session_id)
    if session is None:
        raise http_error(404, "SESSION_NOT_FOUND", f"Unknown session: {session_id}")
    return session


@router.post("/api/sessions", response_model=SessionSnapshot, status_code=201)
def create_session(body: CreateSessionRequest, request: Request) -> SessionSnapshot:
    """Register (or recognise) the device's player and start a new game session."""
    state = request.app.state
    with translate_errors():
        fingerprint = body.fingerprint or (fingerprint_from_traits(body.traits) if body.traits else None)
        if not fingerprint:
            raise http_error(400, "VALIDATION_ERROR", "Either fingerprint or traits is required.")
        user = register_player(state.store, fingerprint, body.display_name)
        session = GameSession(
            state.store,
            state.settings,
            user,
            teams=state.teams,
            cache=state.target_cache,
        )
        state.sessions.add(session)
        return session.start()


@router.get("/api/sessions/{session_id}", response_model=SessionSnapshot)
def get_session(session_id: str, request: Request) -> SessionSnapshot:
    session = _session(request, session_id)
    touch(request.app.state.store, session.user.id)
    return session.snapshot()


@router.delete("/api/sessions/{session_id}", status_code=204)
def close_session(session_id: str, request: Request) -> None:
    session = request.app.state.sessions.remove(session_id)
    if session is None:
        raise http_error(404, "SESSION_NOT_FOUND", f"Unknown session: {session_id}")
    session.close()


@router.post("/api/sessions/{session_id}/samples", response_model=SessionSnapshot)
def post_sample(session_id: str, body: SampleRequest, request: Request) -> SessionSnapshot:
    session = _session(request, session_id)
    sample = GpsSample(
        point=GeoPoint(lat=body.lat, lon=body.lon),
        accuracy_m=body.accuracy_m,
        captured_at_ms=body.captured_at_ms if body.captured_at_ms is not None else now_ms(),
    )
    with translate_errors():
        return session.on_sample(sample)


@router.post("/api/sessions/{session_id}/heading", response_model=SessionSnapshot)
def post_heading(session_id: str, body: HeadingRequest, request: Request) -> SessionSnapshot:
    session = _session(request, session_id)
    with translate_errors():
        return session.on_heading(body.heading)


@router.post("/api/sessions/{session_id}/sensor-error", response_model=SessionSnapshot)
def post_sensor_error(session_id: str, body: SensorErrorRequest, request: Request) -> SessionSnapshot:
    session = _session(request, session_id)
    with translate_errors():
        return session.report_sensor_error(body.kind, body.message)


@router.post("/api/sessions/{session_id}/retry", response_model=SessionSnapshot)
def post_retry(session_id: str, request: Request) -> SessionSnapshot:
    session = _session(request, session_id)
    with translate_errors():
        return session.retry()


@router.post("/api/sessions/{session_id}/reveal", response_model=SessionSnapshot)
def post_reveal(session_id: str, request: Request) -> SessionSnapshot:
    session = _session(request, session_id)
    with translate_errors():
        return session.request_reveal()


@router.post("/api/sessions/{session_id}/scratch", response_model=SessionSnapshot)
def post_scratch(session_id: str, body: ScratchRequest, request: Request) -> SessionSnapshot:
    session = _session(request, session_id)
    with translate_errors():
        return session.report_scratch_progress(body.fraction)


@router.post("/api/sessions/{session_id}/ar-shown", response_model=SessionSnapshot)
def post_ar_shown(session_id: str, request: Request) -> SessionSnapshot:
    session = _session(request, session_id)
    with translate_errors():
        return session.report_ar_shown()


@router.post("/api/sessions/{session_id}/camera-error", response_model=SessionSnapshot)
def post_camera_error(session_id: str, body: CameraErrorRequest, request: Request) -> SessionSnapshot:
    session = _session(request, session_id)
    with translate_errors():
        return session.report_camera_error(body.message)


@router.post("/api/sessions/{session_id}/codes", response_model=SessionSnapshot)
def post_code(session_id: str, body: CodeRequest, request: Request) -> SessionSnapshot:
    """Submit a revealed code. A mismatch is a 400 with code `invalid_code`."""
    session = _session(request, session_id)
    with translate_errors():
        return session.submit_code(body.code)


@router.post("/api/sessions/{session_id}/team", response_model=SessionSnapshot)
def post_team(session_id: str, request: Request) -> SessionSnapshot:
    session = _session(request, session_id)
    with translate_errors():
        return session.create_team()


@router.post("/api/sessions/{session_id}/team/invites", response_model=InviteResponse, status_code=201)
def post_team_invite(session_id: str, request: Request) -> InviteResponse:
    session = _session(request, session_id)
    with translate_errors():
        invite, url = session.create_invite()
    return InviteResponse(code=invite.code, url=url, expires_at=invite.expires_at)


@router.post("/api/sessions/{session_id}/team/join", response_model=SessionSnapshot)
def post_team_join(session_id: str, body: JoinTeamRequest, request: Request) -> SessionSnapshot:
    session = _session(request, session_id)
    with translate_errors():
        return session.join_team(body.invite_code)


@router.get("/api/sessions/{session_id}/directions", response_model=DirectionsResponse)
def get_directions(
    session_id: str,
    request: Request,
    platform: Platform | None = None,
    user_agent: str | None = Header(default=None),
) -> DirectionsResponse:
    session = _session(request, session_id)
    resolved = platform or detect_platform(user_agent)
    links = session.directions(resolved)
    if links is None:
        raise http_error(409, "NO_POSITION", "Directions need a position fix and a target.")
    return DirectionsResponse(platform=resolved, primary=links.primary, fallback=links.fallback)


@router.get("/api/players/online")
def get_online_players(request: Request) -> dict:
    window = request.app.state.settings.players.online_window_seconds
    return {"count": online_players(request.app.state.store, window), "window_seconds": window}


@router.get("/api/health")
def get_health(request: Request) -> dict:
    state = request.app.state
    return {"status": "ok", "store": state.settings.store.backend, "sessions": len(state.sessions)}
