"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- store records (`Location`, `Code`, `Team`, ...), whatever the backend,
- game-layer inputs (`Actor`, `LocationDraft`),
- store outputs the state machine branches on (`VerifyResult`).

Money is always `Decimal`; timestamps are timezone-aware UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ActorKind = Literal["user", "team"]
TeamRole = Literal["leader", "member"]
VerifyError = Literal["invalid_code", "already_completed"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GeoPoint(BaseModel):
    """A geographic point in decimal degrees."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class Location(BaseModel):
    """A treasure location, created and toggled by an operator."""

    id: str
    name: str = "Treasure Location"
    point: GeoPoint
    active: bool = False
    winning_amount: Decimal = Field(Decimal("0"), ge=0)
    minimum_team_size: int = Field(1, ge=1)
    # Operator-defined successor in a hunt chain; copied onto codes revealed here.
    next_location_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def team_gated(self) -> bool:
        return self.minimum_team_size > 1


class LocationDraft(BaseModel):
    """Admin input for creating a location."""

    name: str = "Treasure Location"
    point: GeoPoint
    active: bool = False
    winning_amount: Decimal = Field(Decimal("0"), ge=0)
    minimum_team_size: int = Field(1, ge=1)
    next_location_id: str | None = None


class LocationUpdate(BaseModel):
    """Admin partial update; unset fields are left unchanged."""

    name: str | None = None
    point: GeoPoint | None = None
    active: bool | None = None
    winning_amount: Decimal | None = Field(default=None, ge=0)
    minimum_team_size: int | None = Field(default=None, ge=1)
    next_location_id: str | None = None


class Code(BaseModel):
    """A revealed location code; `used` flips false -> true exactly once."""

    id: str
    value: str = Field(..., pattern=r"^[A-Z0-9]+$")
    location_id: str
    next_location_id: str | None = None
    used: bool = False
    used_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class Actor(BaseModel):
    """Whoever earns a completion: a single user or a team."""

    model_config = ConfigDict(frozen=True)

    kind: ActorKind
    id: str

    @classmethod
    def user(cls, user_id: str) -> "Actor":
        return cls(kind="user", id=user_id)

    @classmethod
    def team(cls, team_id: str) -> "Actor":
        return cls(kind="team", id=team_id)


class CompletedLocation(BaseModel):
    """Append-once idempotency record, unique on (actor, location_id)."""

    actor: Actor
    location_id: str
    code_id: str | None = None
    winning_amount: Decimal = Field(Decimal("0"), ge=0)
    completed_at: datetime = Field(default_factory=_utcnow)


class Team(BaseModel):
    id: str
    code: str
    created_by: str
    current_location_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class TeamMember(BaseModel):
    team_id: str
    user_id: str
    role: TeamRole = "member"
    joined_at: datetime = Field(default_factory=_utcnow)


class TeamInvite(BaseModel):
    """Single-use, time-bounded invitation to a team at one location."""

    code: str
    team_id: str
    location_id: str
    created_by: str
    expires_at: datetime
    used: bool = False
    used_by: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class User(BaseModel):
    id: str
    display_name: str = "Player"
    device_fingerprint: str
    total_winnings: Decimal = Field(Decimal("0"), ge=0)
    last_seen_at: datetime = Field(default_factory=_utcnow)
    is_online: bool = True

    @field_validator("display_name")
    @classmethod
    def _strip_display_name(cls, value: str) -> str:
        return value.strip() or "Player"


class VerifyResult(BaseModel):
    """Outcome of a store-side code verification."""

    ok: bool
    error: VerifyError | None = None
    location_id: str
    code_id: str | None = None
    winning_amount: Decimal = Decimal("0")
    next_location: Location | None = None
