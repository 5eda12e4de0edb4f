"""
Store interface (locations, codes, completions, teams, users).

The game core never talks to a database directly. It depends on `TreasureStore`,
whose backends implement a set of record-level primitives. The composite game
operations (nearest location, code generation, code verification, completed-set
queries) are written once here, on top of those primitives, so every backend
gets the same semantics.

Error contract:
- primitives raise `StoreError` on transport/authorization/unexpected failures,
- "not found" on reads is a `None`/empty result, not an exception,
- `StoreNotFound` is raised only by mutations that address a missing record.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal

from treasurehunt.core.codes import DEFAULT_ALPHABET, random_code
from treasurehunt.core.geo import GeoPoint as CoreGeoPoint
from treasurehunt.core.geo import calculate_distance
from treasurehunt.domain.models import (
    Actor,
    Code,
    CompletedLocation,
    GeoPoint,
    Location,
    LocationDraft,
    LocationUpdate,
    Team,
    TeamInvite,
    TeamMember,
    User,
    VerifyResult,
)

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when the store cannot be reached or returns an unusable response."""


class StoreNotFound(StoreError):
    """Raised when a mutation addresses a record that does not exist."""


class TreasureStore(ABC):
    """Persistence collaborator for the game core."""

    code_length: int = 6
    code_alphabet: str = DEFAULT_ALPHABET

    # --- locations -----------------------------------------------------------------

    @abstractmethod
    def get_active_location(self) -> Location | None:
        """Most recently created active location."""

    @abstractmethod
    def get_location(self, location_id: str) -> Location | None: ...

    @abstractmethod
    def list_locations(self) -> list[Location]: ...

    @abstractmethod
    def create_location(self, draft: LocationDraft) -> Location: ...

    @abstractmethod
    def update_location(self, location_id: str, update: LocationUpdate) -> Location: ...

    @abstractmethod
    def set_active_location(self, location_id: str) -> Location:
        """Deactivate every other location, then activate this one."""

    @abstractmethod
    def deactivate_location(self, location_id: str) -> Location: ...

    @abstractmethod
    def delete_location(self, location_id: str) -> None: ...

    # --- codes ---------------------------------------------------------------------

    @abstractmethod
    def insert_code(self, value: str, location_id: str, next_location_id: str | None) -> Code: ...

    @abstractmethod
    def claim_code(self, value: str, location_id: str) -> Code | None:
        """Mark a matching unused code as used; return it, or None if nothing was claimed."""

    # --- completions ---------------------------------------------------------------

    @abstractmethod
    def record_completion(self, completion: CompletedLocation) -> bool:
        """Insert the completion unless (actor, location) exists; return whether it was created."""

    @abstractmethod
    def has_completed_location(self, actor: Actor, location_id: str) -> bool: ...

    @abstractmethod
    def get_completion(self, actor: Actor, location_id: str) -> CompletedLocation | None: ...

    @abstractmethod
    def get_completed_locations(self, actor: Actor) -> list[str]: ...

    # --- teams ---------------------------------------------------------------------

    @abstractmethod
    def get_team(self, team_id: str) -> Team | None: ...

    @abstractmethod
    def get_team_by_code(self, code: str) -> Team | None: ...

    @abstractmethod
    def find_team_for_user(self, user_id: str, location_id: str | None = None) -> Team | None:
        """Team the user belongs to, optionally scoped to its current location."""

    @abstractmethod
    def insert_team(self, code: str, created_by: str, location_id: str | None) -> Team: ...

    @abstractmethod
    def update_team_location(self, team_id: str, location_id: str | None) -> Team: ...

    @abstractmethod
    def add_team_member(self, member: TeamMember) -> bool:
        """Add a membership; False if the user is already a member."""

    @abstractmethod
    def get_team_members(self, team_id: str) -> list[TeamMember]: ...

    @abstractmethod
    def insert_invite(self, invite: TeamInvite) -> TeamInvite: ...

    @abstractmethod
    def get_invite(self, code: str) -> TeamInvite | None: ...

    @abstractmethod
    def claim_invite(self, code: str, user_id: str) -> bool:
        """Mark an unused invite as used by `user_id`; False if it was already used."""

    # --- users ---------------------------------------------------------------------

    @abstractmethod
    def get_user(self, user_id: str) -> User | None: ...

    @abstractmethod
    def get_user_by_fingerprint(self, fingerprint: str) -> User | None: ...

    @abstractmethod
    def create_or_update_user(self, fingerprint: str, display_name: str | None = None) -> User:
        """One user per device fingerprint; refreshes presence on every call."""

    @abstractmethod
    def update_user_last_seen(self, user_id: str) -> None: ...

    @abstractmethod
    def get_online_players_count(self, window_seconds: int) -> int: ...

    @abstractmethod
    def add_winnings_to_user(self, user_id: str, amount: Decimal) -> Decimal:
        """Credit `amount`; return the new running total."""

    @abstractmethod
    def get_user_total_winnings(self, user_id: str) -> Decimal: ...

    # --- composite operations ------------------------------------------------------

    def get_nearest_location(self, point: GeoPoint, exclude_ids: list[str] | None = None) -> Location | None:
        """Linear scan over all locations, skipping `exclude_ids`."""
        excluded = set(exclude_ids or [])
        origin = CoreGeoPoint(lat=point.lat, lon=point.lon)
        best: Location | None = None
        best_d: float | None = None
        for loc in self.list_locations():
            if loc.id in excluded:
                continue
            d = calculate_distance(origin, CoreGeoPoint(lat=loc.point.lat, lon=loc.point.lon))
            if best_d is None or d < best_d:
                best, best_d = loc, d
        return best

    def generate_code_for_location(self, location_id: str, next_location_id: str | None = None) -> str:
        """Create a fresh unused code for the location and return its value."""
        value = random_code(self.code_length, self.code_alphabet)
        self.insert_code(value, location_id, next_location_id)
        logger.info("Generated code for location=%s", location_id)
        return value

    def verify_code(self, code: str, location_id: str, actor: Actor) -> VerifyResult:
        """Check-and-consume a code for `actor` at `location_id`.

        Order matters: the completed-set is consulted before any code is consumed,
        so a repeat submission never burns a second code.
        """
        if self.has_completed_location(actor, location_id):
            return VerifyResult(ok=False, error="already_completed", location_id=location_id)

        claimed = self.claim_code(code, location_id)
        if claimed is None:
            return VerifyResult(ok=False, error="invalid_code", location_id=location_id)
        return self.finish_verification(claimed, actor)

    def finish_verification(self, claimed: Code, actor: Actor) -> VerifyResult:
        """Record the completion earned by an already-consumed code.

        Safe to call again after a `StoreError`: a completion already written
        with this code counts as this call's own, so the code is never claimed
        twice and the actor is never credited twice.
        """
        location_id = claimed.location_id
        location = self.get_location(location_id)
        amount = location.winning_amount if location is not None else Decimal("0")
        next_location = self.get_location(claimed.next_location_id) if claimed.next_location_id else None
        created = self.record_completion(
            CompletedLocation(
                actor=actor,
                location_id=location_id,
                code_id=claimed.id,
                winning_amount=amount,
                completed_at=datetime.now(timezone.utc),
            )
        )
        if not created:
            existing = self.get_completion(actor, location_id)
            if existing is None or existing.code_id != claimed.id:
                # A concurrent verify for the same actor won; this code stays consumed.
                logger.warning("Completion race for %s/%s at location=%s", actor.kind, actor.id, location_id)
                return VerifyResult(ok=False, error="already_completed", location_id=location_id)
            logger.info(
                "Completion for %s/%s at location=%s was already recorded", actor.kind, actor.id, location_id
            )
        return VerifyResult(
            ok=True,
            location_id=location_id,
            code_id=claimed.id,
            winning_amount=amount,
            next_location=next_location,
        )

    def has_user_completed_location(self, user_id: str, location_id: str) -> bool:
        return self.has_completed_location(Actor.user(user_id), location_id)

    def get_user_completed_locations(self, user_id: str) -> list[str]:
        return self.get_completed_locations(Actor.user(user_id))

    def has_team_completed_location(self, team_id: str, location_id: str) -> bool:
        return self.has_completed_location(Actor.team(team_id), location_id)

    def get_team_completed_locations(self, team_id: str) -> list[str]:
        return self.get_completed_locations(Actor.team(team_id))

    def get_user_team(self, user_id: str, location_id: str | None = None) -> Team | None:
        return self.find_team_for_user(user_id, location_id)
