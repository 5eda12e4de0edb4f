"""
In-process store backend.

Dict-backed implementation of `TreasureStore` used by tests and by the
single-process dev server. One lock guards every read-modify-write, so
`claim_code` and `claim_invite` are true atomic conditional updates here.
"""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from treasurehunt.domain.models import (
    Actor,
    Code,
    CompletedLocation,
    Location,
    LocationDraft,
    LocationUpdate,
    Team,
    TeamInvite,
    TeamMember,
    User,
)
from treasurehunt.store.base import StoreNotFound, TreasureStore


def _new_id() -> str:
    return uuid.uuid4().hex[:15]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore(TreasureStore):
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._locations: dict[str, Location] = {}
        self._codes: dict[str, Code] = {}
        self._completions: dict[tuple[str, str, str], CompletedLocation] = {}
        self._teams: dict[str, Team] = {}
        self._members: dict[str, list[TeamMember]] = {}
        self._invites: dict[str, TeamInvite] = {}
        self._users: dict[str, User] = {}

    # --- locations -----------------------------------------------------------------

    def get_active_location(self) -> Location | None:
        with self._lock:
            active = [loc for loc in self._locations.values() if loc.active]
        if not active:
            return None
        return max(active, key=lambda loc: loc.created_at)

    def get_location(self, location_id: str) -> Location | None:
        with self._lock:
            return self._locations.get(location_id)

    def list_locations(self) -> list[Location]:
        with self._lock:
            return sorted(self._locations.values(), key=lambda loc: loc.created_at, reverse=True)

    def create_location(self, draft: LocationDraft) -> Location:
        location = Location(id=_new_id(), created_at=_now(), **draft.model_dump())
        return self.add_location(location)

    def add_location(self, location: Location) -> Location:
        """Insert a fully-formed location (keeps its id); used for seeding."""
        with self._lock:
            self._locations[location.id] = location
        return location

    def _require_location(self, location_id: str) -> Location:
        loc = self._locations.get(location_id)
        if loc is None:
            raise StoreNotFound(f"Location not found: {location_id}")
        return loc

    def update_location(self, location_id: str, update: LocationUpdate) -> Location:
        with self._lock:
            loc = self._require_location(location_id)
            changes = update.model_dump(exclude_unset=True)
            updated = Location.model_validate({**loc.model_dump(), **changes})
            self._locations[location_id] = updated
            return updated

    def set_active_location(self, location_id: str) -> Location:
        with self._lock:
            target = self._require_location(location_id)
            for loc_id, loc in list(self._locations.items()):
                if loc.active:
                    self._locations[loc_id] = loc.model_copy(update={"active": False})
            activated = target.model_copy(update={"active": True})
            self._locations[location_id] = activated
            return activated

    def deactivate_location(self, location_id: str) -> Location:
        with self._lock:
            loc = self._require_location(location_id)
            updated = loc.model_copy(update={"active": False})
            self._locations[location_id] = updated
            return updated

    def delete_location(self, location_id: str) -> None:
        with self._lock:
            self._require_location(location_id)
            del self._locations[location_id]

    # --- codes ---------------------------------------------------------------------

    def insert_code(self, value: str, location_id: str, next_location_id: str | None) -> Code:
        code = Code(id=_new_id(), value=value, location_id=location_id, next_location_id=next_location_id)
        with self._lock:
            self._codes[code.id] = code
        return code

    def claim_code(self, value: str, location_id: str) -> Code | None:
        with self._lock:
            for code in self._codes.values():
                if code.value == value and code.location_id == location_id and not code.used:
                    claimed = code.model_copy(update={"used": True, "used_at": _now()})
                    self._codes[code.id] = claimed
                    return claimed
        return None

    def list_codes(self, location_id: str | None = None) -> list[Code]:
        with self._lock:
            return [c for c in self._codes.values() if location_id is None or c.location_id == location_id]

    # --- completions ---------------------------------------------------------------

    @staticmethod
    def _completion_key(actor: Actor, location_id: str) -> tuple[str, str, str]:
        return (actor.kind, actor.id, location_id)

    def record_completion(self, completion: CompletedLocation) -> bool:
        key = self._completion_key(completion.actor, completion.location_id)
        with self._lock:
            if key in self._completions:
                return False
            self._completions[key] = completion
            return True

    def has_completed_location(self, actor: Actor, location_id: str) -> bool:
        with self._lock:
            return self._completion_key(actor, location_id) in self._completions

    def get_completion(self, actor: Actor, location_id: str) -> CompletedLocation | None:
        with self._lock:
            return self._completions.get(self._completion_key(actor, location_id))

    def get_completed_locations(self, actor: Actor) -> list[str]:
        with self._lock:
            return [
                c.location_id
                for c in self._completions.values()
                if c.actor.kind == actor.kind and c.actor.id == actor.id
            ]

    def list_completions(self) -> list[CompletedLocation]:
        with self._lock:
            return list(self._completions.values())

    # --- teams ---------------------------------------------------------------------

    def get_team(self, team_id: str) -> Team | None:
        with self._lock:
            return self._teams.get(team_id)

    def get_team_by_code(self, code: str) -> Team | None:
        with self._lock:
            for team in self._teams.values():
                if team.code == code:
                    return team
        return None

    def find_team_for_user(self, user_id: str, location_id: str | None = None) -> Team | None:
        with self._lock:
            candidates = [
                self._teams[team_id]
                for team_id, members in self._members.items()
                if any(m.user_id == user_id for m in members) and team_id in self._teams
            ]
        if location_id is not None:
            candidates = [t for t in candidates if t.current_location_id == location_id]
        if not candidates:
            return None
        return max(candidates, key=lambda t: t.created_at)

    def insert_team(self, code: str, created_by: str, location_id: str | None) -> Team:
        team = Team(id=_new_id(), code=code, created_by=created_by, current_location_id=location_id)
        with self._lock:
            self._teams[team.id] = team
            self._members.setdefault(team.id, [])
        return team

    def update_team_location(self, team_id: str, location_id: str | None) -> Team:
        with self._lock:
            team = self._teams.get(team_id)
            if team is None:
                raise StoreNotFound(f"Team not found: {team_id}")
            updated = team.model_copy(update={"current_location_id": location_id})
            self._teams[team_id] = updated
            return updated

    def add_team_member(self, member: TeamMember) -> bool:
        with self._lock:
            if member.team_id not in self._teams:
                raise StoreNotFound(f"Team not found: {member.team_id}")
            members = self._members.setdefault(member.team_id, [])
            if any(m.user_id == member.user_id for m in members):
                return False
            members.append(member)
            return True

    def get_team_members(self, team_id: str) -> list[TeamMember]:
        with self._lock:
            return list(self._members.get(team_id, []))

    def insert_invite(self, invite: TeamInvite) -> TeamInvite:
        with self._lock:
            self._invites[invite.code] = invite
        return invite

    def get_invite(self, code: str) -> TeamInvite | None:
        with self._lock:
            return self._invites.get(code)

    def claim_invite(self, code: str, user_id: str) -> bool:
        with self._lock:
            invite = self._invites.get(code)
            if invite is None or invite.used:
                return False
            self._invites[code] = invite.model_copy(update={"used": True, "used_by": user_id})
            return True

    # --- users ---------------------------------------------------------------------

    def get_user(self, user_id: str) -> User | None:
        with self._lock:
            return self._users.get(user_id)

    def get_user_by_fingerprint(self, fingerprint: str) -> User | None:
        with self._lock:
            for user in self._users.values():
                if user.device_fingerprint == fingerprint:
                    return user
        return None

    def create_or_update_user(self, fingerprint: str, display_name: str | None = None) -> User:
        with self._lock:
            existing = self.get_user_by_fingerprint(fingerprint)
            if existing is not None:
                changes: dict = {"last_seen_at": _now(), "is_online": True}
                if display_name:
                    changes["display_name"] = display_name
                updated = User.model_validate({**existing.model_dump(), **changes})
                self._users[existing.id] = updated
                return updated
            user = User(id=_new_id(), device_fingerprint=fingerprint, display_name=display_name or "Player")
            self._users[user.id] = user
            return user

    def update_user_last_seen(self, user_id: str) -> None:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise StoreNotFound(f"User not found: {user_id}")
            self._users[user_id] = user.model_copy(update={"last_seen_at": _now(), "is_online": True})

    def get_online_players_count(self, window_seconds: int) -> int:
        cutoff = _now() - timedelta(seconds=window_seconds)
        with self._lock:
            return sum(1 for u in self._users.values() if u.is_online and u.last_seen_at >= cutoff)

    def add_winnings_to_user(self, user_id: str, amount: Decimal) -> Decimal:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise StoreNotFound(f"User not found: {user_id}")
            total = user.total_winnings + Decimal(amount)
            self._users[user_id] = user.model_copy(update={"total_winnings": total})
            return total

    def get_user_total_winnings(self, user_id: str) -> Decimal:
        with self._lock:
            user = self._users.get(user_id)
            return user.total_winnings if user is not None else Decimal("0")
