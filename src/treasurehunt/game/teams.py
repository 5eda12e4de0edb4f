"""
Team coordination: team creation, invites, quorum and winnings distribution.

A team is scoped to one location at a time (`Team.current_location_id`). Players
join through single-use, time-bounded invite codes, and only from the location
the team is working on. When the team completes a location the team moves on
to the next one and the winning amount is split across current members.
"""

from __future__ import annotations

import logging
import threading
from decimal import ROUND_FLOOR, Decimal
from urllib.parse import urlencode

from treasurehunt.config.settings import Settings, get_settings
from treasurehunt.core.codes import normalize_code, random_code
from treasurehunt.core.time import Clock, datetime_to_ms, ms_to_datetime, now_ms
from treasurehunt.domain.models import Actor, CompletedLocation, Team, TeamInvite, TeamMember
from treasurehunt.game.errors import GameRuleError
from treasurehunt.store.base import StoreError, StoreNotFound, TreasureStore

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def split_winnings(amount: Decimal, members: list[TeamMember]) -> dict[str, Decimal]:
    """Split `amount` evenly, floored to the cent; leftover cents go to the leader.

    The first member stands in for the leader when the team has none. Shares
    always sum to exactly `amount`.
    """
    if not members:
        return {}
    amount = Decimal(amount)
    share = (amount / len(members)).quantize(CENT, rounding=ROUND_FLOOR)
    payouts = {m.user_id: share for m in members}
    leader = next((m for m in members if m.role == "leader"), members[0])
    payouts[leader.user_id] += amount - share * len(members)
    return payouts


class TeamCoordinator:
    def __init__(self, store: TreasureStore, settings: Settings | None = None, clock: Clock = now_ms):
        self._store = store
        self._settings = settings or get_settings()
        self._clock = clock
        self._pending_lock = threading.Lock()
        self._pending: dict[str, Decimal] = {}
        self._pending_settlements: list[tuple[str, str | None, Decimal]] = []

    @property
    def store(self) -> TreasureStore:
        return self._store

    def create_team(self, user_id: str, location_id: str) -> Team:
        """Return the user's team for this location, creating one (with them as leader) if needed."""
        existing = self._store.find_team_for_user(user_id, location_id)
        if existing is not None:
            return existing

        teams = self._settings.teams
        code: str | None = None
        for _ in range(teams.code_max_attempts):
            candidate = random_code(teams.code_length, self._settings.codes.alphabet)
            if self._store.get_team_by_code(candidate) is None:
                code = candidate
                break
        if code is None:
            raise StoreError(f"Could not allocate a unique team code after {teams.code_max_attempts} attempts")

        team = self._store.insert_team(code, user_id, location_id)
        self._store.add_team_member(TeamMember(team_id=team.id, user_id=user_id, role="leader"))
        logger.info("Created team=%s for location=%s by user=%s", team.id, location_id, user_id)
        return team

    def _require_team(self, team_id: str) -> Team:
        team = self._store.get_team(team_id)
        if team is None:
            raise GameRuleError("team_not_found", "Team not found.")
        return team

    def generate_team_invite(self, team_id: str, location_id: str, user_id: str) -> TeamInvite:
        team = self._require_team(team_id)
        if not any(m.user_id == user_id for m in self._store.get_team_members(team_id)):
            raise GameRuleError("not_team_member", "Only team members can invite players.")
        if team.current_location_id != location_id:
            raise GameRuleError("location_mismatch", "This team is working on a different location.")

        expires_ms = self._clock() + self._settings.teams.invite_ttl_seconds * 1000
        invite = TeamInvite(
            code=random_code(self._settings.teams.invite_code_length, self._settings.codes.alphabet),
            team_id=team_id,
            location_id=location_id,
            created_by=user_id,
            expires_at=ms_to_datetime(expires_ms),
            created_at=ms_to_datetime(self._clock()),
        )
        stored = self._store.insert_invite(invite)
        logger.info("Created invite for team=%s at location=%s", team_id, location_id)
        return stored

    def invite_url(self, invite_code: str) -> str:
        """Join link encoded into the invite QR code."""
        base = self._settings.app.public_base_url.rstrip("/")
        return f"{base}/join?{urlencode({'invite': invite_code})}"

    def join_team_by_invite(self, invite_code: str, user_id: str, user_location_id: str | None) -> Team:
        """Validate the invite, then add the user as a member and consume the invite."""
        invite = self._store.get_invite(normalize_code(invite_code))
        if invite is None:
            raise GameRuleError("invite_not_found", "Invalid invite code.")
        if invite.used:
            raise GameRuleError("invite_used", "This invite has already been used.")
        if datetime_to_ms(invite.expires_at) <= self._clock():
            raise GameRuleError("invite_expired", "This invite has expired.")

        team = self._require_team(invite.team_id)
        # Joiners must be tracking the same location the team is clearing.
        if user_location_id is None or user_location_id != invite.location_id:
            raise GameRuleError("location_mismatch", "You must be at the team's location to join.")
        if user_location_id != team.current_location_id:
            raise GameRuleError("location_mismatch", "You must be at the team's location to join.")
        if any(m.user_id == user_id for m in self._store.get_team_members(team.id)):
            raise GameRuleError("already_member", "You are already a member of this team.")

        if not self._store.claim_invite(invite.code, user_id):
            raise GameRuleError("invite_used", "This invite has already been used.")
        if not self._store.add_team_member(TeamMember(team_id=team.id, user_id=user_id, role="member")):
            raise GameRuleError("already_member", "You are already a member of this team.")

        logger.info("User=%s joined team=%s", user_id, team.id)
        return team

    def get_team_members(self, team_id: str) -> list[TeamMember]:
        return self._store.get_team_members(team_id)

    def member_count(self, team_id: str) -> int:
        return len(self._store.get_team_members(team_id))

    def mark_location_as_completed_by_team(
        self,
        team_id: str,
        location_id: str,
        next_location_id: str | None,
        winning_amount: Decimal,
        code_id: str | None = None,
    ) -> dict[str, Decimal]:
        """Record the team completion (once), advance the team, and pay members.

        Returns the per-member payouts; empty when the completion already existed,
        in which case nobody is credited again (queued credits are retried).
        """
        created = self._store.record_completion(
            CompletedLocation(
                actor=Actor.team(team_id),
                location_id=location_id,
                code_id=code_id,
                winning_amount=winning_amount,
                completed_at=ms_to_datetime(self._clock()),
            )
        )
        if not created:
            self.retry_pending_payouts()
            self._store.update_team_location(team_id, next_location_id)
            logger.info("Team=%s already completed location=%s; no new payout", team_id, location_id)
            return {}
        return self.settle_verified_completion(team_id, next_location_id, winning_amount)

    def settle_verified_completion(
        self, team_id: str, next_location_id: str | None, winning_amount: Decimal
    ) -> dict[str, Decimal]:
        """Pay out and advance for a completion the store has just recorded.

        Returns each member's share. A share whose credit fails with a
        `StoreError` is queued and paid by a later `retry_pending_payouts`, as is
        the whole settlement when the member list cannot be read.
        """
        self.retry_pending_payouts()
        return self._settle(team_id, next_location_id, winning_amount)

    def _settle(self, team_id: str, next_location_id: str | None, winning_amount: Decimal) -> dict[str, Decimal]:
        try:
            members = self._store.get_team_members(team_id)
        except StoreError as exc:
            logger.warning("Members of team=%s unavailable; settlement queued: %s", team_id, exc)
            with self._pending_lock:
                self._pending_settlements.append((team_id, next_location_id, winning_amount))
            return {}
        payouts = split_winnings(winning_amount, members)
        for user_id, share in payouts.items():
            self.credit_user(user_id, share)
        try:
            self._store.update_team_location(team_id, next_location_id)
        except StoreError as exc:
            # A repeat completion call moves the team on.
            logger.warning("Could not advance team=%s to location=%s: %s", team_id, next_location_id, exc)
        logger.info("Team=%s paid %s across %s members", team_id, winning_amount, len(payouts))
        return payouts

    # --- payouts -------------------------------------------------------------------

    def credit_user(self, user_id: str, amount: Decimal) -> bool:
        """Credit `amount` now, or queue it when the store is unavailable.

        Returns whether the credit reached the store. Users without a record are
        skipped, not queued.
        """
        if amount <= 0:
            return True
        try:
            self._store.add_winnings_to_user(user_id, amount)
        except StoreNotFound:
            logger.warning("User=%s has no user record; %s not credited", user_id, amount)
            return False
        except StoreError as exc:
            logger.warning("Credit of %s to user=%s failed; queued for retry: %s", amount, user_id, exc)
            with self._pending_lock:
                self._pending[user_id] = self._pending.get(user_id, Decimal("0")) + amount
            return False
        return True

    def retry_pending_payouts(self) -> dict[str, Decimal]:
        """Try every queued settlement and credit once; returns the credits that went through."""
        with self._pending_lock:
            settlements, self._pending_settlements = self._pending_settlements, []
            queued, self._pending = self._pending, {}
        for team_id, next_location_id, amount in settlements:
            self._settle(team_id, next_location_id, amount)
        paid: dict[str, Decimal] = {}
        for user_id, amount in queued.items():
            if self.credit_user(user_id, amount):
                paid[user_id] = amount
        if paid:
            logger.info("Paid %s queued credits", len(paid))
        return paid

    def pending_payouts(self) -> dict[str, Decimal]:
        """Queued per-user credits (settlements still waiting on a member list are not included)."""
        with self._pending_lock:
            return dict(self._pending)
