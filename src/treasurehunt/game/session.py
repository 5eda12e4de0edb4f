"""
Game session state machine.

One `GameSession` follows one player pursuing one location at a time:

    ACQUIRING -> APPROACHING -> REACHED -> REVEAL_PENDING -> CODE_ENTRY -> VERIFIED
                     ^                                                      |
                     +-------------- next location <------------------------+
                                                    (or COMPLETED when the chain ends)

Inputs are pushed in by the caller (GPS samples, compass headings, reveal
gestures, code submissions, sensor failures). The store is the only shared
state; store failures on read paths degrade to cached/default values and never
escape the session, while rejected player actions raise `GameRuleError`.

Completion is guarded twice: verification checks the actor's completed-set
before consuming a code, and the session re-checks (cached set
plus a best-effort fresh query) before every reveal and every submission.
"""

from __future__ import annotations

import logging
import threading
import uuid
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from treasurehunt.config.settings import Settings, get_settings
from treasurehunt.core.cache import TargetCache
from treasurehunt.core.codes import is_well_formed, normalize_code
from treasurehunt.core.geo import GeoPoint as CorePoint
from treasurehunt.core.geo import (
    accuracy_label,
    calculate_bearing,
    calculate_distance,
    format_distance,
    relative_bearing,
    validate_point,
)
from treasurehunt.core.smoothing import GpsSample, HeadingSmoother, LocationSmoother
from treasurehunt.core.time import Clock, now_ms
from treasurehunt.domain.models import Actor, Code, GeoPoint, Location, Team, TeamInvite, User, VerifyResult
from treasurehunt.game.errors import GameRuleError, SensorError, SessionClosed
from treasurehunt.game.fallback import CodeFallbackPolicy, fallback_from_settings
from treasurehunt.game.navigation import DirectionsLinks, Platform, directions_links
from treasurehunt.game.teams import TeamCoordinator
from treasurehunt.store.base import StoreError, TreasureStore

logger = logging.getLogger(__name__)

RevealMode = Literal["scratch", "ar"]


class GamePhase(str, Enum):
    ACQUIRING = "acquiring"
    APPROACHING = "approaching"
    REACHED = "reached"
    REVEAL_PENDING = "reveal_pending"
    CODE_ENTRY = "code_entry"
    VERIFIED = "verified"
    COMPLETED = "completed"
    SENSOR_FAILED = "sensor_failed"


# Phases in which the player is inside the geofence of the current target.
ON_SITE_PHASES = frozenset({GamePhase.REACHED, GamePhase.REVEAL_PENDING, GamePhase.CODE_ENTRY})


class Transition(BaseModel):
    from_phase: GamePhase | None
    to_phase: GamePhase
    reason: str
    at_ms: int


class SessionSnapshot(BaseModel):
    """Everything a client needs to render the game screen."""

    session_id: str
    user_id: str
    phase: GamePhase
    target: Location | None = None
    position: GeoPoint | None = None
    accuracy_m: float | None = None
    accuracy_label: str | None = None
    distance_m: float | None = None
    distance_text: str | None = None
    bearing: float | None = None
    heading: float | None = None
    needle: float | None = None
    code: str | None = None
    reveal_mode: RevealMode = "scratch"
    scratch_progress: float = 0.0
    error: str | None = None
    degraded: bool = False
    team_id: str | None = None
    team_code: str | None = None
    member_count: int = 0
    minimum_team_size: int = 1
    winnings: Decimal = Decimal("0")
    completed_location_ids: list[str] = Field(default_factory=list)
    transitions: list[Transition] = Field(default_factory=list)


def _core(point: GeoPoint) -> CorePoint:
    return CorePoint(lat=point.lat, lon=point.lon)


def _domain(point: CorePoint) -> GeoPoint:
    return GeoPoint(lat=point.lat, lon=point.lon)


class GameSession:
    def __init__(
        self,
        store: TreasureStore,
        settings: Settings | None,
        user: User,
        *,
        teams: TeamCoordinator | None = None,
        fallback: CodeFallbackPolicy | None = None,
        cache: TargetCache | None = None,
        clock: Clock = now_ms,
        session_id: str | None = None,
    ):
        self._store = store
        self._settings = settings or get_settings()
        self._user = user
        self._clock = clock
        self._teams = teams or TeamCoordinator(store, self._settings, clock)
        self._fallback = fallback or fallback_from_settings(self._settings)
        self._cache = cache
        self.session_id = session_id or uuid.uuid4().hex

        sm = self._settings.smoothing
        self._smoother = LocationSmoother(sm.max_samples, sm.max_age_ms, sm.accuracy_scale_m)
        self._heading_smoother = HeadingSmoother(sm.heading_alpha)
        self._lock = threading.RLock()

        self._phase: GamePhase | None = None
        self._closed = False
        self._target: Location | None = None
        self._awaiting_nearest = False
        self._position: CorePoint | None = None
        self._last_accuracy: float | None = None
        self._distance: float | None = None
        self._bearing: float | None = None
        self._heading: float | None = None

        self._completed_user: set[str] = set()
        self._completed_team: set[str] = set()
        self._team: Team | None = None
        self._member_count = 0

        self._code: str | None = None
        self._code_local = False
        self._reveal_mode: RevealMode = "scratch"
        self._scratch_progress = 0.0

        self._error: str | None = None
        self._error_until_ms: int | None = None
        self._degraded = False
        self._last_store_error: StoreError | None = None
        self._winnings = Decimal("0")
        self._transitions: list[Transition] = []

    # --- properties ----------------------------------------------------------------

    @property
    def phase(self) -> GamePhase | None:
        return self._phase

    @property
    def target(self) -> Location | None:
        return self._target

    @property
    def user(self) -> User:
        return self._user

    @property
    def team(self) -> Team | None:
        return self._team

    @property
    def closed(self) -> bool:
        return self._closed

    # --- internal helpers ----------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosed(f"Session {self.session_id} is closed")

    def _require_phase(self, *phases: GamePhase) -> None:
        if self._phase not in phases:
            current = self._phase.value if self._phase else "none"
            raise GameRuleError("wrong_phase", f"Not allowed while {current}.")

    def _require_target(self) -> Location:
        if self._target is None:
            raise GameRuleError("wrong_phase", "There is no current target.")
        return self._target

    def _transition(self, to_phase: GamePhase, reason: str) -> None:
        if self._phase == to_phase:
            return
        self._transitions.append(
            Transition(from_phase=self._phase, to_phase=to_phase, reason=reason, at_ms=self._clock())
        )
        logger.info(
            "Session %s: %s -> %s (%s)",
            self.session_id,
            self._phase.value if self._phase else "-",
            to_phase.value,
            reason,
        )
        self._phase = to_phase

    def _set_error(self, message: str, transient: bool = True) -> None:
        self._error = message
        if transient:
            self._error_until_ms = self._clock() + int(self._settings.game.error_display_seconds * 1000)
        else:
            self._error_until_ms = None

    def _clear_error(self) -> None:
        self._error = None
        self._error_until_ms = None

    def _visible_error(self) -> str | None:
        if self._error is None:
            return None
        if self._error_until_ms is not None and self._clock() >= self._error_until_ms:
            return None
        return self._error

    def _discard_reveal(self) -> None:
        self._code = None
        self._code_local = False
        self._scratch_progress = 0.0

    def _actor_for(self, location: Location) -> Actor:
        if location.team_gated and self._team is not None:
            return Actor.team(self._team.id)
        return Actor.user(self._user.id)

    def _completed_set(self, actor: Actor) -> set[str]:
        return self._completed_team if actor.kind == "team" else self._completed_user

    def _is_completed(self, location: Location, fresh: bool = False) -> bool:
        """Completed-set membership; `fresh` adds a best-effort store query."""
        actor = self._actor_for(location)
        completed = self._completed_set(actor)
        if location.id in completed:
            return True
        if not fresh:
            return False
        try:
            done = self._store.has_completed_location(actor, location.id)
        except StoreError as exc:
            logger.warning("Completion re-check failed for location=%s: %s", location.id, exc)
            return False
        if done:
            completed.add(location.id)
        return done

    def _load_completed(self) -> None:
        try:
            self._completed_user = set(self._store.get_completed_locations(Actor.user(self._user.id)))
        except StoreError as exc:
            logger.warning("Could not load completed locations for user=%s: %s", self._user.id, exc)
        if self._team is not None:
            try:
                self._completed_team = set(self._store.get_completed_locations(Actor.team(self._team.id)))
            except StoreError as exc:
                logger.warning("Could not load completed locations for team=%s: %s", self._team.id, exc)

    def _default_target(self) -> Location:
        d = self._settings.game.default_target
        return Location(
            id=d.id,
            name=d.name,
            point=GeoPoint(lat=d.lat, lon=d.lon),
            active=True,
            winning_amount=d.winning_amount,
            minimum_team_size=d.minimum_team_size,
        )

    def _fallback_target(self) -> Location:
        if self._cache is not None:
            cached = self._cache.load() or self._cache.load_stale()
            if cached is not None:
                logger.info("Using cached target location=%s", cached.id)
                return cached
        return self._default_target()

    def _set_target(self, location: Location, reason: str) -> None:
        self._target = location
        self._awaiting_nearest = False
        self._discard_reveal()
        self._distance = None
        self._bearing = None
        if self._cache is not None and location.id != self._settings.game.default_target.id:
            self._cache.save(location)
        logger.info("Session %s target=%s (%s)", self.session_id, location.id, reason)

    def _select_initial_target(self) -> None:
        try:
            active = self._store.get_active_location()
        except StoreError as exc:
            logger.warning("Active location lookup failed; using fallback target: %s", exc)
            active = None
        if active is None:
            active = self._fallback_target()

        if self._is_completed(active):
            # Pick the nearest uncompleted location once a position is known.
            logger.info("Active location=%s already completed; waiting for a fix", active.id)
            self._target = None
            self._awaiting_nearest = True
            return
        self._set_target(active, "active location")

    def _pick_nearest(self) -> None:
        if self._position is None:
            return
        exclude = sorted(self._completed_user | self._completed_team)
        if self._target is not None:
            exclude.append(self._target.id)
        try:
            nearest = self._store.get_nearest_location(_domain(self._position), exclude)
        except StoreError as exc:
            logger.warning("Nearest location lookup failed: %s", exc)
            self._awaiting_nearest = True
            return
        if nearest is None:
            self._target = None
            self._awaiting_nearest = False
            self._discard_reveal()
            self._transition(GamePhase.COMPLETED, "no uncompleted locations left")
            return
        self._set_target(nearest, "nearest uncompleted location")
        self._transition(GamePhase.APPROACHING, "new target")

    def _attach_team(self) -> None:
        if self._team is not None or self._target is None or not self._target.team_gated:
            return
        try:
            self._team = self._store.find_team_for_user(self._user.id, self._target.id)
        except StoreError as exc:
            logger.warning("Team lookup failed for user=%s: %s", self._user.id, exc)
            return
        if self._team is not None:
            self._load_completed()

    def _update_measurements(self) -> None:
        if self._position is None or self._target is None:
            self._distance = None
            self._bearing = None
            return
        target_point = _core(self._target.point)
        self._distance = calculate_distance(self._position, target_point)
        self._bearing = calculate_bearing(self._position, target_point)

    def _evaluate_geofence(self) -> None:
        if self._target is None or self._distance is None:
            return
        within = self._distance <= self._settings.game.reach_distance_m

        if self._phase == GamePhase.APPROACHING and within:
            if self._is_completed(self._target):
                self._pick_nearest()
                return
            self._transition(GamePhase.REACHED, f"within {self._settings.game.reach_distance_m:g} m")
            if self._target.team_gated:
                self._sync_team_locked()
        elif self._phase in ON_SITE_PHASES and not within:
            self._discard_reveal()
            self._transition(GamePhase.APPROACHING, "left the geofence")
        elif self._phase == GamePhase.REACHED and self._target.team_gated:
            self._sync_team_locked()

    def _sync_team_locked(self) -> None:
        self._attach_team()
        if self._team is None:
            self._member_count = 0
            return
        try:
            self._member_count = self._teams.member_count(self._team.id)
        except StoreError as exc:
            logger.warning("Member count refresh failed for team=%s: %s", self._team.id, exc)
            return
        target = self._target
        if (
            self._phase == GamePhase.REACHED
            and target is not None
            and target.team_gated
            and self._member_count >= target.minimum_team_size
        ):
            try:
                self._reveal("team quorum reached")
            except (GameRuleError, StoreError) as exc:
                self._set_error(str(exc))

    def _reveal(self, reason: str) -> None:
        target = self._require_target()
        if self._is_completed(target, fresh=True):
            self._set_error("You have already completed this location.")
            self._transition(GamePhase.APPROACHING, "already completed")
            self._pick_nearest()
            raise GameRuleError("already_completed", "You have already completed this location.")

        self._transition(GamePhase.REVEAL_PENDING, reason)
        try:
            code = self._store.generate_code_for_location(target.id, target.next_location_id)
            self._code_local = False
        except StoreError as exc:
            try:
                code = self._fallback.generate_code(target.id, exc)
            except StoreError:
                self._transition(GamePhase.REACHED, "code generation failed")
                raise
            self._code_local = True
            self._degraded = True
        self._code = code
        self._scratch_progress = 0.0

    def _verify_with_store(self, code: str, target: Location, actor: Actor) -> VerifyResult | None:
        """Store verification with retries; None when the store stayed unreachable.

        A code claimed by an attempt stays claimed: later attempts only finish
        recording the completion, so a failure after the claim cannot burn the code.
        """
        attempts = 1 + self._settings.game.verify_retries
        claimed: Code | None = None
        for attempt in range(attempts):
            try:
                if claimed is None:
                    if self._store.has_completed_location(actor, target.id):
                        return VerifyResult(ok=False, error="already_completed", location_id=target.id)
                    claimed = self._store.claim_code(code, target.id)
                    if claimed is None:
                        return VerifyResult(ok=False, error="invalid_code", location_id=target.id)
                return self._store.finish_verification(claimed, actor)
            except StoreError as exc:
                self._last_store_error = exc
                logger.warning(
                    "Code verification failed (attempt %s/%s) for location=%s: %s",
                    attempt + 1,
                    attempts,
                    target.id,
                    exc,
                )
        return None

    def _credit(self, result: VerifyResult, actor: Actor) -> Decimal:
        """Pay out a verified completion; credits the store cannot take now are queued."""
        amount = result.winning_amount
        if actor.kind == "team":
            next_id = result.next_location.id if result.next_location else None
            payouts = self._teams.settle_verified_completion(actor.id, next_id, amount)
            return payouts.get(self._user.id, Decimal("0"))
        if amount > 0:
            self._teams.retry_pending_payouts()
            self._teams.credit_user(self._user.id, amount)
        return amount

    def _advance(self, next_location: Location | None) -> None:
        if next_location is None:
            self._target = None
            self._discard_reveal()
            self._distance = None
            self._bearing = None
            self._transition(GamePhase.COMPLETED, "no next location")
            return
        self._set_target(next_location, "next location in chain")
        if self._team is not None and not next_location.team_gated:
            self._team = None
            self._member_count = 0
        self._transition(GamePhase.APPROACHING, "advanced to next location")
        self._update_measurements()
        self._evaluate_geofence()

    # --- public API ----------------------------------------------------------------

    def start(self) -> SessionSnapshot:
        """Select the target and begin acquiring a position."""
        with self._lock:
            self._ensure_open()
            self._load_completed()
            self._select_initial_target()
            self._attach_team()
            self._transition(GamePhase.ACQUIRING, "session started")
            return self.snapshot()

    def on_sample(self, sample: GpsSample) -> SessionSnapshot:
        """Feed one GPS fix through the smoother and re-evaluate arrival."""
        with self._lock:
            self._ensure_open()
            if self._phase in (None, GamePhase.SENSOR_FAILED):
                logger.debug("Ignoring sample in phase %s", self._phase)
                return self.snapshot()

            sm = self._settings.smoothing
            accuracy = sm.missing_accuracy_m if sample.accuracy_m is None else float(sample.accuracy_m)
            if accuracy < 0:
                raise GameRuleError("invalid_position", "Accuracy must be non-negative.")
            try:
                validate_point(sample.point)
            except ValueError as exc:
                raise GameRuleError("invalid_position", str(exc)) from exc

            if (
                accuracy > sm.poor_accuracy_m
                and self._last_accuracy is not None
                and self._last_accuracy < sm.good_accuracy_m
            ):
                logger.debug("Dropping poor reading accuracy=%.1f m", accuracy)
                return self.snapshot()

            self._last_accuracy = accuracy
            self._position = self._smoother.add(
                GpsSample(point=sample.point, accuracy_m=accuracy, captured_at_ms=sample.captured_at_ms)
            )

            if self._target is None and self._awaiting_nearest:
                self._pick_nearest()
            if self._phase == GamePhase.COMPLETED or self._target is None:
                return self.snapshot()

            self._update_measurements()
            if self._phase == GamePhase.ACQUIRING:
                self._transition(GamePhase.APPROACHING, "first fix")
            self._evaluate_geofence()
            return self.snapshot()

    def on_heading(self, heading: float) -> SessionSnapshot:
        with self._lock:
            self._ensure_open()
            self._heading = self._heading_smoother.smooth(float(heading))
            return self.snapshot()

    def sync_team(self) -> SessionSnapshot:
        """Refresh membership; reveals automatically when a team location reaches quorum."""
        with self._lock:
            self._ensure_open()
            self._sync_team_locked()
            return self.snapshot()

    def request_reveal(self) -> SessionSnapshot:
        """Explicit reveal for solo locations."""
        with self._lock:
            self._ensure_open()
            self._require_phase(GamePhase.REACHED)
            target = self._require_target()
            if target.team_gated:
                raise GameRuleError(
                    "team_reveal_automatic",
                    f"This location needs a team of {target.minimum_team_size}; "
                    "the code is revealed once enough members join.",
                )
            self._reveal("player revealed")
            return self.snapshot()

    def report_scratch_progress(self, fraction: float) -> SessionSnapshot:
        with self._lock:
            self._ensure_open()
            self._require_phase(GamePhase.REVEAL_PENDING)
            self._scratch_progress = max(self._scratch_progress, min(1.0, max(0.0, float(fraction))))
            if self._scratch_progress > self._settings.game.scratch_reveal_threshold:
                self._transition(GamePhase.CODE_ENTRY, "scratch card revealed")
            return self.snapshot()

    def report_ar_shown(self) -> SessionSnapshot:
        with self._lock:
            self._ensure_open()
            self._require_phase(GamePhase.REVEAL_PENDING)
            self._reveal_mode = "ar"
            self._transition(GamePhase.CODE_ENTRY, "AR view shown")
            return self.snapshot()

    def report_camera_error(self, message: str | None = None) -> SessionSnapshot:
        """Camera unavailable: fall back from the AR view to the scratch card."""
        with self._lock:
            self._ensure_open()
            logger.warning("Session %s camera error: %s", self.session_id, message or "unknown")
            self._reveal_mode = "scratch"
            return self.snapshot()

    def submit_code(self, raw: str) -> SessionSnapshot:
        with self._lock:
            self._ensure_open()
            self._require_phase(GamePhase.CODE_ENTRY)
            target = self._require_target()

            code = normalize_code(raw)
            length = self._settings.codes.length
            if not is_well_formed(code, length):
                self._set_error(f"Please enter a valid {length}-character code.")
                raise GameRuleError("invalid_code_format", f"Please enter a valid {length}-character code.")

            if self._is_completed(target, fresh=True):
                self._discard_reveal()
                self._set_error("You have already completed this location.")
                self._transition(GamePhase.APPROACHING, "already completed")
                self._pick_nearest()
                raise GameRuleError("already_completed", "You have already completed this location.")

            actor = self._actor_for(target)
            result = None
            if not self._code_local:
                result = self._verify_with_store(code, target, actor)

            if result is None:
                error = (
                    StoreError("Code was issued while the store was unreachable")
                    if self._code_local
                    else self._last_store_error
                )
                matched = self._fallback.verify_code(code, self._code, error)
                self._degraded = True
                if not matched:
                    self._set_error("Invalid code. Please try again.")
                    raise GameRuleError("invalid_code", "Invalid code. Please try again.")
                # Accepted locally: nothing is recorded server-side and nothing is credited.
                self._completed_set(actor).add(target.id)
                self._clear_error()
                self._transition(GamePhase.VERIFIED, "code accepted locally")
                next_location = None
                if target.next_location_id:
                    try:
                        next_location = self._store.get_location(target.next_location_id)
                    except StoreError as exc:
                        logger.warning("Next location lookup failed: %s", exc)
                self._advance(next_location)
                return self.snapshot()

            if not result.ok:
                if result.error == "already_completed":
                    self._completed_set(actor).add(target.id)
                    self._discard_reveal()
                    self._set_error("You have already completed this location.")
                    self._transition(GamePhase.APPROACHING, "already completed")
                    self._pick_nearest()
                    raise GameRuleError("already_completed", "You have already completed this location.")
                self._set_error("Invalid code. Please try again.")
                raise GameRuleError("invalid_code", "Invalid code. Please try again.")

            self._completed_set(actor).add(target.id)
            earned = self._credit(result, actor)
            self._winnings += earned
            self._clear_error()
            self._transition(GamePhase.VERIFIED, f"code accepted, earned {earned}")
            self._advance(result.next_location)
            return self.snapshot()

    def report_sensor_error(self, kind: str, message: str | None = None) -> SessionSnapshot:
        """Surface a location sensor failure; the player must `retry()` explicitly."""
        with self._lock:
            self._ensure_open()
            error = SensorError(kind, message)
            logger.warning("Session %s sensor error %s: %s", self.session_id, error.kind, error.message)
            self._set_error(error.message, transient=False)
            self._transition(GamePhase.SENSOR_FAILED, error.kind)
            return self.snapshot()

    def retry(self) -> SessionSnapshot:
        """Restart location acquisition from scratch."""
        with self._lock:
            self._ensure_open()
            self._smoother.reset()
            self._heading_smoother.reset()
            self._position = None
            self._last_accuracy = None
            self._heading = None
            self._discard_reveal()
            self._update_measurements()
            self._clear_error()
            if self._target is None and not self._awaiting_nearest:
                self._select_initial_target()
            self._transition(GamePhase.ACQUIRING, "retry")
            return self.snapshot()

    def close(self) -> None:
        """Stop accepting input; later calls raise `SessionClosed`."""
        with self._lock:
            if not self._closed:
                self._closed = True
                logger.info("Session %s closed", self.session_id)

    # --- teams ---------------------------------------------------------------------

    def _tracked_location_id(self) -> str | None:
        if self._target is None or self._phase not in ON_SITE_PHASES:
            return None
        return self._target.id

    def create_team(self) -> SessionSnapshot:
        with self._lock:
            self._ensure_open()
            location_id = self._tracked_location_id()
            if location_id is None:
                raise GameRuleError("location_mismatch", "Reach the location before forming a team.")
            self._team = self._teams.create_team(self._user.id, location_id)
            self._load_completed()
            self._sync_team_locked()
            return self.snapshot()

    def create_invite(self) -> tuple[TeamInvite, str]:
        """New invite for this player's team plus the join URL shown as a QR code."""
        with self._lock:
            self._ensure_open()
            if self._team is None or self._target is None:
                raise GameRuleError("no_team", "Create or join a team first.")
            invite = self._teams.generate_team_invite(self._team.id, self._target.id, self._user.id)
            return invite, self._teams.invite_url(invite.code)

    def join_team(self, invite_code: str) -> SessionSnapshot:
        with self._lock:
            self._ensure_open()
            self._team = self._teams.join_team_by_invite(invite_code, self._user.id, self._tracked_location_id())
            self._load_completed()
            self._sync_team_locked()
            return self.snapshot()

    # --- views ---------------------------------------------------------------------

    def directions(self, platform: Platform = "desktop") -> DirectionsLinks | None:
        if self._position is None or self._target is None:
            return None
        return directions_links(self._position, _core(self._target.point), platform)

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            target = self._target
            needle = None
            if self._bearing is not None and self._heading is not None:
                needle = relative_bearing(self._bearing, self._heading)
            show_code = self._phase in (GamePhase.REVEAL_PENDING, GamePhase.CODE_ENTRY)
            return SessionSnapshot(
                session_id=self.session_id,
                user_id=self._user.id,
                phase=self._phase or GamePhase.ACQUIRING,
                target=target,
                position=_domain(self._position) if self._position else None,
                accuracy_m=self._last_accuracy,
                accuracy_label=accuracy_label(self._last_accuracy) if self._last_accuracy is not None else None,
                distance_m=self._distance,
                distance_text=format_distance(self._distance) if self._distance is not None else None,
                bearing=self._bearing,
                heading=self._heading,
                needle=needle,
                code=self._code if show_code else None,
                reveal_mode=self._reveal_mode,
                scratch_progress=self._scratch_progress,
                error=self._visible_error(),
                degraded=self._degraded,
                team_id=self._team.id if self._team else None,
                team_code=self._team.code if self._team else None,
                member_count=self._member_count,
                minimum_team_size=target.minimum_team_size if target else 1,
                winnings=self._winnings,
                completed_location_ids=sorted(self._completed_user | self._completed_team),
                transitions=list(self._transitions),
            )
