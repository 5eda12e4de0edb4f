import math
import re
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from treasurehunt.config.settings import get_settings
from treasurehunt.core.cache import TargetCache
from treasurehunt.core.geo import EARTH_RADIUS_M
from treasurehunt.core.geo import GeoPoint as CorePoint
from treasurehunt.core.smoothing import GpsSample
from treasurehunt.domain.models import Actor, CompletedLocation, GeoPoint, Location
from treasurehunt.game.errors import SENSOR_ERROR_MESSAGES, GameRuleError, SessionClosed
from treasurehunt.game.fallback import NoFallback
from treasurehunt.game.session import GamePhase, GameSession
from treasurehunt.game.teams import TeamCoordinator
from treasurehunt.store import InMemoryStore, StoreError

TARGET = (21.854978, 70.249041)
NEXT = (21.857210, 70.251380)


class _Clock:
    def __init__(self, start_ms: int = 1_767_600_000_000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def _north(point: tuple[float, float], meters: float) -> tuple[float, float]:
    return point[0] + math.degrees(meters / EARTH_RADIUS_M), point[1]


def _world(store: InMemoryStore | None = None, *, min_team: int = 1):
    store = store or InMemoryStore()
    store.add_location(
        Location(
            id="loc-next",
            name="Clock Tower",
            point=GeoPoint(lat=NEXT[0], lon=NEXT[1]),
            winning_amount=Decimal("50.00"),
            created_at=datetime(2026, 1, 5, tzinfo=timezone.utc),
        )
    )
    store.add_location(
        Location(
            id="loc-a",
            name="Lake Gate",
            point=GeoPoint(lat=TARGET[0], lon=TARGET[1]),
            active=True,
            winning_amount=Decimal("100.00"),
            minimum_team_size=min_team,
            next_location_id="loc-next",
            created_at=datetime(2026, 1, 6, tzinfo=timezone.utc),
        )
    )
    user = store.create_or_update_user("fp-alice", "Alice")
    return store, user


def _session(store, user, clock, **kwargs) -> GameSession:
    session = GameSession(store, get_settings(), user, clock=clock, **kwargs)
    session.start()
    return session


def _move(session: GameSession, clock: _Clock, point: tuple[float, float], accuracy_m: float | None = 5.0):
    # Samples 6 s apart never share the smoothing window.
    clock.advance(6000)
    return session.on_sample(
        GpsSample(point=CorePoint(lat=point[0], lon=point[1]), accuracy_m=accuracy_m, captured_at_ms=clock())
    )


def _reach_and_reveal(session: GameSession, clock: _Clock, target=TARGET) -> str:
    assert _move(session, clock, _north(target, 10)).phase == GamePhase.REACHED
    session.request_reveal()
    snap = session.report_scratch_progress(0.8)
    assert snap.phase == GamePhase.CODE_ENTRY
    assert snap.code is not None
    return snap.code


def test_end_to_end_solo_chain():
    clock = _Clock()
    store, user = _world()
    session = _session(store, user, clock)

    snap = session.snapshot()
    assert snap.phase == GamePhase.ACQUIRING
    assert snap.target.id == "loc-a"

    snap = _move(session, clock, _north(TARGET, 1002))
    assert snap.phase == GamePhase.APPROACHING
    assert snap.distance_text == "1.00 km"

    snap = _move(session, clock, _north(TARGET, 10))
    assert snap.phase == GamePhase.REACHED

    snap = session.request_reveal()
    assert snap.phase == GamePhase.REVEAL_PENDING
    assert re.fullmatch(r"[A-Z0-9]{6}", snap.code)
    code = snap.code

    assert session.report_scratch_progress(0.3).phase == GamePhase.REVEAL_PENDING
    assert session.report_scratch_progress(0.6).phase == GamePhase.CODE_ENTRY

    snap = session.submit_code(f"  {code.lower()} ")
    assert snap.phase == GamePhase.APPROACHING
    assert snap.target.id == "loc-next"
    assert (snap.target.point.lat, snap.target.point.lon) == NEXT
    assert snap.winnings == Decimal("100.00")
    assert store.get_user_total_winnings(user.id) == Decimal("100.00")
    assert GamePhase.VERIFIED in [t.to_phase for t in snap.transitions]
    assert "loc-a" in snap.completed_location_ids

    _reach_and_reveal(session, clock, NEXT)
    final = session.submit_code(session.snapshot().code)
    assert final.phase == GamePhase.COMPLETED
    assert final.target is None
    assert final.winnings == Decimal("150.00")


def test_leaving_geofence_discards_reveal():
    clock = _Clock()
    store, user = _world()
    session = _session(store, user, clock)

    _move(session, clock, _north(TARGET, 10))
    assert session.request_reveal().code is not None

    snap = _move(session, clock, _north(TARGET, 200))
    assert snap.phase == GamePhase.APPROACHING
    assert snap.code is None

    assert _move(session, clock, _north(TARGET, 5)).phase == GamePhase.REACHED
    assert session.request_reveal().phase == GamePhase.REVEAL_PENDING


def test_wrong_code_keeps_code_entry_and_shows_transient_error():
    clock = _Clock()
    store, user = _world()
    session = _session(store, user, clock)
    code = _reach_and_reveal(session, clock)
    wrong = "AAAAAA" if code != "AAAAAA" else "BBBBBB"

    with pytest.raises(GameRuleError) as exc:
        session.submit_code(wrong)
    assert exc.value.code == "invalid_code"

    snap = session.snapshot()
    assert snap.phase == GamePhase.CODE_ENTRY
    assert snap.error == "Invalid code. Please try again."
    assert [c.used for c in store.list_codes("loc-a") if c.value == code] == [False]

    clock.advance(2999)
    assert session.snapshot().error is not None
    clock.advance(1)
    assert session.snapshot().error is None

    assert session.submit_code(code).phase == GamePhase.APPROACHING


def test_malformed_code_is_rejected_without_store_call():
    clock = _Clock()
    store, user = _world()
    session = _session(store, user, clock)
    _reach_and_reveal(session, clock)

    with pytest.raises(GameRuleError) as exc:
        session.submit_code("ab1")
    assert exc.value.code == "invalid_code_format"
    assert session.phase == GamePhase.CODE_ENTRY
    assert all(not c.used for c in store.list_codes("loc-a"))


def test_completion_is_idempotent_and_completed_target_is_skipped():
    clock = _Clock()
    store, user = _world()
    session = _session(store, user, clock)
    code = _reach_and_reveal(session, clock)
    session.submit_code(code)

    assert store.verify_code(code, "loc-a", Actor.user(user.id)).error == "already_completed"
    assert len([c for c in store.list_completions() if c.location_id == "loc-a"]) == 1
    assert store.get_user_total_winnings(user.id) == Decimal("100.00")

    with pytest.raises(GameRuleError) as exc:
        session.submit_code(code)
    assert exc.value.code == "wrong_phase"

    # A fresh session skips the completed active location for the nearest open one.
    again = _session(store, user, clock)
    assert again.snapshot().target is None
    snap = _move(again, clock, _north(TARGET, 10))
    assert snap.target.id == "loc-next"
    assert snap.phase == GamePhase.APPROACHING


def test_reveal_and_submit_recheck_completed_set():
    clock = _Clock()
    store, user = _world()
    session = _session(store, user, clock)
    code = _reach_and_reveal(session, clock)

    # Completed from another device meanwhile.
    store.record_completion(CompletedLocation(actor=Actor.user(user.id), location_id="loc-a"))

    with pytest.raises(GameRuleError) as exc:
        session.submit_code(code)
    assert exc.value.code == "already_completed"
    assert [c.used for c in store.list_codes("loc-a") if c.value == code] == [False]
    assert store.get_user_total_winnings(user.id) == Decimal("0")
    assert session.phase == GamePhase.APPROACHING
    assert session.target.id == "loc-next"


def test_reveal_refused_when_already_completed_elsewhere():
    clock = _Clock()
    store, user = _world()
    session = _session(store, user, clock)
    _move(session, clock, _north(TARGET, 10))
    store.record_completion(CompletedLocation(actor=Actor.user(user.id), location_id="loc-a"))

    with pytest.raises(GameRuleError) as exc:
        session.request_reveal()
    assert exc.value.code == "already_completed"
    assert store.list_codes("loc-a") == []
    snap = session.snapshot()
    assert snap.phase == GamePhase.APPROACHING
    assert snap.target.id == "loc-next"
    assert snap.error == "You have already completed this location."
    assert snap.code is None


class _CodeStoreDown(InMemoryStore):
    def insert_code(self, value, location_id, next_location_id):
        raise StoreError("store unreachable")


def test_reveal_falls_back_to_local_code_when_store_is_down():
    clock = _Clock()
    store, user = _world(_CodeStoreDown())
    session = _session(store, user, clock)
    code = _reach_and_reveal(session, clock)

    snap = session.snapshot()
    assert snap.degraded is True
    assert re.fullmatch(r"[A-Z0-9]{6}", code)

    snap = session.submit_code(code)
    assert snap.target.id == "loc-next"
    assert snap.winnings == Decimal("0")
    assert store.list_completions() == []
    assert store.get_user_total_winnings(user.id) == Decimal("0")


def test_no_fallback_surfaces_store_error():
    clock = _Clock()
    store, user = _world(_CodeStoreDown())
    session = _session(store, user, clock, fallback=NoFallback())
    _move(session, clock, _north(TARGET, 10))

    with pytest.raises(StoreError):
        session.request_reveal()
    assert session.phase == GamePhase.REACHED
    assert session.snapshot().code is None


class _FlakyClaimStore(InMemoryStore):
    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    def claim_code(self, value, location_id):
        if self.failures > 0:
            self.failures -= 1
            raise StoreError("timeout")
        return super().claim_code(value, location_id)


def test_verification_is_retried_once():
    clock = _Clock()
    store, user = _world(_FlakyClaimStore(failures=1))
    session = _session(store, user, clock)
    code = _reach_and_reveal(session, clock)

    snap = session.submit_code(code)
    assert snap.degraded is False
    assert snap.winnings == Decimal("100.00")
    assert store.has_user_completed_location(user.id, "loc-a")


def test_verification_falls_back_to_local_equality():
    clock = _Clock()
    store, user = _world(_FlakyClaimStore(failures=10))
    session = _session(store, user, clock)
    code = _reach_and_reveal(session, clock)
    wrong = "AAAAAA" if code != "AAAAAA" else "BBBBBB"

    with pytest.raises(GameRuleError):
        session.submit_code(wrong)

    snap = session.submit_code(code)
    assert snap.degraded is True
    assert snap.winnings == Decimal("0")
    assert snap.target.id == "loc-next"
    assert not store.has_user_completed_location(user.id, "loc-a")


def test_sensor_error_then_retry_restarts_acquisition():
    clock = _Clock()
    store, user = _world()
    session = _session(store, user, clock)
    _move(session, clock, _north(TARGET, 500))

    snap = session.report_sensor_error("permission_denied")
    assert snap.phase == GamePhase.SENSOR_FAILED
    assert snap.error == SENSOR_ERROR_MESSAGES["permission_denied"]

    clock.advance(60_000)
    assert _move(session, clock, _north(TARGET, 10)).phase == GamePhase.SENSOR_FAILED
    assert session.snapshot().error is not None

    snap = session.retry()
    assert snap.phase == GamePhase.ACQUIRING
    assert snap.error is None
    assert snap.position is None
    assert _move(session, clock, _north(TARGET, 300)).phase == GamePhase.APPROACHING

    assert session.report_sensor_error("timeout", "GPS timed out after 10s").error == "GPS timed out after 10s"
    with pytest.raises(ValueError):
        session.report_sensor_error("exploded")


def test_poor_readings_are_dropped_and_missing_accuracy_defaults():
    clock = _Clock()
    store, user = _world()
    session = _session(store, user, clock)

    snap = _move(session, clock, _north(TARGET, 300), accuracy_m=None)
    assert snap.accuracy_m == 100

    first = _move(session, clock, _north(TARGET, 300), accuracy_m=5)
    dropped = _move(session, clock, _north(TARGET, 10), accuracy_m=150)
    assert dropped.position == first.position
    assert dropped.accuracy_m == 5
    assert dropped.accuracy_label == "Excellent"


def test_heading_drives_compass_needle():
    clock = _Clock()
    store, user = _world()
    session = _session(store, user, clock)
    _move(session, clock, _north(TARGET, -300))
    snap = session.on_heading(350)

    assert snap.heading == 350
    assert snap.bearing == pytest.approx(0, abs=1e-6)
    assert snap.needle == pytest.approx((snap.bearing - 350) % 360)


def test_fallback_targets_when_store_has_no_active_location(tmp_path):
    clock = _Clock()
    store = InMemoryStore()
    user = store.create_or_update_user("fp-bob")

    session = _session(store, user, clock)
    assert session.target.id == get_settings().game.default_target.id

    cache = TargetCache(tmp_path)
    cache.save(Location(id="cached", point=GeoPoint(lat=1.0, lon=2.0), active=True))
    session = _session(store, user, clock, cache=cache)
    assert session.target.id == "cached"


def test_closed_session_rejects_input():
    clock = _Clock()
    store, user = _world()
    session = _session(store, user, clock)
    session.close()

    assert session.closed
    with pytest.raises(SessionClosed):
        session.on_heading(10)
    with pytest.raises(SessionClosed):
        _move(session, clock, TARGET)


def test_actions_in_wrong_phase_are_rejected():
    clock = _Clock()
    store, user = _world()
    session = _session(store, user, clock)

    for action in (session.request_reveal, session.report_ar_shown, lambda: session.submit_code("ABCDEF")):
        with pytest.raises(GameRuleError) as exc:
            action()
        assert exc.value.code == "wrong_phase"


def test_camera_error_falls_back_to_scratch_and_ar_reveals():
    clock = _Clock()
    store, user = _world()
    session = _session(store, user, clock)
    _move(session, clock, _north(TARGET, 10))
    session.request_reveal()

    assert session.report_camera_error("NotAllowedError").reveal_mode == "scratch"
    snap = session.report_ar_shown()
    assert snap.phase == GamePhase.CODE_ENTRY
    assert snap.reveal_mode == "ar"


class _FlakyRecordStore(InMemoryStore):
    """`record_completion` fails once; with `lands=True` the write goes through before the error."""

    def __init__(self, lands: bool = False):
        super().__init__()
        self.lands = lands
        self.failures = 1

    def record_completion(self, completion):
        if self.failures > 0:
            self.failures -= 1
            if self.lands:
                super().record_completion(completion)
            raise StoreError("write timeout")
        return super().record_completion(completion)


@pytest.mark.parametrize("lands", [False, True])
def test_verification_retry_does_not_burn_the_claimed_code(lands):
    clock = _Clock()
    store, user = _world(_FlakyRecordStore(lands=lands))
    session = _session(store, user, clock)
    code = _reach_and_reveal(session, clock)

    snap = session.submit_code(code)

    assert snap.phase == GamePhase.APPROACHING
    assert snap.target.id == "loc-next"
    assert snap.degraded is False
    assert snap.winnings == Decimal("100.00")
    assert store.get_user_total_winnings(user.id) == Decimal("100.00")
    (claimed,) = [c for c in store.list_codes("loc-a") if c.value == code]
    assert claimed.used is True
    (completion,) = store.list_completions()
    assert completion.code_id == claimed.id


class _WinningsDownStore(InMemoryStore):
    def __init__(self):
        super().__init__()
        self.down = True

    def add_winnings_to_user(self, user_id, amount):
        if self.down:
            raise StoreError("write timeout")
        return super().add_winnings_to_user(user_id, amount)


def test_failed_solo_credit_is_queued_until_the_store_recovers():
    clock = _Clock()
    store, user = _world(_WinningsDownStore())
    teams = TeamCoordinator(store, get_settings(), clock)
    session = _session(store, user, clock, teams=teams)
    code = _reach_and_reveal(session, clock)

    snap = session.submit_code(code)
    assert snap.target.id == "loc-next"
    assert snap.winnings == Decimal("100.00")
    assert store.get_user_total_winnings(user.id) == Decimal("0")
    assert teams.pending_payouts() == {user.id: Decimal("100.00")}

    store.down = False
    assert teams.retry_pending_payouts() == {user.id: Decimal("100.00")}
    assert teams.pending_payouts() == {}
    assert store.get_user_total_winnings(user.id) == Decimal("100.00")


def test_reveal_without_a_target_is_a_phase_error(monkeypatch):
    clock = _Clock()
    store, user = _world()
    session = _session(store, user, clock)
    _move(session, clock, _north(TARGET, 10))
    monkeypatch.setattr(session, "_target", None)

    with pytest.raises(GameRuleError) as exc:
        session.request_reveal()
    assert exc.value.code == "wrong_phase"
    assert store.list_codes("loc-a") == []
