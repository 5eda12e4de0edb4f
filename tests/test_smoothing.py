import pytest

from treasurehunt.core.geo import GeoPoint, calculate_distance
from treasurehunt.core.smoothing import GpsSample, HeadingSmoother, LocationSmoother

TRUE = GeoPoint(lat=21.855204, lon=70.249010)


def _sample(dlat: float, dlon: float, accuracy_m: float, t_ms: int) -> GpsSample:
    return GpsSample(point=GeoPoint(lat=TRUE.lat + dlat, lon=TRUE.lon + dlon), accuracy_m=accuracy_m, captured_at_ms=t_ms)


def test_single_sample_is_returned_unchanged():
    smoother = LocationSmoother()
    s = _sample(0.001, -0.001, 20, 0)
    assert smoother.add(s) == s.point


def test_converges_towards_true_position_as_accuracy_improves():
    smoother = LocationSmoother()
    noisy = [
        (0.0002, -0.0002, 50),
        (-0.0001, 0.0001, 30),
        (0.00005, -0.00005, 15),
        (-0.00002, 0.00002, 8),
        (0.00001, -0.00001, 3),
    ]
    first_error = None
    out = None
    for i, (dlat, dlon, acc) in enumerate(noisy):
        out = smoother.add(_sample(dlat, dlon, acc, i * 1000))
        if first_error is None:
            first_error = calculate_distance(out, TRUE)

    assert out is not None
    final_error = calculate_distance(out, TRUE)
    assert final_error < 5
    assert final_error < first_error


def test_stale_sample_never_contributes():
    smoother = LocationSmoother()
    smoother.add(_sample(0.01, 0.01, 10, 0))
    fresh = _sample(0, 0, 10, 6000)
    out = smoother.add(fresh)
    assert out == fresh.point
    assert len(smoother) == 1


def test_sample_exactly_at_max_age_is_evicted():
    smoother = LocationSmoother(max_age_ms=5000)
    smoother.add(_sample(0.01, 0.01, 10, 0))
    out = smoother.add(_sample(0, 0, 10, 5000))
    assert out == TRUE


def test_explicit_now_evicts_relative_to_now():
    smoother = LocationSmoother()
    smoother.add(_sample(0.01, 0.01, 10, 0))
    out = smoother.add(_sample(0, 0, 10, 1000), now_ms=5500)
    assert out == TRUE


def test_window_is_bounded():
    smoother = LocationSmoother(max_samples=5)
    for i in range(7):
        smoother.add(_sample(0, 0, 5, i * 100))
    assert len(smoother) == 5


def test_weighted_mean_prefers_accurate_fixes():
    smoother = LocationSmoother()
    smoother.add(GpsSample(point=GeoPoint(lat=0.0, lon=0.0), accuracy_m=0, captured_at_ms=0))
    out = smoother.add(GpsSample(point=GeoPoint(lat=1.0, lon=0.0), accuracy_m=90, captured_at_ms=100))
    # weights 1 and 0.1
    assert out.lat == pytest.approx(0.1 / 1.1)


def test_reset_clears_buffer():
    smoother = LocationSmoother()
    smoother.add(_sample(0.01, 0, 10, 0))
    smoother.reset()
    assert len(smoother) == 0
    s = _sample(0, 0, 10, 100)
    assert smoother.add(s) == s.point


def test_heading_wraps_through_short_path():
    h = HeadingSmoother(alpha=0.3)
    assert h.smooth(359) == 359
    out = h.smooth(1)
    assert out == pytest.approx(359.6)

    h2 = HeadingSmoother()
    h2.smooth(1)
    assert h2.smooth(359) == pytest.approx(0.4)


def test_heading_normalises_and_resets():
    h = HeadingSmoother()
    assert h.smooth(-10) == pytest.approx(350)
    assert h.smooth(720) == pytest.approx(350 + 10 * 0.3)
    h.reset()
    assert h.value is None
    assert h.smooth(180) == 180
    for _ in range(50):
        v = h.smooth(90)
        assert 0 <= v < 360
    assert h.value == pytest.approx(90, abs=1e-3)
