"""
GPS and compass smoothing.

Raw device fixes jitter by tens of meters and compass headings flicker around
north. Two small stateful filters stabilise them before the game logic sees them:
- `LocationSmoother`: bounded, time-windowed, accuracy-weighted moving average.
- `HeadingSmoother`: exponential moving average on the circle.

Both are in-memory and single-threaded; a session owns one of each.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from treasurehunt.core.geo import GeoPoint


@dataclass(frozen=True)
class GpsSample:
    """One fix from the device location sensor.

    `accuracy_m` is None when the sensor did not report one; callers substitute a
    default before handing the sample to `LocationSmoother`.
    """

    point: GeoPoint
    accuracy_m: float | None
    captured_at_ms: int


class LocationSmoother:
    """Weighted average over the most recent fresh samples.

    Weight is `1 / (1 + accuracy_m / accuracy_scale_m)`, so a fix reported with a
    large accuracy radius contributes less. A zero accuracy radius simply gets the
    maximal weight of 1.
    """

    def __init__(self, max_samples: int = 5, max_age_ms: int = 5000, accuracy_scale_m: float = 10.0):
        if max_samples < 1:
            raise ValueError("max_samples must be >= 1")
        self._max_age_ms = int(max_age_ms)
        self._accuracy_scale_m = float(accuracy_scale_m)
        self._samples: deque[GpsSample] = deque(maxlen=int(max_samples))

    def __len__(self) -> int:
        return len(self._samples)

    def weight(self, sample: GpsSample) -> float:
        return 1.0 / (1.0 + max(0.0, sample.accuracy_m) / self._accuracy_scale_m)

    def add(self, sample: GpsSample, now_ms: int | None = None) -> GeoPoint:
        """Buffer `sample` and return the smoothed position.

        `now_ms` defaults to the sample's own capture time.
        """
        now = sample.captured_at_ms if now_ms is None else int(now_ms)
        fresh = [s for s in self._samples if now - s.captured_at_ms < self._max_age_ms]
        self._samples.clear()
        self._samples.extend(fresh)
        self._samples.append(sample)

        if len(self._samples) < 2:
            return sample.point

        total = 0.0
        lat = 0.0
        lon = 0.0
        for s in self._samples:
            w = self.weight(s)
            lat += s.point.lat * w
            lon += s.point.lon * w
            total += w
        return GeoPoint(lat=lat / total, lon=lon / total)

    def reset(self) -> None:
        self._samples.clear()


class HeadingSmoother:
    """Exponential moving average over compass headings, wrapping at 0/360."""

    def __init__(self, alpha: float = 0.3):
        if not 0 < alpha <= 1:
            raise ValueError("alpha must be in (0, 1]")
        self._alpha = float(alpha)
        self._heading: float | None = None

    @property
    def value(self) -> float | None:
        return self._heading

    def smooth(self, heading: float) -> float:
        if self._heading is None:
            self._heading = heading % 360
            return self._heading

        # Shortest signed difference, so 359 -> 1 moves +2 rather than -358.
        diff = heading % 360 - self._heading
        if diff > 180:
            diff -= 360
        elif diff < -180:
            diff += 360

        self._heading = (self._heading + diff * self._alpha) % 360
        return self._heading

    def reset(self) -> None:
        self._heading = None
