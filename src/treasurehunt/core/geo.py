from __future__ import annotations

import math
from dataclasses import dataclass
from math import asin, atan2, cos, degrees, radians, sin, sqrt

"""
Geospatial helpers.

Pure spherical-Earth math used by the game: Haversine distance, initial bearing,
and the small display helpers the compass and distance readout need.
"""

EARTH_RADIUS_M = 6_371_000


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float


def validate_point(point: GeoPoint) -> GeoPoint:
    """Reject non-finite or out-of-range coordinates (the math itself just propagates NaN)."""
    if not (math.isfinite(point.lat) and math.isfinite(point.lon)):
        raise ValueError(f"Coordinates must be finite, got ({point.lat}, {point.lon})")
    if not -90 <= point.lat <= 90:
        raise ValueError(f"Latitude out of range: {point.lat}")
    if not -180 <= point.lon <= 180:
        raise ValueError(f"Longitude out of range: {point.lon}")
    return point


def calculate_distance(a: GeoPoint, b: GeoPoint) -> float:
    """Compute great-circle distance in meters between two points."""
    lat1 = radians(a.lat)
    lat2 = radians(b.lat)
    dlat = lat2 - lat1
    dlon = radians(b.lon - a.lon)

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # Rounding can push h slightly past 1 for antipodal points.
    h = min(1.0, h)
    return 2 * EARTH_RADIUS_M * asin(sqrt(h))


def calculate_bearing(a: GeoPoint, b: GeoPoint) -> float:
    """Initial bearing (forward azimuth) from `a` to `b`, in degrees within [0, 360).

    The bearing from a point to itself is 0.0.
    """
    lat1 = radians(a.lat)
    lat2 = radians(b.lat)
    dlon = radians(b.lon - a.lon)

    y = sin(dlon) * cos(lat2)
    x = cos(lat1) * sin(lat2) - sin(lat1) * cos(lat2) * cos(dlon)
    bearing = (degrees(atan2(y, x)) + 360) % 360
    # -1e-15 + 360 rounds to 360.0 in floating point.
    return 0.0 if bearing >= 360 else bearing


def format_distance(meters: float) -> str:
    """Render a distance for display: whole meters below 1 km, otherwise km with 2 decimals."""
    if meters >= 1000:
        return f"{meters / 1000:.2f} km"
    return f"{math.floor(meters + 0.5)} m"


def relative_bearing(bearing: float, heading: float) -> float:
    """Angle of the target relative to where the device points (compass needle rotation)."""
    return (bearing - heading) % 360


def accuracy_label(accuracy_m: float) -> str:
    if accuracy_m < 10:
        return "Excellent"
    if accuracy_m < 30:
        return "Good"
    if accuracy_m < 50:
        return "Fair"
    return "Poor"
