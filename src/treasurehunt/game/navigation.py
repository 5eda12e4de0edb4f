"""
Turn-by-turn handoff to external map apps.

The game shows distance and a compass needle itself; for walking directions it
hands off to Google Maps (or Apple Maps on iOS). Each platform gets a primary
link and a fallback for when the native app is not installed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from treasurehunt.core.geo import GeoPoint

Platform = Literal["ios", "android", "desktop"]


@dataclass(frozen=True)
class DirectionsLinks:
    primary: str
    fallback: str | None = None


def detect_platform(user_agent: str | None) -> Platform:
    ua = user_agent or ""
    if re.search(r"iPad|iPhone|iPod", ua):
        return "ios"
    if "Android" in ua:
        return "android"
    return "desktop"


def _coords(p: GeoPoint) -> str:
    return f"{p.lat},{p.lon}"


def _web_url(origin: GeoPoint, destination: GeoPoint) -> str:
    # data=!4m2!4m1!3e2 selects walking mode.
    return (
        f"https://www.google.com/maps/dir/{_coords(origin)}/{_coords(destination)}"
        f"/@{origin.lat},{origin.lon},15z/data=!4m2!4m1!3e2"
    )


def directions_links(origin: GeoPoint, destination: GeoPoint, platform: Platform = "desktop") -> DirectionsLinks:
    """Walking-directions links from `origin` to `destination` for the given platform."""
    saddr, daddr = _coords(origin), _coords(destination)
    if platform == "ios":
        return DirectionsLinks(
            primary=f"comgooglemaps://?saddr={saddr}&daddr={daddr}&directionsmode=walking",
            fallback=f"http://maps.apple.com/?saddr={saddr}&daddr={daddr}&dirflg=w",
        )
    if platform == "android":
        return DirectionsLinks(
            primary=f"google.navigation:q={daddr}&mode=w",
            fallback=_web_url(origin, destination),
        )
    return DirectionsLinks(primary=_web_url(origin, destination))
