"""
Player identity and presence.

Players are identified by a best-effort device fingerprint: a hash of browser
and hardware traits reported by the client. It keeps one account per device in
casual play; it is a heuristic, not an anti-abuse boundary.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from treasurehunt.domain.models import User
from treasurehunt.store.base import StoreError, TreasureStore

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _rolling_hash(text: str) -> int:
    """32-bit signed `hash * 31 + unit` over UTF-16 code units."""
    data = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    return h - (1 << 32) if h >= (1 << 31) else h


def fingerprint_from_traits(traits: Mapping[str, object]) -> str:
    """Stable `fp-<base36>` id from device traits (e.g. `{"screen": "390x844", "lang": "en-IN"}`).

    Empty trait values are skipped; trait order matters.
    """
    components = [f"{key}:{value}" for key, value in traits.items() if value not in (None, "")]
    if not components:
        raise ValueError("At least one device trait is required")
    return f"fp-{_to_base36(abs(_rolling_hash('|'.join(components))))}"


def register_player(store: TreasureStore, fingerprint: str, display_name: str | None = None) -> User:
    """Create or refresh the user for this device and mark them online."""
    user = store.create_or_update_user(fingerprint, display_name)
    logger.info("Registered player=%s", user.id)
    return user


def touch(store: TreasureStore, user_id: str) -> None:
    """Best-effort presence heartbeat."""
    try:
        store.update_user_last_seen(user_id)
    except StoreError as exc:
        logger.warning("Failed to update last seen for user=%s: %s", user_id, exc)


def online_players(store: TreasureStore, window_seconds: int) -> int:
    try:
        return store.get_online_players_count(window_seconds)
    except StoreError as exc:
        logger.warning("Failed to count online players: %s", exc)
        return 0
