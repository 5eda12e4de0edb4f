"""
Random code helpers shared by location codes, team codes and invites.
"""

from __future__ import annotations

import re
import secrets

DEFAULT_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


def random_code(length: int, alphabet: str = DEFAULT_ALPHABET) -> str:
    """Return `length` characters drawn uniformly from `alphabet`."""
    if length <= 0:
        raise ValueError("length must be > 0")
    if not alphabet:
        raise ValueError("alphabet must not be empty")
    return "".join(secrets.choice(alphabet) for _ in range(length))


def normalize_code(raw: str) -> str:
    """Canonical form of user-typed codes: trimmed, upper-case."""
    return (raw or "").strip().upper()


def is_well_formed(code: str, length: int) -> bool:
    return len(code) == length and re.fullmatch(r"[A-Z0-9]+", code) is not None
