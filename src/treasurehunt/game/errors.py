"""
Game-layer exceptions.

`GameRuleError` is the "logic error" class of the error taxonomy: a rejected
player action with a stable machine-readable `code` and a user-facing message.
No state is mutated when one is raised.
"""

from __future__ import annotations

from typing import Literal

SensorErrorKind = Literal["permission_denied", "position_unavailable", "timeout"]

SENSOR_ERROR_KINDS: tuple[str, ...] = ("permission_denied", "position_unavailable", "timeout")

# Messages shown when the client reports a sensor failure without its own text.
SENSOR_ERROR_MESSAGES: dict[str, str] = {
    "permission_denied": "Location permission denied. Please enable location access.",
    "position_unavailable": "Location information unavailable.",
    "timeout": "Location request timed out.",
}


class GameRuleError(ValueError):
    """A player action rejected by the game rules."""

    # Rules that conflict with the current state (HTTP 409) rather than bad input (400).
    CONFLICT_CODES = frozenset(
        {
            "already_completed",
            "wrong_phase",
            "team_reveal_automatic",
            "quorum_not_met",
            "already_member",
            "invite_used",
        }
    )

    def __init__(self, code: str, message: str | None = None):
        self.code = code
        self.message = message or code.replace("_", " ").capitalize()
        super().__init__(self.message)

    @property
    def is_conflict(self) -> bool:
        return self.code in self.CONFLICT_CODES


class SensorError(RuntimeError):
    """A device location sensor failure reported by the client."""

    def __init__(self, kind: str, message: str | None = None):
        if kind not in SENSOR_ERROR_KINDS:
            raise ValueError(f"Unknown sensor error kind: {kind}")
        self.kind = kind
        self.message = message or SENSOR_ERROR_MESSAGES[kind]
        super().__init__(self.message)


class SessionClosed(RuntimeError):
    """Raised when a closed session receives further input."""
