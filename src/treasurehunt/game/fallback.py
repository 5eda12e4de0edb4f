"""
Code fallback policies for when the store is unreachable.

`LocalCodeFallback` keeps the game playable without the store, at a cost:
- generated codes are not persisted and not guaranteed unique,
- verification is a local string comparison against the last generated code,
- nothing is recorded server-side, so no completion and no winnings credit.

`NoFallback` is the strict mode: the store failure propagates to the caller.
"""

from __future__ import annotations

import hmac
import logging
from abc import ABC, abstractmethod

from treasurehunt.config.settings import Settings
from treasurehunt.core.codes import DEFAULT_ALPHABET, random_code
from treasurehunt.store.base import StoreError

logger = logging.getLogger(__name__)


class CodeFallbackPolicy(ABC):
    """Strategy consulted by the session when a store code call fails."""

    @abstractmethod
    def generate_code(self, location_id: str, error: StoreError) -> str: ...

    @abstractmethod
    def verify_code(self, submitted: str, last_generated: str | None, error: StoreError) -> bool: ...


class LocalCodeFallback(CodeFallbackPolicy):
    def __init__(self, length: int = 6, alphabet: str = DEFAULT_ALPHABET):
        self._length = length
        self._alphabet = alphabet

    def generate_code(self, location_id: str, error: StoreError) -> str:
        logger.warning("Store code generation failed for location=%s; using local code: %s", location_id, error)
        return random_code(self._length, self._alphabet)

    def verify_code(self, submitted: str, last_generated: str | None, error: StoreError) -> bool:
        logger.warning("Store code verification failed; comparing against local code: %s", error)
        if not last_generated:
            return False
        return hmac.compare_digest(submitted, last_generated)


class NoFallback(CodeFallbackPolicy):
    def generate_code(self, location_id: str, error: StoreError) -> str:
        raise error

    def verify_code(self, submitted: str, last_generated: str | None, error: StoreError) -> bool:
        raise error


def fallback_from_settings(settings: Settings) -> CodeFallbackPolicy:
    if settings.game.degraded_mode_enabled:
        return LocalCodeFallback(settings.codes.length, settings.codes.alphabet)
    return NoFallback()
