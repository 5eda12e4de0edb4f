"""
Store backends and the factory that picks one from settings.
"""

from __future__ import annotations

import logging

from treasurehunt.config.settings import Settings
from treasurehunt.store.base import StoreError, StoreNotFound, TreasureStore
from treasurehunt.store.memory import InMemoryStore
from treasurehunt.store.pocketbase import PocketBaseStore

logger = logging.getLogger(__name__)

__all__ = [
    "InMemoryStore",
    "PocketBaseStore",
    "StoreError",
    "StoreNotFound",
    "TreasureStore",
    "build_store",
]


def build_store(settings: Settings) -> TreasureStore:
    """Construct the configured backend once; callers pass it by reference."""
    backend = settings.store.backend
    if backend == "pocketbase":
        logger.info("Using PocketBase store at %s", settings.store.base_url)
        return PocketBaseStore(settings)
    if backend == "memory":
        store = InMemoryStore()
        store.code_length = settings.codes.length
        store.code_alphabet = settings.codes.alphabet
        logger.info("Using in-memory store")
        return store
    raise ValueError(f"Unknown store backend: {backend}")
