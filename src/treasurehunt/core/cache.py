from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from treasurehunt.config.settings import Settings
from treasurehunt.core.env import resolve_project_path
from treasurehunt.domain.models import Location

"""
Client-local state cache.

A session needs a target before (or without) a store response. We persist the
last known active target as a small JSON envelope on disk:
- one file per key under `.cache/treasurehunt/` by default,
- TTL enforced on `get`, ignored by `get_stale`,
- atomic writes (tmp file + replace) so a crash never leaves a half-written file.
"""


@dataclass(frozen=True)
class CacheEntry:
    """Serialized cache envelope stored on disk."""

    created_at_unix: int
    ttl_seconds: int
    value: Any


class LocalStateCache:
    """A filesystem-backed key/value store for small JSON payloads."""

    def __init__(self, base_dir: Path, enabled: bool = True, default_ttl_seconds: int = 86400):
        self._base_dir = Path(base_dir)
        self._enabled = enabled
        self._default_ttl_seconds = default_ttl_seconds

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _key_path(self, key: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in key)
        return self._base_dir / f"{safe}.json"

    def _read_entry(self, key: str) -> CacheEntry | None:
        path = self._key_path(key)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return CacheEntry(
                created_at_unix=int(raw["created_at_unix"]),
                ttl_seconds=int(raw["ttl_seconds"]),
                value=raw["value"],
            )
        except (OSError, ValueError, KeyError, TypeError):
            return None

    def get(self, key: str, ttl_seconds: int | None = None) -> Any | None:
        """Read a cached value if present and not expired; otherwise return None."""
        if not self._enabled:
            return None
        entry = self._read_entry(key)
        if entry is None:
            return None
        effective_ttl = ttl_seconds if ttl_seconds is not None else entry.ttl_seconds
        if int(time.time()) - entry.created_at_unix > effective_ttl:
            return None
        return entry.value

    def get_stale(self, key: str) -> Any | None:
        """Read a cached value even if expired; otherwise return None."""
        if not self._enabled:
            return None
        entry = self._read_entry(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Write a JSON-serializable value to disk."""
        if not self._enabled:
            return None

        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl_seconds
        path = self._key_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = {
            "created_at_unix": int(time.time()),
            "ttl_seconds": int(ttl),
            "value": value,
        }
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)

    def delete(self, key: str) -> None:
        path = self._key_path(key)
        if path.exists():
            path.unlink()


class TargetCache:
    """Last known active target `Location`, persisted between sessions."""

    KEY = "active_target"

    def __init__(self, base_dir: Path, enabled: bool = True, ttl_seconds: int = 86400):
        self._cache = LocalStateCache(base_dir, enabled=enabled, default_ttl_seconds=ttl_seconds)

    @classmethod
    def from_settings(cls, settings: Settings) -> TargetCache:
        return cls(
            resolve_project_path(settings.cache.dir),
            enabled=settings.cache.enabled,
            ttl_seconds=settings.cache.target_ttl_seconds,
        )

    def _parse(self, raw: Any) -> Location | None:
        if raw is None:
            return None
        try:
            return Location.model_validate(raw)
        except ValueError:
            return None

    def load(self) -> Location | None:
        """Cached target if present and fresh, else None."""
        return self._parse(self._cache.get(self.KEY))

    def load_stale(self) -> Location | None:
        """Cached target regardless of age, else None."""
        return self._parse(self._cache.get_stale(self.KEY))

    def save(self, location: Location) -> None:
        try:
            self._cache.set(self.KEY, location.model_dump(mode="json"))
        except OSError:
            # Cache is best effort; the session already has the target in memory.
            return None

    def clear(self) -> None:
        self._cache.delete(self.KEY)
