# src/treasurehunt/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/treasurehunt/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `TREASUREHUNT_STORE_URL`, `POCKETBASE_ADMIN_PASSWORD`)
- an external YAML file via `TREASUREHUNT_CONFIG_PATH`

Design rule:
- Tuning knobs (geofence radius, smoothing window, code lengths) live in YAML, not in game logic.
"""

from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from treasurehunt.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `treasurehunt.config`."""
    text = resources.files("treasurehunt.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "Treasure Hunt"
    log_level: str = "INFO"
    public_base_url: str = "http://localhost:8000"


class DefaultTargetSettings(BaseModel):
    """Target used when neither the store nor the local cache knows an active location."""

    id: str = "default"
    name: str = "Treasure Location"
    lat: float = Field(21.854978, ge=-90, le=90)
    lon: float = Field(70.249041, ge=-180, le=180)
    winning_amount: Decimal = Field(Decimal("0"), ge=0)
    minimum_team_size: int = Field(1, ge=1)


class GameSettings(BaseModel):
    reach_distance_m: float = Field(50.0, gt=0)
    scratch_reveal_threshold: float = Field(0.5, gt=0, lt=1)
    error_display_seconds: float = Field(3.0, ge=0)
    verify_retries: int = Field(1, ge=0)
    degraded_mode_enabled: bool = True
    default_target: DefaultTargetSettings = Field(default_factory=DefaultTargetSettings)


class SmoothingSettings(BaseModel):
    max_samples: int = Field(5, ge=1)
    max_age_ms: int = Field(5000, ge=0)
    accuracy_scale_m: float = Field(10.0, gt=0)
    heading_alpha: float = Field(0.3, gt=0, le=1)
    missing_accuracy_m: float = Field(100.0, ge=0)
    poor_accuracy_m: float = Field(100.0, ge=0)
    good_accuracy_m: float = Field(50.0, ge=0)


class CodeSettings(BaseModel):
    length: int = Field(6, ge=4)
    alphabet: str = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


class TeamSettings(BaseModel):
    code_length: int = Field(8, ge=4)
    code_max_attempts: int = Field(10, ge=1)
    invite_code_length: int = Field(12, ge=6)
    invite_ttl_seconds: int = Field(60 * 60, gt=0)


class PlayerSettings(BaseModel):
    online_window_seconds: int = Field(120, gt=0)
    # Sessions untouched this long are closed; 0 keeps them until DELETE.
    session_idle_seconds: int = Field(1800, ge=0)


class StoreRetrySettings(BaseModel):
    max_attempts: int = Field(2, ge=0)
    base_delay_seconds: float = Field(0.5, ge=0)
    max_delay_seconds: float = Field(4.0, ge=0)


class StoreSettings(BaseModel):
    backend: Literal["memory", "pocketbase"] = "memory"
    base_url: str = "http://127.0.0.1:8090"
    auth_path: str = "/api/admins/auth-with-password"
    admin_email: str | None = None
    admin_password: str | None = None
    http_timeout_seconds: float = 10
    seed_path: str | None = None
    retry: StoreRetrySettings = Field(default_factory=StoreRetrySettings)


class CacheSettings(BaseModel):
    enabled: bool = True
    dir: str = ".cache/treasurehunt"
    target_ttl_seconds: int = 60 * 60 * 24


class AdminSettings(BaseModel):
    token: str | None = None


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    game: GameSettings = Field(default_factory=GameSettings)
    smoothing: SmoothingSettings = Field(default_factory=SmoothingSettings)
    codes: CodeSettings = Field(default_factory=CodeSettings)
    teams: TeamSettings = Field(default_factory=TeamSettings)
    players: PlayerSettings = Field(default_factory=PlayerSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    admin: AdminSettings = Field(default_factory=AdminSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small to avoid exposing unsafe overrides.
    """
    load_dotenv_if_present()
    data = dict(data)

    log_level = os.getenv("TREASUREHUNT_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    cache_dir = os.getenv("TREASUREHUNT_CACHE_DIR")
    if cache_dir:
        data.setdefault("cache", {})["dir"] = cache_dir

    backend = os.getenv("TREASUREHUNT_STORE_BACKEND")
    if backend:
        data.setdefault("store", {})["backend"] = backend

    store_url = os.getenv("TREASUREHUNT_STORE_URL")
    if store_url:
        data.setdefault("store", {})["base_url"] = store_url

    pb_email = os.getenv("POCKETBASE_ADMIN_EMAIL")
    pb_password = os.getenv("POCKETBASE_ADMIN_PASSWORD")
    if pb_email:
        data.setdefault("store", {})["admin_email"] = pb_email
    if pb_password:
        data.setdefault("store", {})["admin_password"] = pb_password

    admin_token = os.getenv("TREASUREHUNT_ADMIN_TOKEN")
    if admin_token:
        data.setdefault("admin", {})["token"] = admin_token

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("TREASUREHUNT_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
