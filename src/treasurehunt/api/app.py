"""
FastAPI application wiring.

`create_app()` builds the store once and keeps it, with the session registry and
team coordinator, on `app.state`. Game logic lives in `treasurehunt.game`;
routes only translate HTTP to session calls.

Run with `uvicorn --factory treasurehunt.api.app:create_app` or `treasurehunt serve`.
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from treasurehunt import __version__
from treasurehunt.catalog.loader import load_locations, seed_store
from treasurehunt.config.settings import Settings, get_settings
from treasurehunt.core.cache import TargetCache
from treasurehunt.core.logging import configure_logging
from treasurehunt.game.teams import TeamCoordinator
from treasurehunt.store import TreasureStore, build_store

from .admin import router as admin_router
from .registry import SessionRegistry
from .routes import router

logger = logging.getLogger(__name__)


def _add_cors(app: FastAPI) -> None:
    # TREASUREHUNT_CORS_ORIGINS="https://hunt.example.com,http://localhost:3000"
    origins = [s.strip() for s in os.getenv("TREASUREHUNT_CORS_ORIGINS", "").split(",") if s.strip()]
    allow_local = os.getenv("TREASUREHUNT_CORS_ALLOW_LOCAL", "1").strip().lower() in {"1", "true", "yes", "y"}
    origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$" if allow_local and not origins else None
    if origins or origin_regex:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_origin_regex=origin_regex,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )


def create_app(settings: Settings | None = None, store: TreasureStore | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    if store is None:
        store = build_store(settings)
        if settings.store.seed_path:
            seed_store(store, load_locations(settings.store.seed_path))

    app = FastAPI(title=settings.app.name, version=__version__)
    _add_cors(app)

    app.state.settings = settings
    app.state.store = store
    app.state.sessions = SessionRegistry(settings.players.session_idle_seconds)
    app.state.teams = TeamCoordinator(store, settings)
    app.state.target_cache = TargetCache.from_settings(settings)

    app.include_router(router)
    app.include_router(admin_router)
    logger.info("App ready (store=%s)", settings.store.backend)
    return app
