"""
Operator endpoints for managing locations.

All routes require the `X-Admin-Token` header to match `settings.admin.token`.
With no token configured the admin surface is disabled entirely.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, Header, Request

from treasurehunt.domain.models import Location, LocationDraft, LocationUpdate

from .errors import http_error, translate_errors

logger = logging.getLogger(__name__)


def require_admin(request: Request, x_admin_token: str | None = Header(default=None)) -> None:
    expected = request.app.state.settings.admin.token
    if not expected:
        raise http_error(403, "ADMIN_DISABLED", "Admin API is disabled (no admin token configured).")
    if not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise http_error(401, "UNAUTHORIZED", "Invalid admin token.")


router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])


@router.get("/locations", response_model=list[Location])
def list_locations(request: Request) -> list[Location]:
    with translate_errors():
        return request.app.state.store.list_locations()


@router.post("/locations", response_model=Location, status_code=201)
def create_location(body: LocationDraft, request: Request) -> Location:
    with translate_errors():
        location = request.app.state.store.create_location(body)
    logger.info("Admin created location=%s", location.id)
    return location


@router.patch("/locations/{location_id}", response_model=Location)
def update_location(location_id: str, body: LocationUpdate, request: Request) -> Location:
    with translate_errors():
        return request.app.state.store.update_location(location_id, body)


@router.delete("/locations/{location_id}", status_code=204)
def delete_location(location_id: str, request: Request) -> None:
    with translate_errors():
        request.app.state.store.delete_location(location_id)
    logger.info("Admin deleted location=%s", location_id)


@router.post("/locations/{location_id}/activate", response_model=Location)
def activate_location(location_id: str, request: Request) -> Location:
    with translate_errors():
        location = request.app.state.store.set_active_location(location_id)
    logger.info("Admin activated location=%s", location_id)
    return location


@router.post("/locations/{location_id}/deactivate", response_model=Location)
def deactivate_location(location_id: str, request: Request) -> Location:
    with translate_errors():
        return request.app.state.store.deactivate_location(location_id)
