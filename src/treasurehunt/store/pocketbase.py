"""
PocketBase store backend.

This module is responsible only for:
- authenticating as a PocketBase admin (token cached, refreshed on 401),
- mapping store primitives onto the PocketBase records REST API,
- parsing records into the domain models in `treasurehunt.domain.models`.

Collections: `locations`, `codes`, `completed_locations`, `teams`, `team_members`,
`team_invites`, `users`. Field names are snake_case as listed in `_*_from_record`.

PocketBase has no conditional update, so `claim_code` and `claim_invite` are
read-check-write here; two concurrent claims of the same row can both succeed.
`completed_locations` should carry a unique index on
(actor_kind, actor_id, location_id) so duplicate completions are rejected server-side.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import httpx

from treasurehunt.config.settings import Settings
from treasurehunt.core.http import request_json
from treasurehunt.core.time import parse_timestamp
from treasurehunt.domain.models import (
    Actor,
    Code,
    CompletedLocation,
    GeoPoint,
    Location,
    LocationDraft,
    LocationUpdate,
    Team,
    TeamInvite,
    TeamMember,
    User,
)
from treasurehunt.store.base import StoreError, StoreNotFound, TreasureStore

logger = logging.getLogger(__name__)


def quote(value: Any) -> str:
    """Quote a value for a PocketBase filter expression."""
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def _pb_datetime(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.000Z")


def _ts(value: Any) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    return parse_timestamp(str(value))


def _opt_id(value: Any) -> str | None:
    return str(value) if value else None


def _location_from_record(rec: dict[str, Any]) -> Location:
    return Location(
        id=str(rec["id"]),
        name=rec.get("name") or "Treasure Location",
        point=GeoPoint(lat=float(rec["latitude"]), lon=float(rec["longitude"])),
        active=bool(rec.get("active", False)),
        winning_amount=Decimal(str(rec.get("winning_amount") or 0)),
        minimum_team_size=int(rec.get("minimum_team_size") or 1),
        next_location_id=_opt_id(rec.get("next_location_id")),
        created_at=_ts(rec.get("created")),
    )


def _location_to_record(fields: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in fields.items():
        if key == "point":
            point = value if isinstance(value, GeoPoint) else GeoPoint.model_validate(value)
            out["latitude"] = point.lat
            out["longitude"] = point.lon
        elif key == "winning_amount":
            out[key] = float(value)
        elif key == "next_location_id":
            out[key] = value or ""
        else:
            out[key] = value
    return out


def _code_from_record(rec: dict[str, Any]) -> Code:
    return Code(
        id=str(rec["id"]),
        value=str(rec["code"]),
        location_id=str(rec["location_id"]),
        next_location_id=_opt_id(rec.get("next_location_id")),
        used=bool(rec.get("used", False)),
        used_at=_ts(rec["used_at"]) if rec.get("used_at") else None,
        created_at=_ts(rec.get("created")),
    )


def _completion_from_record(rec: dict[str, Any]) -> CompletedLocation:
    return CompletedLocation(
        actor=Actor(kind=rec["actor_kind"], id=str(rec["actor_id"])),
        location_id=str(rec["location_id"]),
        code_id=_opt_id(rec.get("code_id")),
        winning_amount=Decimal(str(rec.get("winning_amount") or 0)),
        completed_at=_ts(rec.get("completed_at") or rec.get("created")),
    )


def _team_from_record(rec: dict[str, Any]) -> Team:
    return Team(
        id=str(rec["id"]),
        code=str(rec["code"]),
        created_by=str(rec["created_by"]),
        current_location_id=_opt_id(rec.get("current_location_id")),
        created_at=_ts(rec.get("created")),
    )


def _member_from_record(rec: dict[str, Any]) -> TeamMember:
    return TeamMember(
        team_id=str(rec["team_id"]),
        user_id=str(rec["user_id"]),
        role=rec.get("role") or "member",
        joined_at=_ts(rec.get("joined_at") or rec.get("created")),
    )


def _invite_from_record(rec: dict[str, Any]) -> TeamInvite:
    return TeamInvite(
        code=str(rec["code"]),
        team_id=str(rec["team_id"]),
        location_id=str(rec["location_id"]),
        created_by=str(rec["created_by"]),
        expires_at=_ts(rec["expires_at"]),
        used=bool(rec.get("used", False)),
        used_by=_opt_id(rec.get("used_by")),
        created_at=_ts(rec.get("created")),
    )


def _user_from_record(rec: dict[str, Any]) -> User:
    return User(
        id=str(rec["id"]),
        display_name=rec.get("display_name") or "Player",
        device_fingerprint=str(rec["device_fingerprint"]),
        total_winnings=Decimal(str(rec.get("total_winnings") or 0)),
        last_seen_at=_ts(rec.get("last_seen_at") or rec.get("updated")),
        is_online=bool(rec.get("is_online", False)),
    )


class PocketBaseStore(TreasureStore):
    """PocketBase REST client with admin token management and retry."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._base_url = settings.store.base_url.rstrip("/")
        self._token: str | None = None
        self.code_length = settings.codes.length
        self.code_alphabet = settings.codes.alphabet

    @staticmethod
    def _parse_retry_after_seconds(value: str | None) -> float | None:
        if not value:
            return None
        try:
            seconds = float(value)
        except ValueError:
            return None
        return seconds if seconds >= 0 else None

    def _get_token(self) -> str | None:
        """Admin token, or None when no credentials are configured (public rules only)."""
        if self._token:
            return self._token
        email = self._settings.store.admin_email
        password = self._settings.store.admin_password
        if not email or not password:
            return None
        try:
            payload = request_json(
                "POST",
                f"{self._base_url}{self._settings.store.auth_path}",
                json={"identity": email, "password": password},
                timeout_seconds=self._settings.store.http_timeout_seconds,
            )
        except (httpx.HTTPError, ValueError) as exc:
            raise StoreError(f"PocketBase admin login failed: {exc}") from exc
        token = payload.get("token") if isinstance(payload, dict) else None
        if not token:
            raise StoreError("PocketBase auth response is missing token.")
        self._token = str(token)
        return self._token

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Authenticated request with token refresh and backoff for 429/transient errors."""
        retry = self._settings.store.retry
        max_attempts = int(retry.max_attempts)
        base_delay_seconds = float(retry.base_delay_seconds)
        max_delay_seconds = float(retry.max_delay_seconds)
        url = f"{self._base_url}{path}"

        refreshed_token = False
        last_exc: Exception | None = None

        for attempt in range(max_attempts + 1):
            token = self._get_token()
            headers = {"Authorization": f"Bearer {token}"} if token else None
            try:
                return request_json(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=headers,
                    timeout_seconds=self._settings.store.http_timeout_seconds,
                )
            except httpx.HTTPStatusError as exc:
                last_exc = exc
                status = exc.response.status_code

                if status == 401 and token and not refreshed_token:
                    logger.info("PocketBase request unauthorized; refreshing token and retrying.")
                    self._token = None
                    refreshed_token = True
                    continue

                retry_after = self._parse_retry_after_seconds(exc.response.headers.get("Retry-After"))
                is_retryable_status = status in {429, 500, 502, 503, 504}
                if not is_retryable_status or attempt >= max_attempts:
                    raise

                delay = min(max_delay_seconds, base_delay_seconds * (2**attempt))
                if retry_after is not None:
                    delay = max(delay, retry_after)
                logger.warning(
                    "PocketBase request failed with status=%s; retrying in %.2fs (attempt %s/%s)",
                    status,
                    delay,
                    attempt + 1,
                    max_attempts,
                )
                time.sleep(delay)
            except httpx.TransportError as exc:
                last_exc = exc
                if attempt >= max_attempts:
                    raise StoreError(f"PocketBase unreachable: {exc}") from exc
                delay = min(max_delay_seconds, base_delay_seconds * (2**attempt))
                logger.warning(
                    "PocketBase transport error; retrying in %.2fs (attempt %s/%s)",
                    delay,
                    attempt + 1,
                    max_attempts,
                )
                time.sleep(delay)

        if last_exc:
            raise last_exc
        raise StoreError("PocketBase request failed without an exception (unexpected).")

    def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        """`_request` with HTTP failures translated into `StoreError`."""
        try:
            return self._request(method, path, **kwargs)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 404:
                raise StoreNotFound(f"{method} {path}: not found") from exc
            raise StoreError(f"{method} {path} failed with status={status}") from exc
        except httpx.HTTPError as exc:
            raise StoreError(f"{method} {path} failed: {exc}") from exc
        except ValueError as exc:
            # Non-JSON body (proxy error page, truncated response).
            raise StoreError(f"{method} {path} returned an unreadable body: {exc}") from exc

    # --- generic record helpers ----------------------------------------------------

    def _list(
        self,
        collection: str,
        *,
        filter: str | None = None,
        sort: str | None = None,
        per_page: int = 200,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"perPage": per_page, "page": 1}
        if filter:
            params["filter"] = filter
        if sort:
            params["sort"] = sort
        items: list[dict[str, Any]] = []
        while True:
            payload = self._call("GET", f"/api/collections/{collection}/records", params=params) or {}
            page_items = payload.get("items") or []
            items.extend(page_items)
            total_pages = int(payload.get("totalPages") or 1)
            if params["page"] >= total_pages or not page_items:
                return items
            params = {**params, "page": params["page"] + 1}

    def _first(self, collection: str, *, filter: str, sort: str | None = None) -> dict[str, Any] | None:
        params: dict[str, Any] = {"perPage": 1, "page": 1, "filter": filter, "skipTotal": 1}
        if sort:
            params["sort"] = sort
        payload = self._call("GET", f"/api/collections/{collection}/records", params=params) or {}
        items = payload.get("items") or []
        return items[0] if items else None

    def _get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        try:
            return self._call("GET", f"/api/collections/{collection}/records/{record_id}")
        except StoreNotFound:
            return None

    def _create(self, collection: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._call("POST", f"/api/collections/{collection}/records", json=body)

    def _update(self, collection: str, record_id: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._call("PATCH", f"/api/collections/{collection}/records/{record_id}", json=body)

    # --- locations -----------------------------------------------------------------

    def get_active_location(self) -> Location | None:
        rec = self._first("locations", filter="active = true", sort="-created")
        return _location_from_record(rec) if rec else None

    def get_location(self, location_id: str) -> Location | None:
        rec = self._get("locations", location_id)
        return _location_from_record(rec) if rec else None

    def list_locations(self) -> list[Location]:
        return [_location_from_record(r) for r in self._list("locations", sort="-created")]

    def create_location(self, draft: LocationDraft) -> Location:
        rec = self._create("locations", _location_to_record(draft.model_dump()))
        return _location_from_record(rec)

    def update_location(self, location_id: str, update: LocationUpdate) -> Location:
        body = _location_to_record(update.model_dump(exclude_unset=True))
        return _location_from_record(self._update("locations", location_id, body))

    def set_active_location(self, location_id: str) -> Location:
        for rec in self._list("locations", filter="active = true"):
            if rec["id"] != location_id:
                self._update("locations", rec["id"], {"active": False})
        return _location_from_record(self._update("locations", location_id, {"active": True}))

    def deactivate_location(self, location_id: str) -> Location:
        return _location_from_record(self._update("locations", location_id, {"active": False}))

    def delete_location(self, location_id: str) -> None:
        self._call("DELETE", f"/api/collections/locations/records/{location_id}")

    # --- codes ---------------------------------------------------------------------

    def insert_code(self, value: str, location_id: str, next_location_id: str | None) -> Code:
        rec = self._create(
            "codes",
            {
                "code": value,
                "location_id": location_id,
                "next_location_id": next_location_id or "",
                "used": False,
            },
        )
        return _code_from_record(rec)

    def claim_code(self, value: str, location_id: str) -> Code | None:
        rec = self._first(
            "codes",
            filter=f"code = {quote(value)} && location_id = {quote(location_id)} && used = false",
        )
        if rec is None:
            return None
        updated = self._update(
            "codes", rec["id"], {"used": True, "used_at": _pb_datetime(datetime.now(timezone.utc))}
        )
        return _code_from_record({**rec, **(updated or {})})

    # --- completions ---------------------------------------------------------------

    @staticmethod
    def _completion_filter(actor: Actor, location_id: str | None = None) -> str:
        expr = f"actor_kind = {quote(actor.kind)} && actor_id = {quote(actor.id)}"
        if location_id is not None:
            expr += f" && location_id = {quote(location_id)}"
        return expr

    def record_completion(self, completion: CompletedLocation) -> bool:
        if self.has_completed_location(completion.actor, completion.location_id):
            return False
        try:
            self._create(
                "completed_locations",
                {
                    "actor_kind": completion.actor.kind,
                    "actor_id": completion.actor.id,
                    "location_id": completion.location_id,
                    "code_id": completion.code_id or "",
                    "winning_amount": float(completion.winning_amount),
                    "completed_at": _pb_datetime(completion.completed_at),
                },
            )
        except StoreError:
            # The unique index rejects a concurrent duplicate with a 400.
            if self.has_completed_location(completion.actor, completion.location_id):
                return False
            raise
        return True

    def has_completed_location(self, actor: Actor, location_id: str) -> bool:
        return self._first("completed_locations", filter=self._completion_filter(actor, location_id)) is not None

    def get_completion(self, actor: Actor, location_id: str) -> CompletedLocation | None:
        rec = self._first("completed_locations", filter=self._completion_filter(actor, location_id))
        return _completion_from_record(rec) if rec else None

    def get_completed_locations(self, actor: Actor) -> list[str]:
        records = self._list("completed_locations", filter=self._completion_filter(actor))
        return [_completion_from_record(r).location_id for r in records]

    # --- teams ---------------------------------------------------------------------

    def get_team(self, team_id: str) -> Team | None:
        rec = self._get("teams", team_id)
        return _team_from_record(rec) if rec else None

    def get_team_by_code(self, code: str) -> Team | None:
        rec = self._first("teams", filter=f"code = {quote(code)}")
        return _team_from_record(rec) if rec else None

    def find_team_for_user(self, user_id: str, location_id: str | None = None) -> Team | None:
        memberships = self._list("team_members", filter=f"user_id = {quote(user_id)}", sort="-created")
        for rec in memberships:
            team = self.get_team(str(rec["team_id"]))
            if team is None:
                continue
            if location_id is None or team.current_location_id == location_id:
                return team
        return None

    def insert_team(self, code: str, created_by: str, location_id: str | None) -> Team:
        rec = self._create(
            "teams",
            {"code": code, "created_by": created_by, "current_location_id": location_id or ""},
        )
        return _team_from_record(rec)

    def update_team_location(self, team_id: str, location_id: str | None) -> Team:
        return _team_from_record(self._update("teams", team_id, {"current_location_id": location_id or ""}))

    def add_team_member(self, member: TeamMember) -> bool:
        existing = self._first(
            "team_members",
            filter=f"team_id = {quote(member.team_id)} && user_id = {quote(member.user_id)}",
        )
        if existing is not None:
            return False
        self._create(
            "team_members",
            {
                "team_id": member.team_id,
                "user_id": member.user_id,
                "role": member.role,
                "joined_at": _pb_datetime(member.joined_at),
            },
        )
        return True

    def get_team_members(self, team_id: str) -> list[TeamMember]:
        records = self._list("team_members", filter=f"team_id = {quote(team_id)}", sort="created")
        return [_member_from_record(r) for r in records]

    def insert_invite(self, invite: TeamInvite) -> TeamInvite:
        rec = self._create(
            "team_invites",
            {
                "code": invite.code,
                "team_id": invite.team_id,
                "location_id": invite.location_id,
                "created_by": invite.created_by,
                "expires_at": _pb_datetime(invite.expires_at),
                "used": False,
                "used_by": "",
            },
        )
        return _invite_from_record(rec)

    def get_invite(self, code: str) -> TeamInvite | None:
        rec = self._first("team_invites", filter=f"code = {quote(code)}")
        return _invite_from_record(rec) if rec else None

    def claim_invite(self, code: str, user_id: str) -> bool:
        rec = self._first("team_invites", filter=f"code = {quote(code)} && used = false")
        if rec is None:
            return False
        self._update("team_invites", rec["id"], {"used": True, "used_by": user_id})
        return True

    # --- users ---------------------------------------------------------------------

    def get_user(self, user_id: str) -> User | None:
        rec = self._get("users", user_id)
        return _user_from_record(rec) if rec else None

    def get_user_by_fingerprint(self, fingerprint: str) -> User | None:
        rec = self._first("users", filter=f"device_fingerprint = {quote(fingerprint)}")
        return _user_from_record(rec) if rec else None

    def create_or_update_user(self, fingerprint: str, display_name: str | None = None) -> User:
        now = _pb_datetime(datetime.now(timezone.utc))
        rec = self._first("users", filter=f"device_fingerprint = {quote(fingerprint)}")
        if rec is not None:
            body: dict[str, Any] = {"last_seen_at": now, "is_online": True}
            if display_name:
                body["display_name"] = display_name
            return _user_from_record(self._update("users", rec["id"], body))
        created = self._create(
            "users",
            {
                "device_fingerprint": fingerprint,
                "display_name": display_name or "Player",
                "total_winnings": 0,
                "last_seen_at": now,
                "is_online": True,
            },
        )
        return _user_from_record(created)

    def update_user_last_seen(self, user_id: str) -> None:
        self._update(
            "users", user_id, {"last_seen_at": _pb_datetime(datetime.now(timezone.utc)), "is_online": True}
        )

    def get_online_players_count(self, window_seconds: int) -> int:
        cutoff = _pb_datetime(datetime.now(timezone.utc) - timedelta(seconds=window_seconds))
        payload = self._call(
            "GET",
            "/api/collections/users/records",
            params={"perPage": 1, "page": 1, "filter": f"is_online = true && last_seen_at >= {quote(cutoff)}"},
        ) or {}
        return int(payload.get("totalItems") or 0)

    def add_winnings_to_user(self, user_id: str, amount: Decimal) -> Decimal:
        # Read-modify-write: concurrent credits to the same user can lose an update.
        rec = self._get("users", user_id)
        if rec is None:
            raise StoreNotFound(f"User not found: {user_id}")
        total = Decimal(str(rec.get("total_winnings") or 0)) + Decimal(amount)
        self._update("users", user_id, {"total_winnings": float(total)})
        return total

    def get_user_total_winnings(self, user_id: str) -> Decimal:
        rec = self._get("users", user_id)
        return Decimal(str(rec.get("total_winnings") or 0)) if rec else Decimal("0")
