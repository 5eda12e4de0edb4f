from datetime import timezone
from decimal import Decimal

import httpx
import pytest

from treasurehunt.config.settings import get_settings
from treasurehunt.domain.models import Actor, CompletedLocation
from treasurehunt.store import PocketBaseStore, StoreError
from treasurehunt.store.pocketbase import quote

BASE = "http://pb.test"


def _settings(**store_updates):
    settings = get_settings()
    retry = settings.store.retry.model_copy(
        update={"max_attempts": 2, "base_delay_seconds": 0.0, "max_delay_seconds": 0.0}
    )
    store = settings.store.model_copy(
        update={
            "backend": "pocketbase",
            "base_url": BASE,
            "admin_email": "admin@example.test",
            "admin_password": "secret",
            "retry": retry,
            **store_updates,
        }
    )
    return settings.model_copy(update={"store": store})


def _status_error(status: int, url: str, headers: dict | None = None) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", url)
    response = httpx.Response(status, request=request, headers=headers or {})
    return httpx.HTTPStatusError(str(status), request=request, response=response)


LOCATION_RECORD = {
    "id": "abc123",
    "name": "Lake Gate",
    "latitude": "21.854978",
    "longitude": 70.249041,
    "active": True,
    "winning_amount": 100,
    "minimum_team_size": 1,
    "next_location_id": "",
    "created": "2026-01-05 10:00:00.000Z",
}


def test_active_location_authenticates_once_and_parses_record(monkeypatch):
    calls: list[tuple[str, str, dict | None, dict | None]] = []

    def fake_request_json(method, url, *, params=None, json=None, headers=None, timeout_seconds=10):  # noqa: ARG001
        calls.append((method, url, params, headers))
        if url.endswith("/api/admins/auth-with-password"):
            assert json == {"identity": "admin@example.test", "password": "secret"}
            return {"token": "tok"}
        assert headers == {"Authorization": "Bearer tok"}
        assert params["filter"] == "active = true"
        assert params["sort"] == "-created"
        return {"items": [LOCATION_RECORD]}

    monkeypatch.setattr("treasurehunt.store.pocketbase.request_json", fake_request_json)

    store = PocketBaseStore(_settings())
    loc = store.get_active_location()
    store.get_active_location()

    assert loc is not None
    assert loc.id == "abc123"
    assert loc.point.lat == pytest.approx(21.854978)
    assert loc.winning_amount == Decimal("100")
    assert loc.next_location_id is None
    assert loc.created_at.tzinfo == timezone.utc
    assert sum(1 for c in calls if c[1].endswith("auth-with-password")) == 1


def test_unauthorized_refreshes_token_once(monkeypatch):
    tokens = iter(["expired", "fresh"])
    seen_tokens: list[str] = []

    def fake_request_json(method, url, *, params=None, json=None, headers=None, timeout_seconds=10):  # noqa: ARG001
        if url.endswith("/api/admins/auth-with-password"):
            return {"token": next(tokens)}
        seen_tokens.append(headers["Authorization"])
        if headers["Authorization"] == "Bearer expired":
            raise _status_error(401, url)
        return {"items": []}

    monkeypatch.setattr("treasurehunt.store.pocketbase.request_json", fake_request_json)

    store = PocketBaseStore(_settings())
    assert store.get_active_location() is None
    assert seen_tokens == ["Bearer expired", "Bearer fresh"]


def test_rate_limited_request_is_retried_with_backoff(monkeypatch):
    attempts = 0
    sleeps: list[float] = []

    def fake_request_json(method, url, *, params=None, json=None, headers=None, timeout_seconds=10):  # noqa: ARG001
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise _status_error(429, url, {"Retry-After": "0"})
        return {"items": [LOCATION_RECORD], "totalPages": 1}

    monkeypatch.setattr("treasurehunt.store.pocketbase.request_json", fake_request_json)
    monkeypatch.setattr("treasurehunt.store.pocketbase.time.sleep", lambda s: sleeps.append(s))

    store = PocketBaseStore(_settings(admin_email=None, admin_password=None))
    locations = store.list_locations()

    assert [loc.id for loc in locations] == ["abc123"]
    assert attempts == 2
    assert sleeps == [0.0]


def test_client_errors_are_not_retried(monkeypatch):
    attempts = 0

    def fake_request_json(method, url, *, params=None, json=None, headers=None, timeout_seconds=10):  # noqa: ARG001
        nonlocal attempts
        attempts += 1
        raise _status_error(400, url)

    monkeypatch.setattr("treasurehunt.store.pocketbase.request_json", fake_request_json)

    store = PocketBaseStore(_settings(admin_email=None, admin_password=None))
    with pytest.raises(StoreError):
        store.list_locations()
    assert attempts == 1


def test_transport_errors_retry_then_raise_store_error(monkeypatch):
    attempts = 0
    sleeps: list[float] = []

    def fake_request_json(method, url, *, params=None, json=None, headers=None, timeout_seconds=10):  # noqa: ARG001
        nonlocal attempts
        attempts += 1
        raise httpx.ConnectError("connection refused", request=httpx.Request(method, url))

    monkeypatch.setattr("treasurehunt.store.pocketbase.request_json", fake_request_json)
    monkeypatch.setattr("treasurehunt.store.pocketbase.time.sleep", lambda s: sleeps.append(s))

    store = PocketBaseStore(_settings(admin_email=None, admin_password=None))
    with pytest.raises(StoreError):
        store.get_location("abc123")
    assert attempts == 3
    assert len(sleeps) == 2


def test_missing_record_reads_as_none(monkeypatch):
    def fake_request_json(method, url, *, params=None, json=None, headers=None, timeout_seconds=10):  # noqa: ARG001
        raise _status_error(404, url)

    monkeypatch.setattr("treasurehunt.store.pocketbase.request_json", fake_request_json)

    store = PocketBaseStore(_settings(admin_email=None, admin_password=None))
    assert store.get_location("nope") is None
    assert store.get_user("nope") is None


def test_claim_code_filters_with_quoted_values_and_marks_used(monkeypatch):
    requests: list[tuple[str, str, dict | None, dict | None]] = []

    def fake_request_json(method, url, *, params=None, json=None, headers=None, timeout_seconds=10):  # noqa: ARG001
        requests.append((method, url, params, json))
        if method == "GET":
            return {
                "items": [
                    {"id": "c1", "code": "ABC123", "location_id": 'loc"1', "next_location_id": "", "used": False}
                ]
            }
        return {"id": "c1", "used": True, "used_at": "2026-01-05 10:01:00.000Z"}

    monkeypatch.setattr("treasurehunt.store.pocketbase.request_json", fake_request_json)

    store = PocketBaseStore(_settings(admin_email=None, admin_password=None))
    code = store.claim_code("ABC123", 'loc"1')

    assert code is not None and code.used is True and code.used_at is not None
    get_call, patch_call = requests
    assert get_call[2]["filter"] == 'code = "ABC123" && location_id = "loc\\"1" && used = false'
    assert patch_call[0] == "PATCH"
    assert patch_call[1] == f"{BASE}/api/collections/codes/records/c1"
    assert patch_call[3]["used"] is True


def test_record_completion_skips_existing_record(monkeypatch):
    methods: list[str] = []

    def fake_request_json(method, url, *, params=None, json=None, headers=None, timeout_seconds=10):  # noqa: ARG001
        methods.append(method)
        return {"items": [{"actor_kind": "user", "actor_id": "u1", "location_id": "a"}]}

    monkeypatch.setattr("treasurehunt.store.pocketbase.request_json", fake_request_json)

    store = PocketBaseStore(_settings(admin_email=None, admin_password=None))
    created = store.record_completion(CompletedLocation(actor=Actor.user("u1"), location_id="a"))

    assert created is False
    assert methods == ["GET"]


def test_quote_escapes_filter_values():
    assert quote("plain") == '"plain"'
    assert quote('a"b\\c') == '"a\\"b\\\\c"'
    assert quote(True) == "true"
    assert quote(False) == "false"


def test_unreadable_response_body_becomes_store_error(monkeypatch):
    def fake_request_json(method, url, *, params=None, json=None, headers=None, timeout_seconds=10):  # noqa: ARG001
        raise ValueError("Expecting value: line 1 column 1 (char 0)")

    monkeypatch.setattr("treasurehunt.store.pocketbase.request_json", fake_request_json)

    store = PocketBaseStore(_settings(admin_email=None, admin_password=None))
    with pytest.raises(StoreError, match="unreadable body"):
        store.get_active_location()


def test_other_http_errors_become_store_error(monkeypatch):
    def fake_request_json(method, url, *, params=None, json=None, headers=None, timeout_seconds=10):  # noqa: ARG001
        raise httpx.TooManyRedirects("redirect loop", request=httpx.Request(method, url))

    monkeypatch.setattr("treasurehunt.store.pocketbase.request_json", fake_request_json)

    store = PocketBaseStore(_settings(admin_email=None, admin_password=None))
    with pytest.raises(StoreError):
        store.list_locations()


def test_login_with_non_json_or_non_object_reply_becomes_store_error(monkeypatch):
    replies = iter([ValueError("not json"), ["token"]])

    def fake_request_json(method, url, *, params=None, json=None, headers=None, timeout_seconds=10):  # noqa: ARG001
        reply = next(replies)
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr("treasurehunt.store.pocketbase.request_json", fake_request_json)

    store = PocketBaseStore(_settings())
    with pytest.raises(StoreError, match="login failed"):
        store.get_active_location()
    with pytest.raises(StoreError):
        store.get_active_location()
