"""
HTTP helpers.

This module centralizes the minimal HTTP client logic used by the REST store backend.

Design goals:
- Small surface area (one JSON request helper).
- Deterministic defaults (timeout + User-Agent).
- Raise on non-2xx so callers can decide how to fail (the game layer degrades to sentinels).
"""

from __future__ import annotations

from typing import Any

import httpx


DEFAULT_USER_AGENT = "treasurehunt/0.1.0 (+https://local)"


def request_json(
    method: str,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    json: Any = None,
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 10,
) -> Any:
    """Send a request and return the decoded JSON response (None for empty bodies).

    Raises:
        httpx.HTTPError: On transport errors or non-2xx status codes.
        ValueError: If a non-empty response body is not valid JSON.
    """
    request_headers = {"User-Agent": DEFAULT_USER_AGENT, "Accept": "application/json"}
    if headers:
        request_headers.update(headers)

    with httpx.Client(timeout=timeout_seconds) as client:
        resp = client.request(method, url, params=params, json=json, headers=request_headers)
        resp.raise_for_status()
        if not resp.content:
            return None
        return resp.json()
