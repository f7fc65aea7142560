"""
nova_session.backend.http

Shared HTTP plumbing for the hosted backend adapters.

Responsibilities:
- Build the shared `httpx.AsyncClient` (base url, timeout, client headers).
- Translate transport failures and HTTP responses into the closed error taxonomy.
"""

from __future__ import annotations

from typing import Any

import httpx

from nova_session.errors import (
    NetworkError,
    ProfileNotFoundError,
    ServiceConfigError,
    SessionError,
    UnknownError,
)
from nova_session.settings import Settings

# PostgREST: a single-object request matched zero rows.
PGRST_NO_ROWS = "PGRST116"

_RETRYABLE_STATUS = frozenset({408, 425, 429})


def create_http_client(settings: Settings, **kwargs: Any) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.backend_url,
        timeout=settings.http_timeout_seconds,
        headers={
            "apikey": settings.backend_anon_key,
            "X-Client-Info": settings.client_info,
            "Cache-Control": "no-store",
        },
        **kwargs,
    )


def _error_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_message(body: dict[str, Any], fallback: str) -> str:
    for key in ("error_description", "msg", "message", "error"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return fallback


def classify_response(response: httpx.Response) -> SessionError | None:
    """Return the error for a non-2xx response, or None when the response succeeded."""

    status = response.status_code
    if 200 <= status < 300:
        return None

    body = _error_body(response)
    message = _error_message(body, f"HTTP {status}")

    if body.get("code") == PGRST_NO_ROWS:
        return ProfileNotFoundError(message, status_code=status)
    if status >= 500 or status in _RETRYABLE_STATUS:
        return NetworkError(message, status_code=status)
    # 404 here means an unknown table/endpoint: the backend is misconfigured.
    if status in (400, 401, 403, 404, 422):
        return ServiceConfigError(message, status_code=status)
    return UnknownError(message, status_code=status)


async def send(
    http: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    try:
        response = await http.request(method, url, **kwargs)
    except httpx.TransportError as exc:
        raise NetworkError(f"{type(exc).__name__} calling {url}") from exc

    error = classify_response(response)
    if error is not None:
        raise error
    return response


def json_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise UnknownError("Malformed response from backend") from exc


def bearer(token: str | None, anon_key: str) -> dict[str, str]:
    # Unauthenticated calls use the anon key as the bearer, like the hosted SDK does.
    return {"Authorization": f"Bearer {token or anon_key}"}


# --- Module Notes -----------------------------------------------------------
# 5xx and throttling are treated as transport-level (retryable) failures: the
# breaker exists precisely to back off from a degraded backend.
