"""
tests.test_backend

HTTP adapters against a mocked transport: error classification, profile data store
and identity provider.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import jwt
import pytest
from fakes import FakeClock

from nova_session.backend.http import classify_response, json_body, send
from nova_session.backend.identity import HttpIdentityProvider
from nova_session.backend.profiles import HttpProfileStore
from nova_session.backend.tokens import expires_soon, read_claims
from nova_session.errors import (
    ErrorKind,
    NetworkError,
    ServiceConfigError,
    UnknownError,
)
from nova_session.models import AuthEvent, AuthEventKind, Identity, ProviderSession
from nova_session.session.token_store import PersistedTokenStore

ANON_KEY = "anon-key"
TEST_SECRET = "test-signing-secret-of-at-least-32-bytes"

USER = {"id": "u-1", "email": "ana@obra.test", "user_metadata": {"full_name": "Ana Torres"}}


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url="https://backend.test",
        transport=httpx.MockTransport(handler),
        headers={"apikey": ANON_KEY},
    )


def _token(exp: float, sub: str = "u-1") -> str:
    claims = {"sub": sub, "email": "ana@obra.test", "exp": int(exp)}
    return jwt.encode(claims, TEST_SECRET, algorithm="HS256")


@pytest.mark.parametrize(
    ("status", "body", "kind"),
    [
        (406, {"code": "PGRST116", "message": "0 rows"}, ErrorKind.profile_not_found),
        (503, {"message": "upstream down"}, ErrorKind.network),
        (429, {}, ErrorKind.network),
        (401, {"message": "Invalid API key"}, ErrorKind.service_config),
        (404, {"message": "relation does not exist"}, ErrorKind.service_config),
        (418, {}, ErrorKind.unknown),
    ],
)
def test_classify_response(status: int, body: dict[str, Any], kind: ErrorKind) -> None:
    error = classify_response(httpx.Response(status, json=body))

    assert error is not None
    assert error.kind is kind
    assert error.status_code == status


def test_classify_response_success_is_none() -> None:
    assert classify_response(httpx.Response(200, json=[])) is None


def test_error_message_prefers_backend_description() -> None:
    error = classify_response(
        httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"})
    )

    assert isinstance(error, ServiceConfigError)
    assert error.user_message == "Invalid login credentials"


@pytest.mark.asyncio
async def test_transport_failure_is_a_retryable_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as http:
        with pytest.raises(NetworkError) as info:
            await send(http, "GET", "/rest/v1/user_profiles")

    assert info.value.retryable


def test_malformed_json_is_unknown() -> None:
    with pytest.raises(UnknownError):
        json_body(httpx.Response(200, content=b"<html>proxy error</html>"))


def test_read_claims_and_expiry() -> None:
    claims = read_claims(_token(2_000))

    assert claims.subject == "u-1"
    assert claims.expires_at == 2_000.0
    assert expires_soon(claims.expires_at, now=1_950, leeway=60)
    assert not expires_soon(claims.expires_at, now=1_900, leeway=60)
    assert not expires_soon(None, now=1_900)

    with pytest.raises(UnknownError):
        read_claims("not-a-jwt")


# --- profile data store ---------------------------------------------------------


@pytest.mark.asyncio
async def test_get_profile_sends_single_object_request_with_user_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "u-1", "full_name": "Ana Torres", "role": "admin"})

    async with _client(handler) as http:
        store = HttpProfileStore(http=http, anon_key=ANON_KEY, token_source=lambda: "user-token")
        result = await store.get_profile("u-1")

    assert result is not None and result.role == "admin"
    request = seen[0]
    assert request.url.params["id"] == "eq.u-1"
    assert request.headers["Accept"] == "application/vnd.pgrst.object+json"
    assert request.headers["Authorization"] == "Bearer user-token"
    assert request.headers["apikey"] == ANON_KEY


@pytest.mark.asyncio
async def test_get_profile_no_rows_is_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(406, json={"code": "PGRST116", "message": "JSON object requested, 0 rows"})

    async with _client(handler) as http:
        store = HttpProfileStore(http=http, anon_key=ANON_KEY, token_source=lambda: None)
        assert await store.get_profile("u-1") is None


@pytest.mark.asyncio
async def test_create_profile_posts_a_row_and_returns_representation() -> None:
    bodies: list[Any] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        assert request.headers["Prefer"] == "return=representation"
        return httpx.Response(201, json={**bodies[-1][0], "created_at": "2026-03-02T08:00:00Z"})

    async with _client(handler) as http:
        store = HttpProfileStore(http=http, anon_key=ANON_KEY, token_source=lambda: "t")
        created = await store.create_profile({"id": "u-1", "email": "ana@obra.test", "role": "employee"})

    assert bodies == [[{"id": "u-1", "email": "ana@obra.test", "role": "employee"}]]
    assert created.created_at is not None


@pytest.mark.asyncio
async def test_employee_profile_resolves_joined_site_and_supervisor() -> None:
    row = {
        "id": "emp-1",
        "user_id": "u-1",
        "employee_id": "E-0042",
        "position": "Foreman",
        "status": "active",
        "site_id": "site-9",
        "supervisor_id": "sup-3",
        "construction_site": {"id": "site-9", "name": "Torre Norte"},
        "supervisor": {"id": "sup-3", "full_name": "Luis Vega"},
    }
    responses = [[row], []]

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["status"] == "eq.active"
        return httpx.Response(200, json=responses.pop(0))

    async with _client(handler) as http:
        store = HttpProfileStore(http=http, anon_key=ANON_KEY, token_source=lambda: "t")
        found = await store.get_employee_profile("u-1")
        missing = await store.get_employee_profile("u-2")

    assert found is not None
    assert found.construction_site is not None and found.construction_site.name == "Torre Norte"
    assert found.supervisor is not None and found.supervisor.full_name == "Luis Vega"
    assert missing is None


@pytest.mark.asyncio
async def test_log_activity_failures_are_swallowed() -> None:
    calls: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content))
        return httpx.Response(404, json={"message": "function log_activity does not exist"})

    async with _client(handler) as http:
        store = HttpProfileStore(http=http, anon_key=ANON_KEY, token_source=lambda: "t")
        await store.log_activity("login", "Authentication", "User logged in successfully", "u-1")

    assert calls[0]["p_action"] == "login"
    assert calls[0]["p_user_id"] == "u-1"


# --- identity provider ----------------------------------------------------------


def _token_response(clock: FakeClock, *, expires_in: float | None = 3600) -> dict[str, Any]:
    body: dict[str, Any] = {
        "access_token": _token(clock() + 3600),
        "refresh_token": "refresh-1",
        "user": USER,
    }
    if expires_in is not None:
        body["expires_in"] = expires_in
    return body


@pytest.mark.asyncio
async def test_sign_in_stores_tokens_and_emits_signed_in() -> None:
    clock = FakeClock()
    events: list[AuthEvent] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["grant_type"] == "password"
        return httpx.Response(200, json=_token_response(clock))

    async with _client(handler) as http:
        provider = HttpIdentityProvider(http=http, anon_key=ANON_KEY, clock=clock)
        provider.on_auth_state_change(events.append)
        ident = await provider.sign_in("ana@obra.test", "s3cret")
        session = await provider.get_current_provider_session()

    assert ident.id == "u-1"
    assert [e.kind for e in events] == [AuthEventKind.signed_in]
    assert session is not None
    assert session.expires_at == clock() + 3600
    assert provider.access_token == session.access_token


@pytest.mark.asyncio
async def test_sign_in_rejected_credentials_raise_config_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"}
        )

    async with _client(handler) as http:
        provider = HttpIdentityProvider(http=http, anon_key=ANON_KEY)
        with pytest.raises(ServiceConfigError):
            await provider.sign_in("ana@obra.test", "wrong")

    assert provider.access_token is None


@pytest.mark.asyncio
async def test_expiring_token_is_refreshed_on_read() -> None:
    clock = FakeClock()
    events: list[AuthEventKind] = []
    grants: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        grants.append(request.url.params["grant_type"])
        if request.url.params["grant_type"] == "password":
            # No expires_in/expires_at: expiry comes from the JWT itself.
            return httpx.Response(200, json=_token_response(clock, expires_in=None))
        return httpx.Response(200, json=_token_response(clock))

    async with _client(handler) as http:
        provider = HttpIdentityProvider(http=http, anon_key=ANON_KEY, clock=clock)
        provider.on_auth_state_change(lambda e: events.append(e.kind))
        await provider.sign_in("ana@obra.test", "s3cret")
        clock.advance(3600 - 30)
        session = await provider.get_current_provider_session()

    assert grants == ["password", "refresh_token"]
    assert events == [AuthEventKind.signed_in, AuthEventKind.token_refreshed]
    assert session is not None and session.identity.id == "u-1"


@pytest.mark.asyncio
async def test_rejected_refresh_signs_the_user_out() -> None:
    clock = FakeClock()
    events: list[AuthEventKind] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["grant_type"] == "password":
            return httpx.Response(200, json=_token_response(clock, expires_in=10))
        return httpx.Response(400, json={"error_description": "Invalid Refresh Token"})

    async with _client(handler) as http:
        provider = HttpIdentityProvider(http=http, anon_key=ANON_KEY, clock=clock)
        provider.on_auth_state_change(lambda e: events.append(e.kind))
        await provider.sign_in("ana@obra.test", "s3cret")
        session = await provider.get_current_provider_session()

    assert session is None
    assert events[-1] is AuthEventKind.signed_out


@pytest.mark.asyncio
async def test_sign_out_clears_tokens_even_when_logout_fails() -> None:
    clock = FakeClock()
    events: list[AuthEventKind] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/v1/logout":
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(200, json=_token_response(clock))

    async with _client(handler) as http:
        provider = HttpIdentityProvider(http=http, anon_key=ANON_KEY, clock=clock)
        provider.on_auth_state_change(lambda e: events.append(e.kind))
        await provider.sign_in("ana@obra.test", "s3cret")
        with pytest.raises(NetworkError):
            await provider.sign_out()

    assert provider.access_token is None
    assert events == [AuthEventKind.signed_in, AuthEventKind.signed_out]


@pytest.mark.asyncio
async def test_sign_up_pending_confirmation_returns_identity_without_event() -> None:
    events: list[AuthEvent] = []

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        return httpx.Response(
            200, json={"id": "u-9", "email": payload["email"], "user_metadata": payload["data"]}
        )

    async with _client(handler) as http:
        provider = HttpIdentityProvider(http=http, anon_key=ANON_KEY)
        provider.on_auth_state_change(events.append)
        ident = await provider.sign_up("new@obra.test", "pw", {"full_name": "Rosa Díaz"})

    assert ident.id == "u-9"
    assert ident.metadata == {"full_name": "Rosa Díaz"}
    assert events == []
    assert provider.access_token is None


# --- token persistence -----------------------------------------------------------


def _persisting(http, sessionmaker, clock) -> HttpIdentityProvider:
    return HttpIdentityProvider(
        http=http, anon_key=ANON_KEY, token_store=PersistedTokenStore(sessionmaker), clock=clock
    )


@pytest.mark.asyncio
async def test_signed_in_pair_survives_a_new_provider_instance(sessionmaker) -> None:
    clock = FakeClock()
    requests: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request.url.path)
        return httpx.Response(200, json=_token_response(clock))

    async with _client(handler) as http:
        first = _persisting(http, sessionmaker, clock)
        await first.sign_in("ana@obra.test", "s3cret")

        restarted = _persisting(http, sessionmaker, clock)
        assert restarted.access_token is None
        session = await restarted.get_current_provider_session()

    assert session is not None
    assert session.identity.id == "u-1"
    assert session.refresh_token == "refresh-1"
    assert restarted.access_token == first.access_token
    assert requests == ["/auth/v1/token"]


@pytest.mark.asyncio
async def test_sign_out_removes_the_persisted_pair(sessionmaker) -> None:
    clock = FakeClock()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/v1/logout":
            return httpx.Response(204)
        return httpx.Response(200, json=_token_response(clock))

    tokens = PersistedTokenStore(sessionmaker)
    async with _client(handler) as http:
        provider = HttpIdentityProvider(
            http=http, anon_key=ANON_KEY, token_store=tokens, clock=clock
        )
        await provider.sign_in("ana@obra.test", "s3cret")
        assert await tokens.load() is not None
        await provider.sign_out()

    assert await tokens.load() is None


@pytest.mark.asyncio
async def test_restored_expiring_pair_is_refreshed_and_rewritten(sessionmaker) -> None:
    clock = FakeClock()
    tokens = PersistedTokenStore(sessionmaker)
    await tokens.save(
        ProviderSession(
            identity=Identity(id="u-1"),
            access_token="stale",
            refresh_token="refresh-0",
            expires_at=clock() + 5,
        )
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"refresh_token": "refresh-0"}
        return httpx.Response(200, json=_token_response(clock))

    async with _client(handler) as http:
        provider = HttpIdentityProvider(
            http=http, anon_key=ANON_KEY, token_store=tokens, clock=clock
        )
        session = await provider.get_current_provider_session()

    assert session is not None and session.access_token != "stale"
    stored = await tokens.load()
    assert stored is not None and stored.refresh_token == "refresh-1"


@pytest.mark.asyncio
async def test_restored_pair_with_rejected_refresh_is_dropped(sessionmaker) -> None:
    clock = FakeClock()
    tokens = PersistedTokenStore(sessionmaker)
    await tokens.save(
        ProviderSession(
            identity=Identity(id="u-1"),
            access_token="stale",
            refresh_token="revoked",
            expires_at=clock() - 100,
        )
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error_description": "Invalid Refresh Token"})

    async with _client(handler) as http:
        provider = HttpIdentityProvider(
            http=http, anon_key=ANON_KEY, token_store=tokens, clock=clock
        )
        assert await provider.get_current_provider_session() is None

    assert await tokens.load() is None


# --- one-time codes and passwords ------------------------------------------------


@pytest.mark.asyncio
async def test_send_otp_posts_phone_target_with_metadata() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    async with _client(handler) as http:
        provider = HttpIdentityProvider(http=http, anon_key=ANON_KEY)
        await provider.send_otp(phone="+5215550001", metadata={"full_name": "Ana Torres"})
        with pytest.raises(ValueError):
            await provider.send_otp()

    assert len(seen) == 1
    assert seen[0].url.path == "/auth/v1/otp"
    assert json.loads(seen[0].content) == {
        "phone": "+5215550001",
        "create_user": True,
        "data": {"full_name": "Ana Torres"},
    }


@pytest.mark.asyncio
async def test_verify_otp_adopts_session_and_emits_signed_in() -> None:
    clock = FakeClock()
    events: list[AuthEventKind] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/auth/v1/verify"
        assert json.loads(request.content) == {
            "email": "ana@obra.test",
            "type": "email",
            "token": "123456",
        }
        return httpx.Response(200, json=_token_response(clock))

    async with _client(handler) as http:
        provider = HttpIdentityProvider(http=http, anon_key=ANON_KEY, clock=clock)
        provider.on_auth_state_change(lambda e: events.append(e.kind))
        ident = await provider.verify_otp("123456", email="ana@obra.test")

    assert ident.id == "u-1"
    assert events == [AuthEventKind.signed_in]
    assert provider.access_token is not None


@pytest.mark.asyncio
async def test_verify_otp_rejected_code_raises_config_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"msg": "Token has expired or is invalid"})

    async with _client(handler) as http:
        provider = HttpIdentityProvider(http=http, anon_key=ANON_KEY)
        with pytest.raises(ServiceConfigError):
            await provider.verify_otp("000000", phone="+5215550001")

    assert provider.access_token is None


@pytest.mark.asyncio
async def test_reset_password_posts_recover_with_redirect() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    async with _client(handler) as http:
        provider = HttpIdentityProvider(http=http, anon_key=ANON_KEY)
        await provider.reset_password("ana@obra.test", "https://console.test/reset")

    assert seen[0].url.path == "/auth/v1/recover"
    assert seen[0].url.params["redirect_to"] == "https://console.test/reset"
    assert json.loads(seen[0].content) == {"email": "ana@obra.test"}


@pytest.mark.asyncio
async def test_update_password_puts_user_with_bearer_token() -> None:
    clock = FakeClock()
    events: list[AuthEventKind] = []
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/auth/v1/user":
            return httpx.Response(200, json={**USER, "email": "ana.t@obra.test"})
        return httpx.Response(200, json=_token_response(clock))

    async with _client(handler) as http:
        provider = HttpIdentityProvider(http=http, anon_key=ANON_KEY, clock=clock)
        provider.on_auth_state_change(lambda e: events.append(e.kind))
        await provider.sign_in("ana@obra.test", "s3cret")
        ident = await provider.update_password("n3w-secret")

    put = seen[-1]
    assert put.method == "PUT"
    assert put.headers["authorization"] == f"Bearer {provider.access_token}"
    assert json.loads(put.content) == {"password": "n3w-secret"}
    assert ident.email == "ana.t@obra.test"
    assert events == [AuthEventKind.signed_in, AuthEventKind.user_updated]


@pytest.mark.asyncio
async def test_update_password_without_session_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async with _client(handler) as http:
        provider = HttpIdentityProvider(http=http, anon_key=ANON_KEY)
        with pytest.raises(ServiceConfigError) as info:
            await provider.update_password("n3w-secret")

    assert info.value.status_code == 401
