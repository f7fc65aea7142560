"""
nova_session.backend.identity

HTTP adapter for the hosted identity service (GoTrue-compatible REST API).

Responsibilities:
- Password sign-in/sign-up, sign-out and token refresh.
- Password reset/update and one-time-code (OTP) sign-in by phone or email.
- Hold the current token pair, persist it through an optional `TokenStore` and restore
  it lazily after a restart; expose the access token to the data adapter.
- Emit auth events (SIGNED_IN, TOKEN_REFRESHED, SIGNED_OUT) to subscribers, the way
  the hosted SDK does, so the session store can react to them.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any

import httpx
from pydantic import ValidationError

from nova_session.backend.http import bearer, json_body, send
from nova_session.backend.ports import AuthEventHandler, TokenStore
from nova_session.backend.tokens import expires_soon, read_claims
from nova_session.errors import ServiceConfigError, UnknownError
from nova_session.models import AuthEvent, AuthEventKind, Identity, ProviderSession
from nova_session.observability.logging import get_logger

log = get_logger(__name__)


def _identity_from_user(user: Any) -> Identity:
    if not isinstance(user, dict):
        raise UnknownError("Malformed identity payload")
    try:
        return Identity(
            id=user["id"],
            email=user.get("email"),
            metadata=user.get("user_metadata") or {},
        )
    except (KeyError, ValidationError) as e:
        raise UnknownError("Malformed identity payload") from e


class HttpIdentityProvider:
    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        anon_key: str,
        token_store: TokenStore | None = None,
        clock: Callable[[], float] = time.time,
        refresh_leeway: float = 60.0,
    ) -> None:
        self._http = http
        self._anon_key = anon_key
        self._token_store = token_store
        self._clock = clock
        self._refresh_leeway = refresh_leeway
        self._session: ProviderSession | None = None
        # False until the persisted pair has been read (or superseded by a sign-in).
        self._restored = token_store is None
        self._handlers: list[AuthEventHandler] = []

    @property
    def access_token(self) -> str | None:
        return self._session.access_token if self._session else None

    def set_session(self, session: ProviderSession | None) -> None:
        """Adopt an externally persisted token pair without emitting events."""

        self._session = session
        self._restored = True

    async def restore(self) -> ProviderSession | None:
        """Load the persisted token pair once; later calls are no-ops."""

        if not self._restored:
            self._restored = True
            if self._token_store is not None and self._session is None:
                self._session = await self._token_store.load()
                if self._session is not None:
                    log.info("provider.session_restored", identity_id=self._session.identity.id)
        return self._session

    def on_auth_state_change(self, handler: AuthEventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def sign_in(self, email: str, password: str) -> Identity:
        response = await send(
            self._http,
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            headers=bearer(None, self._anon_key),
        )
        session = self._session_from_body(json_body(response))
        await self._adopt(session)
        log.info("provider.signed_in", identity_id=session.identity.id)
        self._emit(AuthEvent(AuthEventKind.signed_in, session.identity))
        return session.identity

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> Identity:
        response = await send(
            self._http,
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password, "data": metadata or {}},
            headers=bearer(None, self._anon_key),
        )
        body = json_body(response)
        if isinstance(body, dict) and body.get("access_token"):
            # Auto-confirmed projects sign the new user in straight away.
            session = self._session_from_body(body)
            await self._adopt(session)
            self._emit(AuthEvent(AuthEventKind.signed_in, session.identity))
            return session.identity
        # Email confirmation pending: the body is the bare user object.
        user = body.get("user", body) if isinstance(body, dict) else body
        return _identity_from_user(user)

    async def send_otp(
        self,
        *,
        phone: str | None = None,
        email: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if not phone and not email:
            raise ValueError("phone or email is required")
        target = {"phone": phone} if phone else {"email": email}
        await send(
            self._http,
            "POST",
            "/auth/v1/otp",
            json={**target, "create_user": True, "data": metadata or {}},
            headers=bearer(None, self._anon_key),
        )

    async def verify_otp(
        self, token: str, *, phone: str | None = None, email: str | None = None
    ) -> Identity:
        if not phone and not email:
            raise ValueError("phone or email is required")
        target = {"phone": phone, "type": "sms"} if phone else {"email": email, "type": "email"}
        response = await send(
            self._http,
            "POST",
            "/auth/v1/verify",
            json={**target, "token": token},
            headers=bearer(None, self._anon_key),
        )
        session = self._session_from_body(json_body(response))
        await self._adopt(session)
        log.info("provider.otp_verified", identity_id=session.identity.id)
        self._emit(AuthEvent(AuthEventKind.signed_in, session.identity))
        return session.identity

    async def reset_password(self, email: str, redirect_to: str | None = None) -> None:
        await send(
            self._http,
            "POST",
            "/auth/v1/recover",
            params={"redirect_to": redirect_to} if redirect_to else None,
            json={"email": email},
            headers=bearer(None, self._anon_key),
        )

    async def update_password(self, new_password: str) -> Identity:
        session = await self.get_current_provider_session()
        if session is None:
            raise ServiceConfigError("Auth session missing!", status_code=401)
        response = await send(
            self._http,
            "PUT",
            "/auth/v1/user",
            json={"password": new_password},
            headers=bearer(session.access_token, self._anon_key),
        )
        identity = _identity_from_user(json_body(response))
        updated = replace(session, identity=identity)
        await self._adopt(updated)
        self._emit(AuthEvent(AuthEventKind.user_updated, identity))
        return identity

    async def sign_out(self) -> None:
        await self.restore()
        token = self.access_token
        try:
            if token:
                await send(
                    self._http,
                    "POST",
                    "/auth/v1/logout",
                    headers=bearer(token, self._anon_key),
                )
        finally:
            # Local tokens are dropped even when the remote revoke fails.
            await self._drop()
            self._emit(AuthEvent(AuthEventKind.signed_out, None))

    async def get_current_provider_session(self) -> ProviderSession | None:
        session = await self.restore()
        if session is None:
            return None
        if expires_soon(session.expires_at, now=self._clock(), leeway=self._refresh_leeway):
            return await self.refresh_session()
        return session

    async def refresh_session(self) -> ProviderSession | None:
        session = self._session
        if session is None or not session.refresh_token:
            return session
        try:
            response = await send(
                self._http,
                "POST",
                "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": session.refresh_token},
                headers=bearer(None, self._anon_key),
            )
        except ServiceConfigError:
            # Refresh token revoked or expired: the provider session is gone.
            log.info("provider.refresh_rejected", identity_id=session.identity.id)
            await self._drop()
            self._emit(AuthEvent(AuthEventKind.signed_out, None))
            return None

        refreshed = self._session_from_body(json_body(response))
        await self._adopt(refreshed)
        self._emit(AuthEvent(AuthEventKind.token_refreshed, refreshed.identity))
        return refreshed

    async def _adopt(self, session: ProviderSession) -> None:
        self._session = session
        self._restored = True
        if self._token_store is not None:
            await self._token_store.save(session)

    async def _drop(self) -> None:
        self._session = None
        self._restored = True
        if self._token_store is not None:
            await self._token_store.clear()

    def _session_from_body(self, body: Any) -> ProviderSession:
        if not isinstance(body, dict) or not isinstance(body.get("access_token"), str):
            raise UnknownError("Malformed token response")
        access_token: str = body["access_token"]
        identity = _identity_from_user(body.get("user"))

        expires_at = body.get("expires_at")
        if not isinstance(expires_at, (int, float)):
            expires_in = body.get("expires_in")
            if isinstance(expires_in, (int, float)):
                expires_at = self._clock() + expires_in
            else:
                expires_at = read_claims(access_token).expires_at

        return ProviderSession(
            identity=identity,
            access_token=access_token,
            refresh_token=body.get("refresh_token"),
            expires_at=float(expires_at) if expires_at is not None else None,
        )

    def _emit(self, event: AuthEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                log.exception("provider.handler_failed", event=event.kind.value)


# --- Module Notes -----------------------------------------------------------
# Events are delivered synchronously in arrival order; handlers must not block.
# Every change to the token pair is written to the token store before the event
# fires, so a crash right after an event never resurrects a signed-out pair.
