"""
nova_session.backend.ports

Collaborator interfaces consumed by the session core.

Responsibilities:
- Describe the identity provider and the profile data store as Protocols so the core
  can run against the HTTP adapters in production and in-memory fakes in tests.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from nova_session.models import AuthEvent, EmployeeProfile, Identity, Profile, ProviderSession

AuthEventHandler = Callable[[AuthEvent], None]


class IdentityProvider(Protocol):
    async def sign_in(self, email: str, password: str) -> Identity: ...

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> Identity: ...

    async def sign_out(self) -> None: ...

    async def get_current_provider_session(self) -> ProviderSession | None: ...

    def on_auth_state_change(self, handler: AuthEventHandler) -> Callable[[], None]: ...

    async def send_otp(
        self,
        *,
        phone: str | None = None,
        email: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    async def verify_otp(
        self, token: str, *, phone: str | None = None, email: str | None = None
    ) -> Identity: ...

    async def reset_password(self, email: str, redirect_to: str | None = None) -> None: ...

    async def update_password(self, new_password: str) -> Identity: ...


class TokenStore(Protocol):
    """Durable home for the provider token pair across process restarts."""

    async def load(self) -> ProviderSession | None: ...

    async def save(self, session: ProviderSession) -> None: ...

    async def clear(self) -> None: ...


class ProfileDataStore(Protocol):
    async def get_profile(self, identity_id: str) -> Profile | None: ...

    async def create_profile(self, data: dict[str, Any]) -> Profile: ...

    async def get_employee_profile(self, identity_id: str) -> EmployeeProfile | None: ...

    async def log_activity(
        self,
        action: str,
        module: str,
        description: str,
        identity_id: str | None = None,
    ) -> None: ...


# --- Module Notes -----------------------------------------------------------
# Implementations raise only `nova_session.errors.SessionError` subclasses; the
# classification into error kinds happens inside the adapter.
