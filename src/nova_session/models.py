"""
nova_session.models

Domain models shared by the session core, the backend adapters and the API.

Responsibilities:
- Define provider/data-store records (Identity, Profile, EmployeeProfile) as pydantic
  models so they parse straight from backend JSON and serialize into the local cache.
- Define the in-memory session snapshot and auth event types.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from nova_session.errors import SessionErrorInfo

NOT_ASSIGNED = "Not assigned"


class _Record(BaseModel):
    # Backend rows carry more columns than we read; ignore them instead of failing.
    model_config = ConfigDict(extra="ignore", frozen=True)


class Identity(_Record):
    """Provider-issued principal. Owned by the identity provider."""

    id: str
    email: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Profile(_Record):
    id: str
    full_name: str | None = None
    email: str | None = None
    role: str = "employee"
    phone: str | None = None
    is_super_admin: bool = False
    active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SiteRef(_Record):
    id: str
    name: str | None = None
    address: str | None = None
    manager_name: str | None = None
    phone: str | None = None


class SupervisorRef(_Record):
    id: str
    full_name: str | None = None
    email: str | None = None
    phone: str | None = None


class EmployeeProfile(_Record):
    id: str
    user_id: str
    employee_id: str | None = None
    position: str | None = None
    status: str = "active"
    site_id: str | None = None
    supervisor_id: str | None = None
    # Resolved by join at fetch time; never owned by the employee record.
    construction_site: SiteRef | None = None
    supervisor: SupervisorRef | None = None


class CachedSession(_Record):
    identity: Identity
    profile: Profile
    employee_profile: EmployeeProfile | None = None
    saved_at: datetime


class StoredTokens(_Record):
    """Provider token pair as persisted locally between process restarts."""

    identity: Identity
    access_token: str
    refresh_token: str | None = None
    expires_at: float | None = None

    @classmethod
    def from_provider_session(cls, session: ProviderSession) -> StoredTokens:
        return cls(
            identity=session.identity,
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=session.expires_at,
        )

    def to_provider_session(self) -> ProviderSession:
        return ProviderSession(
            identity=self.identity,
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.expires_at,
        )


class SessionStatus(enum.StrEnum):
    loading = "loading"
    authenticated = "authenticated"
    anonymous = "anonymous"
    error = "error"


class ProfileStatus(enum.StrEnum):
    pending = "pending"
    ready = "ready"
    degraded = "degraded"


class AuthEventKind(enum.StrEnum):
    initial_session = "INITIAL_SESSION"
    signed_in = "SIGNED_IN"
    signed_out = "SIGNED_OUT"
    token_refreshed = "TOKEN_REFRESHED"
    user_updated = "USER_UPDATED"


@dataclass(frozen=True, slots=True)
class AuthEvent:
    kind: AuthEventKind
    identity: Identity | None = None

    @property
    def is_sign_out(self) -> bool:
        return self.kind is AuthEventKind.signed_out or self.identity is None


@dataclass(frozen=True, slots=True)
class ProviderSession:
    identity: Identity
    access_token: str = ""
    refresh_token: str | None = None
    expires_at: float | None = None


@dataclass(frozen=True, slots=True)
class Session:
    """
    Immutable snapshot of the client session handed to every consumer.
    """

    status: SessionStatus = SessionStatus.loading
    identity: Identity | None = None
    profile: Profile | None = None
    employee_profile: EmployeeProfile | None = None
    profile_status: ProfileStatus | None = None
    error: SessionErrorInfo | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.status is SessionStatus.authenticated

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "profile_status": self.profile_status.value if self.profile_status else None,
            "identity": self.identity.model_dump(mode="json") if self.identity else None,
            "profile": self.profile.model_dump(mode="json") if self.profile else None,
            "employee_profile": (
                self.employee_profile.model_dump(mode="json") if self.employee_profile else None
            ),
            "error": (
                {"kind": self.error.kind.value, "message": self.error.message}
                if self.error
                else None
            ),
        }


@dataclass(frozen=True, slots=True)
class LoadedProfile:
    profile: Profile
    employee_profile: EmployeeProfile | None
    from_cache: bool = False


@dataclass(frozen=True, slots=True)
class UserContext:
    id: str
    name: str | None
    email: str | None
    role: str
    phone: str | None
    site: str
    supervisor: str
    position: str
    employee_id: str | None
    is_employee: bool

    @classmethod
    def build(cls, profile: Profile, employee: EmployeeProfile | None) -> UserContext:
        name = profile.full_name
        if not name and profile.email:
            name = profile.email.split("@", 1)[0]
        site = employee.construction_site.name if employee and employee.construction_site else None
        supervisor = employee.supervisor.full_name if employee and employee.supervisor else None
        return cls(
            id=profile.id,
            name=name,
            email=profile.email,
            role=profile.role,
            phone=profile.phone,
            site=site or NOT_ASSIGNED,
            supervisor=supervisor or NOT_ASSIGNED,
            position=(employee.position if employee else None) or NOT_ASSIGNED,
            employee_id=employee.employee_id if employee else None,
            is_employee=employee is not None,
        )


# --- Module Notes -----------------------------------------------------------
# Records are frozen so a snapshot handed to a listener can never be mutated
# behind the store's back.
