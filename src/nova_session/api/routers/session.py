"""
nova_session.api.routers.session

Session endpoints consumed by the console pages.

Responsibilities:
- Snapshot, sign-in/sign-up/sign-out and profile refresh.
- One-time-code sign-in and password reset/update.
- Role/permission and user-context queries.
- Connection and circuit-breaker diagnostics.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, model_validator

from nova_session.api.deps import require_permission, session_store
from nova_session.session.store import SessionStore

router = APIRouter(prefix="/v1/session", tags=["session"])


class SignInRequest(BaseModel):
    email: str
    password: str


class SignUpRequest(BaseModel):
    email: str
    password: str
    full_name: str | None = None
    role: str = "employee"
    phone: str | None = None


class _OtpTarget(BaseModel):
    phone: str | None = None
    email: str | None = None

    @model_validator(mode="after")
    def _needs_target(self):
        if not self.phone and not self.email:
            raise ValueError("phone or email is required")
        return self


class SendOtpRequest(_OtpTarget):
    full_name: str | None = None
    role: str = "user"


class VerifyOtpRequest(_OtpTarget):
    token: str = Field(min_length=1)


class ResetPasswordRequest(BaseModel):
    email: str = Field(min_length=1)
    redirect_to: str | None = None


class UpdatePasswordRequest(BaseModel):
    new_password: str = Field(min_length=1, repr=False)


@router.get("")
async def get_session(store: SessionStore = Depends(session_store)) -> dict[str, Any]:
    return store.get_session().to_dict()


@router.post("/sign-in")
async def sign_in(
    body: SignInRequest, store: SessionStore = Depends(session_store)
) -> dict[str, Any]:
    identity = await store.sign_in(body.email, body.password)
    return {"identity": identity.model_dump(mode="json")}


@router.post("/sign-up")
async def sign_up(
    body: SignUpRequest, store: SessionStore = Depends(session_store)
) -> dict[str, Any]:
    identity = await store.sign_up(
        body.email,
        body.password,
        full_name=body.full_name,
        role=body.role,
        phone=body.phone,
    )
    return {"identity": identity.model_dump(mode="json")}


@router.post("/otp/send", status_code=202)
async def send_otp(
    body: SendOtpRequest, store: SessionStore = Depends(session_store)
) -> dict[str, Any]:
    await store.send_otp(
        phone=body.phone, email=body.email, full_name=body.full_name, role=body.role
    )
    return {"sent": True}


@router.post("/otp/verify")
async def verify_otp(
    body: VerifyOtpRequest, store: SessionStore = Depends(session_store)
) -> dict[str, Any]:
    identity = await store.verify_otp(body.token, phone=body.phone, email=body.email)
    return {"identity": identity.model_dump(mode="json")}


@router.post("/password/reset", status_code=202)
async def reset_password(
    body: ResetPasswordRequest, store: SessionStore = Depends(session_store)
) -> dict[str, Any]:
    await store.reset_password(body.email, body.redirect_to)
    return {"sent": True}


@router.post("/password/update")
async def update_password(
    body: UpdatePasswordRequest, store: SessionStore = Depends(session_store)
) -> dict[str, Any]:
    identity = await store.update_password(body.new_password)
    return {"identity": identity.model_dump(mode="json")}


@router.post("/sign-out")
async def sign_out(store: SessionStore = Depends(session_store)) -> dict[str, Any]:
    session = await store.sign_out()
    return session.to_dict()


@router.post("/refresh")
async def refresh(store: SessionStore = Depends(session_store)) -> dict[str, Any]:
    session = await store.refresh_profile()
    return session.to_dict()


@router.get("/context")
async def user_context(store: SessionStore = Depends(session_store)) -> dict[str, Any] | None:
    context = store.current_user_context()
    if context is None:
        return None
    return {
        "id": context.id,
        "name": context.name,
        "email": context.email,
        "role": context.role,
        "phone": context.phone,
        "site": context.site,
        "supervisor": context.supervisor,
        "position": context.position,
        "employee_id": context.employee_id,
        "is_employee": context.is_employee,
    }


@router.get("/permissions")
async def permissions(store: SessionStore = Depends(session_store)) -> dict[str, Any]:
    grant = store.permissions()
    return {
        "role": grant.role,
        "level": grant.level,
        "permissions": sorted(grant.permissions),
        "is_admin": store.is_admin(),
        "is_super_admin": store.is_super_admin(),
        "is_supervisor": store.is_supervisor(),
    }


@router.get("/connection")
async def connection(store: SessionStore = Depends(session_store)) -> dict[str, Any]:
    return await store.connection_status()


@router.get("/breaker")
async def breaker(store: SessionStore = Depends(session_store)) -> dict[str, Any]:
    return store.breaker_status()


@router.post("/breaker/reset")
async def reset_breaker(
    store: SessionStore = Depends(require_permission("manage_system")),
) -> dict[str, Any]:
    store.reset_breaker()
    return store.breaker_status()


# --- Module Notes -----------------------------------------------------------
# SessionError subclasses raised by the store are mapped to HTTP responses by the
# exception handler registered in `api.app`.
