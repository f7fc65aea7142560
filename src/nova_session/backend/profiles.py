"""
nova_session.backend.profiles

HTTP adapter for the profile data store (PostgREST-compatible REST API).

Responsibilities:
- Fetch and create `user_profiles` rows.
- Fetch the active `employee_profiles` row joined with its construction site and supervisor.
- Write activity-log entries through the `log_activity` RPC (fire-and-forget).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
from pydantic import ValidationError

from nova_session.backend.http import bearer, json_body, send
from nova_session.errors import ProfileNotFoundError, SessionError, UnknownError
from nova_session.models import EmployeeProfile, Profile
from nova_session.observability.logging import get_logger

log = get_logger(__name__)

PROFILE_COLUMNS = ",".join(
    [
        "id",
        "full_name",
        "email",
        "phone",
        "role",
        "is_super_admin",
        "active",
        "created_at",
        "updated_at",
    ]
)

# Site and supervisor are weak references resolved by join, never embedded copies.
EMPLOYEE_SELECT = (
    "*,"
    "construction_site:construction_sites!site_id(id,name,address,manager_name,phone),"
    "supervisor:user_profiles!supervisor_id(id,full_name,email,phone)"
)

_SINGLE_OBJECT = "application/vnd.pgrst.object+json"


class HttpProfileStore:
    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        anon_key: str,
        token_source: Callable[[], str | None],
    ) -> None:
        self._http = http
        self._anon_key = anon_key
        self._token_source = token_source

    def _headers(self, **extra: str) -> dict[str, str]:
        return {**bearer(self._token_source(), self._anon_key), **extra}

    async def get_profile(self, identity_id: str) -> Profile | None:
        try:
            response = await send(
                self._http,
                "GET",
                "/rest/v1/user_profiles",
                params={"select": PROFILE_COLUMNS, "id": f"eq.{identity_id}"},
                headers=self._headers(Accept=_SINGLE_OBJECT),
            )
        except ProfileNotFoundError:
            return None
        return _parse(Profile, json_body(response))

    async def create_profile(self, data: dict[str, Any]) -> Profile:
        response = await send(
            self._http,
            "POST",
            "/rest/v1/user_profiles",
            params={"select": PROFILE_COLUMNS},
            json=[data],
            headers=self._headers(Accept=_SINGLE_OBJECT, Prefer="return=representation"),
        )
        return _parse(Profile, json_body(response))

    async def get_employee_profile(self, identity_id: str) -> EmployeeProfile | None:
        response = await send(
            self._http,
            "GET",
            "/rest/v1/employee_profiles",
            params={
                "select": EMPLOYEE_SELECT,
                "user_id": f"eq.{identity_id}",
                "status": "eq.active",
                "limit": "1",
            },
            headers=self._headers(),
        )
        rows = json_body(response)
        if not isinstance(rows, list):
            raise UnknownError("Malformed employee profile response")
        if not rows:
            return None
        return _parse(EmployeeProfile, rows[0])

    async def log_activity(
        self,
        action: str,
        module: str,
        description: str,
        identity_id: str | None = None,
    ) -> None:
        try:
            await send(
                self._http,
                "POST",
                "/rest/v1/rpc/log_activity",
                json={
                    "p_action": action,
                    "p_module": module,
                    "p_description": description,
                    "p_user_id": identity_id,
                },
                headers=self._headers(),
            )
        except SessionError as exc:
            log.warning(
                "activity.log_failed",
                action=action,
                module=module,
                identity_id=identity_id,
                error_kind=exc.kind.value,
            )


def _parse(model: type[Any], payload: Any) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise UnknownError(f"Malformed {model.__name__} response") from e


# --- Module Notes -----------------------------------------------------------
# Zero rows on a single-object request comes back as PGRST116; `get_profile`
# turns that into None so profile creation stays a non-error path.
