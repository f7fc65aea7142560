"""
nova_session.session.profile_loader

Loads (and on first sign-in creates) the user's profile and employee record.

Responsibilities:
- Serve warm loads from the persistence cache when asked to.
- Deduplicate concurrent loads per identity through an explicit `InFlightRegistry`.
- Gate remote calls with the circuit breaker and retry transport failures.
- Persist every successful load to the cache while the identity is still current.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from nova_session.backend.ports import ProfileDataStore
from nova_session.errors import ProfileNotFoundError, SessionError
from nova_session.models import EmployeeProfile, Identity, LoadedProfile, Profile
from nova_session.observability.logging import get_logger
from nova_session.resilience.breaker import CircuitBreaker
from nova_session.resilience.retry import RetryPolicy
from nova_session.roles import ROLE_HIERARCHY, Role, is_admin_role
from nova_session.session.cache import PersistenceCache

log = get_logger(__name__)


class InFlightRegistry:
    """identity id -> the one outstanding load task for that identity."""

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[LoadedProfile]] = {}

    def get(self, identity_id: str) -> asyncio.Task[LoadedProfile] | None:
        return self._tasks.get(identity_id)

    def register(self, identity_id: str, task: asyncio.Task[LoadedProfile]) -> None:
        if identity_id in self._tasks:
            raise RuntimeError(f"load already in flight for {identity_id}")
        self._tasks[identity_id] = task

    def release(self, identity_id: str, task: asyncio.Task[Any] | None) -> None:
        # Only the owning task may remove its entry.
        if self._tasks.get(identity_id) is task:
            del self._tasks[identity_id]

    def __contains__(self, identity_id: object) -> bool:
        return identity_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)


def profile_draft(identity: Identity) -> dict[str, Any]:
    """Minimal profile synthesized from provider metadata for a first sign-in."""

    metadata = identity.metadata or {}
    role = str(metadata.get("role") or "").strip().lower()
    # Self-service metadata may never grant an administrative role.
    if role not in ROLE_HIERARCHY or is_admin_role(role):
        role = Role.employee.value
    return {
        "id": identity.id,
        "email": identity.email,
        "full_name": metadata.get("full_name"),
        "phone": metadata.get("phone"),
        "role": role,
        "active": True,
    }


class ProfileLoader:
    def __init__(
        self,
        *,
        store: ProfileDataStore,
        cache: PersistenceCache,
        breaker: CircuitBreaker,
        retry: RetryPolicy,
        is_current: Callable[[str], bool] | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._breaker = breaker
        self._retry = retry
        self._is_current = is_current
        self._in_flight = InFlightRegistry()

    @property
    def in_flight(self) -> InFlightRegistry:
        return self._in_flight

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def load(self, identity: Identity, *, use_cache: bool = False) -> LoadedProfile:
        if use_cache:
            cached = await self._cache.load()
            if cached is not None and cached.identity.id == identity.id:
                log.debug("profile.cache_hit", identity_id=identity.id)
                return LoadedProfile(cached.profile, cached.employee_profile, from_cache=True)

        # Check-and-register happens without an await in between.
        task = self._in_flight.get(identity.id)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._run(identity))
            self._in_flight.register(identity.id, task)
        else:
            log.debug("profile.load_joined", identity_id=identity.id)

        # A cancelled caller must not cancel the fetch other callers are awaiting.
        return await asyncio.shield(task)

    async def _run(self, identity: Identity) -> LoadedProfile:
        try:
            return await self._fetch(identity)
        finally:
            self._in_flight.release(identity.id, asyncio.current_task())

    async def _fetch(self, identity: Identity) -> LoadedProfile:
        # Read before any I/O: a sign-out clear that lands while we fetch or write
        # invalidates this token and the cache drops our write.
        generation = self._cache.generation
        self._breaker.before_call()
        try:
            profile = await self._retry.run(
                lambda: self._get_profile(identity.id), operation="get_profile"
            )
            if profile is None:
                profile = await self._create(identity)
        except asyncio.CancelledError:
            self._breaker.release()
            raise
        except Exception:
            self._breaker.record_failure()
            raise
        self._breaker.record_success()

        employee = await self._employee_for(identity.id, profile)

        if self._is_current is None or self._is_current(identity.id):
            await self._cache.save(identity, profile, employee, generation=generation)
        else:
            log.info("profile.cache_write_skipped", identity_id=identity.id, reason="stale")

        log.info(
            "profile.loaded",
            identity_id=identity.id,
            role=profile.role,
            has_employee_profile=employee is not None,
        )
        return LoadedProfile(profile, employee)

    async def _get_profile(self, identity_id: str) -> Profile | None:
        try:
            return await self._store.get_profile(identity_id)
        except ProfileNotFoundError:
            return None

    async def _create(self, identity: Identity) -> Profile:
        # Not retried: a replayed insert could race a concurrent creator.
        log.info("profile.creating", identity_id=identity.id)
        return await self._store.create_profile(profile_draft(identity))

    async def _employee_for(self, identity_id: str, profile: Profile) -> EmployeeProfile | None:
        if is_admin_role(profile.role):
            return None
        try:
            return await self._retry.run(
                lambda: self._store.get_employee_profile(identity_id),
                operation="get_employee_profile",
            )
        except SessionError as exc:
            log.warning(
                "profile.employee_lookup_failed",
                identity_id=identity_id,
                error_kind=exc.kind.value,
            )
            return None


# --- Module Notes -----------------------------------------------------------
# One breaker outcome is reported per load: retries inside `RetryPolicy` are
# invisible to the breaker, which only sees whether the load as a whole failed.
