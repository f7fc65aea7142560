"""
nova_session.session.store

The single authoritative client session (SessionStore).

Responsibilities:
- Hydrate from the warm cache or the identity provider on startup.
- Apply provider events synchronously (who is signed in) and debounce the profile
  loads they trigger.
- Commit profile loads only while their identity is still current.
- Run auth actions (password, OTP, reset/update password) and record their activity.
- Expose snapshots, role/permission queries and change notifications to every page.

State machine:
- status: loading -> authenticated | anonymous; error only from loading when the
  provider itself cannot be reached.
- profile_status (while authenticated): pending -> ready | degraded. A degraded
  session keeps its identity so the user can always sign out.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import replace
from typing import Any, TypeVar

from nova_session import roles
from nova_session.backend.ports import IdentityProvider, ProfileDataStore
from nova_session.errors import SessionError, SessionErrorInfo
from nova_session.models import (
    AuthEvent,
    Identity,
    ProfileStatus,
    Session,
    SessionStatus,
    UserContext,
)
from nova_session.observability.logging import get_logger
from nova_session.resilience.breaker import CircuitBreaker
from nova_session.resilience.retry import RetryPolicy
from nova_session.session.cache import PersistenceCache
from nova_session.session.debounce import Debouncer
from nova_session.session.profile_loader import ProfileLoader

log = get_logger(__name__)

T = TypeVar("T")

SessionListener = Callable[[Session], None]

AUTH_MODULE = "Authentication"


class SessionStore:
    def __init__(
        self,
        *,
        provider: IdentityProvider,
        data_store: ProfileDataStore,
        cache: PersistenceCache,
        breaker: CircuitBreaker | None = None,
        retry: RetryPolicy | None = None,
        debounce_window: float = 0.1,
    ) -> None:
        self._provider = provider
        self._data_store = data_store
        self._cache = cache
        self._loader = ProfileLoader(
            store=data_store,
            cache=cache,
            breaker=breaker or CircuitBreaker(),
            retry=retry or RetryPolicy(),
            is_current=self._is_current_identity,
        )
        self._debouncer: Debouncer[Identity] = Debouncer(
            self._on_debounced, window=debounce_window
        )
        self._session = Session()
        # Bumped whenever the signed-in identity changes; loads started under an
        # older epoch are stale and never committed.
        self._epoch = 0
        self._listeners: list[SessionListener] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._init_task: asyncio.Task[Session] | None = None
        self._unsubscribe: Callable[[], None] | None = provider.on_auth_state_change(
            self.on_provider_event
        )

    @property
    def loader(self) -> ProfileLoader:
        return self._loader

    # --- snapshots & subscriptions -------------------------------------------

    def get_session(self) -> Session:
        return self._session

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, **changes: Any) -> None:
        self._session = replace(self._session, **changes)
        snapshot = self._session
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                log.exception("session.listener_failed")

    # --- lifecycle ------------------------------------------------------------

    def initialize(self) -> asyncio.Task[Session]:
        """
        Start hydration in the background and return its task.

        Callers never have to await it; listeners are notified as state settles.
        Calling it again while hydration runs returns the same task.
        """

        if self._init_task is None or self._init_task.done():
            self._init_task = self._spawn(self._initialize(), name="session.initialize")
        return self._init_task

    async def _initialize(self) -> Session:
        epoch = self._epoch
        cached = await self._cache.load()
        try:
            current = await self._provider.get_current_provider_session()
        except Exception as exc:
            if self._epoch == epoch and self._session.status is SessionStatus.loading:
                self._log_failure("session.provider_unreachable", exc)
                self._set(status=SessionStatus.error, error=SessionErrorInfo.from_exception(exc))
            return self._session

        if self._epoch != epoch:
            # A provider event arrived while we were hydrating and now owns the session.
            return self._session

        if current is None:
            if cached is not None:
                await self._cache.clear()
            self._set(
                status=SessionStatus.anonymous,
                identity=None,
                profile=None,
                employee_profile=None,
                profile_status=None,
                error=None,
            )
            return self._session

        identity = current.identity
        if cached is not None and cached.identity.id == identity.id:
            log.info("session.restored_from_cache", identity_id=identity.id)
            self._epoch += 1
            self._set(
                status=SessionStatus.authenticated,
                identity=identity,
                profile=cached.profile,
                employee_profile=cached.employee_profile,
                profile_status=ProfileStatus.ready,
                error=None,
            )
            return self._session

        self._adopt_identity(identity)
        await self._load_profile(identity, use_cache=False)
        return self._session

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._debouncer.close()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until no debounced load and no background task is outstanding."""

        while self._debouncer.pending or self._tasks:
            await self._debouncer.wait_idle()
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self._debouncer.wait_idle()

    # --- provider events ------------------------------------------------------

    def on_provider_event(self, event: AuthEvent) -> None:
        """
        Synchronous handler registered with the identity provider.

        Identity and status change immediately; the profile load is debounced so a
        burst of events produces a single load for the last identity.
        """

        log.info(
            "session.provider_event",
            kind=event.kind.value,
            identity_id=event.identity.id if event.identity else None,
        )
        identity = event.identity
        if event.is_sign_out or identity is None:
            self._debouncer.cancel()
            self._apply_signed_out()
            self._spawn(self._cache.clear(), name="session.cache_clear")
            return

        self._adopt_identity(identity)
        self._debouncer.schedule(identity)

    async def _on_debounced(self, identity: Identity) -> None:
        if not self._is_current_identity(identity.id):
            log.info("session.debounced_load_skipped", identity_id=identity.id)
            return
        await self._load_profile(identity, use_cache=True)

    def _adopt_identity(self, identity: Identity) -> None:
        current = self._session.identity
        if current is None or current.id != identity.id:
            self._epoch += 1
            self._set(
                status=SessionStatus.authenticated,
                identity=identity,
                profile=None,
                employee_profile=None,
                profile_status=ProfileStatus.pending,
                error=None,
            )
            return
        # Same principal (token refresh / metadata update): keep the loaded profile.
        self._set(
            status=SessionStatus.authenticated,
            identity=identity,
            profile_status=self._session.profile_status or ProfileStatus.pending,
        )

    def _apply_signed_out(self) -> None:
        self._epoch += 1
        self._set(
            status=SessionStatus.anonymous,
            identity=None,
            profile=None,
            employee_profile=None,
            profile_status=None,
            error=None,
        )

    def _is_current_identity(self, identity_id: str) -> bool:
        identity = self._session.identity
        return identity is not None and identity.id == identity_id

    # --- profile loading ------------------------------------------------------

    async def _load_profile(self, identity: Identity, *, use_cache: bool) -> None:
        epoch = self._epoch
        try:
            loaded = await self._loader.load(identity, use_cache=use_cache)
        except Exception as exc:
            if self._epoch != epoch:
                log.info("session.stale_failure_discarded", identity_id=identity.id)
                return
            self._log_failure("session.profile_load_failed", exc, identity_id=identity.id)
            self._set(
                profile_status=ProfileStatus.degraded,
                error=SessionErrorInfo.from_exception(exc),
            )
            return

        if self._epoch != epoch or not self._is_current_identity(identity.id):
            log.info("session.stale_result_discarded", identity_id=identity.id)
            return
        self._set(
            profile=loaded.profile,
            employee_profile=loaded.employee_profile,
            profile_status=ProfileStatus.ready,
            error=None,
        )

    async def refresh_profile(self) -> Session:
        """Reload the profile from the backend, bypassing the warm cache."""

        identity = self._session.identity
        if identity is None:
            return self._session
        await self._load_profile(identity, use_cache=False)
        return self._session

    # --- authentication -------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> Identity:
        identity = await self._provider_call(self._provider.sign_in(email, password))
        await self.log_activity("login", AUTH_MODULE, "User logged in successfully", identity.id)
        return identity

    async def sign_up(
        self,
        email: str,
        password: str,
        *,
        full_name: str | None = None,
        role: str = roles.Role.employee.value,
        phone: str | None = None,
    ) -> Identity:
        metadata = {"full_name": full_name, "role": role, "phone": phone}
        identity = await self._provider_call(self._provider.sign_up(email, password, metadata))
        await self.log_activity("registration", AUTH_MODULE, "New user registered", identity.id)
        return identity

    async def send_otp(
        self,
        *,
        phone: str | None = None,
        email: str | None = None,
        full_name: str | None = None,
        role: str = roles.Role.user.value,
    ) -> None:
        """Send a one-time code; with `full_name` this doubles as phone sign-up."""

        if not phone and not email:
            raise ValueError("phone or email is required")
        metadata = {"full_name": full_name, "role": role} if full_name else None
        await self._provider_call(
            self._provider.send_otp(phone=phone, email=email, metadata=metadata)
        )

    async def verify_otp(
        self, token: str, *, phone: str | None = None, email: str | None = None
    ) -> Identity:
        if not phone and not email:
            raise ValueError("phone or email is required")
        identity = await self._provider_call(
            self._provider.verify_otp(token, phone=phone, email=email)
        )
        await self.log_activity(
            "otp_verification", AUTH_MODULE, "OTP verified successfully", identity.id
        )
        return identity

    async def reset_password(self, email: str, redirect_to: str | None = None) -> None:
        if not email:
            raise ValueError("email is required")
        await self._provider_call(self._provider.reset_password(email, redirect_to))

    async def update_password(self, new_password: str) -> Identity:
        if not new_password:
            raise ValueError("new password is required")
        identity = await self._provider_call(self._provider.update_password(new_password))
        await self.log_activity(
            "password_update", AUTH_MODULE, "User updated password", identity.id
        )
        return identity

    async def _provider_call(self, call: Awaitable[T]) -> T:
        # Auth actions clear the previous error and record their own failure.
        self._set(error=None)
        try:
            return await call
        except SessionError as exc:
            self._set(error=SessionErrorInfo.from_exception(exc))
            raise

    async def sign_out(self) -> Session:
        """
        Sign out remotely, then clear local state no matter how the remote call went.
        """

        identity = self._session.identity
        if identity is not None:
            await self.log_activity("logout", AUTH_MODULE, "User logged out", identity.id)

        remote_error: Exception | None = None
        try:
            await self._provider.sign_out()
        except Exception as exc:
            remote_error = exc
            self._log_failure("session.remote_sign_out_failed", exc)
        finally:
            self._debouncer.cancel()
            self._apply_signed_out()
            await self._cache.clear()

        if remote_error is not None:
            self._set(error=SessionErrorInfo.from_exception(remote_error))
        return self._session

    def log_activity(
        self,
        action: str,
        module: str,
        description: str,
        identity_id: str | None = None,
    ) -> asyncio.Task[None]:
        """Record an audit entry in the background; failures are logged, never raised."""

        if identity_id is None and self._session.identity is not None:
            identity_id = self._session.identity.id
        return self._spawn(
            self._log_activity(action, module, description, identity_id),
            name="session.log_activity",
        )

    async def _log_activity(
        self, action: str, module: str, description: str, identity_id: str | None
    ) -> None:
        try:
            await self._data_store.log_activity(action, module, description, identity_id)
        except Exception as exc:
            log.warning("activity.log_failed", action=action, error=repr(exc))

    # --- diagnostics ----------------------------------------------------------

    async def connection_status(self) -> dict[str, Any]:
        # Checks the provider only; profiles are never touched.
        try:
            await self._provider.get_current_provider_session()
        except SessionError as exc:
            return {"ok": False, "error": exc.user_message, "kind": exc.kind.value}
        return {"ok": True}

    def breaker_status(self) -> dict[str, Any]:
        return self._loader.breaker.snapshot()

    def reset_breaker(self) -> None:
        self._loader.breaker.reset()

    # --- role queries ---------------------------------------------------------

    @property
    def role(self) -> str | None:
        profile = self._session.profile
        return profile.role if profile else None

    def is_admin(self) -> bool:
        return roles.is_admin_role(self.role)

    def is_super_admin(self) -> bool:
        profile = self._session.profile
        return profile is not None and (
            profile.role == roles.Role.superadmin or profile.is_super_admin
        )

    def is_supervisor(self) -> bool:
        return roles.is_supervisor_role(self.role)

    def has_role(self, required_role: str) -> bool:
        return roles.has_role(self.role, required_role)

    def has_permission(self, permission: str) -> bool:
        return roles.has_permission(self.role, permission)

    def permissions(self) -> roles.RoleGrant:
        return roles.evaluate_role(self.role)

    def current_user_context(self) -> UserContext | None:
        profile = self._session.profile
        if profile is None:
            return None
        return UserContext.build(profile, self._session.employee_profile)

    # --- internals ------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, T], *, name: str) -> asyncio.Task[T]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("session.task_failed", task=task.get_name(), error=repr(exc), exc_info=exc)

    def _log_failure(self, event: str, exc: BaseException, **fields: Any) -> None:
        if isinstance(exc, SessionError):
            log.warning(event, error_kind=exc.kind.value, error=str(exc), **fields)
        else:
            log.exception(event, error=repr(exc), **fields)


# --- Module Notes -----------------------------------------------------------
# Only `on_provider_event` and sign-out mutate identity; profile loads mutate
# profile fields and only after the epoch check.
