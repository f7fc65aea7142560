"""
nova_session.session.cache

Warm-start cache of the last loaded session (PersistenceCache).

Responsibilities:
- Overwrite a single keyed snapshot `{identity, profile, employee_profile, saved_at}`
  after every successful profile load.
- Return None for absent, corrupt or expired snapshots, purging the latter two.
- Never raise: the cache is an optimization, not a correctness requirement.
- Drop writes that began before the most recent `clear()` (sign-out wins).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nova_session.db.repositories.cached_sessions import CachedSessionRepo
from nova_session.models import CachedSession, EmployeeProfile, Identity, Profile
from nova_session.observability.logging import get_logger

log = get_logger(__name__)

DEFAULT_TTL = timedelta(hours=24)
DEFAULT_KEY = "nova.session"

STORAGE_ERRORS = (SQLAlchemyError, OSError, ValueError, TypeError)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class PersistenceCache:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        key: str = DEFAULT_KEY,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._sessions = session_factory
        self._key = key
        self._ttl = ttl
        self._clock = clock
        # Serializes writes against clears; `clear()` bumps the generation so a save
        # begun before it can tell it is stale.
        self._lock = asyncio.Lock()
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def save(
        self,
        identity: Identity,
        profile: Profile,
        employee_profile: EmployeeProfile | None = None,
        *,
        generation: int | None = None,
    ) -> CachedSession | None:
        """
        Overwrite the snapshot. With `generation`, the write is dropped if `clear()` ran
        since the caller read `self.generation`.
        """

        snapshot = CachedSession(
            identity=identity,
            profile=profile,
            employee_profile=employee_profile,
            saved_at=self._clock(),
        )
        try:
            async with self._lock:
                if generation is not None and generation != self._generation:
                    log.info("cache.stale_write_dropped", identity_id=identity.id)
                    return None
                async with self._sessions() as db:
                    await CachedSessionRepo(db).put(
                        key=self._key,
                        payload=snapshot.model_dump(mode="json"),
                        saved_at=snapshot.saved_at,
                    )
                    await db.commit()
        except STORAGE_ERRORS as exc:
            log.warning("cache.save_failed", identity_id=identity.id, error=repr(exc))
            return None
        log.debug("cache.saved", identity_id=identity.id)
        return snapshot

    async def load(self) -> CachedSession | None:
        try:
            async with self._sessions() as db:
                row = await CachedSessionRepo(db).get(self._key)
                if row is None:
                    return None
                try:
                    cached = CachedSession.model_validate(row.payload)
                except ValidationError as exc:
                    log.warning("cache.corrupt", error_count=exc.error_count())
                    await self._purge(db)
                    return None
                if self.is_expired(cached):
                    log.info("cache.expired", saved_at=cached.saved_at.isoformat())
                    await self._purge(db)
                    return None
                return cached
        except STORAGE_ERRORS as exc:
            # Unreadable row (e.g. payload that is not JSON): treat as corrupt.
            log.warning("cache.load_failed", error=repr(exc))
            await self.clear()
            return None

    async def clear(self) -> None:
        self._generation += 1
        try:
            async with self._lock, self._sessions() as db:
                await self._purge(db)
        except STORAGE_ERRORS as exc:
            log.warning("cache.clear_failed", error=repr(exc))

    def is_expired(self, cached: CachedSession) -> bool:
        saved_at = cached.saved_at
        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=UTC)
        return self._clock() - saved_at > self._ttl

    async def _purge(self, db: AsyncSession) -> None:
        await CachedSessionRepo(db).delete(self._key)
        await db.commit()


# --- Module Notes -----------------------------------------------------------
# Identity matching is the caller's concern: the loader and the store compare
# `cached.identity.id` with the identity they are working for.
