"""
nova_session.session.token_store

Local persistence of the identity provider's token pair (PersistedTokenStore).

Responsibilities:
- Keep the access/refresh token pair in its own keyed row next to the warm cache so
  a restarted process can resume the provider session without a new sign-in.
- Behave like the cache on failure: log and carry on, never raise.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nova_session.db.repositories.cached_sessions import CachedSessionRepo
from nova_session.models import ProviderSession, StoredTokens
from nova_session.observability.logging import get_logger
from nova_session.session.cache import STORAGE_ERRORS

log = get_logger(__name__)

DEFAULT_TOKEN_KEY = "nova.auth"


class PersistedTokenStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        key: str = DEFAULT_TOKEN_KEY,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._sessions = session_factory
        self._key = key
        self._clock = clock

    async def load(self) -> ProviderSession | None:
        try:
            async with self._sessions() as db:
                row = await CachedSessionRepo(db).get(self._key)
                if row is None:
                    return None
                try:
                    stored = StoredTokens.model_validate(row.payload)
                except ValidationError as exc:
                    log.warning("tokens.corrupt", error_count=exc.error_count())
                    await CachedSessionRepo(db).delete(self._key)
                    await db.commit()
                    return None
        except STORAGE_ERRORS as exc:
            log.warning("tokens.load_failed", error=repr(exc))
            return None
        return stored.to_provider_session()

    async def save(self, session: ProviderSession) -> None:
        payload = StoredTokens.from_provider_session(session).model_dump(mode="json")
        try:
            async with self._sessions() as db:
                await CachedSessionRepo(db).put(
                    key=self._key, payload=payload, saved_at=self._clock()
                )
                await db.commit()
        except STORAGE_ERRORS as exc:
            log.warning("tokens.save_failed", identity_id=session.identity.id, error=repr(exc))

    async def clear(self) -> None:
        try:
            async with self._sessions() as db:
                await CachedSessionRepo(db).delete(self._key)
                await db.commit()
        except STORAGE_ERRORS as exc:
            log.warning("tokens.clear_failed", error=repr(exc))


# --- Module Notes -----------------------------------------------------------
# Expiry is not checked here: the provider refreshes an expiring access token on
# first read and drops the pair when the refresh token is rejected.
