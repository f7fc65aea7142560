"""
nova_session.db.repositories.cached_sessions

Repository for the `CachedSessionRow` record.

Responsibilities:
- Read, overwrite and delete the single keyed session snapshot.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from nova_session.db.models import CachedSessionRow


class CachedSessionRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, key: str) -> CachedSessionRow | None:
        return await self._session.get(CachedSessionRow, key)

    async def put(self, *, key: str, payload: dict[str, Any], saved_at: datetime) -> None:
        # Last writer wins: the record is overwritten wholesale.
        row = await self._session.get(CachedSessionRow, key)
        if row is None:
            self._session.add(CachedSessionRow(key=key, payload=payload, saved_at=saved_at))
        else:
            row.payload = payload
            row.saved_at = saved_at
        await self._session.flush()

    async def delete(self, key: str) -> None:
        await self._session.execute(delete(CachedSessionRow).where(CachedSessionRow.key == key))


# --- Module Notes -----------------------------------------------------------
# Callers own the transaction; the repository flushes but never commits.
