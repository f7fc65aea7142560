"""
nova_session.db.init_db

Local store initialization.

Responsibilities:
- Create the cache tables on startup if they don't exist.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine

from nova_session.db import models  # noqa: F401  # register tables on Base.metadata
from nova_session.db.base import Base


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# --- Module Notes -----------------------------------------------------------
# The cache is a disposable warm-start optimization, so create_all is all the
# schema management it needs; dropping the file is always a valid recovery.
