"""
nova_session.api.deps

FastAPI dependency wiring for the HTTP surface.

Responsibilities:
- Provide the session store and cache DB sessions from app.state.
- Enforce permissions of the signed-in user via reusable dependency factories.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN

from nova_session.session.store import SessionStore


def session_store(request: Request) -> SessionStore:
    # Built on app startup in `nova_session.api.app.create_app`.
    return request.app.state.session_store  # type: ignore[attr-defined]


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.sessionmaker  # type: ignore[attr-defined]


async def db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


def require_permission(permission: str):
    def _dep(store: SessionStore = Depends(session_store)) -> SessionStore:
        if not store.get_session().is_authenticated:
            raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Not signed in")
        if not store.has_permission(permission):
            raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return store

    return _dep


# --- Module Notes -----------------------------------------------------------
# Permission checks read the store's current snapshot; they never trigger a profile load.
