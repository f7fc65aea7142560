"""
nova_session.api.app

FastAPI app factory exposing the session core to console pages.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Create and dispose shared infrastructure (httpx client, cache engine, session store).
- Map session errors to HTTP responses.
"""

from __future__ import annotations

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_401_UNAUTHORIZED,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from nova_session import __version__
from nova_session.api.routers.health import router as health_router
from nova_session.api.routers.session import router as session_router
from nova_session.backend.http import create_http_client
from nova_session.db.init_db import init_db
from nova_session.db.session import create_engine, create_sessionmaker
from nova_session.errors import ErrorKind, SessionError
from nova_session.observability.logging import configure_logging, get_logger
from nova_session.observability.middleware import RequestContextMiddleware
from nova_session.settings import Settings
from nova_session.wiring import build_session_store

log = get_logger(__name__)

_STATUS_BY_KIND = {
    ErrorKind.network: HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.circuit_open: HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.service_config: HTTP_401_UNAUTHORIZED,
}


def create_app(
    *,
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    app = FastAPI(
        title="Nova HR Session Service",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )

    app.add_middleware(RequestContextMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(session_router)

    @app.exception_handler(SessionError)
    async def _session_error(_: Request, exc: SessionError) -> JSONResponse:
        status = _STATUS_BY_KIND.get(exc.kind, HTTP_500_INTERNAL_SERVER_ERROR)
        return JSONResponse(
            status_code=status,
            content={"detail": exc.user_message, "kind": exc.kind.value},
        )

    @app.on_event("startup")
    async def _startup() -> None:
        log.info("startup", env=settings.env)
        engine = create_engine(settings)
        await init_db(engine)
        app.state.engine = engine
        app.state.sessionmaker = create_sessionmaker(engine)
        app.state.http = create_http_client(settings, transport=transport)
        app.state.session_store = build_session_store(
            settings=settings,
            http=app.state.http,
            session_factory=app.state.sessionmaker,
        )
        # Hydration runs in the background; requests see `loading` until it settles.
        app.state.session_store.initialize()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        store = getattr(app.state, "session_store", None)
        if store is not None:
            await store.close()
        http = getattr(app.state, "http", None)
        if http is not None:
            await http.aclose()
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await engine.dispose()
        log.info("shutdown")

    return app


# --- Module Notes -----------------------------------------------------------
# Composition stays here; session semantics live in `nova_session.session`.
