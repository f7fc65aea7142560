"""
nova_session.api.__main__

Entrypoint for running the session service via `python -m nova_session.api`.
"""

from __future__ import annotations

import uvicorn

from nova_session.api.app import create_app
from nova_session.settings import get_settings


def main() -> None:
    settings = get_settings()
    app = create_app(settings=settings)

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,  # structlog
    )


if __name__ == "__main__":
    main()


# --- Module Notes -----------------------------------------------------------
# Logging is configured by the app factory, so uvicorn's own log config is disabled.
