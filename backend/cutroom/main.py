"""FastAPI application factory.

This module provides the create_app() function that creates and configures
the FastAPI application instance. The app.py file uses this to expose the
app instance for ASGI servers.
"""
from __future__ import annotations

from fastapi import FastAPI

_APP_SINGLETON: FastAPI | None = None


def create_app(*, fresh: bool = False) -> FastAPI:
    """Create and configure the FastAPI application.

    1. Logging and Sentry configuration
    2. FastAPI app instantiation
    3. Middleware and exception handlers
    4. Routers
    5. Startup tasks registration

    Repeated calls return the same instance unless ``fresh`` is set (tests).
    """
    global _APP_SINGLETON
    if _APP_SINGLETON is not None and not fresh:
        return _APP_SINGLETON

    from cutroom.config.logging import configure_logging, setup_sentry
    from cutroom.core.config import settings
    from cutroom.core.logging import get_logger

    configure_logging()
    setup_sentry(environment=settings.APP_ENV)

    log = get_logger("cutroom.main")

    # Never expose tracebacks outside dev/test
    app = FastAPI(title="Cutroom API", debug=settings.is_dev_mode)

    from cutroom.config.middleware import configure_middleware
    configure_middleware(app, settings)

    from cutroom.routing import attach_routers
    attach_routers(app)

    from cutroom.config.startup import register_startup
    register_startup(app)

    log.info("[startup] Application configured successfully (env=%s, storage=%s)", settings.APP_ENV, settings.STORAGE_BACKEND)

    if not fresh:
        _APP_SINGLETON = app
    return app


__all__ = ["create_app"]
