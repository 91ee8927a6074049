"""Middleware configuration for the FastAPI application."""
from __future__ import annotations

import re
import uuid
from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest

if TYPE_CHECKING:
    from fastapi import FastAPI
    from cutroom.core.config import Settings

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate ``X-Request-ID`` (or mint one) onto ``request.state`` and the response."""

    async def dispatch(self, request: StarletteRequest, call_next):
        incoming = request.headers.get("x-request-id") or ""
        request_id = incoming if _REQUEST_ID_RE.match(incoming) else uuid.uuid4().hex
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def configure_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure all middleware for the application."""
    from cutroom.core.logging import get_logger
    log = get_logger("cutroom.config.middleware")

    origins = [o.strip() for o in (settings.CORS_ALLOWED_ORIGINS or "").split(",") if o.strip()]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Request-ID", "X-Debug-ID"],
            allow_credentials=True,
        )
        log.info("[startup] CORS enabled for %d origin(s)", len(origins))

    app.add_middleware(RequestIDMiddleware)

    from cutroom.exceptions import install_exception_handlers
    install_exception_handlers(app)
