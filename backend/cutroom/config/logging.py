"""Logging and Sentry configuration for the application."""
from __future__ import annotations

import logging
import os


def configure_logging() -> None:
    """Configure application logging from ``LOG_LEVEL`` (default INFO)."""
    from cutroom.core.logging import configure_logging as core_configure_logging

    level_name = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    core_configure_logging(getattr(logging, level_name, logging.INFO))


def setup_sentry(environment: str, dsn: str | None = None) -> None:
    """Initialize Sentry error tracking.

    Skipped in dev/test or without a DSN. Engine conflicts (4xx) are dropped
    in ``before_send``; they are expected client outcomes, not faults.
    """
    from cutroom.core.logging import get_logger
    log = get_logger("cutroom.config.logging")

    sentry_dsn = dsn or os.getenv("SENTRY_DSN")

    if not sentry_dsn or environment in ("dev", "development", "test", "testing", "local"):
        log.debug("[startup] Sentry disabled (missing DSN or dev/test env)")
        return

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.httpx import HttpxIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    from cutroom.core.errors import CutroomError

    def before_send(event, hint):
        if "exc_info" in hint:
            _, exc_value, _ = hint["exc_info"]
            if isinstance(exc_value, CutroomError) and exc_value.status_code < 500:
                return None
            debug_id = getattr(exc_value, "debug_id", None)
            if debug_id:
                event.setdefault("tags", {})["debug_id"] = str(debug_id)
        return event

    try:
        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[
                FastApiIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.WARNING),
                SqlalchemyIntegration(),
                HttpxIntegration(),
            ],
            traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
            environment=environment,
            send_default_pii=False,
            before_send=before_send,
            max_breadcrumbs=100,
        )
        log.info("[startup] Sentry initialized for env=%s", environment)
    except Exception as se:
        log.warning("[startup] Sentry init failed: %s", se)
