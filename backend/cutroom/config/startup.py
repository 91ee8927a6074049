"""Startup task configuration for the FastAPI application."""
from __future__ import annotations

import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI


def _run_startup_tasks() -> None:
    """Create missing tables.

    Environment controls:
      SKIP_STARTUP_MIGRATIONS=1 -> skip entirely (schema managed elsewhere)
    """
    from cutroom.core import database
    from cutroom.core.logging import get_logger

    log = get_logger("cutroom.config.startup")

    if (os.getenv("SKIP_STARTUP_MIGRATIONS") or "").lower() in {"1", "true", "yes", "on"}:
        log.warning("[startup] SKIP_STARTUP_MIGRATIONS=1 -> skipping create_db_and_tables()")
        return
    database.create_db_and_tables()
    log.info("[startup] Database tables ready")


def register_startup(app: FastAPI) -> None:
    """Register startup event handlers with the FastAPI app."""

    @app.on_event("startup")
    async def _startup_tasks():  # type: ignore
        _run_startup_tasks()
