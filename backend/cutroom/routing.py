from __future__ import annotations

import logging

from fastapi import FastAPI

from cutroom.routers.assets import router as assets_router
from cutroom.routers.health import router as health_router
from cutroom.routers.tasks import router as tasks_router
from cutroom.routers.uploads import router as uploads_router
from cutroom.routers.workflow import router as workflow_router

log = logging.getLogger(__name__)

ROUTERS = (
    ("health", health_router),
    ("uploads", uploads_router),
    ("workflow", workflow_router),
    ("assets", assets_router),
    ("tasks", tasks_router),
)


def attach_routers(app: FastAPI) -> dict:
    """Mount every router and report which ones were attached."""
    availability = {}
    for name, router in ROUTERS:
        app.include_router(router)
        availability[name] = True
    log.info("[startup] Routers attached: %s", ", ".join(availability))
    return availability
