"""Internal task endpoints, called by Cloud Scheduler / Cloud Tasks only.

Every route requires ``X-Tasks-Auth`` to match ``TASKS_AUTH``.
"""
from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlmodel import Session

from cutroom.core.config import settings
from cutroom.core.database import get_session
from cutroom.services import uploads

log = logging.getLogger("tasks.sweep")

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


def _require_tasks_auth(x_tasks_auth: str | None = Header(default=None)) -> None:
    if not x_tasks_auth or not hmac.compare_digest(x_tasks_auth, settings.TASKS_AUTH):
        log.warning("event=tasks.unauthorized")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/sweep-upload-sessions", dependencies=[Depends(_require_tasks_auth)])
def sweep_upload_sessions(session: Session = Depends(get_session)):
    aborted = uploads.sweep_expired(session)
    log.info("event=tasks.sweep_upload_sessions aborted=%s", aborted)
    return {"aborted": aborted}
