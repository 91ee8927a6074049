from fastapi import APIRouter
from fastapi.responses import JSONResponse
import logging

from sqlalchemy.exc import SQLAlchemyError

from cutroom.core import database as _db

log = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _check_db() -> bool:
    try:
        # Always dereference the current engine from the database module so
        # test fixtures that patch cutroom.core.database.engine take effect.
        engine = getattr(_db, "engine")
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except SQLAlchemyError as exc:
        log.warning("event=health.db_failed error=%s", exc)
        return False


@router.get("/api/health")
def health():
    return {"status": "ok"}


@router.get("/api/health/deep")
def health_deep():
    db_ok = _check_db()
    body = {"db": "ok" if db_ok else "fail"}
    return JSONResponse(body, status_code=200 if db_ok else 503)
