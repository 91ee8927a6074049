import logging
import os

from sqlalchemy.engine import make_url
from sqlmodel import SQLModel, Session, create_engine

# Ensure models are imported so SQLModel metadata is populated
from ..models import asset as _asset_models  # noqa: F401
from ..models import upload as _upload_models  # noqa: F401
from ..models import notification as _notification_models  # noqa: F401
from ..models import audit as _audit_models  # noqa: F401
from .config import settings

log = logging.getLogger(__name__)


def _is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


_DATABASE_URL = (settings.DATABASE_URL or "").strip()

_POOL_KWARGS = {
    "pool_pre_ping": _is_truthy(os.getenv("DB_POOL_PRE_PING", "false")),
    "pool_size": int(os.getenv("DB_POOL_SIZE", 10)),
    "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", 10)),
    "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 180)),
    "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", 30)),
    # Force ROLLBACK on every connection returned to the pool so a failed
    # request never leaks an open transaction to the next one.
    "pool_reset_on_return": "rollback",
    "connect_args": {
        "connect_timeout": int(os.getenv("DB_CONNECT_TIMEOUT", 10)),
        "options": f"-c statement_timeout={int(os.getenv('DB_STATEMENT_TIMEOUT_MS', 30000))}",
    },
}


def _create_engine():
    """Create the database engine (PostgreSQL when configured, SQLite otherwise)."""
    if _DATABASE_URL:
        try:
            parsed_url = make_url(_DATABASE_URL)
        except Exception as e:
            log.error("[db] Invalid DATABASE_URL format: %s", e)
            raise RuntimeError(f"Invalid DATABASE_URL format: {e}") from e

        backend_name = parsed_url.get_backend_name()
        log.info(
            "[db] Using DATABASE_URL for engine (driver=%s, host=%s, database=%s)",
            parsed_url.drivername,
            parsed_url.host or "unknown",
            parsed_url.database or "unknown",
        )
        if backend_name == "postgresql":
            return create_engine(_DATABASE_URL, **_POOL_KWARGS)
        if backend_name == "sqlite":
            return create_engine(_DATABASE_URL, connect_args={"check_same_thread": False})
        raise RuntimeError(f"Unsupported database backend: {backend_name}")

    sqlite_url = f"sqlite:///{settings.LOCAL_DATABASE_PATH}"
    log.info("[db] DATABASE_URL not set; using %s", sqlite_url)
    return create_engine(sqlite_url, connect_args={"check_same_thread": False})


# Connection is only opened on first use; tests patch this module global.
engine = _create_engine()


def create_db_and_tables() -> None:
    log.info("[db] Creating tables (create_all) on %s", engine.url.get_backend_name())
    SQLModel.metadata.create_all(engine)


def get_session():
    """Provide a database session for FastAPI dependency injection.

    expire_on_commit=False keeps attributes readable after commit; the routers
    serialize models after the service layer has already committed.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
    except Exception:
        try:
            session.rollback()
        except Exception as rollback_exc:
            log.warning("[db] Rollback failed in get_session cleanup: %s", rollback_exc)
        raise
    finally:
        try:
            if session.in_transaction():
                session.rollback()
        except Exception as rollback_exc:
            log.debug("[db] Pre-close rollback in get_session: %s", rollback_exc)
        session.close()
