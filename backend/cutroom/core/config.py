from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("cutroom.core.config")

# Load .env.local first, then .env, before Settings reads the environment.
# override=False so real env vars (CI/CD, Cloud Run) always win.
_PROJECT_ROOT = Path(__file__).parent.parent.parent
_ENV_LOCAL = _PROJECT_ROOT / ".env.local"
_ENV_FILE = _PROJECT_ROOT / ".env"

if _ENV_LOCAL.exists():
    load_dotenv(_ENV_LOCAL, override=False)
    log.info("[config] Loaded .env.local from %s", _ENV_LOCAL)
if _ENV_FILE.exists():
    load_dotenv(_ENV_FILE, override=False)
    log.info("[config] Loaded .env from %s", _ENV_FILE)

_PROD_ENVS = {"prod", "production", "stage", "staging"}
_DEV_ENVS = {"dev", "development", "local", "test", "testing"}

NOTIFICATION_EVENTS = ("upload", "edit", "approval", "publish", "rejection")


def _split_addresses(raw: str | None) -> list[str]:
    normalized = (raw or "").replace(";", ",")
    return [part.strip() for part in normalized.split(",") if part.strip()]


class Settings(BaseSettings):
    # --- Core Infrastructure ---
    APP_ENV: str = Field(
        default="dev",
        validation_alias=AliasChoices("APP_ENV", "ENV", "PYTHON_ENV"),
    )
    DATABASE_URL: Optional[str] = None
    SENTRY_DSN: Optional[str] = None
    CORS_ALLOWED_ORIGINS: str = ""

    # --- Object storage (S3-compatible multipart) ---
    STORAGE_BACKEND: str = "local"  # "s3", "r2" or "local" (dev only)
    STORAGE_BUCKET: str = "cutroom-media"
    STORAGE_KEY_PREFIX: str = "videos"
    S3_ENDPOINT_URL: Optional[str] = None
    S3_REGION: str = "us-east-1"
    S3_ACCESS_KEY_ID: Optional[str] = None
    S3_SECRET_ACCESS_KEY: Optional[str] = None
    R2_ACCOUNT_ID: Optional[str] = None
    LOCAL_UPLOAD_BASE_URL: str = "http://127.0.0.1:8000/local-storage"

    # --- Upload sessions ---
    UPLOAD_PART_URL_TTL_SECONDS: int = Field(default=3600, description="Validity window of a presigned part URL")
    UPLOAD_SESSION_TTL_HOURS: int = Field(default=24, description="Sessions not finished by then are reclaimed by the sweep")
    UPLOAD_MIN_CHUNK_SIZE: int = Field(default=5 * 1024 * 1024, description="S3 minimum size for every part but the last")
    UPLOAD_MAX_PARTS: int = 10_000
    DOWNLOAD_URL_TTL_SECONDS: int = 3600

    # --- Processing trigger (HLS packaging) ---
    PROCESSING_TASK_PATH: str = "/api/tasks/package-hls"
    TASKS_AUTH: str = "a-secure-local-secret"

    # --- Notification fan-out defaults (comma separated addresses) ---
    NOTIFY_DEFAULT_UPLOAD: str = ""
    NOTIFY_DEFAULT_EDIT: str = ""
    NOTIFY_DEFAULT_APPROVAL: str = ""
    NOTIFY_DEFAULT_PUBLISH: str = ""
    NOTIFY_DEFAULT_REJECTION: str = ""

    # Relative to the working directory so tests and dev runs never touch /tmp of other apps
    LOCAL_DATABASE_PATH: str = "cutroom-dev.db"

    @property
    def is_dev_mode(self) -> bool:
        env = (self.APP_ENV or "dev").strip().lower()
        return env in _DEV_ENVS

    @property
    def is_production(self) -> bool:
        return (self.APP_ENV or "").strip().lower() in _PROD_ENVS

    def default_recipients(self, event_type: str) -> list[str]:
        """Configured addresses that receive every notification of ``event_type``."""
        return _split_addresses(getattr(self, f"NOTIFY_DEFAULT_{event_type.upper()}", ""))

    @model_validator(mode="after")
    def _validate_and_warn(self):
        env = (self.APP_ENV or "dev").strip().lower()
        backend = (self.STORAGE_BACKEND or "").strip().lower()

        if backend not in {"s3", "r2", "local"}:
            raise ValueError(f"STORAGE_BACKEND must be one of s3, r2, local (got {self.STORAGE_BACKEND!r})")

        if env in _PROD_ENVS:
            if not (self.DATABASE_URL or "").strip():
                raise ValueError("DATABASE_URL must be configured for production deployments")
            if backend == "local":
                raise ValueError("STORAGE_BACKEND=local is for development only")
            if self.TASKS_AUTH == "a-secure-local-secret":
                raise ValueError("TASKS_AUTH must be configured for production deployments")
        elif not (self.DATABASE_URL or "").strip():
            log.warning(
                "[config] DATABASE_URL not set; using local SQLite database %s",
                self.LOCAL_DATABASE_PATH,
            )

        if backend == "r2" and not (self.R2_ACCOUNT_ID or self.S3_ENDPOINT_URL):
            log.warning("[config] STORAGE_BACKEND=r2 but R2_ACCOUNT_ID/S3_ENDPOINT_URL missing; storage calls will fail")
        return self

    model_config = SettingsConfigDict(
        env_file=(str(_ENV_LOCAL), str(_ENV_FILE)),
        extra="ignore",
    )


settings = Settings()
