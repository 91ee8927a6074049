"""Processing trigger: asks the worker to package a version into HLS renditions.

A failed request is recorded on the version and reported to the caller; it
never touches the editorial state.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlmodel import Session

from cutroom.core.circuit_breaker import PROCESSING_BREAKER
from cutroom.core.config import settings
from cutroom.core.errors import ProcessingRequestFailed
from cutroom.infrastructure import tasks_client
from cutroom.models import AssetVersion
from cutroom.services import versions

log = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 500


def build_payload(version: AssetVersion) -> dict:
    return {
        "asset_version_id": str(version.id),
        "asset_group_key": version.asset_group_key,
        "version_number": version.version_number,
        "storage_key": version.storage_key,
    }


def request_processing(session: Session, asset_version_id: UUID) -> AssetVersion:
    version = versions.get_version(session, asset_version_id)
    payload = build_payload(version)

    try:
        task = PROCESSING_BREAKER.call(tasks_client.enqueue_http_task, settings.PROCESSING_TASK_PATH, payload)
    except (RuntimeError, ValueError) as exc:
        message = (str(exc) or exc.__class__.__name__)[:_MAX_ERROR_LENGTH]
        version.processing_error = message
        session.add(version)
        session.commit()
        log.warning(
            "event=processing.request_failed version=%s group=%s error=%s",
            version.id,
            version.asset_group_key,
            message,
        )
        raise ProcessingRequestFailed(
            f"Processing request for version {version.id} failed",
            {"asset_version_id": str(version.id), "technical_message": message},
        ) from exc

    version.processing_requested_at = datetime.now(timezone.utc)
    version.processing_error = None
    session.add(version)
    session.commit()
    session.refresh(version)
    log.info(
        "event=processing.requested version=%s group=%s task=%s",
        version.id,
        version.asset_group_key,
        (task or {}).get("name"),
    )
    return version


def request_after_commit(session: Session, asset_version_id: UUID) -> None:
    """Fire-and-record variant used after uploads and publication."""
    try:
        request_processing(session, asset_version_id)
    except ProcessingRequestFailed as exc:
        log.warning("event=processing.deferred version=%s error=%s", asset_version_id, exc.message)
