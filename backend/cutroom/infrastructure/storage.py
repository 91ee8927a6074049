"""Storage backend abstraction layer.

Routes multipart operations to the S3-compatible client (AWS S3 or R2) or to
a local development backend, based on ``STORAGE_BACKEND``. Every failure is
surfaced as :class:`~cutroom.core.errors.StorageUnavailable` so the upload
manager can leave its session untouched and let the caller retry.

The local backend never stores bytes. It hands out unsigned destinations under
``LOCAL_UPLOAD_BASE_URL`` and accepts every completion, which is enough to
drive the whole session lifecycle in development and tests.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Sequence, Tuple
from urllib.parse import urlencode

from cutroom.core.config import settings
from cutroom.core.errors import StorageUnavailable
from cutroom.infrastructure import s3


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartDestination:
    part_number: int
    url: str
    valid_until: datetime


def _get_backend() -> str:
    """Get configured storage backend (s3, r2 or local)."""
    return (settings.STORAGE_BACKEND or "local").strip().lower()


def _get_bucket_name() -> str:
    return settings.STORAGE_BUCKET.strip()


def build_storage_key(asset_group_key: str, session_id: uuid.UUID, filename: str | None = None) -> str:
    """Object key for the assembled upload: ``<prefix>/<group>/<session>/<filename>``."""
    safe_name = (filename or "source.bin").replace("/", "_").replace("\\", "_").strip() or "source.bin"
    prefix = settings.STORAGE_KEY_PREFIX.strip("/")
    parts = [p for p in (prefix, asset_group_key.strip("/"), session_id.hex, safe_name) if p]
    return "/".join(parts)


def _local_url(key: str, **params) -> str:
    base = settings.LOCAL_UPLOAD_BASE_URL.rstrip("/")
    query = urlencode({k: v for k, v in params.items() if v is not None})
    return f"{base}/{key}" + (f"?{query}" if query else "")


def create_multipart_upload(key: str, content_type: str | None = None) -> str:
    """Open a multipart upload for ``key`` and return the backend upload id."""
    backend = _get_backend()
    if backend == "local":
        upload_id = f"local-{uuid.uuid4().hex}"
        logger.info(f"[storage] Local multipart upload opened for {key}")
        return upload_id
    try:
        return s3.create_multipart_upload(_get_bucket_name(), key, content_type or "application/octet-stream")
    except s3.StorageError as e:
        raise StorageUnavailable(str(e), {"storage_key": key, "operation": "create_multipart_upload"}) from e


def issue_part_destinations(
    key: str,
    upload_id: str,
    part_numbers: Sequence[int],
    expires_in: int | None = None,
) -> List[PartDestination]:
    """Presign one PUT destination per part number, all sharing one validity window."""
    backend = _get_backend()
    ttl = int(expires_in or settings.UPLOAD_PART_URL_TTL_SECONDS)
    valid_until = datetime.now(timezone.utc) + timedelta(seconds=ttl)

    destinations: List[PartDestination] = []
    for part_number in part_numbers:
        if backend == "local":
            url = _local_url(key, uploadId=upload_id, partNumber=part_number, expires=int(valid_until.timestamp()))
        else:
            try:
                url = s3.generate_part_url(_get_bucket_name(), key, upload_id, part_number, expiration=ttl)
            except s3.StorageError as e:
                raise StorageUnavailable(str(e), {"storage_key": key, "operation": "upload_part"}) from e
        destinations.append(PartDestination(part_number=part_number, url=url, valid_until=valid_until))
    return destinations


def complete_multipart_upload(key: str, upload_id: str, parts: Iterable[Tuple[int, str]]) -> None:
    """Ask the backend to assemble the object from ``(part_number, integrity_token)`` pairs."""
    backend = _get_backend()
    parts = list(parts)
    if backend == "local":
        logger.info(f"[storage] Local multipart upload {key} assembled from {len(parts)} parts")
        return
    try:
        s3.complete_multipart_upload(_get_bucket_name(), key, upload_id, parts)
    except s3.StorageError as e:
        raise StorageUnavailable(str(e), {"storage_key": key, "operation": "complete_multipart_upload"}) from e


def abort_multipart_upload(key: str, upload_id: str) -> None:
    backend = _get_backend()
    if backend == "local":
        logger.info(f"[storage] Local multipart upload {key} aborted")
        return
    try:
        s3.abort_multipart_upload(_get_bucket_name(), key, upload_id)
    except s3.StorageError as e:
        raise StorageUnavailable(str(e), {"storage_key": key, "operation": "abort_multipart_upload"}) from e


def generate_download_url(key: str, expires_in: int | None = None) -> Tuple[str, datetime]:
    """Presigned GET for a finished object, with its expiry."""
    ttl = int(expires_in or settings.DOWNLOAD_URL_TTL_SECONDS)
    valid_until = datetime.now(timezone.utc) + timedelta(seconds=ttl)
    if _get_backend() == "local":
        return _local_url(key), valid_until
    try:
        return s3.generate_signed_url(_get_bucket_name(), key, expiration=ttl), valid_until
    except s3.StorageError as e:
        raise StorageUnavailable(str(e), {"storage_key": key, "operation": "get_object"}) from e
