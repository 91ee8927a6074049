"""S3-compatible multipart storage client (AWS S3 or Cloudflare R2).

The engine never routes media bytes through itself: it opens a multipart
upload, hands out one presigned ``upload_part`` URL per chunk, and asks the
backend to assemble the object once every part's ETag has been reported.

R2 is addressed through its S3 endpoint
(``https://<account_id>.r2.cloudflarestorage.com``) with SigV4 and path-style
addressing; plain S3 uses the regular regional endpoint unless
``S3_ENDPOINT_URL`` overrides it (MinIO, localstack).
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from cutroom.core.config import settings


logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """A storage backend call failed; the caller decides whether that is fatal."""


# Cached S3 client
_S3_CLIENT = None


def _endpoint_url() -> Optional[str]:
    if settings.S3_ENDPOINT_URL:
        return settings.S3_ENDPOINT_URL
    if settings.STORAGE_BACKEND.lower() == "r2" and settings.R2_ACCOUNT_ID:
        return f"https://{settings.R2_ACCOUNT_ID}.r2.cloudflarestorage.com"
    return None


def _get_client():
    """Get or create cached boto3 S3 client."""
    global _S3_CLIENT

    if _S3_CLIENT is not None:
        return _S3_CLIENT

    is_r2 = settings.STORAGE_BACKEND.lower() == "r2"
    try:
        client = boto3.client(
            "s3",
            endpoint_url=_endpoint_url(),
            aws_access_key_id=settings.S3_ACCESS_KEY_ID,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "path" if is_r2 else "auto"},
            ),
            # R2 uses "auto" for automatic region selection
            region_name="auto" if is_r2 else settings.S3_REGION,
        )
    except (BotoCoreError, ValueError) as e:
        logger.error(f"Failed to initialize S3 client: {e}")
        raise StorageError(f"S3 client initialization failed: {e}") from e

    _S3_CLIENT = client
    logger.info(f"S3 client initialized (backend={settings.STORAGE_BACKEND}, endpoint={_endpoint_url() or 'aws'})")
    return client


def create_multipart_upload(bucket_name: str, key: str, content_type: str = "application/octet-stream") -> str:
    """Open a multipart upload and return its UploadId."""
    client = _get_client()
    try:
        upload = client.create_multipart_upload(Bucket=bucket_name, Key=key, ContentType=content_type)
    except (ClientError, BotoCoreError) as e:
        logger.error(f"[S3] Failed to create multipart upload for {key}: {e}")
        raise StorageError(f"Multipart init failed for {key}: {e}") from e
    upload_id = upload["UploadId"]
    logger.info(f"[S3] Opened multipart upload for {key}")
    return upload_id


def generate_part_url(bucket_name: str, key: str, upload_id: str, part_number: int, expiration: int = 3600) -> str:
    """Presigned PUT URL for one part of a multipart upload."""
    client = _get_client()
    try:
        url = client.generate_presigned_url(
            ClientMethod="upload_part",
            Params={
                "Bucket": bucket_name,
                "Key": key,
                "UploadId": upload_id,
                "PartNumber": int(part_number),
            },
            ExpiresIn=expiration,
            HttpMethod="PUT",
        )
    except (ClientError, BotoCoreError) as e:
        logger.error(f"[S3] Failed to presign part {part_number} of {key}: {e}")
        raise StorageError(f"Part URL failed for {key} part {part_number}: {e}") from e
    logger.debug(f"[S3] Generated part URL for {key} part {part_number} (expires in {expiration}s)")
    return url


def complete_multipart_upload(bucket_name: str, key: str, upload_id: str, parts: Iterable[Tuple[int, str]]) -> None:
    """Assemble the object from ``(part_number, etag)`` pairs."""
    client = _get_client()
    ordered = sorted(parts, key=lambda item: item[0])
    try:
        client.complete_multipart_upload(
            Bucket=bucket_name,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={"Parts": [{"PartNumber": n, "ETag": etag} for n, etag in ordered]},
        )
    except (ClientError, BotoCoreError) as e:
        logger.error(f"[S3] Failed to complete multipart upload for {key}: {e}")
        raise StorageError(f"Multipart completion failed for {key}: {e}") from e
    logger.info(f"[S3] Completed multipart upload for {key} ({len(ordered)} parts)")


def abort_multipart_upload(bucket_name: str, key: str, upload_id: str) -> None:
    client = _get_client()
    try:
        client.abort_multipart_upload(Bucket=bucket_name, Key=key, UploadId=upload_id)
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") == "NoSuchUpload":
            logger.info(f"[S3] Multipart upload for {key} already gone")
            return
        logger.error(f"[S3] Failed to abort multipart upload for {key}: {e}")
        raise StorageError(f"Multipart abort failed for {key}: {e}") from e
    except BotoCoreError as e:
        logger.error(f"[S3] Failed to abort multipart upload for {key}: {e}")
        raise StorageError(f"Multipart abort failed for {key}: {e}") from e
    logger.info(f"[S3] Aborted multipart upload for {key}")


def generate_signed_url(bucket_name: str, key: str, expiration: int = 3600) -> str:
    """Presigned GET URL for a finished object."""
    client = _get_client()
    try:
        return client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": bucket_name, "Key": key},
            ExpiresIn=expiration,
        )
    except (ClientError, BotoCoreError) as e:
        logger.error(f"[S3] Failed to generate signed URL for {key}: {e}")
        raise StorageError(f"Download URL failed for {key}: {e}") from e
