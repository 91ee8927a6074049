"""Chunked upload endpoints.

Clients initiate a session, fetch presigned part URLs in batches, PUT each
chunk straight to storage, report the returned ETag per part, then complete.
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlmodel import Session

from ..core.database import get_session
from ..models import AssetVersionPublic, UploadSessionPublic
from ..services import uploads
from .deps import require_actor
from .schemas import (
    AbortOut,
    BatchPartUrlsIn,
    InitiateUploadIn,
    InitiateUploadOut,
    PartUrlOut,
    ReportPartIn,
    SessionRef,
)

router = APIRouter(prefix="/api/uploads", tags=["uploads"])


@router.post("/initiate", response_model=InitiateUploadOut, status_code=201)
def initiate_upload(
    payload: InitiateUploadIn,
    actor: str = Depends(require_actor),
    session: Session = Depends(get_session),
):
    upload = uploads.initiate(session, actor=actor, **payload.model_dump())
    return InitiateUploadOut(
        session_id=upload.id,
        asset_group_key=upload.asset_group_key,
        version_number=upload.preview_version_number,
        version_kind=upload.version_kind,
        initial_status=upload.initial_status,
        total_parts=upload.total_parts,
        chunk_size=upload.chunk_size,
        expires_at=upload.expires_at,
    )


@router.post("/batch-part-urls", response_model=List[PartUrlOut])
def batch_part_urls(
    payload: BatchPartUrlsIn,
    actor: str = Depends(require_actor),
    session: Session = Depends(get_session),
):
    destinations = uploads.issue_part_destinations(session, payload.session_id, payload.part_numbers)
    return [PartUrlOut(part_number=d.part_number, url=d.url, valid_until=d.valid_until) for d in destinations]


@router.post("/report-part")
def report_part(
    payload: ReportPartIn,
    actor: str = Depends(require_actor),
    session: Session = Depends(get_session),
):
    uploads.report_part(session, payload.session_id, payload.part_number, payload.integrity_token)
    return {"accepted": True}


@router.post("/complete", response_model=AssetVersionPublic)
def complete_upload(
    payload: SessionRef,
    actor: str = Depends(require_actor),
    session: Session = Depends(get_session),
):
    version = uploads.complete(session, payload.session_id)
    return AssetVersionPublic.model_validate(version, from_attributes=True)


@router.post("/abort", response_model=AbortOut)
def abort_upload(
    payload: SessionRef,
    actor: str = Depends(require_actor),
    session: Session = Depends(get_session),
):
    upload = uploads.abort(session, payload.session_id)
    return AbortOut(aborted=True, status=upload.status)


@router.get("/{session_id}", response_model=UploadSessionPublic)
def get_upload_session(session_id: UUID, session: Session = Depends(get_session)):
    """Session status plus reported parts, so an interrupted client can resume."""
    return uploads.get_session_state(session, session_id)
