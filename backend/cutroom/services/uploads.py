"""Chunked upload session manager.

Bytes never pass through this service. A session reserves a multipart upload
in object storage, hands out presigned part destinations, records the
integrity token (ETag) the client reports for every part, and on completion
asks storage to assemble the object and mints the corresponding AssetVersion.

Locking: ``complete`` and ``abort`` hold the per-session lock (and a row lock
on the session); minting additionally holds the per-group lock. Part reports
never take the session lock, they are plain upserts keyed by part number.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional
from uuid import UUID, uuid4

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from cutroom.core.config import settings
from cutroom.core.errors import (
    IncompleteUpload,
    InvalidPart,
    SessionNotFound,
    SessionTerminal,
    StorageUnavailable,
    ValidationFailed,
    VersionNotFound,
    VersionNumberConflict,
)
from cutroom.core.locks import group_locks, session_locks
from cutroom.core.timeutil import as_utc
from cutroom.infrastructure import storage
from cutroom.infrastructure.storage import PartDestination
from cutroom.models import (
    AssetVersion,
    ContentCategory,
    NotificationEvent,
    UploadPart,
    UploadPartPublic,
    UploadSession,
    UploadSessionPublic,
    UploadStatus,
    VersionKind,
    WorkflowStatus,
)
from cutroom.services import notification, processing, versions, workflow

log = logging.getLogger(__name__)

_OPEN_STATUSES = (UploadStatus.initiated, UploadStatus.in_progress)


def _load(session: Session, session_id: UUID, *, lock: bool = False) -> UploadSession:
    stmt = select(UploadSession).where(UploadSession.id == session_id).execution_options(populate_existing=True)
    if lock:
        stmt = stmt.with_for_update()
    upload = session.exec(stmt).first()
    if upload is None:
        raise SessionNotFound(session_id)
    return upload


def _parts(session: Session, session_id: UUID, part_numbers: Optional[Iterable[int]] = None) -> Dict[int, UploadPart]:
    stmt = (
        select(UploadPart)
        .where(UploadPart.session_id == session_id)
        .execution_options(populate_existing=True)
    )
    if part_numbers is not None:
        stmt = stmt.where(UploadPart.part_number.in_(list(part_numbers)))
    return {part.part_number: part for part in session.exec(stmt).all()}


def missing_parts(session: Session, upload: UploadSession) -> List[int]:
    reported = {n for n, part in _parts(session, upload.id).items() if part.integrity_token}
    return [n for n in range(1, upload.total_parts + 1) if n not in reported]


def initiate(
    session: Session,
    *,
    asset_group_key: str,
    declared_size: int,
    chunk_size: int,
    parent_version_id: Optional[UUID] = None,
    version_kind: Optional[VersionKind] = None,
    assignee: Optional[str] = None,
    notification_lists: Optional[Mapping[str, Iterable[str]]] = None,
    auto_process: bool = False,
    title: Optional[str] = None,
    description: Optional[str] = None,
    edit_notes: Optional[str] = None,
    filename: Optional[str] = None,
    content_type: Optional[str] = None,
    category: ContentCategory = ContentCategory.general,
    actor: Optional[str] = None,
) -> UploadSession:
    """Open an upload session and reserve its multipart upload in storage.

    Lineage problems (bad parent, second original) are reported here, before
    the client moves a single byte.
    """
    key = (asset_group_key or "").strip()
    if not key:
        raise ValidationFailed("asset_group_key is required", {"field": "asset_group_key"})
    if declared_size is None or declared_size <= 0:
        raise ValidationFailed("declared_size must be positive", {"field": "declared_size"})
    if chunk_size is None or chunk_size <= 0:
        raise ValidationFailed("chunk_size must be positive", {"field": "chunk_size"})

    total_parts = math.ceil(declared_size / chunk_size)
    if total_parts > 1 and chunk_size < settings.UPLOAD_MIN_CHUNK_SIZE:
        raise ValidationFailed(
            f"chunk_size must be at least {settings.UPLOAD_MIN_CHUNK_SIZE} bytes when the file spans several parts",
            {"field": "chunk_size", "minimum": settings.UPLOAD_MIN_CHUNK_SIZE},
        )
    if total_parts > settings.UPLOAD_MAX_PARTS:
        raise ValidationFailed(
            f"File would need {total_parts} parts; the maximum is {settings.UPLOAD_MAX_PARTS}",
            {"field": "chunk_size", "total_parts": total_parts, "maximum": settings.UPLOAD_MAX_PARTS},
        )

    kind = versions.resolve_kind(session, key, parent_version_id, version_kind)
    lists = notification.normalize_lists(notification_lists)
    assignee = (assignee or "").strip() or None
    initial_status = WorkflowStatus.pending_edit if assignee else WorkflowStatus.draft

    session_id = uuid4()
    storage_key = storage.build_storage_key(key, session_id, filename)
    storage_upload_id = storage.create_multipart_upload(storage_key, content_type)

    now = datetime.now(timezone.utc)
    upload = UploadSession(
        id=session_id,
        asset_group_key=key,
        declared_size=declared_size,
        chunk_size=chunk_size,
        total_parts=total_parts,
        parent_version_id=parent_version_id,
        version_kind=kind,
        assignee=assignee,
        notification_lists=lists,
        auto_process=bool(auto_process),
        title=title,
        description=description,
        edit_notes=edit_notes,
        filename=filename,
        content_type=content_type,
        category=category or ContentCategory.general,
        storage_key=storage_key,
        storage_upload_id=storage_upload_id,
        preview_version_number=versions.next_version_number(session, key),
        initial_status=initial_status,
        created_by=actor,
        created_at=now,
        updated_at=now,
        expires_at=now + timedelta(hours=settings.UPLOAD_SESSION_TTL_HOURS),
    )
    session.add(upload)
    session.commit()
    session.refresh(upload)
    log.info(
        "event=upload.initiated session=%s group=%s parts=%s chunk_size=%s kind=%s preview_version=%s",
        upload.id,
        key,
        total_parts,
        chunk_size,
        kind.value,
        upload.preview_version_number,
    )
    return upload



def _check_part_numbers(upload: UploadSession, part_numbers: Iterable[int]) -> List[int]:
    numbers = list(dict.fromkeys(int(n) for n in part_numbers))
    bad = [n for n in numbers if n < 1 or n > upload.total_parts]
    if bad:
        raise InvalidPart(
            f"Part numbers must be between 1 and {upload.total_parts}",
            {"session_id": str(upload.id), "invalid_parts": bad, "total_parts": upload.total_parts},
        )
    return numbers


def issue_part_destinations(session: Session, session_id: UUID, part_numbers: Iterable[int]) -> List[PartDestination]:
    """Presigned destinations for the requested parts; re-issuing is allowed."""
    upload = _load(session, session_id)
    if upload.status.is_terminal:
        raise SessionTerminal(upload.id, upload.status.value)
    numbers = _check_part_numbers(upload, part_numbers)
    if not numbers:
        raise ValidationFailed("part_numbers must not be empty", {"field": "part_numbers"})

    destinations = storage.issue_part_destinations(upload.storage_key, upload.storage_upload_id, numbers)
    issued_at = datetime.now(timezone.utc)

    for attempt in range(2):
        existing = _parts(session, upload.id, numbers)
        for dest in destinations:
            part = existing.get(dest.part_number)
            if part is None:
                part = UploadPart(session_id=upload.id, part_number=dest.part_number)
            part.destination_issued_at = issued_at
            part.destination_valid_until = dest.valid_until
            session.add(part)
        try:
            session.commit()
            break
        except IntegrityError:
            # A concurrent report created one of the rows; reload and retry once
            session.rollback()
            if attempt:
                raise

    log.info("event=upload.destinations_issued session=%s parts=%s", upload.id, len(destinations))
    return destinations


def _upsert_part(session: Session, session_id: UUID, part_number: int, token: str, reported_at: datetime) -> None:
    part = _parts(session, session_id, [part_number]).get(part_number)
    if part is None:
        session.add(UploadPart(session_id=session_id, part_number=part_number, integrity_token=token, reported_at=reported_at))
        try:
            session.commit()
            return
        except IntegrityError:
            session.rollback()
            part = _parts(session, session_id, [part_number])[part_number]
    part.integrity_token = token
    part.reported_at = reported_at
    session.add(part)
    session.commit()


def report_part(session: Session, session_id: UUID, part_number: int, integrity_token: str) -> UploadSession:
    """Record the integrity token of one transferred part.

    Reporting the same part again overwrites the token. Reports against a
    completed session are accepted and ignored.
    """
    token = (integrity_token or "").strip()
    if not token:
        raise ValidationFailed("integrity_token must not be empty", {"field": "integrity_token"})

    upload = _load(session, session_id)
    if upload.status is UploadStatus.completed:
        log.info("event=upload.part_ignored reason=completed session=%s part=%s", upload.id, part_number)
        return upload
    if upload.status is UploadStatus.aborted:
        raise SessionTerminal(upload.id, upload.status.value)
    _check_part_numbers(upload, [part_number])

    now = datetime.now(timezone.utc)
    _upsert_part(session, upload.id, int(part_number), token, now)

    if upload.status is UploadStatus.initiated:
        session.execute(
            update(UploadSession)
            .where(UploadSession.id == upload.id)
            .where(UploadSession.status == UploadStatus.initiated)
            .values(status=UploadStatus.in_progress, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        session.refresh(upload)
    log.debug("event=upload.part_reported session=%s part=%s", upload.id, part_number)
    return upload


def _recorded_version(session: Session, upload: UploadSession) -> AssetVersion:
    version = session.get(AssetVersion, upload.asset_version_id) if upload.asset_version_id else None
    if version is None:
        raise VersionNotFound(upload.asset_version_id)
    return version


def _remember_storage_completion(session: Session, session_id: UUID, at: datetime) -> None:
    """Save only the storage marker after the finalize commit failed.

    The multipart upload is consumed by then, so without the marker every
    retry would fail in storage.
    """
    try:
        session.execute(
            update(UploadSession)
            .where(UploadSession.id == session_id)
            .values(storage_completed_at=at, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        session.commit()
    except Exception as exc:
        session.rollback()
        log.error("event=upload.storage_marker_failed session=%s error=%s", session_id, exc)


def complete(session: Session, session_id: UUID) -> AssetVersion:
    """Finalize a session into a new AssetVersion. Idempotent.

    Calling it again on a completed session returns the version recorded the
    first time. On a missing part, a storage failure or a lost numbering race
    the session is left exactly as it was, so the client can fix things and
    retry. Storage assembles the object only after the version has been
    minted, and a retry after a failed commit skips assembly.
    """
    with session_locks.hold(str(session_id)):
        upload = _load(session, session_id, lock=True)
        if upload.status is UploadStatus.completed:
            version = _recorded_version(session, upload)
            session.rollback()
            log.info("event=upload.complete_replayed session=%s version=%s", upload.id, version.id)
            return version
        if upload.status is UploadStatus.aborted:
            upload_id, status = upload.id, upload.status.value
            session.rollback()
            raise SessionTerminal(upload_id, status)

        reported = {n: part.integrity_token for n, part in _parts(session, upload.id).items() if part.integrity_token}
        missing = [n for n in range(1, upload.total_parts + 1) if n not in reported]
        if missing:
            upload_id = upload.id
            session.rollback()
            raise IncompleteUpload(upload_id, missing)

        now = datetime.now(timezone.utc)
        group_key = upload.asset_group_key
        with group_locks.hold(group_key):
            try:
                version = versions.mint_version(
                    session,
                    asset_group_key=group_key,
                    parent_version_id=upload.parent_version_id,
                    declared_kind=upload.version_kind,
                    title=upload.title,
                    description=upload.description,
                    edit_notes=upload.edit_notes,
                    filename=upload.filename,
                    content_type=upload.content_type,
                    category=upload.category,
                    declared_size=upload.declared_size,
                    storage_key=upload.storage_key,
                    workflow_status=upload.initial_status,
                    assigned_to=upload.assignee,
                    assigned_by=upload.created_by if upload.assignee else None,
                    assigned_at=now if upload.assignee else None,
                    auto_process_requested=upload.auto_process,
                    notification_lists=dict(upload.notification_lists or {}),
                    upload_session_id=upload.id,
                    uploaded_by=upload.created_by,
                )
                workflow.record_creation(session, version, upload.created_by)
                workflow.record_new_version_uploaded(session, version, upload.created_by)

                upload.status = UploadStatus.completed
                upload.completed_at = now
                upload.updated_at = now
                upload.asset_version_id = version.id
                session.add(upload)
                session.flush()
            except IntegrityError:
                session.rollback()
                version = session.exec(
                    select(AssetVersion).where(AssetVersion.upload_session_id == session_id)
                ).first()
                if version is None:
                    # Another process took the version number; nothing was written
                    raise VersionNumberConflict(group_key) from None
                # Another worker finalized this session first
                log.info("event=upload.complete_raced session=%s version=%s", session_id, version.id)
                return version
            except Exception:
                session.rollback()
                raise

            # Storage only assembles once the version is known to mint cleanly
            assembled_now = False
            if upload.storage_completed_at is None:
                try:
                    storage.complete_multipart_upload(
                        upload.storage_key, upload.storage_upload_id, sorted(reported.items())
                    )
                except StorageUnavailable:
                    session.rollback()
                    raise
                upload.storage_completed_at = now
                assembled_now = True
            else:
                log.info("event=upload.storage_already_assembled session=%s", session_id)

            try:
                session.commit()
            except Exception:
                session.rollback()
                if assembled_now:
                    _remember_storage_completion(session, session_id, now)
                raise

    session.refresh(version)
    log.info(
        "event=upload.completed session=%s group=%s version=%s number=%s status=%s",
        upload.id,
        version.asset_group_key,
        version.id,
        version.version_number,
        version.workflow_status.value,
    )

    notification.notify_after_commit(session, version, NotificationEvent.upload)
    if version.assigned_to:
        notification.notify_after_commit(session, version, NotificationEvent.edit)
    if version.auto_process_requested:
        processing.request_after_commit(session, version.id)
        session.refresh(version)
    return version


def abort(session: Session, session_id: UUID) -> UploadSession:
    """Cancel a session and release its storage reservation. No-op when terminal."""
    with session_locks.hold(str(session_id)):
        upload = _load(session, session_id, lock=True)
        if upload.status.is_terminal:
            session.rollback()
            return upload

        now = datetime.now(timezone.utc)
        upload.status = UploadStatus.aborted
        upload.aborted_at = now
        upload.updated_at = now
        session.add(upload)
        session.execute(
            update(UploadPart)
            .where(UploadPart.session_id == upload.id)
            .values(destination_issued_at=None, destination_valid_until=None)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        session.refresh(upload)

    try:
        storage.abort_multipart_upload(upload.storage_key, upload.storage_upload_id)
    except StorageUnavailable as exc:
        log.warning("event=upload.storage_abort_failed session=%s error=%s", upload.id, exc.message)
    log.info("event=upload.aborted session=%s group=%s", upload.id, upload.asset_group_key)
    return upload


def sweep_expired(session: Session, now: Optional[datetime] = None) -> int:
    """Abort every open session whose ``expires_at`` has passed. Returns the count."""
    cutoff = as_utc(now) if now else datetime.now(timezone.utc)
    stmt = (
        select(UploadSession.id)
        .where(UploadSession.status.in_(_OPEN_STATUSES))
        .where(UploadSession.expires_at < cutoff)
    )
    expired = list(session.exec(stmt).all())
    aborted = 0
    for session_id in expired:
        if abort(session, session_id).status is UploadStatus.aborted:
            aborted += 1
    if aborted:
        log.info("event=upload.sweep aborted=%s cutoff=%s", aborted, cutoff.isoformat())
    return aborted


def get_session_state(session: Session, session_id: UUID) -> UploadSessionPublic:
    upload = _load(session, session_id)
    parts = sorted(_parts(session, upload.id).values(), key=lambda p: p.part_number)
    reported = [UploadPartPublic.model_validate(p, from_attributes=True) for p in parts if p.integrity_token]
    state = UploadSessionPublic.model_validate(upload, from_attributes=True)
    state.parts = reported
    state.missing_parts = missing_parts(session, upload)
    return state
