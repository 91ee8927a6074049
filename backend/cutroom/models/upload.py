"""Chunked upload models: UploadSession and its per-part rows."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from ..core.timeutil import TZDateTime, utcnow
from .enums import ContentCategory, UploadStatus, VersionKind, WorkflowStatus


class UploadSession(SQLModel, table=True):
    """One large-file transfer, brokered through presigned part URLs.

    Carries everything the finalized AssetVersion needs so ``complete`` never
    depends on the caller repeating its initiation payload.
    """
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    asset_group_key: str = Field(index=True, max_length=200)
    declared_size: int
    chunk_size: int
    total_parts: int
    status: UploadStatus = Field(default=UploadStatus.initiated, index=True)

    parent_version_id: Optional[UUID] = None
    version_kind: VersionKind = Field(default=VersionKind.original)
    assignee: Optional[str] = None
    notification_lists: Dict[str, List[str]] = Field(default_factory=dict, sa_column=Column(JSON))
    auto_process: bool = Field(default=False)
    title: Optional[str] = None
    description: Optional[str] = None
    edit_notes: Optional[str] = None
    filename: Optional[str] = None
    content_type: Optional[str] = None
    category: ContentCategory = Field(default=ContentCategory.general)

    storage_key: str
    storage_upload_id: str

    # Computed at initiation so the caller can show them before any byte moves
    preview_version_number: int
    initial_status: WorkflowStatus

    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=TZDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=TZDateTime)
    expires_at: datetime = Field(index=True, sa_type=TZDateTime, description="UTC time after which the sweep aborts a non-terminal session")
    completed_at: Optional[datetime] = Field(default=None, sa_type=TZDateTime)
    # Set once storage has assembled the object; a retried complete() skips that call
    storage_completed_at: Optional[datetime] = Field(default=None, sa_type=TZDateTime)
    aborted_at: Optional[datetime] = Field(default=None, sa_type=TZDateTime)
    # Session -> version mapping, kept so a repeated complete() returns the same version
    asset_version_id: Optional[UUID] = Field(default=None, unique=True)


class UploadPart(SQLModel, table=True):
    """Parts mapping entry keyed by (session_id, part_number)."""
    __table_args__ = (
        UniqueConstraint("session_id", "part_number", name="uq_uploadpart_session_part"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    session_id: UUID = Field(foreign_key="uploadsession.id", index=True)
    part_number: int
    integrity_token: Optional[str] = None
    reported_at: Optional[datetime] = Field(default=None, sa_type=TZDateTime)
    destination_issued_at: Optional[datetime] = Field(default=None, sa_type=TZDateTime)
    destination_valid_until: Optional[datetime] = Field(default=None, sa_type=TZDateTime)


class UploadPartPublic(SQLModel):
    part_number: int
    integrity_token: Optional[str] = None
    reported_at: Optional[datetime] = None


class UploadSessionPublic(SQLModel):
    id: UUID
    asset_group_key: str
    declared_size: int
    chunk_size: int
    total_parts: int
    status: UploadStatus
    parent_version_id: Optional[UUID] = None
    version_kind: VersionKind
    preview_version_number: int
    initial_status: WorkflowStatus
    created_at: datetime
    expires_at: datetime
    completed_at: Optional[datetime] = None
    aborted_at: Optional[datetime] = None
    asset_version_id: Optional[UUID] = None
    parts: List[UploadPartPublic] = []
    missing_parts: List[int] = []
