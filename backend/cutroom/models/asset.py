"""Asset lineage models: AssetGroup (per-group counter) and AssetVersion."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from ..core.timeutil import TZDateTime, utcnow
from .enums import ContentCategory, VersionKind, WorkflowStatus


class AssetGroup(SQLModel, table=True):
    """Serialization point for version numbering within one logical asset."""
    key: str = Field(primary_key=True, max_length=200)
    last_version_number: int = Field(default=0)
    original_version_id: Optional[UUID] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, sa_type=TZDateTime)


class AssetVersion(SQLModel, table=True):
    """One immutable rendition of a logical asset plus its editorial state.

    ``workflow_status`` and the decision fields are only written by the
    workflow state machine; everything else is fixed at upload finalization.
    """
    __table_args__ = (
        UniqueConstraint("asset_group_key", "version_number", name="uq_assetversion_group_number"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    asset_group_key: str = Field(index=True, max_length=200)
    version_number: int
    version_kind: VersionKind
    # Weak reference: no foreign key, a deleted parent leaves children untouched
    parent_version_id: Optional[UUID] = Field(default=None, index=True)

    title: Optional[str] = None
    description: Optional[str] = None
    edit_notes: Optional[str] = None
    filename: Optional[str] = None
    content_type: Optional[str] = None
    category: ContentCategory = Field(default=ContentCategory.general)
    declared_size: int
    storage_key: str
    duration_seconds: Optional[float] = Field(default=None, description="Populated after processing, never at creation")

    workflow_status: WorkflowStatus = Field(default=WorkflowStatus.draft, index=True)
    assigned_to: Optional[str] = None
    assigned_by: Optional[str] = None
    assigned_at: Optional[datetime] = Field(default=None, sa_type=TZDateTime)
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = Field(default=None, sa_type=TZDateTime)
    review_notes: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = Field(default=None, sa_type=TZDateTime)
    rejection_reason: Optional[str] = None
    rejection_suggestions: Optional[str] = None
    is_published: bool = Field(default=False, description="True iff workflow_status == published")
    published_by: Optional[str] = None
    published_at: Optional[datetime] = Field(default=None, sa_type=TZDateTime)

    auto_process_requested: bool = Field(default=False)
    processing_requested_at: Optional[datetime] = Field(default=None, sa_type=TZDateTime)
    processing_error: Optional[str] = None

    notification_lists: Dict[str, List[str]] = Field(default_factory=dict, sa_column=Column(JSON))
    upload_session_id: Optional[UUID] = Field(default=None, unique=True)
    uploaded_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=TZDateTime)


class AssetVersionPublic(SQLModel):
    id: UUID
    asset_group_key: str
    version_number: int
    version_kind: VersionKind
    parent_version_id: Optional[UUID] = None
    title: Optional[str] = None
    description: Optional[str] = None
    edit_notes: Optional[str] = None
    filename: Optional[str] = None
    content_type: Optional[str] = None
    category: ContentCategory
    declared_size: int
    storage_key: str
    duration_seconds: Optional[float] = None
    workflow_status: WorkflowStatus
    assigned_to: Optional[str] = None
    assigned_by: Optional[str] = None
    assigned_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    rejection_suggestions: Optional[str] = None
    is_published: bool
    published_by: Optional[str] = None
    published_at: Optional[datetime] = None
    auto_process_requested: bool
    processing_requested_at: Optional[datetime] = None
    processing_error: Optional[str] = None
    notification_lists: Dict[str, List[str]] = {}
    upload_session_id: Optional[UUID] = None
    uploaded_by: Optional[str] = None
    created_at: datetime
