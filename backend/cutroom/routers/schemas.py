"""Request and response bodies for the HTTP routers.

Numeric limits are enforced by the services (so they report the engine's
``VALIDATION`` code); these models only pin down shapes.
"""
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from cutroom.models import ContentCategory, NotificationEvent, UploadStatus, VersionKind, WorkflowStatus


class InitiateUploadIn(BaseModel):
    asset_group_key: str
    declared_size: int
    chunk_size: int
    parent_version_id: Optional[UUID] = None
    version_kind: Optional[VersionKind] = None
    assignee: Optional[str] = None
    notification_lists: Dict[NotificationEvent, List[EmailStr]] = Field(default_factory=dict)
    auto_process: bool = False
    title: Optional[str] = Field(default=None, max_length=500)
    description: Optional[str] = None
    edit_notes: Optional[str] = None
    filename: Optional[str] = Field(default=None, max_length=500)
    content_type: Optional[str] = Field(default=None, max_length=200)
    category: ContentCategory = ContentCategory.general


class InitiateUploadOut(BaseModel):
    session_id: UUID
    asset_group_key: str
    version_number: int
    version_kind: VersionKind
    initial_status: WorkflowStatus
    total_parts: int
    chunk_size: int
    expires_at: datetime


class SessionRef(BaseModel):
    session_id: UUID


class BatchPartUrlsIn(SessionRef):
    part_numbers: List[int]


class PartUrlOut(BaseModel):
    part_number: int
    url: str
    valid_until: datetime


class ReportPartIn(SessionRef):
    part_number: int
    integrity_token: str


class AbortOut(BaseModel):
    aborted: bool
    status: UploadStatus


class TransitionIn(BaseModel):
    expected_status: Optional[WorkflowStatus] = None


class AssignIn(TransitionIn):
    assignee: str


class ApproveIn(TransitionIn):
    notes: Optional[str] = None
    auto_publish: bool = False
    request_processing: bool = False


class RejectIn(TransitionIn):
    reason: Optional[str] = None
    suggestions: Optional[str] = None


class PublishIn(TransitionIn):
    request_processing: bool = False


class ProcessingOut(BaseModel):
    requested: bool
    processing_requested_at: Optional[datetime] = None


class DownloadUrlOut(BaseModel):
    url: str
    expires_at: datetime
