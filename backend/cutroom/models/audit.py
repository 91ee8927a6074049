from sqlmodel import SQLModel, Field
from datetime import datetime
from uuid import UUID, uuid4
from typing import Optional

from ..core.timeutil import TZDateTime, utcnow
from .enums import WorkflowStatus


class WorkflowAuditEntry(SQLModel, table=True):
    """Append-only trail of workflow actions taken on a version."""
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    asset_version_id: UUID = Field(index=True)
    action: str
    from_status: Optional[WorkflowStatus] = None
    to_status: Optional[WorkflowStatus] = None
    actor: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=TZDateTime, index=True)


class WorkflowAuditPublic(SQLModel):
    id: UUID
    asset_version_id: UUID
    action: str
    from_status: Optional[WorkflowStatus] = None
    to_status: Optional[WorkflowStatus] = None
    actor: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
