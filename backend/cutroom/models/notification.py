from sqlalchemy import JSON
from sqlmodel import Column, SQLModel, Field
from datetime import datetime
from uuid import UUID, uuid4
from typing import List, Optional

from ..core.timeutil import TZDateTime, utcnow
from .enums import DeliveryStatus, NotificationEvent


class NotificationRecord(SQLModel, table=True):
    """Append-only delivery record for one fan-out of a lifecycle event."""
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    asset_version_id: UUID = Field(index=True)
    event_type: NotificationEvent = Field(index=True)
    recipients: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    sent_at: datetime = Field(default_factory=utcnow, sa_type=TZDateTime, index=True)
    delivery_status: DeliveryStatus
    error: Optional[str] = None


class NotificationPublic(SQLModel):
    id: UUID
    asset_version_id: UUID
    event_type: NotificationEvent
    recipients: List[str]
    sent_at: datetime
    delivery_status: DeliveryStatus
    error: Optional[str] = None
