"""SQLModel tables and public response models.

Importing this package registers every table on ``SQLModel.metadata``.
"""
from .enums import (
    ContentCategory,
    DeliveryStatus,
    NotificationEvent,
    UploadStatus,
    VersionKind,
    WorkflowAction,
    WorkflowStatus,
)
from .asset import AssetGroup, AssetVersion, AssetVersionPublic
from .upload import UploadPart, UploadPartPublic, UploadSession, UploadSessionPublic
from .notification import NotificationPublic, NotificationRecord
from .audit import WorkflowAuditEntry, WorkflowAuditPublic

__all__ = [
    "ContentCategory",
    "DeliveryStatus",
    "NotificationEvent",
    "UploadStatus",
    "VersionKind",
    "WorkflowAction",
    "WorkflowStatus",
    "AssetGroup",
    "AssetVersion",
    "AssetVersionPublic",
    "UploadPart",
    "UploadPartPublic",
    "UploadSession",
    "UploadSessionPublic",
    "NotificationPublic",
    "NotificationRecord",
    "WorkflowAuditEntry",
    "WorkflowAuditPublic",
]
