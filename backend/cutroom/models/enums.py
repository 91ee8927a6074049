"""Enumeration types used across asset, upload and notification models.

This module centralizes all enum declarations to avoid duplication and make
it easier to maintain consistent values across the application.
"""
from enum import Enum


class VersionKind(str, Enum):
    """Role of a version within its asset group's lineage."""
    original = "original"
    edited = "edited"
    final = "final"


class WorkflowStatus(str, Enum):
    """Editorial review state of one asset version."""
    draft = "draft"
    pending_edit = "pending_edit"
    pending_review = "pending_review"
    approved = "approved"
    rejected = "rejected"
    published = "published"


class WorkflowAction(str, Enum):
    """Reviewer actions accepted by the workflow state machine."""
    assign = "assign"
    reassign = "reassign"
    send_for_review = "send_for_review"
    approve = "approve"
    reject = "reject"
    publish = "publish"


class UploadStatus(str, Enum):
    """Lifecycle of a chunked upload session."""
    initiated = "initiated"
    in_progress = "in_progress"
    completed = "completed"
    aborted = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStatus.completed, UploadStatus.aborted)


class NotificationEvent(str, Enum):
    """Lifecycle events that fan out to recipient lists."""
    upload = "upload"
    edit = "edit"
    approval = "approval"
    publish = "publish"
    rejection = "rejection"


class DeliveryStatus(str, Enum):
    sent = "sent"
    failed = "failed"


class ContentCategory(str, Enum):
    """Editorial content categories for uploaded videos."""
    general = "general"
    course = "course"
    webinar = "webinar"
    live_session = "live_session"
    promotional = "promotional"
    psicotrading = "psicotrading"
