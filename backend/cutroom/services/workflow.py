"""Editorial workflow state machine for asset versions.

Status changes only happen through the transition table below. Every write is
a conditional UPDATE on the status the caller observed, so two reviewers
racing on the same version cannot both win: the loser gets ``STALE_STATE``.
Re-requesting a transition that is already applied returns the version
unchanged and has no side effects.

Notifications and processing requests run after the commit, outside any lock.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import update
from sqlmodel import Session, select

from cutroom.core.errors import InvalidTransition, MissingReason, StaleState, ValidationFailed
from cutroom.models import (
    AssetVersion,
    NotificationEvent,
    WorkflowAction,
    WorkflowAuditEntry,
    WorkflowStatus,
)
from cutroom.services import notification, processing, versions

log = logging.getLogger(__name__)

S = WorkflowStatus
A = WorkflowAction

TRANSITIONS: Dict[tuple, WorkflowStatus] = {
    (S.draft, A.assign): S.pending_edit,
    (S.draft, A.send_for_review): S.pending_review,
    (S.pending_edit, A.reassign): S.pending_edit,
    (S.pending_review, A.approve): S.approved,  # published when auto_publish is set
    (S.pending_review, A.reject): S.rejected,
    (S.approved, A.publish): S.published,
}

NEW_VERSION_UPLOADED = "new_version_uploaded"
CREATED = "created"


def allowed_actions(status: WorkflowStatus) -> List[WorkflowAction]:
    return [action for (source, action) in TRANSITIONS if source is WorkflowStatus(status)]


def _coerce_status(value: Any) -> Optional[WorkflowStatus]:
    if value is None:
        return None
    try:
        return WorkflowStatus(value)
    except ValueError as exc:
        raise ValidationFailed(f"Unknown workflow status {value!r}", {"expected_status": str(value)}) from exc


def _append_audit(
    session: Session,
    version_id: UUID,
    action: str,
    *,
    from_status: Optional[WorkflowStatus],
    to_status: Optional[WorkflowStatus],
    actor: Optional[str],
    notes: Optional[str] = None,
) -> WorkflowAuditEntry:
    entry = WorkflowAuditEntry(
        asset_version_id=version_id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
        notes=notes,
    )
    session.add(entry)
    return entry


def record_creation(session: Session, version: AssetVersion, actor: Optional[str]) -> None:
    """Audit the initial status of a freshly minted version (no commit)."""
    _append_audit(
        session,
        version.id,
        CREATED,
        from_status=None,
        to_status=version.workflow_status,
        actor=actor,
        notes=f"assigned to {version.assigned_to}" if version.assigned_to else None,
    )


def record_new_version_uploaded(session: Session, child: AssetVersion, actor: Optional[str]) -> None:
    """Note on a parent in ``pending_edit`` that an edited child arrived.

    The parent's status is left alone; only an audit entry is appended, inside
    the caller's transaction.
    """
    if child.parent_version_id is None:
        return
    parent = session.get(AssetVersion, child.parent_version_id)
    if parent is None or parent.workflow_status is not WorkflowStatus.pending_edit:
        return
    _append_audit(
        session,
        parent.id,
        NEW_VERSION_UPLOADED,
        from_status=parent.workflow_status,
        to_status=parent.workflow_status,
        actor=actor,
        notes=f"version {child.version_number} uploaded",
    )


def _already_applied(version: AssetVersion, action: WorkflowAction, assignee: Optional[str]) -> bool:
    status = version.workflow_status
    if action is A.publish:
        return status is S.published
    if action is A.approve:
        return status is S.approved or (status is S.published and version.approved_at is not None)
    if action is A.reject:
        return status is S.rejected
    if action is A.send_for_review:
        return status is S.pending_review
    if action in (A.assign, A.reassign):
        return status is S.pending_edit and version.assigned_to == assignee
    return False


def _transition(
    session: Session,
    version_id: UUID,
    action: WorkflowAction,
    *,
    actor: Optional[str],
    expected_status: Any = None,
    assignee: Optional[str] = None,
    values_for: Any = None,
    target_override: Optional[WorkflowStatus] = None,
    notes: Optional[str] = None,
) -> tuple[AssetVersion, bool]:
    """Apply one transition. Returns the version and whether anything changed."""
    version = versions.get_version(session, version_id)
    expected = _coerce_status(expected_status)

    if _already_applied(version, action, assignee):
        log.info("event=workflow.noop action=%s version=%s status=%s", action.value, version.id, version.workflow_status.value)
        return version, False

    from_status = version.workflow_status
    if expected is not None and expected is not from_status:
        raise StaleState(expected.value, from_status.value)

    target = TRANSITIONS.get((from_status, action))
    if target is None:
        raise InvalidTransition(from_status.value, action.value)
    target = target_override or target

    now = datetime.now(timezone.utc)
    values = dict(values_for(now) if values_for else {})
    values["workflow_status"] = target
    values["is_published"] = target is S.published

    result = session.execute(
        update(AssetVersion)
        .where(AssetVersion.id == version.id)
        .where(AssetVersion.workflow_status == from_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        session.refresh(version)
        raise StaleState(from_status.value, version.workflow_status.value)

    _append_audit(session, version.id, action.value, from_status=from_status, to_status=target, actor=actor, notes=notes)
    session.commit()
    session.refresh(version)
    log.info(
        "event=workflow.transition action=%s version=%s from=%s to=%s actor=%s",
        action.value,
        version.id,
        from_status.value,
        target.value,
        actor,
    )
    return version, True


def _require_assignee(assignee: Optional[str]) -> str:
    cleaned = (assignee or "").strip()
    if not cleaned:
        raise ValidationFailed("An assignee is required", {"field": "assignee"})
    return cleaned


def assign(
    session: Session,
    version_id: UUID,
    *,
    assignee: str,
    actor: Optional[str] = None,
    expected_status: Any = None,
) -> AssetVersion:
    assignee = _require_assignee(assignee)
    version, changed = _transition(
        session,
        version_id,
        A.assign,
        actor=actor,
        expected_status=expected_status,
        assignee=assignee,
        values_for=lambda now: {"assigned_to": assignee, "assigned_by": actor, "assigned_at": now},
        notes=f"assigned to {assignee}",
    )
    if changed:
        notification.notify_after_commit(session, version, NotificationEvent.edit)
    return version


def reassign(
    session: Session,
    version_id: UUID,
    *,
    assignee: str,
    actor: Optional[str] = None,
    expected_status: Any = None,
) -> AssetVersion:
    assignee = _require_assignee(assignee)
    previous = versions.get_version(session, version_id).assigned_to
    version, changed = _transition(
        session,
        version_id,
        A.reassign,
        actor=actor,
        expected_status=expected_status,
        assignee=assignee,
        values_for=lambda now: {"assigned_to": assignee, "assigned_by": actor, "assigned_at": now},
        notes=f"reassigned from {previous} to {assignee}",
    )
    if changed:
        notification.notify_after_commit(session, version, NotificationEvent.edit)
    return version


def send_for_review(
    session: Session,
    version_id: UUID,
    *,
    actor: Optional[str] = None,
    expected_status: Any = None,
) -> AssetVersion:
    version, _ = _transition(session, version_id, A.send_for_review, actor=actor, expected_status=expected_status)
    return version


def approve(
    session: Session,
    version_id: UUID,
    *,
    actor: Optional[str] = None,
    notes: Optional[str] = None,
    auto_publish: bool = False,
    request_processing: bool = False,
    expected_status: Any = None,
) -> AssetVersion:
    """Approve a version under review.

    With ``auto_publish`` the approval and the publication land in the same
    UPDATE, so no reader ever sees the intermediate ``approved`` state.
    """
    notes = (notes or "").strip() or None

    def _values(now: datetime) -> dict:
        values = {"approved_by": actor, "approved_at": now, "review_notes": notes}
        if auto_publish:
            values.update({"published_by": actor, "published_at": now})
        return values

    version, changed = _transition(
        session,
        version_id,
        A.approve,
        actor=actor,
        expected_status=expected_status,
        values_for=_values,
        target_override=S.published if auto_publish else None,
        notes=notes,
    )
    if not changed:
        return version
    if auto_publish:
        notification.notify_after_commit(session, version, NotificationEvent.publish)
        if request_processing:
            processing.request_after_commit(session, version.id)
    else:
        notification.notify_after_commit(session, version, NotificationEvent.approval)
    return version


def reject(
    session: Session,
    version_id: UUID,
    *,
    reason: Optional[str],
    suggestions: Optional[str] = None,
    actor: Optional[str] = None,
    expected_status: Any = None,
) -> AssetVersion:
    reason = (reason or "").strip()
    suggestions = (suggestions or "").strip() or None
    current = versions.get_version(session, version_id)
    if not reason and not _already_applied(current, A.reject, None):
        if (current.workflow_status, A.reject) in TRANSITIONS:
            raise MissingReason()

    version, changed = _transition(
        session,
        version_id,
        A.reject,
        actor=actor,
        expected_status=expected_status,
        values_for=lambda now: {
            "rejected_by": actor,
            "rejected_at": now,
            "rejection_reason": reason,
            "rejection_suggestions": suggestions,
        },
        notes=reason,
    )
    if changed:
        notification.notify_after_commit(session, version, NotificationEvent.rejection)
    return version


def publish(
    session: Session,
    version_id: UUID,
    *,
    actor: Optional[str] = None,
    request_processing: bool = False,
    expected_status: Any = None,
) -> AssetVersion:
    version, changed = _transition(
        session,
        version_id,
        A.publish,
        actor=actor,
        expected_status=expected_status,
        values_for=lambda now: {"published_by": actor, "published_at": now},
    )
    if not changed:
        return version
    notification.notify_after_commit(session, version, NotificationEvent.publish)
    if request_processing:
        processing.request_after_commit(session, version.id)
    return version


def history(session: Session, version_id: UUID) -> List[WorkflowAuditEntry]:
    versions.get_version(session, version_id)
    stmt = (
        select(WorkflowAuditEntry)
        .where(WorkflowAuditEntry.asset_version_id == version_id)
        .order_by(WorkflowAuditEntry.created_at.asc())
    )
    return list(session.exec(stmt).all())
