from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional
from uuid import UUID

from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlmodel import Session, select

from cutroom.core.config import NOTIFICATION_EVENTS, settings
from cutroom.core.errors import NOTIFICATION_DELIVERY_FAILED, ValidationFailed
from cutroom.models import AssetVersion, DeliveryStatus, NotificationEvent, NotificationRecord
from cutroom.services.mailer import mailer

log = logging.getLogger(__name__)

_EMAIL = TypeAdapter(EmailStr)


def _normalize_address(raw: object) -> Optional[str]:
    candidate = str(raw or "").strip().lower()
    if not candidate:
        return None
    try:
        return str(_EMAIL.validate_python(candidate)).lower()
    except ValidationError:
        return None


def normalize_lists(lists: Optional[Mapping[str, Iterable[str]]]) -> Dict[str, List[str]]:
    """Clean a caller-supplied ``{event_type: [addresses]}`` mapping.

    Unknown event types and malformed addresses are rejected up front so the
    stored lists only ever hold deliverable recipients.
    """
    cleaned: Dict[str, List[str]] = {}
    for event_type, addresses in (lists or {}).items():
        key = str(getattr(event_type, "value", event_type)).strip().lower()
        if key not in NOTIFICATION_EVENTS:
            raise ValidationFailed(f"Unknown notification event {event_type!r}", {"event_type": str(event_type)})
        seen: List[str] = []
        for raw in addresses or []:
            address = _normalize_address(raw)
            if address is None:
                raise ValidationFailed(f"Invalid e-mail address {raw!r} for {key} notifications", {"event_type": key})
            if address not in seen:
                seen.append(address)
        cleaned[key] = seen
    return cleaned


def resolve_recipients(version: AssetVersion, event_type: NotificationEvent) -> List[str]:
    """Recipient set for one event on one version, looked up at dispatch time.

    Per-version list, then the configured defaults, then (for ``edit``) the
    assignee when it is an e-mail address. Lower-cased and de-duplicated.
    """
    event = NotificationEvent(event_type)
    candidates: List[str] = list((version.notification_lists or {}).get(event.value) or [])
    candidates.extend(settings.default_recipients(event.value))

    resolved: List[str] = []
    for raw in candidates:
        address = _normalize_address(raw)
        if address is None:
            log.warning("event=notification.invalid_recipient event_type=%s version=%s", event.value, version.id)
            continue
        if address not in resolved:
            resolved.append(address)

    if event is NotificationEvent.edit and version.assigned_to:
        assignee = _normalize_address(version.assigned_to)
        if assignee and assignee not in resolved:
            resolved.append(assignee)
    return resolved


def _label(version: AssetVersion) -> str:
    title = (version.title or "").strip() or (version.filename or "").strip() or version.asset_group_key
    return f"{title} (v{version.version_number})"


def render_message(version: AssetVersion, event_type: NotificationEvent) -> tuple[str, str]:
    event = NotificationEvent(event_type)
    label = _label(version)
    if event is NotificationEvent.upload:
        subject = f"New upload: {label}"
        lines = [f"A new {version.version_kind.value} version of {version.asset_group_key} was uploaded."]
        if version.edit_notes:
            lines.append(f"Edit notes: {version.edit_notes}")
    elif event is NotificationEvent.edit:
        subject = f"Edit assigned: {label}"
        lines = [f"{label} was assigned to {version.assigned_to or 'an editor'} by {version.assigned_by or 'an administrator'}."]
    elif event is NotificationEvent.approval:
        subject = f"Approved: {label}"
        lines = [f"{label} was approved by {version.approved_by or 'a reviewer'}."]
        if version.review_notes:
            lines.append(f"Review notes: {version.review_notes}")
    elif event is NotificationEvent.publish:
        subject = f"Published: {label}"
        lines = [f"{label} is now published."]
    else:
        subject = f"Changes requested: {label}"
        lines = [
            f"{label} was rejected by {version.rejected_by or 'a reviewer'}.",
            f"Reason: {version.rejection_reason}",
        ]
        if version.rejection_suggestions:
            lines.append(f"Suggestions: {version.rejection_suggestions}")
    return subject, "\n".join(lines) + "\n"


def dispatch(
    session: Session,
    asset_version_id: UUID,
    event_type: NotificationEvent,
    recipients: Iterable[str],
    *,
    subject: Optional[str] = None,
    text: Optional[str] = None,
) -> Optional[NotificationRecord]:
    """Deliver one message to the whole recipient set and record the outcome.

    An empty set records nothing. Delivery failures are logged and stored on
    the record; they never propagate to the caller.
    """
    event = NotificationEvent(event_type)
    to = list(dict.fromkeys(recipients))
    if not to:
        log.info("event=notification.skipped reason=no_recipients event_type=%s version=%s", event.value, asset_version_id)
        return None

    error: Optional[str] = None
    try:
        delivered = mailer.send(to, subject or f"Asset update: {event.value}", text or "")
        if not delivered:
            error = "mailer did not accept the message"
    except Exception as exc:
        log.exception("event=notification.mailer_error event_type=%s version=%s", event.value, asset_version_id)
        error = str(exc) or exc.__class__.__name__

    if error is not None:
        log.warning(
            "event=notification.failed code=%s event_type=%s version=%s recipients=%d error=%s",
            NOTIFICATION_DELIVERY_FAILED,
            event.value,
            asset_version_id,
            len(to),
            error,
        )

    record = NotificationRecord(
        asset_version_id=asset_version_id,
        event_type=event,
        recipients=to,
        delivery_status=DeliveryStatus.failed if error else DeliveryStatus.sent,
        error=error,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    log.info(
        "event=notification.recorded event_type=%s version=%s status=%s recipients=%d",
        event.value,
        asset_version_id,
        record.delivery_status.value,
        len(to),
    )
    return record


def notify(session: Session, version: AssetVersion, event_type: NotificationEvent) -> Optional[NotificationRecord]:
    recipients = resolve_recipients(version, event_type)
    subject, text = render_message(version, event_type)
    return dispatch(session, version.id, event_type, recipients, subject=subject, text=text)


def notify_after_commit(session: Session, version: AssetVersion, event_type: NotificationEvent) -> None:
    """Notify for a transition that is already committed.

    Runs outside every lock; a failure here must not surface as a failed
    transition, so it is logged instead.
    """
    try:
        notify(session, version, event_type)
    except Exception:
        log.warning(
            "event=notification.post_commit_failed event_type=%s version=%s",
            NotificationEvent(event_type).value,
            version.id,
            exc_info=True,
        )
        session.rollback()


def history(session: Session, asset_version_id: UUID) -> List[NotificationRecord]:
    stmt = (
        select(NotificationRecord)
        .where(NotificationRecord.asset_version_id == asset_version_id)
        .order_by(NotificationRecord.sent_at.asc())
    )
    return list(session.exec(stmt).all())
