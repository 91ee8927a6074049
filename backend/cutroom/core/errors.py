"""Engine error taxonomy.

Every structural failure the upload/versioning/workflow engine can report is a
``CutroomError`` subclass with a stable ``code`` and HTTP status. Routers never
translate these by hand; ``cutroom.exceptions`` renders them into the JSON
error envelope.
"""
from __future__ import annotations

import logging
import traceback
import uuid
from typing import Any, Mapping, Optional, Sequence

_log = logging.getLogger("cutroom.errors")


def audit_conflict_log_only(detail: str, context: Optional[Mapping[str, Any]] = None) -> str:
    """Log a conflict loudly and return the generated debug id.

    Used for every 409-class engine error so operators can trace exactly which
    request hit a stale state or an illegal transition. Returns the hex debug
    id for correlation (exposed to clients as ``X-Debug-ID``).
    """
    debug_id = uuid.uuid4().hex
    try:
        stack = "\n".join(traceback.format_stack()[:-2])
    except Exception:
        stack = "(failed to capture stack)"
    try:
        ctx_str = "" if context is None else repr(dict(context))
    except Exception:
        ctx_str = "(failed to stringify context)"
    _log.error(
        "event=conflict_audit debug_id=%s detail=%s context=%s",
        debug_id,
        detail,
        ctx_str,
    )
    _log.debug("event=conflict_stack debug_id=%s stack=\n%s", debug_id, stack)
    return debug_id


class CutroomError(Exception):
    code = "internal_error"
    status_code = 500
    retryable = False
    audited = False

    def __init__(self, message: str, details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})
        self.debug_id: Optional[str] = None
        if self.audited:
            self.debug_id = audit_conflict_log_only(f"{self.code}: {message}", self.details)


class ValidationFailed(CutroomError):
    code = "VALIDATION"
    status_code = 422


class InvalidParent(CutroomError):
    code = "INVALID_PARENT"
    status_code = 422


class InvalidPart(CutroomError):
    code = "INVALID_PART"
    status_code = 422


class MissingReason(CutroomError):
    code = "MISSING_REASON"
    status_code = 422

    def __init__(self, message: str = "A non-empty rejection reason is required") -> None:
        super().__init__(message)


class SessionNotFound(CutroomError):
    code = "SESSION_NOT_FOUND"
    status_code = 404

    def __init__(self, session_id: Any) -> None:
        super().__init__(f"Upload session {session_id} not found", {"session_id": str(session_id)})


class VersionNotFound(CutroomError):
    code = "VERSION_NOT_FOUND"
    status_code = 404

    def __init__(self, version_id: Any) -> None:
        super().__init__(f"Asset version {version_id} not found", {"asset_version_id": str(version_id)})


class SessionTerminal(CutroomError):
    code = "SESSION_TERMINAL"
    status_code = 409
    audited = True

    def __init__(self, session_id: Any, status: str) -> None:
        super().__init__(
            f"Upload session {session_id} is already {status}",
            {"session_id": str(session_id), "status": status},
        )


class IncompleteUpload(CutroomError):
    code = "INCOMPLETE_UPLOAD"
    status_code = 409

    def __init__(self, session_id: Any, missing_parts: Sequence[int]) -> None:
        self.missing_parts = sorted(missing_parts)
        super().__init__(
            f"Upload session {session_id} is missing {len(self.missing_parts)} part(s)",
            {"session_id": str(session_id), "missing_parts": self.missing_parts},
        )


class DuplicateOriginal(CutroomError):
    code = "DUPLICATE_ORIGINAL"
    status_code = 409
    audited = True

    def __init__(self, asset_group_key: str) -> None:
        super().__init__(
            f"Asset group {asset_group_key!r} already has an original version",
            {"asset_group_key": asset_group_key},
        )


class InvalidTransition(CutroomError):
    code = "INVALID_TRANSITION"
    status_code = 409
    audited = True

    def __init__(self, from_status: str, action: str) -> None:
        self.from_status = from_status
        self.action = action
        super().__init__(
            f"Cannot {action} a version in status {from_status}",
            {"from_status": from_status, "action": action},
        )


class StaleState(CutroomError):
    code = "STALE_STATE"
    status_code = 409
    audited = True

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(
            f"Version status moved to {actual} (expected {expected})",
            {"expected": expected, "actual": actual},
        )


class VersionNumberConflict(CutroomError):
    code = "VERSION_NUMBER_CONFLICT"
    status_code = 409
    retryable = True
    audited = True

    def __init__(self, asset_group_key: str) -> None:
        super().__init__(
            f"Another writer took the next version number in {asset_group_key!r}; retry",
            {"asset_group_key": asset_group_key},
        )


class StorageUnavailable(CutroomError):
    code = "STORAGE_UNAVAILABLE"
    status_code = 502
    retryable = True


class ProcessingRequestFailed(CutroomError):
    code = "PROCESSING_REQUEST_FAILED"
    status_code = 502
    retryable = True


# Never raised to callers: logged and recorded on the NotificationRecord.
NOTIFICATION_DELIVERY_FAILED = "NOTIFICATION_DELIVERY_FAILED"


__all__ = [
    "CutroomError",
    "ValidationFailed",
    "InvalidParent",
    "InvalidPart",
    "MissingReason",
    "SessionNotFound",
    "VersionNotFound",
    "SessionTerminal",
    "IncompleteUpload",
    "DuplicateOriginal",
    "InvalidTransition",
    "StaleState",
    "StorageUnavailable",
    "ProcessingRequestFailed",
    "NOTIFICATION_DELIVERY_FAILED",
    "audit_conflict_log_only",
]
