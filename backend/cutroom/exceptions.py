from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import traceback
import uuid

from cutroom.core.errors import CutroomError
from cutroom.core.logging import get_logger


def error_payload(
    code: str,
    message: str,
    details=None,
    request: Request | None = None,
    error_id: str | None = None,
    retryable: bool | None = None,
):
    """Create error payload with user-friendly messages.

    Engine errors carry their own message; only generic codes are mapped to
    friendlier wording, with the original kept as ``technical_message``.
    """
    USER_FRIENDLY_MESSAGES = {
        "internal_error": "We're experiencing technical difficulties. Please try again in a moment.",
        "validation_error": "Please check your input and try again.",
        "STORAGE_UNAVAILABLE": "Object storage is temporarily unavailable. Please try again shortly.",
        "PROCESSING_REQUEST_FAILED": "The processing service could not be reached. Please try again shortly.",
    }

    retryable_codes = {
        "internal_error",
        "STORAGE_UNAVAILABLE",
        "PROCESSING_REQUEST_FAILED",
    }

    user_message = USER_FRIENDLY_MESSAGES.get(code, message)

    out = {
        "error": {
            "code": code,
            "message": user_message,
            "technical_message": message if user_message != message else None,
            "details": details,
            "retryable": retryable if retryable is not None else code in retryable_codes,
        }
    }

    rid = getattr(getattr(request, "state", None), "request_id", None)
    if rid:
        out["error"]["request_id"] = rid
    if error_id:
        out["error"]["error_id"] = error_id
    return out


def install_exception_handlers(app):
    log = get_logger("cutroom.exceptions")

    @app.exception_handler(CutroomError)
    async def engine_exc_handler(request: Request, exc: CutroomError):
        level = log.warning if exc.status_code >= 500 else log.info
        level(
            "%s %s %s -> %s: %s",
            exc.code, request.method, request.url.path, exc.status_code, exc.message,
            extra={"request_id": getattr(getattr(request, "state", None), "request_id", None)},
        )
        headers = {"X-Debug-ID": exc.debug_id} if exc.debug_id else None
        return JSONResponse(
            error_payload(exc.code, exc.message, exc.details or None, request, error_id=exc.debug_id, retryable=exc.retryable),
            status_code=exc.status_code,
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):
        log.warning(
            "HTTPException %s %s -> %s: %s",
            request.method, request.url.path, exc.status_code, exc.detail,
            extra={"request_id": getattr(getattr(request, "state", None), "request_id", None)},
        )
        return JSONResponse(
            error_payload("http_error", str(exc.detail), {"status_code": exc.status_code}, request),
            status_code=exc.status_code,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):
        log.info(
            "RequestValidationError %s %s",
            request.method, request.url.path,
            extra={"request_id": getattr(getattr(request, "state", None), "request_id", None)},
        )
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        return JSONResponse(
            error_payload("validation_error", "Validation failed", errors, request),
            status_code=422,
        )

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):
        err_id = str(uuid.uuid4())
        rid = getattr(getattr(request, "state", None), "request_id", None)
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        log.error(
            "Unhandled exception [%s] %s %s\nTraceback:\n%s",
            err_id, request.method, request.url.path, tb,
            extra={"request_id": rid},
        )
        return JSONResponse(
            error_payload("internal_error", "Something went wrong", None, request, error_id=err_id),
            status_code=500,
        )
