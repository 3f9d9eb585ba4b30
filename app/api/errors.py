import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.schemas.booking import CHOICE_MESSAGES, FIELD_LABELS
from app.services.booking_service import (
    BookingError,
    BookingNotFound,
    BookingPersistenceError,
    BookingValidationError,
    InvalidBookingState,
)
from app.services.stripe_gateway import PROCESSING_ERROR, PaymentError

logger = logging.getLogger(__name__)


def _detail(message: str, error_type: str, errors: list[str] | None = None, code: str | None = None) -> dict:
    return {"success": False, "message": message, "errorType": error_type, "errors": errors or [], "code": code}


def http_error(e: Exception, charge: bool = False) -> HTTPException:
    """Map workflow and gateway exceptions onto HTTP responses.

    With ``charge`` set, every gateway failure is a 400 carrying the provider's
    reason; otherwise processing errors are a generic 500.
    """
    if isinstance(e, PaymentError):
        if charge or e.kind != PROCESSING_ERROR:
            return HTTPException(status_code=400, detail=_detail(e.message, "payment", [e.message], e.code or e.kind))
        return HTTPException(status_code=500, detail=_detail("Payment processing error", "payment", [e.message], e.kind))
    if isinstance(e, BookingValidationError):
        return HTTPException(status_code=400, detail=_detail(e.message, e.error_type, e.errors))
    if isinstance(e, BookingNotFound):
        return HTTPException(status_code=404, detail=_detail(e.message, e.error_type))
    if isinstance(e, InvalidBookingState):
        return HTTPException(status_code=409, detail=_detail(e.message, e.error_type))
    if isinstance(e, BookingPersistenceError):
        return HTTPException(status_code=500, detail=_detail(e.message, e.error_type))
    if isinstance(e, BookingError):
        return HTTPException(status_code=400, detail=_detail(e.message, e.error_type))
    logger.error("Unhandled booking error: %s", e)
    return HTTPException(status_code=500, detail=_detail("Unexpected error", "service"))


def _field_message(err: dict) -> str:
    loc = [p for p in err.get("loc", ()) if p != "body"]
    field = str(loc[0]) if loc else ""
    label = FIELD_LABELS.get(field, field or "Request")
    etype = err.get("type", "")
    msg = str(err.get("msg", ""))

    if field == "selectedServices":
        if etype == "missing":
            return "Selected services are required"
        if etype == "too_short":
            return "At least one service must be selected"
        if len(loc) >= 3:
            sub = FIELD_LABELS.get(str(loc[2]), str(loc[2]))
            return f"Service {int(loc[1]) + 1} {sub}: {msg}"
    if etype == "missing":
        return f"{label} is required"
    if etype == "string_too_long":
        return f"{label} must be at most {err.get('ctx', {}).get('max_length')} characters"
    if etype == "value_error":
        if msg.startswith("value is not a valid email address"):
            return "Please provide a valid email address"
        return msg.removeprefix("Value error, ")
    if etype == "literal_error" and field in CHOICE_MESSAGES:
        return CHOICE_MESSAGES[field]
    if etype.startswith("date"):
        return f"{label} must be a valid date"
    if etype.startswith("float") or etype.startswith("finite"):
        return f"{label} must be a number"
    return f"{label}: {msg}"


async def _request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [_field_message(e) for e in exc.errors()]
    return JSONResponse(status_code=400, content=_detail("Validation error", "validation", errors))


async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Error bodies share the {"success": false, "message", ...} envelope
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = _detail(str(exc.detail), "service")
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
