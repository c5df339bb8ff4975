"""
Centralized error normalization for the FastAPI application.

Every failure that escapes a route is mapped to exactly one JSON envelope.
Store internals (driver codes, stack traces) never reach the client; only
unclassified failures are logged, with full detail, for operators.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.exceptions import (
    AppError,
    BadRequestError,
    DuplicateKeyError,
    FieldFailure,
    StoreCastError,
    StoreError,
    StoreValidationError,
)
from api.models import ErrorResponse
from api.validation import validation_messages

logger = structlog.get_logger(__name__)

STATUS_PHRASES = {
    400: "Bad Request",
    404: "Not Found",
    409: "Conflict",
    422: "Unprocessable Entity",
}

KIND_MESSAGES = {
    "required": "{field} is required.",
    "minlength": "{field} is too short.",
    "maxlength": "{field} is too long.",
    "enum": "{field} has an invalid value.",
    "unique": "{field} must be unique.",
}

FIELD_MESSAGE_PATTERNS = (
    re.compile(r"^([a-zA-Z_]\w*)\s+(must|should) be"),
    re.compile(r"^property\s+(\w+)\s+should be"),
)

DUP_KEY_PATTERN = re.compile(r'\{\s*(\w+)\s*:\s*"?([^"}]+)"?\s*\}')


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_field_name(field: str) -> str:
    """Render a camelCase field name as Title Case words, e.g. firstName -> First Name."""
    spaced = re.sub(r"([A-Z])", r" \1", field)
    return spaced[:1].upper() + spaced[1:] if spaced else spaced


def format_failure_message(failure: FieldFailure) -> str:
    field = format_field_name(failure.path).strip()
    template = KIND_MESSAGES.get(failure.kind)
    if template:
        return template.format(field=field)
    message = re.sub(r"^Path `[^`]+` ", "", failure.message)
    return re.sub(r"\.$", "", message).strip() + "."


def field_errors_from_messages(messages: List[str]) -> List[Dict[str, str]]:
    """Recover the field name from each validation message."""
    errors = []
    for message in messages:
        field = "general"
        for pattern in FIELD_MESSAGE_PATTERNS:
            match = pattern.match(message)
            if match:
                field = match.group(1)
                break
        errors.append({"field": field, "message": message})
    return errors


def _render_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (str, int, float)):
        return str(value)
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return "[unserializable]"


def duplicate_key_errors(exc: DuplicateKeyError) -> List[Dict[str, str]]:
    fields = list(exc.key_pattern)
    if not fields and exc.errmsg:
        match = DUP_KEY_PATTERN.search(exc.errmsg)
        if match:
            field, value = match.group(1), match.group(2)
            return [{
                "field": field,
                "message": f"{format_field_name(field)} must be unique. Duplicate value: {value}.",
            }]

    if not fields:
        return [{"field": "general", "message": "Duplicate value violates a unique constraint."}]

    errors = []
    for field in fields:
        rendered = _render_value(exc.key_value.get(field))
        value_text = f" Duplicate value: {rendered}." if rendered else ""
        errors.append({
            "field": field,
            "message": f"{format_field_name(field)} must be unique.{value_text}",
        })
    return errors


def _envelope(status_code: int, message: str, path: str, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"statusCode": status_code, "message": message}
    body.update(extra)
    body["timestamp"] = utc_timestamp()
    body["path"] = path
    return body


def _as_app_error(exc: Exception) -> Optional[AppError]:
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, RequestValidationError):
        messages = validation_messages(exc)
        return BadRequestError("Bad Request Exception", payload={"message": messages})
    if isinstance(exc, StarletteHTTPException):
        return AppError(str(exc.detail), status_code=exc.status_code)
    return None


def normalize_exception(exc: Exception, path: str) -> Tuple[int, Dict[str, Any]]:
    """
    Map any failure raised in the request path to (status_code, body).

    Args:
        exc: The raised exception
        path: Request path echoed back in the envelope

    Returns:
        Tuple of HTTP status code and JSON-serializable body
    """
    if isinstance(exc, StoreValidationError):
        errors = [
            {"field": failure.path, "message": format_failure_message(failure)}
            for failure in exc.fields.values()
        ]
        return 400, _envelope(400, "Validation failed", path, errors=errors)

    if isinstance(exc, StoreCastError):
        return 400, _envelope(400, "Invalid ID format", path)

    if isinstance(exc, DuplicateKeyError):
        return 409, _envelope(409, "Duplicate key error", path, errors=duplicate_key_errors(exc))

    app_error = _as_app_error(exc)
    if app_error is not None:
        status_code = app_error.status_code
        messages = (app_error.payload or {}).get("message")
        if status_code == 400 and isinstance(messages, list):
            errors = field_errors_from_messages(messages)
            return 400, _envelope(400, "Validation error", path, errors=errors)

        extra = {}
        if status_code in STATUS_PHRASES:
            extra["error"] = STATUS_PHRASES[status_code]
        return status_code, _envelope(status_code, app_error.message, path, **extra)

    logger.error("Unhandled exception", path=path, error=repr(exc), exc_info=exc)
    return 500, _envelope(500, "Internal server error", path)


def register_error_handlers(app: FastAPI) -> None:
    """Install the normalizer for every failure family on ``app``."""

    async def handle(request: Request, exc: Exception) -> JSONResponse:
        status_code, body = normalize_exception(exc, request.url.path)
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(**body).model_dump(exclude_none=True),
            headers=getattr(exc, "headers", None),
        )

    app.add_exception_handler(RequestValidationError, handle)
    app.add_exception_handler(StarletteHTTPException, handle)
    app.add_exception_handler(AppError, handle)
    app.add_exception_handler(StoreError, handle)
    app.add_exception_handler(Exception, handle)
