"""
Error types raised inside the request path.

Two families live here:

- ``AppError`` and its subclasses are declared, application-level outcomes
  raised by the services. Each one carries the HTTP status it maps to.
- ``StoreError`` and its subclasses are produced by the document store
  adapter. They form a closed set of variants so the error normalizer can
  dispatch on the type instead of probing driver exceptions.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


class AppError(Exception):
    """Base error for declared application failures."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload
        super().__init__(self.message)


class BadRequestError(AppError):
    """Malformed input or an invalid foreign-key reference."""

    status_code = 400


class NotFoundError(AppError):
    """No record exists for the given identifier."""

    status_code = 404


class ConflictError(AppError):
    """The request conflicts with the current state of the data."""

    status_code = 409


class UnprocessableEntityError(AppError):
    status_code = 422


@dataclass
class FieldFailure:
    """One per-field sub-error of a schema validation failure."""

    path: str
    kind: str
    message: str
    value: Any = None


class StoreError(Exception):
    """
    Base store failure.

    A bare ``StoreError`` wraps an unexpected driver fault and is treated as
    unclassified by the normalizer.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


class StoreValidationError(StoreError):
    """A document failed the collection's schema enforcement."""

    def __init__(self, model: str, fields: Dict[str, FieldFailure]) -> None:
        self.model = model
        self.fields = fields
        summary = ", ".join(f"{path}: {failure.message}" for path, failure in fields.items())
        super().__init__(f"{model} validation failed: {summary}")


class StoreCastError(StoreError):
    """An identifier could not be cast to the store's identifier type."""

    def __init__(self, path: str, value: Any) -> None:
        self.path = path
        self.value = value
        super().__init__(f'Cast to ObjectId failed for value "{value}" at path "{path}"')


class DuplicateKeyError(StoreError):
    """A write violated a unique index."""

    def __init__(
        self,
        key_pattern: Optional[Dict[str, Any]] = None,
        key_value: Optional[Dict[str, Any]] = None,
        errmsg: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.key_pattern = key_pattern or {}
        self.key_value = key_value or {}
        self.errmsg = errmsg or ""
        super().__init__(self.errmsg or "E11000 duplicate key error", cause)
