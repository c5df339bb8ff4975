"""
Field validators and validation message rendering.

Request bodies and query strings are validated by pydantic. The errors it
reports are rendered here into flat ``"<field> must be ..."`` messages, the
shape the error normalizer reparses into ``{field, message}`` pairs.
"""

import re
from typing import Any, Dict, List, Optional

from fastapi.exceptions import RequestValidationError

OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")

LOCATION_PREFIXES = ("body", "query", "path", "header", "cookie")


def normalize_isbn(raw: str) -> str:
    """Strip separators, keeping digits and a trailing X check digit."""
    return "".join(ch for ch in raw if ch.isdigit() or ch.upper() == "X").upper()


def _is_valid_isbn10(digits: str) -> bool:
    if len(digits) != 10:
        return False
    total = 0
    for i, ch in enumerate(digits[:9], start=1):
        if not ch.isdigit():
            return False
        total += int(ch) * i
    check = digits[9]
    if check == "X":
        total += 10 * 10
    elif check.isdigit():
        total += int(check) * 10
    else:
        return False
    return total % 11 == 0


def _is_valid_isbn13(digits: str) -> bool:
    if len(digits) != 13 or not digits.isdigit():
        return False
    total = 0
    for i, ch in enumerate(digits[:12]):
        factor = 1 if i % 2 == 0 else 3
        total += int(ch) * factor
    check_digit = (10 - (total % 10)) % 10
    return check_digit == int(digits[12])


def check_isbn(value: str) -> str:
    """Accept an ISBN-10 or ISBN-13, hyphens and spaces allowed, and return its bare form."""
    if not re.fullmatch(r"[0-9Xx\- ]+", value):
        raise ValueError("must be an ISBN")
    digits = normalize_isbn(value)
    if not (_is_valid_isbn10(digits) or _is_valid_isbn13(digits)):
        raise ValueError("must be an ISBN")
    return digits


def check_object_id(value: str) -> str:
    if not OBJECT_ID_PATTERN.match(value):
        raise ValueError("must be a mongodb id")
    return value


def _field_name(loc: Any) -> Optional[str]:
    parts = [str(part) for part in loc if not isinstance(part, int)]
    if parts and parts[0] in LOCATION_PREFIXES:
        parts = parts[1:]
    return parts[-1] if parts else None


def describe_error(error: Dict[str, Any]) -> str:
    """Render one pydantic error as a validation message."""
    field = _field_name(error.get("loc", ()))
    error_type = error.get("type", "")
    msg = error.get("msg", "")
    ctx = error.get("ctx") or {}

    if field is None:
        return msg
    if error_type == "missing":
        return f"{field} must be provided"
    if error_type == "extra_forbidden":
        return f"property {field} should not exist"
    if error_type == "string_type":
        return f"{field} must be a string"
    if error_type == "string_too_short":
        return f"{field} must be longer than or equal to {ctx.get('min_length', 1)} characters"
    if error_type in ("int_parsing", "int_type", "int_from_float"):
        return f"{field} must be an integer number"
    if error_type == "greater_than_equal":
        return f"{field} must be greater than or equal to {ctx.get('ge')}"
    if error_type.startswith("date_"):
        return f"{field} must be a valid ISO 8601 date string"
    if error_type == "value_error":
        return f"{field} {msg.replace('Value error, ', '', 1)}"
    if msg.startswith("Input should be"):
        return f"{field} should be{msg[len('Input should be'):]}"
    return f"{field}: {msg}"


def validation_messages(exc: RequestValidationError) -> List[str]:
    return [describe_error(error) for error in exc.errors()]
