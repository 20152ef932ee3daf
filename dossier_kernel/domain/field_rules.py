"""
Field rules -- validation of submitted custom-field values.

Responsibility:
    Checks one submitted value against the rules declared on its template
    field (required, type format, length bounds, regex pattern, numeric
    bounds, allowed options) and converts it to its stored form.

Architecture position:
    Kernel > Domain -- pure, ZERO I/O.  Called by the field validation
    tracker before any value is written.

Failure modes:
    Returns a list of error strings; the tracker turns a non-empty list into
    InvalidFieldValueError.  An invalid regex ``pattern`` on the template is
    ignored rather than failing the submission.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")

FIELD_TYPES = frozenset({
    "text", "textarea", "number", "email", "phone", "date",
    "select", "radio", "checkbox", "file",
})


@dataclass(frozen=True)
class FieldRule:
    field_key: str
    field_type: str = "text"
    is_required: bool = False
    min_length: int | None = None
    max_length: int | None = None
    min_value: Decimal | None = None
    max_value: Decimal | None = None
    pattern: str | None = None
    options: tuple[str, ...] = field(default_factory=tuple)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _as_number(text: str) -> Decimal | None:
    try:
        number = Decimal(text.strip())
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def _is_date(text: str) -> bool:
    try:
        date.fromisoformat(text)
        return True
    except ValueError:
        pass
    try:
        datetime.fromisoformat(text)
        return True
    except ValueError:
        return False


def validate_field_value(rule: FieldRule, value: Any) -> list[str]:
    """Return every rule the value breaks (empty list means valid)."""
    if is_empty(value):
        return ["required"] if rule.is_required else []

    errors: list[str] = []

    if isinstance(value, (list, tuple)):
        if rule.options:
            unknown = [v for v in value if str(v) not in rule.options]
            if unknown:
                errors.append(f"not among options: {', '.join(map(str, unknown))}")
        return errors

    if isinstance(value, dict):
        return errors

    text = str(value)

    if rule.field_type == "email" and not EMAIL_RE.match(text):
        errors.append("invalid email format")
    elif rule.field_type == "phone" and not PHONE_RE.match(re.sub(r"\s", "", text)):
        errors.append("invalid phone format (expected international format)")
    elif rule.field_type == "date" and not _is_date(text):
        errors.append("invalid date")
    elif rule.field_type == "number" and _as_number(text) is None:
        errors.append("not a number")
    elif rule.field_type in ("select", "radio") and rule.options and text not in rule.options:
        errors.append(f"not among options: {text}")

    if rule.min_length is not None and len(text) < rule.min_length:
        errors.append(f"minimum {rule.min_length} characters")
    if rule.max_length is not None and len(text) > rule.max_length:
        errors.append(f"maximum {rule.max_length} characters")

    if rule.pattern:
        try:
            if re.search(rule.pattern, text) is None:
                errors.append("invalid format")
        except re.error:
            pass

    if rule.field_type in ("text", "number"):
        number = _as_number(text)
        if number is not None:
            if rule.min_value is not None and number < rule.min_value:
                errors.append(f"minimum value is {rule.min_value}")
            if rule.max_value is not None and number > rule.max_value:
                errors.append(f"maximum value is {rule.max_value}")

    return errors


def to_storage(value: Any) -> tuple[str | None, Any]:
    """
    Split a submitted value into (text, json) columns.

    Lists and dicts go to the JSON column; scalars are stored as text.
    """
    if value is None:
        return None, None
    if isinstance(value, (list, tuple, dict)):
        return None, list(value) if isinstance(value, tuple) else value
    if isinstance(value, bool):
        return ("true" if value else "false"), None
    return str(value), None
