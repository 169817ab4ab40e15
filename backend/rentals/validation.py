# Overview: Column-driven payload validation for business record writes.

"""
Payload validation.

Incoming record payloads are checked against the SQLAlchemy column metadata
of the target model plus a ModelValidationPolicy. The result is a patch dict
holding only writable fields, with values coerced to the column types.

COERCION:
- Numeric: numbers or numeric strings, finite, rounded to cents
- Integer: ints or plain digit strings (no decimals, no exponent)
- DateTime: ISO-8601 strings, normalized to UTC-naive
- JSON: lists only (item id lists)
- String/Text: stripped text
"""

from __future__ import annotations

import math
from datetime import datetime
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, Numeric, String, Text

from .errors import ValidationError
from .time_utils import parse_iso_datetime


# Largest value a Numeric(12, 2) column holds
MAX_AMOUNT = 9_999_999_999.99


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    What a client may write to one model.

    writable_fields is the security boundary: any other key is refused.
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()
    choices: dict[str, tuple[str, ...]] = field(default_factory=dict)
    non_negative: frozenset[str] = frozenset()


def _is_text(col) -> bool:
    return isinstance(col.type, (String, Text))


def _to_amount(key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValidationError(f"{key} must be a number")
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except ValueError:
        raise ValidationError(f"{key} must be a number")
    if not math.isfinite(number):
        raise ValidationError(f"{key} must be a finite number")
    if abs(number) > MAX_AMOUNT:
        raise ValidationError(f"{key} exceeds the maximum allowed value")
    return round(number, 2)


def _to_integer(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} must be an integer")

    text = value.strip()
    # "1e3" and "12.0" parse as floats elsewhere; refuse them here
    if "e" in text.lower() or "." in text:
        raise ValidationError(f"{key} must be a plain integer")
    try:
        return int(text)
    except ValueError:
        raise ValidationError(f"{key} must be an integer")


def _to_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a datetime")
    try:
        parsed = parse_iso_datetime(value)
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    return parsed


def _to_list(key: str, value: Any) -> list:
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list")
    return list(value)


def coerce_value(col, value: Any):
    """Coerce one raw value to the Python type of `col`."""
    if value is None:
        return None

    coltype = col.type
    if isinstance(coltype, Integer):
        return _to_integer(col.key, value)
    if isinstance(coltype, Numeric):
        return _to_amount(col.key, value)
    if isinstance(coltype, DateTime):
        return _to_datetime(col.key, value)
    if isinstance(coltype, Boolean):
        return value if isinstance(value, bool) else bool(value)
    if isinstance(coltype, JSON):
        return _to_list(col.key, value)
    if _is_text(col):
        return str(value).strip()
    return value


def _check_constraints(col, value, policy: ModelValidationPolicy) -> None:
    key = col.key

    if _is_text(col):
        if not col.nullable and value == "":
            raise ValidationError(f"{key} cannot be blank")
        length = getattr(col.type, "length", None)
        if length and len(value) > length:
            raise ValidationError(f"{key} exceeds max length {length}")

    if key in policy.choices and value not in policy.choices[key]:
        raise ValidationError(f"{key} must be one of: {', '.join(policy.choices[key])}")

    if key in policy.non_negative and value < 0:
        raise ValidationError(f"{key} must be >= 0")


def validate_payload(
    *,
    model,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validate and normalize a record payload.

    partial=False: create semantics, every required_on_create field must be
    present and non-blank.
    partial=True: patch semantics, only the provided keys are checked.

    Returns:
        Cleaned patch dict

    Raises:
        ValidationError: first problem found
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(
            name for name in policy.required_on_create
            if payload.get(name) is None or (isinstance(payload[name], str) and not payload[name].strip())
        )
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}

    unknown = [k for k in payload if k not in policy.writable_fields or k not in columns]
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")

    patch: dict = {}
    for key, raw in payload.items():
        col = columns[key]

        # Empty form inputs clear optional non-text columns
        if isinstance(raw, str) and not raw.strip() and col.nullable and not _is_text(col):
            raw = None

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
            continue

        value = coerce_value(col, raw)
        _check_constraints(col, value, policy)
        patch[key] = value

    return patch
