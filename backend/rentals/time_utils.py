# Overview: UTC datetime helpers; the database stores naive UTC values.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(dt: datetime) -> datetime:
    # Naive values are already UTC
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse client ISO-8601 input into naive UTC.

    Accepts "YYYY-MM-DD", "YYYY-MM-DDTHH:MM[:SS]" (taken as UTC) and offset
    forms including a trailing "Z". Blank input yields None; malformed input
    raises ValueError.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"
    return _as_naive_utc(datetime.fromisoformat(text))


def to_minute(dt: Optional[datetime]) -> Optional[datetime]:
    """Drop seconds; form inputs only carry minutes."""
    return dt.replace(second=0, microsecond=0) if dt is not None else None


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize as "YYYY-MM-DDTHH:MM:SSZ" (whole seconds, UTC)."""
    if dt is None:
        return None
    return _as_naive_utc(dt).replace(microsecond=0).isoformat() + "Z"
