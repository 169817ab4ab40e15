# Overview: Diff engine; computes the minimal set of changed fields between two record versions.

"""
Diff Engine

compute_changed_fields(original, proposed) returns only the keys of
`proposed` whose values differ from `original`:
- deep equality: lists element-wise in order, dicts field by field
- keys only in `proposed` are included when their value is not None
- merging the result onto `original` reproduces `proposed` on every
  compared key

Attachment fields are skipped here; list identity by storage reference is
decided by attachment_service.

diff_resource() applies per-field normalizers from a resource schema first,
so equivalent form inputs ("1000" vs 1000.0, "2025-06-01T10:00" vs
"2025-06-01T10:00:00Z", "" vs None) do not show up as changes. Only fields
named in the schema are compared, which keeps server-managed fields
(timestamps, derived balances) out of every diff.
"""

from __future__ import annotations

from datetime import datetime, timezone

from ..time_utils import parse_iso_datetime, to_minute


KIND_TEXT = "text"
KIND_NUMBER = "number"
KIND_INTEGER = "integer"
KIND_DATETIME = "datetime"
KIND_REF = "ref"
KIND_ID_LIST = "id_list"


def values_equal(a, b) -> bool:
    """Structural equality for JSON-like values."""
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    if isinstance(a, dict) and isinstance(b, dict):
        if a.keys() != b.keys():
            return False
        return all(values_equal(a[k], b[k]) for k in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        if len(a) != len(b):
            return False
        return all(values_equal(x, y) for x, y in zip(a, b))
    return a == b


def compute_changed_fields(
    original: dict | None,
    proposed: dict | None,
    *,
    attachment_fields=(),
    normalizers: dict | None = None,
) -> dict:
    original = original or {}
    normalizers = normalizers or {}
    changes = {}

    for key, new_value in (proposed or {}).items():
        if key in attachment_fields:
            continue

        if key not in original:
            if new_value is not None:
                changes[key] = new_value
            continue

        old_value = original[key]
        normalize = normalizers.get(key)
        if normalize is not None:
            equal = values_equal(normalize(old_value), normalize(new_value))
        else:
            equal = values_equal(old_value, new_value)

        if not equal:
            changes[key] = new_value

    return changes


def diff_resource(
    original: dict | None,
    proposed: dict | None,
    *,
    field_kinds: dict[str, str],
    attachment_field: str | None = None,
) -> dict:
    """Schema-driven diff over the fields named in `field_kinds`."""
    compared = {k: v for k, v in (proposed or {}).items() if k in field_kinds}
    normalizers = {k: NORMALIZERS[kind] for k, kind in field_kinds.items() if kind in NORMALIZERS}
    return compute_changed_fields(
        original,
        compared,
        attachment_fields=(attachment_field,) if attachment_field else (),
        normalizers=normalizers,
    )


# =============================================================================
# NORMALIZERS
# =============================================================================

def _blank_to_none(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def normalize_text(value):
    return _blank_to_none(value)


def normalize_number(value):
    value = _blank_to_none(value)
    if value is None or isinstance(value, bool):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return value


def normalize_datetime(value):
    value = _blank_to_none(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return to_minute(value)
    if isinstance(value, str):
        try:
            return to_minute(parse_iso_datetime(value))
        except ValueError:
            return value
    return value


def normalize_ref(value):
    """Related records compare by id, whether sent as id, numeric string or object."""
    value = _blank_to_none(value)
    if isinstance(value, dict):
        value = value.get("id")
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return value


def normalize_id_list(value):
    """Item selections compare as sorted id lists; order of picking is irrelevant."""
    if value is None:
        return []
    if not isinstance(value, list):
        return value
    return sorted(str(normalize_ref(v)) for v in value)


NORMALIZERS = {
    KIND_TEXT: normalize_text,
    KIND_NUMBER: normalize_number,
    KIND_INTEGER: normalize_number,
    KIND_DATETIME: normalize_datetime,
    KIND_REF: normalize_ref,
    KIND_ID_LIST: normalize_id_list,
}
