"""Field validation for maintenance records.

Runs before any remote call; every failure is a ``ValidationError``.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime

from garage_backend.errors import ValidationError
from garage_backend.models import MaintenanceCategory

LEGACY_FIELD = "receipt_url"

_TEXT_FIELDS = {"description", "technician"}
_COUNTER_FIELDS = {"mileage", "next_due_mileage"}
_KNOWN_FIELDS = {
    "title",
    "maintenance_type",
    "cost",
    "date_performed",
    "next_due_date",
    *_TEXT_FIELDS,
    *_COUNTER_FIELDS,
    LEGACY_FIELD,
}
_CATEGORIES = {c.value for c in MaintenanceCategory}


def _title(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("title is required", details={"field": "title"})
    title = value.strip()
    if len(title) > 200:
        raise ValidationError("title is too long", details={"field": "title"})
    return title


def _category(value: object) -> str:
    if isinstance(value, MaintenanceCategory):
        return value.value
    if not isinstance(value, str) or value.strip() not in _CATEGORIES:
        raise ValidationError(
            "maintenance_type must be one of: " + ", ".join(sorted(_CATEGORIES)),
            details={"field": "maintenance_type"},
        )
    return value.strip()


def _date(name: str, value: object, *, required: bool) -> date | None:
    if value is None:
        if required:
            raise ValidationError(f"{name} is required", details={"field": name})
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise ValidationError(f"{name} must be a date", details={"field": name})


def _cost(value: object) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("cost must be a number", details={"field": "cost"})
    if value < 0:
        raise ValidationError("cost must not be negative", details={"field": "cost"})
    return float(value)


def _counter(name: str, value: object) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer", details={"field": name})
    if value < 0:
        raise ValidationError(f"{name} must not be negative", details={"field": name})
    return value


def _text(name: str, value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be text", details={"field": name})
    if name == "technician":
        return value.strip()[:200] or None
    return value


def _normalize(name: str, value: object, *, creating: bool) -> object:
    if name == "title":
        return _title(value)
    if name == "maintenance_type":
        return _category(value)
    if name == "date_performed":
        return _date(name, value, required=True)
    if name == "next_due_date":
        return _date(name, value, required=False)
    if name == "cost":
        return _cost(value)
    if name in _COUNTER_FIELDS:
        return _counter(name, value)
    if name in _TEXT_FIELDS:
        return _text(name, value)
    # Legacy attachment slot: readable, clearable, never written.
    if creating or (value is not None and value != ""):
        raise ValidationError(
            f"{LEGACY_FIELD} is read-only; use attachments instead",
            details={"field": LEGACY_FIELD},
        )
    return None


def _check_known(fields: Mapping[str, object]) -> None:
    unknown = sorted(set(fields) - _KNOWN_FIELDS)
    if unknown:
        raise ValidationError("unknown fields: " + ", ".join(unknown), details={"fields": unknown})


def validate_new_fields(fields: Mapping[str, object]) -> dict[str, object]:
    _check_known(fields)
    values = dict(fields)
    values.setdefault("maintenance_type", MaintenanceCategory.GENERAL.value)
    if "title" not in values:
        raise ValidationError("title is required", details={"field": "title"})
    if "date_performed" not in values:
        raise ValidationError("date_performed is required", details={"field": "date_performed"})
    return {k: _normalize(k, v, creating=True) for k, v in values.items()}


def validate_changes(changes: Mapping[str, object]) -> dict[str, object]:
    _check_known(changes)
    return {k: _normalize(k, v, creating=False) for k, v in changes.items()}
