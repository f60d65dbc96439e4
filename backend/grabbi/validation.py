from __future__ import annotations
from datetime import datetime
import uuid

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Float, String, Text, DateTime, Uuid
from sqlalchemy.orm import DeclarativeMeta

from .time_utils import end_of_day, is_bare_date, parse_iso_datetime


# Upper bound for any money field (retail, cost, promotion, fees)
MAX_PRICE = 1_000_000.0


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate email or slug)."""


class NotFoundError(LookupError):
    """404-level missing entity."""


def parse_uuid(value: Any, field: str = "id") -> uuid.UUID:
    """Parse a client-supplied identifier; the message never echoes the raw value."""
    if isinstance(value, uuid.UUID):
        return value
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    try:
        return uuid.UUID(str(value).strip())
    except (ValueError, AttributeError, TypeError):
        raise ValidationError(f"Invalid {field}")


def parse_optional_uuid(value: Any, field: str = "id") -> uuid.UUID | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_uuid(value, field)


def parse_positive_int(value: Any, field: str, *, minimum: int = 1) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        parsed = int(value.strip())
    else:
        raise ValidationError(f"{field} must be an integer")
    if parsed < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return parsed


def parse_float(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")


def parse_page_args(args, *, default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    """Returns (page, limit) from query args; out-of-range values fall back to defaults."""
    try:
        page = int(args.get("page", 1))
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(args.get("limit", default_limit))
    except (TypeError, ValueError):
        limit = default_limit
    if page < 1:
        page = 1
    if limit < 1 or limit > max_limit:
        limit = default_limit
    return page, limit


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or "e" in stripped.lower() or "." in stripped:
                raise ValidationError(f"{col.key} must be an integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Float):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        try:
            return round(float(value), col.info.get("round_digits", 2))
        except (TypeError, ValueError):
            raise ValidationError(f"{col.key} must be a number")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "y"}
        return bool(value)

    if isinstance(coltype, Uuid):
        return parse_uuid(value, col.key)

    # Accept ISO-8601 strings, including bare dates
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            # a bare date closing a window covers that whole day
            if dt is not None and col.info.get("inclusive_end") and is_bare_date(value):
                dt = end_of_day(dt)
            return dt
        raise ValidationError(f"{col.key} must be a date")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields or k not in cols:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """Business rules for master catalog rows that column metadata cannot express."""
    for key in ("retail_price", "cost_price"):
        if key in patch and patch[key] is not None:
            if patch[key] <= 0:
                raise ValidationError(f"{key} must be > 0")
            if patch[key] > MAX_PRICE:
                raise ValidationError(f"{key} is too large")

    if patch.get("promotion_price") is not None and patch["promotion_price"] < 0:
        raise ValidationError("promotion_price must be >= 0")

    for key in ("stock_quantity", "reorder_level"):
        if key in patch and patch[key] is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")

    if "status" in patch and patch["status"] not in {"active", "inactive"}:
        raise ValidationError("status must be 'active' or 'inactive'")

    start, end = patch.get("promotion_start"), patch.get("promotion_end")
    if start is not None and end is not None and end < start:
        raise ValidationError("promotion_end must not be before promotion_start")
