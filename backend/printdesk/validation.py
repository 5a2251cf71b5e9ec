from __future__ import annotations
from datetime import date, datetime
from printdesk.time_utils import parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum single amount: Rs. 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_CENTS = 999_999_999

# Tax rates are basis points; 10000 bps = 100%
MAX_TAX_RATE_BPS = 10_000


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        body = {"error": str(self)}
        if self.field:
            body["field"] = self.field
        return body


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., second print job for an invoice)."""


class NotFoundError(LookupError):
    """404-level missing record."""


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


def coerce_int(key: str, value: Any) -> int:
    """
    Strict integer coercion: rejects floats, bools, decimals and
    scientific notation so amounts in cents stay exact.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer", field=key)
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)", field=key)
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)", field=key)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer", field=key)
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal", field=key)
    raise ValidationError(f"{key} must be an integer", field=key)


def coerce_date(key: str, value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            parsed = parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 date", field=key)
        if parsed is None:
            raise ValidationError(f"{key} must be an ISO-8601 date", field=key)
        return parsed
    raise ValidationError(f"{key} must be a date", field=key)


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, Date):
        return coerce_date(col.key, value)

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
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", field=k)
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", field=k)

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", field=k)

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        patch[k] = val

    return patch


def enforce_amount_range(key: str, cents: int, *, allow_zero: bool = True) -> None:
    """Shared range rule for every *_cents input."""
    if cents < 0 or (cents == 0 and not allow_zero):
        op = ">=" if allow_zero else ">"
        raise ValidationError(f"{key} must be {op} 0", field=key)
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT_CENTS} (Rs. {MAX_AMOUNT_CENTS / 100:,.2f})", field=key)


def enforce_rules_invoice(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if patch.get("discount_amount_cents") is not None:
        enforce_amount_range("discount_amount_cents", patch["discount_amount_cents"])


def enforce_rules_product(patch: dict) -> None:
    if patch.get("base_price_cents") is not None:
        enforce_amount_range("base_price_cents", patch["base_price_cents"])
    if patch.get("weight_per_unit_grams") is not None and patch["weight_per_unit_grams"] < 0:
        raise ValidationError("weight_per_unit_grams must be >= 0", field="weight_per_unit_grams")
    rate = patch.get("tax_rate_bps")
    if rate is not None and not 0 <= rate <= MAX_TAX_RATE_BPS:
        raise ValidationError(f"tax_rate_bps must be between 0 and {MAX_TAX_RATE_BPS}", field="tax_rate_bps")
