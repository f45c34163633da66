from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .services.errors import ValidationError


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Insurer coverage is expressed in basis points (10000 = 100%)
MAX_RATE_BPS = 10_000


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


def coerce_int(name: str, value: Any) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
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

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    for key in ("price_cents", "purchase_cost_cents"):
        if key in patch and patch[key] is not None:
            if patch[key] < 0:
                raise ValidationError(f"{key} must be >= 0")
            if patch[key] > MAX_PRICE_CENTS:
                raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")
    for key in ("alert_threshold", "max_stock"):
        if key in patch and patch[key] is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")


def enforce_rules_lot_receive(patch: dict, *, today: date) -> None:
    # Receiving requires qty > 0, a non-negative cost and a future expiry date
    if patch.get("initial_quantity") is None or patch["initial_quantity"] <= 0:
        raise ValidationError("quantity must be > 0")

    if patch.get("purchase_price_cents") is None or patch["purchase_price_cents"] < 0:
        raise ValidationError("purchase_price_cents must be >= 0")

    if patch.get("expiry_date") is None:
        raise ValidationError("expiry_date is required")

    if patch["expiry_date"] <= today:
        raise ValidationError("expiry_date must be after today")

    manufactured = patch.get("manufactured_on")
    if manufactured is not None and manufactured > patch["expiry_date"]:
        raise ValidationError("manufactured_on cannot be after expiry_date")


def parse_quantity_items(items: Any, *, key: str, label: str) -> list[tuple[int, int]]:
    """
    Normalize [{<key>: id, "quantity": n}, ...] into [(id, n), ...].

    Shape problems raise ValidationError before anything is read or written.
    Duplicate ids are kept in request order; callers aggregate as they need.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError(f"{label} must be a non-empty list")

    parsed: list[tuple[int, int]] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"{label}[{i}] must be an object")
        if key not in item:
            raise ValidationError(f"{label}[{i}].{key} is required")
        if "quantity" not in item:
            raise ValidationError(f"{label}[{i}].quantity is required")
        ref_id = coerce_int(f"{label}[{i}].{key}", item[key])
        quantity = coerce_int(f"{label}[{i}].quantity", item["quantity"])
        if quantity < 1:
            raise ValidationError(f"{label}[{i}].quantity must be >= 1")
        parsed.append((ref_id, quantity))
    return parsed


def parse_optional_cents(name: str, value: Any) -> int | None:
    if value is None:
        return None
    cents = coerce_int(name, value)
    if cents < 0:
        raise ValidationError(f"{name} must be >= 0")
    return cents


def parse_rate_bps(value: Any) -> int | None:
    if value is None:
        return None
    rate = coerce_int("insurance_rate_bps", value)
    if rate < 0 or rate > MAX_RATE_BPS:
        raise ValidationError(f"insurance_rate_bps must be between 0 and {MAX_RATE_BPS}")
    return rate
