from __future__ import annotations
from datetime import datetime
from crediario.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .models import CreditAccount, CreditPayment, Reservation


# Maximum single amount: R$ 9.999.999,99 (999,999,999 cents)
# Keeps sums of a few amounts well inside a 32-bit signed integer column
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set
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

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        # Money is cents; 12.5 is a client bug, not a value to round
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

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
    Returns a cleaned dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: validate only provided keys
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
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

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


# =============================================================================
# POLICIES
# =============================================================================

RESERVATION_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "customer_name", "customer_id", "quantity", "promised_payment_date", "notes"},
    required_on_create={"product_id", "quantity", "promised_payment_date"},
)

CREDIT_ACCOUNT_POLICY = ModelValidationPolicy(
    writable_fields={"customer_id", "installments", "payment_frequency", "next_payment_date", "notes", "order_reference"},
    required_on_create={"customer_id"},
)

CREDIT_PAYMENT_POLICY = ModelValidationPolicy(
    writable_fields={"amount_cents", "payment_method", "notes"},
    required_on_create={"amount_cents", "payment_method"},
)


def validate_reservation_payload(payload: dict) -> dict:
    return validate_payload(model=Reservation, payload=payload, policy=RESERVATION_POLICY, partial=False)


def validate_account_payload(payload: dict) -> dict:
    patch = validate_payload(model=CreditAccount, payload=payload, policy=CREDIT_ACCOUNT_POLICY, partial=False)
    if "payment_frequency" in patch and patch["payment_frequency"] is not None:
        patch["payment_frequency"] = patch["payment_frequency"].upper()
    return patch


def validate_payment_payload(payload: dict) -> dict:
    patch = validate_payload(model=CreditPayment, payload=payload, policy=CREDIT_PAYMENT_POLICY, partial=False)
    enforce_rules_payment(patch)
    return patch


def validate_payment_preview_payload(payload: dict) -> dict:
    """Same coercion as a payment; payment_method is optional for a preview."""
    patch = validate_payload(model=CreditPayment, payload=payload, policy=CREDIT_PAYMENT_POLICY, partial=True)
    enforce_rules_payment(patch)
    return patch


def enforce_rules_payment(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Positivity is left to the reconciliation engine (InvalidAmount).
    """
    amount = patch.get("amount_cents")
    if amount is not None and amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"amount_cents cannot exceed {MAX_AMOUNT_CENTS}")
    if patch.get("payment_method"):
        patch["payment_method"] = patch["payment_method"].upper()
