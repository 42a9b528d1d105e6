from __future__ import annotations

from decimal import Decimal, DecimalException, InvalidOperation
from typing import Any


# Maximum single amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999


class DomainError(Exception):
    """Base for errors the API surfaces to the caller as a typed failure."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        body = {"error": str(self), "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(DomainError, ValueError):
    """400-level input problem."""

    status_code = 400


class NotFoundError(DomainError):
    """404-level missing entity; clients should refetch their state."""

    status_code = 404


class ConflictError(DomainError):
    """409-level business rule conflict (e.g., shift already open)."""

    status_code = 409


class StateError(DomainError):
    """409-level lifecycle violation (e.g., completing a cancelled order)."""

    status_code = 409


class InsufficientFunds(DomainError):
    """422-level outflow that exceeds the available balance."""

    status_code = 422


def parse_amount_cents(payload: dict, *, field: str = "amount") -> int:
    """
    Read a money amount from a JSON payload and return integer cents.

    Accepts either ``amount_cents`` (plain integer) or ``amount`` (decimal
    number or string with at most two fractional digits).
    """
    if payload is None or not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    cents_key = f"{field}_cents"
    if cents_key in payload and payload[cents_key] is not None:
        raw = payload[cents_key]
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ValidationError(f"{cents_key} must be an integer")
        cents = raw
    elif field in payload and payload[field] is not None:
        cents = decimal_to_cents(payload[field], field=field)
    else:
        raise ValidationError(f"{field} is required")

    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS / 100:,.2f}")
    return cents


def decimal_to_cents(value: Any, *, field: str = "amount") -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        # str() first so floats such as 12.1 do not drag binary noise along
        dec = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not dec.is_finite():
        raise ValidationError(f"{field} must be a finite number")

    try:
        cents = dec * 100
        whole = cents.to_integral_value()
    except DecimalException:
        raise ValidationError(f"{field} is out of range")
    if cents != whole:
        raise ValidationError(f"{field} cannot have more than two decimal places")
    return int(cents)


def parse_percent(value: Any, *, field: str = "discount_percent") -> Decimal:
    """Parse a percentage with at most two decimal places (range is checked by callers)."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        dec = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not dec.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    try:
        quantized = dec.quantize(Decimal("0.01"))
    except DecimalException:
        raise ValidationError(f"{field} is out of range")
    if dec != quantized:
        raise ValidationError(f"{field} cannot have more than two decimal places")
    return dec


def require_int(payload: dict, key: str, *, required: bool = True) -> int | None:
    """Strict integer field read; rejects floats, bools and numeric strings with decimals."""
    if payload is None or not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    raw = payload.get(key)
    if raw is None:
        if required:
            raise ValidationError(f"{key} is required")
        return None

    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        stripped = raw.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    raise ValidationError(f"{key} must be an integer")


def require_str(payload: dict, key: str, *, required: bool = True, max_length: int | None = None) -> str | None:
    if payload is None or not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    raw = payload.get(key)
    if raw is None:
        if required:
            raise ValidationError(f"{key} is required")
        return None
    if not isinstance(raw, str):
        raise ValidationError(f"{key} must be a string")

    value = raw.strip()
    if required and not value:
        raise ValidationError(f"{key} cannot be blank")
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return value or None


def require_choice(value: Any, choices, *, field: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be one of {sorted(choices)}")
    normalized = value.strip()
    for choice in choices:
        if normalized.lower() == choice.lower():
            return choice
    raise ValidationError(f"{field} must be one of {sorted(choices)}")
