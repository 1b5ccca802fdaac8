from __future__ import annotations

from enum import Enum
from typing import Any, TypeVar

"""
Cylinder Ledger error taxonomy (authoritative)

- ValidationError: malformed input, illegal status/kind pairing, non-positive quantity,
  self-transfer. User-correctable; no state change.
- InsufficientQuantityError: source position lacks stock. No state change.
- NotFoundError: missing GR, delivery, reconciliation, exchange, or outbox task.
- ConflictError: duplicate GR, invalid state transition, repeated acknowledgment.
- InternalError: storage/durability failure after retries were exhausted.

Routes map these to 400 / 400 / 404 / 409 / 500.
"""

E = TypeVar("E", bound=Enum)


class LedgerError(Exception):
    """Base class for every error raised by the cylinder ledger core."""


class ValidationError(LedgerError, ValueError):
    """400-level input problem."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]


class InsufficientQuantityError(ValidationError):
    """Source position does not hold enough cylinders."""

    def __init__(self, message: str, *, available: int, requested: int):
        super().__init__(message)
        self.available = available
        self.requested = requested
        self.shortfall = requested - available


class NotFoundError(LedgerError, LookupError):
    """404-level missing reference."""


class ConflictError(LedgerError):
    """409-level business rule conflict (e.g., duplicate GR)."""


class DuplicateGRError(ConflictError):
    """A GR already exists for the delivery transaction."""


class InvalidTransitionError(ConflictError):
    """A document was asked to move to a state its current state does not allow."""


class InternalError(LedgerError):
    """Storage failure that survived the retry policy."""


def parse_int(value: Any, field: str, *, minimum: int | None = None, required: bool = True) -> int | None:
    """
    Strict integer coercion for values arriving from JSON bodies, query strings or CLI.

    Rejects floats, booleans, scientific notation and decimal strings.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    elif isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def parse_enum(enum_cls: type[E], value: Any, field: str, *, required: bool = True) -> E | None:
    """Parse a closed enum value at the system boundary; unknown values are rejected."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field}: {value!r}. Expected one of: {allowed}")


def parse_optional_text(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text
