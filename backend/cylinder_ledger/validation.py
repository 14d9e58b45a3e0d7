from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for settlement and ledger errors; carries structured details."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None, *, field: str | None = None):
        super().__init__(message)
        self.details = dict(details or {})
        if field is not None:
            self.details.setdefault("field", field)
            self.details.setdefault("reason", message)

    def to_dict(self) -> dict:
        return {"error": str(self), "details": self.details}


class InvalidSettlement(LedgerError):
    """400-level input problem: bad quantities/prices, discount exceeds value."""


class InsufficientInventory(LedgerError):
    """Requested full-cylinder quantity exceeds available stock."""
    status_code = 409


class NotFound(LedgerError):
    """Driver/product/size/tenant missing or outside the caller's tenant."""
    status_code = 404


class DuplicateBaselineSeed(LedgerError):
    """Onboarding baselines already exist for this tenant or (driver, size)."""
    status_code = 409


class ConsistencyRecomputeFailure(LedgerError):
    """Internal: a ledger recompute failed. Retried, never surfaced to the seller."""
    status_code = 500


def coerce_int(value: Any, field: str, *, minimum: int | None = 0, error_cls=InvalidSettlement) -> int:
    """
    Strict integer coercion for quantities and cent amounts.

    Rejects floats, booleans, scientific notation and decimal strings.
    """
    if isinstance(value, bool):
        raise error_cls(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise error_cls(f"{field} must be an integer", field=field)
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise error_cls(f"{field} must be a plain integer (scientific notation not allowed)", field=field)
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise error_cls(f"{field} must be an integer (no decimals)", field=field)
        try:
            result = int(stripped)
        except ValueError:
            raise error_cls(f"{field} must be an integer", field=field)
    elif isinstance(value, float):
        raise error_cls(f"{field} must be an integer, not a decimal", field=field)
    else:
        raise error_cls(f"{field} must be an integer", field=field)

    if minimum is not None and result < minimum:
        raise error_cls(f"{field} must be >= {minimum}", field=field)
    return result


def optional_int(value: Any, field: str, *, default: int = 0, minimum: int | None = 0, error_cls=InvalidSettlement) -> int:
    if value is None:
        return default
    return coerce_int(value, field, minimum=minimum, error_cls=error_cls)


def require_fields(payload: dict, fields: list[str], *, error_cls=InvalidSettlement) -> None:
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise error_cls(
            f"Missing required field(s): {', '.join(missing)}",
            details={"field": missing[0], "reason": "required", "missing": missing},
        )
