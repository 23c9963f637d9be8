from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from .errors import InvalidCount, InvalidDenomination, VaultError
from .services import denominations as denoms
from .time_utils import parse_iso_datetime


class ValidationError(VaultError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"


def require_json_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def parse_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion: ints and plain digit strings only.

    Floats, decimals, scientific notation and booleans are rejected so an
    amount can never be silently truncated.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15") and decimals (e.g., "12.5")
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def optional_int(payload: Mapping, field: str, *, minimum: int | None = None) -> int | None:
    value = payload.get(field)
    if value is None:
        return None
    return parse_int(value, field, minimum=minimum)


def require_str(payload: Mapping, field: str) -> str:
    value = payload.get(field)
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    return str(value).strip()


def optional_str(payload: Mapping, field: str) -> str | None:
    value = payload.get(field)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def optional_datetime(payload: Mapping, field: str) -> datetime | None:
    value = payload.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def parse_denominations(raw: Any, *, signed: bool = False, field: str = "denominations") -> dict[int, int]:
    """
    Accept either the entry-list form or a face-value mapping:

        [{"denomination": 20, "quantity": 3}, ...]
        {"20": 3, "100": 1}
    """
    if raw is None:
        raise InvalidDenomination(f"{field} is required")
    if isinstance(raw, list):
        return denoms.from_entries(raw, signed=signed)
    if isinstance(raw, Mapping):
        return denoms.normalize(raw, signed=signed)
    raise InvalidDenomination(f"{field} must be a list of entries or an object")


def _parse_touched(raw: Any) -> frozenset[int]:
    if raw is None:
        return frozenset()
    if not isinstance(raw, list):
        raise InvalidDenomination("touched must be a list of face values")
    touched = set()
    for value in raw:
        face = parse_int(value, "touched", minimum=1)
        touched.add(face)
    return frozenset(touched)


def parse_cash_count(payload: Mapping) -> denoms.CashCount:
    """
    Build a CashCount from a request body.

    ``denominations`` makes a Breakdown; otherwise ``entered_total`` makes a
    Total. If both are sent they must agree. ``touched`` lists the face
    values the counter explicitly reviewed.
    """
    touched = _parse_touched(payload.get("touched"))
    entered_total = optional_int(payload, "entered_total", minimum=0)

    if payload.get("denominations") is not None:
        breakdown = parse_denominations(payload.get("denominations"))
        amount = denoms.total(breakdown)
        if entered_total is not None and entered_total != amount:
            raise InvalidCount(
                f"Denomination total ({amount}) does not match entered_total ({entered_total})",
                details={"denomination_total": amount, "entered_total": entered_total},
            )
        return denoms.Breakdown(breakdown, touched)

    if entered_total is None:
        raise ValidationError("Either denominations or entered_total is required")
    return denoms.Total(entered_total, touched)
