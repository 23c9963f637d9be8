# Overview: Pure denomination arithmetic; no database or app context required.

"""
Denomination sets are plain ``dict[int, int]`` mappings of face value to bill
count. All money in the vault is derived from these counts, so totals are
exact integers and never pass through floating point.

CANONICAL FORM:
- keys are positive ints (face values), values are ints
- zero quantities are dropped, so {100: 0} == {}
- a *signed* set (a delta) may hold negative quantities; a stock set may not

A submitted count is a ``CashCount``: either ``Total`` (a raw amount) or
``Breakdown`` (a denomination set). ``resolve_total`` is the only way to turn
either into an amount, so there is one source of truth per count.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Union

from ..errors import IncompleteCount, InsufficientStock, InvalidDenomination


DenominationSet = dict[int, int]


def _as_int(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise InvalidDenomination(f"{label} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise InvalidDenomination(f"{label} must be an integer")


def _face(value: Any) -> int:
    face = _as_int(value, "denomination")
    if face <= 0:
        raise InvalidDenomination(f"Denomination {face} must be positive")
    return face


def normalize(raw: Mapping[Any, Any] | None, *, signed: bool = False) -> DenominationSet:
    """
    Canonicalise a mapping of face value -> quantity.

    Accepts string keys (JSON round-trips) and drops zero quantities.
    Negative quantities are rejected unless ``signed`` is set.
    """
    result: DenominationSet = {}
    for key, value in (raw or {}).items():
        face = _face(key)
        if face in result:
            raise InvalidDenomination(f"Duplicate denomination {face}")
        qty = _as_int(value, f"quantity for {face}")
        if qty < 0 and not signed:
            raise InvalidDenomination(f"Quantity for {face} cannot be negative")
        if qty:
            result[face] = qty
    return result


def from_entries(entries: Iterable[Mapping[str, Any]] | None, *, signed: bool = False) -> DenominationSet:
    """
    Build a set from ``[{"denomination": 20, "quantity": 3}, ...]``.

    Each face value may appear only once.
    """
    result: DenominationSet = {}
    seen: set[int] = set()
    for entry in entries or []:
        if not isinstance(entry, Mapping):
            raise InvalidDenomination("Each denomination entry must be an object")
        if "denomination" not in entry:
            raise InvalidDenomination("Denomination entry missing 'denomination'")
        face = _face(entry["denomination"])
        if face in seen:
            raise InvalidDenomination(f"Duplicate denomination {face}")
        seen.add(face)
        qty = _as_int(entry.get("quantity", 0), f"quantity for {face}")
        if qty < 0 and not signed:
            raise InvalidDenomination(f"Quantity for {face} cannot be negative")
        if qty:
            result[face] = qty
    return result


def to_entries(denominations: Mapping[int, int]) -> list[dict]:
    """Serialise largest face value first."""
    return [
        {"denomination": face, "quantity": qty}
        for face, qty in sorted(denominations.items(), reverse=True)
    ]


def to_json(denominations: Mapping[int, int]) -> dict[str, int]:
    """JSON-column form (string keys)."""
    return {str(face): qty for face, qty in sorted(denominations.items(), reverse=True)}


def total(denominations: Mapping[int, int]) -> int:
    return sum(face * qty for face, qty in denominations.items())


def merge(a: Mapping[int, int], b: Mapping[int, int]) -> DenominationSet:
    """Quantity-wise sum."""
    result = dict(a)
    for face, qty in b.items():
        result[face] = result.get(face, 0) + qty
    return {face: qty for face, qty in result.items() if qty}


def difference(a: Mapping[int, int], b: Mapping[int, int]) -> DenominationSet:
    """Signed delta ``a - b`` (may hold negative quantities)."""
    return merge(a, negate(b))


def negate(delta: Mapping[int, int]) -> DenominationSet:
    return {face: -qty for face, qty in delta.items() if qty}


def apply_delta(stock: Mapping[int, int], delta: Mapping[int, int]) -> DenominationSet:
    """
    Apply a signed delta to a stock set.

    Raises InsufficientStock listing every face value that would go negative;
    the input mappings are never modified.
    """
    shortages = {}
    for face, qty in delta.items():
        resulting = stock.get(face, 0) + qty
        if resulting < 0:
            shortages[face] = -resulting
    if shortages:
        raise InsufficientStock(shortages)
    return merge(stock, delta)


def subtract(a: Mapping[int, int], b: Mapping[int, int]) -> DenominationSet:
    """``a - b`` for stock sets; fails if any quantity would go negative."""
    return apply_delta(a, negate(b))


# =============================================================================
# CASH COUNTS
# =============================================================================

@dataclass(frozen=True)
class Total:
    """A raw counted amount without a breakdown."""
    amount: int
    touched: frozenset[int] = field(default_factory=frozenset)


@dataclass(frozen=True)
class Breakdown:
    """A counted denomination set."""
    denominations: Mapping[int, int]
    touched: frozenset[int] = field(default_factory=frozenset)


CashCount = Union[Total, Breakdown]


def resolve_total(count: CashCount) -> int:
    if isinstance(count, Breakdown):
        return total(count.denominations)
    return count.amount


def breakdown_of(count: CashCount) -> DenominationSet | None:
    if isinstance(count, Breakdown):
        return dict(count.denominations)
    return None


def validate_count(count: CashCount, face_values: Iterable[int]) -> int:
    """
    Accept a count iff its total is positive or every face value was reviewed.

    Returns the resolved total.
    """
    amount = resolve_total(count)
    if amount < 0:
        raise InvalidDenomination("Counted amount cannot be negative")
    if amount > 0:
        return amount

    missing = sorted(set(face_values) - set(count.touched), reverse=True)
    if missing:
        raise IncompleteCount(
            "A zero count requires every denomination to be confirmed",
            details={"unconfirmed": missing},
        )
    return amount
