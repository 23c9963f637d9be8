"""
Vault Inventory Store

WHY: The vault's denomination inventory is the single source of truth for
cash on premises. Every change goes through here so that stock never goes
negative and every change leaves exactly one audit record.

DESIGN PRINCIPLES:
- Mutations are staged, recorded, then committed in one transaction
- All writers for a vault run inside vault_scope() (per-vault exclusive lock
  plus SELECT ... FOR UPDATE); the scope is held until commit
- Reads of the balance are lock-free snapshots
- Vaults are provisioned empty and never deleted
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Mapping, Optional

from flask import current_app

from ..errors import (
    InvalidCount,
    InvalidReason,
    VaultAlreadyProvisioned,
    VaultNotFound,
)
from ..extensions import db
from ..models import ReconciliationRecord, VaultInventory
from ..models.vault import (
    KIND_CASH_ARRIVAL,
    KIND_CASH_REMOVAL,
    KIND_COLLECTION_FINALIZE,
    KIND_FLOAT_ISSUE,
    KIND_FLOAT_RETURN,
    KIND_MANUAL_RECONCILE,
    KIND_SHIFT_RESOLVE,
    KIND_VAULT_ADJUSTMENT,
)
from ..time_utils import to_utc_z, utcnow
from . import audit_service
from . import denominations as denoms
from .concurrency import exclusive, lock_for_update, run_with_retry


# Cash arrival sources
SOURCE_BANK_WITHDRAWAL = "BANK_WITHDRAWAL"
SOURCE_OWNER_INJECTION = "OWNER_INJECTION"
SOURCE_MACHINE_DROP = "MACHINE_DROP"
CASH_ARRIVAL_SOURCES = (SOURCE_BANK_WITHDRAWAL, SOURCE_OWNER_INJECTION, SOURCE_MACHINE_DROP)

# Cash removal destinations (cashier floats go through shift_service.issue_float)
DESTINATION_BANK_DEPOSIT = "BANK_DEPOSIT"
DESTINATION_OWNER_DRAW = "OWNER_DRAW"
DESTINATION_EXPENSE = "EXPENSE"
CASH_REMOVAL_DESTINATIONS = (DESTINATION_BANK_DEPOSIT, DESTINATION_OWNER_DRAW, DESTINATION_EXPENSE)

# Direction each adjustment kind may move stock, and the row it must reference.
# Kinds not listed here never change quantities through apply_adjustment.
CREDIT = 1
DEBIT = -1
EITHER = 0

ADJUSTMENT_RULES = {
    KIND_CASH_ARRIVAL: (CREDIT, None),
    KIND_CASH_REMOVAL: (DEBIT, None),
    KIND_VAULT_ADJUSTMENT: (EITHER, None),
    KIND_COLLECTION_FINALIZE: (CREDIT, "collection_session_id"),
    KIND_SHIFT_RESOLVE: (EITHER, "cashier_shift_id"),
    KIND_FLOAT_ISSUE: (DEBIT, "cashier_shift_id"),
    KIND_FLOAT_RETURN: (CREDIT, "cashier_shift_id"),
}

# Reasons accepted by the public adjust_vault; the rest belong to their owning services
ADJUST_VAULT_REASONS = (KIND_VAULT_ADJUSTMENT, KIND_CASH_ARRIVAL, KIND_CASH_REMOVAL)


# =============================================================================
# PROVISIONING / LOOKUP
# =============================================================================

def provision_vault(
    location_id: str,
    name: str | None = None,
    licensee_id: str | None = None,
) -> VaultInventory:
    """
    Create an empty vault for a location.

    WHY: Each location has exactly one authoritative vault. Opening stock is
    brought in through add_cash_arrival so it is audited like any other cash.
    """
    if not location_id:
        raise ValueError("location_id is required")

    existing = db.session.query(VaultInventory).filter_by(location_id=location_id).first()
    if existing:
        raise VaultAlreadyProvisioned(
            f"Location '{location_id}' already has vault {existing.id}",
            details={"vault_id": existing.id},
        )

    vault = VaultInventory(
        location_id=location_id,
        licensee_id=licensee_id,
        name=name or f"Vault {location_id}",
        audit_sequence=0,
    )
    vault.denominations = {}

    db.session.add(vault)
    db.session.commit()

    return vault


def get_vault(vault_id: int) -> VaultInventory:
    vault = db.session.get(VaultInventory, vault_id)
    if not vault:
        raise VaultNotFound(f"Vault {vault_id} not found")
    return vault


def get_vault_for_location(location_id: str) -> VaultInventory:
    vault = db.session.query(VaultInventory).filter_by(location_id=location_id).first()
    if not vault:
        raise VaultNotFound(f"No vault provisioned for location '{location_id}'")
    return vault


def get_vault_balance(vault_id: int) -> dict:
    """Lock-free snapshot of balance and denominations."""
    vault = get_vault(vault_id)
    return {
        "vault_id": vault.id,
        "location_id": vault.location_id,
        "balance": vault.balance,
        "denominations": denoms.to_entries(vault.denominations),
        "audit_sequence": vault.audit_sequence,
        "last_reconciled_at": to_utc_z(vault.last_reconciled_at),
    }


def list_vaults() -> list[VaultInventory]:
    return db.session.query(VaultInventory).order_by(VaultInventory.id).all()


@contextmanager
def vault_scope(vault_id: int):
    """
    Exclusive write scope for one vault; yields the row locked for update.

    Callers must commit (or let run_with_retry roll back) before leaving.
    """
    with exclusive("vault", vault_id):
        vault = lock_for_update(
            db.session.query(VaultInventory).filter_by(id=vault_id)
        ).populate_existing().first()
        if not vault:
            raise VaultNotFound(f"Vault {vault_id} not found")
        yield vault


# =============================================================================
# MUTATIONS (caller holds vault_scope)
# =============================================================================

def apply_adjustment(
    vault: VaultInventory,
    delta: Mapping[int, int],
    reason: str,
    actor: str,
    comment: Optional[str] = None,
    *,
    cashier_shift_id: int | None = None,
    collection_session_id: int | None = None,
    payload: Optional[dict] = None,
) -> ReconciliationRecord:
    """
    Apply a signed quantity delta and append its audit record (no commit).

    Raises InsufficientStock before touching the vault if any quantity would
    go negative, so a failed call leaves the row unchanged.

    Each kind carries a fixed direction and a required cross-reference
    (ADJUSTMENT_RULES): a cash arrival can only add bills, a shift resolve
    must name its shift. Violations raise InvalidReason.
    """
    rule = ADJUSTMENT_RULES.get(reason)
    if rule is None:
        raise InvalidReason(
            f"{reason} cannot be applied as an adjustment",
            details={"reason": reason, "allowed": list(ADJUSTMENT_RULES)},
        )
    direction, reference = rule

    clean_delta = denoms.normalize(delta, signed=True)
    if direction == CREDIT and any(qty < 0 for qty in clean_delta.values()):
        raise InvalidReason(f"{reason} can only add cash", details={"reason": reason})
    if direction == DEBIT and any(qty > 0 for qty in clean_delta.values()):
        raise InvalidReason(f"{reason} can only remove cash", details={"reason": reason})

    references = {
        "cashier_shift_id": cashier_shift_id,
        "collection_session_id": collection_session_id,
    }
    if reference is not None and references[reference] is None:
        raise InvalidReason(
            f"{reason} must reference its {reference}",
            details={"reason": reason, "missing": reference},
        )

    previous = vault.denominations
    previous_balance = vault.balance
    updated = denoms.apply_delta(previous, clean_delta)

    vault.denominations = updated

    return audit_service.append_record(
        vault=vault,
        kind=reason,
        actor=actor,
        previous_balance=previous_balance,
        new_balance=vault.balance,
        denomination_delta=clean_delta,
        comment=comment,
        cashier_shift_id=cashier_shift_id,
        collection_session_id=collection_session_id,
        payload=payload,
    )


def set_absolute(
    vault: VaultInventory,
    new_set: Mapping[int, int],
    reason: str,
    actor: str,
    comment: str,
    *,
    payload: Optional[dict] = None,
) -> ReconciliationRecord:
    """
    Replace the vault's denomination set wholesale (no commit).

    Only manual reconciliation calls this; the record carries the full
    unexplained variance.
    """
    if reason != KIND_MANUAL_RECONCILE:
        raise ValueError("set_absolute is reserved for manual reconciliation")

    clean = denoms.normalize(new_set)
    previous = vault.denominations
    previous_balance = vault.balance
    delta = denoms.difference(clean, previous)

    vault.denominations = clean
    vault.last_reconciled_at = utcnow()

    return audit_service.append_record(
        vault=vault,
        kind=reason,
        actor=actor,
        previous_balance=previous_balance,
        new_balance=vault.balance,
        denomination_delta=delta,
        variance=vault.balance - previous_balance,
        comment=comment,
        payload=payload,
    )


def record_event(
    vault: VaultInventory,
    kind: str,
    actor: str,
    comment: Optional[str] = None,
    *,
    cashier_shift_id: int | None = None,
    payload: Optional[dict] = None,
) -> ReconciliationRecord:
    """Audit a vault-scoped action that moves no cash (no commit)."""
    return audit_service.append_record(
        vault=vault,
        kind=kind,
        actor=actor,
        previous_balance=vault.balance,
        new_balance=vault.balance,
        denomination_delta={},
        comment=comment,
        cashier_shift_id=cashier_shift_id,
        payload=payload,
    )


def log_committed(record: ReconciliationRecord) -> None:
    current_app.logger.info(
        "vault %s %s seq=%s balance %s -> %s",
        record.vault_id,
        record.kind,
        record.sequence,
        record.previous_balance,
        record.new_balance,
    )


# =============================================================================
# PUBLIC OPERATIONS (own their transaction)
# =============================================================================

def adjust_vault(
    vault_id: int,
    delta: Mapping[int, int],
    reason: str,
    actor: str,
    comment: Optional[str] = None,
) -> ReconciliationRecord:
    """
    Apply a signed delta to a vault as one audited, atomic unit.

    Only VAULT_ADJUSTMENT, CASH_ARRIVAL and CASH_REMOVAL are accepted here.
    Shift, float and collection kinds are written by their own services with
    the shift or session they belong to. A VAULT_ADJUSTMENT must explain
    itself with a comment that meets the audit comment policy.

    Raises:
        InvalidReason: for any other reason, or a delta against its direction
        InvalidComment: for a VAULT_ADJUSTMENT without a usable comment
        InsufficientStock: if any resulting quantity would be negative
        ConcurrentModification: on lock timeout or repeated write conflicts
    """
    if reason not in ADJUST_VAULT_REASONS:
        raise InvalidReason(
            f"Vault adjustments cannot use reason {reason}",
            details={"reason": reason, "allowed": list(ADJUST_VAULT_REASONS)},
        )
    if reason == KIND_VAULT_ADJUSTMENT:
        comment = audit_service.require_comment(comment)

    def _op():
        with vault_scope(vault_id) as vault:
            record = apply_adjustment(vault, delta, reason, actor, comment)
            db.session.commit()
            return record

    record = run_with_retry(_op)
    log_committed(record)
    return record


def add_cash_arrival(
    vault_id: int,
    source: str,
    denominations: Mapping[int, int],
    actor: str,
    notes: Optional[str] = None,
    total_amount: int | None = None,
) -> ReconciliationRecord:
    """
    Record cash brought into the vault from outside (bank, owner, machine drop).

    Always increases inventory; represented only by its audit record.
    """
    if source not in CASH_ARRIVAL_SOURCES:
        raise InvalidReason(
            f"Unknown cash source: {source}",
            details={"allowed": list(CASH_ARRIVAL_SOURCES)},
        )
    clean = denoms.normalize(denominations)
    amount = denoms.total(clean)
    if amount <= 0:
        raise InvalidCount("Cash arrival must contain at least one bill")
    if total_amount is not None and total_amount != amount:
        raise InvalidCount(
            f"Denomination total ({amount}) does not match amount ({total_amount})",
            details={"denomination_total": amount, "total_amount": total_amount},
        )

    payload = {"source": source, "total_amount": amount}

    def _op():
        with vault_scope(vault_id) as vault:
            record = apply_adjustment(
                vault, clean, KIND_CASH_ARRIVAL, actor, notes, payload=payload
            )
            db.session.commit()
            return record

    record = run_with_retry(_op)
    log_committed(record)
    return record


def remove_cash(
    vault_id: int,
    destination: str,
    denominations: Mapping[int, int],
    actor: str,
    notes: Optional[str] = None,
    category: Optional[str] = None,
) -> ReconciliationRecord:
    """
    Record cash leaving the vault (bank deposit, owner draw, expense).

    An EXPENSE must name its category (supplies, repairs, ...); the notes
    carry the description.

    Raises InsufficientStock if the vault does not hold the requested bills.
    """
    if destination not in CASH_REMOVAL_DESTINATIONS:
        raise InvalidReason(
            f"Unknown cash destination: {destination}",
            details={"allowed": list(CASH_REMOVAL_DESTINATIONS)},
        )
    clean = denoms.normalize(denominations)
    amount = denoms.total(clean)
    if amount <= 0:
        raise InvalidCount("Cash removal must contain at least one bill")

    payload = {"destination": destination, "total_amount": amount}
    if destination == DESTINATION_EXPENSE:
        category = (category or "").strip().upper()
        if not category:
            raise InvalidReason("Expense category is required", details={"field": "category"})
        payload["category"] = category

    def _op():
        with vault_scope(vault_id) as vault:
            record = apply_adjustment(
                vault, denoms.negate(clean), KIND_CASH_REMOVAL, actor, notes, payload=payload
            )
            db.session.commit()
            return record

    record = run_with_retry(_op)
    log_committed(record)
    return record
