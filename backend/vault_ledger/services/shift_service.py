"""
Cashier Shift Reconciliation

WHY: A cashier is issued a float and accounts for it at the end of the shift.
The counted cash is compared with what the system expects, and a vault
manager decides what actually lands in the vault.

STATE MACHINE:
    ACTIVE --close / force_close--> PENDING_REVIEW
    PENDING_REVIEW --resolve--> RESOLVED (terminal)
    PENDING_REVIEW --reject--> ACTIVE (count cleared, cashier recounts)

DESIGN PRINCIPLES:
- Close never touches the vault; resolve and float issue/return are the only
  shift operations that move cash
- Zero discrepancy still waits for a manager (never auto-resolved)
- Resolve applies only the manager's correction relative to the cashier's
  breakdown, never the full float; a correction needs that breakdown
- Lock order is shift -> vault
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from flask import current_app

from ..errors import (
    InvalidCount,
    InvalidReason,
    InvalidStateTransition,
    ShiftNotFound,
)
from ..extensions import db
from ..models import CashierShift, ReconciliationRecord
from ..models.shifts import (
    FORCE_CLOSE_REASONS,
    OPEN_SHIFT_STATUSES,
    SHIFT_STATUS_ACTIVE,
    SHIFT_STATUS_PENDING_REVIEW,
    SHIFT_STATUS_RESOLVED,
)
from ..models.vault import (
    KIND_FLOAT_ISSUE,
    KIND_FLOAT_RETURN,
    KIND_SHIFT_FORCE_CLOSE,
    KIND_SHIFT_REJECT,
    KIND_SHIFT_RESOLVE,
)
from ..time_utils import utcnow
from . import audit_service
from . import denominations as denoms
from . import vault_service
from .concurrency import exclusive, lock_for_update, run_with_retry


# Movement kinds recorded without touching the vault. Float changes move
# real bills and go through issue_float / return_float instead.
MOVEMENT_PAYOUT = "PAYOUT"
MOVEMENT_KINDS = (MOVEMENT_PAYOUT,)


@dataclass
class UnbalancedShiftInfo:
    """What a manager sees when a shift lands in review."""
    shift_id: int
    cashier_id: str
    cashier_name: str
    location_id: str
    status: str
    expected_balance: int
    entered_balance: int
    discrepancy: int
    entered_denominations: Optional[dict]
    force_closed: bool
    force_close_reason: Optional[str]

    @classmethod
    def from_shift(cls, shift: CashierShift) -> "UnbalancedShiftInfo":
        return cls(
            shift_id=shift.id,
            cashier_id=shift.cashier_id,
            cashier_name=shift.cashier_name,
            location_id=shift.location_id,
            status=shift.status,
            expected_balance=shift.expected_balance,
            entered_balance=shift.entered_balance,
            discrepancy=shift.discrepancy,
            entered_denominations=shift.entered_denominations,
            force_closed=shift.force_closed,
            force_close_reason=shift.force_close_reason,
        )

    def to_dict(self) -> dict:
        return {
            "shift_id": self.shift_id,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "location_id": self.location_id,
            "status": self.status,
            "expected_balance": self.expected_balance,
            "entered_balance": self.entered_balance,
            "discrepancy": self.discrepancy,
            "entered_denominations": (
                denoms.to_entries(self.entered_denominations)
                if self.entered_denominations is not None
                else None
            ),
            "is_balanced": self.discrepancy == 0,
            "force_closed": self.force_closed,
            "force_close_reason": self.force_close_reason,
        }


# =============================================================================
# HELPERS
# =============================================================================

def _load_shift_for_update(shift_id: int) -> CashierShift:
    shift = lock_for_update(
        db.session.query(CashierShift).filter_by(id=shift_id)
    ).populate_existing().first()
    if not shift:
        raise ShiftNotFound(f"Shift {shift_id} not found")
    return shift


def _require_status(shift: CashierShift, status: str, action: str) -> None:
    if shift.status != status:
        raise InvalidStateTransition(
            f"Cannot {action} shift {shift.id} in status {shift.status}",
            details={"shift_id": shift.id, "status": shift.status, "required": status},
        )


def _apply_count(shift: CashierShift, count: denoms.CashCount, entered: int) -> None:
    """Store the submitted count and move the shift into review."""
    shift.entered_balance = entered
    shift.entered_denominations = denoms.breakdown_of(count)
    shift.discrepancy = entered - shift.expected_balance
    shift.status = SHIFT_STATUS_PENDING_REVIEW
    shift.closed_at = utcnow()


def _face_values() -> tuple[int, ...]:
    return tuple(current_app.config["VAULT_DENOMINATIONS"])


def _refresh_expected(shift: CashierShift) -> None:
    shift.expected_balance = (
        shift.opening_balance - shift.payouts_total + shift.float_adjustments_total
    )


# =============================================================================
# OPEN / MOVEMENTS
# =============================================================================

def open_shift(
    cashier_id: str,
    cashier_name: str,
    location_id: str,
    opening_balance: int,
    vault_shift_id: str | None = None,
    notes: str | None = None,
) -> CashierShift:
    """
    Start a cashier shift with an issued float.

    WHY: One cashier holds one drawer per location at a time; a second open
    while the first is active or awaiting review would split accountability.

    Raises:
        VaultNotFound: if the location has no vault
        InvalidStateTransition: if the cashier already has an open shift here
    """
    if not cashier_id:
        raise ValueError("cashier_id is required")
    if opening_balance < 0:
        raise InvalidCount("Opening balance cannot be negative")

    vault_service.get_vault_for_location(location_id)

    def _op():
        with exclusive("cashier", (location_id, cashier_id)):
            existing = db.session.query(CashierShift).filter(
                CashierShift.cashier_id == cashier_id,
                CashierShift.location_id == location_id,
                CashierShift.status.in_(OPEN_SHIFT_STATUSES),
            ).first()
            if existing:
                raise InvalidStateTransition(
                    f"Cashier {cashier_id} already has open shift {existing.id}",
                    details={"shift_id": existing.id, "status": existing.status},
                )

            shift = CashierShift(
                cashier_id=cashier_id,
                cashier_name=cashier_name or cashier_id,
                location_id=location_id,
                vault_shift_id=vault_shift_id,
                status=SHIFT_STATUS_ACTIVE,
                opening_balance=opening_balance,
                payouts_total=0,
                float_adjustments_total=0,
                expected_balance=opening_balance,
                rejection_count=0,
                force_closed=False,
                notes=notes,
                opened_at=utcnow(),
            )
            db.session.add(shift)
            db.session.commit()
            return shift

    shift = run_with_retry(_op)
    current_app.logger.info("shift %s opened for cashier %s at %s", shift.id, cashier_id, location_id)
    return shift


def record_shift_movement(shift_id: int, kind: str, amount: int) -> CashierShift:
    """
    Record a payout from an active shift's drawer.

    expected_balance = opening_balance - payouts_total + float_adjustments_total
    """
    if kind not in MOVEMENT_KINDS:
        raise InvalidReason(
            f"Unknown shift movement: {kind}",
            details={"allowed": list(MOVEMENT_KINDS)},
        )
    if amount <= 0:
        raise InvalidCount("Movement amount must be positive")

    def _op():
        with exclusive("shift", shift_id):
            shift = _load_shift_for_update(shift_id)
            _require_status(shift, SHIFT_STATUS_ACTIVE, "record a movement on")
            shift.payouts_total += amount
            _refresh_expected(shift)
            db.session.commit()
            return shift

    return run_with_retry(_op)


def _move_float(
    shift_id: int,
    denominations: Mapping[int, int],
    actor: str,
    notes: str | None,
    kind: str,
) -> tuple[CashierShift, ReconciliationRecord]:
    clean = denoms.normalize(denominations)
    amount = denoms.total(clean)
    if amount <= 0:
        raise InvalidCount("Float movement must contain at least one bill")
    issuing = kind == KIND_FLOAT_ISSUE

    def _op():
        with exclusive("shift", shift_id):
            shift = _load_shift_for_update(shift_id)
            _require_status(shift, SHIFT_STATUS_ACTIVE, "move float for")
            if not issuing and amount > shift.expected_balance:
                raise InvalidCount(
                    f"Cannot return {amount}; shift {shift.id} expects only {shift.expected_balance}",
                    details={"amount": amount, "expected_balance": shift.expected_balance},
                )
            vault_id = vault_service.get_vault_for_location(shift.location_id).id

            with vault_service.vault_scope(vault_id) as vault:
                record = vault_service.apply_adjustment(
                    vault,
                    denoms.negate(clean) if issuing else clean,
                    kind,
                    actor,
                    notes,
                    cashier_shift_id=shift.id,
                    payload={"cashier_id": shift.cashier_id, "total_amount": amount},
                )
                shift.float_adjustments_total += amount if issuing else -amount
                _refresh_expected(shift)
                db.session.commit()
                return shift, record

    shift, record = run_with_retry(_op)
    vault_service.log_committed(record)
    return shift, record


def issue_float(
    shift_id: int,
    denominations: Mapping[int, int],
    actor: str,
    notes: str | None = None,
) -> tuple[CashierShift, ReconciliationRecord]:
    """
    Hand extra float from the vault to an active cashier.

    WHY: The bills leave the vault and join the drawer in the same
    transaction, so the vault balance and the shift's expected_balance can
    never disagree. Raises InsufficientStock if the vault lacks the bills.
    """
    return _move_float(shift_id, denominations, actor, notes, KIND_FLOAT_ISSUE)


def return_float(
    shift_id: int,
    denominations: Mapping[int, int],
    actor: str,
    notes: str | None = None,
) -> tuple[CashierShift, ReconciliationRecord]:
    """Take surplus float from an active drawer back into the vault."""
    return _move_float(shift_id, denominations, actor, notes, KIND_FLOAT_RETURN)


# =============================================================================
# CLOSE / FORCE CLOSE
# =============================================================================

def close_shift(shift_id: int, count: denoms.CashCount, actor: str | None = None) -> UnbalancedShiftInfo:
    """
    Cashier submits their count; the shift waits for manager review.

    A zero count is accepted only when every denomination was confirmed.
    No vault record is written here.
    """
    entered = denoms.validate_count(count, _face_values())

    def _op():
        with exclusive("shift", shift_id):
            shift = _load_shift_for_update(shift_id)
            _require_status(shift, SHIFT_STATUS_ACTIVE, "close")
            _apply_count(shift, count, entered)
            db.session.commit()
            return UnbalancedShiftInfo.from_shift(shift)

    info = run_with_retry(_op)
    current_app.logger.info(
        "shift %s closed by %s: entered=%s expected=%s",
        shift_id, actor or info.cashier_id, info.entered_balance, info.expected_balance,
    )
    return info


def force_close_shift(
    cashier_id: str,
    location_id: str,
    count: denoms.CashCount,
    reason_tag: str,
    notes: str | None,
    actor: str,
) -> UnbalancedShiftInfo:
    """
    Manager ends a cashier's active shift without the cashier (no-show,
    lockout, emergency).

    WHY: The drawer still has to be accounted for. The count goes into review
    exactly like a normal close, and the takeover itself is audited on the
    vault's trail.
    """
    tag = (reason_tag or "").strip().upper()
    if tag not in FORCE_CLOSE_REASONS:
        raise InvalidReason(
            f"Unknown force-close reason: {reason_tag}",
            details={"allowed": list(FORCE_CLOSE_REASONS)},
        )
    entered = denoms.validate_count(count, _face_values())
    vault = vault_service.get_vault_for_location(location_id)

    active = db.session.query(CashierShift).filter_by(
        cashier_id=cashier_id,
        location_id=location_id,
        status=SHIFT_STATUS_ACTIVE,
    ).first()
    if not active:
        raise ShiftNotFound(f"No active shift for cashier {cashier_id} at {location_id}")
    shift_id = active.id
    vault_id = vault.id

    def _op():
        with exclusive("shift", shift_id):
            shift = _load_shift_for_update(shift_id)
            _require_status(shift, SHIFT_STATUS_ACTIVE, "force-close")
            with vault_service.vault_scope(vault_id) as locked_vault:
                _apply_count(shift, count, entered)
                shift.force_closed = True
                shift.force_close_reason = tag
                shift.force_closed_by = actor
                if notes:
                    shift.notes = notes

                record = vault_service.record_event(
                    locked_vault,
                    KIND_SHIFT_FORCE_CLOSE,
                    actor,
                    notes,
                    cashier_shift_id=shift.id,
                    payload={
                        "reason_tag": tag,
                        "cashier_id": cashier_id,
                        "expected_balance": shift.expected_balance,
                        "entered_balance": entered,
                        "discrepancy": shift.discrepancy,
                    },
                )
                db.session.commit()
                return UnbalancedShiftInfo.from_shift(shift), record

    info, record = run_with_retry(_op)
    vault_service.log_committed(record)
    return info


# =============================================================================
# REVIEW
# =============================================================================

def resolve_shift(
    shift_id: int,
    actor: str,
    final_balance: int | None = None,
    audit_comment: str | None = None,
    denominations: Mapping[int, int] | None = None,
) -> ReconciliationRecord:
    """
    Manager accepts a shift under review.

    Args:
        shift_id: Shift in PENDING_REVIEW
        actor: Reviewing vault manager
        final_balance: Accepted amount; defaults to the edited set's total
        audit_comment: Optional note stored on the record
        denominations: Manager's corrected breakdown (override)

    The vault receives ``edited - cashier breakdown``; with no override the
    delta is empty. A correction the vault cannot cover raises
    InsufficientStock and nothing is committed.

    Raises InvalidCount when:
    - no override is given and final_balance differs from the cashier's count
    - an override is given for a shift closed with a raw total, since there
      is no breakdown to take the correction against (reject it for a recount)
    """
    edited = denoms.normalize(denominations) if denominations is not None else None
    if edited is not None:
        edited_total = denoms.total(edited)
        if final_balance is not None and final_balance != edited_total:
            raise InvalidCount(
                f"final_balance ({final_balance}) does not match denominations ({edited_total})",
                details={"final_balance": final_balance, "denomination_total": edited_total},
            )
        final_balance = edited_total
    elif final_balance is None:
        raise InvalidCount("final_balance is required when no denominations are supplied")
    if final_balance < 0:
        raise InvalidCount("final_balance cannot be negative")

    comment = (audit_comment or "").strip() or None

    def _op():
        with exclusive("shift", shift_id):
            shift = _load_shift_for_update(shift_id)
            _require_status(shift, SHIFT_STATUS_PENDING_REVIEW, "resolve")
            original = shift.entered_denominations
            if edited is None and final_balance != shift.entered_balance:
                raise InvalidCount(
                    f"final_balance ({final_balance}) must equal the cashier's count "
                    f"({shift.entered_balance}) unless denominations are supplied",
                    details={"final_balance": final_balance, "entered_balance": shift.entered_balance},
                )
            if edited is not None and original is None:
                raise InvalidCount(
                    f"Shift {shift.id} was closed with a total only; reject it for a "
                    "denomination recount before correcting",
                    details={"shift_id": shift.id, "entered_balance": shift.entered_balance},
                )
            vault_id = vault_service.get_vault_for_location(shift.location_id).id

            with vault_service.vault_scope(vault_id) as vault:
                delta = denoms.difference(edited, original) if edited is not None else {}

                record = vault_service.apply_adjustment(
                    vault,
                    delta,
                    KIND_SHIFT_RESOLVE,
                    actor,
                    comment,
                    cashier_shift_id=shift.id,
                    payload={
                        "expected_balance": shift.expected_balance,
                        "entered_balance": shift.entered_balance,
                        "final_balance": final_balance,
                        "discrepancy": shift.discrepancy,
                        "override": edited is not None,
                    },
                )

                shift.status = SHIFT_STATUS_RESOLVED
                shift.final_balance = final_balance
                shift.final_denominations = edited if edited is not None else shift.entered_denominations
                shift.reviewed_by = actor
                shift.reviewed_at = utcnow()
                shift.resolution_comment = comment
                db.session.commit()
                return record

    record = run_with_retry(_op)
    vault_service.log_committed(record)
    return record


def reject_shift(shift_id: int, reason: str, actor: str) -> CashierShift:
    """
    Send a shift back to the cashier for a recount.

    The reason follows the audit comment policy. The vault balance is never
    touched; the rejection is still written to the vault's trail.
    Force-close markers stay on the row so a taken-over shift remains visible.
    """
    cleaned = audit_service.require_comment(reason, field_name="reason")

    def _op():
        with exclusive("shift", shift_id):
            shift = _load_shift_for_update(shift_id)
            _require_status(shift, SHIFT_STATUS_PENDING_REVIEW, "reject")
            vault_id = vault_service.get_vault_for_location(shift.location_id).id

            with vault_service.vault_scope(vault_id) as vault:
                record = vault_service.record_event(
                    vault,
                    KIND_SHIFT_REJECT,
                    actor,
                    cleaned,
                    cashier_shift_id=shift.id,
                    payload={
                        "expected_balance": shift.expected_balance,
                        "entered_balance": shift.entered_balance,
                        "discrepancy": shift.discrepancy,
                    },
                )

                shift.status = SHIFT_STATUS_ACTIVE
                shift.entered_balance = None
                shift.entered_denominations = None
                shift.discrepancy = None
                shift.closed_at = None
                shift.rejection_count = (shift.rejection_count or 0) + 1
                shift.last_rejection_reason = cleaned
                db.session.commit()
                return shift, record

    shift, record = run_with_retry(_op)
    vault_service.log_committed(record)
    return shift


# =============================================================================
# QUERIES
# =============================================================================

def get_shift(shift_id: int) -> CashierShift:
    shift = db.session.get(CashierShift, shift_id)
    if not shift:
        raise ShiftNotFound(f"Shift {shift_id} not found")
    return shift


def list_shifts(
    location_id: str | None = None,
    status: str | None = None,
    cashier_id: str | None = None,
) -> list[CashierShift]:
    query = db.session.query(CashierShift)
    if location_id:
        query = query.filter(CashierShift.location_id == location_id)
    if status:
        query = query.filter(CashierShift.status == status)
    if cashier_id:
        query = query.filter(CashierShift.cashier_id == cashier_id)
    return query.order_by(CashierShift.opened_at.desc(), CashierShift.id.desc()).all()


def get_vault_shift_close_status(vault_shift_id: str) -> dict:
    """
    Can the vault shift be closed?

    WHY: A vault manager's shift may not end while any of its cashier shifts
    is still open or awaiting review.
    """
    blocking = db.session.query(CashierShift).filter(
        CashierShift.vault_shift_id == vault_shift_id,
        CashierShift.status.in_(OPEN_SHIFT_STATUSES),
    ).order_by(CashierShift.id).all()

    return {
        "vault_shift_id": vault_shift_id,
        "can_close": not blocking,
        "blocking_shift_ids": [s.id for s in blocking],
        "pending_review_count": sum(1 for s in blocking if s.status == SHIFT_STATUS_PENDING_REVIEW),
        "active_count": sum(1 for s in blocking if s.status == SHIFT_STATUS_ACTIVE),
    }
