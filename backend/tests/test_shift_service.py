"""
Cashier shift state machine tests.

Verifies:
- Open / payout / close lifecycle and discrepancy maths
- Float issue and return move bills between vault and drawer atomically
- Close never touches the vault; zero discrepancy still waits for review
- Force close requires a reason tag and is audited
- Resolve applies only the manager's correction against the cashier's breakdown
- Reject returns the shift to ACTIVE without moving cash or clearing force-close history
- Vault-shift close gating
"""

import pytest

from vault_ledger.errors import (
    IncompleteCount,
    InsufficientStock,
    InvalidComment,
    InvalidCount,
    InvalidReason,
    InvalidStateTransition,
    ShiftNotFound,
    VaultNotFound,
)
from vault_ledger.extensions import db
from vault_ledger.models import CashierShift, ReconciliationRecord
from vault_ledger.services import audit_service, shift_service, vault_service
from vault_ledger.services.denominations import Breakdown, Total

from conftest import (
    CASHIER,
    LOCATION,
    MANAGER,
    close_with_breakdown,
    close_with_total,
    open_shift,
    stock,
)


ALL_FACES = (100, 50, 20, 10, 5, 1)


def _balance(vault_id):
    return vault_service.get_vault_balance(vault_id)["balance"]


def _records(vault_id, kind=None):
    q = db.session.query(ReconciliationRecord).filter_by(vault_id=vault_id)
    if kind:
        q = q.filter_by(kind=kind)
    return q.order_by(ReconciliationRecord.sequence).all()


class TestOpenAndMovements:
    def test_open_requires_vault(self, db_session):
        with pytest.raises(VaultNotFound):
            open_shift()

    def test_open_sets_expected(self, vault):
        shift = open_shift(opening_balance=500)
        assert shift.status == "ACTIVE"
        assert shift.expected_balance == 500

    def test_one_open_shift_per_cashier(self, vault):
        open_shift()
        with pytest.raises(InvalidStateTransition):
            open_shift()

    def test_other_cashier_may_open(self, vault):
        open_shift()
        other = open_shift(cashier_id="cashier-8")
        assert other.status == "ACTIVE"

    def test_payouts_feed_expected_balance(self, vault):
        shift = open_shift(opening_balance=500)
        shift_service.record_shift_movement(shift.id, "PAYOUT", 120)
        shift = shift_service.record_shift_movement(shift.id, "PAYOUT", 30)

        assert shift.payouts_total == 150
        assert shift.expected_balance == 500 - 150

    def test_float_changes_are_not_plain_movements(self, vault):
        shift = open_shift()
        with pytest.raises(InvalidReason):
            shift_service.record_shift_movement(shift.id, "FLOAT_INCREASE", 100)

    def test_unknown_movement(self, vault):
        shift = open_shift()
        with pytest.raises(InvalidReason):
            shift_service.record_shift_movement(shift.id, "TIP", 5)

    def test_movement_amount_must_be_positive(self, vault):
        shift = open_shift()
        with pytest.raises(InvalidCount):
            shift_service.record_shift_movement(shift.id, "PAYOUT", 0)


class TestFloats:
    def test_issue_moves_bills_into_drawer(self, vault):
        stock(vault.id, {20: 10, 100: 1})
        shift = open_shift(opening_balance=450)

        shift, record = shift_service.issue_float(shift.id, {20: 5}, MANAGER, notes="Busy night")

        assert record.kind == "FLOAT_ISSUE"
        assert record.cashier_shift_id == shift.id
        assert record.denomination_delta == {"20": -5}
        assert record.payload == {"cashier_id": CASHIER, "total_amount": 100}
        assert shift.float_adjustments_total == 100
        assert shift.expected_balance == 550
        assert _balance(vault.id) == 200

    def test_issue_beyond_stock_changes_neither_side(self, vault):
        stock(vault.id, {20: 2})
        shift = open_shift(opening_balance=450)

        with pytest.raises(InsufficientStock):
            shift_service.issue_float(shift.id, {20: 5}, MANAGER)

        db.session.expire_all()
        assert shift_service.get_shift(shift.id).expected_balance == 450
        assert _balance(vault.id) == 40
        assert not _records(vault.id, "FLOAT_ISSUE")

    def test_issue_audit_failure_changes_neither_side(self, vault, monkeypatch):
        stock(vault.id, {20: 10})
        shift = open_shift(opening_balance=450)

        def boom(**kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(audit_service, "append_record", boom)
        with pytest.raises(RuntimeError):
            shift_service.issue_float(shift.id, {20: 5}, MANAGER)

        db.session.expire_all()
        assert shift_service.get_shift(shift.id).float_adjustments_total == 0
        assert _balance(vault.id) == 200

    def test_return_moves_bills_back(self, vault):
        shift = open_shift(opening_balance=450)

        shift, record = shift_service.return_float(shift.id, {50: 2}, MANAGER)

        assert record.kind == "FLOAT_RETURN"
        assert record.denomination_delta == {"50": 2}
        assert shift.expected_balance == 350
        assert _balance(vault.id) == 100

    def test_cannot_return_more_than_expected(self, vault):
        shift = open_shift(opening_balance=100)
        with pytest.raises(InvalidCount):
            shift_service.return_float(shift.id, {100: 2}, MANAGER)
        assert _balance(vault.id) == 0

    def test_floats_only_for_active_shifts(self, vault):
        stock(vault.id, {20: 10})
        shift = open_shift()
        close_with_total(shift.id, 450)
        with pytest.raises(InvalidStateTransition):
            shift_service.issue_float(shift.id, {20: 1}, MANAGER)

    def test_issued_float_is_expected_at_close(self, vault):
        stock(vault.id, {20: 10})
        shift = open_shift(opening_balance=450)
        shift_service.issue_float(shift.id, {20: 5}, MANAGER)

        info = close_with_total(shift.id, 550)
        assert info.discrepancy == 0


class TestClose:
    def test_close_computes_discrepancy(self, vault):
        shift = open_shift(opening_balance=450)
        info = close_with_total(shift.id, 500)

        assert info.status == "PENDING_REVIEW"
        assert info.entered_balance == 500
        assert info.discrepancy == 50
        assert info.entered_denominations is None

    def test_zero_discrepancy_still_pending(self, vault):
        shift = open_shift(opening_balance=100)
        info = close_with_breakdown(shift.id, {100: 1})
        assert info.discrepancy == 0
        assert info.status == "PENDING_REVIEW"
        assert info.to_dict()["is_balanced"] is True

    def test_close_never_touches_vault(self, vault):
        stock(vault.id, {100: 1})
        shift = open_shift()
        close_with_breakdown(shift.id, {20: 25})
        assert _balance(vault.id) == 100
        assert len(_records(vault.id)) == 1

    def test_zero_count_requires_confirmation(self, vault):
        shift = open_shift()
        with pytest.raises(IncompleteCount):
            close_with_total(shift.id, 0, touched={100, 50})
        assert shift_service.get_shift(shift.id).status == "ACTIVE"

    def test_zero_count_fully_confirmed(self, vault):
        shift = open_shift(opening_balance=0)
        info = close_with_total(shift.id, 0, touched=ALL_FACES)
        assert info.status == "PENDING_REVIEW"
        assert info.discrepancy == 0

    def test_cannot_close_twice(self, vault):
        shift = open_shift()
        close_with_total(shift.id, 450)
        with pytest.raises(InvalidStateTransition):
            close_with_total(shift.id, 450)

    def test_unknown_shift(self, vault):
        with pytest.raises(ShiftNotFound):
            close_with_total(999, 10)


class TestForceClose:
    def test_force_close_is_audited(self, vault):
        stock(vault.id, {100: 2})
        open_shift(opening_balance=300)

        info = shift_service.force_close_shift(
            CASHIER, LOCATION, Breakdown({100: 2, 50: 1}), "no_show", "Cashier left early", MANAGER
        )

        assert info.status == "PENDING_REVIEW"
        assert info.force_closed is True
        assert info.force_close_reason == "NO_SHOW"
        assert info.discrepancy == -50

        record = _records(vault.id, "SHIFT_FORCE_CLOSE")[0]
        assert record.previous_balance == record.new_balance == 200
        assert record.denomination_delta == {}
        assert record.payload["reason_tag"] == "NO_SHOW"
        assert record.cashier_shift_id == info.shift_id

    def test_force_close_requires_known_tag(self, vault):
        open_shift()
        with pytest.raises(InvalidReason):
            shift_service.force_close_shift(CASHIER, LOCATION, Total(450), "BORED", None, MANAGER)

    def test_force_close_without_active_shift(self, vault):
        with pytest.raises(ShiftNotFound):
            shift_service.force_close_shift(CASHIER, LOCATION, Total(450), "LOCKOUT", None, MANAGER)


class TestResolve:
    def test_resolve_applies_only_the_override_delta(self, vault):
        stock(vault.id, {20: 10})
        shift = open_shift(opening_balance=1000)
        # Cashier counts 5x100 + 25x20 = 1000
        close_with_breakdown(shift.id, {100: 5, 20: 25})

        # Manager finds one $20 short: 5x100 + 24x20 = 980
        record = shift_service.resolve_shift(
            shift.id, MANAGER, audit_comment="Recounted", denominations={100: 5, 20: 24}
        )

        assert record.kind == "SHIFT_RESOLVE"
        assert record.denomination_delta == {"20": -1}
        assert record.new_balance - record.previous_balance == -20
        assert _balance(vault.id) == 180

        shift = shift_service.get_shift(shift.id)
        assert shift.status == "RESOLVED"
        assert shift.final_balance == 980
        assert shift.final_denominations == {100: 5, 20: 24}
        assert shift.reviewed_by == MANAGER
        assert shift.resolution_comment == "Recounted"

    def test_resolve_without_override_moves_nothing(self, vault):
        stock(vault.id, {100: 1})
        shift = open_shift(opening_balance=450)
        close_with_total(shift.id, 500)

        record = shift_service.resolve_shift(shift.id, MANAGER, final_balance=500)

        assert record.denomination_delta == {}
        assert record.payload["discrepancy"] == 50
        assert record.payload["override"] is False
        assert _balance(vault.id) == 100

    def test_raw_total_shift_resolves_to_same_balance_either_way(self, vault):
        plain = open_shift(opening_balance=40)
        overridden = open_shift(opening_balance=40, cashier_id="cashier-8")
        close_with_total(plain.id, 40)
        close_with_total(overridden.id, 40)

        shift_service.resolve_shift(plain.id, MANAGER, final_balance=40)
        after_plain = _balance(vault.id)

        # No breakdown to correct against: the override is refused, not applied in full
        with pytest.raises(InvalidCount):
            shift_service.resolve_shift(overridden.id, MANAGER, denominations={20: 2})
        assert shift_service.get_shift(overridden.id).status == "PENDING_REVIEW"
        assert _balance(vault.id) == after_plain == 0

        shift_service.resolve_shift(overridden.id, MANAGER, final_balance=40)
        assert _balance(vault.id) == after_plain
        assert len(_records(vault.id, "SHIFT_RESOLVE")) == 2

    def test_final_balance_must_match_cashier_count_without_override(self, vault):
        shift = open_shift(opening_balance=450)
        close_with_total(shift.id, 500)

        with pytest.raises(InvalidCount) as exc:
            shift_service.resolve_shift(shift.id, MANAGER, final_balance=1)

        assert exc.value.details == {"final_balance": 1, "entered_balance": 500}
        db.session.expire_all()
        shift = shift_service.get_shift(shift.id)
        assert shift.status == "PENDING_REVIEW"
        assert shift.final_balance is None
        assert not _records(vault.id, "SHIFT_RESOLVE")

    def test_override_beyond_stock_commits_nothing(self, vault):
        stock(vault.id, {20: 1})
        shift = open_shift(opening_balance=500)
        close_with_breakdown(shift.id, {100: 5})

        with pytest.raises(InsufficientStock):
            shift_service.resolve_shift(shift.id, MANAGER, denominations={100: 3})

        assert _balance(vault.id) == 20
        assert shift_service.get_shift(shift.id).status == "PENDING_REVIEW"
        assert not _records(vault.id, "SHIFT_RESOLVE")

    def test_final_balance_must_match_override(self, vault):
        shift = open_shift()
        close_with_breakdown(shift.id, {50: 9})
        with pytest.raises(InvalidCount):
            shift_service.resolve_shift(shift.id, MANAGER, final_balance=500, denominations={50: 9})

    def test_final_balance_required_without_override(self, vault):
        shift = open_shift()
        close_with_total(shift.id, 450)
        with pytest.raises(InvalidCount):
            shift_service.resolve_shift(shift.id, MANAGER)

    def test_cannot_resolve_active_shift(self, vault):
        shift = open_shift()
        with pytest.raises(InvalidStateTransition):
            shift_service.resolve_shift(shift.id, MANAGER, final_balance=450)


class TestReject:
    def test_reject_does_not_mutate_balance(self, vault):
        stock(vault.id, {100: 3})
        shift = open_shift(opening_balance=450)
        close_with_total(shift.id, 500)

        rejected = shift_service.reject_shift(shift.id, "Off by exactly one $50 bill, recount", MANAGER)

        assert rejected.status == "ACTIVE"
        assert rejected.discrepancy is None
        assert rejected.entered_balance is None
        assert rejected.entered_denominations is None
        assert rejected.rejection_count == 1
        assert _balance(vault.id) == 300

        record = _records(vault.id, "SHIFT_REJECT")[0]
        assert record.previous_balance == record.new_balance == 300
        assert record.comment == "Off by exactly one $50 bill, recount"

    def test_reject_requires_meaningful_reason(self, vault):
        shift = open_shift()
        close_with_total(shift.id, 500)
        with pytest.raises(InvalidComment):
            shift_service.reject_shift(shift.id, "wrong", MANAGER)
        assert shift_service.get_shift(shift.id).status == "PENDING_REVIEW"

    def test_rejected_shift_can_close_again(self, vault):
        shift = open_shift(opening_balance=450)
        close_with_total(shift.id, 500)
        shift_service.reject_shift(shift.id, "Please recount the twenties", MANAGER)

        info = close_with_total(shift.id, 450)
        assert info.discrepancy == 0

        shift_service.resolve_shift(shift.id, MANAGER, final_balance=450)
        assert shift_service.get_shift(shift.id).status == "RESOLVED"

    def test_force_close_markers_survive_rejection(self, vault):
        open_shift(opening_balance=300)
        info = shift_service.force_close_shift(
            CASHIER, LOCATION, Total(250), "lockout", "Locked out of the cage", MANAGER
        )

        shift_service.reject_shift(info.shift_id, "Drawer needs a full denomination recount", MANAGER)

        db.session.expire_all()
        shift = shift_service.get_shift(info.shift_id)
        assert shift.status == "ACTIVE"
        assert shift.force_closed is True
        assert shift.force_close_reason == "LOCKOUT"
        assert shift.force_closed_by == MANAGER


class TestVaultShiftCloseStatus:
    def test_blocked_until_all_resolved(self, vault):
        first = open_shift(vault_shift_id="VS-9")
        second = open_shift(cashier_id="cashier-8", vault_shift_id="VS-9")
        close_with_total(first.id, 450)

        status = shift_service.get_vault_shift_close_status("VS-9")
        assert status["can_close"] is False
        assert status["blocking_shift_ids"] == [first.id, second.id]
        assert status["pending_review_count"] == 1
        assert status["active_count"] == 1

        shift_service.resolve_shift(first.id, MANAGER, final_balance=450)
        close_with_total(second.id, 450)
        shift_service.resolve_shift(second.id, MANAGER, final_balance=450)

        assert shift_service.get_vault_shift_close_status("VS-9")["can_close"] is True

    def test_list_shifts_filters(self, vault):
        shift = open_shift()
        open_shift(cashier_id="cashier-8")
        close_with_total(shift.id, 450)

        pending = shift_service.list_shifts(location_id=LOCATION, status="PENDING_REVIEW")
        assert [s.id for s in pending] == [shift.id]
        assert len(shift_service.list_shifts(location_id=LOCATION)) == 2
        assert db.session.query(CashierShift).count() == 2
