"""
Vault inventory store tests.

Verifies:
- Provisioning (one vault per location)
- Adjust applies signed deltas and writes exactly one record
- Each adjustment kind keeps its direction and its shift / session reference
- Failed adjusts leave the stored set unchanged (no negative stock)
- Audit write failure rolls back the balance change
- Cash arrival / removal / expense validation
- Conservation over a long sequence of mixed operations
"""

import random

import pytest

from vault_ledger.errors import (
    InsufficientStock,
    InvalidComment,
    InvalidCount,
    InvalidReason,
    VaultAlreadyProvisioned,
    VaultNotFound,
)
from vault_ledger.extensions import db
from vault_ledger.models import ReconciliationRecord, VaultInventory
from vault_ledger.services import audit_service, reconciliation_service, vault_service
from vault_ledger.services import denominations as denoms

from conftest import LOCATION, MANAGER, stock


def _snapshot(vault_id):
    db.session.expire_all()
    vault = db.session.get(VaultInventory, vault_id)
    return vault.denominations, vault.balance, vault.audit_sequence


def _record_count(vault_id):
    return db.session.query(ReconciliationRecord).filter_by(vault_id=vault_id).count()


class TestProvisioning:
    def test_provisioned_empty(self, vault):
        snapshot = vault_service.get_vault_balance(vault.id)
        assert snapshot["balance"] == 0
        assert snapshot["denominations"] == []
        assert snapshot["audit_sequence"] == 0
        assert snapshot["location_id"] == LOCATION

    def test_one_vault_per_location(self, vault):
        with pytest.raises(VaultAlreadyProvisioned):
            vault_service.provision_vault(LOCATION)

    def test_unknown_vault(self, db_session):
        with pytest.raises(VaultNotFound):
            vault_service.get_vault_balance(999)

    def test_lookup_by_location(self, vault):
        assert vault_service.get_vault_for_location(LOCATION).id == vault.id
        with pytest.raises(VaultNotFound):
            vault_service.get_vault_for_location("NOWHERE")


class TestAdjust:
    def test_signed_delta(self, vault):
        stock(vault.id, {100: 3, 20: 5})
        record = vault_service.adjust_vault(
            vault.id, {100: -1, 20: 2}, "VAULT_ADJUSTMENT", MANAGER, "Bundle re-strapped as twenties"
        )

        assert record.kind == "VAULT_ADJUSTMENT"
        assert record.previous_balance == 400
        assert record.new_balance == 340
        assert record.variance == 0
        assert record.denomination_delta == {"100": -1, "20": 2}

        denominations, balance, sequence = _snapshot(vault.id)
        assert denominations == {100: 2, 20: 7}
        assert balance == 340
        assert sequence == 2

    def test_insufficient_stock_leaves_vault_unchanged(self, vault):
        stock(vault.id, {20: 2})
        before = _snapshot(vault.id)
        records_before = _record_count(vault.id)

        with pytest.raises(InsufficientStock) as exc:
            vault_service.adjust_vault(
                vault.id, {20: -3, 100: -1}, "VAULT_ADJUSTMENT", MANAGER, "Correcting a double entry"
            )

        assert exc.value.shortages == {100: 1, 20: 1}
        assert _snapshot(vault.id) == before
        assert _record_count(vault.id) == records_before

    def test_vault_adjustment_requires_comment(self, vault):
        stock(vault.id, {20: 2})
        with pytest.raises(InvalidComment):
            vault_service.adjust_vault(vault.id, {20: -1}, "VAULT_ADJUSTMENT", MANAGER, "oops")
        assert vault_service.get_vault_balance(vault.id)["balance"] == 40

    @pytest.mark.parametrize(
        "reason",
        ["MANUAL_RECONCILE", "SHIFT_RESOLVE", "COLLECTION_FINALIZE", "FLOAT_ISSUE", "SHIFT_REJECT", "WHATEVER"],
    )
    def test_reserved_and_unknown_reasons_rejected(self, vault, reason):
        stock(vault.id, {100: 5})
        before = _snapshot(vault.id)

        with pytest.raises(InvalidReason):
            vault_service.adjust_vault(vault.id, {100: 3}, reason, MANAGER, "Trying to sneak this in")

        assert _snapshot(vault.id) == before

    def test_cash_arrival_cannot_remove_cash(self, vault):
        stock(vault.id, {100: 5})
        before = _snapshot(vault.id)

        with pytest.raises(InvalidReason):
            vault_service.adjust_vault(vault.id, {100: -5}, "CASH_ARRIVAL", MANAGER)

        assert _snapshot(vault.id) == before

    def test_cash_removal_cannot_add_cash(self, vault):
        with pytest.raises(InvalidReason):
            vault_service.adjust_vault(vault.id, {100: 1}, "CASH_REMOVAL", MANAGER)
        assert _record_count(vault.id) == 0

    def test_shift_and_collection_kinds_need_their_reference(self, vault):
        stock(vault.id, {100: 5})
        with vault_service.vault_scope(vault.id) as locked:
            with pytest.raises(InvalidReason):
                vault_service.apply_adjustment(locked, {100: 3}, "SHIFT_RESOLVE", MANAGER)
            with pytest.raises(InvalidReason):
                vault_service.apply_adjustment(locked, {100: 3}, "COLLECTION_FINALIZE", MANAGER)
            with pytest.raises(InvalidReason):
                vault_service.apply_adjustment(locked, {100: -1}, "FLOAT_ISSUE", MANAGER)
        db.session.rollback()
        assert vault_service.get_vault_balance(vault.id)["balance"] == 500
        assert _record_count(vault.id) == 1

    def test_audit_failure_rolls_back_mutation(self, vault, monkeypatch):
        stock(vault.id, {50: 4})
        before = _snapshot(vault.id)

        def boom(**kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(audit_service, "append_record", boom)

        with pytest.raises(RuntimeError):
            vault_service.adjust_vault(vault.id, {50: 1}, "CASH_ARRIVAL", MANAGER)

        assert _snapshot(vault.id) == before


class TestCashArrivalAndRemoval:
    def test_arrival_records_source(self, vault):
        record = vault_service.add_cash_arrival(
            vault.id, "OWNER_INJECTION", {100: 10}, MANAGER, notes="float top-up", total_amount=1000
        )
        assert record.kind == "CASH_ARRIVAL"
        assert record.payload == {"source": "OWNER_INJECTION", "total_amount": 1000}
        assert record.comment == "float top-up"
        assert vault_service.get_vault_balance(vault.id)["balance"] == 1000

    def test_arrival_total_mismatch(self, vault):
        with pytest.raises(InvalidCount):
            vault_service.add_cash_arrival(vault.id, "BANK_WITHDRAWAL", {100: 1}, MANAGER, total_amount=90)

    def test_arrival_must_contain_cash(self, vault):
        with pytest.raises(InvalidCount):
            vault_service.add_cash_arrival(vault.id, "BANK_WITHDRAWAL", {}, MANAGER)

    def test_arrival_unknown_source(self, vault):
        with pytest.raises(InvalidReason):
            vault_service.add_cash_arrival(vault.id, "FOUND_ON_FLOOR", {100: 1}, MANAGER)

    def test_removal(self, vault):
        stock(vault.id, {100: 5, 20: 5})
        record = vault_service.remove_cash(vault.id, "BANK_DEPOSIT", {100: 4}, MANAGER)
        assert record.kind == "CASH_REMOVAL"
        assert record.denomination_delta == {"100": -4}
        assert vault_service.get_vault_balance(vault.id)["balance"] == 200

    def test_removal_beyond_stock(self, vault):
        stock(vault.id, {100: 1})
        with pytest.raises(InsufficientStock):
            vault_service.remove_cash(vault.id, "OWNER_DRAW", {100: 2}, MANAGER)
        assert vault_service.get_vault_balance(vault.id)["balance"] == 100

    def test_expense_records_category(self, vault):
        stock(vault.id, {20: 5})
        record = vault_service.remove_cash(
            vault.id, "EXPENSE", {20: 2}, MANAGER, notes="Light bulbs for the cage", category="supplies"
        )
        assert record.payload == {"destination": "EXPENSE", "total_amount": 40, "category": "SUPPLIES"}
        assert record.comment == "Light bulbs for the cage"
        assert vault_service.get_vault_balance(vault.id)["balance"] == 60

    def test_expense_requires_category(self, vault):
        stock(vault.id, {20: 5})
        with pytest.raises(InvalidReason):
            vault_service.remove_cash(vault.id, "EXPENSE", {20: 2}, MANAGER, category="  ")
        assert vault_service.get_vault_balance(vault.id)["balance"] == 100

    def test_float_increase_is_not_a_removal_destination(self, vault):
        stock(vault.id, {20: 5})
        with pytest.raises(InvalidReason):
            vault_service.remove_cash(vault.id, "FLOAT_INCREASE", {20: 2}, MANAGER)


class TestConservation:
    """balance == total(denominations) after every operation."""

    def test_mixed_sequence_never_drifts(self, vault):
        rng = random.Random(20261019)
        faces = (100, 50, 20, 10, 5, 1)

        for step in range(60):
            choice = rng.choice(("arrival", "adjust", "removal", "reconcile"))
            delta = {face: rng.randint(0, 4) for face in rng.sample(faces, 3)}
            try:
                if choice == "arrival" and denoms.total(delta) > 0:
                    stock(vault.id, delta)
                elif choice == "adjust":
                    signed = {face: rng.randint(-3, 3) for face in rng.sample(faces, 2)}
                    vault_service.adjust_vault(
                        vault.id, signed, "VAULT_ADJUSTMENT", MANAGER, f"Random correction {step}"
                    )
                elif choice == "removal" and denoms.total(delta) > 0:
                    vault_service.remove_cash(vault.id, "BANK_DEPOSIT", delta, MANAGER)
                elif choice == "reconcile":
                    reconciliation_service.reconcile_vault(
                        vault.id, delta, "SPOT_CHECK", f"Spot check number {step}", MANAGER
                    )
            except InsufficientStock:
                pass

            denominations, balance, _ = _snapshot(vault.id)
            assert balance == denoms.total(denominations)
            assert all(qty > 0 for qty in denominations.values())

        assert audit_service.verify_chain(vault.id).ok
