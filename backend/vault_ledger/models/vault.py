from __future__ import annotations

from sqlalchemy import event

from ..errors import AuditImmutableError
from ..extensions import db
from ..time_utils import to_utc_z
from ..services import denominations as denoms


# Record kinds
KIND_SHIFT_RESOLVE = "SHIFT_RESOLVE"
KIND_SHIFT_REJECT = "SHIFT_REJECT"
KIND_SHIFT_FORCE_CLOSE = "SHIFT_FORCE_CLOSE"
KIND_FLOAT_ISSUE = "FLOAT_ISSUE"
KIND_FLOAT_RETURN = "FLOAT_RETURN"
KIND_COLLECTION_FINALIZE = "COLLECTION_FINALIZE"
KIND_CASH_ARRIVAL = "CASH_ARRIVAL"
KIND_CASH_REMOVAL = "CASH_REMOVAL"
KIND_VAULT_ADJUSTMENT = "VAULT_ADJUSTMENT"
KIND_MANUAL_RECONCILE = "MANUAL_RECONCILE"

RECORD_KINDS = (
    KIND_SHIFT_RESOLVE,
    KIND_SHIFT_REJECT,
    KIND_SHIFT_FORCE_CLOSE,
    KIND_FLOAT_ISSUE,
    KIND_FLOAT_RETURN,
    KIND_COLLECTION_FINALIZE,
    KIND_CASH_ARRIVAL,
    KIND_CASH_REMOVAL,
    KIND_VAULT_ADJUSTMENT,
    KIND_MANUAL_RECONCILE,
)


class VaultInventory(db.Model):
    """
    Authoritative denomination inventory for one vault.

    WHY: The vault's cash is tracked per bill face value, not as a single
    amount, so withdrawals can be checked against actual stock.

    INVARIANTS:
    - balance == total(denominations) after every committed write
    - quantities are never negative
    - never deleted; only adjusted through vault_service
    - audit_sequence equals the sequence of the newest ReconciliationRecord
    """
    __tablename__ = "vault_inventories"
    __table_args__ = (
        db.UniqueConstraint("location_id", name="uq_vault_inventories_location"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.String(64), nullable=False, index=True)
    licensee_id = db.Column(db.String(64), nullable=True, index=True)
    name = db.Column(db.String(128), nullable=False)

    # {"100": 12, "20": 40} (face value -> quantity, zero quantities omitted)
    denominations_json = db.Column("denominations", db.JSON, nullable=False, default=dict)
    balance = db.Column(db.Integer, nullable=False, default=0)

    # Per-vault audit ordering and hash chain head
    audit_sequence = db.Column(db.Integer, nullable=False, default=0)
    last_audit_checksum = db.Column(db.String(64), nullable=True)

    last_reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def denominations(self) -> dict[int, int]:
        return denoms.normalize(self.denominations_json or {})

    @denominations.setter
    def denominations(self, value) -> None:
        clean = denoms.normalize(value)
        # Always assign a fresh dict so the JSON column is flagged dirty
        self.denominations_json = denoms.to_json(clean)
        self.balance = denoms.total(clean)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "licensee_id": self.licensee_id,
            "name": self.name,
            "balance": self.balance,
            "denominations": denoms.to_entries(self.denominations),
            "audit_sequence": self.audit_sequence,
            "last_reconciled_at": to_utc_z(self.last_reconciled_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class ReconciliationRecord(db.Model):
    """
    Append-only audit entry for every balance-changing vault action.

    WHY: Every movement of physical cash must be explainable after the fact.

    DESIGN:
    - one record per mutating action, written in the same transaction
    - (vault_id, sequence) is unique and gap-free per vault
    - checksum = sha256(previous_checksum + canonical body) forms a hash chain
    - never updated or deleted (enforced by ORM listeners below)
    """
    __tablename__ = "reconciliation_records"
    __table_args__ = (
        db.UniqueConstraint("vault_id", "sequence", name="uq_reconciliation_records_vault_sequence"),
        db.Index("ix_reconciliation_records_vault_occurred", "vault_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    vault_id = db.Column(db.Integer, db.ForeignKey("vault_inventories.id"), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)

    kind = db.Column(db.String(32), nullable=False, index=True)
    actor = db.Column(db.String(64), nullable=False, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    previous_balance = db.Column(db.Integer, nullable=False)
    new_balance = db.Column(db.Integer, nullable=False)
    variance = db.Column(db.Integer, nullable=False, default=0)
    denomination_delta = db.Column(db.JSON, nullable=False, default=dict)
    comment = db.Column(db.Text, nullable=True)

    # Cross references
    cashier_shift_id = db.Column(db.Integer, db.ForeignKey("cashier_shifts.id"), nullable=True, index=True)
    collection_session_id = db.Column(db.Integer, db.ForeignKey("collection_sessions.id"), nullable=True, index=True)

    # Small structured context (source, reason tag, discrepancy...)
    payload = db.Column(db.JSON, nullable=True)

    previous_checksum = db.Column(db.String(64), nullable=True)
    checksum = db.Column(db.String(64), nullable=False)

    vault = db.relationship("VaultInventory", backref=db.backref("records", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vault_id": self.vault_id,
            "sequence": self.sequence,
            "kind": self.kind,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
            "previous_balance": self.previous_balance,
            "new_balance": self.new_balance,
            "variance": self.variance,
            "denomination_delta": denoms.to_entries(
                denoms.normalize(self.denomination_delta or {}, signed=True)
            ),
            "comment": self.comment,
            "cashier_shift_id": self.cashier_shift_id,
            "collection_session_id": self.collection_session_id,
            "payload": self.payload,
            "checksum": self.checksum,
        }


@event.listens_for(ReconciliationRecord, "before_update")
def _block_record_update(mapper, connection, target):
    raise AuditImmutableError(f"Reconciliation record {target.id} cannot be modified")


@event.listens_for(ReconciliationRecord, "before_delete")
def _block_record_delete(mapper, connection, target):
    raise AuditImmutableError(f"Reconciliation record {target.id} cannot be deleted")
