from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..services import denominations as denoms


# Shift status constants
SHIFT_STATUS_ACTIVE = "ACTIVE"
SHIFT_STATUS_PENDING_REVIEW = "PENDING_REVIEW"
SHIFT_STATUS_RESOLVED = "RESOLVED"

OPEN_SHIFT_STATUSES = (SHIFT_STATUS_ACTIVE, SHIFT_STATUS_PENDING_REVIEW)

# Force-close reason tags
FORCE_CLOSE_NO_SHOW = "NO_SHOW"
FORCE_CLOSE_LOCKOUT = "LOCKOUT"
FORCE_CLOSE_EMERGENCY = "EMERGENCY"
FORCE_CLOSE_OTHER = "OTHER"

FORCE_CLOSE_REASONS = (
    FORCE_CLOSE_NO_SHOW,
    FORCE_CLOSE_LOCKOUT,
    FORCE_CLOSE_EMERGENCY,
    FORCE_CLOSE_OTHER,
)


class CashierShift(db.Model):
    """
    One cashier's custody of a starting float.

    LIFECYCLE:
    - ACTIVE: drawer open, movements recorded against expected_balance
    - PENDING_REVIEW: count submitted (close or force-close), awaiting manager
    - RESOLVED: manager accepted a final balance (terminal)
    - rejected: not a stored status; a rejected shift goes back to ACTIVE with
      rejection_count incremented and the count cleared

    Closed shifts are never deleted (retained for audit).
    """
    __tablename__ = "cashier_shifts"
    __table_args__ = (
        db.Index("ix_cashier_shifts_location_status", "location_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashier_id = db.Column(db.String(64), nullable=False, index=True)
    cashier_name = db.Column(db.String(128), nullable=False)
    location_id = db.Column(db.String(64), nullable=False, index=True)
    vault_shift_id = db.Column(db.String(64), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=SHIFT_STATUS_ACTIVE, index=True)

    # Float tracking (whole currency units)
    opening_balance = db.Column(db.Integer, nullable=False, default=0)
    payouts_total = db.Column(db.Integer, nullable=False, default=0)
    float_adjustments_total = db.Column(db.Integer, nullable=False, default=0)
    expected_balance = db.Column(db.Integer, nullable=False, default=0)

    # Cashier's submitted count (cleared on reject)
    entered_balance = db.Column(db.Integer, nullable=True)
    entered_denominations_json = db.Column("entered_denominations", db.JSON, nullable=True)
    discrepancy = db.Column(db.Integer, nullable=True)  # entered - expected

    # Force close (kept after a rejection; the shift stays marked as taken over)
    force_closed = db.Column(db.Boolean, nullable=False, default=False)
    force_close_reason = db.Column(db.String(16), nullable=True)
    force_closed_by = db.Column(db.String(64), nullable=True)

    # Review outcome
    final_balance = db.Column(db.Integer, nullable=True)
    final_denominations_json = db.Column("final_denominations", db.JSON, nullable=True)
    reviewed_by = db.Column(db.String(64), nullable=True)
    resolution_comment = db.Column(db.Text, nullable=True)
    rejection_count = db.Column(db.Integer, nullable=False, default=0)
    last_rejection_reason = db.Column(db.Text, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def entered_denominations(self) -> dict[int, int] | None:
        if self.entered_denominations_json is None:
            return None
        return denoms.normalize(self.entered_denominations_json)

    @entered_denominations.setter
    def entered_denominations(self, value) -> None:
        self.entered_denominations_json = None if value is None else denoms.to_json(denoms.normalize(value))

    @property
    def final_denominations(self) -> dict[int, int] | None:
        if self.final_denominations_json is None:
            return None
        return denoms.normalize(self.final_denominations_json)

    @final_denominations.setter
    def final_denominations(self, value) -> None:
        self.final_denominations_json = None if value is None else denoms.to_json(denoms.normalize(value))

    def to_dict(self) -> dict:
        entered = self.entered_denominations
        final = self.final_denominations
        return {
            "id": self.id,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "location_id": self.location_id,
            "vault_shift_id": self.vault_shift_id,
            "status": self.status,
            "opening_balance": self.opening_balance,
            "payouts_total": self.payouts_total,
            "float_adjustments_total": self.float_adjustments_total,
            "expected_balance": self.expected_balance,
            "entered_balance": self.entered_balance,
            "entered_denominations": denoms.to_entries(entered) if entered is not None else None,
            "discrepancy": self.discrepancy,
            "force_closed": self.force_closed,
            "force_close_reason": self.force_close_reason,
            "force_closed_by": self.force_closed_by,
            "final_balance": self.final_balance,
            "final_denominations": denoms.to_entries(final) if final is not None else None,
            "reviewed_by": self.reviewed_by,
            "resolution_comment": self.resolution_comment,
            "rejection_count": self.rejection_count,
            "last_rejection_reason": self.last_rejection_reason,
            "notes": self.notes,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "reviewed_at": to_utc_z(self.reviewed_at),
            "version_id": self.version_id,
        }
