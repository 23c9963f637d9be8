from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..services import denominations as denoms


# Session status constants
SESSION_STATUS_OPEN = "OPEN"
SESSION_STATUS_FINALIZED = "FINALIZED"


class CollectionSession(db.Model):
    """
    A batch of machine cash counts awaiting one vault commit.

    LIFECYCLE:
    - OPEN: entries may be added/removed
    - FINALIZED: committed to the vault in one adjustment; entries frozen

    UNIQUENESS: at most one OPEN session per (location_id, vault_shift_id),
    enforced by a partial unique index.
    """
    __tablename__ = "collection_sessions"
    __table_args__ = (
        db.Index(
            "uq_collection_sessions_open_key",
            "location_id",
            "vault_shift_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.String(64), nullable=False, index=True)
    vault_shift_id = db.Column(db.String(64), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=SESSION_STATUS_OPEN, index=True)

    started_by = db.Column(db.String(64), nullable=True)

    # Fixed on finalize
    total_collected = db.Column(db.Integer, nullable=True)
    entry_count = db.Column(db.Integer, nullable=True)
    finalized_by = db.Column(db.String(64), nullable=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    entries = db.relationship(
        "CollectionEntry",
        backref="session",
        lazy=True,
        order_by="CollectionEntry.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def running_total(self) -> int:
        return sum(entry.total_amount for entry in self.entries)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "vault_shift_id": self.vault_shift_id,
            "status": self.status,
            "started_by": self.started_by,
            "entries": [entry.to_dict() for entry in self.entries],
            "running_total": self.running_total,
            "total_collected": self.total_collected,
            "entry_count": self.entry_count if self.entry_count is not None else len(self.entries),
            "finalized_by": self.finalized_by,
            "finalized_at": to_utc_z(self.finalized_at),
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class CollectionEntry(db.Model):
    """One machine's counted cash within a collection session."""
    __tablename__ = "collection_entries"
    __table_args__ = (
        db.UniqueConstraint("session_id", "machine_id", name="uq_collection_entries_session_machine"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("collection_sessions.id"), nullable=False, index=True)
    machine_id = db.Column(db.String(64), nullable=False)
    machine_name = db.Column(db.String(128), nullable=False)

    denominations_json = db.Column("denominations", db.JSON, nullable=False, default=dict)
    total_amount = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    collected_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def denominations(self) -> dict[int, int]:
        return denoms.normalize(self.denominations_json or {})

    @denominations.setter
    def denominations(self, value) -> None:
        clean = denoms.normalize(value)
        self.denominations_json = denoms.to_json(clean)
        self.total_amount = denoms.total(clean)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "machine_id": self.machine_id,
            "machine_name": self.machine_name,
            "denominations": denoms.to_entries(self.denominations),
            "total_amount": self.total_amount,
            "notes": self.notes,
            "collected_at": to_utc_z(self.collected_at),
        }
