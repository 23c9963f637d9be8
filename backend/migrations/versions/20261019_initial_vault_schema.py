"""initial vault ledger schema

Revision ID: 20261019_initial_vault_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

This migration adds:
1. vault_inventories (one per location, denomination JSON + balance + chain head)
2. cashier_shifts (float custody and review state)
3. collection_sessions / collection_entries (one OPEN session per location + vault shift)
4. reconciliation_records (append-only, unique per vault + sequence)
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_vault_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. VAULT INVENTORIES
    # ==========================================================================
    op.create_table(
        "vault_inventories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.String(length=64), nullable=False),
        sa.Column("licensee_id", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("denominations", sa.JSON(), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("audit_sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_audit_checksum", sa.String(length=64), nullable=True),
        sa.Column("last_reconciled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("location_id", name="uq_vault_inventories_location"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_vault_inventories_location_id", "vault_inventories", ["location_id"], unique=False)
    op.create_index("ix_vault_inventories_licensee_id", "vault_inventories", ["licensee_id"], unique=False)

    # ==========================================================================
    # 2. CASHIER SHIFTS
    # ==========================================================================
    op.create_table(
        "cashier_shifts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cashier_id", sa.String(length=64), nullable=False),
        sa.Column("cashier_name", sa.String(length=128), nullable=False),
        sa.Column("location_id", sa.String(length=64), nullable=False),
        sa.Column("vault_shift_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("opening_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payouts_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("float_adjustments_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expected_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("entered_balance", sa.Integer(), nullable=True),
        sa.Column("entered_denominations", sa.JSON(), nullable=True),
        sa.Column("discrepancy", sa.Integer(), nullable=True),
        sa.Column("force_closed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("force_close_reason", sa.String(length=16), nullable=True),
        sa.Column("force_closed_by", sa.String(length=64), nullable=True),
        sa.Column("final_balance", sa.Integer(), nullable=True),
        sa.Column("final_denominations", sa.JSON(), nullable=True),
        sa.Column("reviewed_by", sa.String(length=64), nullable=True),
        sa.Column("resolution_comment", sa.Text(), nullable=True),
        sa.Column("rejection_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_rejection_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cashier_shifts", schema=None) as batch_op:
        batch_op.create_index("ix_cashier_shifts_cashier_id", ["cashier_id"], unique=False)
        batch_op.create_index("ix_cashier_shifts_location_id", ["location_id"], unique=False)
        batch_op.create_index("ix_cashier_shifts_vault_shift_id", ["vault_shift_id"], unique=False)
        batch_op.create_index("ix_cashier_shifts_status", ["status"], unique=False)
        batch_op.create_index("ix_cashier_shifts_opened_at", ["opened_at"], unique=False)
        batch_op.create_index("ix_cashier_shifts_location_status", ["location_id", "status"], unique=False)

    # ==========================================================================
    # 3. COLLECTION SESSIONS + ENTRIES
    # ==========================================================================
    op.create_table(
        "collection_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.String(length=64), nullable=False),
        sa.Column("vault_shift_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("started_by", sa.String(length=64), nullable=True),
        sa.Column("total_collected", sa.Integer(), nullable=True),
        sa.Column("entry_count", sa.Integer(), nullable=True),
        sa.Column("finalized_by", sa.String(length=64), nullable=True),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_collection_sessions_location_id", "collection_sessions", ["location_id"], unique=False)
    op.create_index("ix_collection_sessions_vault_shift_id", "collection_sessions", ["vault_shift_id"], unique=False)
    op.create_index("ix_collection_sessions_status", "collection_sessions", ["status"], unique=False)
    # At most one OPEN session per (location, vault shift)
    op.create_index(
        "uq_collection_sessions_open_key",
        "collection_sessions",
        ["location_id", "vault_shift_id"],
        unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    op.create_table(
        "collection_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("machine_id", sa.String(length=64), nullable=False),
        sa.Column("machine_name", sa.String(length=128), nullable=False),
        sa.Column("denominations", sa.JSON(), nullable=False),
        sa.Column("total_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("collected_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["session_id"], ["collection_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id", "machine_id", name="uq_collection_entries_session_machine"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_collection_entries_session_id", "collection_entries", ["session_id"], unique=False)

    # ==========================================================================
    # 4. RECONCILIATION RECORDS (append-only)
    # ==========================================================================
    op.create_table(
        "reconciliation_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("vault_id", sa.Integer(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("actor", sa.String(length=64), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("previous_balance", sa.Integer(), nullable=False),
        sa.Column("new_balance", sa.Integer(), nullable=False),
        sa.Column("variance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("denomination_delta", sa.JSON(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("cashier_shift_id", sa.Integer(), nullable=True),
        sa.Column("collection_session_id", sa.Integer(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("previous_checksum", sa.String(length=64), nullable=True),
        sa.Column("checksum", sa.String(length=64), nullable=False),
        sa.ForeignKeyConstraint(["vault_id"], ["vault_inventories.id"]),
        sa.ForeignKeyConstraint(["cashier_shift_id"], ["cashier_shifts.id"]),
        sa.ForeignKeyConstraint(["collection_session_id"], ["collection_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("vault_id", "sequence", name="uq_reconciliation_records_vault_sequence"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("reconciliation_records", schema=None) as batch_op:
        batch_op.create_index("ix_reconciliation_records_vault_id", ["vault_id"], unique=False)
        batch_op.create_index("ix_reconciliation_records_kind", ["kind"], unique=False)
        batch_op.create_index("ix_reconciliation_records_actor", ["actor"], unique=False)
        batch_op.create_index("ix_reconciliation_records_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_reconciliation_records_cashier_shift_id", ["cashier_shift_id"], unique=False)
        batch_op.create_index("ix_reconciliation_records_collection_session_id", ["collection_session_id"], unique=False)
        batch_op.create_index("ix_reconciliation_records_vault_occurred", ["vault_id", "occurred_at"], unique=False)


def downgrade():
    op.drop_table("reconciliation_records")
    op.drop_table("collection_entries")
    op.drop_index("uq_collection_sessions_open_key", table_name="collection_sessions")
    op.drop_table("collection_sessions")
    op.drop_table("cashier_shifts")
    op.drop_table("vault_inventories")
