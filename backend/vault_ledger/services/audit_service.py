# Overview: Service-layer operations for the vault audit trail; append-only reconciliation records.

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from flask import current_app

from ..errors import InvalidComment, VaultNotFound
from ..extensions import db
from ..models import ReconciliationRecord, VaultInventory
from ..models.vault import RECORD_KINDS
from ..time_utils import to_utc_z, utcnow
from . import denominations as denoms
"""
Vault Audit Trail Invariants (authoritative)

- Append-only: records are never updated or deleted.
- Records are written inside the same DB transaction as the vault mutation they
  describe; callers hold the vault's exclusive scope until commit.
- sequence is a per-vault counter stored on the vault row, so record order
  matches the order of committed mutations.
- checksum = sha256(previous_checksum + canonical body) chains every record to
  its predecessor; verify_chain() detects edits made behind the ORM's back.
"""


def require_comment(text: Optional[str], *, field_name: str = "comment") -> str:
    """
    Enforce the single audit comment policy.

    Returns the stripped comment.
    """
    min_length = current_app.config["VAULT_AUDIT_COMMENT_MIN_LENGTH"]
    cleaned = (text or "").strip()
    if len(cleaned) < min_length:
        raise InvalidComment(
            f"{field_name} must be at least {min_length} characters",
            details={"field": field_name, "min_length": min_length, "length": len(cleaned)},
        )
    return cleaned


def _canonical_body(
    *,
    vault_id: int,
    sequence: int,
    kind: str,
    actor: str,
    occurred_at: str | None,
    previous_balance: int,
    new_balance: int,
    variance: int,
    denomination_delta: Mapping[str, int],
    comment: str | None,
    cashier_shift_id: int | None,
    collection_session_id: int | None,
    payload: Any,
) -> str:
    body = {
        "vault_id": vault_id,
        "sequence": sequence,
        "kind": kind,
        "actor": actor,
        "occurred_at": occurred_at,
        "previous_balance": previous_balance,
        "new_balance": new_balance,
        "variance": variance,
        "denomination_delta": dict(denomination_delta),
        "comment": comment,
        "cashier_shift_id": cashier_shift_id,
        "collection_session_id": collection_session_id,
        "payload": payload,
    }
    return json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)


def compute_checksum(previous_checksum: str | None, body: str) -> str:
    digest = hashlib.sha256()
    digest.update((previous_checksum or "").encode("utf-8"))
    digest.update(body.encode("utf-8"))
    return digest.hexdigest()


def _record_checksum(record: ReconciliationRecord) -> str:
    body = _canonical_body(
        vault_id=record.vault_id,
        sequence=record.sequence,
        kind=record.kind,
        actor=record.actor,
        occurred_at=to_utc_z(record.occurred_at),
        previous_balance=record.previous_balance,
        new_balance=record.new_balance,
        variance=record.variance,
        denomination_delta=record.denomination_delta or {},
        comment=record.comment,
        cashier_shift_id=record.cashier_shift_id,
        collection_session_id=record.collection_session_id,
        payload=record.payload,
    )
    return compute_checksum(record.previous_checksum, body)


def append_record(
    *,
    vault: VaultInventory,
    kind: str,
    actor: str,
    previous_balance: int,
    new_balance: int,
    denomination_delta: Mapping[int, int] | None = None,
    variance: int = 0,
    comment: Optional[str] = None,
    cashier_shift_id: int | None = None,
    collection_session_id: int | None = None,
    payload: Optional[dict] = None,
) -> ReconciliationRecord:
    """
    Append one reconciliation record for a vault.

    - No domain logic here; callers have already validated the mutation.
    - Caller must hold the vault's exclusive scope and commit afterwards.
    - Advances the vault's sequence and chain head (flushed, not committed).
    """
    if kind not in RECORD_KINDS:
        raise ValueError(f"Unknown reconciliation record kind: {kind}")
    if not actor:
        raise ValueError("actor is required for reconciliation records")

    sequence = (vault.audit_sequence or 0) + 1
    occurred_at = utcnow()
    delta_json = denoms.to_json(denoms.normalize(denomination_delta or {}, signed=True))
    previous_checksum = vault.last_audit_checksum

    body = _canonical_body(
        vault_id=vault.id,
        sequence=sequence,
        kind=kind,
        actor=actor,
        occurred_at=to_utc_z(occurred_at),
        previous_balance=previous_balance,
        new_balance=new_balance,
        variance=variance,
        denomination_delta=delta_json,
        comment=comment,
        cashier_shift_id=cashier_shift_id,
        collection_session_id=collection_session_id,
        payload=payload,
    )
    checksum = compute_checksum(previous_checksum, body)

    record = ReconciliationRecord(
        vault_id=vault.id,
        sequence=sequence,
        kind=kind,
        actor=actor,
        occurred_at=occurred_at,
        previous_balance=previous_balance,
        new_balance=new_balance,
        variance=variance,
        denomination_delta=delta_json,
        comment=comment,
        cashier_shift_id=cashier_shift_id,
        collection_session_id=collection_session_id,
        payload=payload,
        previous_checksum=previous_checksum,
        checksum=checksum,
    )
    db.session.add(record)

    vault.audit_sequence = sequence
    vault.last_audit_checksum = checksum

    db.session.flush()  # ensures record.id is assigned without committing
    return record


def list_records(
    vault_id: int,
    *,
    limit: int = 100,
    before_sequence: int | None = None,
    kind: str | None = None,
) -> list[ReconciliationRecord]:
    """Newest first; ``before_sequence`` is an exclusive cursor."""
    q = db.session.query(ReconciliationRecord).filter(ReconciliationRecord.vault_id == vault_id)
    if kind:
        q = q.filter(ReconciliationRecord.kind == kind)
    if before_sequence is not None:
        q = q.filter(ReconciliationRecord.sequence < before_sequence)
    return q.order_by(ReconciliationRecord.sequence.desc()).limit(limit).all()


@dataclass
class ChainVerification:
    vault_id: int
    ok: bool = True
    checked: int = 0
    first_bad_sequence: int | None = None
    problems: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "vault_id": self.vault_id,
            "ok": self.ok,
            "checked": self.checked,
            "first_bad_sequence": self.first_bad_sequence,
            "problems": self.problems,
        }


def verify_chain(vault_id: int) -> ChainVerification:
    """
    Recompute the hash chain and cross-check it against the vault row.

    Detects edited, deleted or reordered records and a vault balance that no
    longer matches the newest record.
    """
    vault = db.session.get(VaultInventory, vault_id)
    if not vault:
        raise VaultNotFound(f"Vault {vault_id} not found")

    result = ChainVerification(vault_id=vault_id)

    def _fail(sequence: int | None, problem: str) -> None:
        result.ok = False
        result.problems.append(problem)
        if result.first_bad_sequence is None and sequence is not None:
            result.first_bad_sequence = sequence

    records = (
        db.session.query(ReconciliationRecord)
        .filter_by(vault_id=vault_id)
        .order_by(ReconciliationRecord.sequence.asc())
        .all()
    )

    previous_checksum = None
    previous_balance = 0
    for expected_sequence, record in enumerate(records, start=1):
        result.checked += 1
        if record.sequence != expected_sequence:
            _fail(record.sequence, f"sequence gap: expected {expected_sequence}, found {record.sequence}")
        if record.previous_checksum != previous_checksum:
            _fail(record.sequence, f"record {record.sequence} does not link to its predecessor")
        if _record_checksum(record) != record.checksum:
            _fail(record.sequence, f"record {record.sequence} checksum mismatch")
        if record.previous_balance != previous_balance:
            _fail(record.sequence, f"record {record.sequence} previous_balance does not continue the chain")
        previous_checksum = record.checksum
        previous_balance = record.new_balance

    if vault.audit_sequence != len(records):
        _fail(None, f"vault sequence {vault.audit_sequence} but {len(records)} records")
    if vault.last_audit_checksum != previous_checksum:
        _fail(None, "vault chain head does not match newest record")
    if vault.balance != previous_balance:
        _fail(None, f"vault balance {vault.balance} but newest record says {previous_balance}")
    if vault.balance != denoms.total(vault.denominations):
        _fail(None, "vault balance does not equal its denomination total")

    return result
