# backend/vault_ledger/services/reconciliation_service.py
"""
Periodic (manual) vault reconciliation.

WHY: Physical counts occasionally disagree with the system. A vault manager
aligns the system to the count, and the difference is recorded as an
unexplained variance. This is the only operation allowed to move the balance
without shift or collection activity behind it.

POLICY: The audit comment is always mandatory and must meet
VAULT_AUDIT_COMMENT_MIN_LENGTH. No default reason text is substituted.
"""
from __future__ import annotations

from typing import Mapping

from ..extensions import db
from ..models import ReconciliationRecord
from ..models.vault import KIND_MANUAL_RECONCILE
from . import audit_service
from . import denominations as denoms
from .concurrency import run_with_retry
from .vault_service import set_absolute, vault_scope, log_committed


DEFAULT_RECONCILE_REASON = "PERIODIC"


def reconcile_vault(
    vault_id: int,
    new_denominations: Mapping[int, int],
    reason: str | None,
    comment: str | None,
    actor: str,
) -> ReconciliationRecord:
    """
    Replace the vault's inventory with a physical count.

    Args:
        vault_id: Vault being reconciled
        new_denominations: Physical count by face value
        reason: Short category for the reconciliation (e.g. "PERIODIC", "SPOT_CHECK")
        comment: Mandatory explanation (minimum length enforced)
        actor: Vault manager performing the count

    Returns:
        ReconciliationRecord with variance = total(new) - previous balance

    Raises:
        InvalidComment: if the comment is missing or too short
    """
    cleaned_comment = audit_service.require_comment(comment)
    counted = denoms.normalize(new_denominations)
    reason_tag = (reason or DEFAULT_RECONCILE_REASON).strip().upper() or DEFAULT_RECONCILE_REASON

    def _op():
        with vault_scope(vault_id) as vault:
            record = set_absolute(
                vault,
                counted,
                KIND_MANUAL_RECONCILE,
                actor,
                cleaned_comment,
                payload={"reason": reason_tag, "counted_total": denoms.total(counted)},
            )
            db.session.commit()
            return record

    record = run_with_retry(_op)
    log_committed(record)
    return record
