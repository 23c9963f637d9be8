# backend/vault_ledger/routes/system.py
"""
System health endpoint.

Reports database connectivity and a small inventory of ledger tables for
deployment debugging.
"""

import time
from flask import Blueprint, current_app, jsonify
from ..extensions import db
from ..models import VaultInventory, ReconciliationRecord, CashierShift, CollectionSession
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        vault_count = db.session.query(VaultInventory).count()
        record_count = db.session.query(ReconciliationRecord).count()
        shift_count = db.session.query(CashierShift).count()
        session_count = db.session.query(CollectionSession).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "vaults": vault_count,
                "reconciliation_records": record_count,
                "cashier_shifts": shift_count,
                "collection_sessions": session_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }
    return jsonify(body), 200 if healthy else 503
