# backend/vault_ledger/routes/vaults.py
"""
Vault API Routes

WHY: Vault managers provision vaults, bring cash in and out, reconcile
against physical counts and inspect the audit trail.

DESIGN:
- Thin adapter: parse input, call a service, serialise with to_dict()
- Every mutation requires X-Actor-Id (the audit record names the actor)
- Typed VaultError -> {"error", "message", "details"} with its status
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import VaultError
from ..decorators import require_actor
from ..services import audit_service, reconciliation_service, vault_service
from ..validation import (
    optional_int,
    optional_str,
    parse_denominations,
    require_json_object,
    require_str,
)


vaults_bp = Blueprint("vaults", __name__, url_prefix="/api/vaults")


@vaults_bp.post("/")
@vaults_bp.post("")
@require_actor
def provision_vault_route():
    """
    Provision an empty vault for a location.

    Request body:
    {
        "location_id": "LOC-1",
        "name": "Main Cage",       (optional)
        "licensee_id": "LIC-9"     (optional)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        vault = vault_service.provision_vault(
            location_id=require_str(data, "location_id"),
            name=optional_str(data, "name"),
            licensee_id=optional_str(data, "licensee_id"),
        )
        current_app.logger.info("vault %s provisioned for %s by %s", vault.id, vault.location_id, g.actor)
        return jsonify({"vault": vault.to_dict()}), 201

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to provision vault")
        return jsonify({"error": "Internal server error"}), 500


@vaults_bp.get("/")
@vaults_bp.get("")
def list_vaults_route():
    vaults = vault_service.list_vaults()
    return jsonify({"vaults": [v.to_dict() for v in vaults]}), 200


@vaults_bp.get("/<int:vault_id>")
def get_vault_balance_route(vault_id: int):
    """Lock-free balance snapshot."""
    try:
        return jsonify(vault_service.get_vault_balance(vault_id)), 200
    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code


@vaults_bp.post("/<int:vault_id>/adjust")
@require_actor
def adjust_vault_route(vault_id: int):
    """
    Apply a signed denomination delta.

    Request body:
    {
        "reason": "VAULT_ADJUSTMENT" | "CASH_ARRIVAL" | "CASH_REMOVAL",
        "delta": [{"denomination": 20, "quantity": -1}],
        "comment": "..."   (required for VAULT_ADJUSTMENT)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        delta = parse_denominations(data.get("delta"), signed=True, field="delta")
        record = vault_service.adjust_vault(
            vault_id,
            delta,
            require_str(data, "reason").upper(),
            g.actor,
            optional_str(data, "comment"),
        )
        return jsonify({"record": record.to_dict()}), 201

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to adjust vault")
        return jsonify({"error": "Internal server error"}), 500


@vaults_bp.post("/<int:vault_id>/reconcile")
@require_actor
def reconcile_vault_route(vault_id: int):
    """
    Replace inventory with a physical count.

    Request body:
    {
        "denominations": [{"denomination": 100, "quantity": 50}],
        "reason": "PERIODIC",                       (optional)
        "comment": "Weekly count, two managers"     (required, min length)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        record = reconciliation_service.reconcile_vault(
            vault_id,
            parse_denominations(data.get("denominations")),
            optional_str(data, "reason"),
            data.get("comment"),
            g.actor,
        )
        return jsonify({"record": record.to_dict(), "variance": record.variance}), 201

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to reconcile vault")
        return jsonify({"error": "Internal server error"}), 500


@vaults_bp.post("/<int:vault_id>/cash-arrivals")
@require_actor
def add_cash_arrival_route(vault_id: int):
    """
    Request body:
    {
        "source": "BANK_WITHDRAWAL",
        "denominations": [{"denomination": 100, "quantity": 20}],
        "total_amount": 2000,   (optional, must match)
        "notes": "..."          (optional)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        record = vault_service.add_cash_arrival(
            vault_id,
            require_str(data, "source").upper(),
            parse_denominations(data.get("denominations")),
            g.actor,
            notes=optional_str(data, "notes"),
            total_amount=optional_int(data, "total_amount", minimum=0),
        )
        return jsonify({"record": record.to_dict()}), 201

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record cash arrival")
        return jsonify({"error": "Internal server error"}), 500


@vaults_bp.post("/<int:vault_id>/cash-removals")
@require_actor
def remove_cash_route(vault_id: int):
    """
    Request body:
    {
        "destination": "BANK_DEPOSIT" | "OWNER_DRAW" | "EXPENSE",
        "denominations": [{"denomination": 100, "quantity": 2}],
        "category": "REPAIRS",   (required for EXPENSE)
        "notes": "..."           (optional)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        record = vault_service.remove_cash(
            vault_id,
            require_str(data, "destination").upper(),
            parse_denominations(data.get("denominations")),
            g.actor,
            notes=optional_str(data, "notes"),
            category=optional_str(data, "category"),
        )
        return jsonify({"record": record.to_dict()}), 201

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record cash removal")
        return jsonify({"error": "Internal server error"}), 500


@vaults_bp.get("/<int:vault_id>/records")
def list_records_route(vault_id: int):
    """
    Audit trail, newest first.

    Query params:
    - limit: max records (default 100, max 500)
    - before_sequence: cursor from a previous page
    - kind: filter by record kind
    """
    try:
        vault_service.get_vault(vault_id)
        limit = min(optional_int(request.args, "limit", minimum=1) or 100, 500)
        before = optional_int(request.args, "before_sequence", minimum=1)
        kind = optional_str(request.args, "kind")

        records = audit_service.list_records(
            vault_id, limit=limit, before_sequence=before, kind=kind.upper() if kind else None
        )
        next_cursor = records[-1].sequence if len(records) == limit else None
        return jsonify({
            "records": [r.to_dict() for r in records],
            "next_before_sequence": next_cursor,
        }), 200

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code


@vaults_bp.get("/<int:vault_id>/records/verify")
def verify_records_route(vault_id: int):
    try:
        result = audit_service.verify_chain(vault_id)
        if not result.ok:
            current_app.logger.warning("audit chain broken for vault %s: %s", vault_id, result.problems)
        return jsonify(result.to_dict()), 200
    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
