# backend/vault_ledger/routes/shifts.py
"""
Cashier Shift API Routes

WHY: Cashiers open and close shifts; vault managers review the counts,
force-close abandoned drawers and gate the end of the vault shift.

DESIGN:
- Shift lifecycle: open -> close/force-close -> resolve | reject (back to active)
- Close bodies carry either a denomination breakdown or an entered_total,
  plus the list of face values the counter confirmed ("touched")
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import VaultError
from ..decorators import require_actor
from ..services import shift_service
from ..validation import (
    optional_int,
    optional_str,
    parse_cash_count,
    parse_denominations,
    parse_int,
    require_json_object,
    require_str,
)


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


# =============================================================================
# CASHIER
# =============================================================================

@shifts_bp.post("/")
@shifts_bp.post("")
@require_actor
def open_shift_route():
    """
    Open a cashier shift.

    Request body:
    {
        "cashier_id": "C-7",               (defaults to the actor)
        "cashier_name": "Dana",
        "location_id": "LOC-1",
        "opening_balance": 500,
        "vault_shift_id": "VS-2026-10-19"  (optional)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        cashier_id = optional_str(data, "cashier_id") or g.actor
        shift = shift_service.open_shift(
            cashier_id=cashier_id,
            cashier_name=optional_str(data, "cashier_name") or cashier_id,
            location_id=require_str(data, "location_id"),
            opening_balance=parse_int(data.get("opening_balance", 0), "opening_balance", minimum=0),
            vault_shift_id=optional_str(data, "vault_shift_id"),
            notes=optional_str(data, "notes"),
        )
        return jsonify({"shift": shift.to_dict()}), 201

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/")
@shifts_bp.get("")
def list_shifts_route():
    """
    Query params: location_id, status, cashier_id (all optional).
    """
    status = optional_str(request.args, "status")
    shifts = shift_service.list_shifts(
        location_id=optional_str(request.args, "location_id"),
        status=status.upper() if status else None,
        cashier_id=optional_str(request.args, "cashier_id"),
    )
    return jsonify({"shifts": [s.to_dict() for s in shifts]}), 200


@shifts_bp.get("/<int:shift_id>")
def get_shift_route(shift_id: int):
    try:
        return jsonify({"shift": shift_service.get_shift(shift_id).to_dict()}), 200
    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code


@shifts_bp.post("/<int:shift_id>/movements")
@require_actor
def record_movement_route(shift_id: int):
    """
    Request body:
    {
        "kind": "PAYOUT",
        "amount": 40
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        shift = shift_service.record_shift_movement(
            shift_id,
            require_str(data, "kind").upper(),
            parse_int(data.get("amount"), "amount", minimum=1),
        )
        return jsonify({"shift": shift.to_dict()}), 200

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record shift movement")
        return jsonify({"error": "Internal server error"}), 500


def _float_route(shift_id: int, move, label: str):
    try:
        data = require_json_object(request.get_json(silent=True))
        shift, record = move(
            shift_id,
            parse_denominations(data.get("denominations")),
            g.actor,
            notes=optional_str(data, "notes"),
        )
        return jsonify({"shift": shift.to_dict(), "record": record.to_dict()}), 201

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to %s", label)
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/float-issues")
@require_actor
def issue_float_route(shift_id: int):
    """
    Move bills from the vault into an active drawer.

    Request body:
    {
        "denominations": [{"denomination": 20, "quantity": 5}],
        "notes": "..."   (optional)
    }
    """
    return _float_route(shift_id, shift_service.issue_float, "issue float")


@shifts_bp.post("/<int:shift_id>/float-returns")
@require_actor
def return_float_route(shift_id: int):
    """Move surplus bills from an active drawer back into the vault."""
    return _float_route(shift_id, shift_service.return_float, "return float")


@shifts_bp.post("/<int:shift_id>/close")
@require_actor
def close_shift_route(shift_id: int):
    """
    Submit the cashier's count.

    Request body (one of):
    {"denominations": [{"denomination": 20, "quantity": 25}], "touched": [100, 50, 20]}
    {"entered_total": 0, "touched": [100, 50, 20, 10, 5, 1]}
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        info = shift_service.close_shift(shift_id, parse_cash_count(data), g.actor)
        return jsonify({"unbalanced_shift": info.to_dict()}), 200

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# VAULT MANAGER
# =============================================================================

@shifts_bp.post("/force-close")
@require_actor
def force_close_shift_route():
    """
    Request body:
    {
        "cashier_id": "C-7",
        "location_id": "LOC-1",
        "reason_tag": "NO_SHOW" | "LOCKOUT" | "EMERGENCY" | "OTHER",
        "notes": "...",
        "denominations": [...] | "entered_total": 0,
        "touched": [...]
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        info = shift_service.force_close_shift(
            cashier_id=require_str(data, "cashier_id"),
            location_id=require_str(data, "location_id"),
            count=parse_cash_count(data),
            reason_tag=require_str(data, "reason_tag"),
            notes=optional_str(data, "notes"),
            actor=g.actor,
        )
        return jsonify({"unbalanced_shift": info.to_dict()}), 200

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to force-close shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/resolve")
@require_actor
def resolve_shift_route(shift_id: int):
    """
    Request body:
    {
        "final_balance": 450,                   (optional with denominations)
        "audit_comment": "...",                 (optional)
        "denominations": [...]                  (optional manager override)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        edited = None
        if data.get("denominations") is not None:
            edited = parse_denominations(data.get("denominations"))

        record = shift_service.resolve_shift(
            shift_id,
            g.actor,
            final_balance=optional_int(data, "final_balance", minimum=0),
            audit_comment=optional_str(data, "audit_comment"),
            denominations=edited,
        )
        shift = shift_service.get_shift(shift_id)
        return jsonify({"record": record.to_dict(), "shift": shift.to_dict()}), 200

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to resolve shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/reject")
@require_actor
def reject_shift_route(shift_id: int):
    """
    Request body:
    {"reason": "Off by exactly one $20 bill, recount please"}
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        shift = shift_service.reject_shift(shift_id, data.get("reason"), g.actor)
        return jsonify({"shift": shift.to_dict()}), 200

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to reject shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/vault-shifts/<vault_shift_id>/close-status")
def vault_shift_close_status_route(vault_shift_id: str):
    return jsonify(shift_service.get_vault_shift_close_status(vault_shift_id)), 200
