# backend/vault_ledger/routes/collections.py
"""
Machine Collection API Routes

WHY: Collectors count machine cash one machine at a time during a vault
shift; the vault manager commits the whole batch once.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import VaultError
from ..decorators import require_actor
from ..services import collection_service
from ..validation import (
    optional_datetime,
    optional_int,
    optional_str,
    parse_denominations,
    require_json_object,
    require_str,
)


collections_bp = Blueprint("collections", __name__, url_prefix="/api/collection-sessions")


@collections_bp.post("/")
@collections_bp.post("")
@require_actor
def start_or_get_session_route():
    """
    Idempotent: returns the OPEN session for the key, creating it if needed.

    Request body:
    {"location_id": "LOC-1", "vault_shift_id": "VS-2026-10-19"}
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        session = collection_service.start_or_get_session(
            require_str(data, "location_id"),
            require_str(data, "vault_shift_id"),
            g.actor,
        )
        return jsonify({"session": session.to_dict()}), 200

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to start collection session")
        return jsonify({"error": "Internal server error"}), 500


@collections_bp.get("/<int:session_id>")
def get_session_route(session_id: int):
    try:
        return jsonify({"session": collection_service.get_session(session_id).to_dict()}), 200
    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code


@collections_bp.post("/<int:session_id>/entries")
@require_actor
def add_entry_route(session_id: int):
    """
    Request body:
    {
        "machine_id": "SLOT-014",
        "machine_name": "Buffalo Gold",          (optional)
        "denominations": [{"denomination": 100, "quantity": 2}],
        "total_amount": 200,                     (optional, must match)
        "collected_at": "2026-10-19T03:00:00Z",  (optional)
        "notes": "..."                           (optional)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        session = collection_service.add_entry(
            session_id,
            require_str(data, "machine_id"),
            optional_str(data, "machine_name"),
            parse_denominations(data.get("denominations")),
            total_amount=optional_int(data, "total_amount", minimum=0),
            collected_at=optional_datetime(data, "collected_at"),
            notes=optional_str(data, "notes"),
        )
        return jsonify({"session": session.to_dict()}), 201

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to add collection entry")
        return jsonify({"error": "Internal server error"}), 500


@collections_bp.delete("/<int:session_id>/entries/<machine_id>")
@require_actor
def remove_entry_route(session_id: int, machine_id: str):
    try:
        session = collection_service.remove_entry(session_id, machine_id)
        return jsonify({"session": session.to_dict()}), 200

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove collection entry")
        return jsonify({"error": "Internal server error"}), 500


@collections_bp.post("/<int:session_id>/finalize")
@require_actor
def finalize_session_route(session_id: int):
    """Commit the batch to the vault; a repeat answers 409 ALREADY_FINALIZED."""
    try:
        result = collection_service.finalize_session(session_id, g.actor)
        return jsonify({
            "session_id": result["session_id"],
            "total_collected": result["total_collected"],
            "entry_count": result["entry_count"],
            "record": result["record"].to_dict(),
        }), 200

    except VaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to finalize collection session")
        return jsonify({"error": "Internal server error"}), 500
