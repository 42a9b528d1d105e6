# Overview: Flask API routes for shift lifecycle; parses input and returns JSON responses.

"""
Shift API Routes

DESIGN:
- Shift lifecycle: open -> (pause/resume) -> close (terminal)
- Close is idempotent: repeating it returns the closed shift with 200
- Unclosed-shift check lets the client warn a cashier before starting work
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import shift_service
from ..services.payment_method_service import get_register
from ..decorators import require_actor
from ..validation import DomainError, ValidationError, require_int


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api")


@shifts_bp.post("/shops/<int:shop_id>/registers/<int:register_id>/shifts")
@require_actor
def open_shift_route(shop_id: int, register_id: int):
    """
    Open a shift on a register.

    Request body:
    {
        "cashier_id": 12  (optional, defaults to the acting user)
    }

    Returns 409 if the register is in maintenance, already has an unclosed
    shift, or the cashier already runs a shift elsewhere.
    """
    try:
        data = request.get_json(silent=True) or {}
        cashier_id = require_int(data, "cashier_id", required=False)
        if cashier_id is None:
            cashier_id = g.actor_id

        shift = shift_service.open_shift(
            shop_id=shop_id,
            register_id=register_id,
            cashier_id=cashier_id,
            actor_id=g.actor_id,
        )

        return jsonify({"shift": shift.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to open shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/shifts/<int:shift_id>/close")
@require_actor
def close_shift_route(shift_id: int):
    """
    Close a shift and snapshot its totals.

    Request body:
    {
        "comment": "All good"  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        comment = data.get("comment")
        if comment is not None and not isinstance(comment, str):
            raise ValidationError("comment must be a string")

        shift = shift_service.close_shift(shift_id, comment, actor_id=g.actor_id)

        return jsonify({"shift": shift.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to close shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/shifts/<int:shift_id>/pause")
@require_actor
def pause_shift_route(shift_id: int):
    try:
        shift = shift_service.pause_shift(shift_id, actor_id=g.actor_id)
        return jsonify({"shift": shift.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to pause shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/shifts/<int:shift_id>/resume")
@require_actor
def resume_shift_route(shift_id: int):
    try:
        shift = shift_service.resume_shift(shift_id, actor_id=g.actor_id)
        return jsonify({"shift": shift.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to resume shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/shifts/<int:shift_id>")
@require_actor
def get_shift_route(shift_id: int):
    """Shift with live (open) or frozen (closed) totals and order counts."""
    try:
        return jsonify(shift_service.get_shift_summary(shift_id)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@shifts_bp.get("/registers/<int:register_id>/shifts")
@require_actor
def list_shifts_route(register_id: int):
    """
    Shift history of a register, newest first.

    Query params:
        status: open | paused | closed (optional)
        limit: 1..200 (default 50)
    """
    limit = request.args.get("limit", default=50, type=int)
    limit = max(1, min(limit, 200))
    status = request.args.get("status")

    try:
        get_register(register_id)
        shifts = shift_service.list_shifts(register_id, status=status, limit=limit)
        return jsonify({"shifts": [s.to_dict() for s in shifts]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@shifts_bp.get("/registers/<int:register_id>/shifts/current")
@require_actor
def current_shift_route(register_id: int):
    try:
        get_register(register_id)
        shift = shift_service.get_current_shift(register_id)
        return jsonify({"shift": shift.to_dict() if shift else None}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@shifts_bp.get("/shops/<int:shop_id>/shifts/unclosed")
@require_actor
def unclosed_shift_route(shop_id: int):
    """
    Does a cashier still hold an unclosed shift in this shop?

    Query params:
        cashier_id: defaults to the acting user
    """
    cashier_id = request.args.get("cashier_id", type=int)
    if cashier_id is None:
        cashier_id = g.actor_id

    return jsonify(shift_service.check_unclosed_shift(shop_id, cashier_id)), 200
