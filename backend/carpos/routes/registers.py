# Overview: Flask API routes for registers and their payment methods; parses input and returns JSON responses.

# backend/carpos/routes/registers.py
"""
Register Management API Routes

WHY: Managers set up registers and choose which tenders each one accepts.
Cashiers read them to pick a register and a payment method.

DESIGN:
- Registers are created per shop, with their initial payment methods
- Status moves between active, inactive and maintenance
- Payment method bindings are listed (all or active only), added and patched
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import payment_method_service, register_service
from ..decorators import require_actor
from ..validation import DomainError


registers_bp = Blueprint("registers", __name__, url_prefix="/api")


# =============================================================================
# REGISTER MANAGEMENT
# =============================================================================

@registers_bp.post("/shops/<int:shop_id>/registers")
@require_actor
def create_register_route(shop_id: int):
    """
    Create a register.

    Request body:
    {
        "name": "Front counter",
        "type": "STATIONARY",
        "location": "Bay 1",  (optional)
        "payment_methods": [  (optional)
            {"source": "system", "system_type": "cash", "scope": "dedicated"},
            {"source": "system", "system_type": "card", "scope": "shared"},
            {"source": "custom", "name": "Fuel voucher", "code": "VOUCHER"}
        ]
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        register = register_service.create_register(
            shop_id=shop_id,
            name=data.get("name") or "",
            register_type=data.get("type") or "STATIONARY",
            location=data.get("location"),
            payment_methods=data.get("payment_methods") or [],
            actor_id=g.actor_id,
        )

        return jsonify({"register": register_service.register_detail(register.id)}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/shops/<int:shop_id>/registers")
@require_actor
def list_registers_route(shop_id: int):
    """List the shop's registers with their current shift."""
    try:
        registers = register_service.list_registers(shop_id)

        result = []
        for r in registers:
            d = r.to_dict()
            current = register_service.get_unclosed_shift(r.id)
            d["current_shift"] = current.to_dict() if current else None
            result.append(d)

        return jsonify({"registers": result}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@registers_bp.get("/registers/<int:register_id>")
@require_actor
def get_register_route(register_id: int):
    """Register details including current shift and payment methods."""
    try:
        return jsonify({"register": register_service.register_detail(register_id)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@registers_bp.patch("/registers/<int:register_id>/status")
@require_actor
def update_register_status_route(register_id: int):
    """
    Change register status.

    Request body:
    {
        "status": "maintenance"  // active | inactive | maintenance
    }

    Returns 409 while the register has an unclosed shift.
    """
    try:
        data = request.get_json(silent=True) or {}

        register = register_service.update_register_status(
            register_id,
            data.get("status"),
            actor_id=g.actor_id,
        )

        return jsonify({"register": register.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update register status")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT METHOD BINDINGS
# =============================================================================

@registers_bp.get("/registers/<int:register_id>/payment-methods")
@require_actor
def list_payment_methods_route(register_id: int):
    """
    List payment methods of a register.

    Query params:
        active_only: "true" for the methods a cashier may use right now
    """
    active_only = request.args.get("active_only", "false").lower() == "true"

    try:
        if active_only:
            bindings = payment_method_service.list_active_methods(register_id)
        else:
            bindings = payment_method_service.list_methods(register_id)

        return jsonify({"payment_methods": [b.to_dict() for b in bindings]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@registers_bp.post("/registers/<int:register_id>/payment-methods")
@require_actor
def bind_payment_method_route(register_id: int):
    """
    Bind a payment method to a register.

    Request body:
    {
        "source": "system" | "custom",
        "system_type": "cash" | "card" | "qr",  (system only)
        "name": "...", "code": "...",            (custom only)
        "scope": "dedicated" | "shared",
        "is_active": true,
        "status": "active"
    }

    SHARED definitions reuse the shop-wide record when it exists.
    """
    try:
        data = request.get_json(silent=True)

        binding = payment_method_service.bind_payment_method(
            register_id,
            data,
            actor_id=g.actor_id,
        )

        return jsonify({"payment_method": binding.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to bind payment method")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.patch("/registers/<int:register_id>/payment-methods")
@require_actor
def update_payment_methods_route(register_id: int):
    """
    Update the active set of a register.

    Request body:
    {
        "payment_methods": [
            {"payment_method_id": 3, "is_active": false},
            {"payment_method_id": 4, "status": "inactive"}
        ]
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        bindings = payment_method_service.update_bindings(
            register_id,
            data.get("payment_methods"),
            actor_id=g.actor_id,
        )

        return jsonify({"payment_methods": [b.to_dict() for b in bindings]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update payment methods")
        return jsonify({"error": "Internal server error"}), 500
