# Overview: Flask API routes for service orders; parses input and returns JSON responses.

"""
Service Order API Routes

DESIGN:
- Orders are created on an open shift and start active immediately
- Discount changes reprice the order before payment
- Completing posts a SALE; cancelling a paid order posts REFUND entries
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import order_service, ledger_service
from ..decorators import require_actor
from ..validation import DomainError, ValidationError, parse_amount_cents, require_int, require_str


orders_bp = Blueprint("orders", __name__, url_prefix="/api")


def _order_payload(order) -> dict:
    d = order.to_dict()
    d["transactions"] = [t.to_dict() for t in ledger_service.list_order_transactions(order.id)]
    return d


@orders_bp.post("/orders")
@require_actor
def create_order_route():
    """
    Create a service order.

    Request body:
    {
        "shift_id": 5,
        "vehicle_id": 31,
        "service_type_id": 2,
        "staff_ids": [7, 8],  (optional)
        "client_id": 90,      (optional)
        "notes": "..."        (optional)
    }
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")

        staff_ids = data.get("staff_ids")
        if staff_ids is not None and not isinstance(staff_ids, list):
            raise ValidationError("staff_ids must be a list of integers")

        order = order_service.create_order(
            shift_id=require_int(data, "shift_id"),
            vehicle_id=require_int(data, "vehicle_id"),
            service_type_id=require_int(data, "service_type_id"),
            staff_ids=staff_ids,
            client_id=require_int(data, "client_id", required=False),
            notes=require_str(data, "notes", required=False, max_length=1000),
            actor_id=g.actor_id,
        )

        return jsonify({"order": order.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/orders/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    """Order with the ledger entries linked to it."""
    try:
        order = order_service.get_order(order_id)
        return jsonify({"order": _order_payload(order)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.patch("/orders/<int:order_id>/price")
@require_actor
def update_price_route(order_id: int):
    """
    Apply a discount to an active order.

    Request body:
    {
        "discount_percent": 15.5   // 0..100, two decimal places max
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if "discount_percent" not in data:
            raise ValidationError("discount_percent is required")

        order = order_service.apply_discount(
            order_id,
            data.get("discount_percent"),
            actor_id=g.actor_id,
        )

        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update order price")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/orders/<int:order_id>/complete")
@require_actor
def complete_order_route(order_id: int):
    """
    Take payment and complete an order.

    Request body:
    {
        "payment_method_id": 3,
        "final_price": 45.00   // optional, or "final_price_cents"; 0 < final <= original, discount is derived
    }
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")

        final_price_cents = None
        if data.get("final_price") is not None or data.get("final_price_cents") is not None:
            final_price_cents = parse_amount_cents(data, field="final_price")

        order = order_service.complete_order(
            order_id,
            require_int(data, "payment_method_id"),
            actor_id=g.actor_id,
            final_price_cents=final_price_cents,
        )

        return jsonify({"order": _order_payload(order)}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to complete order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/orders/<int:order_id>/cancel")
@require_actor
def cancel_order_route(order_id: int):
    """
    Cancel an active order. A SALE already linked to it is offset by a REFUND.

    Request body:
    {
        "reason": "Client left"   (required)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        order = order_service.cancel_order(
            order_id,
            require_str(data, "reason", max_length=255),
            actor_id=g.actor_id,
        )

        return jsonify({"order": _order_payload(order)}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/shifts/<int:shift_id>/orders")
@require_actor
def list_shift_orders_route(shift_id: int):
    """
    Orders of a shift, newest first.

    Query params:
        status: pending | active | completed | cancelled (optional)
    """
    from ..services.shift_service import get_shift

    try:
        get_shift(shift_id)
        orders = order_service.list_shift_orders(shift_id, status=request.args.get("status"))
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
