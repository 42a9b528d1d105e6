# Overview: Flask API routes for payment method balances and ledger history; parses input and returns JSON responses.

"""
Payment Method Ledger API Routes

WHY: Cashiers and managers put money into and take money out of a payment
method (float, cash pickup, supplier payment) and inspect its history.

DESIGN:
- Transactions are only ever created here, never edited or deleted
- Every balance returned is the reconciled value, not a raw cache read
- History is newest first with a sequence cursor
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import ledger_service
from ..decorators import require_actor
from ..validation import DomainError, ValidationError, parse_amount_cents, require_int
from carpos.time_utils import parse_iso_datetime


payment_methods_bp = Blueprint("payment_methods", __name__, url_prefix="/api/payment-methods")


def _note(data: dict) -> str | None:
    note = data.get("note")
    if note is not None and not isinstance(note, str):
        raise ValidationError("note must be a string")
    return note


def _movement_response(txn, status: int = 201):
    balance = ledger_service.get_balance(txn.payment_method_id)
    return jsonify({
        "transaction": txn.to_dict(),
        "balance_cents": balance,
    }), status


@payment_methods_bp.post("/<int:payment_method_id>/deposit")
@require_actor
def deposit_route(payment_method_id: int):
    """
    Put money into a payment method.

    Request body:
    {
        "amount": 200.00,     // or "amount_cents": 20000; must be > 0
        "note": "Morning float",  (optional)
        "shift_id": 5             (optional, must not be closed)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        amount_cents = parse_amount_cents(data)

        txn = ledger_service.deposit(
            payment_method_id,
            amount_cents,
            note=_note(data),
            actor_id=g.actor_id,
            shift_id=require_int(data, "shift_id", required=False),
        )
        return _movement_response(txn)

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to deposit")
        return jsonify({"error": "Internal server error"}), 500


@payment_methods_bp.post("/<int:payment_method_id>/withdraw")
@require_actor
def withdraw_route(payment_method_id: int):
    """
    Take money out of a payment method.

    Request body: same as deposit.

    Returns 422 (InsufficientFunds) when the amount exceeds the balance;
    nothing is recorded in that case.
    """
    try:
        data = request.get_json(silent=True) or {}
        amount_cents = parse_amount_cents(data)

        txn = ledger_service.withdraw(
            payment_method_id,
            amount_cents,
            note=_note(data),
            actor_id=g.actor_id,
            shift_id=require_int(data, "shift_id", required=False),
        )
        return _movement_response(txn)

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to withdraw")
        return jsonify({"error": "Internal server error"}), 500


@payment_methods_bp.post("/<int:payment_method_id>/purchase")
@require_actor
def purchase_payment_route(payment_method_id: int):
    """
    Pay a supplier purchase from a payment method.

    Request body:
    {
        "amount": 150.00,
        "note": "Oil filters, invoice 4411"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        amount_cents = parse_amount_cents(data)

        txn = ledger_service.pay_purchase(
            payment_method_id,
            amount_cents,
            note=_note(data),
            actor_id=g.actor_id,
        )
        return _movement_response(txn)

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record purchase payment")
        return jsonify({"error": "Internal server error"}), 500


@payment_methods_bp.post("/<int:payment_method_id>/adjust")
@require_actor
def adjust_route(payment_method_id: int):
    """
    Post a signed correction entry.

    Request body:
    {
        "amount": -12.50,    // non-zero, sign is kept
        "note": "Miscounted float on 03/02"  (required)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        amount_cents = parse_amount_cents(data)

        txn = ledger_service.adjust(
            payment_method_id,
            amount_cents,
            note=_note(data),
            actor_id=g.actor_id,
        )
        return _movement_response(txn)

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust payment method")
        return jsonify({"error": "Internal server error"}), 500


@payment_methods_bp.get("/<int:payment_method_id>/balance")
@require_actor
def balance_route(payment_method_id: int):
    try:
        method = ledger_service.get_payment_method(payment_method_id)
        balance = ledger_service.get_balance(payment_method_id)
        d = method.to_dict()
        d["current_balance_cents"] = balance
        return jsonify({"payment_method": d, "balance_cents": balance}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@payment_methods_bp.get("/<int:payment_method_id>/reconciliation")
@require_actor
def reconciliation_route(payment_method_id: int):
    """Full replay of the method's log; read-only."""
    try:
        report = ledger_service.reconcile(payment_method_id)
        return jsonify({"reconciliation": report.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@payment_methods_bp.get("/<int:payment_method_id>/transactions")
@require_actor
def list_transactions_route(payment_method_id: int):
    """
    Transaction history, newest first.

    Query params:
        start_date, end_date: ISO-8601 (inclusive)
        type: SALE | REFUND | DEPOSIT | WITHDRAWAL | PURCHASE | ADJUSTMENT
        cursor: next_cursor of the previous page
        limit: page size
    """
    default_limit = current_app.config.get("TRANSACTIONS_DEFAULT_LIMIT", 50)
    max_limit = current_app.config.get("TRANSACTIONS_MAX_LIMIT", 500)
    limit = request.args.get("limit", default=default_limit, type=int)
    limit = max(1, min(limit, max_limit))

    try:
        start_dt = parse_iso_datetime(request.args.get("start_date"))
        end_dt = parse_iso_datetime(request.args.get("end_date"))
    except ValueError:
        return jsonify({"error": "start_date and end_date must be ISO-8601 datetimes", "code": "ValidationError"}), 400

    cursor_raw = request.args.get("cursor")
    cursor = None
    if cursor_raw:
        try:
            cursor = int(cursor_raw)
        except ValueError:
            return jsonify({"error": "cursor must be an integer", "code": "ValidationError"}), 400

    txn_type = request.args.get("type")

    try:
        items, next_cursor = ledger_service.list_transactions(
            payment_method_id,
            start=start_dt,
            end=end_dt,
            transaction_type=txn_type.upper() if txn_type else None,
            cursor=cursor,
            limit=limit,
        )
        return jsonify({
            "items": [t.to_dict() for t in items],
            "next_cursor": next_cursor,
            "limit": limit,
            "balance_cents": ledger_service.get_balance(payment_method_id),
        }), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
