"""
Service Order Engine

WHY: A service order is the billable unit of the car-service counter. It
is priced from the service catalog when it starts, may be discounted while
the work is under way, and turns into exactly one SALE on a payment method
when it is completed.

DESIGN PRINCIPLES:
- The creation call carries everything (shift, vehicle, service, staff);
  the order passes pending -> active inside that one call
- The price is copied at creation; later price-list edits do not touch it
- Completion is all-or-nothing: order state and SALE entry commit together
- Ledger entries are never edited; cancelling a paid order posts a REFUND
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import PaymentMethodTransaction, ServiceOrder, ServiceOrderStaff
from ..models.orders import ORDER_STATUS_ACTIVE, ORDER_STATUS_CANCELLED, ORDER_STATUS_COMPLETED, ORDER_STATUS_PENDING
from ..models.payments import TXN_REFUND, TXN_SALE
from ..validation import ConflictError, NotFoundError, StateError, ValidationError, parse_percent
from carpos.time_utils import utcnow
from .audit_service import record_event
from .catalog_service import get_service_type_for_shop
from .concurrency import entity_lock, lock_for_update, run_with_retry
from .ledger_service import post_transaction
from .payment_method_service import resolve_sale_method
from .shift_service import ShiftNotOpen, require_open_shift


class OrderNotFound(NotFoundError):
    """Raised when an order id does not exist."""


class InvalidDiscount(ValidationError):
    """Raised for a discount outside 0..100 percent or a final price above the original."""


class OrderStateError(StateError):
    """Raised when the order's lifecycle state forbids the operation."""


HUNDRED = Decimal("100")


def compute_final_price(original_price_cents: int, discount_percent) -> int:
    """
    Final price in cents: original * (1 - discount/100), rounded half-up.

    Always within [0, original] for a discount within [0, 100].
    """
    pct = Decimal(discount_percent)
    if pct < 0 or pct > HUNDRED:
        raise InvalidDiscount(f"discount_percent must be between 0 and 100, got {pct}")
    value = (Decimal(original_price_cents) * (HUNDRED - pct) / HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(value)


def derive_discount_percent(original_price_cents: int, final_price_cents: int) -> Decimal:
    """
    Discount implied by a typed final price: (1 - final/original) * 100,
    rounded half-up to two places.
    """
    if final_price_cents > original_price_cents:
        raise InvalidDiscount(
            "final_price cannot exceed the original price",
            details={"original_cents": original_price_cents, "given_cents": final_price_cents},
        )
    if original_price_cents <= 0:
        return Decimal("0.00")
    pct = (HUNDRED - Decimal(final_price_cents) * HUNDRED / Decimal(original_price_cents))
    return pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def get_order(order_id: int) -> ServiceOrder:
    order = db.session.get(ServiceOrder, order_id)
    if not order:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


def _clean_ids(values, field: str) -> list[int]:
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValidationError(f"{field} must be a list of integers")
    clean = []
    for v in values:
        if isinstance(v, bool) or not isinstance(v, int):
            raise ValidationError(f"{field} must be a list of integers")
        if v not in clean:
            clean.append(v)
    return clean


def create_order(
    shift_id: int,
    vehicle_id: int,
    service_type_id: int,
    staff_ids: list[int] | None = None,
    client_id: int | None = None,
    notes: str | None = None,
    *,
    actor_id: int | None = None,
) -> ServiceOrder:
    """
    Start a service order on an open shift.

    Raises:
        ShiftNotOpen: Shift missing, paused or closed
        ServiceTypeNotFound: Service type unknown in the shift's shop
    """
    for value, field in ((vehicle_id, "vehicle_id"), (service_type_id, "service_type_id")):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{field} must be an integer")
    if client_id is not None and (isinstance(client_id, bool) or not isinstance(client_id, int)):
        raise ValidationError("client_id must be an integer")
    staff = _clean_ids(staff_ids, "staff_ids")

    with entity_lock(("shift", shift_id)):
        try:
            shift = require_open_shift(shift_id)
            shop_id = shift.register.shop_id
            service_type = get_service_type_for_shop(shop_id, service_type_id)

            order = ServiceOrder(
                shop_id=shop_id,
                shift_id=shift_id,
                client_id=client_id,
                vehicle_id=vehicle_id,
                service_type_id=service_type_id,
                status=ORDER_STATUS_PENDING,
                original_price_cents=service_type.price_cents,
                discount_percent=Decimal("0"),
                final_price_cents=service_type.price_cents,
                notes=notes,
                created_by_user_id=actor_id,
            )
            db.session.add(order)
            db.session.flush()

            for staff_id in staff:
                db.session.add(ServiceOrderStaff(order_id=order.id, staff_id=staff_id))

            # All parts attached: the order is live
            order.status = ORDER_STATUS_ACTIVE
            order.start_time = utcnow()

            record_event(
                shop_id=shop_id,
                event_type="order.started",
                entity_type="service_order",
                entity_id=order.id,
                actor_user_id=actor_id,
                register_id=shift.register_id,
                shift_id=shift_id,
                order_id=order.id,
                occurred_at=order.start_time,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    return order


def apply_discount(order_id: int, discount_percent, *, actor_id: int | None = None) -> ServiceOrder:
    """Set the discount of an active order and reprice it."""
    try:
        pct = parse_percent(discount_percent)
    except ValidationError as exc:
        raise InvalidDiscount(str(exc))
    if pct < 0 or pct > HUNDRED:
        raise InvalidDiscount(f"discount_percent must be between 0 and 100, got {pct}")

    get_order(order_id)

    with entity_lock(("order", order_id)):
        try:
            order = lock_for_update(db.session.query(ServiceOrder).filter_by(id=order_id)).first()
            if order.status != ORDER_STATUS_ACTIVE:
                raise OrderStateError(f"Cannot change price of an order in status {order.status}")

            order.discount_percent = pct
            order.final_price_cents = compute_final_price(order.original_price_cents, pct)

            record_event(
                shop_id=order.shop_id,
                event_type="order.discount_applied",
                entity_type="service_order",
                entity_id=order.id,
                actor_user_id=actor_id,
                shift_id=order.shift_id,
                order_id=order.id,
                note=f"{pct}% -> {order.final_price_cents}",
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    return order


def complete_order(
    order_id: int,
    payment_method_id: int,
    *,
    actor_id: int | None = None,
    final_price_cents: int | None = None,
) -> ServiceOrder:
    """
    Take payment for an active order.

    Posts one SALE (+final price) to the chosen method, linked to the order
    and its shift, and marks the order completed in the same DB transaction.

    Args:
        final_price_cents: Price typed by the cashier. It replaces the
            order's price and the discount is derived from it.

    Raises:
        OrderStateError: Order not active
        ShiftNotOpen: Order's shift already closed
        NoPaymentMethodAvailable / PaymentMethodUnavailable
        InvalidDiscount: Final price above the original price
        ValidationError: Non-positive final price
    """
    if isinstance(payment_method_id, bool) or not isinstance(payment_method_id, int):
        raise ValidationError("payment_method_id must be an integer")
    if final_price_cents is not None:
        if isinstance(final_price_cents, bool) or not isinstance(final_price_cents, int):
            raise ValidationError("final_price must be a whole number of cents")
        if final_price_cents <= 0:
            raise ValidationError("final_price must be positive")

    shift_id = get_order(order_id).shift_id

    def _op():
        with entity_lock(("order", order_id), ("shift", shift_id), ("payment_method", payment_method_id)):
            try:
                order = lock_for_update(db.session.query(ServiceOrder).filter_by(id=order_id)).first()
                if order.status != ORDER_STATUS_ACTIVE:
                    raise OrderStateError(f"Cannot complete order in status {order.status}")

                shift = order.shift
                if shift.is_closed:
                    raise ShiftNotOpen(f"Shift {shift.id} is closed")

                if final_price_cents is not None and final_price_cents != order.final_price_cents:
                    order.discount_percent = derive_discount_percent(order.original_price_cents, final_price_cents)
                    order.final_price_cents = final_price_cents
                if order.final_price_cents <= 0:
                    raise ValidationError("final_price must be positive")

                resolve_sale_method(shift.register_id, payment_method_id)

                txn = post_transaction(
                    payment_method_id,
                    TXN_SALE,
                    order.final_price_cents,
                    note=f"Service order #{order.id}",
                    actor_id=actor_id,
                    shift_id=order.shift_id,
                    order_id=order.id,
                    commit=False,
                )

                order.status = ORDER_STATUS_COMPLETED
                order.end_time = utcnow()
                order.payment_method_id = payment_method_id
                order.completed_by_user_id = actor_id

                record_event(
                    shop_id=order.shop_id,
                    event_type="order.completed",
                    entity_type="service_order",
                    entity_id=order.id,
                    actor_user_id=actor_id,
                    register_id=shift.register_id,
                    shift_id=order.shift_id,
                    order_id=order.id,
                    payment_method_id=payment_method_id,
                    occurred_at=order.end_time,
                    note=f"sale transaction {txn.id}",
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        current_app.logger.info(
            "Order %s completed for %s cents on payment method %s",
            order_id, order.final_price_cents, payment_method_id,
        )
        return order

    return run_with_retry(_op, retry_on=(IntegrityError,))


def _net_sales_by_method(order_id: int) -> dict[int, int]:
    rows = (
        db.session.query(
            PaymentMethodTransaction.payment_method_id,
            func.sum(PaymentMethodTransaction.amount_cents),
        )
        .filter(
            PaymentMethodTransaction.order_id == order_id,
            PaymentMethodTransaction.transaction_type.in_((TXN_SALE, TXN_REFUND)),
        )
        .group_by(PaymentMethodTransaction.payment_method_id)
        .all()
    )
    return {pm_id: int(net or 0) for pm_id, net in rows}


def cancel_order(order_id: int, reason: str, *, actor_id: int | None = None) -> ServiceOrder:
    """
    Cancel an active order.

    Any SALE already linked to the order is offset by a REFUND on the same
    method; the SALE entry itself is never touched.
    """
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")
    reason = str(reason).strip()[:255]

    order = get_order(order_id)
    shift_id = order.shift_id
    method_ids = sorted(_net_sales_by_method(order_id))

    locks = [("order", order_id), ("shift", shift_id)] + [("payment_method", pm) for pm in method_ids]

    def _op():
        with entity_lock(*locks):
            try:
                locked = lock_for_update(db.session.query(ServiceOrder).filter_by(id=order_id)).first()
                if locked.status != ORDER_STATUS_ACTIVE:
                    raise OrderStateError(f"Cannot cancel order in status {locked.status}")

                net_by_method = _net_sales_by_method(order_id)
                if set(net_by_method) - set(method_ids):
                    raise ConflictError("Order payments changed while cancelling; retry")

                for pm_id, net in sorted(net_by_method.items()):
                    if net > 0:
                        post_transaction(
                            pm_id,
                            TXN_REFUND,
                            net,
                            note=f"Cancel service order #{order_id}: {reason}",
                            actor_id=actor_id,
                            shift_id=locked.shift_id,
                            order_id=order_id,
                            commit=False,
                        )

                locked.status = ORDER_STATUS_CANCELLED
                locked.end_time = utcnow()
                locked.cancel_reason = reason
                locked.cancelled_by_user_id = actor_id

                record_event(
                    shop_id=locked.shop_id,
                    event_type="order.cancelled",
                    entity_type="service_order",
                    entity_id=locked.id,
                    actor_user_id=actor_id,
                    shift_id=locked.shift_id,
                    order_id=locked.id,
                    occurred_at=locked.end_time,
                    note=reason,
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
        return locked

    return run_with_retry(_op, retry_on=(IntegrityError,))


def list_shift_orders(shift_id: int, *, status: str | None = None) -> list[ServiceOrder]:
    q = db.session.query(ServiceOrder).filter(ServiceOrder.shift_id == shift_id)
    if status:
        q = q.filter(ServiceOrder.status == status)
    return q.order_by(ServiceOrder.id.desc()).all()
