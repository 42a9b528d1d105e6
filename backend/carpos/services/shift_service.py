"""
Shift Management Service

WHY: A shift is the period of accountability of one cashier on one
register. Sales are attributed to it and its totals are what the cashier
hands over at the end of the day.

DESIGN PRINCIPLES:
- At most one unclosed (open or paused) shift per register
- At most one unclosed shift per cashier, across all registers
- Closed shifts are terminal; their totals are a frozen ledger snapshot
- Closing an already-closed shift returns it unchanged (safe UI retry)

CONCURRENCY: open_shift validates and inserts while holding the register
and cashier locks; partial unique indexes on the shifts table reject any
writer that still slips through (another process, another host).
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashRegister, PaymentMethod, PaymentMethodTransaction, ServiceOrder, Shift
from ..models.orders import ORDER_STATUS_ACTIVE, ORDER_STATUS_CANCELLED, ORDER_STATUS_COMPLETED
from ..models.payments import SOURCE_SYSTEM, SYSTEM_TYPE_CASH, TXN_REFUND, TXN_SALE
from ..models.registers import (
    REGISTER_STATUS_INACTIVE,
    REGISTER_STATUS_MAINTENANCE,
    SHIFT_STATUS_CLOSED,
    SHIFT_STATUS_OPEN,
    SHIFT_STATUS_PAUSED,
)
from ..validation import ConflictError, NotFoundError, StateError, ValidationError
from carpos.time_utils import utcnow
from .audit_service import record_event
from .concurrency import entity_lock, lock_for_update, run_with_retry
from .payment_method_service import RegisterNotFound


class ShiftNotFound(NotFoundError):
    """Raised when a shift id does not exist."""


class RegisterUnavailable(ConflictError):
    """Raised when the register is in maintenance or switched off."""


class ShiftAlreadyOpenOnRegister(ConflictError):
    """Raised when the register already has an unclosed shift."""


class CashierHasOpenShift(ConflictError):
    """Raised when the cashier already runs a shift on some register."""


class ShiftNotOpen(StateError):
    """Raised when an operation needs an open shift and the shift is not."""


def shift_locks(*, register_id: int | None = None, cashier_id: int | None = None, shift_id: int | None = None):
    keys = []
    if register_id is not None:
        keys.append(("register", register_id))
    if cashier_id is not None:
        keys.append(("cashier", cashier_id))
    if shift_id is not None:
        keys.append(("shift", shift_id))
    return entity_lock(*keys)


def get_shift(shift_id: int) -> Shift:
    shift = db.session.get(Shift, shift_id)
    if not shift:
        raise ShiftNotFound(f"Shift {shift_id} not found")
    return shift


def _unclosed_for_register(register_id: int) -> Shift | None:
    return db.session.query(Shift).filter(
        Shift.register_id == register_id,
        Shift.status != SHIFT_STATUS_CLOSED,
    ).first()


def _unclosed_for_cashier(cashier_id: int) -> Shift | None:
    return db.session.query(Shift).filter(
        Shift.cashier_id == cashier_id,
        Shift.status != SHIFT_STATUS_CLOSED,
    ).first()


def _raise_if_conflicting(register_id: int, cashier_id: int) -> None:
    existing = _unclosed_for_register(register_id)
    if existing:
        raise ShiftAlreadyOpenOnRegister(
            f"Register already has an unclosed shift (shift {existing.id})",
            details={"shift_id": existing.id, "register_id": register_id},
        )

    cashier_shift = _unclosed_for_cashier(cashier_id)
    if cashier_shift:
        raise CashierHasOpenShift(
            f"Cashier already has an unclosed shift on register {cashier_shift.register_id}",
            details={"shift_id": cashier_shift.id, "register_id": cashier_shift.register_id},
        )


def open_shift(shop_id: int, register_id: int, cashier_id: int, *, actor_id: int | None = None) -> Shift:
    """
    Open a new shift on a register.

    Args:
        shop_id: Shop the register must belong to
        register_id: Register to open the shift on
        cashier_id: Cashier who will own the shift
        actor_id: Who performed the action (defaults to the cashier)

    Raises:
        RegisterUnavailable: Register in maintenance or inactive
        ShiftAlreadyOpenOnRegister: Register has an unclosed shift
        CashierHasOpenShift: Cashier already owns an unclosed shift
    """
    if isinstance(cashier_id, bool) or not isinstance(cashier_id, int):
        raise ValidationError("cashier_id must be an integer")

    def _op():
        with shift_locks(register_id=register_id, cashier_id=cashier_id):
            try:
                register = lock_for_update(db.session.query(CashRegister).filter_by(id=register_id)).first()
                if not register or register.shop_id != shop_id:
                    raise RegisterNotFound(f"Register {register_id} not found in shop {shop_id}")

                if register.status == REGISTER_STATUS_MAINTENANCE:
                    raise RegisterUnavailable("Register is under maintenance")
                if register.status == REGISTER_STATUS_INACTIVE:
                    raise RegisterUnavailable("Register is inactive")

                _raise_if_conflicting(register_id, cashier_id)

                shift = Shift(
                    register_id=register_id,
                    cashier_id=cashier_id,
                    status=SHIFT_STATUS_OPEN,
                    opened_at=utcnow(),
                )
                db.session.add(shift)
                db.session.flush()

                record_event(
                    shop_id=register.shop_id,
                    event_type="shift.opened",
                    entity_type="shift",
                    entity_id=shift.id,
                    actor_user_id=actor_id if actor_id is not None else cashier_id,
                    register_id=register_id,
                    shift_id=shift.id,
                    occurred_at=shift.opened_at,
                )
                db.session.commit()
            except IntegrityError:
                # Another process won the race; report what it created
                db.session.rollback()
                _raise_if_conflicting(register_id, cashier_id)
                raise ConflictError("Shift could not be opened due to a concurrent change")
            except Exception:
                db.session.rollback()
                raise

        current_app.logger.info("Shift %s opened on register %s by cashier %s", shift.id, register_id, cashier_id)
        return shift

    return run_with_retry(_op)


def compute_shift_totals(shift_id: int) -> dict:
    """
    Sum the SALE and REFUND entries linked to a shift, on every method
    they were posted to, including methods switched off since.

    total_sales_cents: gross sales
    returns_cents: refunded amount (positive number)
    total_cash_cents / total_non_cash_cents: net takings split by tender
    """
    is_cash = (PaymentMethod.source == SOURCE_SYSTEM) & (PaymentMethod.system_type == SYSTEM_TYPE_CASH)
    amount = PaymentMethodTransaction.amount_cents
    kind = PaymentMethodTransaction.transaction_type

    row = (
        db.session.query(
            func.coalesce(func.sum(case((kind == TXN_SALE, amount), else_=0)), 0),
            func.coalesce(func.sum(case((kind == TXN_REFUND, -amount), else_=0)), 0),
            func.coalesce(func.sum(case((is_cash, amount), else_=0)), 0),
            func.coalesce(func.sum(case((is_cash, 0), else_=amount)), 0),
        )
        .join(PaymentMethod, PaymentMethodTransaction.payment_method_id == PaymentMethod.id)
        .filter(
            PaymentMethodTransaction.shift_id == shift_id,
            kind.in_((TXN_SALE, TXN_REFUND)),
        )
        .one()
    )

    return {
        "total_sales_cents": int(row[0]),
        "returns_cents": int(row[1]),
        "total_cash_cents": int(row[2]),
        "total_non_cash_cents": int(row[3]),
    }


def close_shift(shift_id: int, comment: str | None = None, *, actor_id: int | None = None) -> Shift:
    """
    Close a shift and freeze its totals.

    IDEMPOTENT: closing a closed shift returns the stored record untouched,
    so a UI retry after a lost response is harmless.
    """
    shift = get_shift(shift_id)
    register_id = shift.register_id

    def _op():
        with shift_locks(register_id=register_id, shift_id=shift_id):
            try:
                locked = lock_for_update(db.session.query(Shift).filter_by(id=shift_id)).first()
                if locked.is_closed:
                    return locked

                totals = compute_shift_totals(shift_id)
                locked.total_sales_cents = totals["total_sales_cents"]
                locked.returns_cents = totals["returns_cents"]
                locked.total_cash_cents = totals["total_cash_cents"]
                locked.total_non_cash_cents = totals["total_non_cash_cents"]

                locked.status = SHIFT_STATUS_CLOSED
                locked.closed_at = utcnow()
                locked.closed_by_user_id = actor_id if actor_id is not None else locked.cashier_id
                locked.comment = comment

                record_event(
                    shop_id=locked.register.shop_id,
                    event_type="shift.closed",
                    entity_type="shift",
                    entity_id=locked.id,
                    actor_user_id=locked.closed_by_user_id,
                    register_id=locked.register_id,
                    shift_id=locked.id,
                    occurred_at=locked.closed_at,
                    note=comment,
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        current_app.logger.info(
            "Shift %s closed: sales=%s returns=%s",
            shift_id, locked.total_sales_cents, locked.returns_cents,
        )
        return locked

    return run_with_retry(_op)


def _transition(shift_id: int, from_status: str, to_status: str, event_type: str, actor_id: int | None) -> Shift:
    shift = get_shift(shift_id)

    with shift_locks(register_id=shift.register_id, shift_id=shift_id):
        try:
            locked = lock_for_update(db.session.query(Shift).filter_by(id=shift_id)).first()
            if locked.status != from_status:
                raise ShiftNotOpen(f"Shift {shift_id} is {locked.status}, expected {from_status}")

            locked.status = to_status
            locked.paused_at = utcnow() if to_status == SHIFT_STATUS_PAUSED else None

            record_event(
                shop_id=locked.register.shop_id,
                event_type=event_type,
                entity_type="shift",
                entity_id=locked.id,
                actor_user_id=actor_id,
                register_id=locked.register_id,
                shift_id=locked.id,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    return locked


def pause_shift(shift_id: int, *, actor_id: int | None = None) -> Shift:
    """Open -> paused. The shift still blocks its register and cashier."""
    return _transition(shift_id, SHIFT_STATUS_OPEN, SHIFT_STATUS_PAUSED, "shift.paused", actor_id)


def resume_shift(shift_id: int, *, actor_id: int | None = None) -> Shift:
    """Paused -> open."""
    return _transition(shift_id, SHIFT_STATUS_PAUSED, SHIFT_STATUS_OPEN, "shift.resumed", actor_id)


def require_open_shift(shift_id: int) -> Shift:
    """Shift that can take new orders right now."""
    shift = db.session.get(Shift, shift_id)
    if not shift:
        raise ShiftNotOpen(f"Shift {shift_id} does not exist")
    if shift.status != SHIFT_STATUS_OPEN:
        raise ShiftNotOpen(f"Shift {shift_id} is {shift.status}")
    return shift


def check_unclosed_shift(shop_id: int, cashier_id: int) -> dict:
    """
    Does the cashier still have an open or paused shift in this shop?

    Read-only diagnostic used before the cashier starts work elsewhere.
    """
    shift = (
        db.session.query(Shift)
        .join(CashRegister, Shift.register_id == CashRegister.id)
        .filter(
            CashRegister.shop_id == shop_id,
            Shift.cashier_id == cashier_id,
            Shift.status != SHIFT_STATUS_CLOSED,
        )
        .order_by(Shift.opened_at.desc())
        .first()
    )

    return {
        "has_unclosed": shift is not None,
        "shift_id": shift.id if shift else None,
        "register_id": shift.register_id if shift else None,
        "status": shift.status if shift else None,
        "opened_at": shift.to_dict()["opened_at"] if shift else None,
    }


def get_current_shift(register_id: int) -> Shift | None:
    return _unclosed_for_register(register_id)


def list_shifts(register_id: int, *, status: str | None = None, limit: int = 50) -> list[Shift]:
    q = db.session.query(Shift).filter(Shift.register_id == register_id)
    if status:
        q = q.filter(Shift.status == status)
    return q.order_by(Shift.opened_at.desc(), Shift.id.desc()).limit(limit).all()


def get_shift_summary(shift_id: int) -> dict:
    """
    Shift with totals and order counts.

    Open shifts report live totals from the ledger; closed shifts report
    their frozen snapshot.
    """
    shift = get_shift(shift_id)

    if shift.is_closed:
        totals = {
            "total_sales_cents": shift.total_sales_cents,
            "returns_cents": shift.returns_cents,
            "total_cash_cents": shift.total_cash_cents,
            "total_non_cash_cents": shift.total_non_cash_cents,
        }
    else:
        totals = compute_shift_totals(shift_id)

    counts = dict(
        db.session.query(ServiceOrder.status, func.count(ServiceOrder.id))
        .filter(ServiceOrder.shift_id == shift_id)
        .group_by(ServiceOrder.status)
        .all()
    )

    return {
        "shift": shift.to_dict(),
        "totals": totals,
        "orders": {
            "active": counts.get(ORDER_STATUS_ACTIVE, 0),
            "completed": counts.get(ORDER_STATUS_COMPLETED, 0),
            "cancelled": counts.get(ORDER_STATUS_CANCELLED, 0),
        },
        "is_closed": shift.is_closed,
    }
