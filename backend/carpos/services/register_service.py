"""
Cash Register Management Service

WHY: Registers must exist, with their payment methods bound, before a
cashier can open a shift on them. Status drives shift eligibility:
only active registers accept new shifts.

DESIGN PRINCIPLES:
- Registers are never deleted (history stays attached to them)
- A register with an unclosed shift cannot be taken out of service
- Payment methods supplied at creation are bound in the same transaction
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashRegister, Shift
from ..models.registers import (
    REGISTER_STATUS_ACTIVE,
    REGISTER_STATUSES,
    REGISTER_TYPES,
    SHIFT_STATUS_CLOSED,
)
from ..validation import ConflictError, ValidationError, require_choice
from .audit_service import record_event
from .catalog_service import get_shop
from .payment_method_service import get_register


class RegisterError(ConflictError):
    """Raised for register operation conflicts."""


def create_register(
    shop_id: int,
    name: str,
    register_type: str = "STATIONARY",
    location: str | None = None,
    payment_methods: list[dict] | None = None,
    *,
    actor_id: int | None = None,
) -> CashRegister:
    """
    Create a register and bind its initial payment methods.

    Args:
        shop_id: Shop this register belongs to
        name: Display name, unique within the shop
        register_type: STATIONARY, MOBILE, EXPRESS or SELF_SERVICE
        location: Physical location in the shop
        payment_methods: Definitions accepted by bind_payment_method
    """
    from .payment_method_service import bind_payment_method

    get_shop(shop_id)

    if not name or not name.strip():
        raise ValidationError("name is required")
    register_type = require_choice(register_type, REGISTER_TYPES, field="type")

    existing = db.session.query(CashRegister).filter_by(shop_id=shop_id, name=name.strip()).first()
    if existing:
        raise RegisterError(f"Register '{name}' already exists in this shop")

    register = CashRegister(
        shop_id=shop_id,
        name=name.strip(),
        register_type=register_type,
        location=location,
        status=REGISTER_STATUS_ACTIVE,
    )

    try:
        db.session.add(register)
        db.session.flush()

        for definition in payment_methods or []:
            bind_payment_method(register.id, definition, actor_id=actor_id, commit=False)

        record_event(
            shop_id=shop_id,
            event_type="register.created",
            entity_type="cash_register",
            entity_id=register.id,
            actor_user_id=actor_id,
            register_id=register.id,
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise RegisterError(f"Register '{name}' already exists in this shop")
    except Exception:
        db.session.rollback()
        raise

    return register


def list_registers(shop_id: int) -> list[CashRegister]:
    get_shop(shop_id)
    return db.session.query(CashRegister).filter_by(
        shop_id=shop_id,
    ).order_by(CashRegister.name).all()


def get_unclosed_shift(register_id: int) -> Shift | None:
    """The open or paused shift of a register, if any."""
    return db.session.query(Shift).filter(
        Shift.register_id == register_id,
        Shift.status != SHIFT_STATUS_CLOSED,
    ).first()


def register_detail(register_id: int) -> dict:
    from .payment_method_service import list_methods

    register = get_register(register_id)
    current = get_unclosed_shift(register_id)

    result = register.to_dict()
    result["current_shift"] = current.to_dict() if current else None
    result["payment_methods"] = [b.to_dict() for b in list_methods(register_id)]
    return result


def update_register_status(register_id: int, status: str, *, actor_id: int | None = None) -> CashRegister:
    """
    Move a register between active, inactive and maintenance.

    Taking a register out of service while a shift is still running would
    strand that shift, so it is refused until the shift is closed.
    """
    from .shift_service import shift_locks

    status = require_choice(status, REGISTER_STATUSES, field="status")
    register = get_register(register_id)

    # Same lock as open_shift, so a shift cannot open while we flip status
    with shift_locks(register_id=register_id):
        try:
            if status != REGISTER_STATUS_ACTIVE and get_unclosed_shift(register_id):
                raise RegisterError("Cannot take register out of service with an unclosed shift. Close shift first.")

            previous = register.status
            register.status = status

            record_event(
                shop_id=register.shop_id,
                event_type="register.status_changed",
                entity_type="cash_register",
                entity_id=register.id,
                actor_user_id=actor_id,
                register_id=register.id,
                note=f"{previous} -> {status}",
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    return register
