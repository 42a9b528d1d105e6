# Overview: Service-layer operations for payment method registry; encapsulates business logic and database work.

"""
Payment Method Registry

WHY: Each register offers a set of tenders. Some are its own (a drawer's
cash), some are shared by every register of the shop (one bank card
terminal account, one QR merchant account). Balances belong to the
payment method record, so a SHARED definition must resolve to one record
no matter how many registers bind it.

DESIGN:
- A definition resolves to a record through ``binding_key``:
  shared -> one per shop, dedicated -> one per register.
- Binding is idempotent; re-binding updates the on/off switch.
- Disabled methods stay bound so their history remains visible.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashRegister, PaymentMethod, RegisterPaymentMethod
from ..models.payments import (
    METHOD_STATUS_ACTIVE,
    METHOD_STATUSES,
    SCOPE_DEDICATED,
    SCOPE_SHARED,
    SCOPES,
    SOURCE_CUSTOM,
    SOURCE_SYSTEM,
    SOURCES,
    SYSTEM_TYPES,
)
from ..validation import NotFoundError, StateError, ValidationError, require_choice
from .audit_service import record_event
from .concurrency import entity_lock, run_with_retry
from .ledger_service import get_payment_method


class RegisterNotFound(NotFoundError):
    """Raised when a register id does not exist."""


class NoPaymentMethodAvailable(StateError):
    """Raised when a register has no active payment method to take money with."""


class PaymentMethodUnavailable(StateError):
    """Raised when the chosen method is not an active binding of the register."""


def get_register(register_id: int) -> CashRegister:
    register = db.session.get(CashRegister, register_id)
    if not register:
        raise RegisterNotFound(f"Register {register_id} not found")
    return register


def normalize_definition(definition: dict) -> dict:
    """
    Validate a payment method definition coming from the API or CLI.

    SYSTEM methods need ``system_type``; CUSTOM methods need ``name`` and
    ``code``. Scope defaults to dedicated.
    """
    if not isinstance(definition, dict):
        raise ValidationError("Payment method definition must be an object")

    source = require_choice(definition.get("source"), SOURCES, field="source")
    scope = require_choice(definition.get("scope") or SCOPE_DEDICATED, SCOPES, field="scope")

    clean = {
        "source": source,
        "scope": scope,
        "system_type": None,
        "name": None,
        "code": None,
        "description": (definition.get("description") or None),
        "is_active": definition.get("is_active", True),
        "status": None,
    }

    if not isinstance(clean["is_active"], bool):
        raise ValidationError("is_active must be a boolean")

    if definition.get("status") is not None:
        clean["status"] = require_choice(definition["status"], METHOD_STATUSES, field="status")

    if source == SOURCE_SYSTEM:
        clean["system_type"] = require_choice(definition.get("system_type"), SYSTEM_TYPES, field="system_type")
        clean["name"] = (definition.get("name") or "").strip() or None
    else:
        name = (definition.get("name") or "").strip()
        code = (definition.get("code") or "").strip().upper()
        if not name or not code:
            raise ValidationError("Custom payment methods require name and code")
        if len(code) > 32:
            raise ValidationError("code exceeds max length 32")
        clean["name"] = name[:128]
        clean["code"] = code

    return clean


def binding_key_for(definition: dict, register_id: int) -> str:
    tender = definition["system_type"] if definition["source"] == SOURCE_SYSTEM else definition["code"]
    if definition["scope"] == SCOPE_SHARED:
        return f"shared:{definition['source']}:{tender}"
    return f"register:{register_id}:{definition['source']}:{tender}"


def _bind_locked(register: CashRegister, definition: dict, actor_id: int | None) -> RegisterPaymentMethod:
    key = binding_key_for(definition, register.id)

    method = db.session.query(PaymentMethod).filter_by(
        shop_id=register.shop_id,
        binding_key=key,
    ).first()

    created = method is None
    if created:
        method = PaymentMethod(
            shop_id=register.shop_id,
            register_id=register.id if definition["scope"] == SCOPE_DEDICATED else None,
            source=definition["source"],
            system_type=definition["system_type"],
            name=definition["name"],
            code=definition["code"],
            description=definition["description"],
            scope=definition["scope"],
            binding_key=key,
            status=definition["status"] or METHOD_STATUS_ACTIVE,
            current_balance_cents=0,
            last_sequence=0,
        )
        db.session.add(method)
        db.session.flush()
    else:
        if definition["status"] is not None:
            method.status = definition["status"]
        if definition["description"] is not None:
            method.description = definition["description"]

    binding = db.session.query(RegisterPaymentMethod).filter_by(
        register_id=register.id,
        payment_method_id=method.id,
    ).first()

    if binding is None:
        binding = RegisterPaymentMethod(
            register_id=register.id,
            payment_method_id=method.id,
            is_active=definition["is_active"],
        )
        db.session.add(binding)
    else:
        binding.is_active = definition["is_active"]

    db.session.flush()

    record_event(
        shop_id=register.shop_id,
        event_type="payment_method.created" if created else "payment_method.bound",
        entity_type="payment_method",
        entity_id=method.id,
        actor_user_id=actor_id,
        register_id=register.id,
        payment_method_id=method.id,
        note=f"{method.scope} {method.display_name}",
    )
    return binding


def bind_payment_method(
    register_id: int,
    definition: dict,
    *,
    actor_id: int | None = None,
    commit: bool = True,
) -> RegisterPaymentMethod:
    """
    Register a SYSTEM or CUSTOM method on a register.

    SHARED scope reuses the shop-level record when one exists; DEDICATED
    scope creates (or reuses) the register's own record with its own balance.

    Returns:
        The register binding (its to_dict() includes the method)
    """
    clean = normalize_definition(definition)

    def _op():
        register = get_register(register_id)
        # Shared records are per shop, so concurrent binds race on the shop
        with entity_lock(("shop_payment_methods", register.shop_id)):
            try:
                binding = _bind_locked(register, clean, actor_id)
                if commit:
                    db.session.commit()
            except Exception:
                if commit:
                    db.session.rollback()
                raise
            return binding

    if not commit:
        return _op()
    return run_with_retry(_op, retry_on=(IntegrityError,))


def list_methods(register_id: int, *, include_inactive: bool = True) -> list[RegisterPaymentMethod]:
    """All bindings of a register, including disabled ones for history display."""
    get_register(register_id)

    q = (
        db.session.query(RegisterPaymentMethod)
        .join(PaymentMethod, RegisterPaymentMethod.payment_method_id == PaymentMethod.id)
        .filter(RegisterPaymentMethod.register_id == register_id)
    )
    if not include_inactive:
        q = q.filter(
            RegisterPaymentMethod.is_active.is_(True),
            PaymentMethod.status == METHOD_STATUS_ACTIVE,
        )
    return q.order_by(RegisterPaymentMethod.id.asc()).all()


def list_active_methods(register_id: int) -> list[RegisterPaymentMethod]:
    """Methods a cashier may take money with right now."""
    return list_methods(register_id, include_inactive=False)


def update_bindings(register_id: int, updates: list[dict], *, actor_id: int | None = None) -> list[RegisterPaymentMethod]:
    """
    Patch the active set of a register.

    Each update names a bound ``payment_method_id`` and may carry
    ``is_active`` (this register's switch) and/or ``status`` (the method
    itself, which affects every register sharing it).
    """
    if not isinstance(updates, list) or not updates:
        raise ValidationError("payment_methods must be a non-empty list")

    register = get_register(register_id)

    try:
        for item in updates:
            if not isinstance(item, dict) or not isinstance(item.get("payment_method_id"), int):
                raise ValidationError("Each update needs an integer payment_method_id")

            binding = db.session.query(RegisterPaymentMethod).filter_by(
                register_id=register_id,
                payment_method_id=item["payment_method_id"],
            ).first()
            if not binding:
                raise NotFoundError(
                    f"Payment method {item['payment_method_id']} is not bound to register {register_id}"
                )

            if "is_active" in item:
                if not isinstance(item["is_active"], bool):
                    raise ValidationError("is_active must be a boolean")
                binding.is_active = item["is_active"]
            if item.get("status") is not None:
                binding.payment_method.status = require_choice(item["status"], METHOD_STATUSES, field="status")

            record_event(
                shop_id=register.shop_id,
                event_type="payment_method.updated",
                entity_type="payment_method",
                entity_id=binding.payment_method_id,
                actor_user_id=actor_id,
                register_id=register_id,
                payment_method_id=binding.payment_method_id,
                note=f"is_active={binding.is_active} status={binding.payment_method.status}",
            )

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return list_methods(register_id)


def resolve_sale_method(register_id: int, payment_method_id: int) -> PaymentMethod:
    """
    Check that money can be taken on a register with the given method.

    Raises:
        NoPaymentMethodAvailable: Register has no active methods at all
        PaymentMethodUnavailable: Chosen method is not active on this register
        PaymentMethodNotFound: Unknown method id
    """
    active = list_active_methods(register_id)
    if not active:
        raise NoPaymentMethodAvailable(f"Register {register_id} has no active payment methods")

    method = get_payment_method(payment_method_id)
    if payment_method_id not in {b.payment_method_id for b in active}:
        raise PaymentMethodUnavailable(
            f"Payment method {method.display_name} is not available on register {register_id}"
        )
    return method
