from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from carpos.time_utils import to_utc_z


SOURCE_SYSTEM = "system"
SOURCE_CUSTOM = "custom"
SOURCES = (SOURCE_SYSTEM, SOURCE_CUSTOM)

SYSTEM_TYPE_CASH = "cash"
SYSTEM_TYPE_CARD = "card"
SYSTEM_TYPE_QR = "qr"
SYSTEM_TYPES = (SYSTEM_TYPE_CASH, SYSTEM_TYPE_CARD, SYSTEM_TYPE_QR)

SCOPE_DEDICATED = "dedicated"
SCOPE_SHARED = "shared"
SCOPES = (SCOPE_DEDICATED, SCOPE_SHARED)

METHOD_STATUS_ACTIVE = "active"
METHOD_STATUS_INACTIVE = "inactive"
METHOD_STATUSES = (METHOD_STATUS_ACTIVE, METHOD_STATUS_INACTIVE)

TXN_SALE = "SALE"
TXN_REFUND = "REFUND"
TXN_DEPOSIT = "DEPOSIT"
TXN_WITHDRAWAL = "WITHDRAWAL"
TXN_PURCHASE = "PURCHASE"
TXN_ADJUSTMENT = "ADJUSTMENT"
TRANSACTION_TYPES = (TXN_SALE, TXN_REFUND, TXN_DEPOSIT, TXN_WITHDRAWAL, TXN_PURCHASE, TXN_ADJUSTMENT)


class PaymentMethod(db.Model):
    """
    A channel of funds (cash, card, QR or a custom tender) with its own balance.

    DEDICATED methods belong to one register; SHARED methods belong to the
    shop and are bound to many registers. ``binding_key`` makes the
    resolution of a definition to a record deterministic, so binding the same
    shared definition twice reuses the existing row.

    ``current_balance_cents`` is a cache of the transaction log. Only the
    ledger service writes it, and only together with a new log entry.
    """
    __tablename__ = "payment_methods"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "binding_key", name="uq_payment_methods_shop_binding_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True, index=True)

    source = db.Column(db.String(16), nullable=False)
    system_type = db.Column(db.String(16), nullable=True)
    name = db.Column(db.String(128), nullable=True)
    code = db.Column(db.String(32), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    scope = db.Column(db.String(16), nullable=False, default=SCOPE_DEDICATED)
    binding_key = db.Column(db.String(96), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=METHOD_STATUS_ACTIVE, index=True)

    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    last_sequence = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shop = db.relationship("Shop", backref=db.backref("payment_methods", lazy=True))
    register = db.relationship("CashRegister", backref=db.backref("dedicated_payment_methods", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def display_name(self) -> str:
        if self.source == SOURCE_SYSTEM:
            return self.name or (self.system_type or "").upper()
        return self.name or self.code or f"Method {self.id}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "register_id": self.register_id,
            "source": self.source,
            "system_type": self.system_type,
            "name": self.display_name,
            "code": self.code,
            "description": self.description,
            "scope": self.scope,
            "status": self.status,
            "current_balance_cents": self.current_balance_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class RegisterPaymentMethod(db.Model):
    """Binding of a payment method to a register, with its own on/off switch."""
    __tablename__ = "register_payment_methods"
    __table_args__ = (
        db.UniqueConstraint("register_id", "payment_method_id", name="uq_register_payment_methods_pair"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    register = db.relationship("CashRegister", backref=db.backref("payment_method_bindings", lazy=True))
    payment_method = db.relationship("PaymentMethod", backref=db.backref("bindings", lazy=True))

    @property
    def is_usable(self) -> bool:
        return bool(self.is_active) and self.payment_method.status == METHOD_STATUS_ACTIVE

    def to_dict(self) -> dict:
        d = self.payment_method.to_dict()
        d["binding_id"] = self.id
        d["is_active"] = self.is_active
        d["is_usable"] = self.is_usable
        return d


class PaymentMethodTransaction(db.Model):
    """
    Append-only ledger entry of a payment method.

    ``sequence`` numbers the entries of one method 1, 2, 3, ... and is unique
    per method, so two writers that read the same balance can never both
    commit. Each entry carries the balance before and after it; corrections
    are new ADJUSTMENT entries, never edits.

    IMMUTABLE: Records are never updated or deleted (enforced by the mapper
    listeners below).
    """
    __tablename__ = "payment_method_transactions"
    __table_args__ = (
        db.UniqueConstraint("payment_method_id", "sequence", name="uq_pm_transactions_method_sequence"),
        db.CheckConstraint(
            "balance_after_cents = balance_before_cents + amount_cents",
            name="ck_pm_transactions_balance_chain",
        ),
        db.Index("ix_pm_transactions_method_created", "payment_method_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)

    # Signed: positive for money in, negative for money out
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_before_cents = db.Column(db.Integer, nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    note = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_by_user_id = db.Column(db.Integer, nullable=True, index=True)

    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("service_orders.id"), nullable=True, index=True)

    payment_method = db.relationship("PaymentMethod", backref=db.backref("transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_method_id": self.payment_method_id,
            "sequence": self.sequence,
            "type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "balance_before_cents": self.balance_before_cents,
            "balance_after_cents": self.balance_after_cents,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
            "created_by_user_id": self.created_by_user_id,
            "shift_id": self.shift_id,
            "order_id": self.order_id,
        }


class ImmutableTransactionError(RuntimeError):
    """Raised when code tries to rewrite or remove a ledger entry."""


@event.listens_for(PaymentMethodTransaction, "before_update")
def _reject_transaction_update(mapper, connection, target):
    raise ImmutableTransactionError(f"Ledger entry {target.id} is immutable")


@event.listens_for(PaymentMethodTransaction, "before_delete")
def _reject_transaction_delete(mapper, connection, target):
    raise ImmutableTransactionError(f"Ledger entry {target.id} cannot be deleted")
