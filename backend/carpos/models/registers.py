from __future__ import annotations

from ..extensions import db
from carpos.time_utils import to_utc_z


REGISTER_TYPES = ("STATIONARY", "MOBILE", "EXPRESS", "SELF_SERVICE")

REGISTER_STATUS_ACTIVE = "active"
REGISTER_STATUS_INACTIVE = "inactive"
REGISTER_STATUS_MAINTENANCE = "maintenance"
REGISTER_STATUSES = (REGISTER_STATUS_ACTIVE, REGISTER_STATUS_INACTIVE, REGISTER_STATUS_MAINTENANCE)

SHIFT_STATUS_OPEN = "open"
SHIFT_STATUS_PAUSED = "paused"
SHIFT_STATUS_CLOSED = "closed"

# Rows matching this predicate are "unclosed" and subject to the uniqueness indexes below.
_UNCLOSED = db.text("status != 'closed'")


class CashRegister(db.Model):
    """
    Physical or virtual POS terminal of a shop.

    A register owns at most one unclosed shift at a time and a set of
    payment method bindings. Registers are never deleted; they move between
    active, inactive and maintenance.
    """
    __tablename__ = "cash_registers"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "name", name="uq_cash_registers_shop_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    name = db.Column(db.String(128), nullable=False)
    register_type = db.Column(db.String(16), nullable=False, default="STATIONARY")
    location = db.Column(db.String(128), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=REGISTER_STATUS_ACTIVE, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    shop = db.relationship("Shop", backref=db.backref("registers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "name": self.name,
            "type": self.register_type,
            "location": self.location,
            "status": self.status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Shift(db.Model):
    """
    A cashier's working session on one register.

    LIFECYCLE: open -> (paused <-> open) -> closed. Closed is terminal and
    freezes the aggregate totals, which are computed from the ledger and
    never edited directly.

    The two partial unique indexes keep at most one unclosed shift per
    register and per cashier even if two writers slip past the service
    checks.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index(
            "uq_shifts_register_unclosed", "register_id", unique=True,
            sqlite_where=_UNCLOSED, postgresql_where=_UNCLOSED,
        ),
        db.Index(
            "uq_shifts_cashier_unclosed", "cashier_id", unique=True,
            sqlite_where=_UNCLOSED, postgresql_where=_UNCLOSED,
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    cashier_id = db.Column(db.Integer, nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=SHIFT_STATUS_OPEN, index=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    paused_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by_user_id = db.Column(db.Integer, nullable=True)

    # Snapshot written on close (all amounts in cents)
    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    total_non_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    returns_cents = db.Column(db.Integer, nullable=False, default=0)

    comment = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    register = db.relationship("CashRegister", backref=db.backref("shifts", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_closed(self) -> bool:
        return self.status == SHIFT_STATUS_CLOSED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "register_id": self.register_id,
            "shop_id": self.register.shop_id if self.register else None,
            "cashier_id": self.cashier_id,
            "status": self.status,
            "opened_at": to_utc_z(self.opened_at),
            "paused_at": to_utc_z(self.paused_at),
            "closed_at": to_utc_z(self.closed_at),
            "closed_by_user_id": self.closed_by_user_id,
            "total_sales_cents": self.total_sales_cents,
            "total_cash_cents": self.total_cash_cents,
            "total_non_cash_cents": self.total_non_cash_cents,
            "returns_cents": self.returns_cents,
            "comment": self.comment,
            "version_id": self.version_id,
        }
