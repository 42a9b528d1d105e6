from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from carpos.time_utils import to_utc_z


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_ACTIVE = "active"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_CANCELLED = "cancelled"
ORDER_TERMINAL_STATUSES = (ORDER_STATUS_COMPLETED, ORDER_STATUS_CANCELLED)


class ServiceOrder(db.Model):
    """
    One billable unit of work (a car-service sale) done during a shift.

    LIFECYCLE:
    - pending: transient while the creation call assembles the order
    - active: service in progress; discount may still change
    - completed: SALE posted to the ledger (terminal)
    - cancelled: no sale, or sale offset by a REFUND (terminal)

    PRICING: original_price_cents is copied from the service type when the
    order is created. A discount sets final_price_cents to the original price
    less discount_percent, rounded half-up to the cent. A final price typed at
    completion is kept as given and discount_percent is derived from it.
    """
    __tablename__ = "service_orders"
    __table_args__ = (
        db.CheckConstraint("discount_percent >= 0 AND discount_percent <= 100", name="ck_service_orders_discount_range"),
        db.CheckConstraint("final_price_cents <= original_price_cents", name="ck_service_orders_final_le_original"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)

    # External catalog references (client, vehicle, staff live outside this service)
    client_id = db.Column(db.Integer, nullable=True, index=True)
    vehicle_id = db.Column(db.Integer, nullable=False, index=True)
    service_type_id = db.Column(db.Integer, db.ForeignKey("service_types.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)

    original_price_cents = db.Column(db.Integer, nullable=False)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0"))
    final_price_cents = db.Column(db.Integer, nullable=False)

    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=True)

    start_time = db.Column(db.DateTime(timezone=True), nullable=True)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    completed_by_user_id = db.Column(db.Integer, nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    shift = db.relationship("Shift", backref=db.backref("orders", lazy=True))
    service_type = db.relationship("ServiceType")
    staff = db.relationship("ServiceOrderStaff", backref="order", lazy=True, cascade="all, delete-orphan")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def staff_ids(self) -> list[int]:
        return sorted(s.staff_id for s in self.staff)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "shift_id": self.shift_id,
            "client_id": self.client_id,
            "vehicle_id": self.vehicle_id,
            "service_type_id": self.service_type_id,
            "staff_ids": self.staff_ids,
            "status": self.status,
            "original_price_cents": self.original_price_cents,
            "discount_percent": str(Decimal(self.discount_percent).quantize(Decimal("0.01"))),
            "final_price_cents": self.final_price_cents,
            "payment_method_id": self.payment_method_id,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "cancel_reason": self.cancel_reason,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "completed_by_user_id": self.completed_by_user_id,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "version_id": self.version_id,
        }


class ServiceOrderStaff(db.Model):
    """Staff member assigned to an order (staff records live in the HR service)."""
    __tablename__ = "service_order_staff"
    __table_args__ = (
        db.UniqueConstraint("order_id", "staff_id", name="uq_service_order_staff_pair"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("service_orders.id"), nullable=False, index=True)
    staff_id = db.Column(db.Integer, nullable=False, index=True)
