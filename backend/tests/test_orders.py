# Overview: Pytest coverage for service order pricing, completion and cancellation.

import pytest
from decimal import Decimal

from carpos.extensions import db
from carpos.models import PaymentMethodTransaction
from carpos.services import catalog_service, ledger_service, order_service, shift_service
from carpos.services.order_service import InvalidDiscount, OrderNotFound, OrderStateError
from carpos.services.payment_method_service import PaymentMethodUnavailable
from carpos.services.shift_service import ShiftNotOpen
from carpos.validation import ValidationError

from conftest import CASHIER_ID


pytestmark = pytest.mark.orders


@pytest.fixture
def shift(shop, register_1):
    return shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)


@pytest.fixture
def order(shift, wash):
    return order_service.create_order(shift.id, vehicle_id=55, service_type_id=wash.id,
                                      staff_ids=[7, 8, 7], client_id=3, actor_id=CASHIER_ID)


class TestPricing:

    @pytest.mark.parametrize("original,pct,expected", [
        (1000, "15", 850),
        (1000, "0", 1000),
        (1000, "100", 0),
        (999, "50", 500),     # 499.5 rounds half-up
        (1, "50", 1),
        (12345, "12.5", 10802),  # 10801.875
        (1999, "33.33", 1333),   # 1332.7333
    ])
    def test_final_price(self, original, pct, expected):
        assert order_service.compute_final_price(original, Decimal(pct)) == expected

    @pytest.mark.parametrize("pct", ["-0.01", "100.01"])
    def test_out_of_range(self, pct):
        with pytest.raises(InvalidDiscount):
            order_service.compute_final_price(1000, Decimal(pct))

    @pytest.mark.parametrize("original,final,expected", [
        (1000, 800, "20.00"),
        (1000, 1000, "0.00"),
        (1000, 1, "99.90"),
        (3000, 1999, "33.37"),   # 33.3666...
        (999, 500, "49.95"),     # 49.9499...
    ])
    def test_discount_from_final_price(self, original, final, expected):
        assert order_service.derive_discount_percent(original, final) == Decimal(expected)

    def test_derived_discount_above_original(self):
        with pytest.raises(InvalidDiscount):
            order_service.derive_discount_percent(1000, 1200)

    def test_final_never_exceeds_original(self):
        for pct in range(0, 101):
            final = order_service.compute_final_price(777, Decimal(pct))
            assert 0 <= final <= 777


class TestCreateOrder:

    def test_created_active_with_catalog_price(self, order, wash):
        assert order.status == "active"
        assert order.original_price_cents == wash.price_cents
        assert order.final_price_cents == wash.price_cents
        assert order.start_time is not None
        assert order.staff_ids == [7, 8]

    def test_price_copied_at_creation(self, order, wash):
        catalog_service.set_service_type_price(wash.id, 5000)
        db.session.refresh(order)
        assert order.original_price_cents == 1000

    def test_requires_open_shift(self, shift, wash):
        shift_service.pause_shift(shift.id)
        with pytest.raises(ShiftNotOpen):
            order_service.create_order(shift.id, vehicle_id=1, service_type_id=wash.id)

    def test_missing_shift(self, wash):
        with pytest.raises(ShiftNotOpen):
            order_service.create_order(9999, vehicle_id=1, service_type_id=wash.id)

    def test_rejects_bad_staff_ids(self, shift, wash):
        with pytest.raises(ValidationError):
            order_service.create_order(shift.id, vehicle_id=1, service_type_id=wash.id, staff_ids=["x"])

    def test_unknown_order(self, db_session):
        with pytest.raises(OrderNotFound):
            order_service.get_order(31337)


class TestDiscount:

    def test_apply_discount(self, order):
        updated = order_service.apply_discount(order.id, "15")
        assert updated.discount_percent == Decimal("15")
        assert updated.final_price_cents == 850

    def test_discount_can_be_changed_again(self, order):
        order_service.apply_discount(order.id, 50)
        updated = order_service.apply_discount(order.id, 10)
        assert updated.final_price_cents == 900

    @pytest.mark.parametrize("value", [-1, 101, "abc", "10.123", None, "1e999999"])
    def test_invalid_discount(self, order, value):
        with pytest.raises(InvalidDiscount):
            order_service.apply_discount(order.id, value)

    def test_discount_after_completion_rejected(self, order, cash_1):
        order_service.complete_order(order.id, cash_1.id)
        with pytest.raises(OrderStateError):
            order_service.apply_discount(order.id, 5)


class TestCompleteOrder:

    def test_discounted_sale_scenario(self, order, cash_1):
        """Original 1000, 15% off -> 850 posted as one SALE on an empty method."""
        assert ledger_service.get_balance(cash_1.id) == 0
        order_service.apply_discount(order.id, 15)

        completed = order_service.complete_order(order.id, cash_1.id, actor_id=CASHIER_ID)

        assert completed.status == "completed"
        assert completed.payment_method_id == cash_1.id
        assert completed.end_time is not None
        assert ledger_service.get_balance(cash_1.id) == 850

        sales = db.session.query(PaymentMethodTransaction).filter_by(order_id=order.id).all()
        assert len(sales) == 1
        assert sales[0].transaction_type == "SALE"
        assert sales[0].amount_cents == 850
        assert sales[0].balance_before_cents == 0
        assert sales[0].balance_after_cents == 850
        assert sales[0].shift_id == order.shift_id

    def test_complete_twice_rejected(self, order, cash_1):
        order_service.complete_order(order.id, cash_1.id)
        with pytest.raises(OrderStateError):
            order_service.complete_order(order.id, cash_1.id)
        assert ledger_service.get_balance(cash_1.id) == 1000

    def test_typed_final_price_derives_discount(self, order, cash_1):
        completed = order_service.complete_order(order.id, cash_1.id, final_price_cents=800)

        assert completed.status == "completed"
        assert completed.final_price_cents == 800
        assert completed.discount_percent == Decimal("20.00")
        assert ledger_service.get_balance(cash_1.id) == 800

        sale = db.session.query(PaymentMethodTransaction).filter_by(order_id=order.id).one()
        assert sale.amount_cents == 800

    def test_typed_price_replaces_earlier_discount(self, order, cash_1):
        order_service.apply_discount(order.id, 50)
        completed = order_service.complete_order(order.id, cash_1.id, final_price_cents=667)
        assert completed.final_price_cents == 667
        assert completed.discount_percent == Decimal("33.30")

    def test_final_price_above_original_rejected(self, order, cash_1):
        with pytest.raises(InvalidDiscount):
            order_service.complete_order(order.id, cash_1.id, final_price_cents=1001)
        assert ledger_service.get_balance(cash_1.id) == 0
        reloaded = order_service.get_order(order.id)
        assert reloaded.status == "active"
        assert reloaded.final_price_cents == 1000

    def test_zero_final_price_rejected(self, order, cash_1):
        with pytest.raises(ValidationError):
            order_service.complete_order(order.id, cash_1.id, final_price_cents=0)

    def test_matching_final_price(self, order, cash_1):
        completed = order_service.complete_order(order.id, cash_1.id, final_price_cents=1000)
        assert completed.status == "completed"

    def test_full_discount_cannot_be_completed(self, order, cash_1):
        order_service.apply_discount(order.id, 100)
        with pytest.raises(ValidationError):
            order_service.complete_order(order.id, cash_1.id)

    def test_method_of_another_register(self, order, register_2):
        from carpos.services.payment_method_service import list_methods

        foreign_cash = [b for b in list_methods(register_2.id) if b.payment_method.system_type == "cash"][0]
        with pytest.raises(PaymentMethodUnavailable):
            order_service.complete_order(order.id, foreign_cash.payment_method_id)
        assert order_service.get_order(order.id).status == "active"

    def test_shared_method_sale(self, order, card_shared):
        order_service.complete_order(order.id, card_shared.id)
        assert ledger_service.get_balance(card_shared.id) == 1000

    def test_closed_shift_blocks_completion(self, order, shift, cash_1):
        shift_service.close_shift(shift.id)
        with pytest.raises(ShiftNotOpen):
            order_service.complete_order(order.id, cash_1.id)

    def test_paused_shift_allows_completion(self, order, shift, cash_1):
        shift_service.pause_shift(shift.id)
        assert order_service.complete_order(order.id, cash_1.id).status == "completed"

    def test_sale_counts_in_shift_totals(self, order, shift, cash_1):
        order_service.complete_order(order.id, cash_1.id)
        closed = shift_service.close_shift(shift.id)
        assert closed.total_sales_cents == 1000
        assert closed.total_cash_cents == 1000


class TestCancelOrder:

    def test_cancel_active_order(self, order):
        cancelled = order_service.cancel_order(order.id, "Client left", actor_id=CASHIER_ID)
        assert cancelled.status == "cancelled"
        assert cancelled.cancel_reason == "Client left"
        assert db.session.query(PaymentMethodTransaction).filter_by(order_id=order.id).count() == 0

    def test_reason_required(self, order):
        with pytest.raises(ValidationError):
            order_service.cancel_order(order.id, "  ")

    def test_cancel_completed_rejected(self, order, cash_1):
        order_service.complete_order(order.id, cash_1.id)
        with pytest.raises(OrderStateError):
            order_service.cancel_order(order.id, "Too late")
        assert ledger_service.get_balance(cash_1.id) == 1000

    def test_complete_cancelled_rejected(self, order, cash_1):
        order_service.cancel_order(order.id, "Client left")
        with pytest.raises(OrderStateError):
            order_service.complete_order(order.id, cash_1.id)

    def test_prior_sale_is_offset_by_refund(self, order, cash_1):
        # A SALE posted against an order that is still active (e.g. prepayment)
        ledger_service.post_transaction(cash_1.id, "SALE", 600, shift_id=order.shift_id, order_id=order.id)

        order_service.cancel_order(order.id, "Work not done")

        entries = (
            db.session.query(PaymentMethodTransaction)
            .filter_by(order_id=order.id)
            .order_by(PaymentMethodTransaction.sequence)
            .all()
        )
        assert [(e.transaction_type, e.amount_cents) for e in entries] == [("SALE", 600), ("REFUND", -600)]
        assert ledger_service.get_balance(cash_1.id) == 0
        assert ledger_service.reconcile(cash_1.id).is_consistent

    def test_cancel_allowed_after_shift_closed(self, order, shift):
        shift_service.close_shift(shift.id)
        assert order_service.cancel_order(order.id, "Shift ended").status == "cancelled"

    def test_list_shift_orders(self, shift, wash, order):
        second = order_service.create_order(shift.id, vehicle_id=56, service_type_id=wash.id)
        order_service.cancel_order(second.id, "Duplicate")

        assert [o.id for o in order_service.list_shift_orders(shift.id)] == [second.id, order.id]
        assert [o.id for o in order_service.list_shift_orders(shift.id, status="active")] == [order.id]
