# Overview: Pytest coverage for the shift lifecycle.

"""
Shift Manager Tests

Verifies:
1. At most one unclosed shift per register and per cashier
2. Registers in maintenance or inactive refuse new shifts
3. Closing snapshots SALE/REFUND totals and is idempotent
4. Pause/resume transitions
"""

import pytest
from sqlalchemy.exc import IntegrityError

from carpos.extensions import db
from carpos.models import Shift
from carpos.services import ledger_service, register_service, shift_service
from carpos.services.register_service import RegisterError
from carpos.services.shift_service import (
    CashierHasOpenShift,
    RegisterUnavailable,
    ShiftAlreadyOpenOnRegister,
    ShiftNotFound,
    ShiftNotOpen,
)
from carpos.validation import ConflictError

from conftest import CASHIER_ID, OTHER_CASHIER_ID, MANAGER_ID


pytestmark = pytest.mark.shifts


class TestOpenShift:

    def test_register_and_cashier_exclusivity_scenario(self, shop, register_1, register_2):
        first = shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)
        assert first.status == "open"

        with pytest.raises(ConflictError):
            shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)

        with pytest.raises(ConflictError):
            shift_service.open_shift(shop.id, register_2.id, CASHIER_ID)

        shift_service.close_shift(first.id, actor_id=CASHIER_ID)

        second = shift_service.open_shift(shop.id, register_2.id, CASHIER_ID)
        assert second.status == "open"
        assert second.register_id == register_2.id

    def test_specific_conflict_types(self, shop, register_1, register_2):
        shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)

        with pytest.raises(ShiftAlreadyOpenOnRegister) as exc:
            shift_service.open_shift(shop.id, register_1.id, OTHER_CASHIER_ID)
        assert exc.value.details["register_id"] == register_1.id

        with pytest.raises(CashierHasOpenShift):
            shift_service.open_shift(shop.id, register_2.id, CASHIER_ID)

    def test_two_cashiers_two_registers(self, shop, register_1, register_2):
        shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)
        shift_service.open_shift(shop.id, register_2.id, OTHER_CASHIER_ID)
        assert db.session.query(Shift).filter(Shift.status != "closed").count() == 2

    @pytest.mark.parametrize("status", ["maintenance", "inactive"])
    def test_unavailable_register(self, shop, register_1, status):
        register_service.update_register_status(register_1.id, status, actor_id=MANAGER_ID)
        with pytest.raises(RegisterUnavailable):
            shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)

    def test_register_from_other_shop(self, shop, register_1):
        from carpos.services import catalog_service
        from carpos.validation import NotFoundError

        other = catalog_service.create_shop("Uptown", "UP")
        with pytest.raises(NotFoundError):
            shift_service.open_shift(other.id, register_1.id, CASHIER_ID)

    def test_paused_shift_still_blocks(self, shop, register_1, register_2):
        shift = shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)
        shift_service.pause_shift(shift.id)

        with pytest.raises(ShiftAlreadyOpenOnRegister):
            shift_service.open_shift(shop.id, register_1.id, OTHER_CASHIER_ID)
        with pytest.raises(CashierHasOpenShift):
            shift_service.open_shift(shop.id, register_2.id, CASHIER_ID)

    def test_database_rejects_second_unclosed_shift(self, register_1):
        db.session.add(Shift(register_id=register_1.id, cashier_id=CASHIER_ID, status="open"))
        db.session.commit()

        db.session.add(Shift(register_id=register_1.id, cashier_id=OTHER_CASHIER_ID, status="paused"))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_maintenance_refused_while_shift_unclosed(self, shop, register_1):
        shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)
        with pytest.raises(RegisterError):
            register_service.update_register_status(register_1.id, "maintenance")


class TestCloseShift:

    def test_totals_snapshot(self, shop, register_1, cash_1, card_shared):
        shift = shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)

        ledger_service.post_transaction(cash_1.id, "SALE", 1000, shift_id=shift.id)
        ledger_service.post_transaction(card_shared.id, "SALE", 2500, shift_id=shift.id)
        ledger_service.post_transaction(card_shared.id, "REFUND", 500, shift_id=shift.id)
        # Manual movements are not takings
        ledger_service.deposit(cash_1.id, 5000, shift_id=shift.id)

        closed = shift_service.close_shift(shift.id, "End of day", actor_id=CASHIER_ID)

        assert closed.status == "closed"
        assert closed.is_closed
        assert closed.total_sales_cents == 3500
        assert closed.returns_cents == 500
        assert closed.total_cash_cents == 1000
        assert closed.total_non_cash_cents == 2000
        assert closed.comment == "End of day"
        assert closed.closed_by_user_id == CASHIER_ID
        assert closed.closed_at is not None

    def test_totals_keep_method_switched_off_mid_shift(self, shop, register_1, cash_1, card_shared):
        from carpos.services import payment_method_service

        shift = shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)
        ledger_service.post_transaction(card_shared.id, "SALE", 1200, shift_id=shift.id)
        payment_method_service.update_bindings(
            register_1.id, [{"payment_method_id": card_shared.id, "is_active": False}],
        )
        ledger_service.post_transaction(cash_1.id, "SALE", 300, shift_id=shift.id)

        closed = shift_service.close_shift(shift.id)
        assert closed.total_sales_cents == 1500
        assert closed.total_non_cash_cents == 1200
        assert closed.total_cash_cents == 300

    def test_close_is_idempotent(self, shop, register_1, cash_1):
        shift = shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)
        ledger_service.post_transaction(cash_1.id, "SALE", 700, shift_id=shift.id)
        first = shift_service.close_shift(shift.id, "first")
        closed_at = first.closed_at

        again = shift_service.close_shift(shift.id, "second")
        assert again.id == first.id
        assert again.closed_at == closed_at
        assert again.comment == "first"
        assert again.total_sales_cents == 700

    def test_close_paused_shift(self, shop, register_1):
        shift = shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)
        shift_service.pause_shift(shift.id)
        assert shift_service.close_shift(shift.id).status == "closed"

    def test_close_missing_shift(self, db_session):
        with pytest.raises(ShiftNotFound):
            shift_service.close_shift(12345)

    def test_summary_live_then_frozen(self, shop, register_1, cash_1):
        shift = shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)
        ledger_service.post_transaction(cash_1.id, "SALE", 400, shift_id=shift.id)

        live = shift_service.get_shift_summary(shift.id)
        assert live["is_closed"] is False
        assert live["totals"]["total_sales_cents"] == 400

        shift_service.close_shift(shift.id)
        frozen = shift_service.get_shift_summary(shift.id)
        assert frozen["is_closed"] is True
        assert frozen["totals"]["total_cash_cents"] == 400


class TestPauseResume:

    def test_pause_and_resume(self, shop, register_1):
        shift = shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)

        paused = shift_service.pause_shift(shift.id)
        assert paused.status == "paused"
        assert not paused.is_closed
        assert paused.paused_at is not None

        resumed = shift_service.resume_shift(shift.id)
        assert resumed.status == "open"
        assert resumed.paused_at is None

    def test_resume_open_shift_fails(self, shop, register_1):
        shift = shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)
        with pytest.raises(ShiftNotOpen):
            shift_service.resume_shift(shift.id)

    def test_pause_closed_shift_fails(self, shop, register_1):
        shift = shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)
        shift_service.close_shift(shift.id)
        with pytest.raises(ShiftNotOpen):
            shift_service.pause_shift(shift.id)


class TestUnclosedCheck:

    def test_reports_unclosed_shift(self, shop, register_1):
        shift = shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)

        result = shift_service.check_unclosed_shift(shop.id, CASHIER_ID)
        assert result["has_unclosed"] is True
        assert result["shift_id"] == shift.id
        assert result["register_id"] == register_1.id
        assert result["status"] == "open"

    def test_no_unclosed_shift(self, shop, register_1):
        shift = shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)
        shift_service.close_shift(shift.id)

        result = shift_service.check_unclosed_shift(shop.id, CASHIER_ID)
        assert result == {
            "has_unclosed": False,
            "shift_id": None,
            "register_id": None,
            "status": None,
            "opened_at": None,
        }

    def test_history_newest_first(self, shop, register_1):
        ids = []
        for _ in range(3):
            s = shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)
            shift_service.close_shift(s.id)
            ids.append(s.id)

        listed = shift_service.list_shifts(register_1.id)
        assert [s.id for s in listed] == list(reversed(ids))
        assert shift_service.get_current_shift(register_1.id) is None
