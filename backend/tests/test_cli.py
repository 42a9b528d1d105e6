# Overview: Pytest coverage for the flask CLI command groups.

import pytest

from carpos.extensions import db
from carpos.models import CashRegister, PaymentMethod, Shop
from carpos.services import ledger_service, shift_service

from conftest import CASHIER_ID


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestSystemCommands:

    def test_seed_is_idempotent(self, runner, db_session):
        first = runner.invoke(args=['system', 'seed', '--shop', 'Eastside', '--shop-code', 'ES'])
        assert first.exit_code == 0
        assert 'Created shop: Eastside' in first.output
        assert 'DONE Seed complete.' in first.output

        second = runner.invoke(args=['system', 'seed', '--shop', 'Eastside', '--shop-code', 'ES'])
        assert second.exit_code == 0
        assert 'Using existing shop' in second.output
        assert 'Using existing register' in second.output

        assert db.session.query(Shop).filter_by(code='ES').count() == 1
        assert db.session.query(CashRegister).count() == 1
        assert db.session.query(PaymentMethod).count() == 2


class TestRegisterCommands:

    def test_list_shows_open_shift(self, runner, shop, register_1, register_2):
        shift = shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)

        result = runner.invoke(args=['registers', 'list', '--shop-id', str(shop.id)])
        assert result.exit_code == 0
        assert 'Register 1' in result.output
        assert 'Register 2' in result.output
        assert f'#{shift.id} open' in result.output

    def test_list_empty(self, runner, db_session):
        result = runner.invoke(args=['registers', 'list'])
        assert 'No registers found.' in result.output

    def test_create(self, runner, shop):
        result = runner.invoke(args=[
            'registers', 'create', '--shop-id', str(shop.id), '--name', 'Lane 3', '--type', 'express',
        ])
        assert result.exit_code == 0
        assert 'Created register: Lane 3' in result.output

        register = db.session.query(CashRegister).filter_by(name='Lane 3').one()
        assert register.register_type == 'EXPRESS'

    def test_create_duplicate_fails(self, runner, shop, register_1):
        result = runner.invoke(args=['registers', 'create', '--shop-id', str(shop.id), '--name', 'Register 1'])
        assert result.exit_code == 1
        assert 'FAIL' in result.output


class TestShiftCommands:

    def test_unclosed(self, runner, shop, register_1):
        shift_service.open_shift(shop.id, register_1.id, CASHIER_ID)
        result = runner.invoke(args=['shifts', 'unclosed', '--shop-id', str(shop.id)])
        assert result.exit_code == 0
        assert 'Register 1' in result.output
        assert str(CASHIER_ID) in result.output

    def test_none_unclosed(self, runner, shop):
        result = runner.invoke(args=['shifts', 'unclosed'])
        assert 'No unclosed shifts.' in result.output


@pytest.mark.ledger
class TestLedgerCommands:

    def _drift(self, pm_id, value):
        db.session.execute(
            PaymentMethod.__table__.update()
            .where(PaymentMethod.__table__.c.id == pm_id)
            .values(current_balance_cents=value)
        )
        db.session.commit()

    def test_reconcile_consistent(self, runner, cash_1):
        ledger_service.deposit(cash_1.id, 500)
        result = runner.invoke(args=['ledger', 'reconcile'])
        assert result.exit_code == 0
        assert 'PASS All payment method ledgers consistent' in result.output

    def test_reconcile_reports_drift(self, runner, cash_1):
        ledger_service.deposit(cash_1.id, 500)
        self._drift(cash_1.id, 42)

        result = runner.invoke(args=['ledger', 'reconcile', '--payment-method-id', str(cash_1.id)])
        assert result.exit_code == 1
        assert 'DRIFT' in result.output

    def test_reconcile_fix(self, runner, cash_1):
        ledger_service.deposit(cash_1.id, 500)
        self._drift(cash_1.id, 42)

        result = runner.invoke(args=['ledger', 'reconcile', '--payment-method-id', str(cash_1.id), '--fix'])
        assert result.exit_code == 0
        assert 'REPAIRED' in result.output

        assert ledger_service.reconcile(cash_1.id).is_consistent
