# Overview: Threaded tests for ledger and shift writers racing on a file-backed database.

"""
Concurrency Tests

Each worker runs in its own thread with its own app context and session,
against a SQLite file so all of them see the same committed state.
"""

import threading

import pytest

from carpos import create_app
from carpos.extensions import db
from carpos.models import PaymentMethodTransaction, Shift
from carpos.services import catalog_service, ledger_service, register_service, shift_service
from carpos.services.payment_method_service import list_methods
from carpos.validation import ConflictError, InsufficientFunds


pytestmark = pytest.mark.concurrency


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'c.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'check_same_thread': False, 'timeout': 30}},
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def setup_ids(file_app):
    """Shop with two registers sharing a card method; returns plain ids."""
    with file_app.app_context():
        shop = catalog_service.create_shop("Race Street", "RS")
        methods = [
            {"source": "system", "system_type": "cash", "scope": "dedicated"},
            {"source": "system", "system_type": "card", "scope": "shared"},
        ]
        r1 = register_service.create_register(shop.id, "Register 1", payment_methods=methods)
        r2 = register_service.create_register(shop.id, "Register 2", payment_methods=methods)
        card = [b for b in list_methods(r1.id) if b.payment_method.system_type == "card"][0]
        return {
            "shop_id": shop.id,
            "register_ids": [r1.id, r2.id],
            "card_id": card.payment_method_id,
        }


def _run_parallel(app, workers):
    """Start all workers behind a barrier and collect (result, error) per worker."""
    barrier = threading.Barrier(len(workers))
    results = [None] * len(workers)

    def run(i, fn):
        with app.app_context():
            barrier.wait()
            try:
                results[i] = (fn(), None)
            except Exception as exc:
                results[i] = (None, exc)

    threads = [threading.Thread(target=run, args=(i, fn)) for i, fn in enumerate(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


def test_two_deposits_on_shared_method_chain(file_app, setup_ids):
    card_id = setup_ids["card_id"]

    results = _run_parallel(file_app, [
        lambda: ledger_service.deposit(card_id, 100, actor_id=101).id,
        lambda: ledger_service.deposit(card_id, 100, actor_id=102).id,
    ])
    assert all(err is None for _, err in results)

    with file_app.app_context():
        entries = (
            db.session.query(PaymentMethodTransaction)
            .filter_by(payment_method_id=card_id)
            .order_by(PaymentMethodTransaction.sequence)
            .all()
        )
        assert [(e.balance_before_cents, e.balance_after_cents) for e in entries] == [(0, 100), (100, 200)]
        assert ledger_service.get_balance(card_id) == 200
        assert ledger_service.reconcile(card_id).is_consistent


def test_many_deposits_keep_reconciliation(file_app, setup_ids):
    card_id = setup_ids["card_id"]

    results = _run_parallel(file_app, [
        (lambda amount=amount: ledger_service.deposit(card_id, amount).id)
        for amount in range(1, 9)
    ])
    assert all(err is None for _, err in results)

    with file_app.app_context():
        report = ledger_service.reconcile(card_id)
        assert report.is_consistent
        assert report.transaction_count == 8
        assert report.ledger_sum_cents == sum(range(1, 9))


def test_withdrawals_never_overdraw(file_app, setup_ids):
    card_id = setup_ids["card_id"]
    with file_app.app_context():
        ledger_service.deposit(card_id, 100)

    results = _run_parallel(file_app, [
        lambda: ledger_service.withdraw(card_id, 50).id
        for _ in range(5)
    ])

    succeeded = [r for r, err in results if err is None]
    refused = [err for _, err in results if err is not None]
    assert len(succeeded) == 2
    assert all(isinstance(err, InsufficientFunds) for err in refused)

    with file_app.app_context():
        assert ledger_service.get_balance(card_id) == 0
        assert ledger_service.reconcile(card_id).is_consistent


def test_one_shift_per_register(file_app, setup_ids):
    shop_id = setup_ids["shop_id"]
    register_id = setup_ids["register_ids"][0]

    results = _run_parallel(file_app, [
        (lambda cashier=cashier: shift_service.open_shift(shop_id, register_id, cashier).id)
        for cashier in (201, 202, 203, 204)
    ])

    opened = [r for r, err in results if err is None]
    errors = [err for _, err in results if err is not None]
    assert len(opened) == 1
    assert all(isinstance(err, ConflictError) for err in errors)

    with file_app.app_context():
        assert db.session.query(Shift).filter(Shift.register_id == register_id).count() == 1


def test_one_shift_per_cashier(file_app, setup_ids):
    shop_id = setup_ids["shop_id"]

    results = _run_parallel(file_app, [
        (lambda rid=rid: shift_service.open_shift(shop_id, rid, 301).id)
        for rid in setup_ids["register_ids"]
    ])

    assert len([r for r, err in results if err is None]) == 1

    with file_app.app_context():
        assert db.session.query(Shift).filter(Shift.cashier_id == 301).count() == 1
