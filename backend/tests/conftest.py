"""
Pytest fixtures for carpos backend tests.

Provides an in-memory database, a shop with two registers, their payment
methods, and a test client with the acting-user header.
"""

import pytest
from carpos import create_app
from carpos.extensions import db
from carpos.services import catalog_service, register_service
from carpos.services.payment_method_service import list_methods


CASHIER_ID = 101
OTHER_CASHIER_ID = 102
MANAGER_ID = 900


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def shop(db_session):
    return catalog_service.create_shop("Downtown Car Care", "DT")


@pytest.fixture(scope='function')
def wash(db_session, shop):
    """Service type priced 10.00."""
    return catalog_service.create_service_type(shop.id, "Exterior wash", 1000)


@pytest.fixture(scope='function')
def register_1(db_session, shop):
    """Register with dedicated cash and shared card."""
    return register_service.create_register(
        shop.id,
        "Register 1",
        payment_methods=[
            {"source": "system", "system_type": "cash", "scope": "dedicated"},
            {"source": "system", "system_type": "card", "scope": "shared"},
        ],
        actor_id=MANAGER_ID,
    )


@pytest.fixture(scope='function')
def register_2(db_session, shop):
    """Second register sharing the shop's card method."""
    return register_service.create_register(
        shop.id,
        "Register 2",
        payment_methods=[
            {"source": "system", "system_type": "cash", "scope": "dedicated"},
            {"source": "system", "system_type": "card", "scope": "shared"},
        ],
        actor_id=MANAGER_ID,
    )


def _method(register_id: int, system_type: str):
    for binding in list_methods(register_id):
        if binding.payment_method.system_type == system_type:
            return binding.payment_method
    raise AssertionError(f"No {system_type} method on register {register_id}")


@pytest.fixture(scope='function')
def cash_1(register_1):
    return _method(register_1.id, "cash")


@pytest.fixture(scope='function')
def card_shared(register_1):
    return _method(register_1.id, "card")


def actor_headers(user_id: int = CASHIER_ID) -> dict:
    """Helper to create the acting-user header."""
    return {'X-User-Id': str(user_id)}
