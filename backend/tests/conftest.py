"""
Pytest fixtures for tillpoint backend tests.

Provides an in-memory application, a per-test table wipe, and catalog /
drawer fixtures built through the services so the ledger stays consistent.
"""

import pytest

from tillpoint import create_app
from tillpoint.extensions import db
from tillpoint.models import Customer
from tillpoint.services import catalog_service, drawer_service

CASHIER_ID = 7
MANAGER_ID = 8


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_ATTEMPTS': 3,
        'DB_RETRY_BACKOFF_BASE': 0,
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
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: create a product with its opening stock booked in the ledger."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        params = {
            "actor_id": MANAGER_ID,
            "sku": f"SKU-{counter['n']:03d}",
            "name": f"Product {counter['n']}",
            "price_cents": 1000,
            "cost_cents": 400,
            "tax_rate_bps": 1000,
            "initial_stock": 10,
        }
        params.update(overrides)
        return catalog_service.create_product(**params)

    return _make


@pytest.fixture(scope='function')
def product_a(make_product):
    """Product A: 10.00, 10% tax, 10 units on hand."""
    return make_product(sku="PROD-A", name="Product A")


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Ana Souza", email="ana@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def open_drawer(db_session):
    """Cash drawer for CASHIER_ID opened with 100.00."""
    return drawer_service.open_drawer(actor_id=CASHIER_ID, opening_balance_cents=10000)


def actor_headers(actor_id: int = CASHIER_ID) -> dict:
    """Helper to create X-Actor-Id headers."""
    return {'X-Actor-Id': str(actor_id)}
