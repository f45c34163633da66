"""
Pytest fixtures for pharmapos backend tests.

Provides the application on in-memory SQLite, a per-test table wipe,
product/lot factories, actors, and the test client.
"""

from datetime import timedelta

import pytest
from pharmapos import create_app
from pharmapos.extensions import db
from pharmapos.identity import Actor
from pharmapos.services import audit_hooks, catalog_service, lot_service
from pharmapos.time_utils import today


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
        # Clear all data but keep schema (Core deletes bypass the ORM immutability listeners)
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture
def cashier():
    return Actor(user_id=1, role="cashier")


@pytest.fixture
def seller():
    return Actor(user_id=2, role="seller")


@pytest.fixture
def manager():
    return Actor(user_id=3, role="manager")


@pytest.fixture
def make_product(db_session):
    """Factory: make_product(code="P1", price_cents=1000, prescription_required=False, ...)."""
    counter = {"n": 0}

    def _make(code=None, name=None, price_cents=1000, **extra):
        counter["n"] += 1
        code = code or f"PROD-{counter['n']:03d}"
        payload = {"code": code, "name": name or f"Product {code}", "price_cents": price_cents}
        payload.update(extra)
        return catalog_service.create_product(payload)

    return _make


@pytest.fixture
def make_lot(db_session, manager):
    """
    Factory: make_lot(product, quantity, expires_in_days=365, batch_code=None).

    A negative expires_in_days creates an already-expired lot (received in the past).
    """
    counter = {"n": 0}

    def _make(product, quantity, expires_in_days=365, batch_code=None, purchase_price_cents=500):
        counter["n"] += 1
        expiry = today() + timedelta(days=expires_in_days)
        received_on = min(today(), expiry - timedelta(days=1))
        return lot_service.receive_lot(
            product_id=product.id,
            batch_code=batch_code or f"BATCH-{counter['n']:03d}",
            quantity=quantity,
            purchase_price_cents=purchase_price_cents,
            expiry_date=expiry,
            actor=manager,
            on=received_on,
        )

    return _make


@pytest.fixture
def product(make_product):
    return make_product(code="DOLI500", name="Doliprane 500mg", price_cents=1000)


@pytest.fixture
def rx_product(make_product):
    return make_product(code="AMOX1G", name="Amoxicilline 1g", price_cents=2500, prescription_required=True)


@pytest.fixture
def audit_events():
    """Collect MutationEvents dispatched during the test."""
    events = []

    def _listener(event):
        events.append(event)

    audit_hooks.register_listener(_listener)
    yield events
    audit_hooks.unregister_listener(_listener)

