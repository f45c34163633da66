# Overview: Thread-based concurrency tests on a file-backed SQLite database.

"""
Concurrency tests.

Each worker thread runs in its own app context (own session, own connection)
against a temporary file database, so BEGIN IMMEDIATE and the guarded lot
UPDATEs are exercised for real.
"""

import os
import threading
from datetime import timedelta

import pytest

from pharmapos import create_app
from pharmapos.extensions import db
from pharmapos.identity import Actor
from pharmapos.models import Lot, Sale
from pharmapos.services import catalog_service, ledger_service, lot_service, order_service, sales_service
from pharmapos.services.errors import AlreadyProcessed, InsufficientStock
from pharmapos.time_utils import today

pytestmark = pytest.mark.concurrency

MANAGER = Actor(user_id=3, role="manager")


@pytest.fixture
def file_app(tmp_path):
    db_path = os.path.join(str(tmp_path), "concurrency.db")
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30, "check_same_thread": False}},
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _seed(app, quantity):
    with app.app_context():
        product = catalog_service.create_product({"code": "CONC-1", "name": "Concurrent", "price_cents": 1000})
        lot = lot_service.receive_lot(
            product_id=product.id, batch_code="C-1", quantity=quantity,
            purchase_price_cents=400, expiry_date=today() + timedelta(days=365), actor=MANAGER,
        )
        ids = (product.id, lot.id)
        db.session.remove()
    return ids


def _run_workers(app, target, count):
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(count)

    def worker(i):
        with app.app_context():
            try:
                barrier.wait()
                outcome = target(i)
                with lock:
                    results.append(outcome)
            except Exception as exc:
                with lock:
                    results.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


class TestConcurrentSales:
    def test_two_sales_overdrawing_one_lot(self, file_app):
        product_id, lot_id = _seed(file_app, 10)

        def sell(i):
            sale = sales_service.create_sale(
                [{"product_id": product_id, "quantity": 7}], actor=Actor(user_id=10 + i)
            )
            return sale.id

        results = _run_workers(file_app, sell, 2)

        successes = [r for r in results if isinstance(r, int)]
        failures = [r for r in results if isinstance(r, InsufficientStock)]
        assert len(successes) == 1
        assert len(failures) == 1
        with file_app.app_context():
            assert db.session.get(Lot, lot_id).current_quantity == 3
            assert ledger_service.reconcile_product(product_id)["balanced"] is True

    def test_many_single_unit_sales(self, file_app):
        product_id, lot_id = _seed(file_app, 10)

        def sell(i):
            return sales_service.create_sale(
                [{"product_id": product_id, "quantity": 1}], actor=Actor(user_id=10 + i)
            ).id

        results = _run_workers(file_app, sell, 12)

        assert len([r for r in results if isinstance(r, int)]) == 10
        assert len([r for r in results if isinstance(r, InsufficientStock)]) == 2
        with file_app.app_context():
            assert db.session.get(Lot, lot_id).current_quantity == 0
            assert db.session.query(Sale).count() == 10
            assert ledger_service.reconcile_product(product_id)["balanced"] is True


class TestConcurrentOrders:
    def test_ticket_numbers_are_unique(self, file_app):
        product_id, _ = _seed(file_app, 10)

        def stage(i):
            return order_service.create_order(
                [{"product_id": product_id, "quantity": 1}], actor=Actor(user_id=20 + i)
            ).ticket_number

        results = _run_workers(file_app, stage, 8)

        tickets = [r for r in results if isinstance(r, str)]
        assert len(tickets) == 8
        assert len(set(tickets)) == 8

    def test_order_paid_once(self, file_app):
        product_id, _ = _seed(file_app, 10)
        with file_app.app_context():
            order_id = order_service.create_order(
                [{"product_id": product_id, "quantity": 2}], actor=Actor(user_id=2)
            ).id
            db.session.remove()

        def pay(i):
            _, sale = order_service.pay_order(order_id, actor=Actor(user_id=30 + i))
            return sale.id

        results = _run_workers(file_app, pay, 2)

        assert len([r for r in results if isinstance(r, int)]) == 1
        assert len([r for r in results if isinstance(r, AlreadyProcessed)]) == 1
        with file_app.app_context():
            assert db.session.query(Sale).filter_by(order_id=order_id).count() == 1
