# Overview: Pytest coverage for the order workflow (commandes).

import re
from datetime import timedelta

import pytest

from pharmapos.models import Lot, Order, OrderStatus, Sale
from pharmapos.services import order_service
from pharmapos.services.document_service import next_order_ticket
from pharmapos.services.concurrency import atomic
from pharmapos.services.errors import (
    AlreadyProcessed,
    InsufficientPayment,
    InsufficientStock,
    NotFound,
    PrescriptionRequired,
)
from pharmapos.time_utils import today


def _order(product, quantity, actor, **kwargs):
    return order_service.create_order(
        [{"product_id": product.id, "quantity": quantity}], actor=actor, **kwargs
    )


class TestCreateOrder:
    def test_ticket_number_format_and_sequence(self, db_session, product, seller):
        first = _order(product, 1, seller)
        second = _order(product, 1, seller)

        stamp = today().strftime("%Y%m%d")
        assert re.fullmatch(rf"CMD-{stamp}-\d{{3}}", first.ticket_number)
        assert first.ticket_number == f"CMD-{stamp}-001"
        assert second.ticket_number == f"CMD-{stamp}-002"

    def test_ticket_counter_restarts_each_day(self, db_session, manager):
        with atomic(manager):
            a = next_order_ticket(today())
        with atomic(manager):
            b = next_order_ticket(today() - timedelta(days=1))

        assert a.endswith("-001")
        assert b.endswith("-001")

    def test_snapshots_prices_without_checking_stock(self, db_session, product, seller):
        order = _order(product, 3, seller, notes="Client waiting")

        assert order.status == OrderStatus.PENDING.value
        assert order.seller_user_id == seller.user_id
        assert order.total_cents == 3000
        assert [(l.product_id, l.quantity, l.unit_price_cents) for l in order.lines] == [(product.id, 3, 1000)]
        assert order.sale_id is None

    def test_prescription_checked_at_creation(self, db_session, rx_product, seller):
        with pytest.raises(PrescriptionRequired):
            _order(rx_product, 1, seller)

        assert db_session.query(Order).count() == 0

    def test_unknown_product(self, db_session, seller):
        with pytest.raises(NotFound):
            order_service.create_order([{"product_id": 404, "quantity": 1}], actor=seller)


class TestPayOrder:
    def test_pay_creates_sale_and_flips_status(self, db_session, product, make_lot, seller, cashier):
        lot = make_lot(product, 10)
        order = _order(product, 3, seller)

        paid, sale = order_service.pay_order(
            order.id, actor=cashier, payment_mode="especes", amount_tendered_cents=5000
        )

        assert paid.status == OrderStatus.PAID.value
        assert paid.paid_by_user_id == cashier.user_id
        assert paid.sale_id == sale.id
        assert sale.order_id == order.id
        assert sale.cashier_user_id == cashier.user_id
        assert sale.total_cents == 3000
        assert sale.change_due_cents == 2000
        assert db_session.get(Lot, lot.id).current_quantity == 7

    def test_pay_uses_staged_prices(self, db_session, product, make_lot, seller, cashier):
        make_lot(product, 10)
        order = _order(product, 2, seller)
        product.price_cents = 1500
        db_session.commit()

        _, sale = order_service.pay_order(order.id, actor=cashier, payment_mode="carte")

        assert sale.total_cents == 2000
        assert sale.lines[0].unit_price_cents == 1000

    def test_pay_twice(self, db_session, product, make_lot, seller, cashier):
        make_lot(product, 10)
        order = _order(product, 1, seller)
        order_service.pay_order(order.id, actor=cashier)

        with pytest.raises(AlreadyProcessed):
            order_service.pay_order(order.id, actor=cashier)

        assert db_session.query(Sale).filter_by(order_id=order.id).count() == 1

    def test_insufficient_payment(self, db_session, product, make_lot, seller, cashier):
        make_lot(product, 10)
        order = _order(product, 3, seller)

        with pytest.raises(InsufficientPayment) as exc:
            order_service.pay_order(order.id, actor=cashier, amount_tendered_cents=2500)

        assert exc.value.details["amount_due_cents"] == 3000
        assert db_session.get(Order, order.id).status == OrderStatus.PENDING.value

    def test_stock_revalidated_at_payment(self, db_session, product, make_lot, seller, cashier):
        lot = make_lot(product, 2)
        order = _order(product, 3, seller)

        with pytest.raises(InsufficientStock):
            order_service.pay_order(order.id, actor=cashier)

        assert db_session.get(Order, order.id).status == OrderStatus.PENDING.value
        assert db_session.get(Lot, lot.id).current_quantity == 2

    def test_cannot_pay_cancelled_order(self, db_session, product, make_lot, seller, cashier):
        make_lot(product, 10)
        order = _order(product, 1, seller)
        order_service.cancel_order(order.id, actor=seller)

        with pytest.raises(AlreadyProcessed):
            order_service.pay_order(order.id, actor=cashier)


class TestCancelAndList:
    def test_cancel_only_while_pending(self, db_session, product, make_lot, seller, cashier):
        make_lot(product, 10)
        order = _order(product, 1, seller)
        order_service.pay_order(order.id, actor=cashier)

        with pytest.raises(AlreadyProcessed):
            order_service.cancel_order(order.id, actor=seller)

    def test_cancel_records_actor(self, db_session, product, seller):
        order = _order(product, 1, seller)

        cancelled = order_service.cancel_order(order.id, actor=seller)

        assert cancelled.status == OrderStatus.CANCELLED.value
        assert cancelled.cancelled_by_user_id == seller.user_id
        assert cancelled.cancelled_at is not None

    def test_pending_queue_and_seller_filter(self, db_session, product, seller, manager):
        mine = _order(product, 1, seller)
        other = _order(product, 1, manager)
        gone = _order(product, 1, seller)
        order_service.cancel_order(gone.id, actor=seller)

        assert [o.id for o in order_service.list_pending()] == [mine.id, other.id]
        assert {o.id for o in order_service.list_orders(seller_user_id=seller.user_id)} == {mine.id, gone.id}
        assert [o.id for o in order_service.list_orders(status="cancelled")] == [gone.id]
