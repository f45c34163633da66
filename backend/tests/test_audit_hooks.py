# Overview: Pytest coverage for the post-commit audit event sink.

import pytest

from pharmapos.models import Sale
from pharmapos.services import audit_hooks, sales_service
from pharmapos.services.errors import InsufficientStock


def _events(events, entity_type):
    return [e for e in events if e.entity_type == entity_type]


class TestAuditHooks:
    def test_sale_created_event(self, db_session, product, make_lot, cashier, audit_events):
        make_lot(product, 10)
        audit_events.clear()

        sale = sales_service.create_sale([{"product_id": product.id, "quantity": 2}], actor=cashier)

        sale_events = _events(audit_events, "sales")
        assert len(sale_events) == 1
        ev = sale_events[0]
        assert ev.action == "created"
        assert ev.entity_id == sale.id
        assert ev.actor == cashier
        assert ev.before is None
        assert ev.after["total_cents"] == 2000
        assert ev.to_dict()["actor"] == {"user_id": cashier.user_id, "role": "cashier"}

    def test_cancel_event_has_before_and_after(self, db_session, product, make_lot, cashier, audit_events):
        make_lot(product, 10)
        sale = sales_service.create_sale([{"product_id": product.id, "quantity": 2}], actor=cashier)
        audit_events.clear()

        sales_service.cancel_sale(sale.id, reason="Test", actor=cashier)

        ev = _events(audit_events, "sales")[0]
        assert ev.action == "cancelled"
        assert ev.before["status"] == "completed"
        assert ev.after["status"] == "cancelled"

    def test_lot_reception_event(self, db_session, product, make_lot, audit_events):
        lot = make_lot(product, 10)

        ev = _events(audit_events, "lots")[0]
        assert ev.action == "received"
        assert ev.entity_id == lot.id
        assert ev.after["current_quantity"] == 10

    def test_no_event_when_transaction_fails(self, db_session, product, cashier, audit_events):
        with pytest.raises(InsufficientStock):
            sales_service.create_sale([{"product_id": product.id, "quantity": 1}], actor=cashier)

        assert audit_events == []

    def test_failing_listener_does_not_undo_commit(self, db_session, product, make_lot, cashier, audit_events):
        make_lot(product, 10)
        audit_events.clear()

        @audit_hooks.register_listener
        def broken(event):
            raise RuntimeError("sink down")

        try:
            sale = sales_service.create_sale([{"product_id": product.id, "quantity": 1}], actor=cashier)
        finally:
            audit_hooks.unregister_listener(broken)

        assert db_session.get(Sale, sale.id) is not None
        assert _events(audit_events, "sales")
