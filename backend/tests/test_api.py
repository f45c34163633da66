# Overview: Flask test-client coverage for the HTTP adapter.

from datetime import timedelta

from pharmapos.time_utils import today


def actor_headers(actor) -> dict:
    """Gateway identity headers for an Actor."""
    headers = {"X-Actor-Id": str(actor.user_id)}
    if actor.role:
        headers["X-Actor-Role"] = actor.role
    return headers


class TestActorHeaders:
    def test_missing_actor_is_rejected(self, client, db_session):
        resp = client.get("/api/products")
        assert resp.status_code == 401

    def test_invalid_actor_is_rejected(self, client, db_session):
        resp = client.get("/api/products", headers={"X-Actor-Id": "abc"})
        assert resp.status_code == 401

    def test_health_needs_no_actor(self, client, db_session):
        resp = client.get("/api/system/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"


class TestLotAndSaleRoutes:
    def test_receive_then_sell(self, client, db_session, product, cashier, manager):
        resp = client.post("/api/lots", headers=actor_headers(manager), json={
            "product_id": product.id,
            "batch_code": "LOT-A",
            "quantity": 5,
            "purchase_price_cents": 400,
            "expiry_date": (today() + timedelta(days=30)).isoformat(),
        })
        assert resp.status_code == 201
        lot_a = resp.json["lot"]["id"]

        resp = client.post("/api/lots", headers=actor_headers(manager), json={
            "product_id": product.id,
            "batch_code": "LOT-B",
            "quantity": 10,
            "purchase_price_cents": 400,
            "expiry_date": (today() + timedelta(days=90)).isoformat(),
        })
        lot_b = resp.json["lot"]["id"]

        resp = client.post("/api/sales", headers=actor_headers(cashier), json={
            "items": [{"product_id": product.id, "quantity": 7}],
            "payment_mode": "especes",
            "amount_tendered_cents": 10000,
        })
        assert resp.status_code == 201
        sale = resp.json["sale"]
        assert sale["total_cents"] == 7000
        assert sale["change_due_cents"] == 3000
        assert [(l["lot_id"], l["quantity"]) for l in sale["lines"]] == [(lot_a, 5), (lot_b, 2)]

    def test_receive_with_past_expiry(self, client, db_session, product, manager):
        resp = client.post("/api/lots", headers=actor_headers(manager), json={
            "product_id": product.id,
            "batch_code": "OLD",
            "quantity": 5,
            "purchase_price_cents": 400,
            "expiry_date": today().isoformat(),
        })
        assert resp.status_code == 400
        assert resp.json["code"] == "validation_error"

    def test_error_bodies(self, client, db_session, product, rx_product, make_lot, cashier):
        make_lot(product, 2)
        make_lot(rx_product, 2)

        resp = client.post("/api/sales", headers=actor_headers(cashier), json={
            "items": [{"product_id": product.id, "quantity": 3}],
        })
        assert resp.status_code == 409
        assert resp.json["code"] == "insufficient_stock"
        assert resp.json["details"] == {"product_id": product.id, "available": 2, "requested": 3}

        resp = client.post("/api/sales", headers=actor_headers(cashier), json={
            "items": [{"product_id": rx_product.id, "quantity": 1}],
        })
        assert resp.status_code == 422
        assert resp.json["code"] == "prescription_required"

        resp = client.post("/api/sales", headers=actor_headers(cashier), json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "amount_tendered_cents": 500,
        })
        assert resp.status_code == 402
        assert resp.json["code"] == "insufficient_payment"

        resp = client.get("/api/sales/9999", headers=actor_headers(cashier))
        assert resp.status_code == 404

    def test_cancel_and_return(self, client, db_session, product, make_lot, cashier):
        make_lot(product, 10)
        sale = client.post("/api/sales", headers=actor_headers(cashier), json={
            "items": [{"product_id": product.id, "quantity": 4}],
        }).json["sale"]

        resp = client.post(f"/api/sales/{sale['id']}/returns", headers=actor_headers(cashier), json={
            "items": [{"line_id": sale["lines"][0]["id"], "quantity": 1}],
            "reason": "Damaged",
        })
        assert resp.status_code == 201
        assert resp.json["return_sale"]["total_cents"] == -1000
        assert resp.json["original_sale"]["status"] == "returned_partially"

        resp = client.post(f"/api/sales/{sale['id']}/cancel", headers=actor_headers(cashier), json={})
        assert resp.status_code == 409
        assert resp.json["code"] == "already_processed"

        detail = client.get(f"/api/sales/{sale['id']}", headers=actor_headers(cashier)).json["sale"]
        assert len(detail["return_sale_ids"]) == 1


class TestOrderRoutes:
    def test_order_lifecycle(self, client, db_session, product, make_lot, seller, cashier):
        make_lot(product, 10)
        resp = client.post("/api/orders", headers=actor_headers(seller), json={
            "items": [{"product_id": product.id, "quantity": 2}],
        })
        assert resp.status_code == 201
        order = resp.json["order"]
        assert order["ticket_number"].startswith("CMD-")

        pending = client.get("/api/orders/pending", headers=actor_headers(cashier)).json["items"]
        assert [o["id"] for o in pending] == [order["id"]]

        resp = client.post(f"/api/orders/{order['id']}/pay", headers=actor_headers(cashier), json={
            "payment_mode": "mobile_money",
        })
        assert resp.status_code == 200
        assert resp.json["order"]["status"] == "paid"
        assert resp.json["order"]["sale_id"] == resp.json["sale"]["id"]

        resp = client.post(f"/api/orders/{order['id']}/cancel", headers=actor_headers(seller))
        assert resp.status_code == 409

        mine = client.get("/api/orders?mine=1", headers=actor_headers(seller)).json["items"]
        assert len(mine) == 1


class TestStockAndCashRoutes:
    def test_stock_views(self, client, db_session, product, make_lot, cashier):
        make_lot(product, 4, expires_in_days=10)

        alerts = client.get("/api/stock/alerts", headers=actor_headers(cashier)).json
        assert [r["product_id"] for r in alerts["below_threshold"]] == [product.id]
        assert len(alerts["near_expiry"]) == 1

        avail = client.get(f"/api/stock/{product.id}/availability?quantity=5", headers=actor_headers(cashier)).json
        assert avail == {"product_id": product.id, "requested": 5, "available": 4, "sufficient": False}

        moves = client.get(f"/api/stock/{product.id}/movements", headers=actor_headers(cashier)).json
        assert moves["count"] == 1

        recon = client.get(f"/api/stock/{product.id}/reconciliation", headers=actor_headers(cashier)).json
        assert recon["balanced"] is True

    def test_cash_closing(self, client, db_session, product, make_lot, cashier):
        make_lot(product, 20)
        client.post("/api/sales", headers=actor_headers(cashier), json={
            "items": [{"product_id": product.id, "quantity": 15}],
        })

        current = client.get("/api/cash-closings/current", headers=actor_headers(cashier)).json
        assert current["theoretical_total_cents"] == 15000

        resp = client.post("/api/cash-closings", headers=actor_headers(cashier), json={
            "actual_total_cents": 14950,
            "theoretical_total_cents": 14000,
        })
        assert resp.status_code == 409
        assert resp.json["details"]["recomputed_cents"] == 15000

        resp = client.post("/api/cash-closings", headers=actor_headers(cashier), json={
            "actual_total_cents": 14950,
            "theoretical_total_cents": 15000,
            "comments": "Missing coin",
        })
        assert resp.status_code == 201
        assert resp.json["closing"]["variance_cents"] == -50

        listed = client.get("/api/cash-closings", headers=actor_headers(cashier)).json
        assert listed["count"] == 1
