# Overview: Pytest coverage for product creation and payload validation.

import pytest

from pharmapos.models import Product
from pharmapos.services import catalog_service
from pharmapos.services.errors import NotFound, ValidationError


class TestCreateProduct:
    def test_payload_is_normalized(self, db_session):
        product = catalog_service.create_product({
            "code": "  PARA1G ",
            "name": "Paracetamol 1g",
            "price_cents": "1200",
            "prescription_required": 1,
            "alert_threshold": 5,
        })

        assert product.code == "PARA1G"
        assert product.price_cents == 1200
        assert product.prescription_required is True
        assert product.alert_threshold == 5
        assert product.is_active is True

    @pytest.mark.parametrize("price", [12.5, "12.5", "1e3", True, ""])
    def test_price_must_be_plain_integer(self, db_session, price):
        with pytest.raises(ValidationError):
            catalog_service.create_product({"code": "X1", "name": "X", "price_cents": price})

        assert db_session.query(Product).count() == 0

    def test_missing_and_unknown_fields(self, db_session):
        with pytest.raises(ValidationError, match="Missing required fields: price_cents"):
            catalog_service.create_product({"code": "X1", "name": "X"})

        # Timestamps are server-managed, never writable
        with pytest.raises(ValidationError, match="Field not allowed: created_at"):
            catalog_service.create_product({
                "code": "X1", "name": "X", "price_cents": 100, "created_at": "2026-01-01T00:00:00Z",
            })

    def test_business_rules(self, db_session):
        with pytest.raises(ValidationError, match="price_cents must be >= 0"):
            catalog_service.create_product({"code": "X1", "name": "X", "price_cents": -1})
        with pytest.raises(ValidationError, match="cannot exceed"):
            catalog_service.create_product({"code": "X1", "name": "X", "price_cents": 1_000_000_000})
        with pytest.raises(ValidationError, match="name cannot be blank"):
            catalog_service.create_product({"code": "X1", "name": "   ", "price_cents": 100})

    def test_duplicate_code(self, db_session, product):
        with pytest.raises(ValidationError) as exc:
            catalog_service.create_product({"code": product.code, "name": "Copy", "price_cents": 100})

        assert exc.value.details == {"code": product.code}


class TestLookup:
    def test_get_products_reports_missing_id(self, db_session, product):
        with pytest.raises(NotFound) as exc:
            catalog_service.get_products([product.id, product.id + 100])

        assert exc.value.details == {"entity": "Product", "id": product.id + 100}

    def test_list_products_search_and_active_filter(self, db_session, make_product):
        make_product(code="DOLI", name="Doliprane")
        hidden = make_product(code="EFF", name="Efferalgan")
        hidden.is_active = False
        db_session.commit()

        assert [p.code for p in catalog_service.list_products(search="dol")] == ["DOLI"]
        assert [p.code for p in catalog_service.list_products()] == ["DOLI"]
        assert {p.code for p in catalog_service.list_products(active_only=False)} == {"DOLI", "EFF"}
