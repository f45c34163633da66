# Overview: Read access to the product catalog plus the small write path used for seeding.

from __future__ import annotations

from ..extensions import db
from ..models import Product
from ..validation import ModelValidationPolicy, enforce_rules_product, validate_payload
from .errors import NotFound, ValidationError

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "name", "category", "price_cents", "purchase_cost_cents",
        "prescription_required", "alert_threshold", "max_stock",
    },
    required_on_create={"code", "name", "price_cents"},
)


def get_product(product_id: int, *, require_active: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound("Product", product_id)
    if require_active and not product.is_active:
        raise ValidationError(f"Product {product.name} is inactive", details={"product_id": product_id})
    return product


def get_products(product_ids) -> dict[int, Product]:
    """Load several products at once; any missing id raises NotFound."""
    ids = sorted(set(product_ids))
    rows = db.session.query(Product).filter(Product.id.in_(ids)).all() if ids else []
    by_id = {p.id: p for p in rows}
    for pid in ids:
        if pid not in by_id:
            raise NotFound("Product", pid)
    return by_id


def list_products(*, active_only: bool = True, search: str | None = None) -> list[Product]:
    q = db.session.query(Product)
    if active_only:
        q = q.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter((Product.name.ilike(like)) | (Product.code.ilike(like)))
    return q.order_by(Product.name, Product.id).all()


def create_product(payload: dict) -> Product:
    """Catalog maintenance is owned elsewhere; this exists for bootstrap and tests."""
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    if db.session.query(Product).filter_by(code=patch["code"]).first():
        raise ValidationError(f"Product code {patch['code']!r} already exists", details={"code": patch["code"]})

    product = Product(is_active=True, **patch)
    db.session.add(product)
    db.session.commit()
    return product
