from __future__ import annotations

from ..extensions import db
from pharmapos.time_utils import to_utc_z, to_iso_date


class Product(db.Model):
    """
    Catalog entry for a medicine or parapharmacy item.

    The engine only reads products: price, purchase cost and the
    prescription flag feed sale validation and billing. Physical stock lives
    in Lot rows, never on the product itself.

    LOOKUP PATTERN:
    - Code lookup: Product.query.filter_by(code=X)
    - Stock on hand: lot_service.available_quantity(product_id)
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_products_code"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(128), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False)
    purchase_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    prescription_required = db.Column(db.Boolean, nullable=False, default=False)

    # Stock alert level (compared against allocatable quantity) and shelf capacity
    alert_threshold = db.Column(db.Integer, nullable=False, default=10)
    max_stock = db.Column(db.Integer, nullable=False, default=100)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "purchase_cost_cents": self.purchase_cost_cents,
            "prescription_required": self.prescription_required,
            "alert_threshold": self.alert_threshold,
            "max_stock": self.max_stock,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Prescription(db.Model):
    """
    Prescription (ordonnance) attached to a sale or an order.

    Only the reference matters to the engine: a regulated product cannot be
    sold unless one is attached.
    """
    __tablename__ = "prescriptions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(64), nullable=False, index=True)
    prescriber = db.Column(db.String(255), nullable=False)
    issued_on = db.Column(db.Date, nullable=False)

    # Patient records are owned elsewhere
    patient_id = db.Column(db.Integer, nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "prescriber": self.prescriber,
            "issued_on": to_iso_date(self.issued_on),
            "patient_id": self.patient_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
