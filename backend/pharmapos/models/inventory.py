from __future__ import annotations

import enum

from sqlalchemy import event

from ..extensions import db
from pharmapos.time_utils import to_utc_z, to_iso_date


class MovementType(str, enum.Enum):
    RECEPTION = "reception"
    VENTE = "vente"
    AJUSTEMENT = "ajustement"
    RETOUR = "retour"


class Lot(db.Model):
    """
    A received batch of one product with its own expiry date.

    INVARIANTS:
    - 0 <= current_quantity <= initial_quantity (also enforced by CHECK)
    - current_quantity only moves together with a StockMovement row written
      in the same transaction (see lot_service / ledger_service)
    - lots are never deleted; an empty lot stays for traceability

    ALLOCATION:
    Lots with current_quantity = 0 or expiry_date <= today are never
    allocated. Remaining lots are consumed by expiry_date ascending, then id.
    """
    __tablename__ = "lots"
    __table_args__ = (
        db.CheckConstraint("current_quantity >= 0", name="ck_lots_current_non_negative"),
        db.CheckConstraint("current_quantity <= initial_quantity", name="ck_lots_current_le_initial"),
        db.Index("ix_lots_product_expiry", "product_id", "expiry_date", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Supplier records are owned elsewhere
    supplier_id = db.Column(db.Integer, nullable=True, index=True)

    batch_code = db.Column(db.String(128), nullable=False)

    initial_quantity = db.Column(db.Integer, nullable=False)
    current_quantity = db.Column(db.Integer, nullable=False)

    purchase_price_cents = db.Column(db.Integer, nullable=False)

    manufactured_on = db.Column(db.Date, nullable=True)
    expiry_date = db.Column(db.Date, nullable=False, index=True)

    received_by_user_id = db.Column(db.Integer, nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("lots", lazy=True))

    def __repr__(self) -> str:
        return (
            f"<Lot id={self.id} product_id={self.product_id} batch={self.batch_code!r} "
            f"qty={self.current_quantity}/{self.initial_quantity} expires={self.expiry_date}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "supplier_id": self.supplier_id,
            "batch_code": self.batch_code,
            "initial_quantity": self.initial_quantity,
            "current_quantity": self.current_quantity,
            "purchase_price_cents": self.purchase_price_cents,
            "manufactured_on": to_iso_date(self.manufactured_on),
            "expiry_date": to_iso_date(self.expiry_date),
            "received_by_user_id": self.received_by_user_id,
            "received_at": to_utc_z(self.received_at),
            "version_id": self.version_id,
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    Sign convention: negative quantity = outflow (vente, negative ajustement),
    positive = inflow (reception, retour, positive ajustement).

    IMMUTABLE: rows are never updated or deleted; the ORM listeners below
    reject both. Corrections are new movements.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_movements_product_type", "product_id", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Null for lot-independent adjustments
    lot_id = db.Column(db.Integer, db.ForeignKey("lots.id"), nullable=True, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, nullable=False, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "lot_id": self.lot_id,
            "sale_id": self.sale_id,
            "quantity": self.quantity,
            "type": self.type,
            "reason": self.reason,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class ImmutableRecordError(RuntimeError):
    """Raised when code tries to rewrite history."""


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise ImmutableRecordError(f"StockMovement {target.id} is append-only")


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise ImmutableRecordError(f"StockMovement {target.id} cannot be deleted")


@event.listens_for(Lot, "before_delete")
def _reject_lot_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Lot {target.id} cannot be deleted")
