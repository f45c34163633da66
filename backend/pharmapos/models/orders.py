from __future__ import annotations

import enum

from ..extensions import db
from pharmapos.time_utils import to_utc_z


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class Order(db.Model):
    """
    Staged sale request (commande) prepared by a seller.

    LIFECYCLE:
    1. pending: created by a seller, no stock reserved
    2. paid: cashier collected payment; exactly one Sale references it
    3. cancelled: abandoned while pending

    paid and cancelled are terminal.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("ticket_number", name="uq_orders_ticket_number"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable ticket (e.g., "CMD-20260119-007")
    ticket_number = db.Column(db.String(32), nullable=False)

    seller_user_id = db.Column(db.Integer, nullable=False, index=True)
    patient_id = db.Column(db.Integer, nullable=True, index=True)
    prescription_id = db.Column(db.Integer, db.ForeignKey("prescriptions.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=OrderStatus.PENDING.value, index=True)
    total_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    paid_by_user_id = db.Column(db.Integer, nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    prescription = db.relationship("Prescription")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} ticket={self.ticket_number!r} status={self.status}>"

    @property
    def sale_id(self) -> int | None:
        return self.sales[0].id if self.sales else None

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "ticket_number": self.ticket_number,
            "seller_user_id": self.seller_user_id,
            "patient_id": self.patient_id,
            "prescription_id": self.prescription_id,
            "status": self.status,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "sale_id": self.sale_id,
            "paid_by_user_id": self.paid_by_user_id,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """Requested item on a pending order, priced when the order was staged."""
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship(
        "Order",
        backref=db.backref("lines", lazy=True, order_by="OrderLine.id"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
