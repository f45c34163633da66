from __future__ import annotations

import enum

from ..extensions import db
from pharmapos.time_utils import to_utc_z


class SaleStatus(str, enum.Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RETURNED_PARTIALLY = "returned_partially"
    # Status of the return transaction itself (negative sale)
    RETURNED = "returned"


# Allowed status changes on an existing sale. Anything else is rejected.
SALE_TRANSITIONS: dict[SaleStatus, frozenset[SaleStatus]] = {
    SaleStatus.COMPLETED: frozenset({SaleStatus.CANCELLED, SaleStatus.RETURNED_PARTIALLY}),
    SaleStatus.CANCELLED: frozenset(),
    SaleStatus.RETURNED_PARTIALLY: frozenset(),
    SaleStatus.RETURNED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return SaleStatus(target) in SALE_TRANSITIONS[SaleStatus(current)]


PAYMENT_MODE_CASH = "especes"
PAYMENT_MODE_CARD = "carte"
PAYMENT_MODE_MOBILE_MONEY = "mobile_money"

VALID_PAYMENT_MODES = [
    PAYMENT_MODE_CASH,
    PAYMENT_MODE_CARD,
    PAYMENT_MODE_MOBILE_MONEY,
]


class Sale(db.Model):
    """
    Committed sale (vente).

    A sale is created atomically with its lines and the lot decrements that
    back them. Returns are NOT mutations of the original: each return is a new
    Sale row with negative total, negative-quantity lines and
    original_sale_id pointing back; the original only gets the
    returned_partially marker.

    MONEY:
    - total_cents: signed sum of line totals
    - client_share_cents / insurer_share_cents: insurance split of the total
    - amount_tendered_cents / change_due_cents: what the customer handed over
      against the client share
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_cashier_created", "cashier_user_id", "created_at"),
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    status = db.Column(db.String(24), nullable=False, default=SaleStatus.COMPLETED.value, index=True)

    total_cents = db.Column(db.Integer, nullable=False)

    cashier_user_id = db.Column(db.Integer, nullable=False, index=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    prescription_id = db.Column(db.Integer, db.ForeignKey("prescriptions.id"), nullable=True, index=True)
    patient_id = db.Column(db.Integer, nullable=True, index=True)

    # Set on return transactions only
    original_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    payment_mode = db.Column(db.String(16), nullable=False, default=PAYMENT_MODE_CASH)
    amount_tendered_cents = db.Column(db.Integer, nullable=True)
    change_due_cents = db.Column(db.Integer, nullable=False, default=0)

    insurance_rate_bps = db.Column(db.Integer, nullable=True)
    client_share_cents = db.Column(db.Integer, nullable=False, default=0)
    insurer_share_cents = db.Column(db.Integer, nullable=False, default=0)

    reason = db.Column(db.String(255), nullable=True)

    # Cancellation audit trail
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    # Set explicitly by the engine; cash windows compare against it
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", foreign_keys=[order_id], backref=db.backref("sales", lazy=True))
    prescription = db.relationship("Prescription")
    original_sale = db.relationship(
        "Sale",
        remote_side=[id],
        backref=db.backref("return_sales", lazy=True),
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} status={self.status} total_cents={self.total_cents}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "status": self.status,
            "total_cents": self.total_cents,
            "cashier_user_id": self.cashier_user_id,
            "order_id": self.order_id,
            "prescription_id": self.prescription_id,
            "patient_id": self.patient_id,
            "original_sale_id": self.original_sale_id,
            "payment_mode": self.payment_mode,
            "amount_tendered_cents": self.amount_tendered_cents,
            "change_due_cents": self.change_due_cents,
            "insurance_rate_bps": self.insurance_rate_bps,
            "client_share_cents": self.client_share_cents,
            "insurer_share_cents": self.insurer_share_cents,
            "reason": self.reason,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """
    Individual line of a sale, tied to the lot it was drawn from.

    One requested product may produce several lines when FEFO allocation
    spans lots. Return lines carry a negative quantity and point at the line
    they give back through returned_line_id.
    """
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Nullable only for legacy sales recorded before lot tracking
    lot_id = db.Column(db.Integer, db.ForeignKey("lots.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    insurance_rate_bps = db.Column(db.Integer, nullable=True)
    client_share_cents = db.Column(db.Integer, nullable=False, default=0)
    insurer_share_cents = db.Column(db.Integer, nullable=False, default=0)

    returned_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship(
        "Sale",
        backref=db.backref("lines", lazy=True, order_by="SaleLine.id"),
    )
    product = db.relationship("Product")
    lot = db.relationship("Lot")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "lot_id": self.lot_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "insurance_rate_bps": self.insurance_rate_bps,
            "client_share_cents": self.client_share_cents,
            "insurer_share_cents": self.insurer_share_cents,
            "returned_line_id": self.returned_line_id,
            "created_at": to_utc_z(self.created_at),
        }
