from __future__ import annotations

from ..extensions import db
from pharmapos.time_utils import to_utc_z


class CashClosing(db.Model):
    """
    Register closing (cloture de caisse) for one cashier.

    The theoretical total is recomputed server-side from committed sales;
    variance = actual - theoretical, stored even when zero. closed_at is the
    lower bound of the next closing window for the same cashier.

    IMMUTABLE: rows are written once and never updated.
    """
    __tablename__ = "cash_closings"
    __table_args__ = (
        db.Index("ix_cash_closings_cashier_closed", "cashier_user_id", "closed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashier_user_id = db.Column(db.Integer, nullable=False, index=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    theoretical_total_cents = db.Column(db.Integer, nullable=False)
    actual_total_cents = db.Column(db.Integer, nullable=False)
    variance_cents = db.Column(db.Integer, nullable=False)

    sale_count = db.Column(db.Integer, nullable=False, default=0)
    comments = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashier_user_id": self.cashier_user_id,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "theoretical_total_cents": self.theoretical_total_cents,
            "actual_total_cents": self.actual_total_cents,
            "variance_cents": self.variance_cents,
            "sale_count": self.sale_count,
            "comments": self.comments,
            "created_at": to_utc_z(self.created_at),
        }
