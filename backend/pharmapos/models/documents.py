from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    Per-day counter for human-readable document numbers.

    One row per (document_type, sequence_date); next_number is bumped with an
    atomic UPDATE so two cashiers never get the same ticket.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "sequence_date", name="uq_document_sequences_type_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    sequence_date = db.Column(db.Date, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
