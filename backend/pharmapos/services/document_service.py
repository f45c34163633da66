# Overview: Date-scoped document numbering (order tickets).

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from pharmapos.time_utils import today as business_today

ORDER_TICKET_TYPE = "order_ticket"
ORDER_TICKET_PREFIX = "CMD"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    sequence_date: date,
    pad: int = 3,
) -> str:
    """
    Allocate the next number for (document_type, sequence_date).

    Must run inside the caller's transaction: the number is only consumed if
    that transaction commits. Never retried on its own.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.sequence_date == sequence_date,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    def _current_minus_one() -> int:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type, sequence_date=sequence_date)
            .scalar()
        )
        return current - 1

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_minus_one()
    else:
        try:
            # Savepoint so a lost insert race does not abort the outer transaction
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(document_type=document_type, sequence_date=sequence_date, next_number=2)
                )
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_minus_one()

    return f"{prefix}-{sequence_date:%Y%m%d}-{next_num:0{pad}d}"


def next_order_ticket(on: date | None = None) -> str:
    """e.g. CMD-20260119-007; the counter restarts every day."""
    return next_document_number(
        document_type=ORDER_TICKET_TYPE,
        prefix=ORDER_TICKET_PREFIX,
        sequence_date=on or business_today(),
    )
