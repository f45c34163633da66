# Overview: Cash register closing; recomputes the expected takings and records the variance.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import CashClosing, Sale, SaleStatus
from ..validation import coerce_int
from pharmapos.time_utils import to_utc_z, utcnow
from .concurrency import atomic, run_with_retry
from .errors import TheoreticalMismatch, ValidationError


def last_closing(cashier_user_id: int) -> CashClosing | None:
    return (
        db.session.query(CashClosing)
        .filter(CashClosing.cashier_user_id == cashier_user_id)
        .order_by(CashClosing.closed_at.desc(), CashClosing.id.desc())
        .first()
    )


def _window_totals(cashier_user_id: int, since: datetime | None) -> tuple[int, int, datetime | None]:
    """
    (theoretical_total_cents, sale_count, first_activity_at) for the cashier's
    window strictly after `since`.

    Every sale recorded in the window counts with its signed total, whatever
    its status is now; return transactions are negative. A cancellation is a
    refund out of the drawer of whoever cancelled, counted in the window it
    happened in. A sale sold and cancelled in the same window nets to zero,
    and a closed window never changes afterwards.
    """
    sold = db.session.query(
        func.coalesce(func.sum(Sale.total_cents), 0),
        func.count(Sale.id),
        func.min(Sale.created_at),
    ).filter(Sale.cashier_user_id == cashier_user_id)
    refunded = db.session.query(
        func.coalesce(func.sum(Sale.total_cents), 0),
        func.min(Sale.cancelled_at),
    ).filter(
        Sale.cancelled_by_user_id == cashier_user_id,
        Sale.status == SaleStatus.CANCELLED.value,
    )
    if since is not None:
        sold = sold.filter(Sale.created_at > since)
        refunded = refunded.filter(Sale.cancelled_at > since)

    sold_total, count, first_sale_at = sold.one()
    refunded_total, first_cancel_at = refunded.one()
    first_at = min((t for t in (first_sale_at, first_cancel_at) if t is not None), default=None)
    return int(sold_total or 0) - int(refunded_total or 0), int(count or 0), first_at


def _window(cashier_user_id: int) -> dict:
    previous = last_closing(cashier_user_id)
    since = previous.closed_at if previous else None
    total, count, first_at = _window_totals(cashier_user_id, since)
    return {
        "previous": previous,
        "since": since,
        "opened_at": since or first_at,
        "theoretical_total_cents": total,
        "sale_count": count,
    }


def current_summary(cashier_user_id: int) -> dict:
    """What a closing would record right now; read-only."""
    def _op() -> dict:
        window = _window(cashier_user_id)
        previous = window["previous"]
        return {
            "cashier_user_id": cashier_user_id,
            "opened_at": to_utc_z(window["opened_at"]),
            "last_closing_id": previous.id if previous else None,
            "last_closed_at": to_utc_z(previous.closed_at) if previous else None,
            "theoretical_total_cents": window["theoretical_total_cents"],
            "sale_count": window["sale_count"],
            "generated_at": to_utc_z(utcnow()),
        }

    return run_with_retry(_op)


def close_cash_register(
    actual_total_cents,
    *,
    actor,
    comments: str | None = None,
    theoretical_total_cents=None,
    tolerance_cents: int | None = None,
) -> CashClosing:
    """
    Close the actor's cash window.

    WHY: the expected takings are recomputed from committed sales, never taken
    from the client. A supplied theoretical total is only a consistency check:
    if it differs from the recomputed one by more than the tolerance, the
    client is looking at stale data and the closing is refused.

    IMMUTABLE: closings are never updated; closed_at is the lower bound of the
    next window.
    """
    actual = coerce_int("actual_total_cents", actual_total_cents)
    if actual < 0:
        raise ValidationError("actual_total_cents must be >= 0")
    supplied = None
    if theoretical_total_cents is not None:
        supplied = coerce_int("theoretical_total_cents", theoretical_total_cents)
    if tolerance_cents is None:
        tolerance_cents = current_app.config.get("CASH_CLOSING_TOLERANCE_CENTS", 1)

    with atomic(actor) as uow:
        window = _window(actor.user_id)
        recomputed = window["theoretical_total_cents"]

        if supplied is not None and abs(supplied - recomputed) > tolerance_cents:
            raise TheoreticalMismatch(supplied, recomputed)

        closed_at = utcnow()
        closing = CashClosing(
            cashier_user_id=actor.user_id,
            opened_at=window["opened_at"] or closed_at,
            closed_at=closed_at,
            theoretical_total_cents=recomputed,
            actual_total_cents=actual,
            variance_cents=actual - recomputed,
            sale_count=window["sale_count"],
            comments=(comments or "").strip() or None,
            created_at=closed_at,
        )
        db.session.add(closing)
        uow.record(closing, "closed")

    if closing.variance_cents:
        current_app.logger.warning(
            "Cash closing %s for user %s: variance %s cents (expected %s, counted %s)",
            closing.id, actor.user_id, closing.variance_cents,
            closing.theoretical_total_cents, closing.actual_total_cents,
        )
    return closing


def list_closings(*, cashier_user_id: int | None = None, limit: int = 50) -> list[CashClosing]:
    q = db.session.query(CashClosing)
    if cashier_user_id is not None:
        q = q.filter(CashClosing.cashier_user_id == cashier_user_id)
    return q.order_by(CashClosing.closed_at.desc(), CashClosing.id.desc()).limit(limit).all()
