# Overview: Lot store; FEFO selection, guarded quantity changes, receptions and alerts.

from __future__ import annotations

from datetime import date, timedelta

from flask import current_app
from sqlalchemy import func, select, update

from ..extensions import db
from ..models import Lot, MovementType, Product
from ..validation import coerce_int, enforce_rules_lot_receive
from pharmapos.time_utils import parse_iso_date, today as business_today, utcnow
from .catalog_service import get_product
from .concurrency import atomic, lock_for_update, run_with_retry
from .errors import (
    InsufficientLotQuantity,
    LotCapacityExceeded,
    NotFound,
    ValidationError,
)
from .ledger_service import append_movement


"""
Lot Store Rules (authoritative)

- A lot is allocatable iff current_quantity > 0 AND expiry_date > today.
- FEFO: allocatable lots are consumed by expiry_date ascending, then id.
- decrement_lot / increment_lot are the ONLY writers of current_quantity.
  Both are compare-and-set UPDATEs; the caller pairs every call with exactly
  one StockMovement in the same transaction.
- Increments never take a lot above its initial_quantity.
"""


def _allocatable_query(product_id: int, on: date):
    return (
        db.session.query(Lot)
        .filter(
            Lot.product_id == product_id,
            Lot.current_quantity > 0,
            Lot.expiry_date > on,
        )
        .order_by(Lot.expiry_date.asc(), Lot.id.asc())
    )


def find_allocatable(product_id: int, on: date | None = None, *, lock: bool = False) -> list[Lot]:
    q = _allocatable_query(product_id, on or business_today())
    if lock:
        q = lock_for_update(q)
    return q.all()


def available_quantity(product_id: int, on: date | None = None) -> int:
    on = on or business_today()
    total = (
        db.session.query(func.coalesce(func.sum(Lot.current_quantity), 0))
        .filter(
            Lot.product_id == product_id,
            Lot.current_quantity > 0,
            Lot.expiry_date > on,
        )
        .scalar()
    )
    return int(total or 0)


def allocate_fefo(lots: list[Lot], quantity: int) -> list[tuple[Lot, int]]:
    """
    Plan which lots cover `quantity`, in the order given (already FEFO).

    Returns [(lot, take), ...]. Raises ValueError if the lots cannot cover it;
    callers check availability first and raise InsufficientStock themselves.
    """
    plan: list[tuple[Lot, int]] = []
    remaining = quantity
    for lot in lots:
        if remaining <= 0:
            break
        take = min(lot.current_quantity, remaining)
        if take <= 0:
            continue
        plan.append((lot, take))
        remaining -= take
    if remaining > 0:
        raise ValueError(f"lots cover {quantity - remaining} of {quantity}")
    return plan


def decrement_lot(lot: Lot, quantity: int) -> None:
    """Remove quantity from a lot or raise InsufficientLotQuantity; nothing partial."""
    if quantity <= 0:
        raise ValueError("decrement quantity must be positive")

    result = db.session.execute(
        update(Lot)
        .where(Lot.id == lot.id, Lot.current_quantity >= quantity)
        .values(
            current_quantity=Lot.current_quantity - quantity,
            version_id=Lot.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = db.session.execute(
            select(Lot.current_quantity).where(Lot.id == lot.id)
        ).scalar()
        raise InsufficientLotQuantity(lot.id, int(current or 0), quantity)

    db.session.expire(lot, ["current_quantity", "version_id"])


def increment_lot(lot: Lot, quantity: int) -> None:
    """Put quantity back into a lot, never above initial_quantity."""
    if quantity <= 0:
        raise ValueError("increment quantity must be positive")

    result = db.session.execute(
        update(Lot)
        .where(Lot.id == lot.id, Lot.current_quantity + quantity <= Lot.initial_quantity)
        .values(
            current_quantity=Lot.current_quantity + quantity,
            version_id=Lot.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        row = db.session.execute(
            select(Lot.current_quantity, Lot.initial_quantity).where(Lot.id == lot.id)
        ).one()
        raise LotCapacityExceeded(lot.id, int(row[0]), quantity, int(row[1]))

    db.session.expire(lot, ["current_quantity", "version_id"])


def get_lot(lot_id: int, *, lock: bool = False) -> Lot:
    q = db.session.query(Lot).filter(Lot.id == lot_id)
    if lock:
        q = lock_for_update(q)
    lot = q.first()
    if lot is None:
        raise NotFound("Lot", lot_id)
    return lot


def list_lots(*, product_id: int | None = None, include_empty: bool = True) -> list[Lot]:
    q = db.session.query(Lot)
    if product_id is not None:
        q = q.filter(Lot.product_id == product_id)
    if not include_empty:
        q = q.filter(Lot.current_quantity > 0)
    return q.order_by(Lot.expiry_date.asc(), Lot.id.asc()).all()


def receive_lot(
    *,
    product_id: int,
    batch_code: str,
    quantity,
    purchase_price_cents,
    expiry_date,
    actor,
    supplier_id: int | None = None,
    manufactured_on=None,
    on: date | None = None,
) -> Lot:
    """
    Register a delivered batch and its single `reception` movement.
    """
    on = on or business_today()
    batch_code = (batch_code or "").strip()
    if not batch_code:
        raise ValidationError("batch_code is required")

    try:
        patch = {
            "initial_quantity": coerce_int("quantity", quantity),
            "purchase_price_cents": coerce_int("purchase_price_cents", purchase_price_cents),
            "expiry_date": parse_iso_date(expiry_date),
            "manufactured_on": parse_iso_date(manufactured_on),
        }
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {exc}")
    enforce_rules_lot_receive(patch, today=on)

    product = get_product(product_id, require_active=True)

    with atomic(actor) as uow:
        lot = Lot(
            product_id=product.id,
            supplier_id=supplier_id,
            batch_code=batch_code,
            initial_quantity=patch["initial_quantity"],
            current_quantity=patch["initial_quantity"],
            purchase_price_cents=patch["purchase_price_cents"],
            manufactured_on=patch["manufactured_on"],
            expiry_date=patch["expiry_date"],
            received_by_user_id=actor.user_id,
            received_at=utcnow(),
        )
        db.session.add(lot)
        db.session.flush()

        append_movement(
            product_id=product.id,
            lot_id=lot.id,
            quantity=lot.initial_quantity,
            movement_type=MovementType.RECEPTION,
            actor_user_id=actor.user_id,
            reason=f"Reception lot {batch_code}",
        )
        uow.record(lot, "received")

    current_app.logger.info(
        "Received lot %s for product %s: %s units, expires %s",
        lot.id, product_id, lot.initial_quantity, lot.expiry_date,
    )
    return lot


def adjust_lot(*, lot_id: int, delta, reason: str, actor) -> Lot:
    """
    Correct a lot's quantity after a physical count (breakage, recount).

    Negative delta removes stock, positive delta puts it back (capped at the
    initial quantity). Writes one `ajustement` movement.
    """
    delta = coerce_int("delta", delta)
    if delta == 0:
        raise ValidationError("delta must be non-zero")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required for an adjustment")

    with atomic(actor) as uow:
        lot = get_lot(lot_id, lock=True)
        before = lot.to_dict()

        if delta < 0:
            decrement_lot(lot, -delta)
        else:
            increment_lot(lot, delta)

        append_movement(
            product_id=lot.product_id,
            lot_id=lot.id,
            quantity=delta,
            movement_type=MovementType.AJUSTEMENT,
            actor_user_id=actor.user_id,
            reason=reason,
        )
        uow.record(lot, "adjusted", before=before)

    return lot


def check_availability(product_id: int, quantity: int, on: date | None = None) -> dict:
    """Read-only stock probe; retried on transient storage errors."""
    get_product(product_id)

    def _op() -> dict:
        available = available_quantity(product_id, on)
        return {
            "product_id": product_id,
            "requested": quantity,
            "available": available,
            "sufficient": available >= quantity,
        }

    return run_with_retry(_op)


def get_stock_alerts(on: date | None = None, *, near_expiry_days: int | None = None) -> dict:
    """
    {below_threshold: [...], near_expiry: [...]}

    below_threshold: active products whose allocatable quantity <= alert_threshold.
    near_expiry: lots with stock left expiring within near_expiry_days
    (already expired lots are not listed; they are out of stock for selling).
    """
    on = on or business_today()
    if near_expiry_days is None:
        near_expiry_days = current_app.config.get("NEAR_EXPIRY_DAYS", 30)
    horizon = on + timedelta(days=near_expiry_days)

    def _op() -> dict:
        available_sq = (
            db.session.query(
                Lot.product_id.label("product_id"),
                func.sum(Lot.current_quantity).label("available"),
            )
            .filter(Lot.current_quantity > 0, Lot.expiry_date > on)
            .group_by(Lot.product_id)
            .subquery()
        )
        available_col = func.coalesce(available_sq.c.available, 0)
        low_rows = (
            db.session.query(Product, available_col)
            .outerjoin(available_sq, available_sq.c.product_id == Product.id)
            .filter(Product.is_active.is_(True), available_col <= Product.alert_threshold)
            .order_by(available_col.asc(), Product.name.asc())
            .all()
        )

        expiring = (
            db.session.query(Lot)
            .filter(
                Lot.current_quantity > 0,
                Lot.expiry_date > on,
                Lot.expiry_date <= horizon,
            )
            .order_by(Lot.expiry_date.asc(), Lot.id.asc())
            .all()
        )

        return {
            "as_of": on.isoformat(),
            "near_expiry_days": near_expiry_days,
            "below_threshold": [
                {
                    "product_id": product.id,
                    "code": product.code,
                    "name": product.name,
                    "available": int(available),
                    "alert_threshold": product.alert_threshold,
                }
                for product, available in low_rows
            ],
            "near_expiry": [
                {
                    **lot.to_dict(),
                    "days_left": (lot.expiry_date - on).days,
                }
                for lot in expiring
            ],
        }

    return run_with_retry(_op)
