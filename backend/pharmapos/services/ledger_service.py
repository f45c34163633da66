# Overview: Append-only stock movement ledger; write path and read/reconciliation queries.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import Lot, MovementType, StockMovement
from pharmapos.time_utils import utcnow
"""
Stock Ledger Invariants (authoritative)

- Append-only: the only write is append_movement(). No update, no delete.
- Every change of Lot.current_quantity is paired with exactly one movement
  carrying the same lot_id, written in the same DB transaction.
- Reception movements carry +initial_quantity, so for every product:
      SUM(movement.quantity WHERE lot_id IS NOT NULL) == SUM(lot.current_quantity)
- Lot-independent adjustments (lot_id IS NULL) are reported separately.
"""


def append_movement(
    *,
    product_id: int,
    quantity: int,
    movement_type: MovementType | str,
    actor_user_id: int,
    lot_id: int | None = None,
    sale_id: int | None = None,
    reason: str | None = None,
    occurred_at: datetime | None = None,
) -> StockMovement:
    """
    Append one ledger entry inside the caller's transaction (flush, no commit).
    """
    mtype = MovementType(movement_type)
    if quantity == 0:
        raise ValueError("movement quantity cannot be zero")
    if mtype is MovementType.VENTE and quantity > 0:
        raise ValueError("vente movements are outflows (negative quantity)")
    if mtype in (MovementType.RECEPTION, MovementType.RETOUR) and quantity < 0:
        raise ValueError(f"{mtype.value} movements are inflows (positive quantity)")

    mv = StockMovement(
        product_id=product_id,
        lot_id=lot_id,
        sale_id=sale_id,
        quantity=quantity,
        type=mtype.value,
        reason=reason[:255] if reason else None,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(mv)
    db.session.flush()  # ensures mv.id is assigned without committing
    return mv


def list_movements(
    *,
    product_id: int,
    movement_type: str | None = None,
    lot_id: int | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    q = db.session.query(StockMovement).filter_by(product_id=product_id)
    if movement_type:
        q = q.filter(StockMovement.type == MovementType(movement_type).value)
    if lot_id is not None:
        q = q.filter(StockMovement.lot_id == lot_id)
    return (
        q.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def movement_totals_by_type(product_id: int) -> dict[str, int]:
    rows = (
        db.session.query(StockMovement.type, func.coalesce(func.sum(StockMovement.quantity), 0))
        .filter(StockMovement.product_id == product_id)
        .group_by(StockMovement.type)
        .all()
    )
    totals = {t.value: 0 for t in MovementType}
    for mtype, total in rows:
        totals[mtype] = int(total)
    return totals


def reconcile_product(product_id: int) -> dict:
    """
    Compare the physical lot quantities with what the ledger says.

    balanced is False only if something changed a lot without a movement
    (or the reverse); the engine never does that.
    """
    lot_row = db.session.query(
        func.coalesce(func.sum(Lot.initial_quantity), 0),
        func.coalesce(func.sum(Lot.current_quantity), 0),
    ).filter(Lot.product_id == product_id).one()
    initial_total, current_total = int(lot_row[0]), int(lot_row[1])

    ledger_lot_total = int(
        db.session.query(func.coalesce(func.sum(StockMovement.quantity), 0))
        .filter(StockMovement.product_id == product_id, StockMovement.lot_id.isnot(None))
        .scalar()
        or 0
    )
    unlinked_total = int(
        db.session.query(func.coalesce(func.sum(StockMovement.quantity), 0))
        .filter(StockMovement.product_id == product_id, StockMovement.lot_id.is_(None))
        .scalar()
        or 0
    )

    return {
        "product_id": product_id,
        "lots_initial_quantity": initial_total,
        "lots_current_quantity": current_total,
        "lots_consumed_quantity": initial_total - current_total,
        "ledger_lot_quantity": ledger_lot_total,
        "lot_independent_adjustments": unlinked_total,
        "totals_by_type": movement_totals_by_type(product_id),
        "balanced": ledger_lot_total == current_total,
    }
