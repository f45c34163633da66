# Overview: Pending orders (commandes) staged by sellers and paid at the cash desk.

from __future__ import annotations

from datetime import date

from flask import current_app

from ..extensions import db
from ..models import Order, OrderLine, OrderStatus
from ..validation import parse_optional_cents
from pharmapos.time_utils import today as business_today, utcnow
from .catalog_service import get_products
from .concurrency import atomic, lock_for_update
from .document_service import next_order_ticket
from .errors import AlreadyProcessed, InsufficientPayment, NotFound, ValidationError
from .sales_service import (
    aggregate_items,
    check_prescriptions,
    record_sale,
    resolve_prescription,
    validate_payment_mode,
)


"""
Order Workflow Rules (authoritative)

- pending -> paid (exactly once, produces exactly one Sale)
- pending -> cancelled
- paid / cancelled are terminal; any other transition is AlreadyProcessed
- Stock is NOT reserved while pending; it is re-validated at payment.
- Unit prices are captured at creation; payment charges those prices.
"""


def create_order(
    items,
    *,
    actor,
    patient_id: int | None = None,
    prescription_id: int | None = None,
    prescription: dict | None = None,
    notes: str | None = None,
    on: date | None = None,
) -> Order:
    requested = aggregate_items(items)
    products = get_products(requested.keys())
    for product in products.values():
        if not product.is_active:
            raise ValidationError(f"Product {product.name} is inactive", details={"product_id": product.id})
    check_prescriptions(
        [products[pid] for pid in requested],
        prescription_id is not None or prescription is not None,
    )

    with atomic(actor) as uow:
        resolved = resolve_prescription(
            prescription_id=prescription_id,
            prescription=prescription,
            patient_id=patient_id,
            actor=actor,
        )
        order = Order(
            ticket_number=next_order_ticket(on or business_today()),
            seller_user_id=actor.user_id,
            patient_id=patient_id,
            prescription_id=resolved,
            status=OrderStatus.PENDING.value,
            total_cents=0,
            notes=(notes or "").strip() or None,
            created_at=utcnow(),
        )
        db.session.add(order)
        db.session.flush()

        total = 0
        for product_id, quantity in requested.items():
            price = products[product_id].price_cents
            db.session.add(
                OrderLine(
                    order_id=order.id,
                    product_id=product_id,
                    quantity=quantity,
                    unit_price_cents=price,
                    line_total_cents=quantity * price,
                )
            )
            total += quantity * price
        order.total_cents = total
        uow.record(order, "created")

    current_app.logger.info("Order %s staged by user %s", order.ticket_number, actor.user_id)
    return order


def _get_order_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFound("Order", order_id)
    return order


def _require_pending(order: Order) -> None:
    if order.status != OrderStatus.PENDING.value:
        raise AlreadyProcessed(
            f"Order {order.ticket_number} already processed (status {order.status})",
            details={"order_id": order.id, "status": order.status},
        )


def pay_order(
    order_id: int,
    *,
    actor,
    payment_mode: str | None = None,
    amount_tendered_cents=None,
    on: date | None = None,
):
    """
    Collect payment for a pending order and turn it into a Sale.

    Returns (order, sale).
    """
    mode = validate_payment_mode(payment_mode)
    tendered = parse_optional_cents("amount_tendered_cents", amount_tendered_cents)

    with atomic(actor) as uow:
        order = _get_order_locked(order_id)
        _require_pending(order)

        if tendered is not None and tendered < order.total_cents:
            raise InsufficientPayment(order.total_cents, tendered)

        requested = {line.product_id: line.quantity for line in order.lines}
        prices = {line.product_id: line.unit_price_cents for line in order.lines}
        before = order.to_dict()

        sale = record_sale(
            uow,
            requested=requested,
            unit_prices=prices,
            actor=actor,
            payment_mode=mode,
            amount_tendered_cents=tendered,
            prescription_id=order.prescription_id,
            patient_id=order.patient_id,
            order_id=order.id,
            on=on,
        )
        # Sale was linked by order_id; reload the backref for the snapshot
        db.session.expire(order, ["sales"])

        order.status = OrderStatus.PAID.value
        order.paid_by_user_id = actor.user_id
        order.paid_at = sale.created_at
        uow.record(order, "paid", before=before)

    current_app.logger.info(
        "Order %s paid by user %s as sale %s", order.ticket_number, actor.user_id, sale.id
    )
    return order, sale


def cancel_order(order_id: int, *, actor) -> Order:
    with atomic(actor) as uow:
        order = _get_order_locked(order_id)
        _require_pending(order)
        before = order.to_dict()
        order.status = OrderStatus.CANCELLED.value
        order.cancelled_by_user_id = actor.user_id
        order.cancelled_at = utcnow()
        uow.record(order, "cancelled", before=before)
    return order


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound("Order", order_id)
    return order


def list_orders(
    *,
    seller_user_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
) -> list[Order]:
    q = db.session.query(Order)
    if seller_user_id is not None:
        q = q.filter(Order.seller_user_id == seller_user_id)
    if status:
        try:
            q = q.filter(Order.status == OrderStatus(status).value)
        except ValueError:
            raise ValidationError(f"Invalid status: {status}")
    return q.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def list_pending(limit: int = 100) -> list[Order]:
    """Cash desk queue, oldest first."""
    return (
        db.session.query(Order)
        .filter(Order.status == OrderStatus.PENDING.value)
        .order_by(Order.created_at.asc(), Order.id.asc())
        .limit(limit)
        .all()
    )
