"""
Sale Engine - validate, allocate by FEFO, commit; cancel and partial returns.

WHY: A sale touches several lots, lines and ledger rows at once. Everything is
planned first (prescription, stock, payment) with the lots locked, and only
then written, so a rejected sale leaves no trace.

FLOW:
1. _plan_sale(): read-only; raises PrescriptionRequired / InsufficientStock /
   InsufficientPayment before any write.
2. _write_sale(): Sale row, one SaleLine + one `vente` movement per consumed lot.
3. Both run inside atomic(): one transaction, rolled back on any error.

Returns never edit the original sale: each return is a new Sale with status
`returned`, negative quantities and a negative total.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import (
    MovementType,
    Prescription,
    Product,
    Sale,
    SaleLine,
    SaleStatus,
)
from ..models.sales import PAYMENT_MODE_CASH, VALID_PAYMENT_MODES, can_transition
from ..validation import (
    MAX_RATE_BPS,
    parse_optional_cents,
    parse_quantity_items,
    parse_rate_bps,
)
from pharmapos.time_utils import parse_iso_date, today as business_today, utcnow
from .catalog_service import get_products
from .concurrency import atomic, lock_for_update
from .errors import (
    AlreadyProcessed,
    InsufficientPayment,
    InsufficientStock,
    NotFound,
    PrescriptionRequired,
    ReturnExceedsOriginal,
    ValidationError,
)
from .ledger_service import append_movement
from .lot_service import allocate_fefo, decrement_lot, find_allocatable, increment_lot


@dataclass
class _PlannedLine:
    product: Product
    lot: object
    quantity: int
    unit_price_cents: int
    line_total_cents: int
    insurer_share_cents: int
    client_share_cents: int


@dataclass
class _SalePlan:
    lines: list[_PlannedLine] = field(default_factory=list)
    total_cents: int = 0
    insurer_share_cents: int = 0
    client_share_cents: int = 0
    payment_mode: str = PAYMENT_MODE_CASH
    insurance_rate_bps: int | None = None
    amount_tendered_cents: int = 0
    change_due_cents: int = 0


def insurer_share(amount_cents: int, rate_bps: int | None) -> int:
    """Insurer part of an amount, rounded half up to the cent."""
    if not rate_bps:
        return 0
    return (amount_cents * rate_bps + MAX_RATE_BPS // 2) // MAX_RATE_BPS


def aggregate_items(items) -> dict[int, int]:
    """[{product_id, quantity}, ...] -> {product_id: total quantity}, request order kept."""
    requested: dict[int, int] = {}
    for product_id, quantity in parse_quantity_items(items, key="product_id", label="items"):
        requested[product_id] = requested.get(product_id, 0) + quantity
    return requested


def validate_payment_mode(payment_mode: str | None) -> str:
    mode = (payment_mode or PAYMENT_MODE_CASH).strip()
    if mode not in VALID_PAYMENT_MODES:
        raise ValidationError(
            f"Invalid payment_mode: {mode}",
            details={"allowed": VALID_PAYMENT_MODES},
        )
    return mode


def check_prescriptions(products, has_prescription: bool) -> None:
    if has_prescription:
        return
    for product in products:
        if product.prescription_required:
            raise PrescriptionRequired(product.id, product.name)


def _plan_sale(
    *,
    requested: dict[int, int],
    products: dict[int, Product],
    unit_prices: dict[int, int],
    has_prescription: bool,
    payment_mode: str,
    amount_tendered_cents: int | None,
    insurance_rate_bps: int | None,
    on: date,
) -> _SalePlan:
    for product in products.values():
        if not product.is_active:
            raise ValidationError(f"Product {product.name} is inactive", details={"product_id": product.id})
    check_prescriptions([products[pid] for pid in requested], has_prescription)

    # Validate every product before allocating any of them.
    # Lots are locked in product id order so concurrent sales cannot deadlock.
    lots_by_product = {}
    for product_id in sorted(requested):
        quantity = requested[product_id]
        lots = find_allocatable(product_id, on, lock=True)
        available = sum(lot.current_quantity for lot in lots)
        if available < quantity:
            raise InsufficientStock(product_id, available, quantity, products[product_id].name)
        lots_by_product[product_id] = lots

    plan = _SalePlan(payment_mode=payment_mode, insurance_rate_bps=insurance_rate_bps)
    for product_id, quantity in requested.items():
        unit_price = unit_prices[product_id]
        for lot, take in allocate_fefo(lots_by_product[product_id], quantity):
            line_total = take * unit_price
            insurer = insurer_share(line_total, insurance_rate_bps)
            plan.lines.append(
                _PlannedLine(
                    product=products[product_id],
                    lot=lot,
                    quantity=take,
                    unit_price_cents=unit_price,
                    line_total_cents=line_total,
                    insurer_share_cents=insurer,
                    client_share_cents=line_total - insurer,
                )
            )
            plan.total_cents += line_total
            plan.insurer_share_cents += insurer
            plan.client_share_cents += line_total - insurer

    # The customer pays the client share; no tender means exact payment
    due = plan.client_share_cents
    tendered = due if amount_tendered_cents is None else amount_tendered_cents
    if tendered < due:
        raise InsufficientPayment(due, tendered)
    plan.amount_tendered_cents = tendered
    plan.change_due_cents = tendered - due
    return plan


def _write_sale(
    plan: _SalePlan,
    *,
    actor,
    prescription_id: int | None = None,
    patient_id: int | None = None,
    order_id: int | None = None,
) -> Sale:
    sale = Sale(
        status=SaleStatus.COMPLETED.value,
        total_cents=plan.total_cents,
        cashier_user_id=actor.user_id,
        order_id=order_id,
        prescription_id=prescription_id,
        patient_id=patient_id,
        payment_mode=plan.payment_mode,
        amount_tendered_cents=plan.amount_tendered_cents,
        change_due_cents=plan.change_due_cents,
        insurance_rate_bps=plan.insurance_rate_bps,
        client_share_cents=plan.client_share_cents,
        insurer_share_cents=plan.insurer_share_cents,
        created_at=utcnow(),
    )
    db.session.add(sale)
    db.session.flush()

    for planned in plan.lines:
        decrement_lot(planned.lot, planned.quantity)
        db.session.add(
            SaleLine(
                sale_id=sale.id,
                product_id=planned.product.id,
                lot_id=planned.lot.id,
                quantity=planned.quantity,
                unit_price_cents=planned.unit_price_cents,
                line_total_cents=planned.line_total_cents,
                insurance_rate_bps=plan.insurance_rate_bps,
                client_share_cents=planned.client_share_cents,
                insurer_share_cents=planned.insurer_share_cents,
                created_at=sale.created_at,
            )
        )
        append_movement(
            product_id=planned.product.id,
            lot_id=planned.lot.id,
            sale_id=sale.id,
            quantity=-planned.quantity,
            movement_type=MovementType.VENTE,
            actor_user_id=actor.user_id,
            reason=f"Vente #{sale.id}",
            occurred_at=sale.created_at,
        )

    return sale


def record_sale(
    uow,
    *,
    requested: dict[int, int],
    unit_prices: dict[int, int] | None = None,
    actor,
    payment_mode: str,
    amount_tendered_cents: int | None = None,
    prescription_id: int | None = None,
    patient_id: int | None = None,
    insurance_rate_bps: int | None = None,
    order_id: int | None = None,
    on: date | None = None,
) -> Sale:
    """
    Plan and write a sale inside an already-open atomic() block.

    unit_prices defaults to current catalog prices; paying an order passes
    the prices staged on the order.
    """
    products = get_products(requested.keys())
    if unit_prices is None:
        unit_prices = {pid: products[pid].price_cents for pid in requested}

    plan = _plan_sale(
        requested=requested,
        products=products,
        unit_prices=unit_prices,
        has_prescription=prescription_id is not None,
        payment_mode=payment_mode,
        amount_tendered_cents=amount_tendered_cents,
        insurance_rate_bps=insurance_rate_bps,
        on=on or business_today(),
    )
    sale = _write_sale(
        plan,
        actor=actor,
        prescription_id=prescription_id,
        patient_id=patient_id,
        order_id=order_id,
    )
    uow.record(sale, "created")
    return sale


def _parse_inline_prescription(data, patient_id: int | None) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("prescription must be an object")
    number = str(data.get("number") or "").strip()
    prescriber = str(data.get("prescriber") or "").strip()
    if not number:
        raise ValidationError("prescription.number is required")
    if not prescriber:
        raise ValidationError("prescription.prescriber is required")
    try:
        issued_on = parse_iso_date(data.get("issued_on"))
    except ValueError:
        raise ValidationError("prescription.issued_on must be an ISO date")
    if issued_on is None:
        raise ValidationError("prescription.issued_on is required")
    return {
        "number": number[:64],
        "prescriber": prescriber[:255],
        "issued_on": issued_on,
        "patient_id": data.get("patient_id", patient_id),
    }


def resolve_prescription(
    *,
    prescription_id: int | None,
    prescription: dict | None,
    patient_id: int | None,
    actor,
) -> int | None:
    """Return the id of an existing prescription or of one created inline."""
    if prescription_id is not None:
        if db.session.get(Prescription, prescription_id) is None:
            raise NotFound("Prescription", prescription_id)
        return prescription_id
    if prescription is None:
        return None

    fields = _parse_inline_prescription(prescription, patient_id)
    row = Prescription(created_by_user_id=actor.user_id, **fields)
    db.session.add(row)
    db.session.flush()
    return row.id


def create_sale(
    items,
    *,
    actor,
    payment_mode: str = PAYMENT_MODE_CASH,
    amount_tendered_cents=None,
    prescription_id: int | None = None,
    prescription: dict | None = None,
    patient_id: int | None = None,
    insurance_rate_bps=None,
    on: date | None = None,
) -> Sale:
    """
    Direct counter sale: validate every line, allocate FEFO, commit once.
    """
    requested = aggregate_items(items)
    mode = validate_payment_mode(payment_mode)
    tendered = parse_optional_cents("amount_tendered_cents", amount_tendered_cents)
    rate = parse_rate_bps(insurance_rate_bps)
    if prescription is not None and prescription_id is None:
        # Shape errors surface before the transaction opens
        _parse_inline_prescription(prescription, patient_id)

    with atomic(actor) as uow:
        # Prescription requirement is checked before an inline one is written
        products = get_products(requested.keys())
        check_prescriptions(
            [products[pid] for pid in requested],
            prescription_id is not None or prescription is not None,
        )
        resolved = resolve_prescription(
            prescription_id=prescription_id,
            prescription=prescription,
            patient_id=patient_id,
            actor=actor,
        )
        sale = record_sale(
            uow,
            requested=requested,
            actor=actor,
            payment_mode=mode,
            amount_tendered_cents=tendered,
            prescription_id=resolved,
            patient_id=patient_id,
            insurance_rate_bps=rate,
            on=on,
        )

    current_app.logger.info(
        "Sale %s committed by user %s: total %s cents, %s lines",
        sale.id, actor.user_id, sale.total_cents, len(sale.lines),
    )
    return sale


def _get_sale_locked(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise NotFound("Sale", sale_id)
    return sale


def cancel_sale(sale_id: int, *, reason: str | None, actor) -> Sale:
    """
    Cancel a completed sale: every lot gets its quantity back through a
    `retour` movement. Only `completed` sales can be cancelled.
    """
    reason = (reason or "").strip() or None

    with atomic(actor) as uow:
        sale = _get_sale_locked(sale_id)
        if not can_transition(sale.status, SaleStatus.CANCELLED.value):
            raise AlreadyProcessed(
                f"Sale {sale.id} cannot be cancelled (status {sale.status})",
                details={"sale_id": sale.id, "status": sale.status},
            )
        before = sale.to_dict()

        for line in sale.lines:
            if line.lot is not None:
                increment_lot(line.lot, line.quantity)
            append_movement(
                product_id=line.product_id,
                lot_id=line.lot_id,
                sale_id=sale.id,
                quantity=line.quantity,
                movement_type=MovementType.RETOUR,
                actor_user_id=actor.user_id,
                reason=f"Annulation vente #{sale.id}" + (f": {reason}" if reason else ""),
            )

        sale.status = SaleStatus.CANCELLED.value
        sale.cancelled_by_user_id = actor.user_id
        sale.cancelled_at = utcnow()
        sale.cancel_reason = reason
        uow.record(sale, "cancelled", before=before)

    current_app.logger.info("Sale %s cancelled by user %s", sale.id, actor.user_id)
    return sale


def returned_quantity(line_id: int) -> int:
    """Units of an original line already given back by earlier returns."""
    total = (
        db.session.query(func.coalesce(func.sum(SaleLine.quantity), 0))
        .filter(SaleLine.returned_line_id == line_id)
        .scalar()
    )
    return -int(total or 0)


def return_partial(sale_id: int, items, *, reason: str | None, actor) -> tuple[Sale, Sale]:
    """
    Give back part of a sale.

    items: [{line_id, quantity}, ...] referencing lines of the original sale.
    Returns (return_sale, original_sale). The original is stamped
    `returned_partially` on its first return only; later returns leave it as is.
    """
    requested: dict[int, int] = {}
    for line_id, quantity in parse_quantity_items(items, key="line_id", label="items"):
        requested[line_id] = requested.get(line_id, 0) + quantity
    reason = (reason or "").strip() or None

    with atomic(actor) as uow:
        original = _get_sale_locked(sale_id)
        if original.status not in (SaleStatus.COMPLETED.value, SaleStatus.RETURNED_PARTIALLY.value):
            raise AlreadyProcessed(
                f"Sale {original.id} cannot take returns (status {original.status})",
                details={"sale_id": original.id, "status": original.status},
            )

        lines_by_id = {line.id: line for line in original.lines}
        for line_id, quantity in requested.items():
            line = lines_by_id.get(line_id)
            if line is None:
                raise ValidationError(
                    f"Line {line_id} does not belong to sale {original.id}",
                    details={"line_id": line_id, "sale_id": original.id},
                )
            already = returned_quantity(line_id)
            if already + quantity > line.quantity:
                raise ReturnExceedsOriginal(line_id, line.quantity, already, quantity)

        now = utcnow()
        return_sale = Sale(
            status=SaleStatus.RETURNED.value,
            total_cents=0,
            cashier_user_id=actor.user_id,
            prescription_id=original.prescription_id,
            patient_id=original.patient_id,
            original_sale_id=original.id,
            payment_mode=original.payment_mode,
            amount_tendered_cents=None,
            change_due_cents=0,
            insurance_rate_bps=original.insurance_rate_bps,
            reason=reason,
            created_at=now,
        )
        db.session.add(return_sale)
        db.session.flush()

        total = insurer_total = 0
        for line_id, quantity in requested.items():
            line = lines_by_id[line_id]
            amount = quantity * line.unit_price_cents
            insurer = insurer_share(amount, line.insurance_rate_bps)

            if line.lot is not None:
                increment_lot(line.lot, quantity)
            db.session.add(
                SaleLine(
                    sale_id=return_sale.id,
                    product_id=line.product_id,
                    lot_id=line.lot_id,
                    quantity=-quantity,
                    unit_price_cents=line.unit_price_cents,
                    line_total_cents=-amount,
                    insurance_rate_bps=line.insurance_rate_bps,
                    client_share_cents=-(amount - insurer),
                    insurer_share_cents=-insurer,
                    returned_line_id=line.id,
                    created_at=now,
                )
            )
            append_movement(
                product_id=line.product_id,
                lot_id=line.lot_id,
                sale_id=return_sale.id,
                quantity=quantity,
                movement_type=MovementType.RETOUR,
                actor_user_id=actor.user_id,
                reason=f"Retour vente #{original.id}" + (f": {reason}" if reason else ""),
                occurred_at=now,
            )
            total += amount
            insurer_total += insurer

        return_sale.total_cents = -total
        return_sale.insurer_share_cents = -insurer_total
        return_sale.client_share_cents = -(total - insurer_total)
        uow.record(return_sale, "created")

        if original.status == SaleStatus.COMPLETED.value:
            before = original.to_dict()
            original.status = SaleStatus.RETURNED_PARTIALLY.value
            uow.record(original, "returned_partially", before=before)

    current_app.logger.info(
        "Return sale %s for sale %s: %s cents", return_sale.id, original.id, return_sale.total_cents
    )
    return return_sale, original


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFound("Sale", sale_id)
    return sale


def list_sales(
    *,
    cashier_user_id: int | None = None,
    status: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 100,
) -> list[Sale]:
    q = db.session.query(Sale)
    if cashier_user_id is not None:
        q = q.filter(Sale.cashier_user_id == cashier_user_id)
    if status:
        try:
            q = q.filter(Sale.status == SaleStatus(status).value)
        except ValueError:
            raise ValidationError(f"Invalid status: {status}")
    if date_from is not None:
        q = q.filter(Sale.created_at >= date_from)
    if date_to is not None:
        q = q.filter(Sale.created_at <= date_to)
    return q.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()
