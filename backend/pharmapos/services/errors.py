# Overview: Error taxonomy shared by the stock, sale, order and cash services.

"""
Engine errors.

Every error carries a human-readable message, a stable machine code and a
details dict with enough context (available vs requested, mismatch deltas)
for the caller to render a message. http_status is what the API layer
returns for it.

Raising any of these inside a transaction rolls the whole unit of work back.
"""

from __future__ import annotations


class EngineError(Exception):
    code = "engine_error"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class ValidationError(EngineError):
    """Malformed input shape."""
    code = "validation_error"
    http_status = 400


class NotFound(EngineError):
    code = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found", details={"entity": entity, "id": entity_id})


class InsufficientStock(EngineError):
    code = "insufficient_stock"
    http_status = 409

    def __init__(self, product_id: int, available: int, requested: int, product_name: str | None = None):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}: available {available}, requested {requested}",
            details={"product_id": product_id, "available": available, "requested": requested},
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class InsufficientLotQuantity(EngineError):
    code = "insufficient_lot_quantity"
    http_status = 409

    def __init__(self, lot_id: int, available: int, requested: int):
        super().__init__(
            f"Lot {lot_id} holds {available}, cannot remove {requested}",
            details={"lot_id": lot_id, "available": available, "requested": requested},
        )


class LotCapacityExceeded(EngineError):
    code = "lot_capacity_exceeded"
    http_status = 409

    def __init__(self, lot_id: int, current: int, increment: int, initial: int):
        super().__init__(
            f"Lot {lot_id} cannot go above its initial quantity {initial} "
            f"(current {current}, adding {increment})",
            details={"lot_id": lot_id, "current": current, "increment": increment, "initial": initial},
        )


class PrescriptionRequired(EngineError):
    code = "prescription_required"
    http_status = 422

    def __init__(self, product_id: int, product_name: str | None = None):
        label = product_name or f"product {product_id}"
        super().__init__(f"Prescription required for {label}", details={"product_id": product_id})


class AlreadyProcessed(EngineError):
    """Order/sale already in a state that does not allow the transition."""
    code = "already_processed"
    http_status = 409


class InsufficientPayment(EngineError):
    code = "insufficient_payment"
    http_status = 402

    def __init__(self, amount_due_cents: int, amount_tendered_cents: int):
        super().__init__(
            f"Amount tendered {amount_tendered_cents} is below amount due {amount_due_cents}",
            details={
                "amount_due_cents": amount_due_cents,
                "amount_tendered_cents": amount_tendered_cents,
                "missing_cents": amount_due_cents - amount_tendered_cents,
            },
        )


class ReturnExceedsOriginal(EngineError):
    code = "return_exceeds_original"
    http_status = 422

    def __init__(self, line_id: int, sold: int, already_returned: int, requested: int):
        super().__init__(
            f"Cannot return {requested} units of line {line_id}: sold {sold}, "
            f"already returned {already_returned}",
            details={
                "line_id": line_id,
                "sold": sold,
                "already_returned": already_returned,
                "returnable": sold - already_returned,
                "requested": requested,
            },
        )


class TheoreticalMismatch(EngineError):
    code = "theoretical_mismatch"
    http_status = 409

    def __init__(self, supplied_cents: int, recomputed_cents: int):
        super().__init__(
            "Supplied theoretical total does not match recorded sales; refresh and retry",
            details={
                "supplied_cents": supplied_cents,
                "recomputed_cents": recomputed_cents,
                "delta_cents": supplied_cents - recomputed_cents,
            },
        )
