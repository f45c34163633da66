# Overview: Flask API routes for lot receptions and adjustments; returns JSON responses.

"""
Lot API Routes

DESIGN:
- POST /api/lots registers a delivered batch (one `reception` movement)
- POST /api/lots/<id>/adjust corrects a lot after a count (one `ajustement` movement)
- Lots are never edited or deleted through the API
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import lot_service
from ..services.errors import EngineError, ValidationError
from ..decorators import require_actor
from ._errors import engine_error_response, internal_error_response, query_int

lots_bp = Blueprint("lots", __name__, url_prefix="/api/lots")


@lots_bp.post("")
@require_actor
def receive_lot_route():
    """
    Request body:
    {
        "product_id": 1,
        "batch_code": "LOT-2026-A",
        "quantity": 100,
        "purchase_price_cents": 350,
        "expiry_date": "2027-06-30",
        "manufactured_on": "2026-01-10",   (optional)
        "supplier_id": 4                   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        product_id = data.get("product_id")
        if product_id is None:
            raise ValidationError("product_id is required")

        lot = lot_service.receive_lot(
            product_id=product_id,
            batch_code=data.get("batch_code"),
            quantity=data.get("quantity"),
            purchase_price_cents=data.get("purchase_price_cents"),
            expiry_date=data.get("expiry_date"),
            manufactured_on=data.get("manufactured_on"),
            supplier_id=data.get("supplier_id"),
            actor=g.actor,
        )
        return jsonify({"lot": lot.to_dict()}), 201
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive lot")
        return internal_error_response()


@lots_bp.get("")
@require_actor
def list_lots_route():
    try:
        lots = lot_service.list_lots(
            product_id=query_int(request.args, "product_id"),
            include_empty=request.args.get("include_empty", "1") != "0",
        )
        return jsonify({"items": [lot.to_dict() for lot in lots], "count": len(lots)})
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list lots")
        return internal_error_response()


@lots_bp.get("/<int:lot_id>")
@require_actor
def get_lot_route(lot_id: int):
    try:
        return jsonify({"lot": lot_service.get_lot(lot_id).to_dict()})
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get lot")
        return internal_error_response()


@lots_bp.post("/<int:lot_id>/adjust")
@require_actor
def adjust_lot_route(lot_id: int):
    """
    Request body: {"delta": -2, "reason": "Broken box"}
    """
    try:
        data = request.get_json(silent=True) or {}
        if "delta" not in data:
            raise ValidationError("delta is required")
        lot = lot_service.adjust_lot(
            lot_id=lot_id,
            delta=data.get("delta"),
            reason=data.get("reason"),
            actor=g.actor,
        )
        return jsonify({"lot": lot.to_dict()})
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust lot")
        return internal_error_response()
