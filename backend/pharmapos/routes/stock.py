# Overview: Flask API routes for stock alerts, availability and the movement ledger.

from flask import Blueprint, request, jsonify, current_app

from ..services import catalog_service, ledger_service, lot_service
from ..services.errors import EngineError, ValidationError
from ..decorators import require_actor
from ..time_utils import parse_iso_date
from ._errors import engine_error_response, internal_error_response, query_int

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _as_of_date():
    try:
        return parse_iso_date(request.args.get("as_of"))
    except ValueError:
        raise ValidationError("as_of must be an ISO date (YYYY-MM-DD)")


@stock_bp.get("/alerts")
@require_actor
def stock_alerts():
    """
    Query params:
    - as_of: YYYY-MM-DD (optional, default today)
    - days: near-expiry horizon in days (optional, default NEAR_EXPIRY_DAYS)
    """
    try:
        days = query_int(request.args, "days")
        if days is not None and days < 0:
            raise ValidationError("days must be >= 0")
        return jsonify(lot_service.get_stock_alerts(_as_of_date(), near_expiry_days=days))
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute stock alerts")
        return internal_error_response()


@stock_bp.get("/<int:product_id>/availability")
@require_actor
def availability(product_id: int):
    try:
        quantity = query_int(request.args, "quantity", default=1)
        if quantity < 1:
            raise ValidationError("quantity must be >= 1")
        return jsonify(lot_service.check_availability(product_id, quantity, _as_of_date()))
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check availability")
        return internal_error_response()


@stock_bp.get("/<int:product_id>/movements")
@require_actor
def movements(product_id: int):
    try:
        catalog_service.get_product(product_id)
        movement_type = request.args.get("type")
        try:
            rows = ledger_service.list_movements(
                product_id=product_id,
                movement_type=movement_type,
                lot_id=query_int(request.args, "lot_id"),
                limit=min(query_int(request.args, "limit", default=200), 1000),
            )
        except ValueError:
            raise ValidationError(f"Invalid movement type: {movement_type}")
        return jsonify({"items": [m.to_dict() for m in rows], "count": len(rows)})
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list movements")
        return internal_error_response()


@stock_bp.get("/<int:product_id>/reconciliation")
@require_actor
def reconciliation(product_id: int):
    try:
        catalog_service.get_product(product_id)
        return jsonify(ledger_service.reconcile_product(product_id))
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile stock")
        return internal_error_response()
