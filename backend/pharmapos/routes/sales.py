# Overview: Flask API routes for sales, cancellations and partial returns.

"""
Sales API Routes

DESIGN:
- POST /api/sales commits a counter sale in one transaction
- POST /api/sales/<id>/cancel restocks every lot of a completed sale
- POST /api/sales/<id>/returns records a return transaction (new sale, negative total)
- Errors are returned as {"error", "code", "details"} with the engine's HTTP status
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import sales_service
from ..services.errors import EngineError, ValidationError
from ..decorators import require_actor
from ..time_utils import parse_iso_datetime
from ._errors import engine_error_response, internal_error_response, query_int

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_actor
def create_sale_route():
    """
    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2}],
        "payment_mode": "especes",             (especes | carte | mobile_money)
        "amount_tendered_cents": 5000,         (optional, default exact amount)
        "prescription_id": 3,                  (optional)
        "prescription": {"number": "...", "prescriber": "...", "issued_on": "2026-01-19"},
        "patient_id": 7,                       (optional)
        "insurance_rate_bps": 7000             (optional, insurer coverage)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.create_sale(
            data.get("items"),
            actor=g.actor,
            payment_mode=data.get("payment_mode"),
            amount_tendered_cents=data.get("amount_tendered_cents"),
            prescription_id=data.get("prescription_id"),
            prescription=data.get("prescription"),
            patient_id=data.get("patient_id"),
            insurance_rate_bps=data.get("insurance_rate_bps"),
        )
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 201
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return internal_error_response()


@sales_bp.get("")
@require_actor
def list_sales_route():
    try:
        try:
            date_from = parse_iso_datetime(request.args.get("from"))
            date_to = parse_iso_datetime(request.args.get("to"))
        except ValueError:
            raise ValidationError("from/to must be ISO-8601 datetimes")
        sales = sales_service.list_sales(
            cashier_user_id=query_int(request.args, "cashier_user_id"),
            status=request.args.get("status"),
            date_from=date_from,
            date_to=date_to,
            limit=min(query_int(request.args, "limit", default=100), 500),
        )
        return jsonify({"items": [s.to_dict() for s in sales], "count": len(sales)})
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return internal_error_response()


@sales_bp.get("/<int:sale_id>")
@require_actor
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        data = sale.to_dict(include_lines=True)
        data["return_sale_ids"] = [r.id for r in sale.return_sales]
        return jsonify({"sale": data})
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return internal_error_response()


@sales_bp.post("/<int:sale_id>/cancel")
@require_actor
def cancel_sale_route(sale_id: int):
    """Request body: {"reason": "Customer changed mind"}"""
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.cancel_sale(sale_id, reason=data.get("reason"), actor=g.actor)
        return jsonify({"sale": sale.to_dict(include_lines=True)})
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return internal_error_response()


@sales_bp.post("/<int:sale_id>/returns")
@require_actor
def return_sale_route(sale_id: int):
    """
    Request body:
    {
        "items": [{"line_id": 12, "quantity": 1}],
        "reason": "Wrong dosage"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        return_sale, original = sales_service.return_partial(
            sale_id,
            data.get("items"),
            reason=data.get("reason"),
            actor=g.actor,
        )
        return jsonify({
            "return_sale": return_sale.to_dict(include_lines=True),
            "original_sale": original.to_dict(),
        }), 201
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record return")
        return internal_error_response()
