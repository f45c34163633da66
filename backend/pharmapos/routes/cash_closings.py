# Overview: Flask API routes for cash register closings; returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import cash_service
from ..services.errors import EngineError, ValidationError
from ..decorators import require_actor
from ._errors import engine_error_response, internal_error_response, query_int

cash_closings_bp = Blueprint("cash_closings", __name__, url_prefix="/api/cash-closings")


@cash_closings_bp.get("/current")
@require_actor
def current_window():
    """Pending window of the calling cashier: expected takings since the last closing."""
    try:
        return jsonify(cash_service.current_summary(g.actor.user_id))
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute cash summary")
        return internal_error_response()


@cash_closings_bp.post("")
@require_actor
def close_register():
    """
    Request body:
    {
        "actual_total_cents": 14950,
        "theoretical_total_cents": 15000,   (optional, checked against the server figure)
        "comments": "..."                   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("actual_total_cents") is None:
            raise ValidationError("actual_total_cents is required")
        closing = cash_service.close_cash_register(
            data.get("actual_total_cents"),
            actor=g.actor,
            comments=data.get("comments"),
            theoretical_total_cents=data.get("theoretical_total_cents"),
        )
        return jsonify({"closing": closing.to_dict()}), 201
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close cash register")
        return internal_error_response()


@cash_closings_bp.get("")
@require_actor
def list_closings_route():
    try:
        closings = cash_service.list_closings(
            cashier_user_id=query_int(request.args, "cashier_user_id"),
            limit=min(query_int(request.args, "limit", default=50), 500),
        )
        return jsonify({"items": [c.to_dict() for c in closings], "count": len(closings)})
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list cash closings")
        return internal_error_response()
