# Overview: Flask API routes for pending orders (commandes); returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import order_service
from ..services.errors import EngineError
from ..decorators import require_actor
from ._errors import engine_error_response, internal_error_response, query_int

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_actor
def create_order_route():
    """
    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2}],
        "patient_id": 7,            (optional)
        "prescription_id": 3,       (optional, or inline "prescription")
        "notes": "..."              (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.create_order(
            data.get("items"),
            actor=g.actor,
            patient_id=data.get("patient_id"),
            prescription_id=data.get("prescription_id"),
            prescription=data.get("prescription"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict(include_lines=True)}), 201
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return internal_error_response()


@orders_bp.get("")
@require_actor
def list_orders_route():
    """
    Query params:
    - seller_user_id: int (optional); "mine=1" uses the calling actor
    - status: pending | paid | cancelled (optional)
    """
    try:
        seller = query_int(request.args, "seller_user_id")
        if request.args.get("mine") == "1":
            seller = g.actor.user_id
        orders = order_service.list_orders(
            seller_user_id=seller,
            status=request.args.get("status"),
            limit=min(query_int(request.args, "limit", default=100), 500),
        )
        return jsonify({"items": [o.to_dict() for o in orders], "count": len(orders)})
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return internal_error_response()


@orders_bp.get("/pending")
@require_actor
def pending_orders_route():
    """Cash desk queue, oldest first."""
    try:
        orders = order_service.list_pending()
        return jsonify({"items": [o.to_dict(include_lines=True) for o in orders], "count": len(orders)})
    except Exception:
        current_app.logger.exception("Failed to list pending orders")
        return internal_error_response()


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        return jsonify({"order": order_service.get_order(order_id).to_dict(include_lines=True)})
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get order")
        return internal_error_response()


@orders_bp.post("/<int:order_id>/pay")
@require_actor
def pay_order_route(order_id: int):
    """Request body: {"payment_mode": "especes", "amount_tendered_cents": 2000}"""
    try:
        data = request.get_json(silent=True) or {}
        order, sale = order_service.pay_order(
            order_id,
            actor=g.actor,
            payment_mode=data.get("payment_mode"),
            amount_tendered_cents=data.get("amount_tendered_cents"),
        )
        return jsonify({
            "order": order.to_dict(),
            "sale": sale.to_dict(include_lines=True),
        })
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to pay order")
        return internal_error_response()


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
def cancel_order_route(order_id: int):
    try:
        order = order_service.cancel_order(order_id, actor=g.actor)
        return jsonify({"order": order.to_dict()})
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return internal_error_response()
