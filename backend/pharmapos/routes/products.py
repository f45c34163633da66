# Overview: Flask API routes for the product catalog (read-only); returns JSON responses.

from flask import Blueprint, request, current_app, jsonify

from ..services import catalog_service, lot_service
from ..services.errors import EngineError
from ..decorators import require_actor
from ._errors import engine_error_response, internal_error_response

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_actor
def list_products():
    """
    Query params:
    - q: str (optional) - substring of name or code
    - include_inactive: "1" to include inactive products
    """
    try:
        products = catalog_service.list_products(
            active_only=request.args.get("include_inactive") != "1",
            search=request.args.get("q"),
        )
        return jsonify({"items": [p.to_dict() for p in products], "count": len(products)})
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list products")
        return internal_error_response()


@products_bp.get("/<int:product_id>")
@require_actor
def get_product(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
        data = product.to_dict()
        data["available_quantity"] = lot_service.available_quantity(product_id)
        return jsonify({"product": data})
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get product")
        return internal_error_response()
