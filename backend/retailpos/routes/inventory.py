# backend/retailpos/routes/inventory.py
"""
Inventory routes.

SECURITY: All routes require authentication.
- Stock positions require VIEW_INVENTORY
- Restocking requires RESTOCK_INVENTORY
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_auth, require_capability
from ..services import stock_ledger
from ..services.exceptions import SaleError
from ..validation import parse_restock_request


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/<int:product_id>")
@require_auth
@require_capability("VIEW_INVENTORY")
def stock_position_route(product_id: int):
    """Both counters for a product: product-level stock and the store's record."""
    store_id = request.args.get("store_id", type=int)
    if not store_id:
        return jsonify({"error": "store_id required"}), 400

    try:
        position = stock_ledger.get_stock_position(product_id, store_id)
        return jsonify(position.to_dict()), 200
    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load stock position")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/restock")
@require_auth
@require_capability("RESTOCK_INVENTORY")
def restock_route():
    try:
        req = parse_restock_request(request.get_json(silent=True))
        position = stock_ledger.restock(
            product_id=req.product_id,
            store_id=req.store_id,
            quantity=req.quantity,
            location=req.location,
            batch=req.batch,
            serial_numbers=req.serial_numbers,
        )
        current_app.logger.info(
            "Restocked product %s in store %s by %s", req.product_id, req.store_id, req.quantity
        )
        return jsonify(position.to_dict()), 200
    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to restock inventory")
        return jsonify({"error": "Internal server error"}), 500
