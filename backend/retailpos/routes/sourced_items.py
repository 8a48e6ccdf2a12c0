# Overview: Flask API routes for sourced-item records (cost/profit analytics).

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_auth, require_capability
from ..services import sourced_item_service
from ..services.exceptions import SaleError
from ..validation import parse_datetime_param


sourced_items_bp = Blueprint("sourced_items", __name__, url_prefix="/api/sourced-items")


@sourced_items_bp.get("/")
@require_auth
@require_capability("VIEW_SOURCED_ITEMS")
def list_sourced_items_route():
    """
    Query params: store_id, start, end, search (product name or sale
    number), page, per_page. The response carries aggregate stats for the
    whole filter, not just the page.
    """
    try:
        result = sourced_item_service.list_sourced_items(
            store_id=request.args.get("store_id", type=int),
            start=parse_datetime_param("start", request.args.get("start")),
            end=parse_datetime_param("end", request.args.get("end")),
            search=request.args.get("search"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list sourced items")
        return jsonify({"error": "Internal server error"}), 500


@sourced_items_bp.delete("/<int:item_id>")
@require_auth
@require_capability("DELETE_SOURCED_ITEM")
def delete_sourced_item_route(item_id: int):
    """Deleting a record never touches stock or the sale it came from."""
    try:
        sourced_item_service.delete_sourced_item(item_id)
        return jsonify({"message": "Sourced item deleted"}), 200
    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete sourced item")
        return jsonify({"error": "Internal server error"}), 500
