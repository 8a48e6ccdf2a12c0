# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/retailpos/routes/sales.py
"""Sales API routes with capability enforcement"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_capability
from ..services import sale_service
from ..services.exceptions import SaleError
from ..validation import parse_datetime_param, parse_sale_request, parse_sale_update


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _error_response(e: SaleError):
    return jsonify(e.to_dict()), e.http_status


@sales_bp.post("/")
@require_auth
@require_capability("CREATE_SALE")
def create_sale_route():
    """
    Record a sale in one atomic step.

    Requires: CREATE_SALE capability
    Available to: admin, manager, cashier

    Returns 201 with the committed sale. A replayed idempotency key returns
    200 with the sale it originally produced, and 409 when the key was
    first used for a different cart.
    """
    try:
        sale_request = parse_sale_request(request.get_json(silent=True))
        sale, replayed = sale_service.submit_sale(sale_request, g.current_user)
        status = 200 if replayed else 201
        return jsonify({"sale": sale.to_dict(expand=True)}), status

    except SaleError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/")
@require_auth
@require_capability("VIEW_SALES")
def list_sales_route():
    """
    Query params: store_id, status, customer_id, cashier_id, start, end,
    search (sale number or notes), page, per_page.
    """
    try:
        result = sale_service.list_sales(
            store_id=request.args.get("store_id", type=int),
            status=request.args.get("status"),
            start=parse_datetime_param("start", request.args.get("start")),
            end=parse_datetime_param("end", request.args.get("end")),
            search=request.args.get("search"),
            customer_id=request.args.get("customer_id", type=int),
            cashier_id=request.args.get("cashier_id", type=int),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except SaleError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/stats/summary")
@require_auth
@require_capability("VIEW_SALES")
def sales_stats_route():
    try:
        stats = sale_service.get_sales_stats(
            store_id=request.args.get("store_id", type=int),
            start=parse_datetime_param("start", request.args.get("start")),
            end=parse_datetime_param("end", request.args.get("end")),
        )
        return jsonify({"stats": stats}), 200
    except SaleError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute sales stats")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_capability("VIEW_SALES")
def get_sale_route(sale_id: int):
    try:
        sale = sale_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict(expand=True)}), 200
    except SaleError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.put("/<int:sale_id>")
@require_auth
@require_capability("UPDATE_SALE")
def update_sale_route(sale_id: int):
    """
    Only notes and status can change after a sale is recorded.

    Requires: UPDATE_SALE capability
    """
    try:
        update = parse_sale_update(request.get_json(silent=True))
        sale = sale_service.update_sale(sale_id, update)
        return jsonify({"sale": sale.to_dict(expand=True)}), 200
    except SaleError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_capability("CANCEL_SALE")
def cancel_sale_route(sale_id: int):
    """
    Soft cancel: the sale stays on record as refunded.

    Requires: CANCEL_SALE capability
    """
    try:
        sale = sale_service.cancel_sale(sale_id)
        return jsonify({"sale": sale.to_dict(), "message": "Sale cancelled"}), 200
    except SaleError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500
