# Overview: Flask API routes for stock operations; parses input and returns JSON responses.

# backend/crediario/routes/stock.py
"""
Stock ledger routes.

Stock only moves through reservations (see reservations.py) and the manual
adjustment below; there is no endpoint that writes stock_quantity directly.
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError
from ..services import stock_service
from ..validation import ValidationError


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/products/<int:product_id>")
def get_product_stock_route(product_id: int):
    try:
        product = stock_service.get_product(product_id)
        return jsonify(product.to_dict()), 200
    except LedgerError as e:
        return jsonify({"error": e.message, "code": e.code}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get product stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/products/<int:product_id>/history")
def get_stock_history_route(product_id: int):
    """
    Stock movements for a product, newest first.

    Query params:
    - limit: max rows (default STOCK_HISTORY_PAGE_SIZE)
    """
    try:
        limit = request.args.get("limit", type=int)
        movements = stock_service.list_stock_movements(product_id, limit=limit)
        return jsonify({
            "product_id": product_id,
            "movements": [m.to_dict() for m in movements],
        }), 200
    except LedgerError as e:
        return jsonify({"error": e.message, "code": e.code}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list stock history")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/adjust")
def adjust_stock_route():
    """
    Manual stock correction.

    Request body:
    {
        "product_id": 1,
        "delta": -2,
        "reason": "DAMAGED",  (optional, default MANUAL_ADJUSTMENT)
        "reference": "count 2026-03"  (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        product_id = data.get("product_id")
        if product_id is None:
            raise ValidationError("product_id is required")

        new_level = stock_service.adjust_stock(
            product_id,
            data.get("delta"),
            reason=data.get("reason") or stock_service.REASON_MANUAL_ADJUSTMENT,
            reference=data.get("reference"),
        )
        return jsonify({"product_id": product_id, "stock_quantity": new_level}), 200
    except ValidationError as e:
        return jsonify({"error": str(e), "code": "validation_error"}), 400
    except LedgerError as e:
        return jsonify({"error": e.message, "code": e.code}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500
