# Overview: Flask API routes for the stock movement log.

# backend/frostpos/routes/stock_logs.py
"""
Stock movement routes.

Entries are append-only. The only mutable field is `notes`; DELETE does not
remove an entry, it reverses it with a compensating ADJUSTMENT.
"""
from flask import Blueprint, request, g, jsonify, current_app

from ..decorators import require_actor, require_role, ROLE_ADMIN
from ..errors import DomainError, error_response
from ..models import StockLog
from ..services import stock_service
from ..validation import ModelValidationPolicy, validate_payload

STOCK_LOG_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "quantity", "type", "buy_price", "notes"},
    required_on_create={"product_id", "quantity", "type"},
)

STOCK_LOG_NOTES_POLICY = ModelValidationPolicy(writable_fields={"notes"})

stock_logs_bp = Blueprint("stock_logs", __name__, url_prefix="/api/stock-logs")


def _stock_snapshot(log) -> dict:
    product = log.product
    return {"id": product.id, "name": product.name, "stock": product.stock}


@stock_logs_bp.get("")
@require_actor
def list_stock_logs_route():
    """
    Query params:
    - product_id: int (optional)
    - type: str (optional)
    - page / per_page: int (optional)
    """
    try:
        result = stock_service.list_movements(
            product_id=request.args.get("product_id", type=int),
            log_type=request.args.get("type"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except DomainError as e:
        return error_response(e)


@stock_logs_bp.get("/<int:log_id>")
@require_actor
def get_stock_log_route(log_id: int):
    try:
        return jsonify(stock_service.get_movement(log_id).to_dict()), 200
    except DomainError as e:
        return error_response(e)


@stock_logs_bp.post("")
@require_actor
@require_role(ROLE_ADMIN)
def create_stock_log_route():
    payload = request.get_json(silent=True) or {}

    try:
        if isinstance(payload.get("type"), str):
            payload["type"] = payload["type"].strip().upper()
        patch = validate_payload(model=StockLog, payload=payload, policy=STOCK_LOG_POLICY, partial=False)
        log = stock_service.record_movement(
            product_id=patch["product_id"],
            quantity=patch["quantity"],
            log_type=patch["type"],
            user_id=g.user_id,
            buy_price=patch.get("buy_price"),
            notes=patch.get("notes"),
        )
        return jsonify({
            "stock_log": log.to_dict(),
            "product": _stock_snapshot(log),
        }), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"error": "Internal server error"}), 500


@stock_logs_bp.patch("/<int:log_id>")
@require_actor
@require_role(ROLE_ADMIN)
def update_stock_log_notes_route(log_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=StockLog, payload=payload, policy=STOCK_LOG_NOTES_POLICY, partial=True)
        log = stock_service.update_notes(log_id, patch.get("notes"))
        return jsonify(log.to_dict()), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update stock log notes")
        return jsonify({"error": "Internal server error"}), 500


@stock_logs_bp.delete("/<int:log_id>")
@require_actor
@require_role(ROLE_ADMIN)
def reverse_stock_log_route(log_id: int):
    try:
        compensating = stock_service.reverse_movement(log_id, user_id=g.user_id)
        return jsonify({
            "reversed_log_id": log_id,
            "reversal": compensating.to_dict(),
            "product": _stock_snapshot(compensating),
        }), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reverse stock log")
        return jsonify({"error": "Internal server error"}), 500
