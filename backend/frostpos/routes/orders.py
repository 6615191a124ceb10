# Overview: Flask API routes for orders; status changes drive stock through the order service.

from flask import Blueprint, request, g, jsonify, current_app

from ..decorators import require_actor, require_role, ROLE_ADMIN, ROLE_CASHIER
from ..errors import DomainError, error_response
from ..models import Order
from ..services import orders_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_order_update,
)

ORDER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"customer_name", "items"},
    required_on_create={"items"},
)

ORDER_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"status", "amount_paid", "payment_method", "customer_name"},
)

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
@require_actor
def list_orders_route():
    """
    Query params:
    - status: PENDING | COMPLETED | CANCELLED (optional)
    - cashier_id: int (optional)
    - start / end: ISO-8601 datetimes (optional)
    - page / per_page: int (optional)
    """
    try:
        result = orders_service.list_orders(
            status=request.args.get("status"),
            cashier_id=request.args.get("cashier_id", type=int),
            start=request.args.get("start"),
            end=request.args.get("end"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except DomainError as e:
        return error_response(e)


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        return jsonify(orders_service.get_order(order_id).to_dict()), 200
    except DomainError as e:
        return error_response(e)


@orders_bp.post("")
@require_actor
@require_role(ROLE_ADMIN, ROLE_CASHIER)
def create_order_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Order, payload=payload, policy=ORDER_CREATE_POLICY, partial=False)
        order = orders_service.create_order(
            cashier_id=g.user_id,
            items=patch["items"],
            customer_name=patch.get("customer_name"),
        )
        return jsonify(order.to_dict()), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>")
@require_actor
@require_role(ROLE_ADMIN, ROLE_CASHIER)
def update_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        if isinstance(payload.get("status"), str):
            payload["status"] = payload["status"].strip().upper()
        patch = validate_payload(model=Order, payload=payload, policy=ORDER_UPDATE_POLICY, partial=True)
        enforce_rules_order_update(patch)

        kwargs = {}
        if "customer_name" in patch:
            kwargs["customer_name"] = patch["customer_name"]

        order = orders_service.update_order(
            order_id,
            user_id=g.user_id,
            status=patch.get("status"),
            amount_paid=patch.get("amount_paid"),
            payment_method=patch.get("payment_method"),
            **kwargs,
        )
        return jsonify(order.to_dict()), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
@require_actor
@require_role(ROLE_ADMIN)
def delete_order_route(order_id: int):
    try:
        result = orders_service.delete_order(order_id, user_id=g.user_id)
        return jsonify(result), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500
