# Overview: Flask API routes for individual order lines.

from flask import Blueprint, request, g, jsonify, current_app

from ..decorators import require_actor, require_role, ROLE_ADMIN, ROLE_CASHIER
from ..errors import DomainError, error_response
from ..models import OrderItem
from ..services import order_items_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_order_item,
    enforce_rules_order_update,
    to_money,
)

# sell_price is snapshotted from the product on create, never client supplied
ORDER_ITEM_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"order_id", "product_id", "quantity", "amount_paid"},
    required_on_create={"order_id", "product_id", "quantity"},
)

ORDER_ITEM_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"quantity", "sell_price"},
)

order_items_bp = Blueprint("order_items", __name__, url_prefix="/api/order-items")


def _item_response(item):
    return {
        "item": item.to_dict(),
        "order": item.order.to_dict(include_items=False),
    }


@order_items_bp.get("/<int:item_id>")
@require_actor
def get_order_item_route(item_id: int):
    try:
        return jsonify(order_items_service.get_order_item(item_id).to_dict()), 200
    except DomainError as e:
        return error_response(e)


@order_items_bp.post("")
@require_actor
@require_role(ROLE_ADMIN, ROLE_CASHIER)
def create_order_item_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=OrderItem, payload=payload, policy=ORDER_ITEM_CREATE_POLICY, partial=False)
        enforce_rules_order_item(patch)
        if patch.get("amount_paid") is not None:
            patch["amount_paid"] = to_money(patch["amount_paid"], "amount_paid")
            enforce_rules_order_update(patch)

        item = order_items_service.add_order_item(
            order_id=patch["order_id"],
            product_id=patch["product_id"],
            quantity=patch["quantity"],
            user_id=g.user_id,
            amount_paid=patch.get("amount_paid"),
        )
        return jsonify(_item_response(item)), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add order item")
        return jsonify({"error": "Internal server error"}), 500


@order_items_bp.put("/<int:item_id>")
@require_actor
@require_role(ROLE_ADMIN, ROLE_CASHIER)
def update_order_item_route(item_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=OrderItem, payload=payload, policy=ORDER_ITEM_UPDATE_POLICY, partial=True)
        enforce_rules_order_item(patch)
        item = order_items_service.update_order_item(
            item_id,
            quantity=patch.get("quantity"),
            sell_price=patch.get("sell_price"),
        )
        return jsonify(_item_response(item)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order item")
        return jsonify({"error": "Internal server error"}), 500


@order_items_bp.delete("/<int:item_id>")
@require_actor
@require_role(ROLE_ADMIN, ROLE_CASHIER)
def delete_order_item_route(item_id: int):
    try:
        order = order_items_service.delete_order_item(item_id)
        return jsonify({
            "ok": True,
            "order": order.to_dict(include_items=False),
        }), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete order item")
        return jsonify({"error": "Internal server error"}), 500
