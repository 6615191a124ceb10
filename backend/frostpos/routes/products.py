# Overview: Flask API routes for the product catalog; parses input and returns JSON responses.

# backend/frostpos/routes/products.py
"""
Product catalog routes.

- Read operations require any authenticated actor
- Write operations require the ADMIN role

A `stock` value on create is the opening quantity (booked as a PURCHASE log);
on update it is a manual correction (booked as an ADJUSTMENT log).
"""
from flask import Blueprint, request, g, jsonify, current_app

from ..decorators import require_actor, require_role, ROLE_ADMIN
from ..errors import DomainError, error_response
from ..models import Product
from ..services import products_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku",
        "name",
        "description",
        "buy_price",
        "sell_price",
        "stock",
        "expiry_date",
        "category_id",
        "image_url",
    },
    required_on_create={"name", "buy_price", "sell_price", "expiry_date"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _parse_bool_arg(name: str):
    raw = request.args.get(name)
    if raw is None:
        return None
    return raw.strip().lower() in ("1", "true", "yes")


@products_bp.get("")
@require_actor
def list_products_route():
    """
    List products.

    Query params:
    - category_id: int (optional)
    - search: str (optional) - name or sku substring
    - in_stock: bool (optional)
    - page / per_page: int (optional)
    """
    try:
        result = products_service.list_products(
            category_id=request.args.get("category_id", type=int),
            search=request.args.get("search"),
            in_stock=_parse_bool_arg("in_stock"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except DomainError as e:
        return error_response(e)


@products_bp.get("/<int:product_id>")
@require_actor
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(product_id)
        return jsonify(product.to_dict()), 200
    except DomainError as e:
        return error_response(e)


@products_bp.post("")
@require_actor
@require_role(ROLE_ADMIN)
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        created = products_service.create_product(patch=patch, user_id=g.user_id)
        return jsonify(created), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>")
@require_actor
@require_role(ROLE_ADMIN)
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(product_id=product_id, patch=patch, user_id=g.user_id)
        return jsonify(updated), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_actor
@require_role(ROLE_ADMIN)
def delete_product_route(product_id: int):
    try:
        products_service.delete_product(product_id=product_id)
        return jsonify({"ok": True}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500
