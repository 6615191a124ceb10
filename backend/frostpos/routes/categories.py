# Overview: Flask API routes for product categories.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_actor, require_role, ROLE_ADMIN
from ..errors import DomainError, error_response
from ..models import Category
from ..services import category_service
from ..validation import ModelValidationPolicy, validate_payload

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description"},
    required_on_create={"name"},
)

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
@require_actor
def list_categories_route():
    items = category_service.list_categories()
    return jsonify({"items": items, "count": len(items)}), 200


@categories_bp.get("/<int:category_id>")
@require_actor
def get_category_route(category_id: int):
    try:
        category = category_service.get_category(category_id)
        data = category.to_dict()
        data["products"] = [p.to_dict() for p in category.products]
        return jsonify(data), 200
    except DomainError as e:
        return error_response(e)


@categories_bp.post("")
@require_actor
@require_role(ROLE_ADMIN)
def create_category_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
        category = category_service.create_category(
            name=patch["name"],
            description=patch.get("description"),
        )
        return jsonify(category.to_dict()), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.put("/<int:category_id>")
@require_actor
@require_role(ROLE_ADMIN)
def update_category_route(category_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
        category = category_service.update_category(category_id=category_id, patch=patch)
        return jsonify(category.to_dict()), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.delete("/<int:category_id>")
@require_actor
@require_role(ROLE_ADMIN)
def delete_category_route(category_id: int):
    try:
        category_service.delete_category(category_id)
        return jsonify({"ok": True}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete category")
        return jsonify({"error": "Internal server error"}), 500
