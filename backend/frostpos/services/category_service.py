# Overview: Service-layer operations for product categories.

from __future__ import annotations

from ..errors import ConflictError, NotFoundError
from ..extensions import db
from ..models import Category, Product
from .concurrency import run_with_retry


def _ensure_name_free(name: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Category.id).filter(db.func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        q = q.filter(Category.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("A category with this name already exists", details={"name": name})


def list_categories() -> list[dict]:
    categories = db.session.query(Category).order_by(Category.name.asc()).all()
    counts = dict(
        db.session.query(Product.category_id, db.func.count(Product.id))
        .filter(Product.category_id.isnot(None))
        .group_by(Product.category_id)
        .all()
    )
    return [
        {**c.to_dict(), "product_count": int(counts.get(c.id, 0))}
        for c in categories
    ]


def get_category(category_id: int) -> Category:
    category = db.session.query(Category).filter_by(id=category_id).first()
    if category is None:
        raise NotFoundError("Category not found", details={"category_id": category_id})
    return category


def create_category(*, name: str, description: str | None = None) -> Category:
    def _op():
        _ensure_name_free(name)
        category = Category(name=name, description=description)
        db.session.add(category)
        db.session.commit()
        return category

    return run_with_retry(_op)


def update_category(*, category_id: int, patch: dict) -> Category:
    def _op():
        category = get_category(category_id)
        if "name" in patch and patch["name"] != category.name:
            _ensure_name_free(patch["name"], exclude_id=category.id)
            category.name = patch["name"]
        if "description" in patch:
            category.description = patch["description"]
        db.session.commit()
        return category

    return run_with_retry(_op)


def delete_category(category_id: int) -> None:
    """Refused while products still belong to the category."""
    def _op():
        category = get_category(category_id)
        in_use = db.session.query(Product.id).filter(Product.category_id == category.id).count()
        if in_use:
            raise ConflictError(
                "Cannot delete category with associated products",
                details={"category_id": category.id, "products": in_use},
            )
        db.session.delete(category)
        db.session.commit()

    return run_with_retry(_op)
