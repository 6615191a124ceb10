# backend/frostpos/services/products_service.py
"""
Product Ledger

Catalog state plus the authoritative current stock count.

- create_product writes an initial PURCHASE log when starting stock > 0
- update_product turns a changed `stock` value into an ADJUSTMENT log
- delete_product is a hard delete, refused while any order item references
  the product (historical orders must stay intact)
"""
from __future__ import annotations

import logging
from functools import wraps

from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Category, OrderItem, Product
from .concurrency import begin_write, run_with_retry
from .pagination import paginate
from .stock_service import (
    delete_movements_for_product,
    load_product_for_update,
    record_movement_inner,
)

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {
    "sku",
    "name",
    "description",
    "buy_price",
    "sell_price",
    "expiry_date",
    "category_id",
    "image_url",
}
PRODUCT_REQUIRED_FIELDS = ("name", "buy_price", "sell_price", "expiry_date")


def generate_sku(product_id: int) -> str:
    return f"SKU-{product_id:06d}"


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _ensure_sku_free(sku: str, exclude_product_id: int | None = None) -> None:
    q = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_product_id is not None:
        q = q.filter(Product.id != exclude_product_id)
    if q.first() is not None:
        raise ConflictError("SKU already exists.", details={"sku": sku})


def _sku_conflicts(func):
    """Report a uq_products_sku violation from `func` as a ConflictError.

    The pre-insert SKU check races with concurrent writers on backends with
    row locks only; the unique constraint is the final arbiter.
    """
    @wraps(func)
    def wrapper():
        try:
            return func()
        except IntegrityError as exc:
            if "sku" not in str(exc.orig).lower():
                raise
            raise ConflictError("SKU already exists.") from exc

    return wrapper


def _ensure_category(category_id: int | None) -> None:
    if category_id is None:
        return
    if db.session.query(Category.id).filter_by(id=category_id).first() is None:
        raise NotFoundError("Category not found", details={"category_id": category_id})


def get_product(product_id: int) -> Product:
    p = db.session.query(Product).filter_by(id=product_id).first()
    if p is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return p


def list_products(
    *,
    category_id: int | None = None,
    search: str | None = None,
    in_stock: bool | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with simple filters and optional pagination.

    Args:
        category_id: only products in this category
        search: case-insensitive substring of name or sku
        in_stock: True -> stock > 0, False -> stock == 0
        page / per_page: see pagination.paginate
    """
    q = db.session.query(Product)
    if category_id is not None:
        q = q.filter(Product.category_id == category_id)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(Product.name.ilike(like), Product.sku.ilike(like)))
    if in_stock is True:
        q = q.filter(Product.stock > 0)
    elif in_stock is False:
        q = q.filter(Product.stock == 0)

    q = q.order_by(Product.name.asc(), Product.id.asc())
    return paginate(q, page=page, per_page=per_page, serialize=lambda p: p.to_dict())


def create_product(*, patch: dict, user_id: int) -> dict:
    """
    Create a product from a validated patch dict.

    `stock` in the patch is the starting quantity; it is booked as a PURCHASE
    log at the product's buy_price, never written to the row directly.

    Raises:
        ValidationError: required field missing, negative starting stock
        ConflictError: SKU already exists
        NotFoundError: category does not exist
    """
    missing = [f for f in PRODUCT_REQUIRED_FIELDS if patch.get(f) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    initial_stock = patch.get("stock") or 0
    if initial_stock < 0:
        raise ValidationError("stock must be >= 0")

    def _op():
        begin_write()
        _ensure_category(patch.get("category_id"))

        sku = patch.get("sku")
        if sku:
            _ensure_sku_free(sku)

        p = Product(stock=0)
        apply_product_patch(p, patch)
        db.session.add(p)
        db.session.flush()  # ensure p.id exists before deriving the SKU

        if not p.sku:
            generated = generate_sku(p.id)
            _ensure_sku_free(generated, exclude_product_id=p.id)
            p.sku = generated

        if initial_stock > 0:
            record_movement_inner(
                product_id=p.id,
                quantity=initial_stock,
                log_type="PURCHASE",
                user_id=user_id,
                buy_price=p.buy_price,
                notes="Initial stock",
            )

        db.session.commit()
        logger.info("product created id=%s sku=%s stock=%d", p.id, p.sku, p.stock)
        return p.to_dict()

    return run_with_retry(_sku_conflicts(_op))


def update_product(*, product_id: int, patch: dict, user_id: int) -> dict:
    """
    Update catalog fields of a product.

    A `stock` value different from the current stock is a manual correction:
    the difference is written as an ADJUSTMENT log in the same transaction.

    Raises:
        NotFoundError: product (or category) does not exist
        ConflictError: new SKU already exists
        ValidationError: negative stock
    """
    def _op():
        begin_write()
        p = load_product_for_update(product_id)

        if "sku" in patch and patch["sku"] != p.sku:
            if patch["sku"]:
                _ensure_sku_free(patch["sku"], exclude_product_id=p.id)
            else:
                patch["sku"] = generate_sku(p.id)

        if "category_id" in patch:
            _ensure_category(patch["category_id"])

        apply_product_patch(p, patch)

        new_stock = patch.get("stock")
        if new_stock is not None and new_stock != p.stock:
            if new_stock < 0:
                raise ValidationError("stock must be >= 0")
            old_stock = p.stock
            record_movement_inner(
                product_id=p.id,
                quantity=new_stock - old_stock,
                log_type="ADJUSTMENT",
                user_id=user_id,
                notes=f"Manual stock correction {old_stock} -> {new_stock}",
            )

        db.session.commit()
        return p.to_dict()

    return run_with_retry(_sku_conflicts(_op))


def delete_product(*, product_id: int) -> None:
    """
    Hard-delete a product and its stock logs.

    Raises:
        NotFoundError: product does not exist
        ConflictError: an order item still references the product
    """
    def _op():
        begin_write()
        p = load_product_for_update(product_id)

        referencing = db.session.query(OrderItem).filter(OrderItem.product_id == p.id).count()
        if referencing:
            raise ConflictError(
                "Product is referenced by existing orders and cannot be deleted.",
                details={"product_id": p.id, "order_items": referencing},
            )

        removed_logs = delete_movements_for_product(p.id)
        db.session.delete(p)
        db.session.commit()
        logger.info("product deleted id=%s (removed %d stock logs)", product_id, removed_logs)

    return run_with_retry(_op)
