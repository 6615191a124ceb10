# Overview: Stock Movement Log; every stock change is logged and applied to Product.stock atomically.

"""
FrostPOS Stock Invariants (authoritative)

Stock model:
- StockLog rows are the source of truth for quantities.
- Product.stock is a materialized running total:
      Product.stock == SUM(StockLog.quantity WHERE product_id = Product.id)
- Both sides are written in the same DB transaction, never separately.

Business invariants:
- Stock may never go negative. A movement that would do so is rejected
  with InsufficientStockError (ties are allowed: stock may reach exactly 0).
- PURCHASE requires buy_price and replaces Product.buy_price (latest cost).
- Entries are immutable except for `notes`.

Reversal:
- A reversal applies -quantity to the product, stamps the original entry as
  reversed and appends an ADJUSTMENT entry pointing back at it. The original
  row is kept so the invariant above still holds.
- Reversal is checked only against the current stock floor; an entry may be
  reversed even if later movements exist for the same product.
- Entries written by an order (SALE, cancellation ADJUSTMENT) are never
  reversed directly; the order lifecycle owns them.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func

from ..errors import (
    ConflictError,
    InconsistentStateError,
    InsufficientStockError,
    NotFoundError,
)
from ..extensions import db
from ..models import Product, StockLog
from ..time_utils import utcnow
from ..validation import enforce_rules_stock_movement
from .concurrency import begin_write, lock_for_update, run_with_retry
from .pagination import paginate

logger = logging.getLogger(__name__)


def load_product_for_update(product_id: int) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def _apply_movement(
    *,
    product: Product,
    quantity: int,
    log_type: str,
    user_id: int,
    buy_price: Decimal | None = None,
    notes: str | None = None,
    order_id: int | None = None,
    floor_error: type = InsufficientStockError,
) -> StockLog:
    new_stock = product.stock + quantity
    if new_stock < 0:
        raise floor_error(
            f"Not enough stock for {product.name}. Current stock: {product.stock}",
            details={
                "product_id": product.id,
                "stock": product.stock,
                "requested_change": quantity,
            },
        )

    log = StockLog(
        product_id=product.id,
        quantity=quantity,
        type=log_type,
        buy_price=buy_price,
        user_id=user_id,
        notes=notes,
        order_id=order_id,
    )
    db.session.add(log)

    product.stock = new_stock
    if log_type == "PURCHASE":
        product.buy_price = buy_price

    db.session.flush()
    logger.info(
        "stock %s product=%s delta=%+d stock=%d log=%s",
        log_type, product.id, quantity, new_stock, log.id,
    )
    return log


def record_movement_inner(
    *,
    product_id: int,
    quantity: int,
    log_type: str,
    user_id: int,
    buy_price: Decimal | None = None,
    notes: str | None = None,
    order_id: int | None = None,
) -> StockLog:
    """Core movement logic without write lock, retry, or commit.

    Called by record_movement() and by product/order services that already
    hold a transaction.
    """
    enforce_rules_stock_movement(quantity=quantity, log_type=log_type, buy_price=buy_price)
    product = load_product_for_update(product_id)
    return _apply_movement(
        product=product,
        quantity=quantity,
        log_type=log_type,
        user_id=user_id,
        buy_price=buy_price,
        notes=notes,
        order_id=order_id,
    )


def record_movement(
    *,
    product_id: int,
    quantity: int,
    log_type: str,
    user_id: int,
    buy_price: Decimal | None = None,
    notes: str | None = None,
) -> StockLog:
    """
    Record a stock movement and update the product's stock.

    Raises:
        ValidationError: bad type, zero quantity, wrong sign, PURCHASE without buy_price
        NotFoundError: product does not exist
        InsufficientStockError: stock would go below zero
    """
    def _op():
        begin_write()
        log = record_movement_inner(
            product_id=product_id,
            quantity=quantity,
            log_type=log_type,
            user_id=user_id,
            buy_price=buy_price,
            notes=notes,
        )
        db.session.commit()
        return log

    return run_with_retry(_op)


def reverse_movement(log_id: int, user_id: int | None = None) -> StockLog:
    """
    Reverse a stock log entry with a compensating ADJUSTMENT.

    Returns the compensating entry.

    Raises:
        NotFoundError: entry does not exist
        ConflictError: entry was already reversed, or was written by an order
        InconsistentStateError: the reversal would drive stock negative
    """
    def _op():
        begin_write()
        original = lock_for_update(db.session.query(StockLog).filter_by(id=log_id)).first()
        if original is None:
            raise NotFoundError("Stock log not found", details={"log_id": log_id})

        if original.is_reversed:
            raise ConflictError(
                f"Stock log #{original.id} was already reversed",
                details={"log_id": original.id, "reversed_by_log_id": original.reversed_by_log_id},
            )

        if original.order_id is not None:
            raise ConflictError(
                f"Stock log #{original.id} belongs to an order; cancel or delete the order instead",
                details={"log_id": original.id, "order_id": original.order_id},
            )

        product = lock_for_update(db.session.query(Product).filter_by(id=original.product_id)).first()
        if product is None:
            raise InconsistentStateError(
                "Stock log references a missing product",
                details={"log_id": original.id, "product_id": original.product_id},
            )

        compensating = _apply_movement(
            product=product,
            quantity=-original.quantity,
            log_type="ADJUSTMENT",
            user_id=user_id if user_id is not None else original.user_id,
            notes=f"Reversal of stock log #{original.id}",
            floor_error=InconsistentStateError,
        )
        compensating.reversal_of_log_id = original.id

        original.reversed_at = utcnow()
        original.reversed_by_log_id = compensating.id

        db.session.commit()
        return compensating

    return run_with_retry(_op)


def update_notes(log_id: int, notes: str | None) -> StockLog:
    """Edit the free-text notes of an entry. Stock is never touched."""
    def _op():
        log = db.session.query(StockLog).filter_by(id=log_id).first()
        if log is None:
            raise NotFoundError("Stock log not found", details={"log_id": log_id})
        log.notes = notes
        db.session.commit()
        return log

    return run_with_retry(_op)


def get_movement(log_id: int) -> StockLog:
    log = db.session.query(StockLog).filter_by(id=log_id).first()
    if log is None:
        raise NotFoundError("Stock log not found", details={"log_id": log_id})
    return log


def list_movements(
    *,
    product_id: int | None = None,
    log_type: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    q = db.session.query(StockLog)
    if product_id is not None:
        q = q.filter(StockLog.product_id == product_id)
    if log_type:
        q = q.filter(StockLog.type == log_type.upper())
    q = q.order_by(StockLog.created_at.desc(), StockLog.id.desc())
    return paginate(q, page=page, per_page=per_page, serialize=lambda log: log.to_dict())


def delete_movements_for_product(product_id: int) -> int:
    """Remove every log row of a product that is itself being deleted."""
    logs = db.session.query(StockLog).filter(StockLog.product_id == product_id).all()
    for log in logs:
        db.session.delete(log)
    return len(logs)


def get_logged_stock(product_id: int) -> int:
    total = db.session.query(
        func.coalesce(func.sum(StockLog.quantity), 0)
    ).filter(StockLog.product_id == product_id).scalar()
    return int(total or 0)


def reconcile_stock(product_id: int | None = None) -> dict:
    """
    Compare Product.stock with the sum of its log entries.

    Read-only. Any mismatch is a bookkeeping bug, not a valid state.
    """
    sums = (
        db.session.query(
            StockLog.product_id.label("product_id"),
            func.coalesce(func.sum(StockLog.quantity), 0).label("logged"),
        )
        .group_by(StockLog.product_id)
        .subquery()
    )
    q = db.session.query(
        Product.id,
        Product.name,
        Product.stock,
        func.coalesce(sums.c.logged, 0).label("logged"),
    ).outerjoin(sums, sums.c.product_id == Product.id)
    if product_id is not None:
        q = q.filter(Product.id == product_id)

    checked = 0
    mismatches = []
    for row in q.order_by(Product.id.asc()).all():
        checked += 1
        logged = int(row.logged or 0)
        if row.stock != logged:
            mismatches.append({
                "product_id": row.id,
                "name": row.name,
                "stock": row.stock,
                "logged_stock": logged,
                "difference": row.stock - logged,
            })

    if mismatches:
        logger.error("stock reconciliation found %d mismatched product(s)", len(mismatches))

    return {
        "checked": checked,
        "consistent": not mismatches,
        "mismatches": mismatches,
    }
