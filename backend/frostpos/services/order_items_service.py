# Overview: Order item mutations; each one keeps Order.total_amount in step with its items.

from __future__ import annotations

import logging
from decimal import Decimal

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, OrderItem
from ..validation import quantize_money
from .concurrency import begin_write, run_with_retry
from .order_lifecycle import OrderStatus, accepts_new_items, is_editable, parse_status
from .orders_service import (
    apply_total_delta,
    load_order_for_update,
    snapshot_line,
    verify_total,
)
from .stock_service import load_product_for_update, record_movement_inner

logger = logging.getLogger(__name__)


def _not_pending(order) -> ConflictError:
    return ConflictError(
        "Cannot modify non-PENDING order",
        details={"order_id": order.id, "status": order.status},
    )


def _load_item(item_id: int) -> OrderItem:
    item = db.session.query(OrderItem).filter_by(id=item_id).first()
    if item is None:
        raise NotFoundError("Order item not found", details={"item_id": item_id})
    return item


def get_order_item(item_id: int) -> OrderItem:
    return _load_item(item_id)


def add_order_item(
    *,
    order_id: int,
    product_id: int,
    quantity: int,
    user_id: int,
    amount_paid: Decimal | None = None,
) -> OrderItem:
    """
    Add a line to an order at the product's current price.

    PENDING orders just grow. A COMPLETED order (walk-up item on a paid ticket)
    sells the stock immediately with a SALE log; its amount_paid, optionally
    topped up by `amount_paid`, must still cover the new total.

    Raises:
        NotFoundError: order or product missing
        ConflictError: order is CANCELLED
        ValidationError: bad quantity, or payment no longer covers the total
        InsufficientStockError: COMPLETED order and not enough stock
    """
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be > 0")

    def _op():
        begin_write()
        order = load_order_for_update(order_id)
        status = parse_status(order.status)
        if not accepts_new_items(status):
            raise _not_pending(order)

        if amount_paid is not None and status != OrderStatus.COMPLETED:
            raise ValidationError("amount_paid can only be topped up on a completed order")

        product = load_product_for_update(product_id)
        line = snapshot_line(product, quantity)
        order.items.append(line)
        apply_total_delta(order, line.subtotal)

        if status == OrderStatus.COMPLETED:
            if amount_paid is not None:
                order.amount_paid = quantize_money(Decimal(amount_paid))
            paid = quantize_money(Decimal(order.amount_paid or 0))
            total = quantize_money(Decimal(order.total_amount))
            if paid < total:
                raise ValidationError(
                    "Insufficient payment",
                    details={"total_amount": str(total), "amount_paid": str(paid)},
                )
            record_movement_inner(
                product_id=product.id,
                quantity=-quantity,
                log_type="SALE",
                user_id=user_id,
                notes=f"Sale {order.order_number} (item added after completion)",
                order_id=order.id,
            )
            order.change_amount = paid - total

        verify_total(order)
        db.session.commit()
        logger.info(
            "order item added order=%s product=%s qty=%d total=%s",
            order.order_number, product_id, quantity, order.total_amount,
        )
        return line

    return run_with_retry(_op)


def update_order_item(
    item_id: int,
    *,
    quantity: int | None = None,
    sell_price: Decimal | None = None,
) -> OrderItem:
    """
    Change quantity and/or sell price of a line on a PENDING order.

    The subtotal is recomputed from the line's own price; the live product
    price is never consulted.
    """
    if quantity is not None and quantity <= 0:
        raise ValidationError("quantity must be > 0")
    if sell_price is not None and sell_price < 0:
        raise ValidationError("sell_price must be >= 0")

    def _op():
        begin_write()
        item = _load_item(item_id)
        order = load_order_for_update(item.order_id)
        if not is_editable(order.status):
            raise _not_pending(order)

        old_subtotal = quantize_money(Decimal(item.subtotal))
        if quantity is not None:
            item.quantity = quantity
        if sell_price is not None:
            item.sell_price = quantize_money(Decimal(sell_price))
        item.subtotal = quantize_money(Decimal(item.sell_price) * item.quantity)

        apply_total_delta(order, item.subtotal - old_subtotal)
        verify_total(order)
        db.session.commit()
        return item

    return run_with_retry(_op)


def delete_order_item(item_id: int) -> Order:
    """Remove a line from a PENDING order and take its subtotal off the total."""
    def _op():
        begin_write()
        item = _load_item(item_id)
        order = load_order_for_update(item.order_id)
        if not is_editable(order.status):
            raise _not_pending(order)

        subtotal = quantize_money(Decimal(item.subtotal))
        order.items.remove(item)
        apply_total_delta(order, -subtotal)
        verify_total(order)
        db.session.commit()
        return order

    return run_with_retry(_op)
