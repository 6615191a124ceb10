"""
Order Engine - order lifecycle and its stock consequences

Every public operation runs as one transaction (run_with_retry + a single
commit). The order row is locked and re-read inside that transaction, so the
status check always sees the latest committed state; two cashiers racing to
complete the same ticket cannot both decrement stock.

Stock effects per transition come from order_lifecycle.transition():
- PENDING -> COMPLETED: SALE log per item (quantity = -item.quantity)
- COMPLETED -> CANCELLED: ADJUSTMENT log per item (quantity = +item.quantity)
- deleting a COMPLETED order: same as cancellation, before the delete
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from decimal import Decimal

from ..errors import (
    ConflictError,
    InconsistentStateError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Order, OrderItem, Product
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import quantize_money, to_int
from .concurrency import begin_write, lock_for_update, run_with_retry
from .order_lifecycle import OrderStatus, StockEffect, parse_status, transition
from .pagination import paginate
from .stock_service import load_product_for_update, record_movement_inner

logger = logging.getLogger(__name__)

_UNSET = object()


def format_order_number(order_id: int) -> str:
    # Zero-padded to 3 digits, longer ids simply grow
    return f"ORD-{order_id:03d}"


def load_order_for_update(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def snapshot_line(product: Product, quantity: int) -> OrderItem:
    """Build an order line priced from the product as it is right now."""
    sell_price = quantize_money(Decimal(product.sell_price))
    return OrderItem(
        product_id=product.id,
        quantity=quantity,
        buy_price=quantize_money(Decimal(product.buy_price)),
        sell_price=sell_price,
        subtotal=quantize_money(sell_price * quantity),
    )


def apply_total_delta(order: Order, delta: Decimal) -> None:
    order.total_amount = quantize_money(Decimal(order.total_amount or 0) + delta)


def verify_total(order: Order) -> None:
    expected = quantize_money(sum((Decimal(i.subtotal) for i in order.items), Decimal("0")))
    actual = quantize_money(Decimal(order.total_amount or 0))
    if expected != actual:
        raise InconsistentStateError(
            "Order total does not match its items",
            details={"order_id": order.id, "total_amount": str(actual), "items_total": str(expected)},
        )


def _quantities_by_product(items) -> "OrderedDict[int, int]":
    totals: dict[int, int] = {}
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    # Lock products in ascending id order
    return OrderedDict(sorted(totals.items()))


def _sell_items(order: Order, user_id: int, note: str) -> None:
    """Decrement stock for every item; fail before writing anything if short."""
    insufficient = []
    for product_id, qty in _quantities_by_product(order.items).items():
        product = load_product_for_update(product_id)
        if product.stock < qty:
            insufficient.append({
                "product_id": product_id,
                "name": product.name,
                "requested_quantity": qty,
                "stock": product.stock,
            })
    if insufficient:
        raise InsufficientStockError(
            "Insufficient stock to complete order",
            details={"order_id": order.id, "items": insufficient},
        )

    for item in order.items:
        record_movement_inner(
            product_id=item.product_id,
            quantity=-item.quantity,
            log_type="SALE",
            user_id=user_id,
            notes=note,
            order_id=order.id,
        )


def _restock_items(order: Order, user_id: int, note: str) -> None:
    for product_id in _quantities_by_product(order.items):
        load_product_for_update(product_id)
    for item in order.items:
        record_movement_inner(
            product_id=item.product_id,
            quantity=item.quantity,
            log_type="ADJUSTMENT",
            user_id=user_id,
            notes=note,
            order_id=order.id,
        )


def _parse_item_specs(items) -> list[tuple[int, int]]:
    if not isinstance(items, list) or not items:
        raise ValidationError("Order must contain at least one item")

    specs = []
    for idx, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        if raw.get("product_id") is None or raw.get("quantity") is None:
            raise ValidationError(f"items[{idx}] requires product_id and quantity")
        product_id = to_int(raw["product_id"], f"items[{idx}].product_id")
        quantity = to_int(raw["quantity"], f"items[{idx}].quantity")
        if quantity <= 0:
            raise ValidationError(f"items[{idx}].quantity must be > 0")
        specs.append((product_id, quantity))
    return specs


def get_order(order_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def list_orders(
    *,
    status: str | None = None,
    cashier_id: int | None = None,
    start: str | None = None,
    end: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    q = db.session.query(Order)
    if status:
        q = q.filter(Order.status == parse_status(status).value)
    if cashier_id is not None:
        q = q.filter(Order.cashier_id == cashier_id)
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except ValueError:
        raise ValidationError("start/end must be ISO-8601 datetimes")
    if start_dt:
        q = q.filter(Order.order_date >= start_dt)
    if end_dt:
        q = q.filter(Order.order_date <= end_dt)

    q = q.order_by(Order.order_date.desc(), Order.id.desc())
    return paginate(q, page=page, per_page=per_page, serialize=lambda o: o.to_dict(include_items=False))


def create_order(*, cashier_id: int, items, customer_name: str | None = None) -> Order:
    """
    Create a PENDING order with its items in one transaction.

    Prices are snapshotted from the products' current sell/buy price.

    Raises:
        ValidationError: no items or a malformed item
        NotFoundError: an item's product does not exist
    """
    specs = _parse_item_specs(items)

    def _op():
        begin_write()
        order = Order(
            customer_name=customer_name,
            cashier_id=cashier_id,
            order_date=utcnow(),
            status=OrderStatus.PENDING.value,
            total_amount=Decimal("0.00"),
            amount_paid=Decimal("0.00"),
            change_amount=Decimal("0.00"),
        )
        db.session.add(order)

        for product_id, quantity in specs:
            product = db.session.query(Product).filter_by(id=product_id).first()
            if product is None:
                raise NotFoundError("Product not found", details={"product_id": product_id})
            line = snapshot_line(product, quantity)
            order.items.append(line)
            apply_total_delta(order, line.subtotal)

        db.session.flush()  # order.id is needed for the order number
        order.order_number = format_order_number(order.id)

        verify_total(order)
        db.session.commit()
        logger.info("order created %s items=%d total=%s", order.order_number, len(specs), order.total_amount)
        return order

    return run_with_retry(_op)


def update_order(
    order_id: int,
    *,
    user_id: int,
    status: str | None = None,
    amount_paid: Decimal | None = None,
    payment_method: str | None = None,
    customer_name=_UNSET,
) -> Order:
    """
    Apply a status transition and/or payment/customer edits.

    Payment fields may only change while the order is PENDING (including the
    call that completes it).

    Raises:
        NotFoundError: order or an item's product missing
        ConflictError: transition not allowed, or payment edit on a closed order
        ValidationError: insufficient payment, completing an empty order
        InsufficientStockError: an item's product is short; nothing is written
    """
    def _op():
        begin_write()
        order = load_order_for_update(order_id)

        current = parse_status(order.status)
        if status is None:
            requested, effect = current, StockEffect.NONE
        else:
            requested = parse_status(status)
            effect = transition(current, requested)

        if (amount_paid is not None or payment_method is not None) and current != OrderStatus.PENDING:
            raise ConflictError(
                "Payment details cannot change once the order is closed",
                details={"order_id": order.id, "status": current.value},
            )

        if customer_name is not _UNSET:
            order.customer_name = customer_name
        if payment_method is not None:
            order.payment_method = payment_method
        if amount_paid is not None:
            order.amount_paid = quantize_money(Decimal(amount_paid))

        if effect == StockEffect.SELL:
            if not order.items:
                raise ValidationError("Cannot complete an order with no items")
            verify_total(order)

            paid = quantize_money(Decimal(order.amount_paid or 0))
            total = quantize_money(Decimal(order.total_amount))
            if paid < total:
                raise ValidationError(
                    "Insufficient payment",
                    details={"total_amount": str(total), "amount_paid": str(paid)},
                )

            _sell_items(order, user_id, note=f"Sale {order.order_number}")
            order.change_amount = paid - total
            order.status = OrderStatus.COMPLETED.value
            order.completed_at = utcnow()

        elif effect == StockEffect.RESTOCK:
            _restock_items(order, user_id, note=f"Cancellation of {order.order_number}")
            order.status = OrderStatus.CANCELLED.value
            order.cancelled_at = utcnow()

        elif requested != current:
            # PENDING -> CANCELLED: nothing was sold, nothing to put back
            order.status = OrderStatus.CANCELLED.value
            order.cancelled_at = utcnow()

        db.session.commit()
        if requested != current:
            logger.info("order %s %s -> %s", order.order_number, current.value, requested.value)
        return order

    return run_with_retry(_op)


def complete_order(
    order_id: int,
    *,
    user_id: int,
    amount_paid: Decimal,
    payment_method: str | None = None,
) -> Order:
    return update_order(
        order_id,
        user_id=user_id,
        status=OrderStatus.COMPLETED.value,
        amount_paid=amount_paid,
        payment_method=payment_method,
    )


def cancel_order(order_id: int, *, user_id: int) -> Order:
    return update_order(order_id, user_id=user_id, status=OrderStatus.CANCELLED.value)


def delete_order(order_id: int, *, user_id: int) -> dict:
    """
    Delete an order and its items.

    A COMPLETED order has its stock put back (ADJUSTMENT per item) first,
    in the same transaction.
    """
    def _op():
        begin_write()
        order = load_order_for_update(order_id)
        order_number = order.order_number
        restocked = parse_status(order.status) == OrderStatus.COMPLETED

        if restocked:
            _restock_items(order, user_id, note=f"Deletion of completed order {order_number}")

        db.session.delete(order)
        db.session.commit()
        logger.info("order deleted %s (restocked=%s)", order_number, restocked)
        return {"order_id": order_id, "order_number": order_number, "restocked": restocked}

    return run_with_retry(_op)

