# Overview: Order status state machine; maps a requested transition to its stock effect.

"""
FrostPOS Order Lifecycle

STATE MACHINE:
    PENDING -> COMPLETED -> CANCELLED
    PENDING -> CANCELLED

    PENDING:   Cart being built. Items editable. No stock has moved.
    COMPLETED: Paid. One SALE stock log per item has been written.
    CANCELLED: Terminal. If the order had been COMPLETED, each item's
               quantity was returned to stock with an ADJUSTMENT log.

RULES:
1. CANCELLED is terminal.
2. COMPLETED may only move to CANCELLED.
3. Requesting the current status again is a no-op only for PENDING;
   repeating COMPLETED or CANCELLED is a conflict (never a second decrement).

transition() is pure: it decides, the order service applies.
"""

from __future__ import annotations

from enum import Enum

from ..errors import ConflictError, ValidationError


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class StockEffect(str, Enum):
    NONE = "NONE"
    SELL = "SELL"          # decrement stock, SALE log per item
    RESTOCK = "RESTOCK"    # increment stock, ADJUSTMENT log per item


_TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], StockEffect] = {
    (OrderStatus.PENDING, OrderStatus.PENDING): StockEffect.NONE,
    (OrderStatus.PENDING, OrderStatus.COMPLETED): StockEffect.SELL,
    (OrderStatus.PENDING, OrderStatus.CANCELLED): StockEffect.NONE,
    (OrderStatus.COMPLETED, OrderStatus.CANCELLED): StockEffect.RESTOCK,
}


def parse_status(value) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    if not isinstance(value, str):
        raise ValidationError("status must be a string")
    try:
        return OrderStatus(value.strip().upper())
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise ValidationError(f"Invalid status '{value}'. Must be one of: {allowed}")


def transition(current, requested) -> StockEffect:
    """
    Return the stock effect of moving an order from `current` to `requested`.

    Raises:
        ConflictError: the transition is not allowed from the current state
    """
    current = parse_status(current)
    requested = parse_status(requested)

    effect = _TRANSITIONS.get((current, requested))
    if effect is not None:
        return effect

    if current == requested:
        raise ConflictError(
            f"Order is already {current.value}",
            details={"status": current.value},
        )
    raise ConflictError(
        f"Cannot change order status from {current.value} to {requested.value}",
        details={"from": current.value, "to": requested.value},
    )


def is_editable(status) -> bool:
    """Only PENDING orders accept item edits and removals."""
    return parse_status(status) == OrderStatus.PENDING


def accepts_new_items(status) -> bool:
    """PENDING orders, and COMPLETED orders (walk-up item sold immediately)."""
    return parse_status(status) in (OrderStatus.PENDING, OrderStatus.COMPLETED)
