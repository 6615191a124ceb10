# Overview: Read-only projections over orders, items and products for the admin dashboard.

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Order, OrderItem, Product
from ..models.catalog import money_str
from ..time_utils import day_bounds, to_iso_date, utcnow
from ..validation import quantize_money
from .order_lifecycle import OrderStatus
from .stock_service import reconcile_stock

MAX_TREND_DAYS = 366
MAX_TOP_PRODUCTS = 50

_COMPLETED = OrderStatus.COMPLETED.value


def _money(value) -> Decimal:
    return quantize_money(Decimal(str(value or 0)))


def _revenue_between(start, end) -> Decimal:
    total = db.session.query(func.coalesce(func.sum(Order.total_amount), 0)).filter(
        Order.status == _COMPLETED,
        Order.order_date >= start,
        Order.order_date < end,
    ).scalar()
    return _money(total)


def sales_trend(*, days: int = 7, today: date | None = None) -> list[dict]:
    """Completed revenue per calendar day, oldest first, zero-filled."""
    if days < 1 or days > MAX_TREND_DAYS:
        raise ValidationError(f"days must be between 1 and {MAX_TREND_DAYS}")
    today = today or utcnow().date()

    rows = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        start, end = day_bounds(day)
        rows.append({
            "date": to_iso_date(day),
            "total_sales": money_str(_revenue_between(start, end)),
        })
    return rows


def top_products(*, limit: int = 5) -> list[dict]:
    """Best sellers by quantity across COMPLETED orders."""
    if limit < 1 or limit > MAX_TOP_PRODUCTS:
        raise ValidationError(f"top must be between 1 and {MAX_TOP_PRODUCTS}")

    qty = func.sum(OrderItem.quantity).label("quantity_sold")
    rows = (
        db.session.query(
            OrderItem.product_id,
            Product.name,
            qty,
            func.sum(OrderItem.subtotal).label("revenue"),
        )
        .join(Order, Order.id == OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
        .filter(Order.status == _COMPLETED)
        .group_by(OrderItem.product_id, Product.name)
        .order_by(qty.desc(), OrderItem.product_id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "product_id": row.product_id,
            "name": row.name,
            "quantity_sold": int(row.quantity_sold or 0),
            "revenue": money_str(_money(row.revenue)),
        }
        for row in rows
    ]


def dashboard_summary(*, days: int = 7, top: int = 5, today: date | None = None) -> dict:
    total_revenue = db.session.query(
        func.coalesce(func.sum(Order.total_amount), 0)
    ).filter(Order.status == _COMPLETED).scalar()

    total_transactions = db.session.query(func.count(Order.id)).filter(
        Order.status == _COMPLETED
    ).scalar()

    return {
        "summary": {
            "total_revenue": money_str(_money(total_revenue)),
            "total_transactions": int(total_transactions or 0),
        },
        "sales_trend": sales_trend(days=days, today=today),
        "top_products": top_products(limit=top),
    }


def stock_alerts(
    *,
    threshold: int | None = None,
    warning_days: int | None = None,
    today: date | None = None,
) -> dict:
    """Products running low, and products at or near their expiry date."""
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 5)
    if warning_days is None:
        warning_days = current_app.config.get("EXPIRY_WARNING_DAYS", 30)
    if threshold < 0 or warning_days < 0:
        raise ValidationError("threshold and warning_days must be >= 0")
    today = today or utcnow().date()
    horizon = today + timedelta(days=warning_days)

    low_stock = (
        db.session.query(Product)
        .filter(Product.stock <= threshold)
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )
    expiring = (
        db.session.query(Product)
        .filter(Product.expiry_date <= horizon)
        .order_by(Product.expiry_date.asc(), Product.name.asc())
        .all()
    )

    return {
        "threshold": threshold,
        "warning_days": warning_days,
        "as_of": to_iso_date(today),
        "low_stock": [
            {"product_id": p.id, "name": p.name, "sku": p.sku, "stock": p.stock}
            for p in low_stock
        ],
        "expiring": [
            {
                "product_id": p.id,
                "name": p.name,
                "sku": p.sku,
                "stock": p.stock,
                "expiry_date": to_iso_date(p.expiry_date),
                "days_left": (p.expiry_date - today).days,
                "expired": p.expiry_date < today,
            }
            for p in expiring
        ],
    }


def stock_reconciliation(product_id: int | None = None) -> dict:
    return reconcile_stock(product_id)
