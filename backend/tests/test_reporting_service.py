"""
Dashboard and stock report tests.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from conftest import CASHIER_ID, make_product
from frostpos.errors import ValidationError
from frostpos.services import orders_service, reporting_service
from frostpos.time_utils import utcnow


def _sell(product, quantity, paid):
    order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": quantity}])
    return orders_service.complete_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal(paid))


class TestDashboard:

    def test_only_completed_orders_count(self, product, other_product):
        _sell(product, 2, "25.00")
        _sell(other_product, 1, "3.00")
        orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 5}])

        result = reporting_service.dashboard_summary(days=7, top=5)

        assert result["summary"] == {"total_revenue": "28.00", "total_transactions": 2}
        assert len(result["sales_trend"]) == 7
        assert result["sales_trend"][-1]["date"] == utcnow().date().isoformat()
        assert result["sales_trend"][-1]["total_sales"] == "28.00"
        assert result["sales_trend"][0]["total_sales"] == "0.00"

    def test_top_products_by_quantity(self, product, other_product):
        _sell(product, 1, "12.50")
        _sell(other_product, 3, "9.00")

        top = reporting_service.top_products(limit=5)

        assert [t["product_id"] for t in top] == [other_product.id, product.id]
        assert top[0]["quantity_sold"] == 3
        assert top[0]["revenue"] == "9.00"

    def test_cancelled_sales_drop_out(self, product):
        order = _sell(product, 1, "12.50")
        orders_service.cancel_order(order.id, user_id=CASHIER_ID)

        result = reporting_service.dashboard_summary()
        assert result["summary"]["total_transactions"] == 0
        assert result["top_products"] == []

    @pytest.mark.parametrize("days", [0, 367])
    def test_trend_window_bounds(self, db_session, days):
        with pytest.raises(ValidationError):
            reporting_service.sales_trend(days=days)


class TestStockAlerts:

    def test_low_stock_and_expiring(self, db_session):
        today = date(2026, 3, 1)
        make_product(name="Low", stock=2, expiry_date=today + timedelta(days=200))
        make_product(name="Plenty", stock=50, expiry_date=today + timedelta(days=200))
        make_product(name="Expiring", stock=50, expiry_date=today + timedelta(days=10))
        make_product(name="Expired", stock=50, expiry_date=today - timedelta(days=1))

        result = reporting_service.stock_alerts(threshold=5, warning_days=30, today=today)

        assert [p["name"] for p in result["low_stock"]] == ["Low"]
        expiring = {p["name"]: p for p in result["expiring"]}
        assert set(expiring) == {"Expiring", "Expired"}
        assert expiring["Expiring"]["days_left"] == 10
        assert expiring["Expired"]["expired"] is True

    def test_defaults_from_config(self, app, db_session):
        result = reporting_service.stock_alerts()
        assert result["threshold"] == app.config["LOW_STOCK_THRESHOLD"]
        assert result["warning_days"] == app.config["EXPIRY_WARNING_DAYS"]

    def test_negative_threshold_rejected(self, db_session):
        with pytest.raises(ValidationError):
            reporting_service.stock_alerts(threshold=-1)
