"""
Order engine tests.

Verifies:
- Prices are snapshotted when the order is created
- Completion sells every item exactly once, or nothing at all
- Payment must cover the total; change is computed
- Cancelling a completed order puts the stock back
- Deleting a completed order restocks before the delete
"""

from decimal import Decimal

import pytest

from conftest import ADMIN_ID, CASHIER_ID, assert_stock_consistent
from frostpos.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from frostpos.extensions import db
from frostpos.models import Order, OrderItem, Product, StockLog
from frostpos.services import order_items_service, orders_service, products_service


def _stock(product_id):
    return db.session.get(Product, product_id).stock


class TestCreateOrder:

    def test_creates_pending_order_with_snapshot(self, product):
        order = orders_service.create_order(
            cashier_id=CASHIER_ID,
            items=[{"product_id": product.id, "quantity": 3}],
            customer_name="Walk-in",
        )

        assert order.status == "PENDING"
        assert order.order_number == f"ORD-{order.id:03d}"
        assert order.total_amount == Decimal("37.50")
        assert order.items[0].sell_price == Decimal("12.50")
        assert order.items[0].buy_price == Decimal("8.00")
        assert order.items[0].subtotal == Decimal("37.50")
        assert _stock(product.id) == 10

    def test_later_price_change_does_not_reprice(self, product):
        order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 2}])
        products_service.update_product(product_id=product.id, patch={"sell_price": Decimal("20.00")}, user_id=ADMIN_ID)

        order = orders_service.get_order(order.id)
        assert order.items[0].sell_price == Decimal("12.50")
        assert order.total_amount == Decimal("25.00")

    def test_empty_items_rejected(self, db_session):
        with pytest.raises(ValidationError):
            orders_service.create_order(cashier_id=CASHIER_ID, items=[])

    @pytest.mark.parametrize("bad_item", [
        {"product_id": 1},
        {"product_id": 1, "quantity": 0},
        {"product_id": 1, "quantity": "two"},
        "not-an-object",
    ])
    def test_malformed_items_rejected(self, product, bad_item):
        with pytest.raises(ValidationError):
            orders_service.create_order(cashier_id=CASHIER_ID, items=[bad_item])
        assert db.session.query(Order).count() == 0

    def test_unknown_product_rolls_back_whole_order(self, product):
        with pytest.raises(NotFoundError):
            orders_service.create_order(
                cashier_id=CASHIER_ID,
                items=[{"product_id": product.id, "quantity": 1}, {"product_id": 9999, "quantity": 1}],
            )
        assert db.session.query(Order).count() == 0
        assert db.session.query(OrderItem).count() == 0

    def test_order_numbers_are_sequential(self, product):
        first = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 1}])
        second = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 1}])
        assert first.order_number != second.order_number
        assert second.id == first.id + 1


class TestCompleteOrder:

    def test_sale_logged_per_item(self, product, other_product):
        """
        SCENARIO: Two-line order completed with cash.
        EXPECTED: One SALE log per item, stock decremented, change returned.
        """
        order = orders_service.create_order(
            cashier_id=CASHIER_ID,
            items=[
                {"product_id": product.id, "quantity": 2},
                {"product_id": other_product.id, "quantity": 1},
            ],
        )

        done = orders_service.complete_order(
            order.id, user_id=CASHIER_ID, amount_paid=Decimal("30.00"), payment_method="cash",
        )

        assert done.status == "COMPLETED"
        assert done.completed_at is not None
        assert done.change_amount == Decimal("2.00")
        assert _stock(product.id) == 8
        assert _stock(other_product.id) == 4

        sales = db.session.query(StockLog).filter_by(type="SALE", order_id=order.id).all()
        assert sorted(s.quantity for s in sales) == [-2, -1]
        assert all(s.user_id == CASHIER_ID for s in sales)
        assert_stock_consistent(product.id)
        assert_stock_consistent(other_product.id)

    def test_exact_payment_gives_zero_change(self, product):
        order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 1}])
        done = orders_service.complete_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal("12.50"))
        assert done.change_amount == Decimal("0.00")

    def test_underpayment_rejected(self, product):
        order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 1}])

        with pytest.raises(ValidationError) as exc:
            orders_service.complete_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal("12.49"))

        assert "Insufficient payment" in exc.value.message
        assert orders_service.get_order(order.id).status == "PENDING"
        assert _stock(product.id) == 10

    def test_insufficient_stock_writes_nothing(self, product, other_product):
        """
        SCENARIO: First item is fine, second wants more than is on the shelf.
        EXPECTED: InsufficientStockError listing the short item; no SALE logs.
        """
        order = orders_service.create_order(
            cashier_id=CASHIER_ID,
            items=[
                {"product_id": product.id, "quantity": 1},
                {"product_id": other_product.id, "quantity": 6},
            ],
        )

        with pytest.raises(InsufficientStockError) as exc:
            orders_service.complete_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal("100.00"))

        short = exc.value.details["items"]
        assert [s["product_id"] for s in short] == [other_product.id]
        assert _stock(product.id) == 10
        assert _stock(other_product.id) == 5
        assert db.session.query(StockLog).filter_by(type="SALE").count() == 0
        assert orders_service.get_order(order.id).status == "PENDING"

    def test_same_product_on_two_lines_checked_together(self, other_product):
        order = orders_service.create_order(
            cashier_id=CASHIER_ID,
            items=[
                {"product_id": other_product.id, "quantity": 3},
                {"product_id": other_product.id, "quantity": 3},
            ],
        )
        with pytest.raises(InsufficientStockError):
            orders_service.complete_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal("50.00"))
        assert _stock(other_product.id) == 5

    def test_complete_twice_conflicts(self, product):
        order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 4}])
        orders_service.complete_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal("50.00"))

        with pytest.raises(ConflictError):
            orders_service.complete_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal("50.00"))
        assert _stock(product.id) == 6

    def test_exact_depletion_through_order(self, other_product):
        order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": other_product.id, "quantity": 5}])
        orders_service.complete_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal("15.00"))
        assert _stock(other_product.id) == 0

    def test_empty_order_cannot_complete(self, product):
        order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 1}])
        item_id = order.items[0].id
        order_items_service.delete_order_item(item_id)

        with pytest.raises(ValidationError):
            orders_service.complete_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal("0.00"))

    def test_missing_order(self, db_session):
        with pytest.raises(NotFoundError):
            orders_service.complete_order(321, user_id=CASHIER_ID, amount_paid=Decimal("1.00"))


class TestCancelOrder:

    def test_cancel_pending_has_no_stock_effect(self, product):
        order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 2}])
        cancelled = orders_service.cancel_order(order.id, user_id=CASHIER_ID)

        assert cancelled.status == "CANCELLED"
        assert cancelled.cancelled_at is not None
        assert _stock(product.id) == 10
        assert db.session.query(StockLog).filter_by(order_id=order.id).count() == 0

    def test_cancel_completed_restocks(self, product):
        order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 3}])
        orders_service.complete_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal("40.00"))
        assert _stock(product.id) == 7

        orders_service.cancel_order(order.id, user_id=ADMIN_ID)

        assert _stock(product.id) == 10
        restock = db.session.query(StockLog).filter_by(order_id=order.id, type="ADJUSTMENT").one()
        assert restock.quantity == 3
        assert_stock_consistent(product.id)

    def test_cancelled_is_terminal(self, product):
        order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 1}])
        orders_service.cancel_order(order.id, user_id=CASHIER_ID)

        with pytest.raises(ConflictError):
            orders_service.complete_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal("20.00"))
        with pytest.raises(ConflictError):
            orders_service.cancel_order(order.id, user_id=CASHIER_ID)

    def test_completed_cannot_reopen(self, product):
        order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 1}])
        orders_service.complete_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal("20.00"))

        with pytest.raises(ConflictError):
            orders_service.update_order(order.id, user_id=CASHIER_ID, status="PENDING")


class TestUpdateOrder:

    def test_pending_to_pending_is_noop_with_edits(self, product):
        order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 1}])
        updated = orders_service.update_order(
            order.id, user_id=CASHIER_ID, status="PENDING", customer_name="Budi", payment_method="qris",
        )
        assert updated.status == "PENDING"
        assert updated.customer_name == "Budi"
        assert updated.payment_method == "qris"

    def test_payment_edit_on_completed_order_conflicts(self, product):
        order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 1}])
        orders_service.complete_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal("20.00"))

        with pytest.raises(ConflictError):
            orders_service.update_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal("5.00"))

    def test_customer_name_editable_after_completion(self, product):
        order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 1}])
        orders_service.complete_order(order.id, user_id=CASHIER_ID, amount_paid=Decimal("20.00"))

        updated = orders_service.update_order(order.id, user_id=CASHIER_ID, customer_name="Siti")
        assert updated.customer_name == "Siti"


class TestDeleteOrder:

    def test_delete_completed_restocks(self, product):
        order = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 4}])
        order_id = order.id
        orders_service.complete_order(order_id, user_id=CASHIER_ID, amount_paid=Decimal("50.00"))

        result = orders_service.delete_order(order_id, user_id=ADMIN_ID)

        assert result["restocked"] is True
        assert _stock(product.id) == 10
        assert db.session.get(Order, order_id) is None
        assert db.session.query(OrderItem).count() == 0
        assert_stock_consistent(product.id)

    def test_delete_pending_or_cancelled_has_no_stock_effect(self, product):
        pending = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 2}])
        cancelled = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 2}])
        orders_service.complete_order(cancelled.id, user_id=CASHIER_ID, amount_paid=Decimal("25.00"))
        orders_service.cancel_order(cancelled.id, user_id=ADMIN_ID)

        assert orders_service.delete_order(pending.id, user_id=ADMIN_ID)["restocked"] is False
        assert orders_service.delete_order(cancelled.id, user_id=ADMIN_ID)["restocked"] is False
        assert _stock(product.id) == 10
        assert_stock_consistent(product.id)

    def test_delete_missing(self, db_session):
        with pytest.raises(NotFoundError):
            orders_service.delete_order(55, user_id=ADMIN_ID)


class TestListOrders:

    def test_filter_by_status(self, product):
        a = orders_service.create_order(cashier_id=CASHIER_ID, items=[{"product_id": product.id, "quantity": 1}])
        orders_service.create_order(cashier_id=ADMIN_ID, items=[{"product_id": product.id, "quantity": 1}])
        orders_service.complete_order(a.id, user_id=CASHIER_ID, amount_paid=Decimal("20.00"))

        completed = orders_service.list_orders(status="completed")
        assert [o["id"] for o in completed["items"]] == [a.id]
        assert "items" not in completed["items"][0]

        by_cashier = orders_service.list_orders(cashier_id=ADMIN_ID)
        assert by_cashier["count"] == 1

    def test_bad_date_filter(self, db_session):
        with pytest.raises(ValidationError):
            orders_service.list_orders(start="yesterday")
