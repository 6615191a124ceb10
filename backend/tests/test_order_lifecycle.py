"""
Order state machine tests (pure, no database).
"""

import pytest

from frostpos.errors import ConflictError, ValidationError
from frostpos.services.order_lifecycle import (
    OrderStatus,
    StockEffect,
    accepts_new_items,
    is_editable,
    parse_status,
    transition,
)


class TestTransitions:

    @pytest.mark.parametrize("current,requested,effect", [
        ("PENDING", "PENDING", StockEffect.NONE),
        ("PENDING", "COMPLETED", StockEffect.SELL),
        ("PENDING", "CANCELLED", StockEffect.NONE),
        ("COMPLETED", "CANCELLED", StockEffect.RESTOCK),
    ])
    def test_allowed(self, current, requested, effect):
        assert transition(current, requested) == effect

    @pytest.mark.parametrize("current,requested", [
        ("COMPLETED", "PENDING"),
        ("CANCELLED", "PENDING"),
        ("CANCELLED", "COMPLETED"),
    ])
    def test_forbidden(self, current, requested):
        with pytest.raises(ConflictError) as exc:
            transition(current, requested)
        assert "Cannot change order status" in exc.value.message

    @pytest.mark.parametrize("status", ["COMPLETED", "CANCELLED"])
    def test_repeating_closed_status_conflicts(self, status):
        """
        SCENARIO: A second COMPLETED (or CANCELLED) request for the same order.
        EXPECTED: ConflictError, never a second stock effect.
        """
        with pytest.raises(ConflictError) as exc:
            transition(status, status)
        assert exc.value.message == f"Order is already {status}"


class TestParseStatus:

    def test_case_insensitive(self):
        assert parse_status(" completed ") == OrderStatus.COMPLETED

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            parse_status("REFUNDED")

    def test_non_string(self):
        with pytest.raises(ValidationError):
            parse_status(3)


class TestEditability:

    def test_only_pending_is_editable(self):
        assert is_editable("PENDING")
        assert not is_editable("COMPLETED")
        assert not is_editable("CANCELLED")

    def test_completed_orders_accept_new_items(self):
        assert accepts_new_items("PENDING")
        assert accepts_new_items("COMPLETED")
        assert not accepts_new_items("CANCELLED")
