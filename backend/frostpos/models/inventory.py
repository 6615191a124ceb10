from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .catalog import money_str


class StockLog(db.Model):
    """
    One signed stock movement against one product.

    Rows are immutable apart from `notes`. A reversal never deletes the row:
    it stamps reversed_at / reversed_by_log_id and appends a compensating
    ADJUSTMENT whose reversal_of_log_id points back here, so the per-product
    sum of quantities keeps matching Product.stock.
    """
    __tablename__ = "stock_logs"
    __table_args__ = (
        db.Index("ix_stock_logs_product_created", "product_id", "created_at"),
        db.CheckConstraint("quantity <> 0", name="ck_stock_logs_quantity_non_zero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Positive = stock in, negative = stock out
    quantity = db.Column(db.Integer, nullable=False)

    # PURCHASE | SALE | ADJUSTMENT | SPOILAGE | RETURN_CUSTOMER | RETURN_SUPPLIER
    type = db.Column(db.String(32), nullable=False, index=True)

    buy_price = db.Column(db.Numeric(12, 2), nullable=True)

    user_id = db.Column(db.Integer, nullable=False, index=True)
    notes = db.Column(db.String(500), nullable=True)

    # Set when the movement was generated by an order transition
    order_id = db.Column(db.Integer, nullable=True, index=True)

    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reversed_by_log_id = db.Column(db.Integer, nullable=True)
    reversal_of_log_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    product = db.relationship("Product")

    def __repr__(self) -> str:
        return f"<StockLog id={self.id} product_id={self.product_id} type={self.type} quantity={self.quantity}>"

    @property
    def is_reversed(self) -> bool:
        return self.reversed_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "type": self.type,
            "buy_price": money_str(self.buy_price),
            "user_id": self.user_id,
            "notes": self.notes,
            "order_id": self.order_id,
            "is_reversed": self.is_reversed,
            "reversed_at": to_utc_z(self.reversed_at) if self.reversed_at else None,
            "reversed_by_log_id": self.reversed_by_log_id,
            "reversal_of_log_id": self.reversal_of_log_id,
            "created_at": to_utc_z(self.created_at),
        }
