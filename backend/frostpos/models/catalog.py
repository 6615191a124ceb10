from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


def money_str(value: Decimal | None) -> str | None:
    """Serialize money as a fixed 2-place decimal string (never a float)."""
    if value is None:
        return None
    return f"{Decimal(value):.2f}"


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_categories_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Product(db.Model):
    """
    Product master data and the materialized current stock count.

    STOCK DESIGN DECISION:
    StockLog is the source of truth for quantities. Product.stock is a running
    total that must equal SUM(stock_logs.quantity) for the product; it is only
    ever written by stock_service in the same transaction as the log row.

    SKU:
    Optional on input; when absent it is derived from the id as SKU-000123
    once the row has been flushed.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_category_name", "category_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    buy_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    sell_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    stock = db.Column(db.Integer, nullable=False, default=0)

    # Frozen goods: every product carries a best-before date
    expiry_date = db.Column(db.Date, nullable=False)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    # Opaque reference into the image store
    image_url = db.Column(db.String(512), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "buy_price": money_str(self.buy_price),
            "sell_price": money_str(self.sell_price),
            "stock": self.stock,
            "expiry_date": to_iso_date(self.expiry_date),
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
            "image_url": self.image_url,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
