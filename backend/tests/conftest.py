"""
Pytest fixtures for FrostPOS backend tests.

Provides the in-memory test app, a per-test table wipe, catalog fixtures and
actor header helpers.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from frostpos import create_app
from frostpos.extensions import db
from frostpos.models import Category, Product, StockLog
from frostpos.services import products_service

ADMIN_ID = 1
CASHIER_ID = 2


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TX_RETRY_BACKOFF': 0,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def category(db_session):
    """Frozen food category."""
    c = Category(name="Frozen Food", description="Everything from the freezer")
    db_session.add(c)
    db_session.commit()
    return c


def make_product(name="Chicken Nuggets", buy="8.00", sell="12.50", stock=10, category_id=None, **extra):
    """Create a product through the service so its opening stock is logged."""
    patch = {
        "name": name,
        "buy_price": Decimal(buy),
        "sell_price": Decimal(sell),
        "stock": stock,
        "expiry_date": date.today() + timedelta(days=90),
        "category_id": category_id,
    }
    patch.update(extra)
    created = products_service.create_product(patch=patch, user_id=ADMIN_ID)
    return db.session.get(Product, created["id"])


@pytest.fixture(scope='function')
def product(db_session, category):
    """Product with 10 units in stock, sell price 12.50."""
    return make_product(category_id=category.id)


@pytest.fixture(scope='function')
def other_product(db_session, category):
    """Product with 5 units in stock, sell price 3.00."""
    return make_product(name="Fish Balls", buy="2.00", sell="3.00", stock=5, category_id=category.id)


def logged_stock(product_id: int) -> int:
    """SUM(stock_logs.quantity) for a product."""
    total = db.session.query(db.func.coalesce(db.func.sum(StockLog.quantity), 0)).filter(
        StockLog.product_id == product_id
    ).scalar()
    return int(total)


def assert_stock_consistent(product_id: int) -> None:
    """Product.stock must equal the sum of its stock log."""
    p = db.session.get(Product, product_id)
    db.session.refresh(p)
    assert p.stock == logged_stock(product_id)
    assert p.stock >= 0


def admin_headers_for(user_id=ADMIN_ID) -> dict:
    return {"X-User-Id": str(user_id), "X-User-Role": "ADMIN"}


def cashier_headers_for(user_id=CASHIER_ID) -> dict:
    return {"X-User-Id": str(user_id), "X-User-Role": "CASHIER"}


@pytest.fixture
def admin_headers():
    return admin_headers_for()


@pytest.fixture
def cashier_headers():
    return cashier_headers_for()
