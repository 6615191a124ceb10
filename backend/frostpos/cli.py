# Overview: Flask CLI command groups for bootstrap, seeding, and stock checks.

# backend/frostpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed [--user-id 1]
#   Create the frozen-food category and sample products with opening stock.
#
# Stock inspection:
# - python -m flask stock reconcile [--product-id 3]
#   Compare each product's stock with the sum of its stock log. Exits 1 on mismatch.

from datetime import timedelta

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .models import Category, Product
from .services import category_service, products_service
from .services.stock_service import reconcile_stock
from .time_utils import utcnow
from .validation import to_money

SEED_CATEGORY = ("Frozen Food", "Nuggets, sausages, dumplings and other frozen goods")

# name, buy_price, sell_price, opening stock, shelf life in days
SEED_PRODUCTS = [
    ("Chicken Nuggets 500g", "32000.00", "38500.00", 40, 180),
    ("Beef Sausage 500g", "35000.00", "42000.00", 30, 180),
    ("Shrimp Dumplings 300g", "27500.00", "34000.00", 25, 120),
    ("Fish Balls 500g", "22000.00", "27000.00", 35, 150),
    ("French Fries 1kg", "29000.00", "35500.00", 20, 365),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed' for sample data.")


@system_group.command('seed')
@click.option('--user-id', type=int, default=1, show_default=True, help='User recorded on the opening stock logs')
@with_appcontext
def seed(user_id):
    """
    Create sample catalog data. Idempotent: existing names are skipped.

    Opening stock is booked as PURCHASE logs, so the stock log stays the
    source of truth from the first row.
    """
    name, description = SEED_CATEGORY
    category = db.session.query(Category).filter_by(name=name).first()
    if category is None:
        category = category_service.create_category(name=name, description=description)
        click.echo(f"PASS Created category: {category.name} (ID: {category.id})")
    else:
        click.echo(f"SKIP Category exists: {category.name} (ID: {category.id})")

    today = utcnow().date()
    for product_name, buy, sell, stock, shelf_days in SEED_PRODUCTS:
        if db.session.query(Product.id).filter_by(name=product_name).first() is not None:
            click.echo(f"SKIP Product exists: {product_name}")
            continue
        try:
            created = products_service.create_product(
                patch={
                    "name": product_name,
                    "buy_price": to_money(buy, "buy_price"),
                    "sell_price": to_money(sell, "sell_price"),
                    "stock": stock,
                    "expiry_date": today + timedelta(days=shelf_days),
                    "category_id": category.id,
                },
                user_id=user_id,
            )
        except DomainError as e:
            raise click.ClickException(f"Failed to seed {product_name}: {e.message}")
        click.echo(f"PASS Created product: {created['name']} ({created['sku']}, stock {created['stock']})")


@click.group('stock')
def stock_group():
    """Stock log inspection commands."""


@stock_group.command('reconcile')
@click.option('--product-id', type=int, help='Check a single product')
@with_appcontext
def reconcile(product_id):
    """Verify Product.stock == SUM(stock_logs.quantity) for every product."""
    result = reconcile_stock(product_id)
    click.echo(f"Checked {result['checked']} product(s)")

    if result["consistent"]:
        click.echo("PASS Stock matches the stock log.")
        return

    for m in result["mismatches"]:
        click.echo(
            f"FAIL #{m['product_id']} {m['name']}: stock={m['stock']} "
            f"logged={m['logged_stock']} difference={m['difference']:+d}"
        )
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
