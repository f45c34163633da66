# Overview: Flask CLI command groups for bootstrap, catalog seeding and stock inspection.

# backend/pharmapos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog add-product --code DOLI500 --name "Doliprane 500mg" --price-cents 1500
# - python -m flask catalog list [--search doli]
#
# Stock:
# - python -m flask stock receive --product-id 1 --batch LOT-A --quantity 100 --price-cents 900 --expiry 2027-06-30 --actor-id 1
# - python -m flask stock alerts [--days 30]
# - python -m flask stock reconcile [--product-id 1]

import click
from flask.cli import with_appcontext

from .extensions import db
from .identity import Actor
from .models import Product
from .services import catalog_service, ledger_service, lot_service
from .services.errors import EngineError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("OK Database tables created")


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
    db.create_all()
    click.echo("OK Database reset complete")


@click.group('catalog')
def catalog_group():
    """Product catalog seeding and inspection."""


@catalog_group.command('add-product')
@click.option('--code', required=True, help='Unique product code')
@click.option('--name', required=True, help='Display name')
@click.option('--price-cents', type=int, required=True, help='Selling price in cents')
@click.option('--cost-cents', type=int, default=0, help='Purchase cost in cents')
@click.option('--category', default=None)
@click.option('--prescription', is_flag=True, help='Prescription required')
@click.option('--alert-threshold', type=int, default=10)
@click.option('--max-stock', type=int, default=100)
@with_appcontext
def add_product(code, name, price_cents, cost_cents, category, prescription, alert_threshold, max_stock):
    try:
        product = catalog_service.create_product({
            "code": code,
            "name": name,
            "category": category,
            "price_cents": price_cents,
            "purchase_cost_cents": cost_cents,
            "prescription_required": prescription,
            "alert_threshold": alert_threshold,
            "max_stock": max_stock,
        })
    except EngineError as e:
        raise click.ClickException(str(e))
    click.echo(f"OK Product {product.id} created: {product.code} {product.name}")


@catalog_group.command('list')
@click.option('--search', default=None)
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive products')
@with_appcontext
def list_products(search, include_inactive):
    products = catalog_service.list_products(active_only=not include_inactive, search=search)
    if not products:
        click.echo("No products found")
        return
    for p in products:
        available = lot_service.available_quantity(p.id)
        flag = " [Rx]" if p.prescription_required else ""
        click.echo(f"{p.id:>5}  {p.code:<16} {p.name:<40} {p.price_cents:>9}c  stock={available}{flag}")


@click.group('stock')
def stock_group():
    """Lot reception and stock inspection."""


@stock_group.command('receive')
@click.option('--product-id', type=int, required=True)
@click.option('--batch', 'batch_code', required=True, help='Supplier batch code')
@click.option('--quantity', type=int, required=True)
@click.option('--price-cents', type=int, required=True, help='Purchase price per unit in cents')
@click.option('--expiry', required=True, help='Expiry date YYYY-MM-DD')
@click.option('--manufactured', default=None, help='Manufacture date YYYY-MM-DD')
@click.option('--supplier-id', type=int, default=None)
@click.option('--actor-id', type=int, required=True, help='User id recorded on the movement')
@with_appcontext
def receive(product_id, batch_code, quantity, price_cents, expiry, manufactured, supplier_id, actor_id):
    try:
        lot = lot_service.receive_lot(
            product_id=product_id,
            batch_code=batch_code,
            quantity=quantity,
            purchase_price_cents=price_cents,
            expiry_date=expiry,
            manufactured_on=manufactured,
            supplier_id=supplier_id,
            actor=Actor(user_id=actor_id, role="cli"),
        )
    except EngineError as e:
        raise click.ClickException(str(e))
    click.echo(f"OK Lot {lot.id} received: {lot.initial_quantity} units, expires {lot.expiry_date}")


@stock_group.command('alerts')
@click.option('--days', type=int, default=None, help='Near-expiry horizon in days')
@with_appcontext
def alerts(days):
    report = lot_service.get_stock_alerts(near_expiry_days=days)
    click.echo(f"Below threshold ({len(report['below_threshold'])}):")
    for row in report["below_threshold"]:
        click.echo(f"  {row['code']:<16} {row['name']:<40} {row['available']:>5} <= {row['alert_threshold']}")
    click.echo(f"Near expiry within {report['near_expiry_days']} days ({len(report['near_expiry'])}):")
    for row in report["near_expiry"]:
        click.echo(
            f"  lot {row['id']:<6} product {row['product_id']:<6} {row['batch_code']:<16} "
            f"qty={row['current_quantity']:<5} expires {row['expiry_date']} ({row['days_left']}d)"
        )


@stock_group.command('reconcile')
@click.option('--product-id', type=int, default=None, help='Single product (default: all)')
@with_appcontext
def reconcile(product_id):
    """Check that lot quantities match the movement ledger."""
    if product_id is not None:
        ids = [product_id]
    else:
        ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id).all()]

    unbalanced = 0
    for pid in ids:
        report = ledger_service.reconcile_product(pid)
        status = "OK " if report["balanced"] else "ERR"
        if not report["balanced"]:
            unbalanced += 1
        click.echo(
            f"{status} product {pid}: lots={report['lots_current_quantity']} "
            f"ledger={report['ledger_lot_quantity']}"
        )
    if unbalanced:
        raise click.ClickException(f"{unbalanced} product(s) out of balance")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(stock_group)
