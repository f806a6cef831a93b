# Overview: Flask CLI command groups for bootstrap, ledger checks, and catalog seeding.

# backend/tillpoint/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger inspection:
# - python -m flask ledger verify [--product-id 1]
#   Check Product.stock against the movement ledger. Exit code 1 on mismatch.
# - python -m flask ledger low-stock
#   List active products at or below their reorder threshold.
#
# Catalog seeding:
# - python -m flask catalog add-product --sku COF-001 --name "Coffee" --price-cents 500 --cost-cents 200 --stock 20

import click
from flask.cli import with_appcontext

from .errors import PosError
from .extensions import db
from .models import Product
from .services import catalog_service, stock_ledger


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create database tables."""
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

    click.echo("PASS Database reset complete.")


@click.group('ledger')
def ledger_group():
    """Inventory ledger inspection commands."""


@ledger_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Check a single product')
@with_appcontext
def verify_ledger(product_id):
    """Verify that every product's stock equals its ledger projection."""
    if product_id is not None:
        product_ids = [product_id]
    else:
        product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id).all()]

    mismatches = 0
    for pid in product_ids:
        try:
            result = stock_ledger.verify_projection(pid)
        except PosError as e:
            click.echo(f"FAIL product {pid}: {e}")
            mismatches += 1
            continue

        if result["consistent"]:
            click.echo(f"PASS {result['sku']}: stock={result['stock']}")
        else:
            mismatches += 1
            click.echo(
                f"FAIL {result['sku']}: stock={result['stock']} "
                f"ledger_sum={result['ledger_sum']} last_new_quantity={result['last_new_quantity']}"
            )

    click.echo(f"Checked {len(product_ids)} product(s), {mismatches} mismatch(es).")
    if mismatches:
        raise SystemExit(1)


@ledger_group.command('low-stock')
@with_appcontext
def low_stock():
    """List active products at or below their reorder threshold."""
    products = stock_ledger.list_low_stock()
    if not products:
        click.echo("No products below their reorder threshold.")
        return

    click.echo(f"{'SKU':<16} {'Name':<30} {'Stock':>6} {'Reorder':>8}")
    click.echo("-" * 64)
    for p in products:
        click.echo(f"{p.sku:<16} {p.name[:30]:<30} {p.stock:>6} {p.reorder_threshold:>8}")


@click.group('catalog')
def catalog_group():
    """Catalog seeding commands."""


@catalog_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=int, required=True)
@click.option('--cost-cents', type=int, default=0, show_default=True)
@click.option('--tax-rate-bps', type=int, default=0, show_default=True, help='1000 = 10%')
@click.option('--stock', 'initial_stock', type=int, default=0, show_default=True)
@click.option('--reorder', 'reorder_threshold', type=int, default=0, show_default=True)
@click.option('--location', default=None)
@with_appcontext
def add_product(sku, name, price_cents, cost_cents, tax_rate_bps, initial_stock, reorder_threshold, location):
    """Create a product, booking any initial stock through the ledger."""
    try:
        product = catalog_service.create_product(
            actor_id=None,
            sku=sku,
            name=name,
            price_cents=price_cents,
            cost_cents=cost_cents,
            tax_rate_bps=tax_rate_bps,
            initial_stock=initial_stock,
            reorder_threshold=reorder_threshold,
            location=location,
        )
    except PosError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Created product {product.sku} (ID: {product.id}, stock: {product.stock})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(catalog_group)
