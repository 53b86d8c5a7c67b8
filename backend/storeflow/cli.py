# Overview: Flask CLI command groups for bootstrap, stock inspection and planning.

# backend/storeflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stores and variants:
# - python -m flask stores create --name "Main Store" --code MAIN
# - python -m flask stores list
# - python -m flask variants create --sku TSHIRT-RED-M --name "T-shirt red M" --price 19.99
# - python -m flask variants list
#
# Inventory:
# - python -m flask inventory adjust --store-id 1 --variant-id 1 --action add --quantity 10 --notes "opening stock"
# - python -m flask inventory history --store-id 1 --variant-id 1 [--type transfer_out]
# - python -m flask inventory low-stock [--store-id 1]
#
# Allocation:
# - python -m flask allocation check --store-id 1 --item 1:5 --item 2:3
#   Show shortages and transfer/purchase suggestions for an order draft.

import click
from flask.cli import with_appcontext

from .errors import StoreflowError
from .extensions import db
from .models import ProductVariant, Store
from .money import to_major_units, to_minor_units
from .services import allocation_service, inventory_service


def _fail(message: str) -> None:
    click.echo(f"FAIL {message}")
    raise click.exceptions.Exit(1)


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

    click.echo("PASS Database reset complete.")


@click.group('stores')
def stores_group():
    """Store management commands."""


@stores_group.command('create')
@click.option('--name', required=True, help='Store name (unique)')
@click.option('--code', help='Short store code')
@with_appcontext
def create_store_cli(name, code):
    """Create a new store."""
    if db.session.query(Store).filter_by(name=name).first():
        _fail(f"Store '{name}' already exists")

    store = Store(name=name, code=code)
    db.session.add(store)
    db.session.commit()
    click.echo(f"PASS Created store: {store.name} (ID: {store.id})")


@stores_group.command('list')
@with_appcontext
def list_stores():
    """List all stores."""
    stores = db.session.query(Store).order_by(Store.id).all()
    if not stores:
        click.echo("No stores found.")
        return

    click.echo(f"{'ID':<5} {'Name':<30} {'Code'}")
    for store in stores:
        click.echo(f"{store.id:<5} {store.name:<30} {store.code or '-'}")


@click.group('variants')
def variants_group():
    """Product variant commands."""


@variants_group.command('create')
@click.option('--sku', required=True, help='Unique SKU')
@click.option('--name', help='Display name')
@click.option('--price', default='0', help='Selling price in major units (e.g. 19.99)')
@with_appcontext
def create_variant_cli(sku, name, price):
    """Create a product variant."""
    if db.session.query(ProductVariant).filter_by(sku=sku).first():
        _fail(f"Variant with SKU '{sku}' already exists")
    try:
        price_cents = to_minor_units(price)
    except StoreflowError as e:
        _fail(e.message)

    variant = ProductVariant(sku=sku, name=name, price=price_cents)
    db.session.add(variant)
    db.session.commit()
    click.echo(f"PASS Created variant: {variant.sku} (ID: {variant.id}, price {to_major_units(variant.price)})")


@variants_group.command('list')
@with_appcontext
def list_variants():
    """List variants with their cost aggregates."""
    variants = db.session.query(ProductVariant).order_by(ProductVariant.id).all()
    if not variants:
        click.echo("No variants found.")
        return

    click.echo(f"{'ID':<5} {'SKU':<24} {'Price':>10} {'Avg cost':>10} {'Purchased':>10}")
    for v in variants:
        click.echo(
            f"{v.id:<5} {v.sku:<24} {to_major_units(v.price):>10} "
            f"{to_major_units(v.average_cost):>10} {v.total_purchased_quantity:>10}"
        )


@click.group('inventory')
def inventory_group():
    """Inventory ledger commands."""


@inventory_group.command('adjust')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--variant-id', type=int, required=True, help='Product variant ID')
@click.option('--action', type=click.Choice(['add', 'reduce', 'set']), required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--notes', help='Reason for the adjustment')
@click.option('--user-id', type=int, help='Acting user ID')
@with_appcontext
def adjust_inventory_cli(store_id, variant_id, action, quantity, notes, user_id):
    """Add, reduce or set on-hand stock."""
    try:
        result = inventory_service.adjust_inventory(
            variant_id=variant_id,
            store_id=store_id,
            action=action,
            quantity=quantity,
            notes=notes,
            actor_user_id=user_id,
        )
    except StoreflowError as e:
        _fail(e.message)

    inv = result["inventory"]
    if result["transaction"] is None:
        click.echo(f"PASS No change: store {store_id} variant {variant_id} already at {inv['quantity']}")
    else:
        click.echo(f"PASS Store {store_id} variant {variant_id} now at {inv['quantity']}")


@inventory_group.command('history')
@click.option('--store-id', type=int, help='Filter by store')
@click.option('--variant-id', type=int, help='Filter by variant')
@click.option('--type', 'tx_type', help='Filter by transaction type')
@with_appcontext
def inventory_history_cli(store_id, variant_id, tx_type):
    """Print ledger history, oldest first."""
    try:
        history = inventory_service.inventory_history(
            store_id=store_id, variant_id=variant_id, type=tx_type
        )
        rows = 0
        for tx in history:
            rows += 1
            click.echo(
                f"{tx.occurred_at:%Y-%m-%d %H:%M:%S} store={tx.store_id} variant={tx.product_variant_id} "
                f"{tx.type:<16} {tx.quantity_delta:+d} -> {tx.after_quantity}"
                + (f"  {tx.notes}" if tx.notes else "")
            )
    except StoreflowError as e:
        _fail(e.message)

    if not rows:
        click.echo("No transactions found.")


@inventory_group.command('low-stock')
@click.option('--store-id', type=int, help='Restrict to one store')
@with_appcontext
def low_stock_cli(store_id):
    """List inventory rows at or below their low-stock threshold."""
    rows = inventory_service.list_low_stock(store_id=store_id)
    if not rows:
        click.echo("No low-stock items.")
        return

    for row in rows:
        click.echo(
            f"store={row['store_id']} variant={row['product_variant_id']} "
            f"quantity={row['quantity']} threshold={row['low_stock_threshold']}"
        )


def _parse_item(value: str) -> dict:
    variant, sep, qty = value.partition(':')
    if not sep:
        raise click.BadParameter(f"expected VARIANT:QTY, got '{value}'")
    try:
        return {"product_variant_id": int(variant), "quantity": int(qty)}
    except ValueError:
        raise click.BadParameter(f"expected VARIANT:QTY, got '{value}'")


@click.group('allocation')
def allocation_group():
    """Stock allocation planning."""


@allocation_group.command('check')
@click.option('--store-id', type=int, required=True, help='Requesting store ID')
@click.option('--item', 'items', multiple=True, required=True, help='VARIANT:QTY (repeatable)')
@with_appcontext
def allocation_check_cli(store_id, items):
    """Report shortages and suggested transfers/purchases."""
    lines = [_parse_item(item) for item in items]
    try:
        result = allocation_service.check_stock_availability(store_id=store_id, items=lines)
    except StoreflowError as e:
        _fail(e.message)

    if not result["has_shortage"]:
        click.echo("PASS Store can fill every line.")
        return

    for s in result["suggestions"]:
        click.echo(
            f"variant {s['product_variant_id']}: requested {s['requested_quantity']}, "
            f"available {s['available_quantity']}, short {s['shortage_quantity']}"
        )
        for opt in s["transfer_options"]:
            click.echo(f"  transfer from store {opt['store_id']} (has {opt['available_quantity']})")
        if s["purchase_suggestion"]:
            click.echo(f"  purchase {s['purchase_suggestion']['suggested_quantity']}")
        if s["mixed_solution"]:
            mixed = s["mixed_solution"]
            click.echo(
                f"  mixed: transfer {mixed['transfer_quantity']} + purchase {mixed['purchase_quantity']}"
            )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(variants_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(allocation_group)
