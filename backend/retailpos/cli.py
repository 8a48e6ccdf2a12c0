# Overview: Flask CLI command groups for bootstrap, inspection, and stock maintenance.

# backend/retailpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to retailpos (PowerShell: $env:FLASK_APP="retailpos"); create_app is found automatically.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--store "Main Store"] [--store-code MAIN]
#   Idempotent bootstrap: default store, roles with capabilities, and users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock:
# - python -m flask inventory restock --product-id 1 --store-id 1 --quantity 10 [--location A1]
#   Receive stock into both counters.
# - python -m flask inventory show --product-id 1 --store-id 1
#   Show product-level and store-level stock.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Store, User
from .services import permission_service, stock_ledger
from .services.auth_service import PasswordValidationError, create_user
from .services.exceptions import SaleError


DEFAULT_PASSWORD = "Password123!"

DEFAULT_USERS = [
    ("Administrator", "admin", "admin@retailpos.local", "admin"),
    ("Store Manager", "manager", "manager@retailpos.local", "manager"),
    ("Cashier", "cashier", "cashier@retailpos.local", "cashier"),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--store', 'store_name', default='Main Store', help='Default store name')
@click.option('--store-code', default='MAIN', help='Default store code')
@with_appcontext
def init_system(store_name, store_code):
    """
    Initialize the system: default store, roles and default users.

    Default users: admin, manager, cashier, all with password "Password123!".

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing RetailPOS...")

    store = db.session.query(Store).filter_by(code=store_code).first()
    if not store:
        store = Store(name=store_name, code=store_code, is_active=True)
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created default store: {store.name} (ID: {store.id})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    click.echo("\nLIST Creating roles...")
    roles = permission_service.ensure_default_roles()
    for name, role in roles.items():
        click.echo(f"PASS {name}: {', '.join(sorted(role.capability_codes()))}")

    click.echo("\nUSERS Creating default users...")
    for name, username, email, role_name in DEFAULT_USERS:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(
                name=name,
                username=username,
                email=email,
                password=DEFAULT_PASSWORD,
                role_name=role_name,
                store_id=store.id,
            )
            click.echo(f"PASS Created user: {username} ({email}) with role '{role_name}'")
        except (PasswordValidationError, ValueError) as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create user '{username}': {e}")

    click.echo("\nDONE RetailPOS initialized.")
    click.echo(f"Store: {store.name} (ID: {store.id})")
    click.echo(f"Default password for all users: {DEFAULT_PASSWORD} (CHANGE IN PRODUCTION!)")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('inventory')
def inventory_group():
    """Stock inspection and restocking."""


@inventory_group.command('restock')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--quantity', type=click.IntRange(min=1), required=True, help='Units received')
@click.option('--location', default=None, help='Shelf/bin location')
@with_appcontext
def restock_cli(product_id, store_id, quantity, location):
    """Receive stock into the product counter and the store's inventory record."""
    try:
        position = stock_ledger.restock(
            product_id=product_id,
            store_id=store_id,
            quantity=quantity,
            location=location,
        )
    except SaleError as e:
        raise click.ClickException(e.message)

    click.echo(
        f"PASS Restocked product {product_id} in store {store_id}: "
        f"product stock={_fmt(position.product_stock)}, store quantity={_fmt(position.inventory_quantity)}"
    )


@inventory_group.command('show')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--store-id', type=int, required=True, help='Store ID')
@with_appcontext
def show_stock_cli(product_id, store_id):
    """Show both stock counters for a product in a store."""
    try:
        position = stock_ledger.get_stock_position(product_id, store_id)
    except SaleError as e:
        raise click.ClickException(e.message)

    click.echo(f"Product {product_id} / store {store_id}")
    click.echo(f"  product stock:  {_fmt(position.product_stock)}")
    click.echo(f"  store quantity: {_fmt(position.inventory_quantity)}")


def _fmt(value):
    return "untracked" if value is None else str(value)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
