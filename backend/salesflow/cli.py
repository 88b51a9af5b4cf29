# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/salesflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and one directory user per role.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list [--role Distributor]
# - python -m flask users create --name "Nimal Perera" --role DirectRepresentative --location DS-SHOWROOM
#
# Catalog:
# - python -m flask catalog add-product --name "Cinnamon Tea" --price-cents 45000 [--id P1]
# - python -m flask catalog stock [--location DS-SHOWROOM] [--low]
# - python -m flask catalog set-stock --product-id P1 --location DS-SHOWROOM --quantity 20 --actor <user id>
#
# Requests:
# - python -m flask requests pending --role HeadOfOperations
#
# Reconciliation:
# - python -m flask reconcile list [--older-than-minutes 15]
# - python -m flask reconcile sweep [--older-than-minutes 15]

import click
from datetime import timedelta
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .errors import WorkflowError
from .models import User
from .permissions import ALL_ROLES, approvable_roles
from .services import catalog_service, identity_service, reconciliation_service, request_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the salesflow database.

    Creates:
    - All tables (no-op for tables that exist)
    - One directory user per role, e.g. headofoperations@salesflow.local

    Credentials are issued by the upstream session provider; these rows only
    give those sessions a role and location to resolve to.
    """
    click.echo("START Initializing salesflow...")

    db.create_all()
    click.echo("PASS Tables ready")

    location = current_app.config["DEFAULT_FULFILLMENT_LOCATION"]
    click.echo("\nUSERS Creating default users...")
    for role in ALL_ROLES:
        email = f"{role.lower()}@salesflow.local"
        existing = db.session.query(User).filter_by(email=email).first()
        if existing:
            click.echo(f"WARN  User '{email}' already exists, skipping...")
            continue
        try:
            user = identity_service.create_user(
                display_name=role,
                role=role,
                email=email,
                location=location,
            )
            db.session.commit()
            click.echo(f"PASS Created user {user.id}: {email} ({role})")
        except WorkflowError as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create user '{email}': {e.message}")

    click.echo("\n" + "="*60)
    click.echo("DONE salesflow initialized")
    click.echo("="*60)


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
    click.echo("BUILD Recreating schema...")
    db.create_all()
    click.echo("PASS Database reset complete")


# =============================================================================
# USER DIRECTORY COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User directory commands."""


@users_group.command('list')
@click.option('--role', default=None, type=click.Choice(ALL_ROLES), help='Filter by role')
@with_appcontext
def list_users(role):
    """List directory users."""
    q = db.session.query(User)
    if role:
        q = q.filter_by(role=role)
    users = q.order_by(User.role, User.display_name).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<22} {'Name':<25} {'Role':<28} {'Location':<12} {'Active'}")
    click.echo("="*90)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<22} {user.display_name:<25} {user.role:<28} {user.location or '-':<12} {active_str}")
    click.echo("="*90 + "\n")


@users_group.command('create')
@click.option('--name', 'display_name', required=True, help='Display name')
@click.option('--role', required=True, type=click.Choice(ALL_ROLES), help='Role')
@click.option('--email', default=None, help='Email (unique)')
@click.option('--department', default=None, help='Department')
@click.option('--location', default=None, help='Stock location the user works from')
@click.option('--id', 'user_id', default=None, help='Explicit user id (defaults to a push id)')
@with_appcontext
def create_user_cli(display_name, role, email, department, location, user_id):
    """Add a directory user."""
    try:
        user = identity_service.create_user(
            display_name=display_name,
            role=role,
            email=email,
            department=department,
            location=location,
            user_id=user_id,
        )
        db.session.commit()
        click.echo(f"PASS Created user {user.id} ({user.display_name}, {user.role})")
    except WorkflowError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")


# =============================================================================
# CATALOG COMMANDS
# =============================================================================

@click.group('catalog')
def catalog_group():
    """Product and stock commands."""


@catalog_group.command('add-product')
@click.option('--name', required=True, help='Product name')
@click.option('--price-cents', type=int, default=None, help='Unit price in cents')
@click.option('--unit', default='units', help='Unit of measure')
@click.option('--variant', 'variant_name', default=None, help='Variant name')
@click.option('--id', 'product_id', default=None, help='Explicit product id')
@with_appcontext
def add_product(name, price_cents, unit, variant_name, product_id):
    """Create a catalog product."""
    try:
        product = catalog_service.create_product(
            name=name,
            price_cents=price_cents,
            unit=unit,
            variant_name=variant_name,
            product_id=product_id,
        )
        click.echo(f"PASS Created product {product.id}: {product.display_name}")
    except WorkflowError as e:
        click.echo(f"FAIL {e.message}")


@catalog_group.command('set-stock')
@click.option('--product-id', required=True)
@click.option('--location', required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--actor', 'actor_id', required=True, help='User id performing the change')
@click.option('--price-cents', type=int, default=None, help='Location selling price')
@with_appcontext
def set_stock(product_id, location, quantity, actor_id, price_cents):
    """Set on-hand quantity for a product at a location."""
    try:
        actor = identity_service.resolve_identity(actor_id)
        record = catalog_service.upsert_inventory_record(
            product_id=product_id,
            location=location,
            quantity=quantity,
            actor=actor,
            unit_price_cents=price_cents,
        )
        click.echo(f"PASS {record.product_name} @ {record.location}: {record.quantity}")
    except WorkflowError as e:
        click.echo(f"FAIL {e.message}")


@catalog_group.command('stock')
@click.option('--location', default=None, help='Only this location')
@click.option('--low', is_flag=True, help='Only records below LOW_STOCK_THRESHOLD')
@with_appcontext
def show_stock(location, low):
    """List inventory records with stock status."""
    threshold = current_app.config.get("LOW_STOCK_THRESHOLD", catalog_service.LOW_STOCK_THRESHOLD)
    if low:
        records = catalog_service.low_stock_items(threshold=threshold, location=location)
    else:
        records = catalog_service.list_inventory(location=location)

    if not records:
        click.echo("No inventory records found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'Product':<35} {'Location':<15} {'Qty':>8} {'Status':<8}")
    click.echo("="*80)
    for record in records:
        status = catalog_service.stock_status(record.quantity, low=threshold)
        click.echo(f"{record.product_name:<35} {record.location:<15} {record.quantity:>8} {status:<8}")
    click.echo("="*80 + "\n")


# =============================================================================
# REQUEST COMMANDS
# =============================================================================

@click.group('requests')
def requests_group():
    """Product request inspection."""


@requests_group.command('pending')
@click.option('--role', required=True, type=click.Choice(ALL_ROLES), help='Approver role')
@click.option('--location', default=None, help='Only requests for this location')
@with_appcontext
def pending_requests(role, location):
    """List requests the given approver role may act on."""
    if not approvable_roles(role):
        click.echo(f"WARN  Role {role} does not approve requests")
        return

    count = 0
    for req in request_service.list_pending_for(role, location=location):
        count += 1
        click.echo(
            f"{req.request_number:<18} {req.requested_by_name:<25} {req.requested_by_role:<26} "
            f"{req.priority:<7} {len(req.items)} item(s)"
        )
    click.echo(f"\n{count} pending request(s)")


# =============================================================================
# RECONCILIATION COMMANDS
# =============================================================================

@click.group('reconcile')
def reconcile_group():
    """Operation intent reconciliation."""


def _older_than(minutes):
    return timedelta(minutes=minutes) if minutes is not None else None


@reconcile_group.command('list')
@click.option('--older-than-minutes', type=int, default=None, help='Defaults to INTENT_STALE_MINUTES')
@with_appcontext
def list_intents(older_than_minutes):
    """List stale pending intents."""
    intents = reconciliation_service.list_incomplete_intents(_older_than(older_than_minutes))
    if not intents:
        click.echo("No stale intents.")
        return
    for intent in intents:
        click.echo(f"{intent.key:<45} {intent.kind:<12} attempts={intent.attempts} since={intent.created_at}")


@reconcile_group.command('sweep')
@click.option('--older-than-minutes', type=int, default=None, help='Defaults to INTENT_STALE_MINUTES')
@with_appcontext
def sweep(older_than_minutes):
    """Resolve stale pending intents as completed or failed."""
    report = reconciliation_service.reconcile(_older_than(older_than_minutes))
    click.echo(f"Checked {report.checked} intent(s)")
    for key in report.completed:
        click.echo(f"PASS {key} -> completed")
    for key in report.failed:
        click.echo(f"FAIL {key} -> failed (needs manual follow-up)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(requests_group)
    app.cli.add_command(reconcile_group)
