# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/settlement/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Idempotent: creates tables, default payment methods and a default loyalty program.
#
# Cash drawer inspection:
# - python -m flask drawers status
#   Show the open drawer with expected balance and running discrepancy.
# - python -m flask drawers list --status reconciled --limit 20
#   List recent drawers.
#
# Inventory inspection:
# - python -m flask inventory show 12 --limit 10
#   Stock level and recent adjustments for a product.

import click
from decimal import Decimal
from flask.cli import with_appcontext

from .extensions import db
from .models import PaymentMethod, LoyaltyProgram
from .services import drawer_service, inventory_service
from .validation import NotFoundError


DEFAULT_PAYMENT_METHODS = [
    ("Cash", "cash"),
    ("Card", "card"),
    ("Mobile Money", "mobile"),
]


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--points-per-currency', default="0.01", show_default=True, help='Default loyalty earn rate')
@with_appcontext
def system_init(points_per_currency):
    """Create tables and seed defaults (safe to re-run)."""
    click.echo("START Initializing settlement database...")
    db.create_all()

    for name, category in DEFAULT_PAYMENT_METHODS:
        method = db.session.query(PaymentMethod).filter_by(name=name).first()
        if method:
            click.echo(f"PASS Using existing payment method: {name}")
            continue
        db.session.add(PaymentMethod(name=name, category=category, is_active=True))
        click.echo(f"PASS Created payment method: {name} ({category})")

    program = db.session.query(LoyaltyProgram).filter_by(name="Default").first()
    if program:
        click.echo(f"PASS Using existing loyalty program: {program.name}")
    else:
        db.session.add(LoyaltyProgram(name="Default", points_per_currency=Decimal(points_per_currency), is_active=True))
        click.echo(f"PASS Created loyalty program: Default ({points_per_currency} points per unit)")

    db.session.commit()
    click.echo("DONE Settlement system initialized")


@click.group('drawers')
def drawers_group():
    """Cash drawer inspection commands."""


@drawers_group.command('status')
@with_appcontext
def drawers_status():
    """Show the currently open drawer."""
    drawer = drawer_service.get_open_drawer()
    if drawer is None:
        click.echo("No cash drawer is open.")
        return

    summary = drawer_service.drawer_summary(drawer.id)
    click.echo(f"Drawer #{drawer.id} opened {summary['drawer']['opened_at']} by {drawer.opened_by or '-'}")
    click.echo(f"  Opening:  {summary['drawer']['opening_balance']}")
    click.echo(f"  Current:  {summary['drawer']['current_balance']}")
    click.echo(f"  Expected: {summary['drawer']['expected_balance']} (ledger {summary['ledger_expected_balance']})")
    click.echo(f"  Transactions: {summary['transaction_count']}")


@drawers_group.command('list')
@click.option('--status', type=click.Choice(["open", "closed", "reconciled"]), default=None)
@click.option('--limit', default=20, show_default=True)
@with_appcontext
def drawers_list(status, limit):
    """List recent drawers."""
    drawers = drawer_service.list_drawers(status=status, limit=limit)
    if not drawers:
        click.echo("No cash drawers found.")
        return

    click.echo(f"{'ID':<6} {'Status':<12} {'Opening':>14} {'Expected':>14} {'Counted':>14} {'Discrepancy':>12}  Result")
    for drawer in drawers:
        data = drawer.to_dict()
        result = drawer_service.classify_discrepancy(drawer.discrepancy) if drawer.discrepancy is not None else "-"
        click.echo(
            f"{drawer.id:<6} {drawer.status:<12} {data['opening_balance']:>14} "
            f"{data['expected_balance']:>14} {data['current_balance']:>14} "
            f"{data['discrepancy'] or '-':>12}  {result}"
        )


@click.group('inventory')
def inventory_group():
    """Inventory inspection commands."""


@inventory_group.command('show')
@click.argument('product_id', type=int)
@click.option('--limit', default=10, show_default=True)
@with_appcontext
def inventory_show(product_id, limit):
    """Show stock and recent adjustments for a product."""
    try:
        stock = inventory_service.get_stock(product_id)
    except NotFoundError as e:
        click.echo(f"FAIL {e}")
        return

    flag = " (LOW)" if stock.is_low_stock else ""
    click.echo(f"Product {product_id}: {stock.quantity} on hand, minimum {stock.min_stock_level}{flag}")
    for adj in inventory_service.list_adjustments(product_id, limit=limit):
        shortfall = f" shortfall {adj.shortfall}" if adj.shortfall else ""
        click.echo(
            f"  {adj.occurred_at:%Y-%m-%d %H:%M} {adj.adjustment_type:<10} "
            f"{adj.quantity_change:+d} ({adj.quantity_before} -> {adj.quantity_after}){shortfall} {adj.reason or ''}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(drawers_group)
    app.cli.add_command(inventory_group)
