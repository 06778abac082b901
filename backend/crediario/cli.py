# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/crediario/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create a few demo products, customers and an order (skipped if products exist).
#
# Ledger inspection/repair:
# - python -m flask ledger audit [--fix]
#   Check every credit account against its items and payments; --fix repairs balance drift.
# - python -m flask ledger sync-payoffs
#   Replay order/reservation follow-ups for PAID_OFF accounts.
# - python -m flask ledger overdue
#   List ACTIVE accounts past due and reservations past their promised date.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, Order, Product
from .services import credit_account_service, reconciliation_service, reservation_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo products, customers and one PENDING order."""
    if db.session.query(Product).count():
        click.echo("SKIP Products already exist; not seeding.")
        return

    products = [
        Product(sku="TV-50", name="Smart TV 50\"", price_cents=249_900, stock_quantity=8),
        Product(sku="FRIDGE-01", name="Geladeira Frost Free", price_cents=329_000, stock_quantity=5),
        Product(sku="FAN-40", name="Ventilador 40cm", price_cents=18_990, stock_quantity=30),
    ]
    customers = [
        Customer(name="Maria Souza", phone="+55 11 90000-0001"),
        Customer(name="João Lima", phone="+55 11 90000-0002"),
    ]
    db.session.add_all(products + customers)
    db.session.flush()

    order = Order(
        order_number="ORD-0001",
        customer_id=customers[0].id,
        customer_name=customers[0].name,
        total_cents=products[2].price_cents * 2,
        payment_method="CREDIT",
    )
    db.session.add(order)
    db.session.commit()

    click.echo(f"PASS Seeded {len(products)} products, {len(customers)} customers, order {order.order_number}")


@click.group('ledger')
def ledger_group():
    """Credit ledger inspection and repair."""


@ledger_group.command('audit')
@click.option('--fix', is_flag=True, help='Repair remaining/status drift through the integrity guard')
@with_appcontext
def audit(fix):
    """
    Check every credit account.

    Reports balance drift (remaining/status vs total/paid), item sums that
    differ from the total, and payment sums that differ from paid.
    """
    findings = credit_account_service.audit_accounts(fix=fix)
    if not findings:
        click.echo("PASS All credit accounts are consistent.")
        return

    for finding in findings:
        status = "FIXED" if finding["repaired"] else "FAIL"
        click.echo(
            f"{status} {finding['account_number']}: {', '.join(finding['problems'])} "
            f"(total={finding['total_amount_cents']} items={finding['items_total_cents']} "
            f"paid={finding['paid_amount_cents']} payments={finding['payments_total_cents']} "
            f"remaining={finding['remaining_amount_cents']})"
        )

    unresolved = [f for f in findings if not f["repaired"] or set(f["problems"]) - {"balance"}]
    if unresolved:
        raise SystemExit(1)


@ledger_group.command('sync-payoffs')
@with_appcontext
def sync_payoffs():
    """Replay payoff follow-ups for every PAID_OFF account (idempotent)."""
    changed = reconciliation_service.sync_all_payoffs()
    if not changed:
        click.echo("PASS Nothing to sync.")
        return

    for result in changed:
        click.echo(
            f"SYNC account {result['account_id']}: order_completed={result['order_completed']} "
            f"reservations_sold={result['reservations_sold']}"
        )
        for warning in result["warnings"]:
            click.echo(f"WARN   {warning}")


@ledger_group.command('overdue')
@with_appcontext
def overdue():
    """List overdue credit accounts and reservations."""
    accounts = credit_account_service.list_accounts(overdue_only=True)
    reservations = reservation_service.list_reservations(overdue_only=True)

    click.echo(f"Overdue credit accounts: {len(accounts)}")
    for account in accounts:
        click.echo(
            f"  {account.account_number} customer={account.customer_id} "
            f"remaining={account.remaining_amount_cents} due={account.next_payment_date:%Y-%m-%d}"
        )

    click.echo(f"Overdue reservations: {len(reservations)}")
    for reservation in reservations:
        click.echo(
            f"  #{reservation.id} {reservation.customer_name} product={reservation.product_id} "
            f"qty={reservation.quantity} promised={reservation.promised_payment_date:%Y-%m-%d}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
