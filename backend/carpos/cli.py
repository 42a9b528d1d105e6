# Overview: Flask CLI command groups for bootstrap, inspection, and ledger maintenance.

# backend/carpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask system seed [--shop "Main Shop"]
#   Idempotent demo data: one shop, two service types, one register with cash + shared card.
#
# Register inspection/bootstrap:
# - python -m flask registers list --shop-id 1
#   List registers with their current shift.
# - python -m flask registers create --shop-id 1 --name "Front Counter" --location "Bay 1"
#   Create a register with a dedicated cash method and a shared card method.
#
# Shift inspection:
# - python -m flask shifts unclosed --shop-id 1
#   List shifts that are still open or paused.
#
# Ledger maintenance:
# - python -m flask ledger reconcile [--payment-method-id 3] [--fix]
#   Replay payment method logs and report (or repair) cached balance drift.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import CashRegister, PaymentMethod, Shift, Shop, ServiceType
from .models.registers import SHIFT_STATUS_CLOSED
from .validation import DomainError


DEFAULT_METHODS = [
    {"source": "system", "system_type": "cash", "scope": "dedicated"},
    {"source": "system", "system_type": "card", "scope": "shared"},
]


def _money(cents: int) -> str:
    return f"{cents / 100:,.2f}"


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('seed')
@click.option('--shop', 'shop_name', default='Main Shop', help='Shop name')
@click.option('--shop-code', default='MAIN', help='Shop code')
@with_appcontext
def seed(shop_name, shop_code):
    """
    Create demo data for a fresh install.

    Creates (if missing):
    - Shop with the given code
    - Service types: Exterior wash, Full detail
    - Register "Register 1" with dedicated cash and shared card methods
    """
    from .services.catalog_service import create_shop, create_service_type
    from .services.register_service import create_register

    shop = db.session.query(Shop).filter_by(code=shop_code).first()
    if not shop:
        shop = create_shop(shop_name, shop_code)
        click.echo(f"PASS Created shop: {shop.name} (ID: {shop.id}, Code: {shop.code})")
    else:
        click.echo(f"PASS Using existing shop: {shop.name} (ID: {shop.id})")

    for name, price_cents in (("Exterior wash", 2500), ("Full detail", 12000)):
        exists = db.session.query(ServiceType).filter_by(shop_id=shop.id, name=name).first()
        if exists:
            continue
        st = create_service_type(shop.id, name, price_cents)
        click.echo(f"PASS Created service type: {st.name} ({_money(st.price_cents)})")

    register = db.session.query(CashRegister).filter_by(shop_id=shop.id, name="Register 1").first()
    if not register:
        register = create_register(shop.id, "Register 1", payment_methods=DEFAULT_METHODS)
        click.echo(f"PASS Created register: {register.name} (ID: {register.id})")
    else:
        click.echo(f"PASS Using existing register: {register.name} (ID: {register.id})")

    click.echo("DONE Seed complete.")


@click.group('registers')
def registers_group():
    """Register inspection and creation commands."""


@registers_group.command('list')
@click.option('--shop-id', type=int, help='Filter by shop ID')
@with_appcontext
def list_registers_cli(shop_id):
    """
    List all registers.

    Example:
        flask registers list
        flask registers list --shop-id 1
    """
    query = db.session.query(CashRegister)
    if shop_id:
        query = query.filter_by(shop_id=shop_id)

    registers = query.order_by(CashRegister.shop_id, CashRegister.name).all()

    if not registers:
        click.echo("No registers found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Shop':<6} {'Name':<25} {'Type':<14} {'Location':<20} {'Status':<12} {'Shift'}")
    click.echo("="*100)

    for register in registers:
        open_shift = db.session.query(Shift).filter(
            Shift.register_id == register.id,
            Shift.status != SHIFT_STATUS_CLOSED,
        ).first()

        shift_str = f"#{open_shift.id} {open_shift.status}" if open_shift else "-"
        location = register.location or "-"

        click.echo(f"{register.id:<5} {register.shop_id:<6} {register.name:<25} {register.register_type:<14} "
                   f"{location:<20} {register.status:<12} {shift_str}")

    click.echo("="*100 + "\n")


@registers_group.command('create')
@click.option('--shop-id', type=int, required=True, help='Shop ID')
@click.option('--name', required=True, help='Register name (unique within the shop)')
@click.option('--type', 'register_type', default='STATIONARY', show_default=True, help='Register type')
@click.option('--location', help='Physical location')
@click.option('--no-default-methods', is_flag=True, help='Do not bind cash and card methods')
@with_appcontext
def create_register_cli(shop_id, name, register_type, location, no_default_methods):
    """Create a new register."""
    from .services.register_service import create_register

    try:
        register = create_register(
            shop_id,
            name,
            register_type=register_type,
            location=location,
            payment_methods=[] if no_default_methods else DEFAULT_METHODS,
        )
    except DomainError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Created register: {register.name} (ID: {register.id}, Shop: {register.shop_id})")


@click.group('shifts')
def shifts_group():
    """Shift inspection commands."""


@shifts_group.command('unclosed')
@click.option('--shop-id', type=int, help='Filter by shop ID')
@with_appcontext
def unclosed_shifts_cli(shop_id):
    """List shifts that are open or paused."""
    query = (
        db.session.query(Shift, CashRegister)
        .join(CashRegister, CashRegister.id == Shift.register_id)
        .filter(Shift.status != SHIFT_STATUS_CLOSED)
    )
    if shop_id:
        query = query.filter(CashRegister.shop_id == shop_id)

    rows = query.order_by(Shift.opened_at.asc()).all()

    if not rows:
        click.echo("No unclosed shifts.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'Register':<25} {'Cashier':<10} {'Status':<8} {'Opened'}")
    click.echo("="*80)
    for shift, register in rows:
        click.echo(f"{shift.id:<6} {register.name:<25} {shift.cashier_id:<10} {shift.status:<8} "
                   f"{str(shift.opened_at)[:19]}")
    click.echo("="*80 + "\n")


@click.group('ledger')
def ledger_group():
    """Payment method ledger maintenance."""


@ledger_group.command('reconcile')
@click.option('--payment-method-id', type=int, help='Only this payment method')
@click.option('--fix', is_flag=True, help='Rebuild drifted cached balances from the log')
@with_appcontext
def reconcile_cli(payment_method_id, fix):
    """
    Replay payment method logs and compare with cached balances.

    Exit code is 1 when any method is inconsistent after the run.
    """
    from .services.ledger_service import reconcile

    query = db.session.query(PaymentMethod.id).order_by(PaymentMethod.id)
    if payment_method_id:
        query = query.filter(PaymentMethod.id == payment_method_id)
    ids = [row.id for row in query.all()]

    if not ids:
        click.echo("No payment methods found.")
        return

    inconsistent = 0
    for pm_id in ids:
        report = reconcile(pm_id, fix=fix)

        if report.is_consistent:
            status = "OK"
        elif report.repaired and not report.chain_breaks and report.ledger_sum_cents == report.tail_balance_cents:
            status = "REPAIRED"
        else:
            status = "DRIFT"
            inconsistent += 1

        click.echo(
            f"{status:<9} method {pm_id:<5} entries={report.transaction_count:<6} "
            f"cached={_money(report.cached_balance_cents)} ledger={_money(report.ledger_sum_cents)}"
            + (f" chain_breaks={report.chain_breaks}" if report.chain_breaks else "")
        )

    if inconsistent:
        click.echo(f"FAIL {inconsistent} payment method(s) inconsistent")
        raise SystemExit(1)
    click.echo("PASS All payment method ledgers consistent")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(registers_group)
    app.cli.add_command(shifts_group)
    app.cli.add_command(ledger_group)
