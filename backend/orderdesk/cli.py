# Overview: Flask CLI command groups for bootstrap and the scheduled order jobs.

# backend/orderdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Scheduled jobs (cron every minute unless noted):
# - python -m flask orders sweep-expired
#   Cancel gateway orders left unpaid past the payment window and return their stock.
# - python -m flask payments check-pending [--max-age-hours 24]
#   Ask the gateway about pending orders whose webhook never arrived (every 5 minutes).
# - python -m flask queue purge-counters
#   Delete queue counters for past days (daily, after midnight store time).
# - python -m flask discounts deactivate-expired
#   Switch off discounts past their valid_until (daily).
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (development; use flask db upgrade in production).
# - python -m flask system seed-settings
#   Insert default tax and store-hours settings without touching existing values.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services import expiry_service, reconciliation_service, queue_service, discount_service, settings_service
from .services import order_service
from .time_utils import store_today


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('seed-settings')
@with_appcontext
def seed_settings():
    created = settings_service.seed_defaults()
    click.echo(f"PASS {created} default settings created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-settings' next.")


@click.group('orders')
def orders_group():
    """Order lifecycle jobs."""


@orders_group.command('sweep-expired')
@with_appcontext
def sweep_expired():
    """Cancel unpaid gateway orders past the payment window."""
    report = expiry_service.sweep()
    click.echo(
        f"Examined {report.examined}, cancelled {report.cancelled}, "
        f"skipped {report.skipped}, failed {report.failed}."
    )
    if report.failed:
        raise SystemExit(1)


@orders_group.command('review')
@with_appcontext
def list_review():
    """List orders flagged for manual review."""
    orders = order_service.list_orders_for_review()
    if not orders:
        click.echo("No orders need review.")
        return
    for order in orders:
        click.echo(f"{order.order_code:<10} {order.payment_status:<10} {order.status:<22} {order.review_reason}")


@click.group('payments')
def payments_group():
    """Payment reconciliation jobs."""


@payments_group.command('check-pending')
@click.option('--max-age-hours', type=int, default=None, help='Only orders younger than this (default from config)')
@with_appcontext
def check_pending(max_age_hours):
    summary = reconciliation_service.check_pending_payments(max_age_hours=max_age_hours)
    click.echo(f"Checked {summary['checked']}, updated {summary['updated']}, failed {summary['failed']}.")


@click.group('queue')
def queue_group():
    """Queue number housekeeping."""


@queue_group.command('purge-counters')
@with_appcontext
def purge_counters():
    today = store_today(current_app.config["STORE_TIMEZONE"])
    deleted = queue_service.purge_past_counters(today)
    click.echo(f"Deleted {deleted} queue counters before {today.isoformat()}.")


@click.group('discounts')
def discounts_group():
    """Discount maintenance."""


@discounts_group.command('deactivate-expired')
@with_appcontext
def deactivate_expired():
    count = discount_service.deactivate_expired()
    click.echo(f"Deactivated {count} expired discounts.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(payments_group)
    app.cli.add_command(queue_group)
    app.cli.add_command(discounts_group)
