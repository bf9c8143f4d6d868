# Overview: Flask CLI command groups for bootstrap, order expiry, webhook replay and notifications.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-admin --email admin@store.local
#   Create (or report) the admin account. Prompts for the password.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Orders:
# - python -m flask orders expire-unpaid [--hours 72]
#   Cancel unpaid orders older than N hours and release their stock.
#
# Payments:
# - python -m flask payments replay-webhook 42
#   Re-run a stored webhook event (safe: reconciliation is idempotent).
# - python -m flask payments failed-webhooks
#   List webhook events whose processing failed.
#
# Notifications:
# - python -m flask notifications deliver [--limit 100]
#   Drain the notification outbox.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions --retention-days 30

import click
from flask.cli import with_appcontext

from .errors import AppError
from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN
from .models.payments import WEBHOOK_FAILED
from .services.auth_service import create_user, PasswordValidationError
from .services import maintenance_service
from .services import notification_service
from .services import payment_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-admin')
@click.option('--email', prompt=True, help='Admin email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--first-name', default='Store', show_default=True)
@click.option('--last-name', default='Admin', show_default=True)
@with_appcontext
def init_admin(email, password, first_name, last_name):
    """
    Create the admin account.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    existing = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if existing:
        click.echo(f"WARN  User '{existing.email}' already exists (role: {existing.role}), skipping...")
        return

    try:
        user = create_user(
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            role=ROLE_ADMIN,
        )
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e.message}")
        return
    except AppError as e:
        click.echo(f"FAIL Could not create admin: {e.message}")
        return

    click.echo(f"PASS Created admin: {user.email} (ID: {user.id})")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init-admin' to create an admin.")


# =============================================================================
# ORDERS
# =============================================================================

@click.group('orders')
def orders_group():
    """Order maintenance commands."""


@orders_group.command('expire-unpaid')
@click.option('--hours', type=int, default=None, help='Age threshold (default: UNPAID_ORDER_EXPIRY_HOURS)')
@with_appcontext
def expire_unpaid(hours):
    """Cancel stale unpaid orders and release their stock."""
    result = maintenance_service.expire_unpaid_orders(hours=hours)
    for number in result["expired"]:
        click.echo(f"PASS Expired {number}")
    for order_id in result["skipped"]:
        click.echo(f"WARN  Skipped order ID {order_id}")
    click.echo(f"Expired {len(result['expired'])} orders, skipped {len(result['skipped'])}.")


# =============================================================================
# PAYMENTS
# =============================================================================

@click.group('payments')
def payments_group():
    """Payment reconciliation commands."""


@payments_group.command('replay-webhook')
@click.argument('event_id', type=int)
@with_appcontext
def replay_webhook(event_id):
    """Re-run a stored webhook event."""
    try:
        event = payment_service.replay_webhook_event(event_id)
    except AppError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(f"Event {event.id} ({event.event}, {event.reference}): {event.status}")
    if event.error:
        click.echo(f"  {event.error}")


@payments_group.command('failed-webhooks')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def failed_webhooks(limit):
    """List webhook events whose processing failed."""
    events = payment_service.list_webhook_events(status=WEBHOOK_FAILED, limit=limit)
    if not events:
        click.echo("No failed webhook events.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'Event':<16} {'Reference':<36} {'Tries':<6} {'Error'}")
    click.echo("="*80)
    for event in events:
        click.echo(f"{event.id:<6} {event.event or '-':<16} {event.reference or '-':<36} {event.attempts:<6} {event.error or ''}")
    click.echo("="*80 + "\n")


# =============================================================================
# NOTIFICATIONS
# =============================================================================

@click.group('notifications')
def notifications_group():
    """Notification outbox commands."""


@notifications_group.command('deliver')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def deliver_notifications(limit):
    """Deliver queued notifications."""
    result = notification_service.deliver_pending(limit=limit)
    click.echo(f"Delivered {result['sent']} notifications.")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(retention_days):
    deleted = maintenance_service.cleanup_sessions(retention_days=retention_days)
    click.echo(f"Deleted {deleted} sessions expired more than {retention_days} days ago.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(payments_group)
    app.cli.add_command(notifications_group)
    app.cli.add_command(maintenance_group)
