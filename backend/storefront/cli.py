# Overview: Flask CLI command groups for bootstrap, loyalty maintenance, and pickup reminders.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-email admin@lentillife.local]
#   Idempotent bootstrap: tables, default schedule, default pickup slots, points rules, admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create-admin --email ops@lentillife.local --first-name Ops --last-name Team
#   Create a staff account (prompts for the password).
#
# Loyalty points:
# - python -m flask points expire
#   Expire earned points older than the configured expiry window.
# - python -m flask points audit
#   Compare every cached balance with the sum of its transaction log.
#
# Orders:
# - python -m flask orders remind --date 2024-06-01
#   Email pickup reminders for every open order on that date.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions
#   Delete expired and revoked session tokens older than 30 days.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services.auth_service import create_user, PasswordValidationError
from .services import points_service, time_slot_service, order_service, session_service
from .time_utils import parse_iso_date, utcnow
from .validation import ValidationError, ConflictError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-email', default='admin@lentillife.local', help='Admin login email')
@click.option('--admin-password', default='Password123', help='Admin password')
@with_appcontext
def init_system(admin_email, admin_password):
    """
    Initialize the storefront: schema, pickup schedule, points rules and an admin user.

    Safe to re-run; existing rows are left alone.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing storefront...")

    db.create_all()
    click.echo("PASS Tables ready")

    config = time_slot_service.get_config()
    click.echo(f"PASS Pickup days: {', '.join(config.available_days)}")

    created = time_slot_service.ensure_default_slots()
    if created:
        click.echo(f"PASS Created {created} default pickup slots")
    else:
        click.echo("PASS Using existing pickup slots")

    rules = points_service.get_points_config()
    if points_service._active_config_row() is None:
        rules = points_service.update_points_config({})
        click.echo(f"PASS Saved default points rules ({rules.points_per_dollar} per dollar)")
    else:
        click.echo(f"PASS Using existing points rules ({rules.points_per_dollar} per dollar)")

    existing = db.session.query(User).filter_by(email=admin_email.strip().lower()).first()
    if existing:
        click.echo(f"PASS Admin exists: {existing.email}")
    else:
        try:
            admin = create_user(admin_email, admin_password, "Store", "Admin", is_admin=True)
        except (ValidationError, ConflictError) as e:
            click.echo(f"FAIL Could not create admin: {e}")
            return
        click.echo(f"PASS Created admin: {admin.email}")

    click.echo("\nPASS Storefront initialized")


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


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create-admin')
@click.option('--email', prompt=True, help='Email address')
@click.option('--first-name', prompt=True, help='First name')
@click.option('--last-name', prompt=True, help='Last name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_admin_cli(email, first_name, last_name, password):
    """
    Create a staff account.

    Password must be at least 8 characters with a letter and a digit.
    """
    try:
        user = create_user(email, password, first_name, last_name, is_admin=True)
        click.echo(f"PASS Created admin {user.email} (ID: {user.id})")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
    except ConflictError as e:
        click.echo(f"FAIL {e}")
    except ValidationError as e:
        click.echo(f"FAIL {e}")


@click.group('points')
def points_group():
    """Loyalty points maintenance."""


@points_group.command('expire')
@with_appcontext
def expire_points_cli():
    """Write expiry entries for earned points past their expiry date."""
    count = points_service.expire_points(now=utcnow())
    click.echo(f"PASS Wrote {count} expiry transaction(s)")


@points_group.command('audit')
@with_appcontext
def audit_points_cli():
    """Verify cached balances against the transaction log. Exits 1 on mismatch."""
    mismatches = points_service.audit_balances()
    if not mismatches:
        click.echo("PASS All balances match their transaction logs")
        return

    for m in mismatches:
        click.echo(
            f"FAIL user {m['user_id']}: cached {m['cached_balance']} != log {m['ledger_balance']}"
        )
    raise SystemExit(1)


@click.group('orders')
def orders_group():
    """Order maintenance commands."""


@orders_group.command('remind')
@click.option('--date', 'pickup_date', required=True, help='Pickup date (YYYY-MM-DD)')
@with_appcontext
def remind_orders_cli(pickup_date):
    """Email pickup reminders for every open order on the given date."""
    try:
        on_date = parse_iso_date(pickup_date)
    except ValueError:
        click.echo("FAIL --date must be YYYY-MM-DD")
        return

    sent, failed = order_service.send_reminders_for_date(on_date)
    click.echo(f"PASS Sent {sent} reminder(s), {failed} failed")


@click.group('maintenance')
def maintenance_group():
    """Housekeeping commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Delete expired and revoked session tokens older than 30 days."""
    count = session_service.cleanup_expired_sessions()
    click.echo(f"PASS Removed {count} session(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(points_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(maintenance_group)
