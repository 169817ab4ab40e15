# Overview: Flask CLI command groups for bootstrap, user management, and payment maintenance.

# backend/rentals/cli.py
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
# Users:
# - python -m flask users create --name "Sara" --email sara@example.com --role employee
# - python -m flask users list
# - python -m flask users issue-token --email sara@example.com [--ttl-hours 8]
#   Print a bearer token for API access.
#
# Payments:
# - python -m flask payments reconcile [--reservation-id 12]
#   Recompute remaining balance and payment status (one reservation or all).

import click
from flask.cli import with_appcontext

from .errors import RentalsError
from .extensions import db
from .models import User
from .services import payment_service, session_service
from .services.approval_gate import Role


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


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--role', type=click.Choice([r.value for r in Role]), prompt=True, help='Role')
@with_appcontext
def create_user_cli(name, email, role):
    """Create a staff user."""
    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).first():
        click.echo(f"FAIL User '{email}' already exists")
        return

    user = User(name=name.strip(), email=email, role=role, is_active=True)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<20} {'Email':<30} {'Active':<8} {'Role'}")
    click.echo("="*80)
    for user in users:
        click.echo(f"{user.id:<5} {user.name:<20} {user.email:<30} {str(user.is_active):<8} {user.role}")
    click.echo("="*80 + "\n")


@users_group.command('issue-token')
@click.option('--email', required=True, help='User email')
@click.option('--ttl-hours', type=int, default=None, help='Token lifetime (defaults to SESSION_TTL_HOURS)')
@with_appcontext
def issue_token(email, ttl_hours):
    """Issue a bearer token for a user."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        raise click.ClickException(f"User '{email}' not found")
    try:
        session, token = session_service.create_session(user.id, ttl_hours=ttl_hours)
    except ValueError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"PASS Token for {user.email} (expires {session.expires_at.isoformat()}Z):")
    click.echo(token)


@click.group('payments')
def payments_group():
    """Payment maintenance commands."""


@payments_group.command('reconcile')
@click.option('--reservation-id', type=int, default=None, help='Reconcile a single reservation')
@with_appcontext
def reconcile_payments(reservation_id):
    """Recompute reservation balances from their payments."""
    if reservation_id is not None:
        try:
            result = payment_service.reconcile_reservation_payments(reservation_id)
        except RentalsError as exc:
            raise click.ClickException(exc.message)
        click.echo(
            f"PASS Reservation {reservation_id}: paid {result.total_paid:.2f}, "
            f"remaining {result.remaining_balance:.2f}, status {result.payment_status}"
        )
        return

    summary = payment_service.reconcile_all_reservations()
    for warning in summary["warnings"]:
        click.echo(f"WARN {warning}")
    click.echo(f"PASS Reconciled {summary['reconciled']} reservation(s), {summary['failed']} failed.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(payments_group)
