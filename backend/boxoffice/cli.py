# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/boxoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent: create tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Operator bootstrap/inspection:
# - python -m flask operators create-super-admin --name "Choir Admin" --email admin@choir.rw
#   Create the first super admin (prompts for the password).
# - python -m flask operators list
#   List operators with role and active status.
#
# Maintenance (schedule these):
# - python -m flask maintenance sweep-orders
#   Cancel pending orders past their reservation window and release their tickets.
# - python -m flask maintenance cleanup-sessions --older-than-days 30
#   Delete expired or revoked sessions.
# - python -m flask maintenance cleanup-audit-log --retention-days 90
#   Delete audit entries older than the retention window.

import click
from flask.cli import with_appcontext

from .errors import TicketingError
from .extensions import db
from .models import AdminOperator
from .models.auth import ROLE_SUPER_ADMIN
from .services import maintenance_service, operator_service, order_service, session_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create any missing tables. Safe to run repeatedly."""
    db.create_all()
    click.echo("PASS Schema ready. Next: python -m flask operators create-super-admin")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including orders and issued tickets!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask operators create-super-admin' next.")


# =============================================================================
# OPERATOR COMMANDS
# =============================================================================

@click.group('operators')
def operators_group():
    """Operator inspection and bootstrap commands."""


@operators_group.command('create-super-admin')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address (login)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_super_admin(name, email, password):
    """Create a super admin without an existing session (bootstrap)."""
    try:
        operator = operator_service.create_operator(
            {"name": name, "email": email, "password": password, "role": ROLE_SUPER_ADMIN},
            actor=None,
        )
    except TicketingError as e:
        click.echo(f"FAIL {e.message}")
        for problem in e.details.get("problems", []):
            click.echo(f"  - {problem}")
        raise SystemExit(1)

    click.echo(f"PASS Created super admin {operator.email} (ID: {operator.id})")


@operators_group.command('list')
@with_appcontext
def list_operators():
    """List all operators."""
    operators = db.session.query(AdminOperator).order_by(AdminOperator.id).all()

    if not operators:
        click.echo("No operators found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<32} {'Role':<13} {'Active':<8} {'Last login'}")
    click.echo("="*90)

    for op in operators:
        active_str = "Yes" if op.is_active else "No"
        last_login = op.last_login_at.strftime("%Y-%m-%d %H:%M") if op.last_login_at else "-"
        click.echo(f"{op.id:<5} {op.name[:24]:<25} {op.email[:31]:<32} {op.role:<13} {active_str:<8} {last_login}")

    click.echo("="*90 + "\n")


# =============================================================================
# MAINTENANCE COMMANDS
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('sweep-orders')
@with_appcontext
def sweep_orders_cli():
    """Cancel pending orders past their reservation window."""
    cancelled = order_service.sweep_expired_orders()
    click.echo(f"Cancelled {len(cancelled)} expired pending order(s).")


@maintenance_group.command('cleanup-sessions')
@click.option('--older-than-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(older_than_days):
    """Delete expired or revoked operator sessions."""
    deleted = session_service.cleanup_expired_sessions(older_than_days=older_than_days)
    click.echo(f"Deleted {deleted} expired or revoked session(s).")


@maintenance_group.command('cleanup-audit-log')
@click.option('--retention-days', type=int, default=None, help='Defaults to AUDIT_RETENTION_DAYS (90)')
@with_appcontext
def cleanup_audit_log_cli(retention_days):
    """
    Cleanup old audit entries.

    Default retention: 90 days.
    """
    deleted = maintenance_service.cleanup_audit_log(retention_days=retention_days)
    click.echo(f"Deleted {deleted} audit entries.")


@maintenance_group.command('housekeeping')
@with_appcontext
def housekeeping_cli():
    """Run every maintenance task once."""
    result = maintenance_service.run_housekeeping()
    for key, value in result.items():
        click.echo(f"{key}: {value}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(operators_group)
    app.cli.add_command(maintenance_group)
