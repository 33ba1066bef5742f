# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/pharmapos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--branch "Main Branch"]
#   Idempotent bootstrap: creates a default branch and one user per role.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory inspection:
# - python -m flask inventory expiry-alerts --branch-id 1
#   Print every batch with stock, classified expired/critical/warning/safe.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, User
from .models.auth import ROLES
from .services.auth_service import create_user, PasswordValidationError
from .services.inventory_service import get_expiry_alerts

DEFAULT_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--branch', 'branch_name', default='Main Branch', help='Default branch name')
@click.option('--branch-code', default='MAIN', help='Default branch code')
@with_appcontext
def init_system(branch_name, branch_code):
    """
    Initialize a default branch and one user per role.

    Users: admin, pharmacist, cashier, accountant.
    All passwords default to: "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing pharmacy system...")

    branch = db.session.query(Branch).filter_by(code=branch_code).first()
    if not branch:
        branch = Branch(name=branch_name, code=branch_code, is_active=True)
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}, Code: {branch.code})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    for role in ROLES:
        username = role.lower()
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"SKIP User {username} already exists")
            continue
        try:
            create_user(
                username=username,
                name=role.title(),
                password=DEFAULT_PASSWORD,
                role=role,
                branch_id=branch.id,
                email=f"{username}@pharmapos.local",
            )
        except PasswordValidationError as e:
            click.echo(f"FAIL {username}: {e.message}")
            continue
        click.echo(f"PASS Created user {username} ({role})")

    click.echo("DONE System initialized.")


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
    """Inventory inspection commands."""


@inventory_group.command('expiry-alerts')
@click.option('--branch-id', type=int, required=True, help='Branch ID')
@with_appcontext
def expiry_alerts(branch_id):
    """Print batch expiry classification for a branch."""
    if not db.session.get(Branch, branch_id):
        click.echo(f"FAIL Branch {branch_id} not found")
        raise SystemExit(1)

    result = get_expiry_alerts(branch_id)
    summary = result["summary"]
    click.echo(
        f"Expired: {summary['expired']}  Critical: {summary['critical']}  "
        f"Warning: {summary['warning']}  Safe: {summary['safe']}"
    )
    for alert in result["alerts"]:
        click.echo(
            f"  [{alert['status'].upper():8}] {alert['product_name']} "
            f"batch {alert['batch_number']} qty {alert['quantity']} "
            f"expires {alert['expiry_date']} ({alert['days_to_expiry']}d)"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
