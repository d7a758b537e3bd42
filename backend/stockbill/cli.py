# Overview: Flask CLI command groups for bootstrap, inspection, and reporting.

# backend/stockbill/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent). Use `flask db upgrade` for migrations.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with product and invoice counts.
# - python -m flask users create --name "Shop Owner" --email owner@example.com --password "Password123"
#   Create a user (prompts if options are omitted).
#
# Reporting:
# - python -m flask sales summary --email owner@example.com [--start 2026-01-01 --end 2026-01-31]
#   Print the sales summary for one user.

import click
from flask.cli import with_appcontext
from sqlalchemy import func

from .extensions import db
from .models import Invoice, Product, User
from .services.auth_service import PasswordValidationError, create_user, normalize_email
from .services.sales_service import sales_summary
from .validation import ConflictError, ValidationError


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

    click.echo("PASS Database reset complete. Run 'python -m flask users create' to add an account.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address (login identifier)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_user_cli(name, email, password):
    """
    Create a new user.

    Password must be at least 8 characters.
    """
    try:
        user = create_user(name=name, email=email, password=password)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        raise SystemExit(1)
    except ConflictError as e:
        db.session.rollback()
        click.echo(f"FAIL {str(e)}")
        raise SystemExit(1)

    click.echo(f"PASS Created user: {user.name} ({user.email}) ID: {user.id}")
    click.echo("SECURITY Password securely hashed with bcrypt")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their product and invoice counts."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    product_counts = dict(
        db.session.query(Product.owner_id, func.count(Product.id)).group_by(Product.owner_id).all()
    )
    invoice_counts = dict(
        db.session.query(Invoice.owner_id, func.count(Invoice.id)).group_by(Invoice.owner_id).all()
    )

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<20} {'Email':<35} {'Active':<8} {'Products':<9} {'Invoices'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(
            f"{user.id:<5} {user.name[:20]:<20} {user.email[:35]:<35} {active_str:<8} "
            f"{product_counts.get(user.id, 0):<9} {invoice_counts.get(user.id, 0)}"
        )

    click.echo("="*90 + "\n")


@click.group('sales')
def sales_group():
    """Sales reporting commands."""


@sales_group.command('summary')
@click.option('--email', required=True, help='Owner email address')
@click.option('--start', 'start_date', default=None, help='Start date (YYYY-MM-DD)')
@click.option('--end', 'end_date', default=None, help='End date (YYYY-MM-DD, inclusive)')
@with_appcontext
def sales_summary_cli(email, start_date, end_date):
    """Print the sales summary for one user."""
    user = db.session.query(User).filter_by(email=normalize_email(email)).first()
    if not user:
        click.echo(f"FAIL User '{email}' not found")
        raise SystemExit(1)

    try:
        summary = sales_summary(user.id, start_date=start_date, end_date=end_date)
    except ValidationError as e:
        click.echo(f"FAIL {str(e)}")
        raise SystemExit(1)

    click.echo(f"\nSales summary for {user.email}")
    click.echo("-"*40)
    for key, value in summary.items():
        click.echo(f"{key:<22} {value if value is not None else '-'}")
    click.echo("")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(sales_group)
