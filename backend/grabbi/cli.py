# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables on an empty database (use `flask db upgrade` for managed schemas).
# - python -m flask system order-transitions
#   Print the order status adjacency.
# - python -m flask system cleanup-sessions --older-than-days 30
#   Delete expired or revoked session tokens.
#
# Users:
# - python -m flask users create-admin --email admin@grabbi.local --password "Password123!"
# - python -m flask users list [--role customer]
#
# Catalog:
# - python -m flask catalog seed-categories
#   Create the default category tree (idempotent).
# - python -m flask catalog export --out products.json
#   Write live products as batch import rows.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN, ROLES
from .services import auth_service, category_service, order_status, product_service, session_service
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap and maintenance commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('order-transitions')
def show_transitions():
    """Print which status each order status may move to."""
    for status, targets in order_status.transitions_map().items():
        click.echo(f"{status:<18} -> {', '.join(targets) if targets else '(terminal)'}")


@system_group.command('cleanup-sessions')
@click.option('--older-than-days', default=30, show_default=True, type=int)
@with_appcontext
def cleanup_sessions(older_than_days):
    deleted = session_service.cleanup_expired_sessions(older_than_days)
    click.echo(f"PASS Deleted {deleted} expired or revoked session tokens")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create-admin')
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--name', default=None)
@with_appcontext
def create_admin(email, password, name):
    """Create an admin account."""
    try:
        user = auth_service.create_user(email, password, name=name, role=ROLE_ADMIN)
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created admin {user.email} (ID: {user.id})")


@users_group.command('list')
@click.option('--role', type=click.Choice(ROLES), default=None, help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their role and blocked state."""
    query = db.session.query(User).filter(User.deleted_at.is_(None))
    if role:
        query = query.filter(User.role == role)
    users = query.order_by(User.email).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<38} {'Email':<32} {'Role':<16} {'Blocked':<8} {'Points'}")
    click.echo("="*100)
    for user in users:
        blocked = "Yes" if user.is_blocked else "No"
        click.echo(f"{str(user.id):<38} {user.email:<32} {user.role:<16} {blocked:<8} {user.loyalty_points}")
    click.echo("")


@click.group('catalog')
def catalog_group():
    """Catalog bootstrap and export commands."""


@catalog_group.command('seed-categories')
@with_appcontext
def seed_categories():
    created = category_service.seed_default_categories()
    click.echo(f"PASS Created {created} categories and subcategories")


@catalog_group.command('export')
@click.option('--out', 'out_path', required=True, type=click.Path(dir_okay=False, writable=True))
@with_appcontext
def export_catalog(out_path):
    """Write live products as JSON rows accepted by POST /api/admin/products/batch."""
    rows = product_service.export_rows()
    with open(out_path, "w", encoding="utf-8") as fh:
        json.dump({"products": rows}, fh, indent=2)
    click.echo(f"PASS Exported {len(rows)} products to {out_path}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
