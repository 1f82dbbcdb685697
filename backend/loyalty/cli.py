# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/loyalty/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (local development; deployments use flask db upgrade).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create-superuser UTORID EMAIL PASSWORD [--name "Name"]
#   Create a verified superuser.
# - python -m flask users list [--role manager]
#   List users with role, points and flags.
#
# Permissions:
# - python -m flask perms list [--role cashier]
#   List permission codes, optionally only those a role holds.
# - python -m flask perms check UTORID PERMISSION_CODE
#   Check whether a user's current role grants a permission.

import click
from flask.cli import with_appcontext

from .errors import LoyaltyError
from .extensions import db
from .models import User
from .permissions import (
    ROLES,
    get_all_permission_codes,
    get_permission_definition,
    get_role_permissions,
    policy,
    validate_permission_code,
)
from .services import auth_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    from . import models  # noqa: F401

    db.create_all()
    click.echo("OK Database tables created")


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
    db.create_all()
    click.echo("OK Database reset complete")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create-superuser')
@click.argument('utorid')
@click.argument('email')
@click.argument('password')
@click.option('--name', default=None, help='Display name (defaults to the utorid)')
@with_appcontext
def create_superuser(utorid, email, password, name):
    """Create a verified superuser account."""
    try:
        user = auth_service.create_superuser(utorid, email, password, name=name)
    except LoyaltyError as e:
        raise click.ClickException(e.message)
    click.echo(f"OK Created superuser {user.utorid} (id={user.id})")


@users_group.command('list')
@click.option('--role', type=click.Choice(ROLES), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their roles and balances."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)
    users = query.order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'UTORid':<10} {'Role':<10} {'Points':>8} {'Verified':<9} {'Suspicious':<10} {'Email'}")
    click.echo("=" * 80)
    for user in users:
        click.echo(
            f"{user.id:<5} {user.utorid:<10} {user.role:<10} {user.points:>8} "
            f"{'Yes' if user.verified else 'No':<9} {'Yes' if user.suspicious else 'No':<10} {user.email}"
        )
    click.echo(f"\nTotal: {len(users)} users")


@click.group('perms')
def perms_group():
    """Permission inspection commands."""


@perms_group.command('list')
@click.option('--role', type=click.Choice(ROLES), help='Only permissions this role holds')
def list_permissions_cli(role):
    """List permissions grouped by category."""
    codes = get_all_permission_codes()
    if role:
        granted = get_role_permissions(role)
        codes = [c for c in codes if c in granted]
        click.echo(f"\nPermissions for role: {role.upper()}")

    perms = sorted((get_permission_definition(c) for c in codes), key=lambda p: (p["category"], p["code"]))
    current_category = None
    for perm in perms:
        if perm["category"] != current_category:
            click.echo(f"\nCATEGORY {perm['category']}")
            click.echo("-" * 80)
            current_category = perm["category"]
        click.echo(f"  {perm['code']:<28} {perm['name']}")

    click.echo(f"\n Total: {len(perms)} permissions\n")


@perms_group.command('check')
@click.argument('utorid')
@click.argument('permission_code')
@with_appcontext
def check_permission_cli(utorid, permission_code):
    """Check whether UTORID's current role grants PERMISSION_CODE."""
    if not validate_permission_code(permission_code):
        raise click.ClickException(f"Unknown permission code: {permission_code}")

    user = db.session.query(User).filter_by(utorid=utorid).first()
    if not user:
        raise click.ClickException(f"User {utorid} not found")

    if policy.has_permission(user.role, permission_code):
        click.echo(f"OK {utorid} ({user.role}) has {permission_code}")
    else:
        click.echo(f"DENIED {utorid} ({user.role}) lacks {permission_code}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
