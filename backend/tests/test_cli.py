"""
CLI commands and the static permission catalogue.
"""

from loyalty.extensions import db
from loyalty.models import User
from loyalty.permissions import DEFAULT_ROLE_PERMISSIONS, validate_permission_code


def test_every_granted_code_is_defined():
    for role, codes in DEFAULT_ROLE_PERMISSIONS.items():
        for code in codes:
            assert validate_permission_code(code), f"{role} grants unknown {code}"


def test_create_superuser(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        "users", "create-superuser", "rootusr1", "rootusr1@mail.utoronto.ca", "Sup3rUser!",
    ])
    assert result.exit_code == 0, result.output
    assert "OK Created superuser rootusr1" in result.output

    user = db.session.query(User).filter_by(utorid="rootusr1").one()
    assert user.role == "superuser"
    assert user.verified is True


def test_create_superuser_weak_password(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        "users", "create-superuser", "rootusr1", "rootusr1@mail.utoronto.ca", "weak",
    ])
    assert result.exit_code != 0
    assert db.session.query(User).filter_by(utorid="rootusr1").first() is None


def test_list_users(app, regular, cashier):
    result = app.test_cli_runner().invoke(args=["users", "list", "--role", "cashier"])
    assert result.exit_code == 0
    assert cashier.utorid in result.output
    assert regular.utorid not in result.output


def test_list_permissions_for_role(app):
    result = app.test_cli_runner().invoke(args=["perms", "list", "--role", "regular"])
    assert result.exit_code == 0
    assert "RSVP_EVENTS" in result.output
    assert "CREATE_PURCHASE" not in result.output
    assert "Total: 5 permissions" in result.output


def test_check_permission(app, regular, cashier):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["perms", "check", cashier.utorid, "CREATE_PURCHASE"])
    assert result.output.startswith("OK")

    result = runner.invoke(args=["perms", "check", regular.utorid, "CREATE_PURCHASE"])
    assert result.output.startswith("DENIED")

    result = runner.invoke(args=["perms", "check", regular.utorid, "NOT_A_CODE"])
    assert result.exit_code != 0
