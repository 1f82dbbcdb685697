"""
Role policy predicates and role changes.

Verifies:
- Managers move users between regular and cashier only
- Superusers may assign any role
- A suspicious regular user cannot become a cashier
- Role checks use the stored role, not the one a caller was loaded with
"""

import pytest
from sqlalchemy import update

from loyalty.errors import ForbiddenError, InvalidRequestError
from loyalty.extensions import db
from loyalty.models import User
from loyalty.permissions import policy
from loyalty.services import users_service


class TestCheckRoleChange:

    @pytest.mark.parametrize(
        "actor,current,new",
        [
            ("manager", "regular", "cashier"),
            ("manager", "cashier", "regular"),
            ("superuser", "regular", "manager"),
            ("superuser", "manager", "superuser"),
            ("superuser", "superuser", "regular"),
        ],
    )
    def test_allowed(self, actor, current, new):
        policy.check_role_change(actor, current, new, False)

    @pytest.mark.parametrize(
        "actor,current,new",
        [
            ("manager", "regular", "manager"),
            ("manager", "manager", "regular"),
            ("manager", "superuser", "cashier"),
            ("cashier", "regular", "cashier"),
            ("regular", "regular", "cashier"),
        ],
    )
    def test_forbidden(self, actor, current, new):
        with pytest.raises(ForbiddenError):
            policy.check_role_change(actor, current, new, False)

    def test_suspicious_regular_not_promoted_to_cashier(self):
        with pytest.raises(InvalidRequestError):
            policy.check_role_change("manager", "regular", "cashier", True)

    def test_unknown_role(self):
        with pytest.raises(InvalidRequestError):
            policy.check_role_change("superuser", "regular", "admin", False)


class TestEventPredicates:

    def test_organizer_manages_own_event(self):
        assert policy.can_manage_event("regular", 7, [7, 8])
        assert not policy.can_manage_event("regular", 9, [7, 8])
        assert policy.can_manage_event("manager", 9, [])

    def test_unpublished_visible_to_managers_only(self):
        assert policy.can_view_event("regular", 1, [], True)
        assert not policy.can_view_event("regular", 1, [], False)
        assert policy.can_view_event("cashier", 1, [1], False)
        assert policy.can_view_event("superuser", 1, [], False)


class TestUpdateUserRole:

    def test_manager_promotes_to_cashier(self, regular, manager):
        user = users_service.update_user_role(manager, regular.id, "cashier")
        assert user.role == "cashier"

    def test_manager_cannot_promote_to_manager(self, regular, manager):
        with pytest.raises(ForbiddenError):
            users_service.update_user_role(manager, regular.id, "manager")
        assert regular.role == "regular"

    def test_superuser_promotes_to_manager(self, regular, superuser):
        user = users_service.update_user_role(superuser, regular.id, "manager")
        assert user.role == "manager"

    def test_demoted_actor_loses_rights_immediately(self, regular, make_user):
        stale = make_user("stale001", role="manager")
        assert stale.role == "manager"

        # demote behind the loaded instance's back
        db.session.execute(
            update(User).where(User.id == stale.id).values(role="regular"),
            execution_options={"synchronize_session": False},
        )
        assert stale.role == "manager"

        with pytest.raises(ForbiddenError):
            users_service.update_user_role(stale, regular.id, "cashier")

    def test_clearing_flag_in_same_patch_does_not_promote(self, manager, make_user):
        flagged = make_user("flagged1", suspicious=True)
        with pytest.raises(InvalidRequestError):
            users_service.update_user(manager, flagged.id, {"suspicious": False, "role": "cashier"})

        db.session.refresh(flagged)
        assert flagged.role == "regular"
        assert flagged.suspicious is True

    def test_setting_flag_in_same_patch_checks_stored_state(self, regular, manager):
        user, changed = users_service.update_user(manager, regular.id, {"suspicious": True, "role": "cashier"})
        assert changed == {"suspicious", "role"}
        assert user.role == "cashier"
        assert user.suspicious is True
