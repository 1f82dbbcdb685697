# Overview: Access-policy predicates over (actor role, actor id, resource state).

"""
Pure functions, no database access and no request globals.

Callers pass the actor's role as just re-read from the store; nothing here
remembers a role between calls. Predicates named can_* / is_* return bool,
require_* / check_* raise ForbiddenError or InvalidRequestError.
"""

from __future__ import annotations

from ..errors import ForbiddenError, InvalidRequestError
from .helpers import get_role_permissions
from .roles import (
    ASSIGNABLE_ROLES,
    PRIVILEGED_ROLES,
    ROLE_CASHIER,
    ROLE_REGULAR,
    ROLES,
)


def has_permission(role: str, permission_code: str) -> bool:
    return permission_code in get_role_permissions(role)


def require_permission(role: str, permission_code: str) -> None:
    if not has_permission(role, permission_code):
        raise ForbiddenError(
            "Permission denied",
            details={"required_permission": permission_code},
        )


def is_privileged(role: str) -> bool:
    """Manager or superuser."""
    return role in PRIVILEGED_ROLES


def can_manage_event(role: str, actor_id: int, organizer_ids) -> bool:
    """Organizers manage their own event; managers manage every event."""
    return is_privileged(role) or actor_id in set(organizer_ids)


def require_event_manager(role: str, actor_id: int, organizer_ids) -> None:
    if not can_manage_event(role, actor_id, organizer_ids):
        raise ForbiddenError("Only organizers or managers may do this")


def can_view_event(role: str, actor_id: int, organizer_ids, published: bool) -> bool:
    return published or can_manage_event(role, actor_id, organizer_ids)


def check_role_change(
    actor_role: str,
    target_current_role: str,
    new_role: str,
    target_suspicious: bool,
) -> None:
    """
    Gate a role change.

    - managers move users between regular and cashier only, and may not
      touch a user who is already a manager or superuser
    - superusers may move anyone to any role
    - a regular user flagged suspicious may not become a cashier
    """
    if new_role not in ROLES:
        raise InvalidRequestError(f"Unknown role: {new_role}")

    assignable = ASSIGNABLE_ROLES.get(actor_role, frozenset())
    if new_role not in assignable or target_current_role not in assignable:
        raise ForbiddenError(f"{actor_role} may not change a {target_current_role} to {new_role}")

    if target_current_role == ROLE_REGULAR and target_suspicious and new_role == ROLE_CASHIER:
        raise InvalidRequestError("A suspicious user cannot be promoted to cashier")
