# Overview: Permission system package.
# Re-exports all public APIs for backwards-compatible imports.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    TRANSACTION_PERMISSIONS,
    EVENT_PERMISSIONS,
    PROMOTION_PERMISSIONS,
    USER_PERMISSIONS,
)
from .roles import (
    DEFAULT_ROLE_PERMISSIONS,
    ROLES,
    ROLE_REGULAR,
    ROLE_CASHIER,
    ROLE_MANAGER,
    ROLE_SUPERUSER,
)
from .helpers import (
    get_all_permission_codes,
    get_permission_definition,
    get_role_permissions,
    validate_permission_code,
)
from . import policy

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "TRANSACTION_PERMISSIONS",
    "EVENT_PERMISSIONS",
    "PROMOTION_PERMISSIONS",
    "USER_PERMISSIONS",
    "DEFAULT_ROLE_PERMISSIONS",
    "ROLES",
    "ROLE_REGULAR",
    "ROLE_CASHIER",
    "ROLE_MANAGER",
    "ROLE_SUPERUSER",
    "get_all_permission_codes",
    "get_permission_definition",
    "get_role_permissions",
    "validate_permission_code",
    "policy",
]
