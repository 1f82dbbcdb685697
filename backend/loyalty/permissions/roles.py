# Overview: Role constants and the promotion/demotion hierarchy.

ROLE_REGULAR = "regular"
ROLE_CASHIER = "cashier"
ROLE_MANAGER = "manager"
ROLE_SUPERUSER = "superuser"

# Ordered lowest to highest
ROLES = (ROLE_REGULAR, ROLE_CASHIER, ROLE_MANAGER, ROLE_SUPERUSER)

PRIVILEGED_ROLES = frozenset({ROLE_MANAGER, ROLE_SUPERUSER})

# Roles each actor role may assign to (and move a target away from)
ASSIGNABLE_ROLES = {
    ROLE_REGULAR: frozenset(),
    ROLE_CASHIER: frozenset(),
    ROLE_MANAGER: frozenset({ROLE_REGULAR, ROLE_CASHIER}),
    ROLE_SUPERUSER: frozenset(ROLES),
}


_REGULAR_PERMISSIONS = frozenset({
    "TRANSFER_POINTS",
    "REQUEST_REDEMPTION",
    "VIEW_EVENTS",
    "RSVP_EVENTS",
    "VIEW_PROMOTIONS",
})

_CASHIER_PERMISSIONS = _REGULAR_PERMISSIONS | {
    "CREATE_PURCHASE",
    "PROCESS_REDEMPTION",
    "REGISTER_USERS",
    "LOOKUP_USERS",
}

_MANAGER_PERMISSIONS = _CASHIER_PERMISSIONS | {
    "CREATE_ADJUSTMENT",
    "VIEW_TRANSACTIONS",
    "FLAG_TRANSACTIONS",
    "MANAGE_EVENTS",
    "MANAGE_PROMOTIONS",
    "MANAGE_USERS",
}

# Superusers hold everything managers do; what differs is ASSIGNABLE_ROLES
DEFAULT_ROLE_PERMISSIONS = {
    ROLE_REGULAR: _REGULAR_PERMISSIONS,
    ROLE_CASHIER: _CASHIER_PERMISSIONS,
    ROLE_MANAGER: _MANAGER_PERMISSIONS,
    ROLE_SUPERUSER: _MANAGER_PERMISSIONS,
}
