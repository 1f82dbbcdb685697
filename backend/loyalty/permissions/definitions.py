# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- TRANSACTIONS --

TRANSACTION_PERMISSIONS = [
    (
        "CREATE_PURCHASE",
        "Create Purchase",
        "Ring up a purchase and credit the customer's points",
        PermissionCategory.TRANSACTIONS,
    ),
    (
        "CREATE_ADJUSTMENT",
        "Create Adjustment",
        "Credit or debit a user's points against an existing transaction",
        PermissionCategory.TRANSACTIONS,
    ),
    (
        "PROCESS_REDEMPTION",
        "Process Redemption",
        "Finalize a pending redemption request",
        PermissionCategory.TRANSACTIONS,
    ),
    (
        "VIEW_TRANSACTIONS",
        "View Transactions",
        "List and inspect every user's transactions",
        PermissionCategory.TRANSACTIONS,
    ),
    (
        "FLAG_TRANSACTIONS",
        "Flag Transactions",
        "Mark transactions suspicious (reverses their points)",
        PermissionCategory.TRANSACTIONS,
    ),
    (
        "TRANSFER_POINTS",
        "Transfer Points",
        "Send points to another user",
        PermissionCategory.TRANSACTIONS,
    ),
    (
        "REQUEST_REDEMPTION",
        "Request Redemption",
        "Ask a cashier to redeem points",
        PermissionCategory.TRANSACTIONS,
    ),
]


# -- EVENTS --

EVENT_PERMISSIONS = [
    (
        "VIEW_EVENTS",
        "View Events",
        "Browse published events",
        PermissionCategory.EVENTS,
    ),
    (
        "RSVP_EVENTS",
        "RSVP to Events",
        "Add or remove yourself as an event guest",
        PermissionCategory.EVENTS,
    ),
    (
        "MANAGE_EVENTS",
        "Manage Events",
        "Create, edit, publish and delete any event; manage organizers and guests",
        PermissionCategory.EVENTS,
    ),
]


# -- PROMOTIONS --

PROMOTION_PERMISSIONS = [
    (
        "VIEW_PROMOTIONS",
        "View Promotions",
        "Browse currently available promotions",
        PermissionCategory.PROMOTIONS,
    ),
    (
        "MANAGE_PROMOTIONS",
        "Manage Promotions",
        "Create, edit and delete promotions",
        PermissionCategory.PROMOTIONS,
    ),
]


# -- USERS --

USER_PERMISSIONS = [
    (
        "REGISTER_USERS",
        "Register Users",
        "Create accounts for new users",
        PermissionCategory.USERS,
    ),
    (
        "LOOKUP_USERS",
        "Look Up Users",
        "View a user's balance and available promotions at the till",
        PermissionCategory.USERS,
    ),
    (
        "MANAGE_USERS",
        "Manage Users",
        "List users; verify, flag, re-email and change roles",
        PermissionCategory.USERS,
    ),
]


PERMISSION_DEFINITIONS = (
    TRANSACTION_PERMISSIONS
    + EVENT_PERMISSIONS
    + PROMOTION_PERMISSIONS
    + USER_PERMISSIONS
)
