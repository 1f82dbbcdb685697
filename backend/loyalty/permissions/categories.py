# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    TRANSACTIONS = "TRANSACTIONS"
    EVENTS = "EVENTS"
    PROMOTIONS = "PROMOTIONS"
    USERS = "USERS"
