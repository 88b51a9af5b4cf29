# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    REQUESTS = "REQUESTS"
    INVENTORY = "INVENTORY"
    SALES = "SALES"
    SYSTEM = "SYSTEM"
