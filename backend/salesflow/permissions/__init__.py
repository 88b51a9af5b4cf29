# Overview: Permission system package.
# Re-exports all public APIs so callers import from salesflow.permissions.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    REQUEST_PERMISSIONS,
    INVENTORY_PERMISSIONS,
    SALES_PERMISSIONS,
    SYSTEM_PERMISSIONS,
)
from .roles import ALL_ROLES, APPROVAL_SCOPES, DEFAULT_ROLE_PERMISSIONS
from .helpers import (
    get_all_permission_codes,
    get_permissions_by_category,
    get_permission_definition,
    validate_permission_code,
    validate_role,
    get_role_permissions,
    has_permission,
    approvable_roles,
    can_approve,
    can_sell,
)

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "REQUEST_PERMISSIONS",
    "INVENTORY_PERMISSIONS",
    "SALES_PERMISSIONS",
    "SYSTEM_PERMISSIONS",
    "ALL_ROLES",
    "APPROVAL_SCOPES",
    "DEFAULT_ROLE_PERMISSIONS",
    "get_all_permission_codes",
    "get_permissions_by_category",
    "get_permission_definition",
    "validate_permission_code",
    "validate_role",
    "get_role_permissions",
    "has_permission",
    "approvable_roles",
    "can_approve",
    "can_sell",
]
