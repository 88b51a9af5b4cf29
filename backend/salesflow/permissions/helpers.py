# Overview: Authorization capability consumed by services, decorators and the CLI.

from .definitions import PERMISSION_DEFINITIONS
from .roles import ALL_ROLES, APPROVAL_SCOPES, DEFAULT_ROLE_PERMISSIONS


def get_all_permission_codes():
    """Get list of all permission codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def get_permissions_by_category(category):
    """Get all permissions in a category."""
    return [perm for perm in PERMISSION_DEFINITIONS if perm[3] == category]


def get_permission_definition(code):
    """Get full definition for a permission code."""
    for perm in PERMISSION_DEFINITIONS:
        if perm[0] == code:
            return {
                "code": perm[0],
                "name": perm[1],
                "description": perm[2],
                "category": perm[3],
            }
    return None


def validate_permission_code(code):
    """Check if a permission code is valid."""
    return code in get_all_permission_codes()


def validate_role(role):
    return role in ALL_ROLES


def get_role_permissions(role) -> set[str]:
    """Permission codes granted to a role (empty for unknown roles)."""
    if role not in DEFAULT_ROLE_PERMISSIONS:
        return set()
    codes = DEFAULT_ROLE_PERMISSIONS[role]
    if codes is None:
        return set(get_all_permission_codes())
    return set(codes)


def has_permission(role, code) -> bool:
    return code in get_role_permissions(role)


def approvable_roles(role) -> tuple[str, ...]:
    """Requester roles whose requests this role may approve or reject."""
    if not has_permission(role, "APPROVE_REQUESTS"):
        return ()
    return tuple(APPROVAL_SCOPES.get(role, ()))


def can_approve(role, target_role) -> bool:
    return target_role in approvable_roles(role)


def can_sell(role) -> bool:
    return has_permission(role, "CREATE_INVOICE")
