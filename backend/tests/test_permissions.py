"""
Authorization capability tests.

Verifies:
- Every role maps to known permission codes
- Approval scopes: who may approve whose requests
- can_sell follows CREATE_INVOICE
"""

import pytest

from salesflow.permissions import (
    ALL_ROLES,
    APPROVAL_SCOPES,
    DEFAULT_ROLE_PERMISSIONS,
    PermissionCategory,
    approvable_roles,
    can_approve,
    can_sell,
    get_all_permission_codes,
    get_permission_definition,
    get_permissions_by_category,
    get_role_permissions,
    has_permission,
    validate_permission_code,
    validate_role,
)


def test_permission_codes_are_unique():
    codes = get_all_permission_codes()
    assert len(codes) == len(set(codes))


def test_role_permissions_are_known_codes():
    codes = set(get_all_permission_codes())
    for role, granted in DEFAULT_ROLE_PERMISSIONS.items():
        assert role in ALL_ROLES
        if granted is not None:
            assert set(granted) <= codes, role


def test_admin_has_everything():
    assert get_role_permissions("Admin") == set(get_all_permission_codes())


def test_unknown_role_has_nothing():
    assert get_role_permissions("Intern") == set()
    assert not has_permission("Intern", "VIEW_REQUESTS")
    assert approvable_roles("Intern") == ()
    assert not validate_role("Intern")


def test_definitions_lookup():
    definition = get_permission_definition("APPROVE_REQUESTS")
    assert definition["category"] == PermissionCategory.REQUESTS
    assert get_permission_definition("NOPE") is None
    assert validate_permission_code("RECONCILE_OPERATIONS")
    assert {p[0] for p in get_permissions_by_category(PermissionCategory.SYSTEM)} == {
        "VIEW_ACTIVITY",
        "RECONCILE_OPERATIONS",
    }


def test_approvers_hold_approve_permission():
    for approver in APPROVAL_SCOPES:
        assert has_permission(approver, "APPROVE_REQUESTS"), approver


@pytest.mark.parametrize(
    "approver,requester,expected",
    [
        ("DirectShowroomManager", "DirectShowroomStaff", True),
        ("DirectShowroomManager", "DirectRepresentative", False),
        ("DirectShowroomManager", "DistributorRepresentative", False),
        ("Distributor", "DistributorRepresentative", True),
        ("Distributor", "DirectShowroomStaff", False),
        ("HeadOfOperations", "DirectRepresentative", True),
        ("HeadOfOperations", "Distributor", True),
        ("HeadOfOperations", "MainDirector", False),
        ("MainDirector", "DirectShowroomManager", True),
        ("Admin", "HeadOfOperations", True),
        ("DirectRepresentative", "DirectShowroomStaff", False),
        ("DistributorRepresentative", "DistributorRepresentative", False),
    ],
)
def test_can_approve(approver, requester, expected):
    assert can_approve(approver, requester) is expected


@pytest.mark.parametrize(
    "role,expected",
    [
        ("DirectRepresentative", True),
        ("DirectShowroomManager", True),
        ("DirectShowroomStaff", True),
        ("Distributor", True),
        ("DistributorRepresentative", True),
        ("HeadOfOperations", False),
        ("MainDirector", False),
        ("Admin", True),
    ],
)
def test_can_sell(role, expected):
    assert can_sell(role) is expected
