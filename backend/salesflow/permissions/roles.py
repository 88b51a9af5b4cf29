# Overview: Role catalogue, default role permissions and approval scopes.

DIRECT_REPRESENTATIVE = "DirectRepresentative"
DIRECT_SHOWROOM_MANAGER = "DirectShowroomManager"
DIRECT_SHOWROOM_STAFF = "DirectShowroomStaff"
DISTRIBUTOR = "Distributor"
DISTRIBUTOR_REPRESENTATIVE = "DistributorRepresentative"
HEAD_OF_OPERATIONS = "HeadOfOperations"
MAIN_DIRECTOR = "MainDirector"
ADMIN = "Admin"

ALL_ROLES = (
    DIRECT_REPRESENTATIVE,
    DIRECT_SHOWROOM_MANAGER,
    DIRECT_SHOWROOM_STAFF,
    DISTRIBUTOR,
    DISTRIBUTOR_REPRESENTATIVE,
    HEAD_OF_OPERATIONS,
    MAIN_DIRECTOR,
    ADMIN,
)

FIELD_ROLES = (
    DIRECT_REPRESENTATIVE,
    DIRECT_SHOWROOM_MANAGER,
    DIRECT_SHOWROOM_STAFF,
    DISTRIBUTOR,
    DISTRIBUTOR_REPRESENTATIVE,
)

HEAD_OFFICE_ROLES = (HEAD_OF_OPERATIONS, MAIN_DIRECTOR, ADMIN)


_REQUESTER = ["CREATE_REQUEST", "VIEW_REQUESTS", "FULFILL_REQUESTS"]
_SELLER = ["CREATE_INVOICE", "VIEW_INVOICES", "RECORD_PAYMENT", "VIEW_INVENTORY"]


DEFAULT_ROLE_PERMISSIONS = {
    DIRECT_REPRESENTATIVE: _REQUESTER + _SELLER,
    DIRECT_SHOWROOM_MANAGER: _REQUESTER + _SELLER + [
        "APPROVE_REQUESTS",
        "MANAGE_CATALOG",
        "ADJUST_INVENTORY",
        "VIEW_ACTIVITY",
    ],
    DIRECT_SHOWROOM_STAFF: _REQUESTER + _SELLER,
    DISTRIBUTOR: _REQUESTER + _SELLER + [
        "APPROVE_REQUESTS",
        "VIEW_ACTIVITY",
    ],
    DISTRIBUTOR_REPRESENTATIVE: _REQUESTER + _SELLER,
    HEAD_OF_OPERATIONS: [
        "VIEW_REQUESTS",
        "APPROVE_REQUESTS",
        "FULFILL_REQUESTS",
        "VIEW_INVENTORY",
        "MANAGE_CATALOG",
        "ADJUST_INVENTORY",
        "VIEW_INVOICES",
        "VIEW_ACTIVITY",
    ],
    MAIN_DIRECTOR: [
        "VIEW_REQUESTS",
        "APPROVE_REQUESTS",
        "FULFILL_REQUESTS",
        "VIEW_INVENTORY",
        "VIEW_INVOICES",
        "VIEW_ACTIVITY",
    ],
    ADMIN: None,  # every permission
}


# approver role -> requester roles whose requests it may approve
APPROVAL_SCOPES = {
    DIRECT_SHOWROOM_MANAGER: (DIRECT_SHOWROOM_STAFF,),
    DISTRIBUTOR: (DISTRIBUTOR_REPRESENTATIVE,),
    HEAD_OF_OPERATIONS: FIELD_ROLES,
    MAIN_DIRECTOR: FIELD_ROLES,
    ADMIN: ALL_ROLES,
}
