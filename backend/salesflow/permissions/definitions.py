# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- REQUESTS --

REQUEST_PERMISSIONS = [
    (
        "CREATE_REQUEST",
        "Create Product Request",
        "Raise a product request for approval",
        PermissionCategory.REQUESTS,
    ),
    (
        "VIEW_REQUESTS",
        "View Requests",
        "View own request history and track requests",
        PermissionCategory.REQUESTS,
    ),
    (
        "APPROVE_REQUESTS",
        "Approve Requests",
        "Approve or reject pending requests from roles within approval scope",
        PermissionCategory.REQUESTS,
    ),
    (
        "FULFILL_REQUESTS",
        "Fulfill Requests",
        "Transfer an approved request into location stock",
        PermissionCategory.REQUESTS,
    ),
]


# -- INVENTORY --

INVENTORY_PERMISSIONS = [
    (
        "VIEW_INVENTORY",
        "View Inventory",
        "View stock levels by location",
        PermissionCategory.INVENTORY,
    ),
    (
        "MANAGE_CATALOG",
        "Manage Catalog",
        "Create products, set prices and open stock records",
        PermissionCategory.INVENTORY,
    ),
    (
        "ADJUST_INVENTORY",
        "Adjust Inventory",
        "Apply manual stock corrections",
        PermissionCategory.INVENTORY,
    ),
]


# -- SALES --

SALES_PERMISSIONS = [
    (
        "CREATE_INVOICE",
        "Create Invoice",
        "Issue customer invoices against location stock",
        PermissionCategory.SALES,
    ),
    (
        "VIEW_INVOICES",
        "View Invoices",
        "View invoices and invoice summaries",
        PermissionCategory.SALES,
    ),
    (
        "RECORD_PAYMENT",
        "Record Payment",
        "Record customer payments against invoices",
        PermissionCategory.SALES,
    ),
]


# -- SYSTEM --

SYSTEM_PERMISSIONS = [
    (
        "VIEW_ACTIVITY",
        "View Activity Log",
        "Read the workflow audit trail",
        PermissionCategory.SYSTEM,
    ),
    (
        "RECONCILE_OPERATIONS",
        "Reconcile Operations",
        "Run the sweep over incomplete fulfillment and invoice intents",
        PermissionCategory.SYSTEM,
    ),
]


PERMISSION_DEFINITIONS = (
    REQUEST_PERMISSIONS
    + INVENTORY_PERMISSIONS
    + SALES_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
