"""
Permission System Constants and Definitions

WHY: Centralized permission definitions ensure consistency across the application.
All permission codes and role mappings defined here.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Categories group related permissions for display
- Default role mappings follow principle of least privilege
- Admin has all permissions by default
"""

# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    INVOICES = "INVOICES"
    PAYMENTS = "PAYMENTS"
    PRODUCTION = "PRODUCTION"
    PRICING = "PRICING"


# =============================================================================
# PERMISSION CODES
# =============================================================================

VIEW_INVOICES = "view_invoices"
EDIT_INVOICE = "edit_invoice"
CREATE_PAYMENT = "create_payment"
VERIFY_PAYMENT = "verify_payment"
REFUND_PAYMENT = "refund_payment"
CREATE_PRINT_JOB = "create_print_job"
MANAGE_PRODUCTION = "manage_production"
MANAGE_PRICING = "manage_pricing"


# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    (
        VIEW_INVOICES,
        "View Invoices",
        "View invoices, items and payment summaries",
        PermissionCategory.INVOICES
    ),
    (
        EDIT_INVOICE,
        "Edit Invoices",
        "Create, edit, duplicate and delete invoices and their items",
        PermissionCategory.INVOICES
    ),
    (
        CREATE_PAYMENT,
        "Record Payments",
        "Record customer payments against invoices",
        PermissionCategory.PAYMENTS
    ),
    (
        VERIFY_PAYMENT,
        "Verify Payments",
        "Verify or reject pending payments",
        PermissionCategory.PAYMENTS
    ),
    (
        REFUND_PAYMENT,
        "Refund Payments",
        "Refund completed payments",
        PermissionCategory.PAYMENTS
    ),
    (
        CREATE_PRINT_JOB,
        "Create Print Jobs",
        "Send invoices to production",
        PermissionCategory.PRODUCTION
    ),
    (
        MANAGE_PRODUCTION,
        "Manage Production",
        "Update print job status and progress",
        PermissionCategory.PRODUCTION
    ),
    (
        MANAGE_PRICING,
        "Manage Pricing",
        "Maintain custom weight pricing tiers",
        PermissionCategory.PRICING
    ),
]

ALL_PERMISSION_CODES = frozenset(code for code, _, _, _ in PERMISSION_DEFINITIONS)


# =============================================================================
# DEFAULT ROLE MAPPINGS
# =============================================================================

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_STAFF = "staff"
ROLE_PRODUCTION = "production"

VALID_ROLES = [ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF, ROLE_PRODUCTION]

DEFAULT_ROLE_PERMISSIONS = {
    # Admin: everything
    ROLE_ADMIN: set(ALL_PERMISSION_CODES),

    # Manager: everything except pricing maintenance
    ROLE_MANAGER: {
        VIEW_INVOICES,
        EDIT_INVOICE,
        CREATE_PAYMENT,
        VERIFY_PAYMENT,
        REFUND_PAYMENT,
        CREATE_PRINT_JOB,
        MANAGE_PRODUCTION,
    },

    # Front-desk staff: invoices and taking payments
    ROLE_STAFF: {
        VIEW_INVOICES,
        EDIT_INVOICE,
        CREATE_PAYMENT,
    },

    # Production floor: read invoices, run jobs
    ROLE_PRODUCTION: {
        VIEW_INVOICES,
        MANAGE_PRODUCTION,
    },
}
