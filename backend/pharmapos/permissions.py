# Overview: Permission codes and the role-to-permission table.

"""
WHY: Centralized permission definitions ensure consistency across the application.
Routes name a permission; only this table knows which roles hold it.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Default role mappings follow principle of least privilege
"""

from .models.auth import ROLE_ACCOUNTANT, ROLE_ADMIN, ROLE_CASHIER, ROLE_PHARMACIST


# -- SALES --
CREATE_SALE = "CREATE_SALE"
VIEW_SALES = "VIEW_SALES"
SCAN_PRODUCT = "SCAN_PRODUCT"
OVERRIDE_PRICE = "OVERRIDE_PRICE"

# -- INVENTORY --
RECEIVE_STOCK = "RECEIVE_STOCK"
ADJUST_STOCK = "ADJUST_STOCK"
VIEW_INVENTORY = "VIEW_INVENTORY"
EDIT_PRODUCT = "EDIT_PRODUCT"
DISCONTINUE_PRODUCT = "DISCONTINUE_PRODUCT"
VIEW_STOCK_HISTORY = "VIEW_STOCK_HISTORY"
VIEW_STOCK_REPORT = "VIEW_STOCK_REPORT"

# -- FINANCE --
VIEW_REPORTS = "VIEW_REPORTS"
VIEW_LEDGER = "VIEW_LEDGER"


ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    ROLE_ADMIN: frozenset({
        CREATE_SALE, VIEW_SALES, SCAN_PRODUCT, OVERRIDE_PRICE,
        RECEIVE_STOCK, ADJUST_STOCK, VIEW_INVENTORY, EDIT_PRODUCT, DISCONTINUE_PRODUCT,
        VIEW_STOCK_HISTORY, VIEW_STOCK_REPORT,
        VIEW_REPORTS, VIEW_LEDGER,
    }),
    ROLE_PHARMACIST: frozenset({
        SCAN_PRODUCT,
        RECEIVE_STOCK, ADJUST_STOCK, VIEW_INVENTORY, EDIT_PRODUCT,
        VIEW_STOCK_HISTORY, VIEW_STOCK_REPORT,
    }),
    ROLE_CASHIER: frozenset({
        CREATE_SALE, VIEW_SALES, SCAN_PRODUCT,
    }),
    ROLE_ACCOUNTANT: frozenset({
        VIEW_SALES,
        VIEW_STOCK_HISTORY, VIEW_STOCK_REPORT,
        VIEW_REPORTS, VIEW_LEDGER,
    }),
}


def get_role_permissions(role: str) -> frozenset[str]:
    return ROLE_PERMISSIONS.get(role, frozenset())


def has_permission(role: str, permission_code: str) -> bool:
    return permission_code in get_role_permissions(role)
