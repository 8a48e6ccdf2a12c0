"""
Capability codes and default role grants.

WHY: Authorization is a set-membership test against the capabilities a
user's role grants. Role names are never compared in route code.
"""


class CapabilityCategory:
    SALES = "SALES"
    SOURCING = "SOURCING"
    INVENTORY = "INVENTORY"


# (code, description, category)
CAPABILITY_DEFINITIONS = [
    ("CREATE_SALE", "Ring up and record sales (POS access)", CapabilityCategory.SALES),
    ("VIEW_SALES", "View sales, receipts and sales statistics", CapabilityCategory.SALES),
    ("UPDATE_SALE", "Edit notes and status of a recorded sale", CapabilityCategory.SALES),
    ("CANCEL_SALE", "Cancel a recorded sale", CapabilityCategory.SALES),
    ("VIEW_SOURCED_ITEMS", "View sourced-item cost and profit records", CapabilityCategory.SOURCING),
    ("DELETE_SOURCED_ITEM", "Delete sourced-item records", CapabilityCategory.SOURCING),
    ("VIEW_INVENTORY", "View stock positions", CapabilityCategory.INVENTORY),
    ("RESTOCK_INVENTORY", "Receive stock into a store", CapabilityCategory.INVENTORY),
]


DEFAULT_ROLE_CAPABILITIES = {
    "super_admin": [code for code, _, _ in CAPABILITY_DEFINITIONS],
    "admin": [code for code, _, _ in CAPABILITY_DEFINITIONS],
    "manager": [
        "CREATE_SALE",
        "VIEW_SALES",
        "UPDATE_SALE",
        "CANCEL_SALE",
        "VIEW_SOURCED_ITEMS",
        "VIEW_INVENTORY",
        "RESTOCK_INVENTORY",
    ],
    "cashier": [
        "CREATE_SALE",
        "VIEW_SALES",     # Own receipts and reprints
        "VIEW_INVENTORY",  # Need to see what's in stock
    ],
}


def get_all_capability_codes() -> list[str]:
    return [code for code, _, _ in CAPABILITY_DEFINITIONS]


def validate_capability_code(code: str) -> bool:
    return code in get_all_capability_codes()
