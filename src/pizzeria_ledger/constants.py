"""Enumerations shared across the pizzeria ledger modules.

The store, the expansion and cascade engines, and the reports all key off the
same collection names and reserved categories, so they live here rather than
being repeated as string literals.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Schema version the workbook and config must declare before any write.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_TAX_RATE = Decimal("0.12")
DEFAULT_LOW_STOCK_THRESHOLD = Decimal("10")
DEFAULT_EXPIRY_SOON_DAYS = 7

# Literal the CLI requires before wiping the store.
RESET_CONFIRMATION_TEXT = "DELETE"


class Collection(str, Enum):
    """Top-level collections held by the ledger store."""

    TRANSACTIONS = "transactions"
    INVENTORY = "inventory"
    MENU_ITEMS = "menuItems"
    PAYROLL = "payroll"
    CUSTOMIZATIONS = "customizations"


class TransactionType(str, Enum):
    """Direction of a ledger entry."""

    REVENUE = "revenue"
    EXPENSE = "expense"


class Category(str, Enum):
    """Reserved transaction categories with cascade semantics."""

    SALES = "Sales"
    COST_OF_GOODS_SOLD = "Cost of Goods Sold"
    TAXES = "Taxes"
    INVENTORY_PURCHASE = "Inventory Purchase"
    PAYROLL = "Payroll"


class MenuCategory(str, Enum):
    """Menu sections a menu item can belong to."""

    PIZZA = "pizza"
    BEVERAGE = "beverage"
    OTHER = "other"


class InventoryStatus(str, Enum):
    """Inventory flags in descending priority."""

    EXPIRED = "Expired"
    EXPIRING_SOON = "Expiring Soon"
    LOW_STOCK = "Low Stock"


RESERVED_CATEGORIES: frozenset[str] = frozenset(category.value for category in Category)

# Categories whose transactions may only change through their owning entity.
MANAGED_CATEGORIES: frozenset[str] = frozenset(
    {
        Category.COST_OF_GOODS_SOLD.value,
        Category.TAXES.value,
        Category.PAYROLL.value,
        Category.INVENTORY_PURCHASE.value,
    }
)

# Collections replaced wholesale by import and export.
MUTABLE_COLLECTIONS: tuple[Collection, ...] = (
    Collection.TRANSACTIONS,
    Collection.INVENTORY,
    Collection.MENU_ITEMS,
    Collection.PAYROLL,
)


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_TAX_RATE",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "DEFAULT_EXPIRY_SOON_DAYS",
    "RESET_CONFIRMATION_TEXT",
    "Collection",
    "TransactionType",
    "Category",
    "MenuCategory",
    "InventoryStatus",
    "RESERVED_CATEGORIES",
    "MANAGED_CATEGORIES",
    "MUTABLE_COLLECTIONS",
]
