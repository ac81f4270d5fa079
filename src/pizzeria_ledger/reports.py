"""Read-side aggregation views.

Every function here is a pure fold over record lists; nothing is cached or
stored, so the same inputs always give the same report. Callers usually pass
the lists returned by :mod:`pizzeria_ledger.core_logic`.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from .constants import (
    DEFAULT_EXPIRY_SOON_DAYS,
    DEFAULT_LOW_STOCK_THRESHOLD,
    Category,
    InventoryStatus,
    TransactionType,
)
from .data_manager import InventoryRecord, MenuItemRecord, TransactionRecord


ZERO = Decimal("0")

ATTRIBUTE_BY_DESCRIPTION = "description"
ATTRIBUTE_BY_MENU_ITEM_ID = "menu_item_id"


@dataclass(frozen=True)
class ProfitAndLoss:
    total_revenue: Decimal
    total_expenses: Decimal
    net_profit: Decimal


@dataclass(frozen=True)
class ItemProfitability:
    menu_item_id: str
    name: str
    units_sold: int
    total_revenue: Decimal
    total_cost: Decimal
    net_profit: Decimal
    margin: Decimal


@dataclass(frozen=True)
class ProfitabilityTotals:
    units_sold: int
    total_revenue: Decimal
    total_cost: Decimal
    net_profit: Decimal
    margin: Decimal


@dataclass(frozen=True)
class InventoryStatusRow:
    item: InventoryRecord
    days_to_expiry: int
    status: Optional[InventoryStatus]


@dataclass(frozen=True)
class MonthlySummary:
    month: date
    revenue: Decimal
    expenses: Decimal


def _is_revenue(transaction: TransactionRecord) -> bool:
    return transaction.transaction_type == TransactionType.REVENUE.value


def _is_expense(transaction: TransactionRecord) -> bool:
    return transaction.transaction_type == TransactionType.EXPENSE.value


def calculate_profit_and_loss(transactions: Iterable[TransactionRecord]) -> ProfitAndLoss:
    """Sum revenue and expenses; net profit is their exact difference."""

    total_revenue = ZERO
    total_expenses = ZERO
    for transaction in transactions:
        if _is_revenue(transaction):
            total_revenue += transaction.amount
        elif _is_expense(transaction):
            total_expenses += transaction.amount
    return ProfitAndLoss(
        total_revenue=total_revenue,
        total_expenses=total_expenses,
        net_profit=total_revenue - total_expenses,
    )


def _margin(net_profit: Decimal, total_revenue: Decimal) -> Decimal:
    return net_profit / total_revenue if total_revenue > 0 else ZERO


def _cogs_matches(transaction: TransactionRecord, item: MenuItemRecord, attribution: str) -> bool:
    if attribution == ATTRIBUTE_BY_MENU_ITEM_ID and transaction.menu_item_id is not None:
        return transaction.menu_item_id == item.menu_item_id
    return item.name in transaction.description


def calculate_profitability(
    menu_items: Sequence[MenuItemRecord],
    transactions: Sequence[TransactionRecord],
    *,
    attribution: str = ATTRIBUTE_BY_DESCRIPTION,
) -> List[ItemProfitability]:
    """Fold sales and cost of goods into per-menu-item profitability.

    Revenue and units come from revenue entries carrying the item's id. Cost
    comes from ``Cost of Goods Sold`` expenses whose description contains the
    item's name. This substring join can misattribute cost between items with
    overlapping names (e.g. "Pizza" and "Pepperoni Pizza"); pass
    ``attribution="menu_item_id"`` to join on the id recorded with each COGS
    entry instead. COGS entries without an id still fall back to the name.

    Raises:
        ValueError: If ``attribution`` is not a known strategy.
    """

    if attribution not in (ATTRIBUTE_BY_DESCRIPTION, ATTRIBUTE_BY_MENU_ITEM_ID):
        raise ValueError(f"Unknown attribution strategy: {attribution!r}")

    cogs = [
        transaction
        for transaction in transactions
        if _is_expense(transaction) and transaction.category == Category.COST_OF_GOODS_SOLD.value
    ]
    rows: List[ItemProfitability] = []
    for item in menu_items:
        sales = [t for t in transactions if _is_revenue(t) and t.menu_item_id == item.menu_item_id]
        units_sold = sum((t.quantity or 0) for t in sales)
        total_revenue = sum((t.amount for t in sales), ZERO)
        total_cost = sum((t.amount for t in cogs if _cogs_matches(t, item, attribution)), ZERO)
        net_profit = total_revenue - total_cost
        rows.append(
            ItemProfitability(
                menu_item_id=item.menu_item_id,
                name=item.name,
                units_sold=units_sold,
                total_revenue=total_revenue,
                total_cost=total_cost,
                net_profit=net_profit,
                margin=_margin(net_profit, total_revenue),
            )
        )
    return rows


def profitability_totals(rows: Iterable[ItemProfitability]) -> ProfitabilityTotals:
    units_sold = 0
    total_revenue = ZERO
    total_cost = ZERO
    net_profit = ZERO
    for row in rows:
        units_sold += row.units_sold
        total_revenue += row.total_revenue
        total_cost += row.total_cost
        net_profit += row.net_profit
    return ProfitabilityTotals(
        units_sold=units_sold,
        total_revenue=total_revenue,
        total_cost=total_cost,
        net_profit=net_profit,
        margin=_margin(net_profit, total_revenue),
    )


def classify_inventory_item(
    item: InventoryRecord,
    *,
    today: date,
    low_stock_threshold: Decimal = DEFAULT_LOW_STOCK_THRESHOLD,
    expiry_soon_days: int = DEFAULT_EXPIRY_SOON_DAYS,
) -> InventoryStatusRow:
    """Flag one item; expiry outranks low stock."""

    days_to_expiry = (item.expiry_date - today).days
    status: Optional[InventoryStatus] = None
    if days_to_expiry < 0:
        status = InventoryStatus.EXPIRED
    elif days_to_expiry <= expiry_soon_days:
        status = InventoryStatus.EXPIRING_SOON
    elif item.quantity < low_stock_threshold:
        status = InventoryStatus.LOW_STOCK
    return InventoryStatusRow(item=item, days_to_expiry=days_to_expiry, status=status)


def calculate_inventory_status(
    items: Iterable[InventoryRecord],
    *,
    today: Optional[date] = None,
    low_stock_threshold: Decimal = DEFAULT_LOW_STOCK_THRESHOLD,
    expiry_soon_days: int = DEFAULT_EXPIRY_SOON_DAYS,
) -> List[InventoryStatusRow]:
    """Classify every item and sort by days to expiry, soonest first."""

    today = today or date.today()
    rows = [
        classify_inventory_item(
            item,
            today=today,
            low_stock_threshold=low_stock_threshold,
            expiry_soon_days=expiry_soon_days,
        )
        for item in items
    ]
    return sorted(rows, key=lambda row: row.days_to_expiry)


def monthly_summary(transactions: Iterable[TransactionRecord]) -> List[MonthlySummary]:
    """Revenue and expenses per calendar month, oldest month first."""

    buckets: Dict[date, List[Decimal]] = defaultdict(lambda: [ZERO, ZERO])
    for transaction in transactions:
        month = transaction.date.replace(day=1)
        if _is_revenue(transaction):
            buckets[month][0] += transaction.amount
        elif _is_expense(transaction):
            buckets[month][1] += transaction.amount
    return [
        MonthlySummary(month=month, revenue=revenue, expenses=expenses)
        for month, (revenue, expenses) in sorted(buckets.items())
    ]


def expenses_by_category(transactions: Iterable[TransactionRecord]) -> List[tuple[str, Decimal]]:
    """Total expense per category, largest first."""

    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for transaction in transactions:
        if _is_expense(transaction):
            totals[transaction.category] += transaction.amount
    return sorted(totals.items(), key=lambda pair: (-pair[1], pair[0]))


def ledger_newest_first(transactions: Iterable[TransactionRecord]) -> List[TransactionRecord]:
    """Order transactions for the P&L listing: newest date first, ties by id."""

    return sorted(transactions, key=lambda t: (t.date, t.transaction_id), reverse=True)
