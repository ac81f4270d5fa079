"""Consistency checks for the links between ledger records.

The store does not enforce referential integrity, so these checks state the
invariants the engines maintain and report every violation found in a
snapshot. An empty list means the ledger is consistent.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Sequence

from . import core_logic, log
from .constants import Category, TransactionType
from .core_logic import RuntimeContext
from .data_manager import InventoryRecord, PayrollRecord, TransactionRecord


def _check_sale_groups(transactions: Sequence[TransactionRecord]) -> List[str]:
    groups: Dict[str, List[TransactionRecord]] = defaultdict(list)
    for transaction in transactions:
        if transaction.sale_id:
            groups[transaction.sale_id].append(transaction)

    problems: List[str] = []
    for sale_id, members in sorted(groups.items()):
        kinds = Counter(
            (member.transaction_type, member.category) for member in members
        )
        revenue = kinds.pop((TransactionType.REVENUE.value, Category.SALES.value), 0)
        cogs = kinds.pop((TransactionType.EXPENSE.value, Category.COST_OF_GOODS_SOLD.value), 0)
        taxes = kinds.pop((TransactionType.EXPENSE.value, Category.TAXES.value), 0)
        if revenue != 1:
            problems.append(f"Sale {sale_id} has {revenue} revenue entries")
        if cogs != 1:
            problems.append(f"Sale {sale_id} has {cogs} cost-of-goods entries")
        if taxes > 1:
            problems.append(f"Sale {sale_id} has {taxes} tax entries")
        for (transaction_type, category), count in sorted(kinds.items()):
            problems.append(f"Sale {sale_id} has {count} unexpected {transaction_type} '{category}' entries")
    return problems


def _check_owned_expenses(
    owners: Iterable,
    *,
    label: str,
    owner_id: str,
    amount_field: str,
    category: Category,
    by_id: Dict[str, TransactionRecord],
) -> List[str]:
    problems: List[str] = []
    for owner in owners:
        key = getattr(owner, owner_id)
        if not owner.transaction_id:
            problems.append(f"{label} {key} has no linked transaction")
            continue
        linked = by_id.get(owner.transaction_id)
        if linked is None:
            problems.append(f"{label} {key} links to missing transaction {owner.transaction_id}")
            continue
        if linked.transaction_type != TransactionType.EXPENSE.value or linked.category != category.value:
            problems.append(
                f"{label} {key} links to transaction {linked.transaction_id} "
                f"of type '{linked.transaction_type}' in '{linked.category}'"
            )
        expected = getattr(owner, amount_field)
        if linked.amount != expected:
            problems.append(
                f"{label} {key} expects amount {expected} but transaction {linked.transaction_id} holds {linked.amount}"
            )
    return problems


def check_ledger_consistency(
    transactions: Sequence[TransactionRecord],
    inventory: Sequence[InventoryRecord],
    payroll: Sequence[PayrollRecord],
) -> List[str]:
    """Return a human-readable line for every broken invariant.

    Checked invariants:

    * every sale group has one ``Sales`` revenue entry, one ``Cost of Goods
      Sold`` entry, and at most one ``Taxes`` entry, and nothing else;
    * every inventory item and payroll entry links to an existing expense of
      the matching category whose amount equals its total cost or gross pay;
    * no transaction is claimed by two owners;
    * every ``Inventory Purchase`` and ``Payroll`` expense has an owner;
    * stored net pay equals gross pay minus deductions.
    """

    by_id = {transaction.transaction_id: transaction for transaction in transactions}
    problems = _check_sale_groups(transactions)
    problems += _check_owned_expenses(
        inventory,
        label="Inventory item",
        owner_id="item_id",
        amount_field="total_cost",
        category=Category.INVENTORY_PURCHASE,
        by_id=by_id,
    )
    problems += _check_owned_expenses(
        payroll,
        label="Payroll entry",
        owner_id="entry_id",
        amount_field="gross_pay",
        category=Category.PAYROLL,
        by_id=by_id,
    )

    claims = Counter(owner.transaction_id for owner in [*inventory, *payroll] if owner.transaction_id)
    for transaction_id, count in sorted(claims.items()):
        if count > 1:
            problems.append(f"Transaction {transaction_id} is linked from {count} records")

    for transaction in transactions:
        if transaction.category in (Category.INVENTORY_PURCHASE.value, Category.PAYROLL.value):
            if claims.get(transaction.transaction_id, 0) == 0:
                problems.append(
                    f"Transaction {transaction.transaction_id} ('{transaction.category}') has no owning record"
                )

    for entry in payroll:
        if entry.net_pay != entry.gross_pay - entry.deductions:
            problems.append(f"Payroll entry {entry.entry_id} stores net pay {entry.net_pay} inconsistent with its pay")
    return problems


def check_context(context: RuntimeContext) -> List[str]:
    """Run :func:`check_ledger_consistency` against the current store."""

    problems = check_ledger_consistency(
        core_logic.list_transactions(context),
        core_logic.list_inventory(context),
        core_logic.list_payroll(context),
    )
    if problems:
        log.warning("Ledger consistency check found %d problem(s)", len(problems))
    else:
        log.info("Ledger consistency check passed")
    return problems
