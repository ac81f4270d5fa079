"""Cascade deletion and update engine.

Deleting a primary record removes every record that exists because of it in
one atomic multi-path write: a whole sale group goes together, and an
inventory or payroll record never outlives its linked expense (or the other
way round). Managed transactions cannot be edited on their own; the
capability check here is what callers consult before offering an edit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Optional, Tuple

from . import core_logic, data_manager, log
from .catalog import Catalog
from .constants import MANAGED_CATEGORIES, RESERVED_CATEGORIES, Category, Collection, TransactionType
from .core_logic import RuntimeContext
from .data_manager import TransactionRecord
from .errors import NotEditable, ValidationError


@dataclass(frozen=True)
class CascadeResult:
    """Ids removed by one cascade, grouped by collection."""

    transaction_ids: Tuple[str, ...] = ()
    inventory_ids: Tuple[str, ...] = ()
    payroll_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TransactionUpdate:
    """Replacement fields for an editable transaction; ``None`` keeps the value."""

    amount: Optional[Decimal] = None
    description: Optional[str] = None
    category: Optional[str] = None
    date: Optional[date] = None


@dataclass(frozen=True)
class ResetResult:
    menu_item_ids: Tuple[str, ...] = field(default_factory=tuple)
    customization_ids: Tuple[str, ...] = field(default_factory=tuple)


_EDIT_GUIDANCE = {
    Category.PAYROLL.value: "This is a payroll expense. Please manage it on the Payroll page.",
    Category.COST_OF_GOODS_SOLD.value: "This is part of a sale. It cannot be edited individually.",
    Category.TAXES.value: "This is part of a sale. It cannot be edited individually.",
    Category.INVENTORY_PURCHASE.value: "This was created from an inventory entry. Manage it from the Inventory page.",
    Category.SALES.value: (
        "Sales revenue cannot be edited directly. Please delete this entry and create a new one if needed."
    ),
}


def is_independently_editable(transaction: TransactionRecord) -> bool:
    """Return ``False`` for revenue and for every managed expense category."""

    return (
        transaction.category not in MANAGED_CATEGORIES
        and transaction.transaction_type != TransactionType.REVENUE.value
    )


def editability_reason(transaction: TransactionRecord) -> Optional[str]:
    """Explain why a transaction is locked, or ``None`` when it is editable."""

    if is_independently_editable(transaction):
        return None
    return _EDIT_GUIDANCE.get(transaction.category, "This transaction cannot be edited directly.")


def update_transaction(
    context: RuntimeContext,
    transaction_id: str,
    changes: TransactionUpdate,
) -> TransactionRecord:
    """Edit a free-form transaction in place.

    Raises:
        NotFound: If the transaction does not exist.
        NotEditable: If the transaction is revenue or belongs to a managed
            category.
        ValidationError: If a replacement value is invalid or moves the entry
            into a reserved category.
    """
    current = core_logic.get_transaction(context, transaction_id)
    reason = editability_reason(current)
    if reason is not None:
        log.warning("Refused edit of managed transaction '%s' (%s)", transaction_id, current.category)
        raise NotEditable(reason)

    category = core_logic.require_text(
        current.category if changes.category is None else changes.category,
        field="Category",
    )
    if category in RESERVED_CATEGORIES:
        log.error("Refused move of transaction '%s' into reserved category '%s'", transaction_id, category)
        raise ValidationError(f"Category '{category}' is reserved for generated entries")
    amount = current.amount if changes.amount is None else changes.amount
    description = current.description if changes.description is None else changes.description
    record = TransactionRecord(
        transaction_id=transaction_id,
        transaction_type=current.transaction_type,
        date=current.date if changes.date is None else changes.date,
        amount=core_logic.require_positive(amount, field="Amount"),
        description=core_logic.require_text(description, field="Description"),
        category=category,
    )
    context.store.atomic_write(
        {f"{Collection.TRANSACTIONS.value}/{transaction_id}": data_manager.serialize_transaction(record)}
    )
    log.info("Updated transaction '%s'", transaction_id)
    return record


def _owners_of(context: RuntimeContext, collection: Collection, transaction_id: str) -> Tuple[str, ...]:
    snapshot = context.store.snapshot(collection.value)
    return tuple(
        sorted(record_id for record_id, document in snapshot.items() if document.get("transactionId") == transaction_id)
    )


def delete_transaction(context: RuntimeContext, transaction_id: str) -> CascadeResult:
    """Delete a transaction and everything generated alongside it.

    The transaction itself always goes. If it belongs to a sale group, every
    transaction sharing its ``saleId`` goes too. ``Inventory Purchase`` and
    ``Payroll`` expenses also remove the inventory item or payroll entry that
    points back at them. All removals happen in a single atomic write.

    Raises:
        NotConnected: If the store is unreachable.
        NotFound: If ``transaction_id`` does not resolve.
        WriteFailure: If the store rejected the write.
    """
    target = core_logic.get_transaction(context, transaction_id)

    transaction_ids = {transaction_id}
    if target.sale_id:
        transaction_ids.update(record.transaction_id for record in core_logic.transactions_for_sale(context, target.sale_id))

    inventory_ids: Tuple[str, ...] = ()
    payroll_ids: Tuple[str, ...] = ()
    if target.category == Category.INVENTORY_PURCHASE.value:
        inventory_ids = _owners_of(context, Collection.INVENTORY, transaction_id)
    elif target.category == Category.PAYROLL.value:
        payroll_ids = _owners_of(context, Collection.PAYROLL, transaction_id)

    updates: Dict[str, None] = {f"{Collection.TRANSACTIONS.value}/{tid}": None for tid in transaction_ids}
    updates.update({f"{Collection.INVENTORY.value}/{item_id}": None for item_id in inventory_ids})
    updates.update({f"{Collection.PAYROLL.value}/{entry_id}": None for entry_id in payroll_ids})
    context.store.atomic_write(updates)

    result = CascadeResult(
        transaction_ids=tuple(sorted(transaction_ids)),
        inventory_ids=inventory_ids,
        payroll_ids=payroll_ids,
    )
    log.info(
        "Deleted transaction '%s' with %d linked transaction(s), %d inventory item(s), %d payroll entr(ies)",
        transaction_id,
        len(result.transaction_ids) - 1,
        len(inventory_ids),
        len(payroll_ids),
    )
    return result


def delete_inventory_item(context: RuntimeContext, item_id: str) -> CascadeResult:
    """Delete an inventory item together with its linked expense.

    Raises:
        NotFound: If the item does not exist.
        WriteFailure: If the store rejected the write.
    """
    item = core_logic.get_inventory_item(context, item_id)
    updates: Dict[str, None] = {f"{Collection.INVENTORY.value}/{item_id}": None}
    if item.transaction_id:
        updates[f"{Collection.TRANSACTIONS.value}/{item.transaction_id}"] = None
    context.store.atomic_write(updates)
    log.info("Deleted inventory item '%s' and transaction '%s'", item_id, item.transaction_id)
    return CascadeResult(
        transaction_ids=(item.transaction_id,) if item.transaction_id else (),
        inventory_ids=(item_id,),
    )


def delete_payroll_entry(context: RuntimeContext, entry_id: str) -> CascadeResult:
    """Delete a payroll entry together with its linked expense.

    Raises:
        NotFound: If the entry does not exist.
        WriteFailure: If the store rejected the write.
    """
    entry = core_logic.get_payroll_entry(context, entry_id)
    updates: Dict[str, None] = {f"{Collection.PAYROLL.value}/{entry_id}": None}
    if entry.transaction_id:
        updates[f"{Collection.TRANSACTIONS.value}/{entry.transaction_id}"] = None
    context.store.atomic_write(updates)
    log.info("Deleted payroll entry '%s' and transaction '%s'", entry_id, entry.transaction_id)
    return CascadeResult(
        transaction_ids=(entry.transaction_id,) if entry.transaction_id else (),
        payroll_ids=(entry_id,),
    )


def reset_all_data(context: RuntimeContext, catalog: Optional[Catalog] = None) -> ResetResult:
    """Empty the ledger and re-seed the menu and customizations.

    Transactions, inventory, and payroll are cleared; menu items and
    customizations are replaced by ``catalog`` (the context's catalog when
    omitted) under freshly generated ids. Everything happens in one atomic
    write.

    Raises:
        NotConnected: If the store is unreachable.
        WriteFailure: If the store rejected the write.
    """
    core_logic.require_connection(context)
    catalog = catalog or context.catalog
    store = context.store
    menu_items = {store.generate_id(Collection.MENU_ITEMS.value): doc for doc in catalog.menu_item_documents()}
    customizations = {
        store.generate_id(Collection.CUSTOMIZATIONS.value): doc for doc in catalog.customization_documents()
    }
    store.atomic_write(
        {
            Collection.TRANSACTIONS.value: None,
            Collection.INVENTORY.value: None,
            Collection.PAYROLL.value: None,
            Collection.MENU_ITEMS.value: menu_items,
            Collection.CUSTOMIZATIONS.value: customizations,
        }
    )
    log.warning(
        "Reset all ledger data; seeded %d menu items and %d customizations",
        len(menu_items),
        len(customizations),
    )
    return ResetResult(menu_item_ids=tuple(menu_items), customization_ids=tuple(customizations))
