"""Record expansion engine.

Each public ``record_*``/``update_*`` function turns one user intent into the
complete set of ledger records it implies and hands them to the store as a
single atomic write. The ``plan_*`` and ``compute_*`` helpers are pure: they
take already-resolved inputs plus id factories and return records without
touching the store, which keeps the arithmetic and linkage easy to test.

Every input is validated and every reference resolved before the first write;
a failure at any point leaves the store untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from . import core_logic, data_manager, log
from .constants import RESERVED_CATEGORIES, Category, Collection, TransactionType
from .core_logic import RuntimeContext
from .data_manager import (
    CustomizationRecord,
    InventoryRecord,
    MenuItemRecord,
    PayrollRecord,
    TransactionRecord,
)
from .errors import NotFound, ValidationError


SALE_ID_PREFIX = "S"

IdFactory = Callable[[], str]


@dataclass(frozen=True)
class SaleCommand:
    """User intent: sell ``quantity`` units of a menu item."""

    menu_item_id: str
    quantity: int
    date: date
    includes_tax: bool = True
    customization_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class InventoryPurchaseCommand:
    """User intent: record a stock purchase and its expense."""

    name: str
    quantity: Decimal
    unit: str
    total_cost: Decimal
    purchase_date: date
    expiry_date: date


@dataclass(frozen=True)
class PayrollCommand:
    """User intent: record one employee's pay run and its expense."""

    employee_name: str
    gross_pay: Decimal
    deductions: Decimal
    pay_date: date


@dataclass(frozen=True)
class ExpenseCommand:
    """User intent: record a free-form operating expense such as rent."""

    amount: Decimal
    description: str
    category: str
    date: date


@dataclass(frozen=True)
class InventoryUpdate:
    """Replacement fields for an inventory item; ``None`` keeps the current value."""

    name: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit: Optional[str] = None
    total_cost: Optional[Decimal] = None
    purchase_date: Optional[date] = None
    expiry_date: Optional[date] = None


@dataclass(frozen=True)
class PayrollUpdate:
    """Replacement fields for a payroll entry; ``None`` keeps the current value."""

    employee_name: Optional[str] = None
    gross_pay: Optional[Decimal] = None
    deductions: Optional[Decimal] = None
    pay_date: Optional[date] = None


@dataclass(frozen=True)
class SaleAmounts:
    """Money split of one sale before it is written."""

    gross: Decimal
    revenue: Decimal
    tax: Optional[Decimal]
    cogs: Decimal


def _require_date(value: Optional[date], *, field: str) -> date:
    if not isinstance(value, date):
        log.error("Date validation failed for '%s': %r", field, value)
        raise ValidationError(f"{field} is required")
    return value


def format_quantity(quantity: Decimal) -> str:
    """Render a quantity without trailing zeros or exponent notation."""

    normalized = Decimal(quantity).normalize()
    return format(normalized, "f")


def compute_sale_amounts(
    menu_item: MenuItemRecord,
    customizations: Sequence[CustomizationRecord],
    quantity: int,
    *,
    includes_tax: bool,
    tax_rate: Decimal,
) -> SaleAmounts:
    """Split a sale into revenue, optional inclusive tax, and cost of goods.

    The gross is ``(price + add-on prices) * quantity``. When the price already
    includes tax, the pre-tax revenue is ``gross / (1 + rate)`` and the tax is
    the remainder, so revenue and tax always add back to the gross. No rounding
    is applied here.
    """

    gross = (menu_item.price + sum((c.price for c in customizations), Decimal("0"))) * quantity
    cogs = (menu_item.cost + sum((c.cost for c in customizations), Decimal("0"))) * quantity
    if includes_tax:
        revenue = gross / (Decimal("1") + tax_rate)
        return SaleAmounts(gross=gross, revenue=revenue, tax=gross - revenue, cogs=cogs)
    return SaleAmounts(gross=gross, revenue=gross, tax=None, cogs=cogs)


def plan_sale(
    menu_item: MenuItemRecord,
    customizations: Sequence[CustomizationRecord],
    command: SaleCommand,
    *,
    tax_rate: Decimal,
    sale_id: str,
    new_transaction_id: IdFactory,
) -> List[TransactionRecord]:
    """Build the revenue, COGS, and optional tax entries sharing ``sale_id``."""

    amounts = compute_sale_amounts(
        menu_item,
        customizations,
        command.quantity,
        includes_tax=command.includes_tax,
        tax_rate=tax_rate,
    )
    label = f"{command.quantity} x {menu_item.name}"
    extras = f" ({', '.join(c.name for c in customizations)})" if customizations else ""

    records = [
        TransactionRecord(
            transaction_id=new_transaction_id(),
            transaction_type=TransactionType.REVENUE.value,
            date=command.date,
            amount=amounts.revenue,
            description=f"Sale: {label}{extras}",
            category=Category.SALES.value,
            menu_item_id=menu_item.menu_item_id,
            quantity=command.quantity,
            sale_id=sale_id,
        ),
        TransactionRecord(
            transaction_id=new_transaction_id(),
            transaction_type=TransactionType.EXPENSE.value,
            date=command.date,
            amount=amounts.cogs,
            description=f"COGS for {label}",
            category=Category.COST_OF_GOODS_SOLD.value,
            menu_item_id=menu_item.menu_item_id,
            sale_id=sale_id,
        ),
    ]
    if amounts.tax is not None:
        records.append(
            TransactionRecord(
                transaction_id=new_transaction_id(),
                transaction_type=TransactionType.EXPENSE.value,
                date=command.date,
                amount=amounts.tax,
                description=f"Sales Tax for {label}",
                category=Category.TAXES.value,
                sale_id=sale_id,
            )
        )
    return records


def _transaction_updates(records: Sequence[TransactionRecord]) -> Dict[str, data_manager.Document]:
    return {
        f"{Collection.TRANSACTIONS.value}/{record.transaction_id}": data_manager.serialize_transaction(record)
        for record in records
    }


def record_sale(context: RuntimeContext, command: SaleCommand) -> List[TransactionRecord]:
    """Validate a sale and write its whole sale group atomically.

    Args:
        context (RuntimeContext): Runtime context providing the store and the
            configured tax rate.
        command (SaleCommand): Structured sale intent.

    Returns:
        list[TransactionRecord]: The revenue entry, the COGS entry, and the tax
            entry when the price included tax, in that order.

    Raises:
        NotConnected: If the store is unreachable.
        ValidationError: If the quantity is not a positive whole number or the
            date is missing.
        NotFound: If the menu item or any customization does not resolve.
        WriteFailure: If the store rejected the write.
    """
    core_logic.require_connection(context)
    quantity = core_logic.require_positive_quantity(command.quantity)
    _require_date(command.date, field="Date")
    command = replace(command, quantity=quantity)

    menu_item = core_logic.get_menu_item(context, command.menu_item_id)
    customizations = [
        core_logic.get_customization(context, customization_id)
        for customization_id in dict.fromkeys(command.customization_ids)
    ]

    sale_id = context.store.generate_key(SALE_ID_PREFIX)
    records = plan_sale(
        menu_item,
        customizations,
        command,
        tax_rate=context.settings.tax_rate,
        sale_id=sale_id,
        new_transaction_id=lambda: context.store.generate_id(Collection.TRANSACTIONS.value),
    )
    context.store.atomic_write(_transaction_updates(records))
    log.info(
        "Recorded sale '%s' of %s x '%s' (revenue=%s, entries=%d)",
        sale_id,
        quantity,
        menu_item.name,
        records[0].amount,
        len(records),
    )
    return records


def _validated_purchase(command: InventoryPurchaseCommand) -> InventoryPurchaseCommand:
    return InventoryPurchaseCommand(
        name=core_logic.require_text(command.name, field="Name"),
        quantity=core_logic.require_positive(command.quantity, field="Quantity"),
        unit=core_logic.require_text(command.unit, field="Unit"),
        total_cost=core_logic.require_positive(command.total_cost, field="Total cost"),
        purchase_date=_require_date(command.purchase_date, field="Purchase date"),
        expiry_date=_require_date(command.expiry_date, field="Expiry date"),
    )


def purchase_transaction(item: InventoryRecord, transaction_id: str) -> TransactionRecord:
    """Derive the ``Inventory Purchase`` expense mirroring ``item``."""

    return TransactionRecord(
        transaction_id=transaction_id,
        transaction_type=TransactionType.EXPENSE.value,
        date=item.purchase_date,
        amount=item.total_cost,
        description=f"Purchase: {format_quantity(item.quantity)} {item.unit} of {item.name}",
        category=Category.INVENTORY_PURCHASE.value,
    )


def plan_inventory_purchase(
    command: InventoryPurchaseCommand,
    *,
    item_id: str,
    transaction_id: str,
) -> Tuple[InventoryRecord, TransactionRecord]:
    item = InventoryRecord(
        item_id=item_id,
        name=command.name,
        quantity=command.quantity,
        unit=command.unit,
        total_cost=command.total_cost,
        purchase_date=command.purchase_date,
        expiry_date=command.expiry_date,
        transaction_id=transaction_id,
    )
    return item, purchase_transaction(item, transaction_id)


def _linked_updates(
    collection: Collection,
    record_id: str,
    document: data_manager.Document,
    transaction: TransactionRecord,
) -> Dict[str, data_manager.Document]:
    return {
        f"{collection.value}/{record_id}": document,
        f"{Collection.TRANSACTIONS.value}/{transaction.transaction_id}": data_manager.serialize_transaction(
            transaction
        ),
    }


def record_inventory_purchase(
    context: RuntimeContext,
    command: InventoryPurchaseCommand,
) -> Tuple[InventoryRecord, TransactionRecord]:
    """Write an inventory item and its linked expense in one atomic update.

    Raises:
        NotConnected: If the store is unreachable.
        ValidationError: If a text field is blank, the quantity or cost is not
            positive, or a date is missing.
        WriteFailure: If the store rejected the write.
    """
    core_logic.require_connection(context)
    command = _validated_purchase(command)
    item, transaction = plan_inventory_purchase(
        command,
        item_id=context.store.generate_id(Collection.INVENTORY.value),
        transaction_id=context.store.generate_id(Collection.TRANSACTIONS.value),
    )
    context.store.atomic_write(
        _linked_updates(
            Collection.INVENTORY,
            item.item_id,
            data_manager.serialize_inventory_item(item),
            transaction,
        )
    )
    log.info(
        "Recorded inventory purchase '%s' (%s %s, cost=%s) linked to '%s'",
        item.name,
        format_quantity(item.quantity),
        item.unit,
        item.total_cost,
        transaction.transaction_id,
    )
    return item, transaction


def _validated_payroll(command: PayrollCommand) -> PayrollCommand:
    return PayrollCommand(
        employee_name=core_logic.require_text(command.employee_name, field="Employee name"),
        gross_pay=core_logic.require_positive(command.gross_pay, field="Gross pay"),
        deductions=core_logic.require_non_negative(command.deductions, field="Deductions"),
        pay_date=_require_date(command.pay_date, field="Pay date"),
    )


def payroll_transaction(entry: PayrollRecord, transaction_id: str) -> TransactionRecord:
    """Derive the ``Payroll`` expense mirroring ``entry`` (charged at gross pay)."""

    return TransactionRecord(
        transaction_id=transaction_id,
        transaction_type=TransactionType.EXPENSE.value,
        date=entry.pay_date,
        amount=entry.gross_pay,
        description=f"Payroll for {entry.employee_name}",
        category=Category.PAYROLL.value,
    )


def plan_payroll(
    command: PayrollCommand,
    *,
    entry_id: str,
    transaction_id: str,
) -> Tuple[PayrollRecord, TransactionRecord]:
    entry = PayrollRecord(
        entry_id=entry_id,
        employee_name=command.employee_name,
        gross_pay=command.gross_pay,
        deductions=command.deductions,
        net_pay=command.gross_pay - command.deductions,
        pay_date=command.pay_date,
        transaction_id=transaction_id,
    )
    return entry, payroll_transaction(entry, transaction_id)


def record_payroll(context: RuntimeContext, command: PayrollCommand) -> Tuple[PayrollRecord, TransactionRecord]:
    """Write a payroll entry and its linked expense in one atomic update.

    Raises:
        NotConnected: If the store is unreachable.
        ValidationError: If the name is blank, gross pay is not positive,
            deductions are negative, or the pay date is missing.
        WriteFailure: If the store rejected the write.
    """
    core_logic.require_connection(context)
    command = _validated_payroll(command)
    entry, transaction = plan_payroll(
        command,
        entry_id=context.store.generate_id(Collection.PAYROLL.value),
        transaction_id=context.store.generate_id(Collection.TRANSACTIONS.value),
    )
    context.store.atomic_write(
        _linked_updates(
            Collection.PAYROLL,
            entry.entry_id,
            data_manager.serialize_payroll_entry(entry),
            transaction,
        )
    )
    log.info(
        "Recorded payroll for '%s' (gross=%s, net=%s) linked to '%s'",
        entry.employee_name,
        entry.gross_pay,
        entry.net_pay,
        transaction.transaction_id,
    )
    return entry, transaction


def update_inventory_item(
    context: RuntimeContext,
    item_id: str,
    changes: InventoryUpdate,
) -> Tuple[InventoryRecord, TransactionRecord]:
    """Rewrite an inventory item and re-derive its linked expense together.

    The item keeps its ``transactionId``; the expense at that id is replaced
    with an amount, description, and date derived from the new fields.

    Raises:
        NotFound: If the item does not exist or carries no transaction link.
        ValidationError: If a replacement field is invalid.
        WriteFailure: If the store rejected the write.
    """
    current = core_logic.get_inventory_item(context, item_id)
    if not current.transaction_id:
        log.warning("Inventory item '%s' has no linked transaction", item_id)
        raise NotFound(f"Inventory item {item_id} has no linked transaction")

    merged = _validated_purchase(
        InventoryPurchaseCommand(
            name=_pick(changes.name, current.name),
            quantity=_pick(changes.quantity, current.quantity),
            unit=_pick(changes.unit, current.unit),
            total_cost=_pick(changes.total_cost, current.total_cost),
            purchase_date=_pick(changes.purchase_date, current.purchase_date),
            expiry_date=_pick(changes.expiry_date, current.expiry_date),
        )
    )
    item, transaction = plan_inventory_purchase(merged, item_id=item_id, transaction_id=current.transaction_id)
    context.store.atomic_write(
        _linked_updates(
            Collection.INVENTORY,
            item_id,
            data_manager.serialize_inventory_item(item),
            transaction,
        )
    )
    log.info("Updated inventory item '%s' and transaction '%s'", item_id, transaction.transaction_id)
    return item, transaction


def update_payroll_entry(
    context: RuntimeContext,
    entry_id: str,
    changes: PayrollUpdate,
) -> Tuple[PayrollRecord, TransactionRecord]:
    """Rewrite a payroll entry, recompute net pay, and re-derive its expense.

    Raises:
        NotFound: If the entry does not exist or carries no transaction link.
        ValidationError: If a replacement field is invalid.
        WriteFailure: If the store rejected the write.
    """
    current = core_logic.get_payroll_entry(context, entry_id)
    if not current.transaction_id:
        log.warning("Payroll entry '%s' has no linked transaction", entry_id)
        raise NotFound(f"Payroll entry {entry_id} has no linked transaction")

    merged = _validated_payroll(
        PayrollCommand(
            employee_name=_pick(changes.employee_name, current.employee_name),
            gross_pay=_pick(changes.gross_pay, current.gross_pay),
            deductions=_pick(changes.deductions, current.deductions),
            pay_date=_pick(changes.pay_date, current.pay_date),
        )
    )
    entry, transaction = plan_payroll(merged, entry_id=entry_id, transaction_id=current.transaction_id)
    context.store.atomic_write(
        _linked_updates(
            Collection.PAYROLL,
            entry_id,
            data_manager.serialize_payroll_entry(entry),
            transaction,
        )
    )
    log.info("Updated payroll entry '%s' and transaction '%s'", entry_id, transaction.transaction_id)
    return entry, transaction


def _pick(candidate, current):
    return current if candidate is None else candidate


def record_expense(context: RuntimeContext, command: ExpenseCommand) -> TransactionRecord:
    """Record a free-form expense outside the reserved categories.

    Raises:
        ValidationError: If the amount is not positive, a text field is blank,
            the date is missing, or the category is reserved for generated
            entries.
    """
    core_logic.require_connection(context)
    category = core_logic.require_text(command.category, field="Category")
    if category in RESERVED_CATEGORIES:
        log.error("Rejected manual expense in reserved category '%s'", category)
        raise ValidationError(f"Category '{category}' is reserved for generated entries")
    record = TransactionRecord(
        transaction_id=context.store.generate_id(Collection.TRANSACTIONS.value),
        transaction_type=TransactionType.EXPENSE.value,
        date=_require_date(command.date, field="Date"),
        amount=core_logic.require_positive(command.amount, field="Amount"),
        description=core_logic.require_text(command.description, field="Description"),
        category=category,
    )
    context.store.atomic_write(_transaction_updates([record]))
    log.info("Recorded expense '%s' (%s, amount=%s)", record.transaction_id, category, record.amount)
    return record
