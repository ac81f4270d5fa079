"""Unit tests for the record expansion engine."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from itertools import count
from unittest.mock import Mock

import pytest

from pizzeria_ledger import core_logic, expansion
from pizzeria_ledger.constants import Category, Collection, TransactionType
from pizzeria_ledger.data_manager import CustomizationRecord, MenuItemRecord
from pizzeria_ledger.errors import NotConnected, NotFound, ValidationError, WriteFailure


PEPPERONI = MenuItemRecord("M1", "Pepperoni Pizza", Decimal("26.00"), Decimal("7.80"), "pizza")
EXTRA_CHEESE = CustomizationRecord("C1", "Extra Cheese", Decimal("2.50"), Decimal("0.80"))


def _ids(prefix: str = "T"):
    counter = count(1)
    return lambda: f"{prefix}{next(counter)}"


# ---------------------------------------------------------------------------
# Pure planning
# ---------------------------------------------------------------------------


def test_compute_sale_amounts_splits_inclusive_tax():
    """Revenue and tax add back to the gross with no rounding."""

    amounts = expansion.compute_sale_amounts(PEPPERONI, [], 2, includes_tax=True, tax_rate=Decimal("0.12"))

    assert amounts.gross == Decimal("52.00")
    assert amounts.cogs == Decimal("15.60")
    assert amounts.revenue + amounts.tax == Decimal("52.00")
    assert amounts.revenue.quantize(Decimal("0.01")) == Decimal("46.43")
    assert amounts.tax.quantize(Decimal("0.01")) == Decimal("5.57")


def test_compute_sale_amounts_without_tax_books_gross_as_revenue():
    """Prices without tax produce no tax amount."""

    amounts = expansion.compute_sale_amounts(PEPPERONI, [], 1, includes_tax=False, tax_rate=Decimal("0.12"))
    assert amounts.revenue == Decimal("26.00")
    assert amounts.tax is None


def test_compute_sale_amounts_adds_customizations_per_unit():
    """Add-on price and cost are multiplied by the quantity too."""

    amounts = expansion.compute_sale_amounts(
        PEPPERONI, [EXTRA_CHEESE], 2, includes_tax=False, tax_rate=Decimal("0.12")
    )
    assert amounts.gross == Decimal("57.00")
    assert amounts.cogs == Decimal("17.20")


def test_plan_sale_builds_linked_group():
    """Revenue, COGS, and tax share the sale id and carry the right links."""

    command = expansion.SaleCommand("M1", 2, date(2024, 5, 1), customization_ids=("C1",))
    revenue, cogs, tax = expansion.plan_sale(
        PEPPERONI,
        [EXTRA_CHEESE],
        command,
        tax_rate=Decimal("0.12"),
        sale_id="S1",
        new_transaction_id=_ids(),
    )

    assert {revenue.sale_id, cogs.sale_id, tax.sale_id} == {"S1"}
    assert revenue.transaction_type == TransactionType.REVENUE.value
    assert (revenue.category, cogs.category, tax.category) == (
        Category.SALES.value,
        Category.COST_OF_GOODS_SOLD.value,
        Category.TAXES.value,
    )
    assert revenue.description == "Sale: 2 x Pepperoni Pizza (Extra Cheese)"
    assert cogs.description == "COGS for 2 x Pepperoni Pizza"
    assert tax.description == "Sales Tax for 2 x Pepperoni Pizza"
    assert (revenue.menu_item_id, revenue.quantity) == ("M1", 2)
    assert cogs.menu_item_id == "M1"
    assert tax.menu_item_id is None


def test_plan_inventory_purchase_links_both_records():
    """The item and its expense point at the same transaction id."""

    command = expansion.InventoryPurchaseCommand(
        "Mozzarella", Decimal("12.50"), "kg", Decimal("95.00"), date(2024, 5, 1), date(2024, 5, 20)
    )
    item, transaction = expansion.plan_inventory_purchase(command, item_id="I1", transaction_id="T1")

    assert item.transaction_id == transaction.transaction_id == "T1"
    assert transaction.amount == Decimal("95.00")
    assert transaction.date == date(2024, 5, 1)
    assert transaction.description == "Purchase: 12.5 kg of Mozzarella"
    assert transaction.category == Category.INVENTORY_PURCHASE.value


def test_plan_payroll_computes_net_and_charges_gross():
    """Net pay is gross minus deductions; the expense is the gross."""

    command = expansion.PayrollCommand("Ana", Decimal("1000"), Decimal("150"), date(2024, 5, 31))
    entry, transaction = expansion.plan_payroll(command, entry_id="P1", transaction_id="T1")

    assert entry.net_pay == Decimal("850")
    assert transaction.amount == Decimal("1000")
    assert transaction.description == "Payroll for Ana"
    assert transaction.category == Category.PAYROLL.value


def test_format_quantity_drops_trailing_zeros():
    assert expansion.format_quantity(Decimal("2.000")) == "2"
    assert expansion.format_quantity(Decimal("100")) == "100"


# ---------------------------------------------------------------------------
# Store-backed operations
# ---------------------------------------------------------------------------


def test_record_sale_writes_three_entries(context, sale_factory):
    """A taxed sale produces revenue, COGS, and tax in the store."""

    records = sale_factory(quantity=2)

    stored = core_logic.transactions_for_sale(context, records[0].sale_id)
    assert len(stored) == 3
    assert sum((record.amount for record in stored if record.category != Category.COST_OF_GOODS_SOLD.value),
               Decimal("0")) == Decimal("52.00")
    assert len(core_logic.list_transactions(context)) == 3


def test_record_sale_without_tax_writes_two_entries(context, sale_factory):
    """Untaxed sales skip the tax entry."""

    records = sale_factory(includes_tax=False)
    assert [record.category for record in records] == [Category.SALES.value, Category.COST_OF_GOODS_SOLD.value]


def test_record_sale_resolves_customizations(context, menu_item_id, customization_id):
    """Customization prices and costs flow into the sale."""

    command = expansion.SaleCommand(
        menu_item_id=menu_item_id("Pepperoni Pizza"),
        quantity=1,
        date=date(2024, 5, 1),
        includes_tax=False,
        customization_ids=(customization_id("Extra Cheese"), customization_id("Extra Cheese")),
    )
    revenue, cogs = expansion.record_sale(context, command)

    assert revenue.amount == Decimal("28.50")
    assert cogs.amount == Decimal("8.60")


@pytest.mark.parametrize("quantity", [0, -1, 1.5])
def test_record_sale_rejects_bad_quantity(context, menu_item_id, quantity):
    """Quantities must be whole and positive; nothing is written otherwise."""

    command = expansion.SaleCommand(menu_item_id("Soda"), quantity, date(2024, 5, 1))
    with pytest.raises(ValidationError):
        expansion.record_sale(context, command)
    assert core_logic.list_transactions(context) == []


def test_record_sale_unknown_menu_item_raises_not_found(context):
    """A menu item deleted before the sale cannot be sold."""

    with pytest.raises(NotFound):
        expansion.record_sale(context, expansion.SaleCommand("M-missing", 1, date(2024, 5, 1)))
    assert core_logic.list_transactions(context) == []


def test_record_sale_unknown_customization_writes_nothing(context, menu_item_id):
    """Every reference resolves before the first write."""

    command = expansion.SaleCommand(menu_item_id("Soda"), 1, date(2024, 5, 1), customization_ids=("C-missing",))
    with pytest.raises(NotFound):
        expansion.record_sale(context, command)
    assert core_logic.list_transactions(context) == []


def test_record_sale_write_failure_leaves_no_partial_group(context, sale_factory, monkeypatch):
    """A rejected write commits none of the group."""

    monkeypatch.setattr(context.store, "_persist", Mock(side_effect=OSError("locked")))
    with pytest.raises(WriteFailure):
        sale_factory()
    assert core_logic.list_transactions(context) == []


def test_record_sale_requires_connection(context, menu_item_id):
    """A disconnected store refuses the operation up front."""

    item_id = menu_item_id("Soda")
    context.store.close()
    with pytest.raises(NotConnected):
        expansion.record_sale(context, expansion.SaleCommand(item_id, 1, date(2024, 5, 1)))


def test_record_inventory_purchase_links_item_and_expense(context):
    """Both records exist after the purchase and reference each other."""

    item, transaction = expansion.record_inventory_purchase(
        context,
        expansion.InventoryPurchaseCommand(
            "Flour", Decimal("25"), "kg", Decimal("40"), date(2024, 5, 1), date(2024, 9, 1)
        ),
    )

    stored_item = core_logic.get_inventory_item(context, item.item_id)
    stored_transaction = core_logic.get_transaction(context, stored_item.transaction_id)
    assert stored_transaction == transaction
    assert stored_transaction.amount == Decimal("40")


@pytest.mark.parametrize(
    "changes",
    [
        {"name": "  "},
        {"quantity": Decimal("0")},
        {"total_cost": Decimal("-1")},
        {"expiry_date": None},
    ],
)
def test_record_inventory_purchase_validates_fields(context, changes):
    """Invalid purchases raise ValidationError and write nothing."""

    fields = {
        "name": "Flour",
        "quantity": Decimal("25"),
        "unit": "kg",
        "total_cost": Decimal("40"),
        "purchase_date": date(2024, 5, 1),
        "expiry_date": date(2024, 9, 1),
    }
    fields.update(changes)
    with pytest.raises(ValidationError):
        expansion.record_inventory_purchase(context, expansion.InventoryPurchaseCommand(**fields))
    assert core_logic.list_inventory(context) == []


def test_record_payroll_links_entry_and_expense(context):
    """Payroll writes the entry and a gross-pay expense together."""

    entry, transaction = expansion.record_payroll(
        context, expansion.PayrollCommand("Ana", Decimal("1000"), Decimal("150"), date(2024, 5, 31))
    )

    assert core_logic.get_payroll_entry(context, entry.entry_id).net_pay == Decimal("850")
    assert core_logic.get_transaction(context, entry.transaction_id).amount == Decimal("1000")
    assert transaction.transaction_id == entry.transaction_id


def test_record_payroll_rejects_negative_deductions(context):
    with pytest.raises(ValidationError):
        expansion.record_payroll(
            context, expansion.PayrollCommand("Ana", Decimal("1000"), Decimal("-1"), date(2024, 5, 31))
        )


def test_update_inventory_item_rewrites_linked_expense(context):
    """Changing quantity and cost re-derives the expense in place."""

    item, transaction = expansion.record_inventory_purchase(
        context,
        expansion.InventoryPurchaseCommand(
            "Flour", Decimal("25"), "kg", Decimal("40"), date(2024, 5, 1), date(2024, 9, 1)
        ),
    )
    updated, rewritten = expansion.update_inventory_item(
        context, item.item_id, expansion.InventoryUpdate(quantity=Decimal("30"), total_cost=Decimal("48"))
    )

    assert rewritten.transaction_id == transaction.transaction_id
    stored = core_logic.get_transaction(context, transaction.transaction_id)
    assert stored.amount == Decimal("48")
    assert stored.description == "Purchase: 30 kg of Flour"
    assert core_logic.get_inventory_item(context, item.item_id).quantity == Decimal("30")
    assert len(core_logic.list_transactions(context)) == 1


def test_update_payroll_entry_recomputes_net_pay(context):
    """New deductions change net pay; the expense follows gross pay."""

    entry, _ = expansion.record_payroll(
        context, expansion.PayrollCommand("Ana", Decimal("1000"), Decimal("150"), date(2024, 5, 31))
    )
    updated, transaction = expansion.update_payroll_entry(
        context, entry.entry_id, expansion.PayrollUpdate(gross_pay=Decimal("1200"), deductions=Decimal("200"))
    )

    assert updated.net_pay == Decimal("1000")
    assert core_logic.get_transaction(context, transaction.transaction_id).amount == Decimal("1200")


def test_update_inventory_item_unknown_id_raises(context):
    with pytest.raises(NotFound):
        expansion.update_inventory_item(context, "I-missing", expansion.InventoryUpdate(name="Salt"))


def test_record_expense_writes_free_form_entry(context):
    """Manual expenses land in the ledger under their own category."""

    record = expansion.record_expense(
        context, expansion.ExpenseCommand(Decimal("1200"), "May rent", "Rent", date(2024, 5, 1))
    )
    assert core_logic.get_transaction(context, record.transaction_id).category == "Rent"
    assert record.transaction_type == TransactionType.EXPENSE.value


@pytest.mark.parametrize("category", [c.value for c in Category])
def test_record_expense_refuses_reserved_categories(context, category):
    """Generated categories cannot be used for manual entries."""

    with pytest.raises(ValidationError):
        expansion.record_expense(
            context, expansion.ExpenseCommand(Decimal("10"), "Oops", category, date(2024, 5, 1))
        )


def test_sale_ids_are_unique_per_group(context, sale_factory):
    """Two sales never share a sale id."""

    first = sale_factory()
    second = sale_factory()
    assert first[0].sale_id != second[0].sale_id
    assert len({record.transaction_id for record in first + second}) == 6
    assert all(record.transaction_id.startswith("T") for record in first)
    assert context.store.snapshot(Collection.TRANSACTIONS.value)


@pytest.mark.parametrize("amount", [Decimal("Infinity"), Decimal("NaN")])
def test_expansion_rejects_non_finite_amounts_without_writing(context, amount):
    """Every money-entry operation refuses infinite or NaN amounts."""

    with pytest.raises(ValidationError):
        expansion.record_expense(context, expansion.ExpenseCommand(amount, "Rent", "Rent", date(2024, 5, 1)))
    with pytest.raises(ValidationError):
        expansion.record_inventory_purchase(
            context,
            expansion.InventoryPurchaseCommand(
                "Flour", Decimal("25"), "kg", amount, date(2024, 5, 1), date(2024, 9, 1)
            ),
        )
    with pytest.raises(ValidationError):
        expansion.record_payroll(context, expansion.PayrollCommand("Ana", amount, amount, date(2024, 5, 31)))

    assert core_logic.list_transactions(context) == []
    assert core_logic.list_inventory(context) == []
    assert core_logic.list_payroll(context) == []
