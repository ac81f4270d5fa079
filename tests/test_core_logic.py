"""Unit tests for the runtime context, lookups, validators, and menu maintenance."""

from __future__ import annotations

import json
from dataclasses import replace
from decimal import Decimal
from unittest.mock import Mock

import pytest

from pizzeria_ledger import catalog, core_logic, data_manager
from pizzeria_ledger.constants import Collection
from pizzeria_ledger.errors import NotConnected, NotFound, ValidationError
from pizzeria_ledger.ledger_store import LedgerStore


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_opens_workbook_backed_store(config_file):
    """load_runtime_context should assemble settings, store, and catalog."""

    context = core_logic.load_runtime_context(config_file)
    try:
        assert context.settings.business_name == "Test Pizzeria"
        assert context.catalog is catalog.DEFAULT_CATALOG
        assert core_logic.is_data_ready(context)
        assert len(core_logic.list_menu_items(context)) == len(catalog.DEFAULT_CATALOG.menu_items)
    finally:
        core_logic.close_context(context)
    assert not context.store.connected


def test_load_runtime_context_uses_configured_catalog(config_factory):
    bundle = config_factory()
    catalog_path = bundle.directory / "menu.json"
    catalog_path.write_text(json.dumps({"menuItems": [{"name": "Calzone", "price": 18, "cost": 5}]}))
    with bundle.config_path.open("a") as handle:
        handle.write("\n[Catalog]\nFile = menu.json\n")

    context = core_logic.load_runtime_context(bundle.config_path)
    try:
        assert [item.name for item in context.catalog.menu_items] == ["Calzone"]
    finally:
        core_logic.close_context(context)


def test_ensure_schema_version_rejects_mismatch(context):
    """Schema mismatches should surface a RuntimeError with clear messaging."""

    bad_context = core_logic.RuntimeContext(
        settings=replace(context.settings, schema_version="0.9"),
        store=context.store,
    )
    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(bad_context)


def test_cache_follows_committed_writes(context):
    """Cached lists are refreshed by the store subscription."""

    before = len(core_logic.list_menu_items(context))
    core_logic.add_menu_item(context, name="Calzone", price=Decimal("18"), cost=Decimal("5"), category="pizza")
    assert len(core_logic.list_menu_items(context)) == before + 1


def test_disconnected_context_never_becomes_ready(settings):
    """A context over a closed store stays not-ready and refuses reads."""

    context = core_logic.build_context(settings, LedgerStore(connected=False))

    assert not core_logic.is_data_ready(context)
    with pytest.raises(NotConnected):
        core_logic.list_transactions(context)
    with pytest.raises(NotConnected):
        core_logic.get_menu_item(context, "M1")


def test_close_context_detaches_subscriptions(context):
    unsubscribe = Mock()
    context._unsubscribers.append(unsubscribe)

    core_logic.close_context(context)

    unsubscribe.assert_called_once_with()
    assert not core_logic.is_data_ready(context)


# ---------------------------------------------------------------------------
# Lookups and validators
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "getter",
    [
        core_logic.get_transaction,
        core_logic.get_menu_item,
        core_logic.get_customization,
        core_logic.get_inventory_item,
        core_logic.get_payroll_entry,
    ],
)
def test_getters_raise_not_found(context, getter):
    with pytest.raises(NotFound):
        getter(context, "missing")


def test_get_reads_from_store_not_cache(context, menu_item_id):
    """Lookups see writes even when the cache has not been refreshed."""

    item_id = menu_item_id("Soda")
    core_logic.detach_subscriptions(context)
    context.store.atomic_write({f"{Collection.MENU_ITEMS.value}/{item_id}": None})

    with pytest.raises(NotFound):
        core_logic.get_menu_item(context, item_id)


@pytest.mark.parametrize("value", [None, "", "   "])
def test_require_text_rejects_blank(value):
    with pytest.raises(ValidationError):
        core_logic.require_text(value, field="Name")


def test_require_positive_and_non_negative():
    assert core_logic.require_positive(Decimal("0.01"), field="Amount") == Decimal("0.01")
    assert core_logic.require_non_negative(Decimal("0"), field="Cost") == Decimal("0")
    with pytest.raises(ValidationError):
        core_logic.require_positive(Decimal("0"), field="Amount")
    with pytest.raises(ValidationError):
        core_logic.require_non_negative(Decimal("-0.01"), field="Cost")


@pytest.mark.parametrize("amount", [Decimal("Infinity"), Decimal("-Infinity"), Decimal("NaN"), Decimal("sNaN")])
def test_validators_reject_non_finite_amounts(amount):
    """Infinite and NaN values are validation errors, never comparison errors."""

    with pytest.raises(ValidationError):
        core_logic.require_positive(amount, field="Amount")
    with pytest.raises(ValidationError):
        core_logic.require_non_negative(amount, field="Cost")


@pytest.mark.parametrize("quantity", [0, -3, 2.5, True])
def test_require_positive_quantity_rejects(quantity):
    with pytest.raises(ValidationError):
        core_logic.require_positive_quantity(quantity)


# ---------------------------------------------------------------------------
# Menu and customization maintenance
# ---------------------------------------------------------------------------


def test_add_menu_item_validates_and_stores(context):
    record = core_logic.add_menu_item(
        context, name=" Calzone ", price=Decimal("18"), cost=Decimal("5"), category="pizza"
    )

    stored = core_logic.get_menu_item(context, record.menu_item_id)
    assert stored.name == "Calzone"
    assert record.menu_item_id.startswith("M")


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": ""},
        {"price": Decimal("0")},
        {"cost": Decimal("-1")},
        {"category": "dessert"},
    ],
)
def test_add_menu_item_rejects_invalid_fields(context, overrides):
    fields = {"name": "Calzone", "price": Decimal("18"), "cost": Decimal("5"), "category": "pizza"}
    fields.update(overrides)
    with pytest.raises(ValidationError):
        core_logic.add_menu_item(context, **fields)


def test_update_menu_item_keeps_recorded_sales(context, sale_factory, menu_item_id):
    """Repricing a menu item leaves earlier sale amounts alone."""

    revenue = sale_factory("Soda", includes_tax=False)[0]
    core_logic.update_menu_item(
        context, menu_item_id("Soda"), name="Soda", price=Decimal("4"), cost=Decimal("1"), category="beverage"
    )

    assert core_logic.get_transaction(context, revenue.transaction_id).amount == Decimal("3.00")
    assert core_logic.get_menu_item(context, menu_item_id("Soda")).price == Decimal("4")


def test_delete_menu_item_removes_it(context, menu_item_id):
    item_id = menu_item_id("Garlic Bread")
    core_logic.delete_menu_item(context, item_id)
    with pytest.raises(NotFound):
        core_logic.get_menu_item(context, item_id)


def test_customization_crud(context):
    record = core_logic.add_customization(context, name="Olives", price=Decimal("1.25"), cost=Decimal("0.30"))
    updated = core_logic.update_customization(
        context, record.customization_id, name="Black Olives", price=Decimal("1.50"), cost=Decimal("0.30")
    )
    assert core_logic.get_customization(context, record.customization_id) == updated

    core_logic.delete_customization(context, record.customization_id)
    with pytest.raises(NotFound):
        core_logic.get_customization(context, record.customization_id)


# ---------------------------------------------------------------------------
# Catalog resource
# ---------------------------------------------------------------------------


def test_load_catalog_defaults_when_unset():
    assert catalog.load_catalog(None) is catalog.DEFAULT_CATALOG


def test_load_catalog_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        catalog.load_catalog(tmp_path / "menu.json")


@pytest.mark.parametrize(
    "payload",
    [
        {"menuItems": [{"price": 1, "cost": 1}]},
        {"menuItems": [{"name": "Calzone", "price": -1, "cost": 1}]},
        {"menuItems": [{"name": "Calzone", "price": 1, "cost": 1, "category": "dessert"}]},
        {"customizations": [{"name": "Olives", "price": "free", "cost": 0}]},
    ],
)
def test_parse_catalog_rejects_invalid_entries(payload):
    with pytest.raises(ValidationError):
        catalog.parse_catalog(payload)


def test_catalog_documents_match_store_shape():
    documents = catalog.DEFAULT_CATALOG.menu_item_documents()
    record = data_manager.deserialize_menu_item("M1", documents[0])
    assert record.name == catalog.DEFAULT_CATALOG.menu_items[0].name
    assert record.category == "pizza"
