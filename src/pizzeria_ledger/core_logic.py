"""Business logic foundation for the pizzeria ledger.

This module wires configuration, the ledger store, and the catalog into a
:class:`RuntimeContext`, keeps per-collection caches fed by live store
subscriptions, and provides the lookups and validators shared by the
expansion and cascade engines. Menu and customization maintenance also lives
here because it never produces financial side-records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from . import data_manager, log
from .catalog import DEFAULT_CATALOG, Catalog, load_catalog
from .constants import EXPECTED_SCHEMA_VERSION, Collection, MenuCategory
from .data_manager import (
    CustomizationRecord,
    InventoryRecord,
    MenuItemRecord,
    PayrollRecord,
    TransactionRecord,
)
from .errors import NotConnected, NotFound, ValidationError
from .ledger_store import LedgerStore


@dataclass(frozen=True)
class RuntimeContext:
    """Container for settings, the live store, and the reset catalog."""

    settings: data_manager.ConfigSettings
    store: LedgerStore
    catalog: Catalog = DEFAULT_CATALOG
    _cache: Dict[str, List[Any]] = field(default_factory=dict, repr=False, compare=False)
    _unsubscribers: List[Callable[[], None]] = field(default_factory=list, repr=False, compare=False)


def _decode_snapshot(collection: Collection, snapshot: Dict[str, Dict[str, Any]]) -> List[Any]:
    _, deserialize = data_manager.CODECS[collection]
    return [deserialize(record_id, snapshot[record_id]) for record_id in sorted(snapshot)]


def attach_subscriptions(context: RuntimeContext) -> None:
    """Subscribe once per collection so cached lists follow every commit.

    Nothing is attached when the store is disconnected; the caches then stay
    empty and :func:`is_data_ready` reports ``False``.
    """

    if context._unsubscribers:
        return
    if not context.store.connected:
        log.warning("Store not connected; ledger data will not load")
        return
    for collection in Collection:

        def _listener(snapshot: Dict[str, Dict[str, Any]], collection: Collection = collection) -> None:
            context._cache[collection.value] = _decode_snapshot(collection, snapshot)
            log.debug("Cache for '%s' refreshed with %d records", collection.value, len(snapshot))

        context._unsubscribers.append(context.store.subscribe(collection.value, _listener))


def detach_subscriptions(context: RuntimeContext) -> None:
    while context._unsubscribers:
        context._unsubscribers.pop()()
    context._cache.clear()


def is_data_ready(context: RuntimeContext) -> bool:
    """Return ``True`` once every collection has delivered a snapshot."""

    return all(collection.value in context._cache for collection in Collection)


def build_context(
    settings: data_manager.ConfigSettings,
    store: LedgerStore,
    *,
    catalog: Optional[Catalog] = None,
) -> RuntimeContext:
    """Assemble a context around an existing store and attach its subscriptions."""

    context = RuntimeContext(settings=settings, store=store, catalog=catalog or DEFAULT_CATALOG)
    attach_subscriptions(context)
    return context


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration, open the workbook-backed store, and subscribe.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Fully populated context ready for ledger operations.

    Raises:
        FileNotFoundError: If the configuration, workbook, or catalog file
            cannot be located.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    catalog = load_catalog(settings.catalog_file)
    store = LedgerStore.from_backend(data_manager.WorkbookBackend(settings.data_file))
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return build_context(settings, store, catalog=catalog)


def close_context(context: RuntimeContext) -> None:
    """Tear down subscriptions and disconnect the store at shutdown."""

    detach_subscriptions(context)
    context.store.close()
    log.info("Closed runtime context for workbook '%s'", context.settings.data_file)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def require_connection(context: RuntimeContext) -> None:
    """Fail fast before any lookup or write when the store is unreachable."""

    if not context.store.connected:
        log.error("Operation refused: ledger store is not connected")
        raise NotConnected("Database not connected.")


def _cached(context: RuntimeContext, collection: Collection) -> List[Any]:
    if collection.value not in context._cache:
        require_connection(context)
        context._cache[collection.value] = _decode_snapshot(collection, context.store.snapshot(collection.value))
    return list(context._cache[collection.value])


def list_transactions(context: RuntimeContext) -> List[TransactionRecord]:
    return _cached(context, Collection.TRANSACTIONS)


def list_inventory(context: RuntimeContext) -> List[InventoryRecord]:
    return _cached(context, Collection.INVENTORY)


def list_menu_items(context: RuntimeContext) -> List[MenuItemRecord]:
    return _cached(context, Collection.MENU_ITEMS)


def list_customizations(context: RuntimeContext) -> List[CustomizationRecord]:
    return _cached(context, Collection.CUSTOMIZATIONS)


def list_payroll(context: RuntimeContext) -> List[PayrollRecord]:
    return _cached(context, Collection.PAYROLL)


def _resolve(context: RuntimeContext, collection: Collection, record_id: str, label: str) -> Any:
    require_connection(context)
    document = context.store.read_once(f"{collection.value}/{record_id}") if record_id else None
    if document is None:
        log.warning("%s lookup failed for id '%s'", label, record_id)
        raise NotFound(f"Unknown {label.lower()} id: {record_id}")
    _, deserialize = data_manager.CODECS[collection]
    return deserialize(record_id, document)


def get_transaction(context: RuntimeContext, transaction_id: str) -> TransactionRecord:
    """Read a transaction straight from the store.

    Raises:
        NotFound: If no transaction has ``transaction_id``.
    """
    return _resolve(context, Collection.TRANSACTIONS, transaction_id, "Transaction")


def get_menu_item(context: RuntimeContext, menu_item_id: str) -> MenuItemRecord:
    return _resolve(context, Collection.MENU_ITEMS, menu_item_id, "Menu item")


def get_customization(context: RuntimeContext, customization_id: str) -> CustomizationRecord:
    return _resolve(context, Collection.CUSTOMIZATIONS, customization_id, "Customization")


def get_inventory_item(context: RuntimeContext, item_id: str) -> InventoryRecord:
    return _resolve(context, Collection.INVENTORY, item_id, "Inventory item")


def get_payroll_entry(context: RuntimeContext, entry_id: str) -> PayrollRecord:
    return _resolve(context, Collection.PAYROLL, entry_id, "Payroll entry")


def transactions_for_sale(context: RuntimeContext, sale_id: str) -> List[TransactionRecord]:
    """Return every transaction in a sale group, read from the store."""

    require_connection(context)
    snapshot = context.store.snapshot(Collection.TRANSACTIONS.value)
    return [
        data_manager.deserialize_transaction(record_id, document)
        for record_id, document in sorted(snapshot.items())
        if document.get("saleId") == sale_id
    ]


def require_text(value: Optional[str], *, field: str) -> str:
    """Return ``value`` stripped, rejecting blanks."""
    text = (value or "").strip()
    if not text:
        log.error("Text validation failed for '%s'", field)
        raise ValidationError(f"{field} is required")
    return text


def _require_finite(amount: Decimal, *, field: str) -> None:
    value = amount if isinstance(amount, Decimal) else Decimal(amount)
    if not value.is_finite():
        log.error("Finite value validation failed for '%s': %s", field, amount)
        raise ValidationError(f"{field} must be a finite number")


def require_positive(amount: Decimal, *, field: str) -> Decimal:
    """Validate that a monetary value or quantity is strictly positive.

    Raises:
        ValidationError: If ``amount`` is not finite, zero, or negative.
    """
    _require_finite(amount, field=field)
    if amount <= Decimal("0"):
        log.error("Positive value validation failed for '%s': %s", field, amount)
        raise ValidationError(f"{field} must be greater than zero")
    return amount


def require_non_negative(amount: Decimal, *, field: str) -> Decimal:
    """Validate that a monetary value is zero or positive.

    Raises:
        ValidationError: If ``amount`` is not finite or is less than zero.
    """
    _require_finite(amount, field=field)
    if amount < Decimal("0"):
        log.error("Non-negative validation failed for '%s': %s", field, amount)
        raise ValidationError(f"{field} must be zero or positive")
    return amount


def require_positive_quantity(quantity: int) -> int:
    """Validate a sale quantity: a whole number of units above zero."""
    if isinstance(quantity, bool) or int(quantity) != quantity or quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be a whole number greater than zero")
    return int(quantity)


def _menu_category(category: str) -> str:
    try:
        return MenuCategory(category).value
    except ValueError as exc:
        raise ValidationError(f"Unknown menu category: {category!r}") from exc


def add_menu_item(context: RuntimeContext, *, name: str, price: Decimal, cost: Decimal, category: str) -> MenuItemRecord:
    """Validate and store a new menu item.

    Raises:
        ValidationError: If the name is blank, the price is not positive, the
            cost is negative, or the category is unknown.
    """
    require_connection(context)
    record = MenuItemRecord(
        menu_item_id=context.store.generate_id(Collection.MENU_ITEMS.value),
        name=require_text(name, field="Name"),
        price=require_positive(price, field="Price"),
        cost=require_non_negative(cost, field="Cost"),
        category=_menu_category(category),
    )
    context.store.atomic_write(
        {f"{Collection.MENU_ITEMS.value}/{record.menu_item_id}": data_manager.serialize_menu_item(record)}
    )
    log.info("Added menu item '%s' (%s)", record.name, record.menu_item_id)
    return record


def update_menu_item(
    context: RuntimeContext,
    menu_item_id: str,
    *,
    name: str,
    price: Decimal,
    cost: Decimal,
    category: str,
) -> MenuItemRecord:
    """Replace a menu item; recorded sales keep the amounts they captured."""
    get_menu_item(context, menu_item_id)
    record = MenuItemRecord(
        menu_item_id=menu_item_id,
        name=require_text(name, field="Name"),
        price=require_positive(price, field="Price"),
        cost=require_non_negative(cost, field="Cost"),
        category=_menu_category(category),
    )
    context.store.atomic_write(
        {f"{Collection.MENU_ITEMS.value}/{menu_item_id}": data_manager.serialize_menu_item(record)}
    )
    log.info("Updated menu item '%s'", menu_item_id)
    return record


def delete_menu_item(context: RuntimeContext, menu_item_id: str) -> None:
    get_menu_item(context, menu_item_id)
    context.store.atomic_write({f"{Collection.MENU_ITEMS.value}/{menu_item_id}": None})
    log.info("Deleted menu item '%s'", menu_item_id)


def add_customization(context: RuntimeContext, *, name: str, price: Decimal, cost: Decimal) -> CustomizationRecord:
    require_connection(context)
    record = CustomizationRecord(
        customization_id=context.store.generate_id(Collection.CUSTOMIZATIONS.value),
        name=require_text(name, field="Name"),
        price=require_non_negative(price, field="Price"),
        cost=require_non_negative(cost, field="Cost"),
    )
    context.store.atomic_write(
        {
            f"{Collection.CUSTOMIZATIONS.value}/{record.customization_id}": data_manager.serialize_customization(
                record
            )
        }
    )
    log.info("Added customization '%s' (%s)", record.name, record.customization_id)
    return record


def update_customization(
    context: RuntimeContext,
    customization_id: str,
    *,
    name: str,
    price: Decimal,
    cost: Decimal,
) -> CustomizationRecord:
    get_customization(context, customization_id)
    record = CustomizationRecord(
        customization_id=customization_id,
        name=require_text(name, field="Name"),
        price=require_non_negative(price, field="Price"),
        cost=require_non_negative(cost, field="Cost"),
    )
    context.store.atomic_write(
        {f"{Collection.CUSTOMIZATIONS.value}/{customization_id}": data_manager.serialize_customization(record)}
    )
    log.info("Updated customization '%s'", customization_id)
    return record


def delete_customization(context: RuntimeContext, customization_id: str) -> None:
    get_customization(context, customization_id)
    context.store.atomic_write({f"{Collection.CUSTOMIZATIONS.value}/{customization_id}": None})
    log.info("Deleted customization '%s'", customization_id)
