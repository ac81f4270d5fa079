"""Data access layer for the pizzeria ledger.

This module owns everything that touches disk or converts between the typed
records used by the engines and the plain documents held by the ledger store.
Business rules belong elsewhere.

The public API is organised around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Record conversion: typed dataclasses for each collection and their
   document (camelCase mapping) representation.
3. Workbook persistence: one worksheet per collection, loaded into and saved
   from the store's state.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence, Tuple

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils.exceptions import IllegalCharacterError
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_EXPIRY_SOON_DAYS,
    DEFAULT_LOW_STOCK_THRESHOLD,
    DEFAULT_TAX_RATE,
    Collection,
)
from .errors import ValidationError, WriteFailure


CONFIG_FILE_NAME = "config.ini"

Document = Dict[str, Any]

SHEET_NAMES: Mapping[Collection, str] = {
    Collection.TRANSACTIONS: "Transactions",
    Collection.INVENTORY: "Inventory",
    Collection.MENU_ITEMS: "MenuItems",
    Collection.PAYROLL: "Payroll",
    Collection.CUSTOMIZATIONS: "Customizations",
}

# The first column of every sheet is the record id; the rest are document keys.
SHEET_COLUMNS: Mapping[Collection, Sequence[str]] = {
    Collection.TRANSACTIONS: [
        "ID",
        "type",
        "date",
        "amount",
        "description",
        "category",
        "menuItemId",
        "quantity",
        "saleId",
    ],
    Collection.INVENTORY: [
        "ID",
        "name",
        "quantity",
        "unit",
        "totalCost",
        "purchaseDate",
        "expiryDate",
        "transactionId",
    ],
    Collection.MENU_ITEMS: ["ID", "name", "price", "cost", "category"],
    Collection.PAYROLL: [
        "ID",
        "employeeName",
        "grossPay",
        "deductions",
        "netPay",
        "payDate",
        "transactionId",
    ],
    Collection.CUSTOMIZATIONS: ["ID", "name", "price", "cost"],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str
    tax_rate: Decimal = DEFAULT_TAX_RATE
    low_stock_threshold: Decimal = DEFAULT_LOW_STOCK_THRESHOLD
    expiry_soon_days: int = DEFAULT_EXPIRY_SOON_DAYS
    catalog_file: Optional[Path] = None


@dataclass(frozen=True)
class TransactionRecord:
    """A single ledger entry from the ``transactions`` collection."""

    transaction_id: str
    transaction_type: str
    date: date
    amount: Decimal
    description: str
    category: str
    menu_item_id: Optional[str] = None
    quantity: Optional[int] = None
    sale_id: Optional[str] = None


@dataclass(frozen=True)
class MenuItemRecord:
    """Sale price and ingredient cost of one menu entry."""

    menu_item_id: str
    name: str
    price: Decimal
    cost: Decimal
    category: str


@dataclass(frozen=True)
class CustomizationRecord:
    """Add-on that raises both the sale amount and the cost of a sale."""

    customization_id: str
    name: str
    price: Decimal
    cost: Decimal


@dataclass(frozen=True)
class InventoryRecord:
    """Stock purchase linked to its ``Inventory Purchase`` expense."""

    item_id: str
    name: str
    quantity: Decimal
    unit: str
    total_cost: Decimal
    purchase_date: date
    expiry_date: date
    transaction_id: Optional[str]


@dataclass(frozen=True)
class PayrollRecord:
    """Pay run for one employee linked to its ``Payroll`` expense."""

    entry_id: str
    employee_name: str
    gross_pay: Decimal
    deductions: Decimal
    net_pay: Decimal
    pay_date: date
    transaction_id: Optional[str]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ancestor directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser(inline_comment_prefixes=(";", "#"))
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Ledger]`` and ``[Catalog]`` entries
    fall back to the package defaults. Relative paths are anchored to
    ``base_path`` (or the current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor relative paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required ``[System]`` option is missing.
        ValueError: If a numeric ledger option does not parse or the tax rate
            lies outside ``[0, 1)``.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    if base_path is None:
        base_path = Path.cwd()

    tax_rate = _parse_decimal_option(parser, "Ledger", "TaxRate", DEFAULT_TAX_RATE)
    if not Decimal("0") <= tax_rate < Decimal("1"):
        raise ValueError(f"TaxRate must be within [0, 1): {tax_rate}")
    low_stock = _parse_decimal_option(parser, "Ledger", "LowStockThreshold", DEFAULT_LOW_STOCK_THRESHOLD)
    try:
        expiry_days = parser.getint("Ledger", "ExpirySoonDays", fallback=DEFAULT_EXPIRY_SOON_DAYS)
    except ValueError as exc:
        raise ValueError(f"Invalid ExpirySoonDays: {exc}") from exc

    catalog_raw = parser.get("Catalog", "File", fallback=None)
    catalog_file = _anchor(Path(catalog_raw), base_path) if catalog_raw else None

    return ConfigSettings(
        data_file=_anchor(Path(data_file_raw), base_path),
        business_name=business_name,
        schema_version=schema_version,
        tax_rate=tax_rate,
        low_stock_threshold=low_stock,
        expiry_soon_days=expiry_days,
        catalog_file=catalog_file,
    )


def _anchor(path: Path, base_path: Path) -> Path:
    if not path.is_absolute():
        path = (base_path / path).resolve()
    return path


def _parse_decimal_option(parser: configparser.ConfigParser, section: str, option: str, default: Decimal) -> Decimal:
    raw = parser.get(section, option, fallback=None)
    if raw is None:
        return default
    try:
        return Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid {option}: {raw!r}") from exc


def as_decimal(raw: object, *, field: str) -> Decimal:
    """Normalise a numeric cell or JSON value into a :class:`Decimal`.

    Floats go through ``str`` so that ``0.1`` stays ``Decimal("0.1")``.

    Raises:
        ValidationError: If ``raw`` is missing, not numeric, or not finite.
    """

    if raw is None or isinstance(raw, bool):
        raise ValidationError(f"Field '{field}' must be a number")
    if isinstance(raw, Decimal):
        value = raw
    else:
        try:
            value = Decimal(str(raw))
        except InvalidOperation as exc:
            raise ValidationError(f"Field '{field}' must be a number, got {raw!r}") from exc
    if not value.is_finite():
        raise ValidationError(f"Field '{field}' must be a finite number, got {raw!r}")
    return value


def as_date(raw: object, *, field: str) -> date:
    """Normalise ISO strings, datetimes, and dates into a :class:`date`.

    Only the calendar part of an ISO timestamp is kept.

    Raises:
        ValidationError: If ``raw`` cannot be interpreted as a date.
    """

    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            return date.fromisoformat(raw.strip()[:10])
        except ValueError as exc:
            raise ValidationError(f"Field '{field}' must be an ISO date, got {raw!r}") from exc
    raise ValidationError(f"Field '{field}' must be an ISO date")


def _optional_str(raw: object) -> Optional[str]:
    if raw is None or raw == "":
        return None
    return str(raw)


def _require_str(document: Mapping[str, Any], key: str) -> str:
    raw = document.get(key)
    if raw is None:
        raise ValidationError(f"Field '{key}' is required")
    return str(raw)


def serialize_transaction(record: TransactionRecord) -> Document:
    """Convert a transaction into its store document, omitting unset links."""

    document: Document = {
        "type": record.transaction_type,
        "date": record.date.isoformat(),
        "amount": record.amount,
        "description": record.description,
        "category": record.category,
    }
    if record.menu_item_id is not None:
        document["menuItemId"] = record.menu_item_id
    if record.quantity is not None:
        document["quantity"] = record.quantity
    if record.sale_id is not None:
        document["saleId"] = record.sale_id
    return document


def _sale_quantity(raw: object) -> int:
    quantity = as_decimal(raw, field="quantity")
    if quantity != quantity.to_integral_value() or quantity <= 0:
        raise ValidationError(f"Field 'quantity' must be a whole number above zero, got {raw!r}")
    return int(quantity)


def deserialize_transaction(transaction_id: str, document: Mapping[str, Any]) -> TransactionRecord:
    """Build a :class:`TransactionRecord` from a store document.

    Raises:
        ValidationError: If a required field is missing or malformed.
    """

    quantity_raw = document.get("quantity")
    return TransactionRecord(
        transaction_id=str(transaction_id),
        transaction_type=_require_str(document, "type"),
        date=as_date(document.get("date"), field="date"),
        amount=as_decimal(document.get("amount"), field="amount"),
        description=str(document.get("description") or ""),
        category=str(document.get("category") or ""),
        menu_item_id=_optional_str(document.get("menuItemId")),
        quantity=_sale_quantity(quantity_raw) if quantity_raw not in (None, "") else None,
        sale_id=_optional_str(document.get("saleId")),
    )


def serialize_menu_item(record: MenuItemRecord) -> Document:
    return {
        "name": record.name,
        "price": record.price,
        "cost": record.cost,
        "category": record.category,
    }


def deserialize_menu_item(menu_item_id: str, document: Mapping[str, Any]) -> MenuItemRecord:
    return MenuItemRecord(
        menu_item_id=str(menu_item_id),
        name=_require_str(document, "name"),
        price=as_decimal(document.get("price"), field="price"),
        cost=as_decimal(document.get("cost"), field="cost"),
        category=str(document.get("category") or "other"),
    )


def serialize_customization(record: CustomizationRecord) -> Document:
    return {"name": record.name, "price": record.price, "cost": record.cost}


def deserialize_customization(customization_id: str, document: Mapping[str, Any]) -> CustomizationRecord:
    return CustomizationRecord(
        customization_id=str(customization_id),
        name=_require_str(document, "name"),
        price=as_decimal(document.get("price"), field="price"),
        cost=as_decimal(document.get("cost"), field="cost"),
    )


def serialize_inventory_item(record: InventoryRecord) -> Document:
    document: Document = {
        "name": record.name,
        "quantity": record.quantity,
        "unit": record.unit,
        "totalCost": record.total_cost,
        "purchaseDate": record.purchase_date.isoformat(),
        "expiryDate": record.expiry_date.isoformat(),
    }
    if record.transaction_id is not None:
        document["transactionId"] = record.transaction_id
    return document


def deserialize_inventory_item(item_id: str, document: Mapping[str, Any]) -> InventoryRecord:
    return InventoryRecord(
        item_id=str(item_id),
        name=_require_str(document, "name"),
        quantity=as_decimal(document.get("quantity"), field="quantity"),
        unit=str(document.get("unit") or ""),
        total_cost=as_decimal(document.get("totalCost"), field="totalCost"),
        purchase_date=as_date(document.get("purchaseDate"), field="purchaseDate"),
        expiry_date=as_date(document.get("expiryDate"), field="expiryDate"),
        transaction_id=_optional_str(document.get("transactionId")),
    )


def serialize_payroll_entry(record: PayrollRecord) -> Document:
    document: Document = {
        "employeeName": record.employee_name,
        "grossPay": record.gross_pay,
        "deductions": record.deductions,
        "netPay": record.net_pay,
        "payDate": record.pay_date.isoformat(),
    }
    if record.transaction_id is not None:
        document["transactionId"] = record.transaction_id
    return document


def deserialize_payroll_entry(entry_id: str, document: Mapping[str, Any]) -> PayrollRecord:
    gross_pay = as_decimal(document.get("grossPay"), field="grossPay")
    deductions = as_decimal(document.get("deductions", 0), field="deductions")
    net_raw = document.get("netPay")
    return PayrollRecord(
        entry_id=str(entry_id),
        employee_name=_require_str(document, "employeeName"),
        gross_pay=gross_pay,
        deductions=deductions,
        net_pay=as_decimal(net_raw, field="netPay") if net_raw is not None else gross_pay - deductions,
        pay_date=as_date(document.get("payDate"), field="payDate"),
        transaction_id=_optional_str(document.get("transactionId")),
    )


CODECS: Mapping[Collection, Tuple[Callable[[Any], Document], Callable[[str, Mapping[str, Any]], Any]]] = {
    Collection.TRANSACTIONS: (serialize_transaction, deserialize_transaction),
    Collection.INVENTORY: (serialize_inventory_item, deserialize_inventory_item),
    Collection.MENU_ITEMS: (serialize_menu_item, deserialize_menu_item),
    Collection.PAYROLL: (serialize_payroll_entry, deserialize_payroll_entry),
    Collection.CUSTOMIZATIONS: (serialize_customization, deserialize_customization),
}


def canonical_document(collection: Collection, record_id: str, document: Mapping[str, Any]) -> Document:
    """Round a raw document through its codec so types are normalised.

    Raises:
        ValidationError: If the document cannot be decoded.
    """

    serialize, deserialize = CODECS[collection]
    return serialize(deserialize(record_id, document))


def create_blank_workbook(sheet_columns: Mapping[Collection, Sequence[str]] = SHEET_COLUMNS) -> Workbook:
    """Return a workbook with one bold-headed sheet per collection."""

    workbook = openpyxl.Workbook()
    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for collection, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=SHEET_NAMES[collection])
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font
    return workbook


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook, replacing ``destination`` in a single rename.

    The workbook is first written next to the target so a failed save never
    leaves a truncated ledger behind.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    staging = dest.with_name(f".{dest.stem}.tmp{dest.suffix}")
    try:
        workbook.save(staging)
        staging.replace(dest)
    finally:
        if staging.exists():
            staging.unlink()


def iter_documents(workbook: Workbook, collection: Collection) -> Iterable[Tuple[str, Document]]:
    """Stream ``(id, document)`` pairs from a collection's worksheet.

    Header and fully empty rows are skipped. Empty cells are omitted from the
    document so optional links stay absent rather than ``None``.

    Raises:
        KeyError: If the worksheet header lacks the ``ID`` column.
    """

    sheet = workbook[SHEET_NAMES[collection]]
    headers = [cell.value for cell in sheet[1]]
    if "ID" not in headers:
        raise KeyError(f"Sheet '{sheet.title}' has no ID column")
    id_index = headers.index("ID")
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if not any(cell is not None for cell in raw):
            continue
        record_id = raw[id_index]
        document = {
            header: value
            for header, value in zip(headers, raw)
            if header not in (None, "ID") and value is not None
        }
        yield str(record_id), document


def load_collections(workbook: Workbook) -> Dict[str, Dict[str, Document]]:
    """Decode every sheet into the store's ``{collection: {id: document}}`` shape.

    Sheets missing from older workbooks load as empty collections.
    """

    state: Dict[str, Dict[str, Document]] = {}
    for collection in Collection:
        if SHEET_NAMES[collection] not in workbook.sheetnames:
            log.warning("Workbook has no '%s' sheet; starting it empty", SHEET_NAMES[collection])
            state[collection.value] = {}
            continue
        state[collection.value] = {
            record_id: canonical_document(collection, record_id, document)
            for record_id, document in iter_documents(workbook, collection)
        }
    log.debug("Loaded %s", ", ".join(f"{name}={len(rows)}" for name, rows in state.items()))
    return state


def serialize_row(collection: Collection, record_id: str, document: Mapping[str, Any]) -> list[object]:
    """Flatten a document into the worksheet column ordering.

    Decimals are written as text; openpyxl reads numeric cells back as
    floats, which would lose the exact split of a sale.
    """

    columns = SHEET_COLUMNS[collection]
    values = (document.get(column) for column in columns[1:])
    return [record_id, *(str(value) if isinstance(value, Decimal) else value for value in values)]


def write_collections(workbook: Workbook, state: Mapping[str, Mapping[str, Mapping[str, Any]]]) -> None:
    """Replace every data row in the workbook with the supplied state."""

    for collection in Collection:
        sheet_name = SHEET_NAMES[collection]
        if sheet_name in workbook.sheetnames:
            sheet = workbook[sheet_name]
            if sheet.max_row > 1:
                sheet.delete_rows(2, sheet.max_row - 1)
        else:
            sheet = workbook.create_sheet(title=sheet_name)
            sheet.append(list(SHEET_COLUMNS[collection]))
        for record_id, document in state.get(collection.value, {}).items():
            sheet.append(serialize_row(collection, record_id, document))


class WorkbookBackend:
    """Durable backend for the ledger store, one worksheet per collection."""

    def __init__(self, data_file: Path) -> None:
        self.data_file = Path(data_file).expanduser().resolve()

    def load(self) -> Dict[str, Dict[str, Document]]:
        return load_collections(open_workbook(self.data_file))

    def save(self, state: Mapping[str, Mapping[str, Mapping[str, Any]]]) -> None:
        """Write ``state`` to the workbook.

        Raises:
            WriteFailure: If a value cannot be stored in a cell.
            OSError: If the workbook file cannot be written.
        """
        workbook = create_blank_workbook()
        try:
            write_collections(workbook, state)
        except (IllegalCharacterError, ValueError) as exc:
            log.error("Workbook rejected ledger data: %s", exc)
            raise WriteFailure(f"Workbook rejected the write: {exc}") from exc
        save_workbook(workbook, self.data_file)
        log.debug("Persisted ledger workbook '%s'", self.data_file)
