"""Export and import of the mutable collections.

JSON export writes ``transactions``, ``inventory``, ``menuItems`` and
``payroll`` as ``{collection: {id: document}}`` with amounts as decimal
strings. Import is the reverse and replaces all four collections in one
atomic write; nothing is written unless every document decodes. The CSV
export mirrors the P&L listing.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping

from . import core_logic, data_manager, log
from .constants import MUTABLE_COLLECTIONS, Collection
from .core_logic import RuntimeContext
from .data_manager import TransactionRecord
from .errors import ValidationError
from .reports import ledger_newest_first


CSV_HEADERS = ("ID", "Type", "Date", "Description", "Category", "Amount")


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def export_json(context: RuntimeContext, *, indent: int = 2) -> str:
    """Serialise the four mutable collections to a JSON document."""

    core_logic.require_connection(context)
    payload: Dict[str, Any] = {"exportedAt": datetime.now(UTC).isoformat()}
    for collection in MUTABLE_COLLECTIONS:
        payload[collection.value] = context.store.snapshot(collection.value)
    log.info(
        "Exported %s",
        ", ".join(f"{collection.value}={len(payload[collection.value])}" for collection in MUTABLE_COLLECTIONS),
    )
    return json.dumps(payload, default=_encode, indent=indent, sort_keys=True)


def _records_of(collection: Collection, raw: Any) -> Dict[str, Dict[str, Any]]:
    """Accept ``{id: document}`` or ``[{"id": ..., ...}]`` and canonicalise."""

    if raw is None:
        return {}
    if isinstance(raw, list):
        items = {}
        for entry in raw:
            if not isinstance(entry, Mapping) or not entry.get("id"):
                raise ValidationError(f"Every '{collection.value}' entry needs an id")
            items[str(entry["id"])] = {key: value for key, value in entry.items() if key != "id"}
        raw = items
    if not isinstance(raw, Mapping):
        raise ValidationError(f"'{collection.value}' must be an object keyed by id")
    records = {}
    for record_id, document in raw.items():
        if "/" in str(record_id) or not str(record_id).strip():
            raise ValidationError(f"Invalid {collection.value} id: {record_id!r}")
        if not isinstance(document, Mapping):
            raise ValidationError(f"Record {collection.value}/{record_id} must be an object")
        records[str(record_id)] = data_manager.canonical_document(collection, str(record_id), document)
    return records


def parse_import(text: str) -> Dict[str, Dict[str, Dict[str, Any]]]:
    """Decode an export document into store-ready collections.

    Raises:
        ValidationError: If the text is not JSON, lacks a collection, or holds
            a document that does not decode.
    """

    try:
        payload = json.loads(text, parse_float=Decimal)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Import file is not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ValidationError("Import file must contain a JSON object")
    missing = [collection.value for collection in MUTABLE_COLLECTIONS if collection.value not in payload]
    if missing:
        raise ValidationError(f"Import file is missing collections: {', '.join(missing)}")
    return {collection.value: _records_of(collection, payload[collection.value]) for collection in MUTABLE_COLLECTIONS}


def import_json(context: RuntimeContext, text: str) -> Dict[str, int]:
    """Replace the four mutable collections with the contents of ``text``.

    Returns:
        dict[str, int]: Record count per imported collection.

    Raises:
        NotConnected: If the store is unreachable.
        ValidationError: If the document is malformed; the store is untouched.
        WriteFailure: If the store rejected the write.
    """

    core_logic.require_connection(context)
    collections = parse_import(text)
    context.store.atomic_write(dict(collections))
    counts = {name: len(records) for name, records in collections.items()}
    log.info("Imported %s", ", ".join(f"{name}={count}" for name, count in counts.items()))
    return counts


def export_pnl_csv(transactions: Iterable[TransactionRecord]) -> str:
    """Render the P&L listing (newest first) as CSV text."""

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for transaction in ledger_newest_first(transactions):
        writer.writerow(
            [
                transaction.transaction_id,
                transaction.transaction_type,
                transaction.date.isoformat(),
                transaction.description,
                transaction.category,
                str(transaction.amount),
            ]
        )
    return buffer.getvalue()
