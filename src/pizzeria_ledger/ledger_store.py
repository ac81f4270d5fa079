"""Realtime document store backing the ledger.

The store keeps five collections, each a mapping of generated id to document,
and exposes the three primitives every other layer is built on:

* :meth:`LedgerStore.atomic_write` applies a ``{path: value-or-None}`` map as a
  single all-or-nothing update (``None`` deletes).
* :meth:`LedgerStore.read_once` returns a copy of a record or a collection.
* :meth:`LedgerStore.subscribe` delivers the full snapshot of a collection
  immediately and again after every committed write that touches it.

Writes are serialised with a re-entrant lock, so concurrent sessions on
different threads observe each atomic write as a whole. There is no version
check between sessions; the last write to a path wins.
"""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import UTC, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

from . import log
from .constants import Collection
from .errors import NotConnected, WriteFailure


Document = Dict[str, Any]
State = Dict[str, Dict[str, Document]]
Snapshot = Dict[str, Document]
Listener = Callable[[Snapshot], None]
Unsubscribe = Callable[[], None]

ID_PREFIXES: Mapping[str, str] = {
    Collection.TRANSACTIONS.value: "T",
    Collection.INVENTORY.value: "I",
    Collection.MENU_ITEMS.value: "M",
    Collection.PAYROLL.value: "P",
    Collection.CUSTOMIZATIONS.value: "C",
}


class Backend(Protocol):
    """Durable storage the store loads from and persists every write to."""

    def load(self) -> State: ...

    def save(self, state: Mapping[str, Mapping[str, Mapping[str, Any]]]) -> None: ...


def split_path(path: str) -> Tuple[str, Optional[str]]:
    """Split ``"collection/id"`` into its parts, validating the collection.

    Raises:
        WriteFailure: If the path is empty, too deep, or names an unknown
            collection.
    """

    parts = [part for part in str(path).strip("/").split("/") if part]
    if not parts or len(parts) > 2:
        raise WriteFailure(f"Invalid store path: {path!r}")
    if parts[0] not in ID_PREFIXES:
        raise WriteFailure(f"Unknown collection in path: {path!r}")
    return parts[0], parts[1] if len(parts) == 2 else None


def _validated_updates(updates: Mapping[str, Optional[Mapping[str, Any]]]) -> List[Tuple[str, Optional[str], Any]]:
    parsed: List[Tuple[str, Optional[str], Any]] = []
    whole_collections = set()
    record_paths = set()
    for path, value in updates.items():
        collection, record_id = split_path(path)
        if value is not None and not isinstance(value, Mapping):
            raise WriteFailure(f"Value for {path!r} must be a mapping or None")
        if record_id is None:
            whole_collections.add(collection)
            if value is not None:
                for child_id, child in value.items():
                    if not isinstance(child, Mapping):
                        raise WriteFailure(f"Record {collection}/{child_id} must be a mapping")
        else:
            if (collection, record_id) in record_paths:
                raise WriteFailure(f"Duplicate path in update: {path!r}")
            record_paths.add((collection, record_id))
        parsed.append((collection, record_id, value))

    overlapping = whole_collections & {collection for collection, _ in record_paths}
    if overlapping:
        raise WriteFailure(
            "Update mixes a collection with its own records: %s" % ", ".join(sorted(overlapping))
        )
    return parsed


class LedgerStore:
    """In-process realtime store with atomic multi-path writes."""

    def __init__(
        self,
        initial: Optional[Mapping[str, Mapping[str, Mapping[str, Any]]]] = None,
        *,
        persist: Optional[Callable[[State], None]] = None,
        connected: bool = True,
    ) -> None:
        self._lock = threading.RLock()
        self._state: State = {name: {} for name in ID_PREFIXES}
        for name, records in (initial or {}).items():
            if name not in ID_PREFIXES:
                raise ValueError(f"Unknown collection: {name}")
            self._state[name] = copy.deepcopy({str(key): dict(doc) for key, doc in records.items()})
        self._persist = persist
        self._connected = connected
        self._listeners: Dict[str, List[Listener]] = {name: [] for name in ID_PREFIXES}

    @classmethod
    def from_backend(cls, backend: Backend) -> "LedgerStore":
        """Load the backend's state and persist every later write to it."""

        store = cls(backend.load(), persist=backend.save)
        log.info("Ledger store opened with %d transactions", len(store._state[Collection.TRANSACTIONS.value]))
        return store

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        with self._lock:
            self._connected = True

    def close(self) -> None:
        """Drop every subscription and refuse further reads and writes."""

        with self._lock:
            self._connected = False
            for listeners in self._listeners.values():
                listeners.clear()
        log.debug("Ledger store closed")

    def __enter__(self) -> "LedgerStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _require_connection(self) -> None:
        if not self._connected:
            raise NotConnected("Ledger store is not connected; data cannot be loaded or saved")

    def generate_id(self, collection: str) -> str:
        """Return a unique key that sorts by creation time."""

        return self.generate_key(ID_PREFIXES[Collection(collection).value])

    @staticmethod
    def generate_key(prefix: str) -> str:
        """Return ``{prefix}{UTC timestamp}{random suffix}`` for grouping keys."""

        now = datetime.now(UTC)
        return f"{prefix}{now.strftime('%Y%m%d%H%M%S%f')}{uuid.uuid4().hex[:8]}"

    def read_once(self, path: str) -> Optional[Any]:
        """Return a copy of the record or collection at ``path``, or ``None``."""

        self._require_connection()
        collection, record_id = split_path(path)
        with self._lock:
            if record_id is None:
                return copy.deepcopy(self._state[collection])
            document = self._state[collection].get(record_id)
            return copy.deepcopy(document) if document is not None else None

    def snapshot(self, collection: str) -> Snapshot:
        """Return a copy of a whole collection (empty when it holds nothing)."""

        result = self.read_once(Collection(collection).value)
        return result or {}

    def atomic_write(self, updates: Mapping[str, Optional[Mapping[str, Any]]]) -> None:
        """Apply every path in ``updates`` together or not at all.

        Raises:
            NotConnected: If the store is closed.
            WriteFailure: If the update is malformed or the backend rejected
                the new state. The previous state is left untouched.
        """

        self._require_connection()
        if not updates:
            return
        parsed = _validated_updates(updates)

        with self._lock:
            touched = {collection for collection, _, _ in parsed}
            candidate: State = {
                name: (dict(records) if name in touched else records)
                for name, records in self._state.items()
            }
            for collection, record_id, value in parsed:
                if record_id is None:
                    candidate[collection] = (
                        {} if value is None else {str(key): copy.deepcopy(dict(doc)) for key, doc in value.items()}
                    )
                elif value is None:
                    candidate[collection].pop(record_id, None)
                else:
                    candidate[collection][record_id] = copy.deepcopy(dict(value))

            if self._persist is not None:
                try:
                    self._persist(candidate)
                except OSError as exc:
                    log.error("Atomic write rejected by backend: %s", exc)
                    raise WriteFailure(f"Store rejected the write: {exc}") from exc

            self._state = candidate
            log.debug("Committed atomic write touching %d path(s)", len(parsed))
            for collection in sorted(touched):
                self._notify(collection)

    def subscribe(self, collection: str, listener: Listener) -> Unsubscribe:
        """Deliver the current snapshot now and after every relevant write.

        While the store is disconnected the listener is never called and the
        returned callable does nothing.
        """

        name = Collection(collection).value
        with self._lock:
            if not self._connected:
                log.warning("Subscription to '%s' ignored: store not connected", name)
                return lambda: None
            self._listeners[name].append(listener)
            self._deliver(name, listener, copy.deepcopy(self._state[name]))

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners[name]:
                    self._listeners[name].remove(listener)

        return unsubscribe

    def _notify(self, collection: str) -> None:
        for listener in list(self._listeners[collection]):
            self._deliver(collection, listener, copy.deepcopy(self._state[collection]))

    @staticmethod
    def _deliver(collection: str, listener: Listener, snapshot: Snapshot) -> None:
        # A failing subscriber must not undo a committed write.
        try:
            listener(snapshot)
        except Exception:
            log.exception("Subscriber for '%s' raised while handling a snapshot", collection)
