"""In-memory entity store for Mandi Ledger.

The store owns the collections the engine operates on and nothing else: it
assigns canonical identifiers, resolves external aliases, and provides the
snapshot and lock primitives the business layer uses to make each mutation
all-or-nothing. Business rules live in :mod:`mandi_ledger.core_logic` and the
reconciliation engine.
"""

from __future__ import annotations

import copy
import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from . import log
from .errors import MissingReferenceError
from .models import (
    Buyer,
    CashFlowTransaction,
    Entry,
    EntryItem,
    Invoice,
    Product,
    Supplier,
    SupplierInvoice,
)


_COLLECTIONS = (
    "buyers",
    "suppliers",
    "products",
    "entries",
    "invoices",
    "supplier_invoices",
    "transactions",
)


@dataclass(frozen=True)
class StoreSnapshot:
    """Saved field values of every record plus the id bookkeeping."""

    collections: Dict[str, List[Tuple[str, object, Dict[str, object]]]]
    items: List[Tuple[EntryItem, Dict[str, object]]]
    aliases: Dict[str, str]
    sequence: int


def _copy_state(state: Dict[str, object]) -> Dict[str, object]:
    # An entry's item list is copied shallowly; the items are saved on their own.
    return {
        key: list(value) if key == "items" and value and isinstance(value[0], EntryItem) else copy.deepcopy(value)
        for key, value in state.items()
    }


def _load_state(record: object, state: Dict[str, object]) -> None:
    fields = vars(record)
    fields.clear()
    fields.update(_copy_state(state))


def generate_id(prefix: str) -> str:
    """Return a new canonical identifier such as ``inv_3f2a9c1e0b7d``."""

    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass
class EntityStore:
    """Keyed collections for every entity the engine manages.

    Collections are insertion-ordered dictionaries keyed by canonical id. The
    ``aliases`` map translates an external identifier scheme into canonical
    ids; every lookup consults it first.
    """

    buyers: Dict[str, Buyer] = field(default_factory=dict)
    suppliers: Dict[str, Supplier] = field(default_factory=dict)
    products: Dict[str, Product] = field(default_factory=dict)
    entries: Dict[str, Entry] = field(default_factory=dict)
    invoices: Dict[str, Invoice] = field(default_factory=dict)
    supplier_invoices: Dict[str, SupplierInvoice] = field(default_factory=dict)
    transactions: Dict[str, CashFlowTransaction] = field(default_factory=dict)
    aliases: Dict[str, str] = field(default_factory=dict)
    sequence: int = 0
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def next_sequence(self) -> int:
        """Return the next insertion sequence number."""

        self.sequence += 1
        return self.sequence

    def register_alias(self, alias: Optional[str], canonical_id: str) -> None:
        """Map an external identifier onto a canonical id."""

        if not alias or alias == canonical_id:
            return
        existing = self.aliases.get(alias)
        if existing is not None and existing != canonical_id:
            raise ValueError(f"Alias '{alias}' already refers to '{existing}'")
        self.aliases[alias] = canonical_id

    def resolve_id(self, identifier: str) -> str:
        """Translate an alias to its canonical id, or return the id unchanged."""

        return self.aliases.get(identifier, identifier)

    def drop_aliases_for(self, canonical_id: str) -> None:
        for alias in [key for key, value in self.aliases.items() if value == canonical_id]:
            del self.aliases[alias]

    def _lookup(self, collection: str, identifier: str, label: str):
        bucket = getattr(self, collection)
        canonical = self.resolve_id(identifier)
        try:
            return bucket[canonical]
        except KeyError as exc:
            log.warning("%s lookup failed for id '%s'", label.capitalize(), identifier)
            raise MissingReferenceError(f"Unknown {label} id: {identifier}") from exc

    def get_buyer(self, buyer_id: str) -> Buyer:
        return self._lookup("buyers", buyer_id, "buyer")

    def get_supplier(self, supplier_id: str) -> Supplier:
        return self._lookup("suppliers", supplier_id, "supplier")

    def get_product(self, product_id: str) -> Product:
        return self._lookup("products", product_id, "product")

    def get_entry(self, entry_id: str) -> Entry:
        return self._lookup("entries", entry_id, "entry")

    def get_invoice(self, invoice_id: str) -> Invoice:
        return self._lookup("invoices", invoice_id, "invoice")

    def get_supplier_invoice(self, invoice_id: str) -> SupplierInvoice:
        return self._lookup("supplier_invoices", invoice_id, "supplier invoice")

    def get_transaction(self, transaction_id: str) -> CashFlowTransaction:
        return self._lookup("transactions", transaction_id, "transaction")

    def find_entry_for_item(self, item_id: str) -> Tuple[Entry, EntryItem]:
        """Return the entry owning ``item_id`` together with the item itself.

        Raises:
            MissingReferenceError: If no entry contains the item.
        """

        for entry in self.entries.values():
            for item in entry.items:
                if item.id == item_id:
                    return entry, item
        log.warning("Entry item lookup failed for id '%s'", item_id)
        raise MissingReferenceError(f"Unknown entry item id: {item_id}")

    def iter_entry_items(self) -> Iterable[Tuple[Entry, EntryItem]]:
        for entry in self.entries.values():
            for item in entry.items:
                yield entry, item

    def invoices_for_buyer(self, buyer_id: str) -> List[Invoice]:
        return [invoice for invoice in self.invoices.values() if invoice.buyer_id == buyer_id]

    def supplier_invoices_for_supplier(self, supplier_id: str) -> List[SupplierInvoice]:
        return [
            invoice for invoice in self.supplier_invoices.values() if invoice.supplier_id == supplier_id
        ]

    def snapshot(self) -> StoreSnapshot:
        """Capture the state of every record for rollback.

        Each record is saved as a reference to the live object together with
        a copy of its fields, so :meth:`restore` can rewind the objects
        callers already hold. Entry items are saved the same way.
        """

        return StoreSnapshot(
            collections={
                name: [
                    (record_id, record, _copy_state(vars(record)))
                    for record_id, record in getattr(self, name).items()
                ]
                for name in _COLLECTIONS
            },
            items=[(item, _copy_state(vars(item))) for _, item in self.iter_entry_items()],
            aliases=dict(self.aliases),
            sequence=self.sequence,
        )

    def restore(self, snapshot: StoreSnapshot) -> None:
        """Rewind the store in place to the state captured by ``snapshot``.

        Collections keep their identity and records created since the
        snapshot are dropped. Surviving records get their saved field values
        back, so references handed out earlier stay attached to the store.
        """

        for name in _COLLECTIONS:
            bucket = getattr(self, name)
            bucket.clear()
            for record_id, record, state in snapshot.collections[name]:
                _load_state(record, state)
                bucket[record_id] = record
        for item, state in snapshot.items:
            _load_state(item, state)
        self.aliases.clear()
        self.aliases.update(snapshot.aliases)
        self.sequence = snapshot.sequence
        log.debug("Restored entity store from snapshot (sequence=%d)", snapshot.sequence)


__all__ = ["EntityStore", "StoreSnapshot", "generate_id"]
