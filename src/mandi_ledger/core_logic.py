"""Business logic layer for Mandi Ledger.

This module orchestrates every mutation of the commission-agent ledger:
master data, supplier entries and their auction, buyer and supplier invoices,
and the cash book. Each write runs through :func:`mutation`, which snapshots
the :class:`~mandi_ledger.store.EntityStore`, applies the change, rebuilds
every derived balance with :func:`~mandi_ledger.reconciler.reconcile`, and
rolls the store back if any step raises. Workbook I/O is delegated to
:mod:`mandi_ledger.data_manager`.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .allocation import plan_allocation, select_unpaid, sum_advances_for_entries, validate_payment_amount
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    ZERO,
    EntryStatus,
    ExpenseCategory,
    PaymentMethod,
    TransactionType,
)
from .entry_status import refresh_entry_status
from .errors import BusinessRuleViolation, LedgerConsistencyError, MissingReferenceError
from .invoicing import (
    aggregate_supplier_items,
    build_buyer_invoice_items,
    build_buyer_totals,
    build_supplier_totals,
    buyer_invoice_balance,
    calculate_default_wages,
    supplier_invoice_balance,
)
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
from .reconciler import ReconciliationSummary, reconcile
from .store import EntityStore, generate_id


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, the entity store, and the backing workbook."""

    settings: data_manager.ConfigSettings
    store: EntityStore
    workbook: Optional[Workbook] = None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BuyerDetails:
    """User intent for creating or editing a buyer."""

    buyer_name: str
    display_name: Optional[str] = None
    alias: Optional[str] = None
    token_number: Optional[str] = None
    contact_number: Optional[str] = None
    place: Optional[str] = None
    description: Optional[str] = None
    external_id: Optional[str] = None


@dataclass(frozen=True)
class SupplierDetails:
    """User intent for creating or editing a supplier."""

    supplier_name: str
    display_name: Optional[str] = None
    contact_number: Optional[str] = None
    place: Optional[str] = None
    bank_account_details: Optional[str] = None
    external_id: Optional[str] = None


@dataclass(frozen=True)
class ProductDetails:
    """User intent for creating or editing a product."""

    product_name: str
    display_name: Optional[str] = None
    external_id: Optional[str] = None


@dataclass(frozen=True)
class EntryItemInput:
    """One lot as submitted for an entry.

    ``nett_weight`` defaults to ``gross_weight - shute_weight``. ``id`` names
    an existing item when editing an entry; unknown ids are treated as new.
    """

    product_id: str
    quantity: Decimal
    gross_weight: Decimal = ZERO
    shute_weight: Decimal = ZERO
    nett_weight: Optional[Decimal] = None
    rate_per_quantity: Optional[Decimal] = None
    buyer_id: Optional[str] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class CreateEntryCommand:
    """User intent for recording a supplier delivery."""

    supplier_id: str
    items: Sequence[EntryItemInput]
    timestamp: Optional[datetime] = None
    external_id: Optional[str] = None


@dataclass(frozen=True)
class UpdateEntryCommand:
    """User intent for replacing the item list of an entry."""

    entry_id: str
    items: Sequence[EntryItemInput]


@dataclass(frozen=True)
class SaleCommand:
    """Auction result: an entry item knocked down to a buyer at a rate."""

    entry_item_id: str
    buyer_id: str
    rate_per_quantity: Decimal


@dataclass(frozen=True)
class BuyerInvoiceCommand:
    """User intent for invoicing sold items to one buyer.

    ``wages`` defaults to the per-unit buyer wage rule when omitted.
    """

    buyer_id: str
    entry_item_ids: Sequence[str]
    wages: Optional[Decimal] = None
    adjustments: Decimal = ZERO
    discount: Decimal = ZERO
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class UpdateBuyerInvoiceCommand:
    """User intent for editing a buyer invoice; ``None`` keeps the current value."""

    invoice_id: str
    entry_item_ids: Optional[Sequence[str]] = None
    wages: Optional[Decimal] = None
    adjustments: Optional[Decimal] = None
    discount: Optional[Decimal] = None


@dataclass(frozen=True)
class SupplierInvoiceCommand:
    """User intent for settling one or more entries of a supplier."""

    entry_ids: Sequence[str]
    commission_rate: Optional[Decimal] = None
    wages: Optional[Decimal] = None
    adjustments: Decimal = ZERO
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class UpdateSupplierInvoiceCommand:
    """User intent for re-pricing a supplier invoice; ``None`` keeps the current value."""

    invoice_id: str
    commission_rate: Optional[Decimal] = None
    wages: Optional[Decimal] = None
    adjustments: Optional[Decimal] = None


@dataclass(frozen=True)
class BuyerPaymentCommand:
    """User intent for recording money received from a buyer."""

    buyer_id: str
    amount: Decimal
    discount: Decimal = ZERO
    method: PaymentMethod = PaymentMethod.CASH
    reference: Optional[str] = None
    description: Optional[str] = None
    invoice_ids: Sequence[str] = field(default_factory=tuple)
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SupplierPaymentCommand:
    """User intent for paying a supplier.

    Naming entries without invoices records an advance against goods not yet
    settled; otherwise the payment settles supplier invoices.
    """

    supplier_id: str
    amount: Decimal
    method: PaymentMethod = PaymentMethod.CASH
    reference: Optional[str] = None
    description: Optional[str] = None
    invoice_ids: Sequence[str] = field(default_factory=tuple)
    entry_ids: Sequence[str] = field(default_factory=tuple)
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ExpenseCommand:
    """User intent for a general expense not tied to a party."""

    amount: Decimal
    description: str
    method: PaymentMethod = PaymentMethod.CASH
    reference: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class UpdateTransactionCommand:
    """User intent for editing a cash book line; ``None`` keeps the current value."""

    transaction_id: str
    date: Optional[datetime] = None
    amount: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    method: Optional[PaymentMethod] = None
    reference: Optional[str] = None
    description: Optional[str] = None


# ---------------------------------------------------------------------------
# Context lifecycle
# ---------------------------------------------------------------------------


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Resolve optional timestamps into consistent, timezone-aware values.

    Args:
        candidate (datetime | None): Caller-provided timestamp, usually sourced
            from a command object. Naive values are taken to be UTC.

    Returns:
        datetime: ``candidate`` when provided, otherwise the current UTC
            datetime generated via :func:`datetime.now`.
    """

    if candidate is None:
        return datetime.now(UTC)
    if candidate.tzinfo is None:
        return candidate.replace(tzinfo=UTC)
    return candidate


def _calendar_day(moment: datetime) -> date:
    return moment.astimezone(UTC).date()


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings, the workbook, and a reconciled store.

    The helper resolves ``config.ini``, parses settings, opens the Excel
    workbook and maps every sheet into an :class:`EntityStore`. Derived
    balances are rebuilt immediately so callers never observe stale figures
    saved by an older version.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    store = data_manager.load_store(workbook)
    reconcile(store)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, store=store, workbook=workbook)


def new_runtime_context(settings: data_manager.ConfigSettings) -> RuntimeContext:
    """Return a context with an empty in-memory store and no workbook."""

    return RuntimeContext(settings=settings, store=EntityStore())


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


def persist_context(context: RuntimeContext) -> None:
    """Write the store into the workbook and save it to the configured path.

    Raises:
        RuntimeError: If the context was created without a workbook.
    """

    if context.workbook is None:
        raise RuntimeError("Runtime context has no workbook to persist")
    data_manager.write_store(context.workbook, context.store)
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context with a newly opened workbook and a store
            rebuilt from it.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """

    workbook = data_manager.refresh_workbook(context.settings.data_file)
    store = data_manager.load_store(workbook)
    reconcile(store)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, store=store, workbook=workbook)


@contextmanager
def mutation(context: RuntimeContext) -> Iterator[EntityStore]:
    """Run a block of changes as one all-or-nothing ledger mutation.

    The store lock is held for the whole block. On normal exit the ledger is
    reconciled; if the block or the reconciliation raises, the store is
    restored from the snapshot taken on entry and the exception propagates.
    """

    store = context.store
    with store.lock:
        snapshot = store.snapshot()
        try:
            yield store
            reconcile(store)
        except Exception:
            store.restore(snapshot)
            log.warning("Mutation rolled back; store restored to its previous state")
            raise


def reconcile_ledger(context: RuntimeContext) -> ReconciliationSummary:
    """Rebuild every derived balance on demand."""

    with mutation(context) as store:
        summary = reconcile(store)
    log.info(
        "Reconciled ledger (receivable=%s, payable=%s)",
        summary.total_receivable,
        summary.total_payable,
    )
    return summary


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_positive_quantity(quantity: Decimal) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero or negative.
    """

    if quantity <= Decimal("0"):
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """

    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def _require_name(value: Optional[str], label: str) -> str:
    name = (value or "").strip()
    if not name:
        log.warning("Rejected %s without a name", label)
        raise BusinessRuleViolation(f"{label.capitalize()} name is required")
    return name


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


def _next_daily_counter(numbers: Iterable[str]) -> int:
    counters = []
    for number in numbers:
        suffix = number.rsplit("-", 1)[-1]
        if suffix.isdigit():
            counters.append(int(suffix))
    return max(counters, default=0) + 1


def generate_entry_serial(store: EntityStore, when: datetime) -> str:
    """Return the next ``MMDD-NNN`` serial for the calendar day of ``when``."""

    day = _calendar_day(when)
    same_day = [entry.serial_number for entry in store.entries.values() if _calendar_day(entry.created_at) == day]
    return f"{day:%m%d}-{_next_daily_counter(same_day):03d}"


def generate_invoice_number(prefix: str, existing: Iterable[str], when: datetime) -> str:
    """Return the next ``{prefix}-YYYYMMDD-NNN`` number for the day of ``when``."""

    stem = f"{prefix}-{_calendar_day(when):%Y%m%d}-"
    return f"{stem}{_next_daily_counter(number for number in existing if number.startswith(stem)):03d}"


# ---------------------------------------------------------------------------
# Master data
# ---------------------------------------------------------------------------


def list_buyers(context: RuntimeContext) -> List[Buyer]:
    return sorted(context.store.buyers.values(), key=lambda buyer: buyer.buyer_name.lower())


def list_suppliers(context: RuntimeContext) -> List[Supplier]:
    return sorted(context.store.suppliers.values(), key=lambda supplier: supplier.supplier_name.lower())


def list_products(context: RuntimeContext) -> List[Product]:
    return sorted(context.store.products.values(), key=lambda product: product.product_name.lower())


def add_buyer(context: RuntimeContext, details: BuyerDetails) -> Buyer:
    """Register a new buyer.

    Raises:
        BusinessRuleViolation: If the name is blank.
        ValueError: If ``external_id`` already names another record.
    """

    name = _require_name(details.buyer_name, "buyer")
    with mutation(context) as store:
        buyer = Buyer(
            id=generate_id("b"),
            buyer_name=name,
            display_name=details.display_name or name,
            alias=details.alias,
            token_number=details.token_number,
            contact_number=details.contact_number,
            place=details.place,
            description=details.description,
            external_id=details.external_id,
        )
        store.register_alias(details.external_id, buyer.id)
        store.buyers[buyer.id] = buyer
    log.info("Created buyer '%s' (%s)", buyer.buyer_name, buyer.id)
    return buyer


def update_buyer(context: RuntimeContext, buyer_id: str, details: BuyerDetails) -> Buyer:
    """Replace the descriptive fields of a buyer; ``outstanding`` is untouched."""

    name = _require_name(details.buyer_name, "buyer")
    with mutation(context) as store:
        buyer = store.get_buyer(buyer_id)
        buyer.buyer_name = name
        buyer.display_name = details.display_name or name
        buyer.alias = details.alias
        buyer.token_number = details.token_number
        buyer.contact_number = details.contact_number
        buyer.place = details.place
        buyer.description = details.description
        if details.external_id and details.external_id != buyer.external_id:
            store.register_alias(details.external_id, buyer.id)
            buyer.external_id = details.external_id
    log.info("Updated buyer '%s'", buyer.id)
    return buyer


def delete_buyer(context: RuntimeContext, buyer_id: str) -> None:
    """Remove a buyer with a settled balance and no invoices or purchases.

    Raises:
        BusinessRuleViolation: If the buyer still owes money or is referenced
            by an invoice or an entry item.
    """

    with mutation(context) as store:
        buyer = store.get_buyer(buyer_id)
        if buyer.outstanding != ZERO:
            log.warning("Refused to delete buyer '%s' with outstanding %s", buyer.id, buyer.outstanding)
            raise BusinessRuleViolation(
                f"Buyer {buyer.buyer_name} has an outstanding balance of {buyer.outstanding}"
            )
        if store.invoices_for_buyer(buyer.id) or any(item.buyer_id == buyer.id for _, item in store.iter_entry_items()):
            log.warning("Refused to delete buyer '%s' referenced by sales", buyer.id)
            raise BusinessRuleViolation(f"Buyer {buyer.buyer_name} is referenced by sales or invoices")
        del store.buyers[buyer.id]
        store.drop_aliases_for(buyer.id)
    log.info("Deleted buyer '%s'", buyer.id)


def add_supplier(context: RuntimeContext, details: SupplierDetails) -> Supplier:
    """Register a new supplier.

    Raises:
        BusinessRuleViolation: If the name is blank.
    """

    name = _require_name(details.supplier_name, "supplier")
    with mutation(context) as store:
        supplier = Supplier(
            id=generate_id("s"),
            supplier_name=name,
            display_name=details.display_name or name,
            contact_number=details.contact_number,
            place=details.place,
            bank_account_details=details.bank_account_details,
            external_id=details.external_id,
        )
        store.register_alias(details.external_id, supplier.id)
        store.suppliers[supplier.id] = supplier
    log.info("Created supplier '%s' (%s)", supplier.supplier_name, supplier.id)
    return supplier


def update_supplier(context: RuntimeContext, supplier_id: str, details: SupplierDetails) -> Supplier:
    name = _require_name(details.supplier_name, "supplier")
    with mutation(context) as store:
        supplier = store.get_supplier(supplier_id)
        supplier.supplier_name = name
        supplier.display_name = details.display_name or name
        supplier.contact_number = details.contact_number
        supplier.place = details.place
        supplier.bank_account_details = details.bank_account_details
        if details.external_id and details.external_id != supplier.external_id:
            store.register_alias(details.external_id, supplier.id)
            supplier.external_id = details.external_id
    log.info("Updated supplier '%s'", supplier.id)
    return supplier


def delete_supplier(context: RuntimeContext, supplier_id: str) -> None:
    """Remove a supplier with a settled balance and no entries.

    Raises:
        BusinessRuleViolation: If money is still owed either way or any entry
            belongs to the supplier.
    """

    with mutation(context) as store:
        supplier = store.get_supplier(supplier_id)
        if supplier.outstanding != ZERO:
            log.warning("Refused to delete supplier '%s' with outstanding %s", supplier.id, supplier.outstanding)
            raise BusinessRuleViolation(
                f"Supplier {supplier.supplier_name} has an outstanding balance of {supplier.outstanding}"
            )
        if any(entry.supplier_id == supplier.id for entry in store.entries.values()):
            log.warning("Refused to delete supplier '%s' with entries", supplier.id)
            raise BusinessRuleViolation(f"Supplier {supplier.supplier_name} has recorded entries")
        del store.suppliers[supplier.id]
        store.drop_aliases_for(supplier.id)
    log.info("Deleted supplier '%s'", supplier.id)


def add_product(context: RuntimeContext, details: ProductDetails) -> Product:
    name = _require_name(details.product_name, "product")
    with mutation(context) as store:
        product = Product(
            id=generate_id("p"),
            product_name=name,
            display_name=details.display_name or name,
            external_id=details.external_id,
        )
        store.register_alias(details.external_id, product.id)
        store.products[product.id] = product
    log.info("Created product '%s' (%s)", product.product_name, product.id)
    return product


def update_product(context: RuntimeContext, product_id: str, details: ProductDetails) -> Product:
    name = _require_name(details.product_name, "product")
    with mutation(context) as store:
        product = store.get_product(product_id)
        product.product_name = name
        product.display_name = details.display_name or name
        if details.external_id and details.external_id != product.external_id:
            store.register_alias(details.external_id, product.id)
            product.external_id = details.external_id
    log.info("Updated product '%s'", product.id)
    return product


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a product no entry item refers to.

    Raises:
        BusinessRuleViolation: If any entry item uses the product.
    """

    with mutation(context) as store:
        product = store.get_product(product_id)
        if any(item.product_id == product.id for _, item in store.iter_entry_items()):
            log.warning("Refused to delete product '%s' used by entries", product.id)
            raise BusinessRuleViolation(f"Product {product.product_name} is used by existing entries")
        del store.products[product.id]
        store.drop_aliases_for(product.id)
    log.info("Deleted product '%s'", product.id)


# ---------------------------------------------------------------------------
# Entries and auction
# ---------------------------------------------------------------------------


def _build_entry_item(
    store: EntityStore,
    item_input: EntryItemInput,
    *,
    item_id: str,
    sub_serial_number: int,
) -> EntryItem:
    product = store.get_product(item_input.product_id)
    quantity = Decimal(item_input.quantity)
    require_positive_quantity(quantity)
    gross_weight = Decimal(item_input.gross_weight)
    shute_weight = Decimal(item_input.shute_weight)
    require_nonnegative_money(gross_weight)
    require_nonnegative_money(shute_weight)
    if item_input.nett_weight is not None:
        nett_weight = Decimal(item_input.nett_weight)
    else:
        nett_weight = gross_weight - shute_weight
    if nett_weight < ZERO:
        log.error("Nett weight validation failed for product '%s': %s", product.id, nett_weight)
        raise ValueError("Nett weight must be zero or positive")

    buyer_id = store.get_buyer(item_input.buyer_id).id if item_input.buyer_id else None
    rate = None
    if item_input.rate_per_quantity is not None:
        rate = Decimal(item_input.rate_per_quantity)
        require_nonnegative_money(rate)

    item = EntryItem(
        id=item_id,
        sub_serial_number=sub_serial_number,
        product_id=product.id,
        quantity=quantity,
        gross_weight=gross_weight,
        shute_weight=shute_weight,
        nett_weight=nett_weight,
        rate_per_quantity=rate,
        buyer_id=buyer_id,
    )
    if item.is_sold:
        item.sub_total = quantity * rate
    return item


def _require_open_entry(entry: Entry) -> None:
    if entry.status == EntryStatus.CANCELLED:
        log.warning("Rejected change to cancelled entry '%s'", entry.serial_number)
        raise BusinessRuleViolation(f"Entry {entry.serial_number} is cancelled")


def create_entry(context: RuntimeContext, command: CreateEntryCommand) -> Entry:
    """Record a supplier delivery for the calendar day of its timestamp.

    Items are numbered ``1..n`` in submission order and the entry receives the
    next ``MMDD-NNN`` serial of that day.

    Args:
        context (RuntimeContext): Runtime context holding the store.
        command (CreateEntryCommand): Supplier and item lines.

    Returns:
        Entry: The created entry with its derived status.

    Raises:
        MissingReferenceError: If the supplier, a product, or a buyer is
            unknown.
        BusinessRuleViolation: If the supplier already has an entry that day.
        ValueError: When quantity or weight validations fail.
    """

    timestamp = _resolve_timestamp(command.timestamp)
    with mutation(context) as store:
        supplier = store.get_supplier(command.supplier_id)
        day = _calendar_day(timestamp)
        for existing in store.entries.values():
            if existing.supplier_id == supplier.id and _calendar_day(existing.created_at) == day:
                log.warning(
                    "Rejected second entry for supplier '%s' on %s (existing %s)",
                    supplier.id,
                    day,
                    existing.serial_number,
                )
                raise BusinessRuleViolation(
                    f"An entry for this supplier already exists for {day.isoformat()} "
                    f"(Serial #: {existing.serial_number})"
                )

        entry = Entry(
            id=generate_id("e"),
            serial_number=generate_entry_serial(store, timestamp),
            supplier_id=supplier.id,
            created_at=timestamp,
            external_id=command.external_id,
        )
        entry.items = [
            _build_entry_item(store, item_input, item_id=generate_id("ei"), sub_serial_number=index)
            for index, item_input in enumerate(command.items, start=1)
        ]
        entry.last_sub_serial_number = len(entry.items)
        refresh_entry_status(entry)
        store.register_alias(command.external_id, entry.id)
        store.entries[entry.id] = entry
    log.info(
        "Created entry '%s' for supplier '%s' with %d item(s)",
        entry.serial_number,
        supplier.supplier_name,
        len(entry.items),
    )
    return entry


def update_entry(context: RuntimeContext, command: UpdateEntryCommand) -> Entry:
    """Replace the items of an entry that has not been settled with its supplier.

    Before any item has a buyer the list is renumbered in submission order.
    Once the auction has started, existing items keep their sub-serial number
    and new items continue from ``last_sub_serial_number``. Items already on
    a buyer invoice are kept exactly as invoiced and cannot be removed.

    Raises:
        BusinessRuleViolation: If the entry is cancelled or on a supplier
            invoice, or if an invoiced item is missing from the new list.
    """

    with mutation(context) as store:
        entry = store.get_entry(command.entry_id)
        _require_open_entry(entry)
        if any(item.supplier_invoice_id is not None for item in entry.items):
            log.warning("Rejected edit of supplier-invoiced entry '%s'", entry.serial_number)
            raise BusinessRuleViolation(f"Entry {entry.serial_number} is already on a supplier invoice")

        originals = {item.id: item for item in entry.items}
        submitted_ids = {item_input.id for item_input in command.items if item_input.id}
        for original in entry.items:
            if original.invoice_id is not None and original.id not in submitted_ids:
                log.warning("Rejected removal of invoiced item '%s'", original.id)
                raise BusinessRuleViolation(
                    f"Item #{original.sub_serial_number} of entry {entry.serial_number} is on a buyer invoice"
                )

        auction_started = any(item.buyer_id for item in entry.items) or any(
            item_input.buyer_id for item_input in command.items
        )
        last_sub = entry.last_sub_serial_number
        items: List[EntryItem] = []
        for index, item_input in enumerate(command.items, start=1):
            original = originals.get(item_input.id) if item_input.id else None
            if original is not None and original.invoice_id is not None:
                items.append(original)
                continue
            if not auction_started:
                sub_serial = index
            elif original is not None:
                sub_serial = original.sub_serial_number
            else:
                last_sub += 1
                sub_serial = last_sub
            item_id = original.id if original is not None else generate_id("ei")
            items.append(_build_entry_item(store, item_input, item_id=item_id, sub_serial_number=sub_serial))

        entry.items = items
        entry.last_sub_serial_number = len(items) if not auction_started else last_sub
        refresh_entry_status(entry)
    log.info("Updated entry '%s' (%d item(s))", entry.serial_number, len(entry.items))
    return entry


def record_sale(context: RuntimeContext, command: SaleCommand) -> EntryItem:
    """Knock an entry item down to a buyer at ``rate_per_quantity``.

    Raises:
        MissingReferenceError: If the item or buyer is unknown.
        BusinessRuleViolation: If the item is already on a buyer invoice or
            its entry is cancelled.
        ValueError: If the rate is negative.
    """

    rate = Decimal(command.rate_per_quantity)
    require_nonnegative_money(rate)
    with mutation(context) as store:
        entry, item = store.find_entry_for_item(command.entry_item_id)
        _require_open_entry(entry)
        if item.invoice_id is not None:
            log.warning("Rejected sale of invoiced item '%s'", item.id)
            raise BusinessRuleViolation(
                f"Item #{item.sub_serial_number} of entry {entry.serial_number} is already invoiced"
            )
        buyer = store.get_buyer(command.buyer_id)
        item.buyer_id = buyer.id
        item.rate_per_quantity = rate
        item.sub_total = item.quantity * rate
        refresh_entry_status(entry)
    log.info(
        "Recorded sale of item '%s' to buyer '%s' at %s (sub total %s)",
        item.id,
        buyer.buyer_name,
        rate,
        item.sub_total,
    )
    return item


def change_item_buyer(context: RuntimeContext, entry_item_id: str, buyer_id: str) -> EntryItem:
    """Move a sold but uninvoiced item to another buyer.

    Raises:
        BusinessRuleViolation: If the item is already on a buyer invoice.
    """

    with mutation(context) as store:
        entry, item = store.find_entry_for_item(entry_item_id)
        _require_open_entry(entry)
        if item.invoice_id is not None:
            log.warning("Rejected buyer change on invoiced item '%s'", item.id)
            raise BusinessRuleViolation(
                f"Item #{item.sub_serial_number} of entry {entry.serial_number} is already invoiced"
            )
        item.buyer_id = store.get_buyer(buyer_id).id
        refresh_entry_status(entry)
    log.info("Moved item '%s' to buyer '%s'", item.id, item.buyer_id)
    return item


def cancel_entry(context: RuntimeContext, entry_id: str) -> Entry:
    """Mark an entry ``Cancelled``; the state is terminal.

    Raises:
        BusinessRuleViolation: If any item is on a buyer or supplier invoice.
    """

    with mutation(context) as store:
        entry = store.get_entry(entry_id)
        if any(item.invoice_id or item.supplier_invoice_id for item in entry.items):
            log.warning("Rejected cancellation of invoiced entry '%s'", entry.serial_number)
            raise BusinessRuleViolation(f"Entry {entry.serial_number} has invoiced items")
        entry.status = EntryStatus.CANCELLED
    log.info("Cancelled entry '%s'", entry.serial_number)
    return entry


def delete_entry(context: RuntimeContext, entry_id: str) -> None:
    """Remove an entry none of whose items has been auctioned.

    Raises:
        BusinessRuleViolation: If any item carries a buyer or a rate.
    """

    with mutation(context) as store:
        entry = store.get_entry(entry_id)
        if any(item.buyer_id is not None or item.rate_per_quantity is not None for item in entry.items):
            log.warning("Rejected deletion of auctioned entry '%s'", entry.serial_number)
            raise BusinessRuleViolation(f"Entry {entry.serial_number} has auctioned items")
        del store.entries[entry.id]
        store.drop_aliases_for(entry.id)
    log.info("Deleted entry '%s'", entry.serial_number)


def list_draft_items_for_buyer(context: RuntimeContext, buyer_id: str) -> List[Tuple[Entry, EntryItem]]:
    """Return sold, uninvoiced items of ``buyer_id`` in entry order.

    These are the candidates for the buyer's next invoice.
    """

    store = context.store
    buyer = store.get_buyer(buyer_id)
    pairs = [
        (entry, item)
        for entry, item in store.iter_entry_items()
        if entry.status != EntryStatus.CANCELLED
        and item.buyer_id == buyer.id
        and item.is_sold
        and item.invoice_id is None
    ]
    return sorted(pairs, key=lambda pair: (pair[0].created_at, pair[1].sub_serial_number))


def list_uninvoiced_entries_for_supplier(context: RuntimeContext, supplier_id: str) -> List[Entry]:
    """Return the supplier's live entries not yet on a supplier invoice, oldest first."""

    store = context.store
    supplier = store.get_supplier(supplier_id)
    entries = [
        entry
        for entry in store.entries.values()
        if entry.supplier_id == supplier.id
        and entry.status != EntryStatus.CANCELLED
        and not any(item.supplier_invoice_id for item in entry.items)
    ]
    return sorted(entries, key=lambda entry: entry.created_at)


# ---------------------------------------------------------------------------
# Buyer invoices
# ---------------------------------------------------------------------------


def _product_names(store: EntityStore) -> dict[str, str]:
    return {product.id: product.product_name for product in store.products.values()}


def _collect_invoiceable_items(
    store: EntityStore,
    buyer: Buyer,
    entry_item_ids: Sequence[str],
    *,
    invoice_id: Optional[str] = None,
) -> List[Tuple[Entry, EntryItem]]:
    if not entry_item_ids:
        raise BusinessRuleViolation("An invoice needs at least one item")
    pairs: List[Tuple[Entry, EntryItem]] = []
    seen = set()
    for entry_item_id in entry_item_ids:
        if entry_item_id in seen:
            continue
        seen.add(entry_item_id)
        entry, item = store.find_entry_for_item(entry_item_id)
        if entry.status == EntryStatus.CANCELLED:
            log.warning("Rejected invoicing of item '%s' from cancelled entry", item.id)
            raise BusinessRuleViolation(f"Entry {entry.serial_number} is cancelled")
        if not item.is_sold:
            log.warning("Rejected invoicing of unsold item '%s'", item.id)
            raise BusinessRuleViolation(
                f"Item #{item.sub_serial_number} of entry {entry.serial_number} has not been sold"
            )
        if item.buyer_id != buyer.id:
            log.warning("Rejected invoicing of item '%s' sold to '%s'", item.id, item.buyer_id)
            raise BusinessRuleViolation(
                f"Item #{item.sub_serial_number} of entry {entry.serial_number} was sold to another buyer"
            )
        if item.invoice_id is not None and item.invoice_id != invoice_id:
            log.warning("Rejected invoicing of item '%s' already on '%s'", item.id, item.invoice_id)
            raise BusinessRuleViolation(
                f"Item #{item.sub_serial_number} of entry {entry.serial_number} is already invoiced"
            )
        pairs.append((entry, item))
    return pairs


def create_buyer_invoice(context: RuntimeContext, command: BuyerInvoiceCommand) -> Invoice:
    """Invoice sold items to one buyer.

    Every item must exist, be sold to the buyer, belong to a live entry and
    not already be on an invoice. Wages default to the buyer wage rate per
    qualifying unit. The invoice is numbered ``BI-YYYYMMDD-NNN`` and each
    source item is linked to it.

    Args:
        context (RuntimeContext): Runtime context holding the store and
            settings.
        command (BuyerInvoiceCommand): Buyer, items, and charges.

    Returns:
        Invoice: The new invoice after reconciliation.

    Raises:
        MissingReferenceError: If the buyer or an item is unknown.
        BusinessRuleViolation: If an item is not invoiceable.
        ValueError: If wages or discount are negative.
    """

    timestamp = _resolve_timestamp(command.timestamp)
    discount = Decimal(command.discount)
    require_nonnegative_money(discount)
    if command.wages is not None:
        require_nonnegative_money(Decimal(command.wages))

    with mutation(context) as store:
        buyer = store.get_buyer(command.buyer_id)
        pairs = _collect_invoiceable_items(store, buyer, command.entry_item_ids)
        source_items = [item for _, item in pairs]
        wages = (
            Decimal(command.wages)
            if command.wages is not None
            else calculate_default_wages(source_items, context.settings.buyer_wage_rate)
        )
        lines = build_buyer_invoice_items(source_items, _product_names(store))
        totals = build_buyer_totals(lines, wages=wages, adjustments=Decimal(command.adjustments))
        invoice = Invoice(
            id=generate_id("inv"),
            invoice_number=generate_invoice_number(
                "BI", (existing.invoice_number for existing in store.invoices.values()), timestamp
            ),
            buyer_id=buyer.id,
            created_at=timestamp,
            items=lines,
            total_quantities=totals.total_quantities,
            total_amount=totals.total_amount,
            wages=wages,
            adjustments=Decimal(command.adjustments),
            nett_amount=totals.nett_amount,
            discount=discount,
            sequence=store.next_sequence(),
        )
        store.invoices[invoice.id] = invoice
        for entry, item in pairs:
            item.invoice_id = invoice.id
        for entry in {entry.id: entry for entry, _ in pairs}.values():
            refresh_entry_status(entry)
    log.info(
        "Created buyer invoice '%s' for '%s' (nett=%s, items=%d)",
        invoice.invoice_number,
        buyer.buyer_name,
        invoice.nett_amount,
        len(invoice.items),
    )
    return invoice


def update_buyer_invoice(context: RuntimeContext, command: UpdateBuyerInvoiceCommand) -> Invoice:
    """Edit items or charges of a buyer invoice and recompute its totals.

    Items dropped from the list are released back to draft; added items must
    pass the same checks as on creation.
    """

    with mutation(context) as store:
        invoice = store.get_invoice(command.invoice_id)
        buyer = store.get_buyer(invoice.buyer_id)
        wages = Decimal(command.wages) if command.wages is not None else invoice.wages
        adjustments = Decimal(command.adjustments) if command.adjustments is not None else invoice.adjustments
        discount = Decimal(command.discount) if command.discount is not None else invoice.discount
        require_nonnegative_money(wages)
        require_nonnegative_money(discount)

        item_ids = list(command.entry_item_ids) if command.entry_item_ids is not None else [line.id for line in invoice.items]
        pairs = _collect_invoiceable_items(store, buyer, item_ids, invoice_id=invoice.id)
        keep = {item.id for _, item in pairs}
        touched = {entry.id: entry for entry, _ in pairs}
        for entry, item in store.iter_entry_items():
            if item.invoice_id == invoice.id and item.id not in keep:
                item.invoice_id = None
                touched[entry.id] = entry
        for _, item in pairs:
            item.invoice_id = invoice.id

        lines = build_buyer_invoice_items([item for _, item in pairs], _product_names(store))
        totals = build_buyer_totals(lines, wages=wages, adjustments=adjustments)
        invoice.items = lines
        invoice.total_quantities = totals.total_quantities
        invoice.total_amount = totals.total_amount
        invoice.wages = wages
        invoice.adjustments = adjustments
        invoice.discount = discount
        invoice.nett_amount = totals.nett_amount
        for entry in touched.values():
            refresh_entry_status(entry)
    log.info("Updated buyer invoice '%s' (nett=%s)", invoice.invoice_number, invoice.nett_amount)
    return invoice


def _strip_invoice_reference(store: EntityStore, invoice_id: str) -> None:
    for transaction in store.transactions.values():
        if invoice_id in transaction.related_invoice_ids:
            transaction.related_invoice_ids = [ref for ref in transaction.related_invoice_ids if ref != invoice_id]


def delete_buyer_invoice(context: RuntimeContext, invoice_id: str) -> None:
    """Delete a buyer invoice, releasing its items back to draft.

    Payments that named the invoice are kept; the reference is removed and
    their amount stays credited to the buyer.
    """

    with mutation(context) as store:
        invoice = store.get_invoice(invoice_id)
        for entry, item in list(store.iter_entry_items()):
            if item.invoice_id == invoice.id:
                item.invoice_id = None
                refresh_entry_status(entry)
        _strip_invoice_reference(store, invoice.id)
        del store.invoices[invoice.id]
    log.info("Deleted buyer invoice '%s'", invoice.invoice_number)


# ---------------------------------------------------------------------------
# Supplier invoices
# ---------------------------------------------------------------------------


def _collect_supplier_entries(store: EntityStore, entry_ids: Sequence[str]) -> List[Entry]:
    if not entry_ids:
        raise BusinessRuleViolation("A supplier invoice needs at least one entry")
    entries: List[Entry] = []
    for entry_id in dict.fromkeys(entry_ids):
        entry = store.get_entry(entry_id)
        _require_open_entry(entry)
        if any(item.supplier_invoice_id for item in entry.items):
            log.warning("Rejected re-invoicing of entry '%s'", entry.serial_number)
            raise BusinessRuleViolation(f"Entry {entry.serial_number} is already on a supplier invoice")
        entries.append(entry)
    suppliers = {entry.supplier_id for entry in entries}
    if len(suppliers) > 1:
        log.warning("Rejected supplier invoice spanning suppliers %s", sorted(suppliers))
        raise BusinessRuleViolation("All entries on a supplier invoice must belong to the same supplier")
    return entries


def _supplier_transactions(store: EntityStore, supplier_id: str) -> List[CashFlowTransaction]:
    return [
        transaction
        for transaction in store.transactions.values()
        if transaction.entity_id is not None and store.resolve_id(transaction.entity_id) == supplier_id
    ]


def create_supplier_invoice(context: RuntimeContext, command: SupplierInvoiceCommand) -> SupplierInvoice:
    """Settle one or more entries of a supplier.

    Priced items are aggregated by product and rate; commission is rounded up
    and the nett amount rounded. Wages default to the supplier wage rate per
    qualifying unit. Advances recorded against the entries are reported in
    ``advance_paid`` and applied by the reconciler. Every item of every entry
    is marked with the invoice id.

    Raises:
        MissingReferenceError: If an entry or the supplier is unknown.
        BusinessRuleViolation: If the entries span suppliers, are cancelled,
            or are already settled.
        ValueError: If commission rate or wages are negative.
    """

    timestamp = _resolve_timestamp(command.timestamp)
    commission_rate = (
        Decimal(command.commission_rate) if command.commission_rate is not None else context.settings.commission_rate
    )
    require_nonnegative_money(commission_rate)
    if command.wages is not None:
        require_nonnegative_money(Decimal(command.wages))

    with mutation(context) as store:
        entries = _collect_supplier_entries(store, command.entry_ids)
        supplier = store.get_supplier(entries[0].supplier_id)
        items = [item for entry in entries for item in entry.items]
        wages = (
            Decimal(command.wages)
            if command.wages is not None
            else calculate_default_wages(items, context.settings.supplier_wage_rate)
        )
        adjustments = Decimal(command.adjustments)
        totals = build_supplier_totals(items, commission_rate=commission_rate, wages=wages, adjustments=adjustments)
        entry_ids = [entry.id for entry in entries]
        advance_paid = sum_advances_for_entries(_supplier_transactions(store, supplier.id), entry_ids)
        supplier_invoice = SupplierInvoice(
            id=generate_id("si"),
            invoice_number=generate_invoice_number(
                "SI", (existing.invoice_number for existing in store.supplier_invoices.values()), timestamp
            ),
            supplier_id=supplier.id,
            created_at=timestamp,
            entry_ids=entry_ids,
            items=aggregate_supplier_items(items, _product_names(store)),
            total_quantities=totals.total_quantities,
            gross_total=totals.gross_total,
            commission_rate=commission_rate,
            commission_amount=totals.commission_amount,
            wages=wages,
            adjustments=adjustments,
            nett_amount=totals.nett_amount,
            advance_paid=advance_paid,
            final_payable=totals.nett_amount - advance_paid,
            sequence=store.next_sequence(),
        )
        store.supplier_invoices[supplier_invoice.id] = supplier_invoice
        for entry in entries:
            for item in entry.items:
                item.supplier_invoice_id = supplier_invoice.id
            refresh_entry_status(entry)
    log.info(
        "Created supplier invoice '%s' for '%s' (gross=%s, commission=%s, nett=%s)",
        supplier_invoice.invoice_number,
        supplier.supplier_name,
        supplier_invoice.gross_total,
        supplier_invoice.commission_amount,
        supplier_invoice.nett_amount,
    )
    return supplier_invoice


def update_supplier_invoice(context: RuntimeContext, command: UpdateSupplierInvoiceCommand) -> SupplierInvoice:
    """Recompute a supplier invoice with a new commission rate, wages, or adjustments."""

    with mutation(context) as store:
        supplier_invoice = store.get_supplier_invoice(command.invoice_id)
        commission_rate = (
            Decimal(command.commission_rate)
            if command.commission_rate is not None
            else supplier_invoice.commission_rate
        )
        wages = Decimal(command.wages) if command.wages is not None else supplier_invoice.wages
        adjustments = (
            Decimal(command.adjustments) if command.adjustments is not None else supplier_invoice.adjustments
        )
        require_nonnegative_money(commission_rate)
        require_nonnegative_money(wages)

        items = [
            item
            for entry_id in supplier_invoice.entry_ids
            if entry_id in store.entries
            for item in store.entries[entry_id].items
        ]
        totals = build_supplier_totals(items, commission_rate=commission_rate, wages=wages, adjustments=adjustments)
        supplier_invoice.items = aggregate_supplier_items(items, _product_names(store))
        supplier_invoice.total_quantities = totals.total_quantities
        supplier_invoice.gross_total = totals.gross_total
        supplier_invoice.commission_rate = commission_rate
        supplier_invoice.commission_amount = totals.commission_amount
        supplier_invoice.wages = wages
        supplier_invoice.adjustments = adjustments
        supplier_invoice.nett_amount = totals.nett_amount
    log.info(
        "Updated supplier invoice '%s' (nett=%s)",
        supplier_invoice.invoice_number,
        supplier_invoice.nett_amount,
    )
    return supplier_invoice


def delete_supplier_invoice(context: RuntimeContext, invoice_id: str) -> None:
    """Delete a supplier invoice and release its entries.

    Payments that named the invoice keep their amount against the supplier;
    only the reference is removed.
    """

    with mutation(context) as store:
        supplier_invoice = store.get_supplier_invoice(invoice_id)
        for entry in store.entries.values():
            if any(item.supplier_invoice_id == supplier_invoice.id for item in entry.items):
                for item in entry.items:
                    if item.supplier_invoice_id == supplier_invoice.id:
                        item.supplier_invoice_id = None
                refresh_entry_status(entry)
        _strip_invoice_reference(store, supplier_invoice.id)
        del store.supplier_invoices[supplier_invoice.id]
    log.info("Deleted supplier invoice '%s'", supplier_invoice.invoice_number)


# ---------------------------------------------------------------------------
# Cash flow
# ---------------------------------------------------------------------------


def _require_payment_total(amount: Decimal, discount: Decimal = ZERO) -> None:
    require_nonnegative_money(amount)
    require_nonnegative_money(discount)
    if amount + discount <= ZERO:
        log.error("Payment validation failed: amount=%s discount=%s", amount, discount)
        raise ValueError("Payment amount must be greater than zero")


def _resolve_owned_invoices(store: EntityStore, invoice_ids: Sequence[str], lookup, owner_of, owner_id: str, label: str):
    invoices = []
    for invoice_id in dict.fromkeys(invoice_ids):
        invoice = lookup(invoice_id)
        if owner_of(invoice) != owner_id:
            log.warning("Rejected payment naming %s '%s' of another party", label, invoice.invoice_number)
            raise BusinessRuleViolation(f"{label.capitalize()} {invoice.invoice_number} belongs to another party")
        invoices.append(invoice)
    return invoices


def record_buyer_payment(context: RuntimeContext, command: BuyerPaymentCommand) -> CashFlowTransaction:
    """Record money received from a buyer.

    When no invoices are named, the oldest unpaid invoices the payment covers
    are selected and stored on the transaction. The payment plus discount may
    not exceed the buyer's unpaid invoiced balance by more than ``0.01``.

    Raises:
        MissingReferenceError: If the buyer or a named invoice is unknown.
        BusinessRuleViolation: On overpayment or an invoice of another buyer.
        ValueError: If amounts are negative or both zero.
    """

    amount = Decimal(command.amount)
    discount = Decimal(command.discount)
    _require_payment_total(amount, discount)
    timestamp = _resolve_timestamp(command.timestamp)

    with mutation(context) as store:
        buyer = store.get_buyer(command.buyer_id)
        named = _resolve_owned_invoices(
            store, command.invoice_ids, store.get_invoice, lambda invoice: invoice.buyer_id, buyer.id, "invoice"
        )
        own_invoices = store.invoices_for_buyer(buyer.id)
        unpaid = select_unpaid(own_invoices, buyer_invoice_balance)
        validate_payment_amount(
            amount + discount,
            [buyer_invoice_balance(invoice) for invoice in unpaid],
            party=buyer.buyer_name,
        )
        related = [invoice.id for invoice in named] or plan_allocation(own_invoices, amount + discount, buyer_invoice_balance)
        transaction = CashFlowTransaction(
            id=generate_id("cf"),
            date=timestamp,
            type=TransactionType.INCOME,
            amount=amount,
            entity_id=buyer.id,
            entity_name=buyer.buyer_name,
            discount=discount,
            method=PaymentMethod(command.method),
            reference=command.reference,
            description=command.description or f"Payment from {buyer.buyer_name}",
            related_invoice_ids=related,
            sequence=store.next_sequence(),
        )
        store.transactions[transaction.id] = transaction
    log.info(
        "Recorded payment '%s' from '%s' (amount=%s, discount=%s, invoices=%d)",
        transaction.id,
        buyer.buyer_name,
        amount,
        discount,
        len(transaction.related_invoice_ids),
    )
    return transaction


def _validate_advance_entries(store: EntityStore, supplier: Supplier, entry_ids: Sequence[str]) -> List[Entry]:
    entries = []
    for entry_id in dict.fromkeys(entry_ids):
        entry = store.get_entry(entry_id)
        if entry.supplier_id != supplier.id:
            log.warning("Rejected advance on entry '%s' of another supplier", entry.serial_number)
            raise BusinessRuleViolation(f"Entry {entry.serial_number} does not belong to {supplier.supplier_name}")
        if any(item.supplier_invoice_id for item in entry.items):
            log.warning("Rejected advance on settled entry '%s'", entry.serial_number)
            raise BusinessRuleViolation(
                f"Entry {entry.serial_number} is already on a supplier invoice; pay the invoice instead"
            )
        entries.append(entry)
    return entries


def record_supplier_payment(context: RuntimeContext, command: SupplierPaymentCommand) -> CashFlowTransaction:
    """Record a payment or an advance to a supplier.

    A payment naming entries but no invoices is an advance: it is stored with
    the ``Advance Payment`` category, skips the balance check, and is applied
    in full to whichever supplier invoice later absorbs those entries. Any
    other payment is validated against the unpaid invoiced balance and, when
    no invoices are named, allocated to the oldest unpaid invoices.

    Raises:
        MissingReferenceError: If the supplier, an invoice, or an entry is
            unknown.
        BusinessRuleViolation: On overpayment, or when an advance names an
            entry of another supplier or one already settled.
        ValueError: If the amount is not positive.
    """

    amount = Decimal(command.amount)
    _require_payment_total(amount)
    timestamp = _resolve_timestamp(command.timestamp)

    with mutation(context) as store:
        supplier = store.get_supplier(command.supplier_id)
        is_advance = bool(command.entry_ids) and not command.invoice_ids
        if is_advance:
            entries = _validate_advance_entries(store, supplier, command.entry_ids)
            category = ExpenseCategory.ADVANCE_PAYMENT
            related_invoices: List[str] = []
            related_entries = [entry.id for entry in entries]
            default_description = "Advance for Entry(s): " + ", ".join(entry.serial_number for entry in entries)
        else:
            named = _resolve_owned_invoices(
                store,
                command.invoice_ids,
                store.get_supplier_invoice,
                lambda invoice: invoice.supplier_id,
                supplier.id,
                "supplier invoice",
            )
            own_invoices = store.supplier_invoices_for_supplier(supplier.id)
            unpaid = select_unpaid(own_invoices, supplier_invoice_balance)
            validate_payment_amount(
                amount,
                [supplier_invoice_balance(invoice) for invoice in unpaid],
                party=supplier.supplier_name,
            )
            category = ExpenseCategory.SUPPLIER_PAYMENT
            related_invoices = [invoice.id for invoice in named] or plan_allocation(
                own_invoices, amount, supplier_invoice_balance
            )
            related_entries = []
            if related_invoices:
                default_description = "Payment for Invoice(s): " + ", ".join(
                    store.supplier_invoices[invoice_id].invoice_number for invoice_id in related_invoices
                )
            else:
                default_description = f"Payment to {supplier.supplier_name}"

        transaction = CashFlowTransaction(
            id=generate_id("cf"),
            date=timestamp,
            type=TransactionType.EXPENSE,
            amount=amount,
            category=category,
            entity_id=supplier.id,
            entity_name=supplier.supplier_name,
            method=PaymentMethod(command.method),
            reference=command.reference,
            description=command.description or default_description,
            related_invoice_ids=related_invoices,
            related_entry_ids=related_entries,
            sequence=store.next_sequence(),
        )
        store.transactions[transaction.id] = transaction
    log.info(
        "Recorded %s '%s' to '%s' (amount=%s)",
        category.value.lower(),
        transaction.id,
        supplier.supplier_name,
        amount,
    )
    return transaction


def record_other_expense(context: RuntimeContext, command: ExpenseCommand) -> CashFlowTransaction:
    """Record a general expense; it moves cash but no party balance."""

    amount = Decimal(command.amount)
    _require_payment_total(amount)
    description = (command.description or "").strip()
    if not description:
        raise BusinessRuleViolation("An expense needs a description")
    timestamp = _resolve_timestamp(command.timestamp)
    with mutation(context) as store:
        transaction = CashFlowTransaction(
            id=generate_id("cf"),
            date=timestamp,
            type=TransactionType.EXPENSE,
            amount=amount,
            category=ExpenseCategory.OTHER,
            method=PaymentMethod(command.method),
            reference=command.reference,
            description=description,
            sequence=store.next_sequence(),
        )
        store.transactions[transaction.id] = transaction
    log.info("Recorded expense '%s' (amount=%s)", transaction.id, amount)
    return transaction


def _revalidate_transaction(store: EntityStore, transaction: CashFlowTransaction) -> None:
    entity_id = store.resolve_id(transaction.entity_id) if transaction.entity_id else None
    if transaction.type == TransactionType.INCOME and entity_id in store.buyers:
        unpaid = select_unpaid(store.invoices_for_buyer(entity_id), buyer_invoice_balance)
        validate_payment_amount(
            transaction.amount + transaction.discount,
            [buyer_invoice_balance(invoice) for invoice in unpaid],
            party=store.buyers[entity_id].buyer_name,
        )
    elif transaction.category == ExpenseCategory.SUPPLIER_PAYMENT and entity_id in store.suppliers:
        unpaid = select_unpaid(store.supplier_invoices_for_supplier(entity_id), supplier_invoice_balance)
        validate_payment_amount(
            transaction.amount,
            [supplier_invoice_balance(invoice) for invoice in unpaid],
            party=store.suppliers[entity_id].supplier_name,
        )


def update_cash_flow_transaction(context: RuntimeContext, command: UpdateTransactionCommand) -> CashFlowTransaction:
    """Edit a cash book line and rebuild every balance from scratch.

    The edited payment is validated against the balances that remain with
    the original line taken out, so raising an amount cannot overpay.

    Raises:
        MissingReferenceError: If the transaction is unknown.
        BusinessRuleViolation: If the new figures overpay the party.
        ValueError: If amounts are negative or a discount is set on an expense.
    """

    with mutation(context) as store:
        transaction = store.get_transaction(command.transaction_id)
        if command.amount is not None:
            transaction.amount = Decimal(command.amount)
        if command.discount is not None:
            if transaction.type != TransactionType.INCOME and Decimal(command.discount) != ZERO:
                raise ValueError("Only income transactions carry a discount")
            transaction.discount = Decimal(command.discount)
        _require_payment_total(transaction.amount, transaction.discount)
        if command.date is not None:
            transaction.date = _resolve_timestamp(command.date)
        if command.method is not None:
            transaction.method = PaymentMethod(command.method)
        if command.reference is not None:
            transaction.reference = command.reference
        if command.description is not None:
            transaction.description = command.description

        del store.transactions[transaction.id]
        reconcile(store)
        _revalidate_transaction(store, transaction)
        store.transactions[transaction.id] = transaction
    log.info("Updated transaction '%s' (amount=%s)", transaction.id, transaction.amount)
    return transaction


def delete_cash_flow_transaction(context: RuntimeContext, transaction_id: str) -> None:
    """Delete a cash book line; reconciliation reverses its effect."""

    with mutation(context) as store:
        transaction = store.get_transaction(transaction_id)
        del store.transactions[transaction.id]
    log.info("Deleted transaction '%s' (amount=%s)", transaction.id, transaction.amount)


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "LedgerConsistencyError",
    "RuntimeContext",
    "BuyerDetails",
    "SupplierDetails",
    "ProductDetails",
    "EntryItemInput",
    "CreateEntryCommand",
    "UpdateEntryCommand",
    "SaleCommand",
    "BuyerInvoiceCommand",
    "UpdateBuyerInvoiceCommand",
    "SupplierInvoiceCommand",
    "UpdateSupplierInvoiceCommand",
    "BuyerPaymentCommand",
    "SupplierPaymentCommand",
    "ExpenseCommand",
    "UpdateTransactionCommand",
    "load_runtime_context",
    "new_runtime_context",
    "ensure_schema_version",
    "persist_context",
    "refresh_context",
    "mutation",
    "reconcile_ledger",
    "require_positive_quantity",
    "require_nonnegative_money",
    "generate_entry_serial",
    "generate_invoice_number",
    "list_buyers",
    "list_suppliers",
    "list_products",
    "add_buyer",
    "update_buyer",
    "delete_buyer",
    "add_supplier",
    "update_supplier",
    "delete_supplier",
    "add_product",
    "update_product",
    "delete_product",
    "create_entry",
    "update_entry",
    "record_sale",
    "change_item_buyer",
    "cancel_entry",
    "delete_entry",
    "list_draft_items_for_buyer",
    "list_uninvoiced_entries_for_supplier",
    "create_buyer_invoice",
    "update_buyer_invoice",
    "delete_buyer_invoice",
    "create_supplier_invoice",
    "update_supplier_invoice",
    "delete_supplier_invoice",
    "record_buyer_payment",
    "record_supplier_payment",
    "record_other_expense",
    "update_cash_flow_transaction",
    "delete_cash_flow_transaction",
]
