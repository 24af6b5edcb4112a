"""Data access layer for Mandi Ledger.

This module reads from and writes to the ``mandi_master_data.xlsx`` workbook.
Business logic belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Store mapping: loading every sheet into an :class:`EntityStore` and writing
   the store back, one row per record.
4. Payloads: turning records and reports into camelCase JSON-ready mappings.
"""


from __future__ import annotations

import configparser
import dataclasses
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    BUYER_WAGE_RATE,
    DEFAULT_COMMISSION_RATE,
    SUPPLIER_WAGE_RATE,
    ZERO,
    EntryStatus,
    ExpenseCategory,
    PaymentMethod,
    SheetName,
    SupplierInvoiceStatus,
    TransactionType,
)
from .models import (
    Buyer,
    CashFlowTransaction,
    Entry,
    EntryItem,
    Invoice,
    InvoiceItem,
    Product,
    Supplier,
    SupplierInvoice,
    SupplierInvoiceItem,
)
from .store import EntityStore


CONFIG_FILE_NAME = "config.ini"
LIST_SEPARATOR = ","

# Column layout of every sheet; the first row of each sheet holds these titles.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.BUYERS.value: [
        "BuyerID",
        "BuyerName",
        "DisplayName",
        "Alias",
        "TokenNumber",
        "ContactNumber",
        "Place",
        "Description",
        "Outstanding",
        "ExternalID",
    ],
    SheetName.SUPPLIERS.value: [
        "SupplierID",
        "SupplierName",
        "DisplayName",
        "ContactNumber",
        "Place",
        "BankAccountDetails",
        "Outstanding",
        "ExternalID",
    ],
    SheetName.PRODUCTS.value: [
        "ProductID",
        "ProductName",
        "DisplayName",
        "ExternalID",
    ],
    SheetName.ENTRIES.value: [
        "EntryID",
        "SerialNumber",
        "SupplierID",
        "CreatedAt",
        "TotalQuantities",
        "TotalAmount",
        "Status",
        "LastSubSerialNumber",
        "ExternalID",
    ],
    SheetName.ENTRY_ITEMS.value: [
        "EntryID",
        "ItemID",
        "SubSerialNumber",
        "ProductID",
        "Quantity",
        "GrossWeight",
        "ShuteWeight",
        "NettWeight",
        "RatePerQuantity",
        "BuyerID",
        "SubTotal",
        "InvoiceID",
        "SupplierInvoiceID",
    ],
    SheetName.INVOICES.value: [
        "InvoiceID",
        "InvoiceNumber",
        "BuyerID",
        "CreatedAt",
        "TotalQuantities",
        "TotalAmount",
        "Wages",
        "Adjustments",
        "NettAmount",
        "PaidAmount",
        "Discount",
        "Sequence",
    ],
    SheetName.INVOICE_ITEMS.value: [
        "InvoiceID",
        "ItemID",
        "ProductID",
        "ProductName",
        "Quantity",
        "GrossWeight",
        "ShuteWeight",
        "NettWeight",
        "RatePerQuantity",
        "SubTotal",
    ],
    SheetName.SUPPLIER_INVOICES.value: [
        "SupplierInvoiceID",
        "InvoiceNumber",
        "SupplierID",
        "CreatedAt",
        "EntryIDs",
        "TotalQuantities",
        "GrossTotal",
        "CommissionRate",
        "CommissionAmount",
        "Wages",
        "Adjustments",
        "NettAmount",
        "AdvancePaid",
        "FinalPayable",
        "PaidAmount",
        "Status",
        "Sequence",
    ],
    SheetName.SUPPLIER_INVOICE_ITEMS.value: [
        "SupplierInvoiceID",
        "ProductID",
        "ProductName",
        "Quantity",
        "GrossWeight",
        "ShuteWeight",
        "NettWeight",
        "RatePerQuantity",
        "SubTotal",
    ],
    SheetName.CASH_FLOW.value: [
        "TransactionID",
        "Date",
        "Type",
        "Category",
        "EntityID",
        "EntityName",
        "Amount",
        "Discount",
        "Method",
        "Reference",
        "Description",
        "RelatedInvoiceIDs",
        "RelatedEntryIDs",
        "Sequence",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str
    commission_rate: Decimal = DEFAULT_COMMISSION_RATE
    supplier_wage_rate: Decimal = SUPPLIER_WAGE_RATE
    buyer_wage_rate: Decimal = BUYER_WAGE_RATE


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _optional_decimal(parser: configparser.ConfigParser, section: str, option: str, default: Decimal) -> Decimal:
    raw = parser.get(section, option, fallback=None)
    if raw is None or not raw.strip():
        return default
    try:
        return Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid numeric value for {section}.{option}: {raw!r}") from exc


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` must provide ``DataFile``, ``BusinessName`` and
    ``SchemaVersion``. ``[Defaults]`` may override ``CommissionRate``,
    ``SupplierWageRate`` and ``BuyerWageRate``. Relative data file paths are
    anchored at ``base_path`` (or the working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Anchor for a relative ``DataFile``.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If an optional numeric default cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
        commission_rate=_optional_decimal(parser, "Defaults", "CommissionRate", DEFAULT_COMMISSION_RATE),
        supplier_wage_rate=_optional_decimal(parser, "Defaults", "SupplierWageRate", SUPPLIER_WAGE_RATE),
        buyer_wage_rate=_optional_decimal(parser, "Defaults", "BuyerWageRate", BUYER_WAGE_RATE),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the master workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def validate_workbook(workbook: Workbook) -> None:
    """Check that every managed sheet exists with the expected header row.

    Raises:
        KeyError: If a sheet is missing or its headers differ from
            :data:`SHEET_COLUMNS`.
    """

    for sheet_name, columns in SHEET_COLUMNS.items():
        if sheet_name not in workbook.sheetnames:
            raise KeyError(f"Workbook is missing sheet: {sheet_name}")
        headers = [cell.value for cell in workbook[sheet_name][1]][: len(columns)]
        if headers != list(columns):
            raise KeyError(f"Unexpected headers on sheet '{sheet_name}': {headers}")


def iter_sheet_rows(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    """Yield the raw values of every non-empty data row of ``sheet_name``."""

    width = len(SHEET_COLUMNS[sheet_name])
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, max_col=width, values_only=True):
        if any(cell is not None for cell in raw):
            yield tuple(raw) + (None,) * (width - len(raw))


def replace_rows(workbook: Workbook, sheet_name: str, rows: Iterable[Sequence[object]]) -> int:
    """Overwrite every data row of ``sheet_name`` with ``rows``.

    The header row is kept. Returns the number of rows written.
    """

    sheet = workbook[sheet_name]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    count = 0
    for row in rows:
        sheet.append(list(row))
        count += 1
    return count


# ---------------------------------------------------------------------------
# Cell conversions
# ---------------------------------------------------------------------------


def _text(raw: object) -> Optional[str]:
    if raw is None:
        return None
    value = str(raw)
    return value if value != "" else None


def _decimal(raw: object, default: Optional[Decimal] = ZERO) -> Optional[Decimal]:
    if raw is None or raw == "":
        return default
    return Decimal(str(raw))


def _integer(raw: object) -> int:
    if raw is None or raw == "":
        return 0
    return int(Decimal(str(raw)))


def _timestamp(raw: object) -> datetime:
    moment = raw if isinstance(raw, datetime) else datetime.fromisoformat(str(raw))
    # Cells typed by hand in Excel carry no zone; they are read as UTC.
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


def _id_list(raw: object) -> List[str]:
    if raw is None:
        return []
    return [part.strip() for part in str(raw).split(LIST_SEPARATOR) if part.strip()]


def _join_ids(ids: Sequence[str]) -> Optional[str]:
    return LIST_SEPARATOR.join(ids) if ids else None


def _enum_value(member: Optional[Enum]) -> Optional[str]:
    return member.value if member is not None else None


# ---------------------------------------------------------------------------
# Row serializers
# ---------------------------------------------------------------------------


def serialize_buyer(record: Buyer) -> list[object]:
    return [
        record.id,
        record.buyer_name,
        record.display_name,
        record.alias,
        record.token_number,
        record.contact_number,
        record.place,
        record.description,
        record.outstanding,
        record.external_id,
    ]


def deserialize_buyer(raw_row: Sequence[object]) -> Buyer:
    (buyer_id, name, display, alias, token, contact, place, description, outstanding, external_id) = raw_row
    return Buyer(
        id=str(buyer_id),
        buyer_name=str(name),
        display_name=_text(display) or "",
        alias=_text(alias),
        token_number=_text(token),
        contact_number=_text(contact),
        place=_text(place),
        description=_text(description),
        outstanding=_decimal(outstanding),
        external_id=_text(external_id),
    )


def serialize_supplier(record: Supplier) -> list[object]:
    return [
        record.id,
        record.supplier_name,
        record.display_name,
        record.contact_number,
        record.place,
        record.bank_account_details,
        record.outstanding,
        record.external_id,
    ]


def deserialize_supplier(raw_row: Sequence[object]) -> Supplier:
    (supplier_id, name, display, contact, place, bank, outstanding, external_id) = raw_row
    return Supplier(
        id=str(supplier_id),
        supplier_name=str(name),
        display_name=_text(display) or "",
        contact_number=_text(contact),
        place=_text(place),
        bank_account_details=_text(bank),
        outstanding=_decimal(outstanding),
        external_id=_text(external_id),
    )


def serialize_product(record: Product) -> list[object]:
    return [record.id, record.product_name, record.display_name, record.external_id]


def deserialize_product(raw_row: Sequence[object]) -> Product:
    product_id, name, display, external_id = raw_row
    return Product(
        id=str(product_id),
        product_name=str(name),
        display_name=_text(display) or "",
        external_id=_text(external_id),
    )


def serialize_entry(record: Entry) -> list[object]:
    return [
        record.id,
        record.serial_number,
        record.supplier_id,
        record.created_at.isoformat(),
        record.total_quantities,
        record.total_amount,
        record.status.value,
        record.last_sub_serial_number,
        record.external_id,
    ]


def deserialize_entry(raw_row: Sequence[object]) -> Entry:
    (entry_id, serial, supplier_id, created_at, total_qty, total_amount, status, last_sub, external_id) = raw_row
    return Entry(
        id=str(entry_id),
        serial_number=str(serial),
        supplier_id=str(supplier_id),
        created_at=_timestamp(created_at),
        total_quantities=_decimal(total_qty),
        total_amount=_decimal(total_amount),
        status=EntryStatus(status) if status else EntryStatus.PENDING,
        last_sub_serial_number=_integer(last_sub),
        external_id=_text(external_id),
    )


def serialize_entry_item(entry_id: str, record: EntryItem) -> list[object]:
    return [
        entry_id,
        record.id,
        record.sub_serial_number,
        record.product_id,
        record.quantity,
        record.gross_weight,
        record.shute_weight,
        record.nett_weight,
        record.rate_per_quantity,
        record.buyer_id,
        record.sub_total,
        record.invoice_id,
        record.supplier_invoice_id,
    ]


def deserialize_entry_item(raw_row: Sequence[object]) -> tuple[str, EntryItem]:
    (
        entry_id,
        item_id,
        sub_serial,
        product_id,
        quantity,
        gross,
        shute,
        nett,
        rate,
        buyer_id,
        sub_total,
        invoice_id,
        supplier_invoice_id,
    ) = raw_row
    item = EntryItem(
        id=str(item_id),
        sub_serial_number=_integer(sub_serial),
        product_id=str(product_id),
        quantity=_decimal(quantity),
        gross_weight=_decimal(gross),
        shute_weight=_decimal(shute),
        nett_weight=_decimal(nett),
        rate_per_quantity=_decimal(rate, None),
        buyer_id=_text(buyer_id),
        sub_total=_decimal(sub_total),
        invoice_id=_text(invoice_id),
        supplier_invoice_id=_text(supplier_invoice_id),
    )
    return str(entry_id), item


def serialize_invoice(record: Invoice) -> list[object]:
    return [
        record.id,
        record.invoice_number,
        record.buyer_id,
        record.created_at.isoformat(),
        record.total_quantities,
        record.total_amount,
        record.wages,
        record.adjustments,
        record.nett_amount,
        record.paid_amount,
        record.discount,
        record.sequence,
    ]


def deserialize_invoice(raw_row: Sequence[object]) -> Invoice:
    (
        invoice_id,
        number,
        buyer_id,
        created_at,
        total_qty,
        total_amount,
        wages,
        adjustments,
        nett,
        paid,
        discount,
        sequence,
    ) = raw_row
    return Invoice(
        id=str(invoice_id),
        invoice_number=str(number),
        buyer_id=str(buyer_id),
        created_at=_timestamp(created_at),
        total_quantities=_decimal(total_qty),
        total_amount=_decimal(total_amount),
        wages=_decimal(wages),
        adjustments=_decimal(adjustments),
        nett_amount=_decimal(nett),
        paid_amount=_decimal(paid),
        discount=_decimal(discount),
        sequence=_integer(sequence),
    )


def serialize_invoice_item(invoice_id: str, record: InvoiceItem) -> list[object]:
    return [
        invoice_id,
        record.id,
        record.product_id,
        record.product_name,
        record.quantity,
        record.gross_weight,
        record.shute_weight,
        record.nett_weight,
        record.rate_per_quantity,
        record.sub_total,
    ]


def deserialize_invoice_item(raw_row: Sequence[object]) -> tuple[str, InvoiceItem]:
    (invoice_id, item_id, product_id, product_name, quantity, gross, shute, nett, rate, sub_total) = raw_row
    return str(invoice_id), InvoiceItem(
        id=str(item_id),
        product_id=str(product_id),
        product_name=_text(product_name) or "",
        quantity=_decimal(quantity),
        gross_weight=_decimal(gross),
        shute_weight=_decimal(shute),
        nett_weight=_decimal(nett),
        rate_per_quantity=_decimal(rate),
        sub_total=_decimal(sub_total),
    )


def serialize_supplier_invoice(record: SupplierInvoice) -> list[object]:
    return [
        record.id,
        record.invoice_number,
        record.supplier_id,
        record.created_at.isoformat(),
        _join_ids(record.entry_ids),
        record.total_quantities,
        record.gross_total,
        record.commission_rate,
        record.commission_amount,
        record.wages,
        record.adjustments,
        record.nett_amount,
        record.advance_paid,
        record.final_payable,
        record.paid_amount,
        record.status.value,
        record.sequence,
    ]


def deserialize_supplier_invoice(raw_row: Sequence[object]) -> SupplierInvoice:
    (
        invoice_id,
        number,
        supplier_id,
        created_at,
        entry_ids,
        total_qty,
        gross,
        rate,
        commission,
        wages,
        adjustments,
        nett,
        advance,
        final_payable,
        paid,
        status,
        sequence,
    ) = raw_row
    return SupplierInvoice(
        id=str(invoice_id),
        invoice_number=str(number),
        supplier_id=str(supplier_id),
        created_at=_timestamp(created_at),
        entry_ids=_id_list(entry_ids),
        total_quantities=_decimal(total_qty),
        gross_total=_decimal(gross),
        commission_rate=_decimal(rate),
        commission_amount=_decimal(commission),
        wages=_decimal(wages),
        adjustments=_decimal(adjustments),
        nett_amount=_decimal(nett),
        advance_paid=_decimal(advance),
        final_payable=_decimal(final_payable),
        paid_amount=_decimal(paid),
        status=SupplierInvoiceStatus(status) if status else SupplierInvoiceStatus.UNPAID,
        sequence=_integer(sequence),
    )


def serialize_supplier_invoice_item(invoice_id: str, record: SupplierInvoiceItem) -> list[object]:
    return [
        invoice_id,
        record.product_id,
        record.product_name,
        record.quantity,
        record.gross_weight,
        record.shute_weight,
        record.nett_weight,
        record.rate_per_quantity,
        record.sub_total,
    ]


def deserialize_supplier_invoice_item(raw_row: Sequence[object]) -> tuple[str, SupplierInvoiceItem]:
    (invoice_id, product_id, product_name, quantity, gross, shute, nett, rate, sub_total) = raw_row
    return str(invoice_id), SupplierInvoiceItem(
        product_id=str(product_id),
        product_name=_text(product_name) or "",
        quantity=_decimal(quantity),
        gross_weight=_decimal(gross),
        shute_weight=_decimal(shute),
        nett_weight=_decimal(nett),
        rate_per_quantity=_decimal(rate),
        sub_total=_decimal(sub_total),
    )


def serialize_transaction(record: CashFlowTransaction) -> list[object]:
    return [
        record.id,
        record.date.isoformat(),
        record.type.value,
        _enum_value(record.category),
        record.entity_id,
        record.entity_name,
        record.amount,
        record.discount,
        record.method.value,
        record.reference,
        record.description,
        _join_ids(record.related_invoice_ids),
        _join_ids(record.related_entry_ids),
        record.sequence,
    ]


def deserialize_transaction(raw_row: Sequence[object]) -> CashFlowTransaction:
    (
        transaction_id,
        when,
        kind,
        category,
        entity_id,
        entity_name,
        amount,
        discount,
        method,
        reference,
        description,
        related_invoices,
        related_entries,
        sequence,
    ) = raw_row
    return CashFlowTransaction(
        id=str(transaction_id),
        date=_timestamp(when),
        type=TransactionType(kind),
        category=ExpenseCategory(category) if category else None,
        entity_id=_text(entity_id),
        entity_name=_text(entity_name) or "",
        amount=_decimal(amount),
        discount=_decimal(discount),
        method=PaymentMethod(method) if method else PaymentMethod.CASH,
        reference=_text(reference),
        description=_text(description) or "",
        related_invoice_ids=_id_list(related_invoices),
        related_entry_ids=_id_list(related_entries),
        sequence=_integer(sequence),
    )


# ---------------------------------------------------------------------------
# Store mapping
# ---------------------------------------------------------------------------


def load_store(workbook: Workbook) -> EntityStore:
    """Build an :class:`EntityStore` from every managed sheet of ``workbook``.

    Child rows (entry items, invoice lines) are attached to their parents in
    sheet order; orphans are logged and dropped. External ids become aliases
    and the insertion sequence resumes after the highest stored value.

    Args:
        workbook (Workbook): Workbook created by :mod:`mandi_ledger.setup_excel`.

    Returns:
        EntityStore: Store holding the persisted records. Derived balances are
            as last saved; callers reconcile before trusting them.
    """

    store = EntityStore()
    for raw in iter_sheet_rows(workbook, SheetName.BUYERS.value):
        buyer = deserialize_buyer(raw)
        store.buyers[buyer.id] = buyer
        store.register_alias(buyer.external_id, buyer.id)
    for raw in iter_sheet_rows(workbook, SheetName.SUPPLIERS.value):
        supplier = deserialize_supplier(raw)
        store.suppliers[supplier.id] = supplier
        store.register_alias(supplier.external_id, supplier.id)
    for raw in iter_sheet_rows(workbook, SheetName.PRODUCTS.value):
        product = deserialize_product(raw)
        store.products[product.id] = product
        store.register_alias(product.external_id, product.id)
    for raw in iter_sheet_rows(workbook, SheetName.ENTRIES.value):
        entry = deserialize_entry(raw)
        store.entries[entry.id] = entry
        store.register_alias(entry.external_id, entry.id)
    for raw in iter_sheet_rows(workbook, SheetName.ENTRY_ITEMS.value):
        entry_id, item = deserialize_entry_item(raw)
        entry = store.entries.get(entry_id)
        if entry is None:
            log.warning("Dropping entry item '%s' for unknown entry '%s'", item.id, entry_id)
            continue
        entry.items.append(item)
    for raw in iter_sheet_rows(workbook, SheetName.INVOICES.value):
        invoice = deserialize_invoice(raw)
        store.invoices[invoice.id] = invoice
    for raw in iter_sheet_rows(workbook, SheetName.INVOICE_ITEMS.value):
        invoice_id, line = deserialize_invoice_item(raw)
        invoice = store.invoices.get(invoice_id)
        if invoice is None:
            log.warning("Dropping invoice line '%s' for unknown invoice '%s'", line.id, invoice_id)
            continue
        invoice.items.append(line)
    for raw in iter_sheet_rows(workbook, SheetName.SUPPLIER_INVOICES.value):
        supplier_invoice = deserialize_supplier_invoice(raw)
        store.supplier_invoices[supplier_invoice.id] = supplier_invoice
    for raw in iter_sheet_rows(workbook, SheetName.SUPPLIER_INVOICE_ITEMS.value):
        invoice_id, supplier_line = deserialize_supplier_invoice_item(raw)
        supplier_invoice = store.supplier_invoices.get(invoice_id)
        if supplier_invoice is None:
            log.warning("Dropping supplier invoice line for unknown invoice '%s'", invoice_id)
            continue
        supplier_invoice.items.append(supplier_line)
    for raw in iter_sheet_rows(workbook, SheetName.CASH_FLOW.value):
        transaction = deserialize_transaction(raw)
        store.transactions[transaction.id] = transaction

    store.sequence = max(
        [invoice.sequence for invoice in store.invoices.values()]
        + [invoice.sequence for invoice in store.supplier_invoices.values()]
        + [transaction.sequence for transaction in store.transactions.values()]
        + [0]
    )
    log.debug(
        "Loaded store: %d buyers, %d suppliers, %d entries, %d invoices, %d supplier invoices, %d transactions",
        len(store.buyers),
        len(store.suppliers),
        len(store.entries),
        len(store.invoices),
        len(store.supplier_invoices),
        len(store.transactions),
    )
    return store


def write_store(workbook: Workbook, store: EntityStore) -> None:
    """Rewrite every managed sheet of ``workbook`` from ``store``."""

    replace_rows(workbook, SheetName.BUYERS.value, (serialize_buyer(b) for b in store.buyers.values()))
    replace_rows(workbook, SheetName.SUPPLIERS.value, (serialize_supplier(s) for s in store.suppliers.values()))
    replace_rows(workbook, SheetName.PRODUCTS.value, (serialize_product(p) for p in store.products.values()))
    replace_rows(workbook, SheetName.ENTRIES.value, (serialize_entry(e) for e in store.entries.values()))
    replace_rows(
        workbook,
        SheetName.ENTRY_ITEMS.value,
        (serialize_entry_item(entry.id, item) for entry in store.entries.values() for item in entry.items),
    )
    replace_rows(workbook, SheetName.INVOICES.value, (serialize_invoice(i) for i in store.invoices.values()))
    replace_rows(
        workbook,
        SheetName.INVOICE_ITEMS.value,
        (serialize_invoice_item(invoice.id, line) for invoice in store.invoices.values() for line in invoice.items),
    )
    replace_rows(
        workbook,
        SheetName.SUPPLIER_INVOICES.value,
        (serialize_supplier_invoice(i) for i in store.supplier_invoices.values()),
    )
    replace_rows(
        workbook,
        SheetName.SUPPLIER_INVOICE_ITEMS.value,
        (
            serialize_supplier_invoice_item(invoice.id, line)
            for invoice in store.supplier_invoices.values()
            for line in invoice.items
        ),
    )
    replace_rows(workbook, SheetName.CASH_FLOW.value, (serialize_transaction(t) for t in store.transactions.values()))


# ---------------------------------------------------------------------------
# JSON payloads
# ---------------------------------------------------------------------------


def camel_case(name: str) -> str:
    """Convert ``snake_case`` into ``camelCase``."""

    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def to_payload(value: Any) -> Any:
    """Convert records and reports into JSON-ready structures.

    Dataclass fields become camelCase keys, enums collapse to their values,
    whole :class:`~decimal.Decimal` amounts become ``int`` and fractional ones
    ``float``, and dates become ISO-8601 strings.
    """

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {camel_case(item.name): to_payload(getattr(value, item.name)) for item in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): to_payload(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_payload(item) for item in value]
    return value


__all__ = [
    "CONFIG_FILE_NAME",
    "SHEET_COLUMNS",
    "ConfigSettings",
    "find_config_file",
    "read_config",
    "parse_settings",
    "open_workbook",
    "save_workbook",
    "refresh_workbook",
    "validate_workbook",
    "iter_sheet_rows",
    "replace_rows",
    "load_store",
    "write_store",
    "camel_case",
    "to_payload",
]
