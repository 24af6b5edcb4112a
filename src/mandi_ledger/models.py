"""Domain records held by the entity store.

Records are plain mutable dataclasses: the reconciler rewrites their derived
fields (``outstanding``, ``paid_amount``, ``status``) in place on every pass,
while every other field is owned by the operation that created it. Monetary
amounts, quantities and weights are :class:`~decimal.Decimal` values and
timestamps are timezone-aware UTC datetimes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from .constants import (
    ZERO,
    EntryStatus,
    ExpenseCategory,
    PaymentMethod,
    SupplierInvoiceStatus,
    TransactionType,
)


@dataclass
class Buyer:
    """A trader who buys auctioned items; positive ``outstanding`` is owed to us."""

    id: str
    buyer_name: str
    display_name: str = ""
    alias: Optional[str] = None
    token_number: Optional[str] = None
    contact_number: Optional[str] = None
    place: Optional[str] = None
    description: Optional[str] = None
    outstanding: Decimal = ZERO
    external_id: Optional[str] = None


@dataclass
class Supplier:
    """A grower delivering goods; negative ``outstanding`` is owed to them."""

    id: str
    supplier_name: str
    display_name: str = ""
    contact_number: Optional[str] = None
    place: Optional[str] = None
    bank_account_details: Optional[str] = None
    outstanding: Decimal = ZERO
    external_id: Optional[str] = None


@dataclass
class Product:
    """A produce variety referenced by entry and invoice lines."""

    id: str
    product_name: str
    display_name: str = ""
    external_id: Optional[str] = None


@dataclass
class EntryItem:
    """One lot within a delivery, auctioned to a single buyer."""

    id: str
    sub_serial_number: int
    product_id: str
    quantity: Decimal
    gross_weight: Decimal = ZERO
    shute_weight: Decimal = ZERO
    nett_weight: Decimal = ZERO
    rate_per_quantity: Optional[Decimal] = None
    buyer_id: Optional[str] = None
    sub_total: Decimal = ZERO
    invoice_id: Optional[str] = None
    supplier_invoice_id: Optional[str] = None

    @property
    def is_sold(self) -> bool:
        return self.buyer_id is not None and self.rate_per_quantity is not None


@dataclass
class Entry:
    """One supplier's delivery for one calendar day."""

    id: str
    serial_number: str
    supplier_id: str
    created_at: datetime
    items: List[EntryItem] = field(default_factory=list)
    total_quantities: Decimal = ZERO
    total_amount: Decimal = ZERO
    status: EntryStatus = EntryStatus.PENDING
    last_sub_serial_number: int = 0
    external_id: Optional[str] = None


@dataclass
class InvoiceItem:
    """Snapshot of a sold entry item; ``id`` points back at the source item."""

    id: str
    product_id: str
    product_name: str
    quantity: Decimal
    gross_weight: Decimal
    shute_weight: Decimal
    nett_weight: Decimal
    rate_per_quantity: Decimal
    sub_total: Decimal


@dataclass
class Invoice:
    """A buyer invoice; ``paid_amount`` is derived by the reconciler."""

    id: str
    invoice_number: str
    buyer_id: str
    created_at: datetime
    items: List[InvoiceItem] = field(default_factory=list)
    total_quantities: Decimal = ZERO
    total_amount: Decimal = ZERO
    wages: Decimal = ZERO
    adjustments: Decimal = ZERO
    nett_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    discount: Decimal = ZERO
    sequence: int = 0

    @property
    def debt(self) -> Decimal:
        return self.nett_amount - self.discount


@dataclass
class SupplierInvoiceItem:
    """An aggregated supplier invoice line keyed by product and rate."""

    product_id: str
    product_name: str
    quantity: Decimal
    gross_weight: Decimal
    shute_weight: Decimal
    nett_weight: Decimal
    rate_per_quantity: Decimal
    sub_total: Decimal


@dataclass
class SupplierInvoice:
    """A settlement statement covering one or more entries of one supplier."""

    id: str
    invoice_number: str
    supplier_id: str
    created_at: datetime
    entry_ids: List[str] = field(default_factory=list)
    items: List[SupplierInvoiceItem] = field(default_factory=list)
    total_quantities: Decimal = ZERO
    gross_total: Decimal = ZERO
    commission_rate: Decimal = ZERO
    commission_amount: Decimal = ZERO
    wages: Decimal = ZERO
    adjustments: Decimal = ZERO
    nett_amount: Decimal = ZERO
    advance_paid: Decimal = ZERO
    final_payable: Decimal = ZERO
    paid_amount: Decimal = ZERO
    status: SupplierInvoiceStatus = SupplierInvoiceStatus.UNPAID
    sequence: int = 0

    @property
    def debt(self) -> Decimal:
        return self.nett_amount


@dataclass
class CashFlowTransaction:
    """A cash book line: buyer receipt, supplier payment, advance, or expense."""

    id: str
    date: datetime
    type: TransactionType
    amount: Decimal
    category: Optional[ExpenseCategory] = None
    entity_id: Optional[str] = None
    entity_name: str = ""
    discount: Decimal = ZERO
    method: PaymentMethod = PaymentMethod.CASH
    reference: Optional[str] = None
    description: str = ""
    related_invoice_ids: List[str] = field(default_factory=list)
    related_entry_ids: List[str] = field(default_factory=list)
    sequence: int = 0

    @property
    def is_supplier_settlement(self) -> bool:
        return self.type == TransactionType.EXPENSE and self.category in (
            ExpenseCategory.SUPPLIER_PAYMENT,
            ExpenseCategory.ADVANCE_PAYMENT,
        )


__all__ = [
    "Buyer",
    "Supplier",
    "Product",
    "EntryItem",
    "Entry",
    "InvoiceItem",
    "Invoice",
    "SupplierInvoiceItem",
    "SupplierInvoice",
    "CashFlowTransaction",
]
