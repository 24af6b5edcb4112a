"""Enumerations and fixed business constants shared across Mandi Ledger modules.

Keeping the lifecycle states, transaction categories and arithmetic constants
in one place lets the store, the reconciliation engine and the reports agree
on a single vocabulary.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

ZERO = Decimal("0")

# Balances within this distance of zero are treated as settled.
PAYMENT_TOLERANCE = Decimal("0.01")

# Default per-unit handling charges.
SUPPLIER_WAGE_RATE = Decimal("5")
BUYER_WAGE_RATE = Decimal("10")

# Items averaging more than this many kilograms per unit carry no wage.
HEAVY_ITEM_WEIGHT = Decimal("100")

DEFAULT_COMMISSION_RATE = Decimal("10")


class EntryStatus(str, Enum):
    """Enumerate the lifecycle states of a supplier delivery."""

    PENDING = "Pending"
    DRAFT = "Draft"
    AUCTIONED = "Auctioned"
    INVOICED = "Invoiced"
    CANCELLED = "Cancelled"


class TransactionType(str, Enum):
    """Enumerate the directions of a cash-flow transaction."""

    INCOME = "Income"
    EXPENSE = "Expense"


class ExpenseCategory(str, Enum):
    """Enumerate expense categories recorded in the cash book."""

    SUPPLIER_PAYMENT = "Supplier Payment"
    ADVANCE_PAYMENT = "Advance Payment"
    OTHER = "Other"


class PaymentMethod(str, Enum):
    """Enumerate supported settlement methods."""

    CASH = "Cash"
    BANK = "Bank"


class SupplierInvoiceStatus(str, Enum):
    """Enumerate the payment states of a supplier invoice."""

    PAID = "Paid"
    UNPAID = "Unpaid"
    PARTIALLY_PAID = "Partially Paid"


class EntityType(str, Enum):
    """Enumerate the parties a ledger can be generated for."""

    BUYER = "buyer"
    SUPPLIER = "supplier"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    BUYERS = "Buyers"
    SUPPLIERS = "Suppliers"
    PRODUCTS = "Products"
    ENTRIES = "Entries"
    ENTRY_ITEMS = "EntryItems"
    INVOICES = "Invoices"
    INVOICE_ITEMS = "InvoiceItems"
    SUPPLIER_INVOICES = "SupplierInvoices"
    SUPPLIER_INVOICE_ITEMS = "SupplierInvoiceItems"
    CASH_FLOW = "CashFlow"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "ZERO",
    "PAYMENT_TOLERANCE",
    "SUPPLIER_WAGE_RATE",
    "BUYER_WAGE_RATE",
    "HEAVY_ITEM_WEIGHT",
    "DEFAULT_COMMISSION_RATE",
    "EntryStatus",
    "TransactionType",
    "ExpenseCategory",
    "PaymentMethod",
    "SupplierInvoiceStatus",
    "EntityType",
    "SheetName",
]
