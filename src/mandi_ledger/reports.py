"""Read-only report projections over a reconciled entity store.

Every report takes a :class:`ReportFilter` whose dates are inclusive calendar
days in UTC (the start day from midnight, the end day through its last
microsecond) and defaults to all time. A filter whose start falls after its
end is not an error: the report comes back empty. Balances use the same
arithmetic as invoicing and allocation, so a report never disagrees with the
reconciled ``outstanding`` figures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple, TypeVar

from . import log
from .constants import (
    PAYMENT_TOLERANCE,
    ZERO,
    EntityType,
    ExpenseCategory,
    TransactionType,
)
from .invoicing import buyer_invoice_balance, supplier_invoice_balance
from .models import CashFlowTransaction, Invoice, SupplierInvoice
from .store import EntityStore


T = TypeVar("T")

AGING_BUCKETS: Tuple[str, ...] = ("0-30", "31-60", "61-90", "90+")

INVOICE_DISCOUNT = "Invoice Discount"
PAYMENT_DISCOUNT = "Payment Discount"


@dataclass(frozen=True)
class ReportFilter:
    """Inclusive date window plus an optional buyer, supplier, or product id."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    entity_id: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.start_date is None or self.end_date is None or self.start_date <= self.end_date

    @property
    def start(self) -> Optional[datetime]:
        if self.start_date is None:
            return None
        return datetime.combine(self.start_date, time.min, tzinfo=UTC)

    @property
    def end(self) -> Optional[datetime]:
        if self.end_date is None:
            return None
        return datetime.combine(self.end_date, time.max, tzinfo=UTC)

    def contains(self, moment: datetime) -> bool:
        start, end = self.start, self.end
        if start is not None and moment < start:
            return False
        if end is not None and moment > end:
            return False
        return True


def end_of_day(as_of: Optional[date]) -> datetime:
    """Return the last instant of ``as_of`` (today when omitted) in UTC."""

    day = as_of if as_of is not None else datetime.now(UTC).date()
    return datetime.combine(day, time.max, tzinfo=UTC)


def filter_by_date(records: Iterable[T], report_filter: ReportFilter, *, attribute: str) -> List[T]:
    """Keep records whose ``attribute`` timestamp falls inside the window."""

    if not report_filter.is_valid:
        return []
    return [record for record in records if report_filter.contains(getattr(record, attribute))]


def _entity_filter(store: EntityStore, report_filter: ReportFilter) -> Optional[str]:
    if report_filter.entity_id is None:
        return None
    return store.resolve_id(report_filter.entity_id)


def _buyer_name(store: EntityStore, buyer_id: str) -> str:
    buyer = store.buyers.get(buyer_id)
    return buyer.buyer_name if buyer is not None else "Unknown Buyer"


def _supplier_name(store: EntityStore, supplier_id: str) -> str:
    supplier = store.suppliers.get(supplier_id)
    return supplier.supplier_name if supplier is not None else "Unknown Supplier"


def _matches_entity(store: EntityStore, transaction: CashFlowTransaction, entity_id: str) -> bool:
    return transaction.entity_id is not None and store.resolve_id(transaction.entity_id) == entity_id


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerLine:
    date: datetime
    particulars: str
    debit: Decimal
    credit: Decimal
    balance: Decimal


@dataclass(frozen=True)
class LedgerSummary:
    opening_balance: Decimal
    total_debit: Decimal
    total_credit: Decimal
    closing_balance: Decimal


@dataclass(frozen=True)
class LedgerReport:
    """Statement of account for one buyer or supplier."""

    entity_id: str
    entity_type: EntityType
    entity_name: str
    outstanding: Decimal
    balance_brought_forward: Decimal
    start_date: Optional[date]
    end_date: Optional[date]
    entries: List[LedgerLine]
    summary: LedgerSummary


def _buyer_ledger_lines(
    store: EntityStore,
    buyer_id: str,
    invoices: Iterable[Invoice],
    payments: Iterable[CashFlowTransaction],
) -> List[Tuple[datetime, str, Decimal, Decimal]]:
    lines: List[Tuple[datetime, str, Decimal, Decimal]] = []
    for invoice in invoices:
        if invoice.buyer_id != buyer_id:
            continue
        lines.append((invoice.created_at, f"Invoice #{invoice.invoice_number}", invoice.nett_amount, ZERO))
        if invoice.discount > ZERO:
            lines.append((invoice.created_at, "Invoice Discount", ZERO, invoice.discount))
    for payment in payments:
        if payment.type != TransactionType.INCOME or not _matches_entity(store, payment, buyer_id):
            continue
        if payment.amount > ZERO:
            lines.append((payment.date, payment.description or "Payment Received", ZERO, payment.amount))
        if payment.discount > ZERO:
            lines.append((payment.date, "Discount on Payment", ZERO, payment.discount))
    return lines


def _supplier_ledger_lines(
    store: EntityStore,
    supplier_id: str,
    invoices: Iterable[SupplierInvoice],
    payments: Iterable[CashFlowTransaction],
) -> List[Tuple[datetime, str, Decimal, Decimal]]:
    lines: List[Tuple[datetime, str, Decimal, Decimal]] = []
    for invoice in invoices:
        if invoice.supplier_id == supplier_id:
            lines.append((invoice.created_at, f"Purchase #{invoice.invoice_number}", ZERO, invoice.nett_amount))
    for payment in payments:
        if payment.is_supplier_settlement and _matches_entity(store, payment, supplier_id):
            lines.append((payment.date, payment.description or "Payment Made", payment.amount, ZERO))
    return lines


def _signed_movement(entity_type: EntityType, debit: Decimal, credit: Decimal) -> Decimal:
    if entity_type == EntityType.SUPPLIER:
        return credit - debit
    return debit - credit


def generate_ledger(
    store: EntityStore,
    report_filter: ReportFilter,
    entity_type: EntityType,
    *,
    carry_forward: bool = False,
) -> LedgerReport:
    """Build a running-balance statement for one buyer or supplier.

    Buyer ledgers debit each invoice's nett amount and credit invoice
    discounts, payments and payment discounts; supplier ledgers credit each
    invoice's nett amount and debit payments and advances. Lines are ordered
    by date (stable, invoices before payments on ties). The running balance
    starts at zero for the window unless ``carry_forward`` is set, in which
    case activity before the window becomes the opening balance.

    Args:
        store (EntityStore): Reconciled store.
        report_filter (ReportFilter): Window and the buyer/supplier id.
        entity_type (EntityType): Which party kind ``entity_id`` names.
        carry_forward (bool): Open with the balance accumulated before the
            window instead of zero.

    Returns:
        LedgerReport: Lines, opening balance and closing balance.

    Raises:
        ValueError: If the filter carries no entity id.
        MissingReferenceError: If the entity is unknown.
    """

    entity_id = _entity_filter(store, report_filter)
    if entity_id is None:
        raise ValueError("A ledger requires an entity id")
    entity_type = EntityType(entity_type)

    if entity_type == EntityType.BUYER:
        buyer = store.get_buyer(entity_id)
        entity_id, entity_name, outstanding = buyer.id, buyer.buyer_name, buyer.outstanding
        build_lines = _buyer_ledger_lines
        invoices = list(store.invoices.values())
    else:
        supplier = store.get_supplier(entity_id)
        entity_id, entity_name, outstanding = supplier.id, supplier.supplier_name, abs(supplier.outstanding)
        build_lines = _supplier_ledger_lines
        invoices = list(store.supplier_invoices.values())
    payments = list(store.transactions.values())

    opening = ZERO
    if carry_forward and report_filter.start is not None and report_filter.is_valid:
        start = report_filter.start
        prior = build_lines(
            store,
            entity_id,
            [invoice for invoice in invoices if invoice.created_at < start],
            [payment for payment in payments if payment.date < start],
        )
        opening = sum((_signed_movement(entity_type, debit, credit) for _, _, debit, credit in prior), ZERO)

    raw_lines = build_lines(
        store,
        entity_id,
        filter_by_date(invoices, report_filter, attribute="created_at"),
        filter_by_date(payments, report_filter, attribute="date"),
    )
    raw_lines.sort(key=lambda line: line[0])

    running = opening
    entries: List[LedgerLine] = []
    for moment, particulars, debit, credit in raw_lines:
        running += _signed_movement(entity_type, debit, credit)
        entries.append(LedgerLine(date=moment, particulars=particulars, debit=debit, credit=credit, balance=running))

    log.debug("Generated %s ledger for '%s' with %d line(s)", entity_type.value, entity_id, len(entries))
    return LedgerReport(
        entity_id=entity_id,
        entity_type=entity_type,
        entity_name=entity_name,
        outstanding=outstanding,
        balance_brought_forward=opening,
        start_date=report_filter.start_date,
        end_date=report_filter.end_date,
        entries=entries,
        summary=LedgerSummary(
            opening_balance=opening,
            total_debit=sum((line.debit for line in entries), ZERO),
            total_credit=sum((line.credit for line in entries), ZERO),
            closing_balance=running,
        ),
    )


# ---------------------------------------------------------------------------
# Balance sheets and aging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BalanceSheetRow:
    entity_id: str
    entity_name: str
    contact_number: Optional[str]
    balance: Decimal
    last_invoice_date: Optional[datetime]


@dataclass(frozen=True)
class BalanceSheet:
    as_of: date
    balances: List[BalanceSheetRow]
    total: Decimal


def generate_buyer_balance_sheet(store: EntityStore, as_of: Optional[date] = None) -> BalanceSheet:
    """List buyers owing money at the end of ``as_of``, largest balance first.

    Each balance is ``sum(nett - discount)`` over invoices minus
    ``sum(amount + discount)`` over receipts dated up to the cut-off; rows at
    or below the settlement tolerance are omitted.
    """

    cutoff = end_of_day(as_of)
    rows: List[BalanceSheetRow] = []
    for buyer in store.buyers.values():
        invoices = [invoice for invoice in store.invoices.values() if invoice.buyer_id == buyer.id and invoice.created_at <= cutoff]
        receipts = [
            transaction
            for transaction in store.transactions.values()
            if transaction.type == TransactionType.INCOME
            and _matches_entity(store, transaction, buyer.id)
            and transaction.date <= cutoff
        ]
        debit = sum((invoice.nett_amount - invoice.discount for invoice in invoices), ZERO)
        credit = sum((receipt.amount + receipt.discount for receipt in receipts), ZERO)
        balance = debit - credit
        if balance > PAYMENT_TOLERANCE:
            rows.append(
                BalanceSheetRow(
                    entity_id=buyer.id,
                    entity_name=buyer.buyer_name,
                    contact_number=buyer.contact_number,
                    balance=balance,
                    last_invoice_date=max((invoice.created_at for invoice in invoices), default=None),
                )
            )
    rows.sort(key=lambda row: row.balance, reverse=True)
    return BalanceSheet(as_of=cutoff.date(), balances=rows, total=sum((row.balance for row in rows), ZERO))


def generate_supplier_balance_sheet(store: EntityStore, as_of: Optional[date] = None) -> BalanceSheet:
    """List suppliers the business owes at the end of ``as_of``.

    Balances are ``payments - nett`` so payables are negative; only rows below
    minus the settlement tolerance are kept, most negative first. Suppliers
    holding only unconsumed advances do not appear.
    """

    cutoff = end_of_day(as_of)
    rows: List[BalanceSheetRow] = []
    for supplier in store.suppliers.values():
        invoices = [
            invoice
            for invoice in store.supplier_invoices.values()
            if invoice.supplier_id == supplier.id and invoice.created_at <= cutoff
        ]
        payments = [
            transaction
            for transaction in store.transactions.values()
            if transaction.is_supplier_settlement
            and _matches_entity(store, transaction, supplier.id)
            and transaction.date <= cutoff
        ]
        balance = sum((payment.amount for payment in payments), ZERO) - sum((invoice.nett_amount for invoice in invoices), ZERO)
        if balance < -PAYMENT_TOLERANCE:
            rows.append(
                BalanceSheetRow(
                    entity_id=supplier.id,
                    entity_name=supplier.supplier_name,
                    contact_number=supplier.contact_number,
                    balance=balance,
                    last_invoice_date=max((invoice.created_at for invoice in invoices), default=None),
                )
            )
    rows.sort(key=lambda row: row.balance)
    return BalanceSheet(as_of=cutoff.date(), balances=rows, total=sum((row.balance for row in rows), ZERO))


@dataclass(frozen=True)
class AgingRow:
    buyer_id: str
    buyer_name: str
    total_overdue: Decimal
    buckets: Dict[str, Decimal]


@dataclass(frozen=True)
class AgingSummary:
    total_overdue: Decimal
    buyer_count: int


@dataclass(frozen=True)
class AgingReport:
    as_of: date
    summary: AgingSummary
    details: List[AgingRow]


def aging_bucket(days: int) -> str:
    """Map an invoice age in whole days onto its aging bucket label."""

    if days <= 30:
        return "0-30"
    if days <= 60:
        return "31-60"
    if days <= 90:
        return "61-90"
    return "90+"


def generate_invoice_aging(store: EntityStore, as_of: Optional[date] = None) -> AgingReport:
    """Bucket every buyer's unpaid invoice balances by age.

    Age is ``floor((end of as_of - created_at) / 1 day)`` and the balance is
    ``nett - discount - paid``. Buyers are listed by total overdue, largest
    first.
    """

    cutoff = end_of_day(as_of)
    details: List[AgingRow] = []
    for buyer in store.buyers.values():
        buckets = {label: ZERO for label in AGING_BUCKETS}
        total = ZERO
        for invoice in store.invoices_for_buyer(buyer.id):
            balance = buyer_invoice_balance(invoice)
            if balance <= PAYMENT_TOLERANCE:
                continue
            days = (cutoff - invoice.created_at) // timedelta(days=1)
            buckets[aging_bucket(days)] += balance
            total += balance
        if total > ZERO:
            details.append(AgingRow(buyer_id=buyer.id, buyer_name=buyer.buyer_name, total_overdue=total, buckets=buckets))
    details.sort(key=lambda row: row.total_overdue, reverse=True)
    return AgingReport(
        as_of=cutoff.date(),
        summary=AgingSummary(
            total_overdue=sum((row.total_overdue for row in details), ZERO),
            buyer_count=len(details),
        ),
        details=details,
    )


# ---------------------------------------------------------------------------
# Commission, wages, discounts, and adjustments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommissionRow:
    invoice_id: str
    invoice_number: str
    supplier_id: str
    supplier_name: str
    created_at: datetime
    gross_total: Decimal
    commission_rate: Decimal
    commission_amount: Decimal


@dataclass(frozen=True)
class CommissionSummary:
    total_commission: Decimal
    total_gross_sales: Decimal
    average_commission_rate: Decimal
    invoice_count: int


@dataclass(frozen=True)
class CommissionReport:
    summary: CommissionSummary
    details: List[CommissionRow]


def generate_commission_report(store: EntityStore, report_filter: ReportFilter = ReportFilter()) -> CommissionReport:
    """Commission earned per supplier invoice with the effective average rate."""

    supplier_id = _entity_filter(store, report_filter)
    invoices = filter_by_date(store.supplier_invoices.values(), report_filter, attribute="created_at")
    details = [
        CommissionRow(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            supplier_id=invoice.supplier_id,
            supplier_name=_supplier_name(store, invoice.supplier_id),
            created_at=invoice.created_at,
            gross_total=invoice.gross_total,
            commission_rate=invoice.commission_rate,
            commission_amount=invoice.commission_amount,
        )
        for invoice in invoices
        if supplier_id is None or invoice.supplier_id == supplier_id
    ]
    total_commission = sum((row.commission_amount for row in details), ZERO)
    total_gross = sum((row.gross_total for row in details), ZERO)
    average = total_commission / total_gross * Decimal("100") if total_gross > ZERO else ZERO
    return CommissionReport(
        summary=CommissionSummary(
            total_commission=total_commission,
            total_gross_sales=total_gross,
            average_commission_rate=average,
            invoice_count=len(details),
        ),
        details=details,
    )


@dataclass(frozen=True)
class WagesRow:
    invoice_id: str
    invoice_number: str
    entity_id: str
    entity_name: str
    created_at: datetime
    wages: Decimal
    invoice_total: Decimal


@dataclass(frozen=True)
class WagesSummary:
    total_wages: Decimal
    invoice_count: int


@dataclass(frozen=True)
class WagesReport:
    summary: WagesSummary
    details: List[WagesRow]


def _wages_report(rows: List[WagesRow]) -> WagesReport:
    return WagesReport(
        summary=WagesSummary(total_wages=sum((row.wages for row in rows), ZERO), invoice_count=len(rows)),
        details=rows,
    )


def generate_wages_report(store: EntityStore, report_filter: ReportFilter = ReportFilter()) -> WagesReport:
    """Wages charged to buyers, one row per invoice carrying wages."""

    buyer_id = _entity_filter(store, report_filter)
    rows = [
        WagesRow(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            entity_id=invoice.buyer_id,
            entity_name=_buyer_name(store, invoice.buyer_id),
            created_at=invoice.created_at,
            wages=invoice.wages,
            invoice_total=invoice.nett_amount,
        )
        for invoice in filter_by_date(store.invoices.values(), report_filter, attribute="created_at")
        if invoice.wages > ZERO and (buyer_id is None or invoice.buyer_id == buyer_id)
    ]
    return _wages_report(rows)


def generate_supplier_wages_report(store: EntityStore, report_filter: ReportFilter = ReportFilter()) -> WagesReport:
    """Wages deducted from suppliers, one row per invoice carrying wages."""

    supplier_id = _entity_filter(store, report_filter)
    rows = [
        WagesRow(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            entity_id=invoice.supplier_id,
            entity_name=_supplier_name(store, invoice.supplier_id),
            created_at=invoice.created_at,
            wages=invoice.wages,
            invoice_total=invoice.nett_amount,
        )
        for invoice in filter_by_date(store.supplier_invoices.values(), report_filter, attribute="created_at")
        if invoice.wages > ZERO and (supplier_id is None or invoice.supplier_id == supplier_id)
    ]
    return _wages_report(rows)


@dataclass(frozen=True)
class DiscountRow:
    id: str
    date: datetime
    type: str
    buyer_id: str
    buyer_name: str
    related_document: str
    discount_amount: Decimal


@dataclass(frozen=True)
class DiscountSummary:
    total_invoice_discounts: Decimal
    total_payment_discounts: Decimal
    total_discounts: Decimal
    transaction_count: int


@dataclass(frozen=True)
class DiscountReport:
    summary: DiscountSummary
    details: List[DiscountRow]


def generate_discount_report(store: EntityStore, report_filter: ReportFilter = ReportFilter()) -> DiscountReport:
    """Discounts granted on buyer invoices and on buyer receipts, by date."""

    buyer_id = _entity_filter(store, report_filter)
    details: List[DiscountRow] = []
    for invoice in filter_by_date(store.invoices.values(), report_filter, attribute="created_at"):
        if invoice.discount <= ZERO or (buyer_id is not None and invoice.buyer_id != buyer_id):
            continue
        details.append(
            DiscountRow(
                id=invoice.id,
                date=invoice.created_at,
                type=INVOICE_DISCOUNT,
                buyer_id=invoice.buyer_id,
                buyer_name=_buyer_name(store, invoice.buyer_id),
                related_document=invoice.invoice_number,
                discount_amount=invoice.discount,
            )
        )
    for transaction in filter_by_date(store.transactions.values(), report_filter, attribute="date"):
        if transaction.type != TransactionType.INCOME or transaction.discount <= ZERO:
            continue
        if buyer_id is not None and not _matches_entity(store, transaction, buyer_id):
            continue
        details.append(
            DiscountRow(
                id=transaction.id,
                date=transaction.date,
                type=PAYMENT_DISCOUNT,
                buyer_id=store.resolve_id(transaction.entity_id) if transaction.entity_id else "",
                buyer_name=transaction.entity_name,
                related_document=transaction.description or "Payment",
                discount_amount=transaction.discount,
            )
        )
    details.sort(key=lambda row: row.date)
    invoice_total = sum((row.discount_amount for row in details if row.type == INVOICE_DISCOUNT), ZERO)
    payment_total = sum((row.discount_amount for row in details if row.type == PAYMENT_DISCOUNT), ZERO)
    return DiscountReport(
        summary=DiscountSummary(
            total_invoice_discounts=invoice_total,
            total_payment_discounts=payment_total,
            total_discounts=invoice_total + payment_total,
            transaction_count=len(details),
        ),
        details=details,
    )


@dataclass(frozen=True)
class AdjustmentRow:
    invoice_id: str
    invoice_number: str
    created_at: datetime
    buyer_id: str
    buyer_name: str
    adjustment_amount: Decimal


@dataclass(frozen=True)
class AdjustmentSummary:
    total_adjustments: Decimal
    positive_adjustments: Decimal
    negative_adjustments: Decimal
    invoice_count: int


@dataclass(frozen=True)
class AdjustmentsReport:
    summary: AdjustmentSummary
    details: List[AdjustmentRow]


def generate_adjustments_report(store: EntityStore, report_filter: ReportFilter = ReportFilter()) -> AdjustmentsReport:
    """Buyer invoices carrying a non-zero adjustment, split by sign."""

    buyer_id = _entity_filter(store, report_filter)
    details = [
        AdjustmentRow(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            created_at=invoice.created_at,
            buyer_id=invoice.buyer_id,
            buyer_name=_buyer_name(store, invoice.buyer_id),
            adjustment_amount=invoice.adjustments,
        )
        for invoice in filter_by_date(store.invoices.values(), report_filter, attribute="created_at")
        if invoice.adjustments != ZERO and (buyer_id is None or invoice.buyer_id == buyer_id)
    ]
    return AdjustmentsReport(
        summary=AdjustmentSummary(
            total_adjustments=sum((row.adjustment_amount for row in details), ZERO),
            positive_adjustments=sum((row.adjustment_amount for row in details if row.adjustment_amount > ZERO), ZERO),
            negative_adjustments=sum((row.adjustment_amount for row in details if row.adjustment_amount < ZERO), ZERO),
            invoice_count=len(details),
        ),
        details=details,
    )


# ---------------------------------------------------------------------------
# Sales, purchases, profit, products, and the cash book
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvoiceRegisterRow:
    invoice_id: str
    invoice_number: str
    entity_id: str
    entity_name: str
    created_at: datetime
    nett_amount: Decimal
    paid_amount: Decimal
    balance: Decimal


@dataclass(frozen=True)
class InvoiceRegisterSummary:
    total_amount: Decimal
    total_paid: Decimal
    total_balance: Decimal
    invoice_count: int


@dataclass(frozen=True)
class InvoiceRegister:
    summary: InvoiceRegisterSummary
    details: List[InvoiceRegisterRow]


def _register(rows: List[InvoiceRegisterRow]) -> InvoiceRegister:
    return InvoiceRegister(
        summary=InvoiceRegisterSummary(
            total_amount=sum((row.nett_amount for row in rows), ZERO),
            total_paid=sum((row.paid_amount for row in rows), ZERO),
            total_balance=sum((row.balance for row in rows), ZERO),
            invoice_count=len(rows),
        ),
        details=rows,
    )


def generate_sales_report(store: EntityStore, report_filter: ReportFilter = ReportFilter()) -> InvoiceRegister:
    """Buyer invoices in the window with their receivable balances."""

    buyer_id = _entity_filter(store, report_filter)
    rows = [
        InvoiceRegisterRow(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            entity_id=invoice.buyer_id,
            entity_name=_buyer_name(store, invoice.buyer_id),
            created_at=invoice.created_at,
            nett_amount=invoice.nett_amount,
            paid_amount=invoice.paid_amount,
            balance=buyer_invoice_balance(invoice),
        )
        for invoice in filter_by_date(store.invoices.values(), report_filter, attribute="created_at")
        if buyer_id is None or invoice.buyer_id == buyer_id
    ]
    return _register(rows)


def generate_purchase_report(store: EntityStore, report_filter: ReportFilter = ReportFilter()) -> InvoiceRegister:
    """Supplier invoices in the window with their payable balances."""

    supplier_id = _entity_filter(store, report_filter)
    rows = [
        InvoiceRegisterRow(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            entity_id=invoice.supplier_id,
            entity_name=_supplier_name(store, invoice.supplier_id),
            created_at=invoice.created_at,
            nett_amount=invoice.nett_amount,
            paid_amount=invoice.paid_amount,
            balance=supplier_invoice_balance(invoice),
        )
        for invoice in filter_by_date(store.supplier_invoices.values(), report_filter, attribute="created_at")
        if supplier_id is None or invoice.supplier_id == supplier_id
    ]
    return _register(rows)


@dataclass(frozen=True)
class ProfitAndLoss:
    total_commission: Decimal
    other_revenue: Decimal
    total_revenue: Decimal
    operating_expenses: Decimal
    net_profit: Decimal


def generate_profit_and_loss(store: EntityStore, report_filter: ReportFilter = ReportFilter()) -> ProfitAndLoss:
    """Yard income for the window.

    Revenue is supplier commission plus buyer wages, positive buyer
    adjustments and supplier wages; operating expenses are the ``Other``
    cash book expenses.
    """

    supplier_invoices = filter_by_date(store.supplier_invoices.values(), report_filter, attribute="created_at")
    buyer_invoices = filter_by_date(store.invoices.values(), report_filter, attribute="created_at")
    transactions = filter_by_date(store.transactions.values(), report_filter, attribute="date")

    total_commission = sum((invoice.commission_amount for invoice in supplier_invoices), ZERO)
    buyer_charges = sum((invoice.wages + max(invoice.adjustments, ZERO) for invoice in buyer_invoices), ZERO)
    supplier_wages = sum((invoice.wages for invoice in supplier_invoices), ZERO)
    other_revenue = buyer_charges + supplier_wages
    operating_expenses = sum(
        (
            transaction.amount
            for transaction in transactions
            if transaction.type == TransactionType.EXPENSE and transaction.category == ExpenseCategory.OTHER
        ),
        ZERO,
    )
    total_revenue = total_commission + other_revenue
    return ProfitAndLoss(
        total_commission=total_commission,
        other_revenue=other_revenue,
        total_revenue=total_revenue,
        operating_expenses=operating_expenses,
        net_profit=total_revenue - operating_expenses,
    )


@dataclass(frozen=True)
class ProductSalesRow:
    product_id: str
    product_name: str
    quantity_sold: Decimal
    total_value: Decimal
    average_price: Decimal
    buyer_count: int


@dataclass(frozen=True)
class ProductSalesSummary:
    total_quantity: Decimal
    total_value: Decimal
    product_count: int


@dataclass(frozen=True)
class ProductSalesReport:
    summary: ProductSalesSummary
    details: List[ProductSalesRow]


@dataclass
class _ProductTally:
    product_name: str
    quantity: Decimal = ZERO
    value: Decimal = ZERO
    buyer_ids: set = field(default_factory=set)


def generate_product_sales_report(store: EntityStore, report_filter: ReportFilter = ReportFilter()) -> ProductSalesReport:
    """Quantity, value and reach per product across buyer invoices.

    ``entity_id`` on the filter narrows the report to a single product.
    """

    product_id = _entity_filter(store, report_filter)
    tallies: Dict[str, _ProductTally] = {}
    for invoice in filter_by_date(store.invoices.values(), report_filter, attribute="created_at"):
        for item in invoice.items:
            if product_id is not None and item.product_id != product_id:
                continue
            tally = tallies.get(item.product_id)
            if tally is None:
                product = store.products.get(item.product_id)
                tally = _ProductTally(product_name=product.product_name if product is not None else item.product_name)
                tallies[item.product_id] = tally
            tally.quantity += item.quantity
            tally.value += item.sub_total
            tally.buyer_ids.add(invoice.buyer_id)

    details = [
        ProductSalesRow(
            product_id=key,
            product_name=tally.product_name,
            quantity_sold=tally.quantity,
            total_value=tally.value,
            average_price=tally.value / tally.quantity if tally.quantity > ZERO else ZERO,
            buyer_count=len(tally.buyer_ids),
        )
        for key, tally in tallies.items()
    ]
    details.sort(key=lambda row: row.total_value, reverse=True)
    return ProductSalesReport(
        summary=ProductSalesSummary(
            total_quantity=sum((row.quantity_sold for row in details), ZERO),
            total_value=sum((row.total_value for row in details), ZERO),
            product_count=len(details),
        ),
        details=details,
    )


@dataclass(frozen=True)
class CashBook:
    opening_balance: Decimal
    total_income: Decimal
    total_expense: Decimal
    closing_balance: Decimal
    transactions: List[CashFlowTransaction]


def generate_cash_book(store: EntityStore, report_filter: ReportFilter = ReportFilter()) -> CashBook:
    """Cash movements in the window with the balance carried in from before it.

    Income adds its cash amount and every expense subtracts its amount;
    discounts are not cash and do not move the book.
    """

    def movement(transaction: CashFlowTransaction) -> Decimal:
        return transaction.amount if transaction.type == TransactionType.INCOME else -transaction.amount

    opening = ZERO
    start = report_filter.start
    if start is not None and report_filter.is_valid:
        opening = sum((movement(t) for t in store.transactions.values() if t.date < start), ZERO)
    in_window = sorted(
        filter_by_date(store.transactions.values(), report_filter, attribute="date"),
        key=lambda transaction: (transaction.date, transaction.sequence),
    )
    income = sum((t.amount for t in in_window if t.type == TransactionType.INCOME), ZERO)
    expense = sum((t.amount for t in in_window if t.type == TransactionType.EXPENSE), ZERO)
    return CashBook(
        opening_balance=opening,
        total_income=income,
        total_expense=expense,
        closing_balance=opening + income - expense,
        transactions=in_window,
    )


__all__ = [
    "AGING_BUCKETS",
    "ReportFilter",
    "end_of_day",
    "filter_by_date",
    "aging_bucket",
    "LedgerLine",
    "LedgerSummary",
    "LedgerReport",
    "generate_ledger",
    "BalanceSheetRow",
    "BalanceSheet",
    "generate_buyer_balance_sheet",
    "generate_supplier_balance_sheet",
    "AgingRow",
    "AgingSummary",
    "AgingReport",
    "generate_invoice_aging",
    "CommissionReport",
    "generate_commission_report",
    "WagesReport",
    "generate_wages_report",
    "generate_supplier_wages_report",
    "DiscountReport",
    "generate_discount_report",
    "AdjustmentsReport",
    "generate_adjustments_report",
    "InvoiceRegister",
    "generate_sales_report",
    "generate_purchase_report",
    "ProfitAndLoss",
    "generate_profit_and_loss",
    "ProductSalesReport",
    "generate_product_sales_report",
    "CashBook",
    "generate_cash_book",
]
