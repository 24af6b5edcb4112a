"""Oldest-first allocation of payments against outstanding invoices.

The same routines serve buyer invoices (debt is ``nett - discount``) and
supplier invoices (debt is ``nett``); callers pass the balance function that
matches the invoice kind. Ordering is always ``(created_at, sequence)`` so two
invoices created at the same instant are settled in insertion order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

from . import log
from .constants import PAYMENT_TOLERANCE, ZERO, ExpenseCategory, TransactionType
from .errors import BusinessRuleViolation, LedgerConsistencyError
from .models import CashFlowTransaction, Invoice, SupplierInvoice


InvoiceT = TypeVar("InvoiceT", Invoice, SupplierInvoice)
AnyInvoice = Union[Invoice, SupplierInvoice]
BalanceFn = Callable[[AnyInvoice], Decimal]


@dataclass(frozen=True)
class AllocationResult:
    """Outcome of distributing a payment across invoices."""

    applied: List[Tuple[str, Decimal]] = field(default_factory=list)
    remaining: Decimal = ZERO

    @property
    def invoice_ids(self) -> List[str]:
        return [invoice_id for invoice_id, _ in self.applied]

    @property
    def total_applied(self) -> Decimal:
        return sum((amount for _, amount in self.applied), ZERO)


def sort_oldest_first(invoices: Iterable[InvoiceT]) -> List[InvoiceT]:
    """Return ``invoices`` ordered by creation time, then insertion sequence."""

    return sorted(invoices, key=lambda invoice: (invoice.created_at, invoice.sequence))


def select_unpaid(
    invoices: Iterable[InvoiceT],
    balance_of: BalanceFn,
    *,
    tolerance: Decimal = PAYMENT_TOLERANCE,
) -> List[InvoiceT]:
    """Return invoices with a balance above ``tolerance``, oldest first."""

    return [invoice for invoice in sort_oldest_first(invoices) if balance_of(invoice) > tolerance]


def allocate(
    invoices: Iterable[InvoiceT],
    amount: Decimal,
    balance_of: BalanceFn,
) -> AllocationResult:
    """Apply ``amount`` to ``invoices`` oldest first, mutating ``paid_amount``.

    Each invoice receives ``min(pool, balance)`` where ``balance`` comes from
    ``balance_of``; invoices without a positive balance are skipped and the
    walk stops as soon as the pool is exhausted.

    Args:
        invoices (Iterable[Invoice | SupplierInvoice]): Candidate invoices in
            any order.
        amount (Decimal): Amount to distribute.
        balance_of (Callable): Returns the unpaid balance of an invoice.

    Returns:
        AllocationResult: Per-invoice applications and the undistributed rest.

    Raises:
        LedgerConsistencyError: If an application would leave an invoice paid
            beyond its debt.
    """

    pool = Decimal(amount)
    applied: List[Tuple[str, Decimal]] = []
    for invoice in sort_oldest_first(invoices):
        if pool <= ZERO:
            break
        balance = balance_of(invoice)
        if balance <= ZERO:
            continue
        portion = min(pool, balance)
        invoice.paid_amount += portion
        pool -= portion
        applied.append((invoice.id, portion))
        if balance_of(invoice) < ZERO:
            log.error(
                "Allocation overran invoice '%s': paid=%s debt=%s",
                invoice.invoice_number,
                invoice.paid_amount,
                invoice.debt,
            )
            raise LedgerConsistencyError(
                f"Invoice {invoice.invoice_number} paid amount {invoice.paid_amount} exceeds its debt {invoice.debt}"
            )
    return AllocationResult(applied=applied, remaining=pool)


def plan_allocation(
    invoices: Iterable[InvoiceT],
    amount: Decimal,
    balance_of: BalanceFn,
) -> List[str]:
    """Return the ids of the invoices a payment of ``amount`` would touch.

    Unlike :func:`allocate` nothing is mutated; this is the dry run used to
    fill ``related_invoice_ids`` when a caller does not name targets.
    """

    pool = Decimal(amount)
    touched: List[str] = []
    for invoice in select_unpaid(invoices, balance_of):
        if pool <= ZERO:
            break
        portion = min(pool, balance_of(invoice))
        pool -= portion
        touched.append(invoice.id)
    return touched


def validate_payment_amount(
    payment_total: Decimal,
    balances: Sequence[Decimal],
    *,
    party: str,
    tolerance: Decimal = PAYMENT_TOLERANCE,
) -> None:
    """Reject a payment larger than the summed unpaid balances.

    Args:
        payment_total (Decimal): Cash plus any discount being applied.
        balances (Sequence[Decimal]): Unpaid balances of the party's invoices.
        party (str): Name used in the error message.
        tolerance (Decimal): Overpayment accepted as rounding noise.

    Raises:
        BusinessRuleViolation: If ``payment_total`` exceeds the outstanding
            total by more than ``tolerance``.
    """

    outstanding = sum(balances, ZERO)
    if payment_total - outstanding > tolerance:
        log.error(
            "Payment of %s for '%s' exceeds outstanding invoiced balance %s",
            payment_total,
            party,
            outstanding,
        )
        raise BusinessRuleViolation(
            f"Payment amount ({payment_total}) exceeds the outstanding invoiced balance ({outstanding}) for {party}"
        )


def find_advance_target(
    supplier_invoices: Iterable[SupplierInvoice],
    related_entry_ids: Sequence[str],
) -> Optional[SupplierInvoice]:
    """Return the supplier invoice covering every entry of an advance.

    Matching is a superset test: the invoice's ``entry_ids`` must contain all
    of ``related_entry_ids``. The oldest match wins if more than one exists.
    """

    wanted = set(related_entry_ids)
    if not wanted:
        return None
    matches = [invoice for invoice in sort_oldest_first(supplier_invoices) if wanted <= set(invoice.entry_ids)]
    if len(matches) > 1:
        log.warning(
            "Advance for entries %s matches %d supplier invoices; using '%s'",
            sorted(wanted),
            len(matches),
            matches[0].invoice_number,
        )
    return matches[0] if matches else None


def is_advance(transaction: CashFlowTransaction) -> bool:
    return (
        transaction.type == TransactionType.EXPENSE
        and transaction.category == ExpenseCategory.ADVANCE_PAYMENT
    )


def sum_advances_for_entries(
    transactions: Iterable[CashFlowTransaction],
    entry_ids: Sequence[str],
) -> Decimal:
    """Total the advance payments whose related entries all lie in ``entry_ids``."""

    covered = set(entry_ids)
    return sum(
        (
            transaction.amount
            for transaction in transactions
            if is_advance(transaction)
            and transaction.related_entry_ids
            and set(transaction.related_entry_ids) <= covered
        ),
        ZERO,
    )


__all__ = [
    "AllocationResult",
    "sort_oldest_first",
    "select_unpaid",
    "allocate",
    "plan_allocation",
    "validate_payment_amount",
    "find_advance_target",
    "is_advance",
    "sum_advances_for_entries",
]
