"""Full recompute of every derived balance in the entity store.

:func:`reconcile` is the single writer of buyer and supplier ``outstanding``,
invoice ``paid_amount``, supplier invoice ``status`` and ``advance_paid``, and
entry ``status``. It discards all of them and rebuilds them from invoices and
the cash book, so running it twice in a row changes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List

from . import log
from .allocation import allocate, find_advance_target, sum_advances_for_entries
from .constants import ZERO, TransactionType
from .entry_status import refresh_entry_status
from .invoicing import buyer_invoice_balance, supplier_invoice_balance, supplier_invoice_status
from .models import CashFlowTransaction
from .store import EntityStore


@dataclass(frozen=True)
class ReconciliationSummary:
    """Headline figures from one reconciliation pass."""

    total_receivable: Decimal
    total_payable: Decimal
    transactions_replayed: int
    transactions_skipped: int
    unmatched_advances: int


def ordered_transactions(store: EntityStore) -> List[CashFlowTransaction]:
    """Cash book in replay order: ascending date, insertion order on ties."""

    return sorted(store.transactions.values(), key=lambda transaction: (transaction.date, transaction.sequence))


def _reset(store: EntityStore) -> None:
    for buyer in store.buyers.values():
        buyer.outstanding = ZERO
    for supplier in store.suppliers.values():
        supplier.outstanding = ZERO
    for invoice in store.invoices.values():
        invoice.paid_amount = ZERO
    for supplier_invoice in store.supplier_invoices.values():
        supplier_invoice.paid_amount = ZERO
    for entry in store.entries.values():
        refresh_entry_status(entry)


def _apply_base_debt(store: EntityStore) -> None:
    for invoice in store.invoices.values():
        buyer = store.buyers.get(invoice.buyer_id)
        if buyer is None:
            log.warning("Invoice '%s' references unknown buyer '%s'", invoice.invoice_number, invoice.buyer_id)
            continue
        buyer.outstanding += invoice.nett_amount - invoice.discount
    for supplier_invoice in store.supplier_invoices.values():
        supplier = store.suppliers.get(supplier_invoice.supplier_id)
        if supplier is None:
            log.warning(
                "Supplier invoice '%s' references unknown supplier '%s'",
                supplier_invoice.invoice_number,
                supplier_invoice.supplier_id,
            )
            continue
        supplier.outstanding -= supplier_invoice.nett_amount


def _replay_income(store: EntityStore, transaction: CashFlowTransaction) -> bool:
    buyer_id = store.resolve_id(transaction.entity_id)
    buyer = store.buyers.get(buyer_id)
    if buyer is None:
        log.warning("Skipping income '%s': unknown buyer '%s'", transaction.id, transaction.entity_id)
        return False
    credit = transaction.amount + transaction.discount
    buyer.outstanding -= credit
    related = {store.resolve_id(invoice_id) for invoice_id in transaction.related_invoice_ids}
    targets = [invoice for invoice in store.invoices.values() if invoice.id in related and invoice.buyer_id == buyer.id]
    if targets:
        allocate(targets, credit, buyer_invoice_balance)
    return True


def _replay_supplier_settlement(store: EntityStore, transaction: CashFlowTransaction) -> tuple[bool, bool]:
    supplier_id = store.resolve_id(transaction.entity_id)
    supplier = store.suppliers.get(supplier_id)
    if supplier is None:
        log.warning("Skipping payment '%s': unknown supplier '%s'", transaction.id, transaction.entity_id)
        return False, False
    supplier.outstanding += transaction.amount
    candidates = store.supplier_invoices_for_supplier(supplier.id)
    if transaction.related_invoice_ids:
        related = {store.resolve_id(invoice_id) for invoice_id in transaction.related_invoice_ids}
        allocate([invoice for invoice in candidates if invoice.id in related], transaction.amount, supplier_invoice_balance)
        return True, False
    if transaction.related_entry_ids:
        entry_ids = [store.resolve_id(entry_id) for entry_id in transaction.related_entry_ids]
        target = find_advance_target(candidates, entry_ids)
        if target is None:
            return True, True
        # Advances land in full on the single invoice absorbing their entries.
        target.paid_amount += transaction.amount
    return True, False


def reconcile(store: EntityStore) -> ReconciliationSummary:
    """Rebuild every derived balance from invoices and the cash book.

    The pass runs strictly in order:

    1. Reset outstanding and paid amounts and re-derive entry statuses.
    2. Charge every buyer invoice (``nett - discount``) to its buyer and credit
       every supplier invoice (``nett``) to its supplier.
    3. Replay the cash book by ascending date with insertion order breaking
       ties. Income reduces the buyer balance by ``amount + discount`` and is
       allocated across its related invoices. Supplier payments and advances
       raise the supplier balance by ``amount``; they are allocated across
       related invoices, or an advance is placed in full on the invoice whose
       entries cover all of its related entries. Other expenses touch no
       balance.
    4. Derive each supplier invoice's status, advance and final payable.

    Args:
        store (EntityStore): Store whose derived fields are rewritten in place.

    Returns:
        ReconciliationSummary: Totals describing the rebuilt state.

    Raises:
        LedgerConsistencyError: If an allocation overruns an invoice.
    """

    with store.lock:
        _reset(store)
        _apply_base_debt(store)

        replayed = 0
        skipped = 0
        unmatched = 0
        for transaction in ordered_transactions(store):
            if transaction.entity_id is None:
                continue
            if transaction.type == TransactionType.INCOME:
                applied = _replay_income(store, transaction)
            elif transaction.is_supplier_settlement:
                applied, pending_advance = _replay_supplier_settlement(store, transaction)
                unmatched += int(pending_advance)
            else:
                continue
            if applied:
                replayed += 1
            else:
                skipped += 1

        transactions = list(store.transactions.values())
        for supplier_invoice in store.supplier_invoices.values():
            supplier_invoice.status = supplier_invoice_status(supplier_invoice.paid_amount, supplier_invoice.nett_amount)
            supplier_invoice.advance_paid = sum_advances_for_entries(
                [t for t in transactions if t.entity_id is not None and store.resolve_id(t.entity_id) == supplier_invoice.supplier_id],
                supplier_invoice.entry_ids,
            )
            supplier_invoice.final_payable = supplier_invoice.nett_amount - supplier_invoice.advance_paid

        summary = ReconciliationSummary(
            total_receivable=sum((buyer.outstanding for buyer in store.buyers.values()), ZERO),
            total_payable=-sum((supplier.outstanding for supplier in store.suppliers.values()), ZERO),
            transactions_replayed=replayed,
            transactions_skipped=skipped,
            unmatched_advances=unmatched,
        )
    log.debug(
        "Reconciled ledger: receivable=%s payable=%s replayed=%d skipped=%d",
        summary.total_receivable,
        summary.total_payable,
        summary.transactions_replayed,
        summary.transactions_skipped,
    )
    return summary


__all__ = ["ReconciliationSummary", "ordered_transactions", "reconcile"]
