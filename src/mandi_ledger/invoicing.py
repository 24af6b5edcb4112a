"""Invoice arithmetic: line aggregation, commission, wages, and nett amounts.

Every rounding rule used by buyer and supplier invoices lives here so that the
business layer and the reports compute the same figures.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from . import log
from .constants import HEAVY_ITEM_WEIGHT, ZERO, SupplierInvoiceStatus
from .models import EntryItem, Invoice, InvoiceItem, SupplierInvoice, SupplierInvoiceItem


_WHOLE_UNIT = Decimal("1")


@dataclass(frozen=True)
class SupplierInvoiceTotals:
    """Computed header figures for a supplier invoice."""

    total_quantities: Decimal
    gross_total: Decimal
    commission_amount: Decimal
    nett_amount: Decimal


@dataclass(frozen=True)
class BuyerInvoiceTotals:
    """Computed header figures for a buyer invoice."""

    total_quantities: Decimal
    total_amount: Decimal
    nett_amount: Decimal


def round_currency(value: Decimal) -> Decimal:
    """Round to a whole currency unit, halves away from zero."""

    return Decimal(value).quantize(_WHOLE_UNIT, rounding=ROUND_HALF_UP)


def ceil_currency(value: Decimal) -> Decimal:
    """Round up to the next whole currency unit."""

    return Decimal(value).quantize(_WHOLE_UNIT, rounding=ROUND_CEILING)


def calculate_commission(gross_total: Decimal, commission_rate: Decimal) -> Decimal:
    """Return ``ceil(gross_total * commission_rate / 100)``.

    Commission always rounds up, even by a fraction of a unit: 10% of 1001 is
    101, not 100.
    """

    return ceil_currency(Decimal(gross_total) * Decimal(commission_rate) / Decimal("100"))


def is_heavy_item(quantity: Decimal, nett_weight: Decimal) -> bool:
    """Whether an item averages more than the heavy-item threshold per unit."""

    if nett_weight <= ZERO or quantity <= ZERO:
        return False
    return nett_weight / quantity > HEAVY_ITEM_WEIGHT


def wage_quantity(items: Iterable[EntryItem | InvoiceItem | SupplierInvoiceItem]) -> Decimal:
    """Sum the quantities that attract a per-unit handling wage."""

    return sum(
        (item.quantity for item in items if not is_heavy_item(item.quantity, item.nett_weight)),
        ZERO,
    )


def calculate_default_wages(
    items: Iterable[EntryItem | InvoiceItem | SupplierInvoiceItem],
    wage_rate: Decimal,
) -> Decimal:
    """Return the automatic wage charge for ``items`` at ``wage_rate`` per unit.

    Args:
        items: Source lines. Items whose average nett weight per unit exceeds
            100 kg are excluded; items without a recorded weight count.
        wage_rate (Decimal): Charge per qualifying unit.

    Returns:
        Decimal: ``wage_quantity(items) * wage_rate``.
    """

    return wage_quantity(items) * Decimal(wage_rate)


def aggregate_supplier_items(
    items: Iterable[EntryItem],
    product_names: Mapping[str, str],
) -> List[SupplierInvoiceItem]:
    """Merge sold entry items into supplier invoice lines.

    Lines are keyed by ``(product_id, rate_per_quantity)`` so the same product
    sold at two rates yields two lines. Merged lines sum quantity, weights and
    sub totals, and keep first-seen order.

    Args:
        items (Iterable[EntryItem]): Candidate items. Unsold items are skipped.
        product_names (Mapping[str, str]): Display names keyed by product id.

    Returns:
        list[SupplierInvoiceItem]: Aggregated lines.
    """

    lines: Dict[Tuple[str, Decimal], SupplierInvoiceItem] = {}
    for item in items:
        if not item.is_sold:
            continue
        key = (item.product_id, item.rate_per_quantity)
        line = lines.get(key)
        if line is None:
            lines[key] = SupplierInvoiceItem(
                product_id=item.product_id,
                product_name=product_names.get(item.product_id, item.product_id),
                quantity=item.quantity,
                gross_weight=item.gross_weight,
                shute_weight=item.shute_weight,
                nett_weight=item.nett_weight,
                rate_per_quantity=item.rate_per_quantity,
                sub_total=item.sub_total,
            )
            continue
        line.quantity += item.quantity
        line.gross_weight += item.gross_weight
        line.shute_weight += item.shute_weight
        line.nett_weight += item.nett_weight
        line.sub_total += item.sub_total
    log.debug("Aggregated supplier invoice into %d line(s)", len(lines))
    return list(lines.values())


def build_supplier_totals(
    items: Sequence[EntryItem],
    *,
    commission_rate: Decimal,
    wages: Decimal,
    adjustments: Decimal,
) -> SupplierInvoiceTotals:
    """Compute gross, commission and nett figures for a supplier invoice.

    ``gross_total`` is the rounded sum of sold item sub totals, commission is
    rounded up, and ``nett_amount = round(gross - commission - wages +
    adjustments)``. ``total_quantities`` counts every source item, sold or
    not, rather than the aggregated lines.
    """

    sold = [item for item in items if item.is_sold]
    gross_total = round_currency(sum((item.sub_total for item in sold), ZERO))
    commission_amount = calculate_commission(gross_total, commission_rate)
    nett_amount = round_currency(gross_total - commission_amount - Decimal(wages) + Decimal(adjustments))
    return SupplierInvoiceTotals(
        total_quantities=sum((item.quantity for item in items), ZERO),
        gross_total=gross_total,
        commission_amount=commission_amount,
        nett_amount=nett_amount,
    )


def build_buyer_invoice_items(
    items: Iterable[EntryItem],
    product_names: Mapping[str, str],
) -> List[InvoiceItem]:
    """Snapshot sold entry items as buyer invoice lines, one line per item."""

    return [
        InvoiceItem(
            id=item.id,
            product_id=item.product_id,
            product_name=product_names.get(item.product_id, item.product_id),
            quantity=item.quantity,
            gross_weight=item.gross_weight,
            shute_weight=item.shute_weight,
            nett_weight=item.nett_weight,
            rate_per_quantity=item.rate_per_quantity,
            sub_total=item.sub_total,
        )
        for item in items
    ]


def build_buyer_totals(
    items: Sequence[InvoiceItem],
    *,
    wages: Decimal,
    adjustments: Decimal,
) -> BuyerInvoiceTotals:
    """Compute totals for a buyer invoice.

    ``nett_amount = total_amount + wages + adjustments``: a positive
    adjustment increases the amount payable and a negative one reduces it.
    """

    total_amount = sum((item.sub_total for item in items), ZERO)
    return BuyerInvoiceTotals(
        total_quantities=sum((item.quantity for item in items), ZERO),
        total_amount=total_amount,
        nett_amount=total_amount + Decimal(wages) + Decimal(adjustments),
    )


def supplier_invoice_status(paid_amount: Decimal, nett_amount: Decimal) -> SupplierInvoiceStatus:
    """Derive Paid, Partially Paid or Unpaid from the amount settled so far."""

    if paid_amount >= nett_amount:
        return SupplierInvoiceStatus.PAID
    if paid_amount > ZERO:
        return SupplierInvoiceStatus.PARTIALLY_PAID
    return SupplierInvoiceStatus.UNPAID


def buyer_invoice_balance(invoice: Invoice) -> Decimal:
    """Amount still receivable on a buyer invoice."""

    return invoice.nett_amount - invoice.discount - invoice.paid_amount


def supplier_invoice_balance(invoice: SupplierInvoice) -> Decimal:
    """Amount still payable on a supplier invoice."""

    return invoice.nett_amount - invoice.paid_amount


__all__ = [
    "SupplierInvoiceTotals",
    "BuyerInvoiceTotals",
    "round_currency",
    "ceil_currency",
    "calculate_commission",
    "is_heavy_item",
    "wage_quantity",
    "calculate_default_wages",
    "aggregate_supplier_items",
    "build_supplier_totals",
    "build_buyer_invoice_items",
    "build_buyer_totals",
    "supplier_invoice_status",
    "buyer_invoice_balance",
    "supplier_invoice_balance",
]
