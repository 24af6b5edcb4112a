"""Unit tests for invoice arithmetic."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from mandi_ledger import invoicing
from mandi_ledger.constants import SupplierInvoiceStatus
from mandi_ledger.models import EntryItem, Invoice, SupplierInvoice


def _sold(item_id: str, product_id: str, quantity: str, rate: str, *, nett: str = "0") -> EntryItem:
    quantity_value = Decimal(quantity)
    rate_value = Decimal(rate)
    return EntryItem(
        id=item_id,
        sub_serial_number=1,
        product_id=product_id,
        quantity=quantity_value,
        nett_weight=Decimal(nett),
        rate_per_quantity=rate_value,
        buyer_id="b_1",
        sub_total=quantity_value * rate_value,
    )


@pytest.mark.parametrize(
    ("gross", "expected"),
    [
        (Decimal("1000"), Decimal("100")),
        (Decimal("1001"), Decimal("101")),
        (Decimal("0"), Decimal("0")),
    ],
)
def test_calculate_commission_rounds_up(gross, expected):
    """Commission is always rounded up to a whole unit."""

    assert invoicing.calculate_commission(gross, Decimal("10")) == expected


def test_round_currency_rounds_half_up():
    """Halves round away from zero."""

    assert invoicing.round_currency(Decimal("2.5")) == Decimal("3")
    assert invoicing.round_currency(Decimal("2.49")) == Decimal("2")


def test_is_heavy_item_uses_average_nett_weight():
    """Only items averaging more than 100 kg per unit are heavy."""

    assert invoicing.is_heavy_item(Decimal("2"), Decimal("250")) is True
    assert invoicing.is_heavy_item(Decimal("2"), Decimal("200")) is False
    assert invoicing.is_heavy_item(Decimal("2"), Decimal("0")) is False


def test_calculate_default_wages_excludes_heavy_items():
    """Heavy items carry no handling wage."""

    items = [
        _sold("ei_1", "p_1", "10", "100", nett="50"),
        _sold("ei_2", "p_2", "2", "900", nett="300"),
    ]
    assert invoicing.calculate_default_wages(items, Decimal("5")) == Decimal("50")


def test_aggregate_supplier_items_merges_product_and_rate():
    """Same product and rate merge; a different rate opens a new line."""

    items = [
        _sold("ei_1", "p_1", "10", "100"),
        _sold("ei_2", "p_1", "5", "100"),
        _sold("ei_3", "p_1", "4", "120"),
        EntryItem(id="ei_4", sub_serial_number=4, product_id="p_1", quantity=Decimal("3")),
    ]

    lines = invoicing.aggregate_supplier_items(items, {"p_1": "Tomato"})

    assert [(line.rate_per_quantity, line.quantity, line.sub_total) for line in lines] == [
        (Decimal("100"), Decimal("15"), Decimal("1500")),
        (Decimal("120"), Decimal("4"), Decimal("480")),
    ]
    assert lines[0].product_name == "Tomato"


def test_build_supplier_totals_matches_worked_example():
    """Gross 2000 at 10% with 75 wages nets 1725."""

    items = [_sold("ei_1", "p_a", "10", "100"), _sold("ei_2", "p_b", "5", "200")]
    wages = invoicing.calculate_default_wages(items, Decimal("5"))

    totals = invoicing.build_supplier_totals(items, commission_rate=Decimal("10"), wages=wages, adjustments=Decimal("0"))

    assert wages == Decimal("75")
    assert totals.gross_total == Decimal("2000")
    assert totals.commission_amount == Decimal("200")
    assert totals.nett_amount == Decimal("1725")
    assert totals.total_quantities == Decimal("15")


def test_build_supplier_totals_counts_unsold_items():
    """Unsold lots add to quantities and wages but not to the gross."""

    items = [
        _sold("ei_1", "p_a", "10", "100"),
        EntryItem(id="ei_2", sub_serial_number=2, product_id="p_b", quantity=Decimal("4")),
    ]
    wages = invoicing.calculate_default_wages(items, Decimal("5"))

    totals = invoicing.build_supplier_totals(items, commission_rate=Decimal("10"), wages=wages, adjustments=Decimal("0"))

    assert wages == Decimal("70")
    assert totals.total_quantities == Decimal("14")
    assert totals.gross_total == Decimal("1000")
    assert totals.nett_amount == Decimal("830")


def test_build_supplier_totals_applies_signed_adjustments():
    """Adjustments are added to the nett amount."""

    items = [_sold("ei_1", "p_a", "10", "100")]
    totals = invoicing.build_supplier_totals(
        items, commission_rate=Decimal("10"), wages=Decimal("0"), adjustments=Decimal("-50")
    )
    assert totals.nett_amount == Decimal("850")


def test_build_buyer_totals_adds_wages_and_adjustments():
    """Buyer nett is total plus wages plus adjustments."""

    lines = invoicing.build_buyer_invoice_items([_sold("ei_1", "p_a", "10", "100")], {"p_a": "Tomato"})
    totals = invoicing.build_buyer_totals(lines, wages=Decimal("100"), adjustments=Decimal("-20"))

    assert lines[0].id == "ei_1"
    assert totals.total_amount == Decimal("1000")
    assert totals.nett_amount == Decimal("1080")


@pytest.mark.parametrize(
    ("paid", "expected"),
    [
        (Decimal("0"), SupplierInvoiceStatus.UNPAID),
        (Decimal("500"), SupplierInvoiceStatus.PARTIALLY_PAID),
        (Decimal("1725"), SupplierInvoiceStatus.PAID),
    ],
)
def test_supplier_invoice_status(paid, expected):
    """Status follows paid amount against nett amount."""

    assert invoicing.supplier_invoice_status(paid, Decimal("1725")) == expected


def test_invoice_balances_account_for_discount():
    """Buyer balances subtract discount; supplier balances do not."""

    moment = datetime(2024, 3, 1, tzinfo=UTC)
    invoice = Invoice(
        id="inv_1",
        invoice_number="BI-20240301-001",
        buyer_id="b_1",
        created_at=moment,
        nett_amount=Decimal("1000"),
        discount=Decimal("50"),
        paid_amount=Decimal("200"),
    )
    supplier_invoice = SupplierInvoice(
        id="si_1",
        invoice_number="SI-20240301-001",
        supplier_id="s_1",
        created_at=moment,
        nett_amount=Decimal("1725"),
        paid_amount=Decimal("725"),
    )
    assert invoicing.buyer_invoice_balance(invoice) == Decimal("750")
    assert invoicing.supplier_invoice_balance(supplier_invoice) == Decimal("1000")
