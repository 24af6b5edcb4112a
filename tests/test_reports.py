"""Tests for the read-only report projections."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from mandi_ledger import core_logic, reports
from mandi_ledger.constants import EntityType
from mandi_ledger.models import Invoice, SupplierInvoice


@dataclass(frozen=True)
class TradingWeek:
    seeded: object
    invoice: Invoice
    supplier_invoice: SupplierInvoice

    @property
    def store(self):
        return self.seeded.context.store


@pytest.fixture
def week(seeded) -> TradingWeek:
    """One delivery sold, invoiced both ways, and partly paid both ways."""

    context = seeded.context
    delivered = datetime(2024, 3, 1, 9, 30, tzinfo=UTC)
    entry = core_logic.create_entry(
        context,
        core_logic.CreateEntryCommand(
            supplier_id=seeded.supplier.id,
            items=[
                core_logic.EntryItemInput(product_id=seeded.product.id, quantity=Decimal("10")),
                core_logic.EntryItemInput(product_id=seeded.other_product.id, quantity=Decimal("5")),
            ],
            timestamp=delivered,
        ),
    )
    for item, rate in zip(entry.items, ("100", "200")):
        core_logic.record_sale(
            context,
            core_logic.SaleCommand(entry_item_id=item.id, buyer_id=seeded.buyer.id, rate_per_quantity=Decimal(rate)),
        )
    invoice = core_logic.create_buyer_invoice(
        context,
        core_logic.BuyerInvoiceCommand(
            buyer_id=seeded.buyer.id,
            entry_item_ids=[item.id for item in entry.items],
            discount=Decimal("100"),
            timestamp=delivered,
        ),
    )
    supplier_invoice = core_logic.create_supplier_invoice(
        context,
        core_logic.SupplierInvoiceCommand(entry_ids=[entry.id], timestamp=delivered),
    )
    core_logic.record_buyer_payment(
        context,
        core_logic.BuyerPaymentCommand(
            buyer_id=seeded.buyer.id,
            amount=Decimal("1000"),
            discount=Decimal("50"),
            timestamp=datetime(2024, 3, 5, 11, 0, tzinfo=UTC),
        ),
    )
    core_logic.record_supplier_payment(
        context,
        core_logic.SupplierPaymentCommand(
            supplier_id=seeded.supplier.id,
            amount=Decimal("1000"),
            timestamp=datetime(2024, 3, 6, 10, 0, tzinfo=UTC),
        ),
    )
    core_logic.record_other_expense(
        context,
        core_logic.ExpenseCommand(
            amount=Decimal("200"),
            description="Market fee",
            timestamp=datetime(2024, 3, 6, 12, 0, tzinfo=UTC),
        ),
    )
    return TradingWeek(seeded=seeded, invoice=invoice, supplier_invoice=supplier_invoice)


def test_buyer_ledger_running_balance(week):
    """Invoice, discounts and payments produce a running receivable balance."""

    report = reports.generate_ledger(
        week.store, reports.ReportFilter(entity_id=week.seeded.buyer.id), EntityType.BUYER
    )

    assert [(line.particulars, line.debit, line.credit, line.balance) for line in report.entries] == [
        (f"Invoice #{week.invoice.invoice_number}", Decimal("2150"), Decimal("0"), Decimal("2150")),
        ("Invoice Discount", Decimal("0"), Decimal("100"), Decimal("2050")),
        ("Payment from Ravi Traders", Decimal("0"), Decimal("1000"), Decimal("1050")),
        ("Discount on Payment", Decimal("0"), Decimal("50"), Decimal("1000")),
    ]
    assert report.summary.closing_balance == report.outstanding == Decimal("1000")


def test_buyer_ledger_carry_forward_opens_with_prior_balance(week):
    """With carry forward the window opens on the balance accumulated before it."""

    report_filter = reports.ReportFilter(start_date=date(2024, 3, 4), entity_id=week.seeded.buyer.id)

    carried = reports.generate_ledger(week.store, report_filter, EntityType.BUYER, carry_forward=True)
    fresh = reports.generate_ledger(week.store, report_filter, EntityType.BUYER)

    assert carried.balance_brought_forward == Decimal("2050")
    assert carried.summary.closing_balance == Decimal("1000")
    assert fresh.balance_brought_forward == Decimal("0")
    assert fresh.summary.closing_balance == Decimal("-1050")


def test_supplier_ledger_credits_purchases(week):
    """Supplier ledgers credit invoices and debit payments."""

    report = reports.generate_ledger(
        week.store, reports.ReportFilter(entity_id=week.seeded.supplier.id), EntityType.SUPPLIER
    )

    assert [line.balance for line in report.entries] == [Decimal("1725"), Decimal("725")]
    assert report.entries[0].particulars == f"Purchase #{week.supplier_invoice.invoice_number}"
    assert report.outstanding == Decimal("725")


def test_ledger_requires_entity_id(week):
    """A ledger without a party is a caller error."""

    with pytest.raises(ValueError):
        reports.generate_ledger(week.store, reports.ReportFilter(), EntityType.BUYER)


def test_buyer_balance_sheet_respects_cutoff(week):
    """Receipts after the cut-off are not counted."""

    before_payment = reports.generate_buyer_balance_sheet(week.store, as_of=date(2024, 3, 2))
    after_payment = reports.generate_buyer_balance_sheet(week.store, as_of=date(2024, 3, 10))

    assert [row.balance for row in before_payment.balances] == [Decimal("2050")]
    assert after_payment.total == Decimal("1000")
    assert after_payment.balances[0].entity_name == "Ravi Traders"


def test_supplier_balance_sheet_reports_payables_as_negative(week):
    """Amounts owed to suppliers are negative balances."""

    sheet = reports.generate_supplier_balance_sheet(week.store, as_of=date(2024, 3, 10))

    assert [row.balance for row in sheet.balances] == [Decimal("-725")]
    assert sheet.total == Decimal("-725")


def test_invoice_aging_buckets_unpaid_balance(week):
    """A 45 day old balance lands in the 31-60 bucket."""

    report = reports.generate_invoice_aging(week.store, as_of=date(2024, 4, 15))

    assert report.summary.buyer_count == 1
    assert report.details[0].buckets == {
        "0-30": Decimal("0"),
        "31-60": Decimal("1000"),
        "61-90": Decimal("0"),
        "90+": Decimal("0"),
    }


@pytest.mark.parametrize(
    ("days", "bucket"),
    [(0, "0-30"), (30, "0-30"), (31, "31-60"), (60, "31-60"), (61, "61-90"), (90, "61-90"), (91, "90+")],
)
def test_aging_bucket_edges(days, bucket):
    """Bucket boundaries are inclusive at their upper end."""

    assert reports.aging_bucket(days) == bucket


def test_commission_report_totals(week):
    """Commission totals carry the effective average rate."""

    report = reports.generate_commission_report(week.store)

    assert report.summary.total_commission == Decimal("200")
    assert report.summary.total_gross_sales == Decimal("2000")
    assert report.summary.average_commission_rate == Decimal("10")
    assert report.details[0].supplier_name == "Gopal Farms"


def test_wages_reports_cover_both_sides(week):
    """Buyer wages and supplier wages are reported separately."""

    assert reports.generate_wages_report(week.store).summary.total_wages == Decimal("150")
    assert reports.generate_supplier_wages_report(week.store).summary.total_wages == Decimal("75")
    other_buyer_filter = reports.ReportFilter(entity_id=week.seeded.other_buyer.id)
    assert reports.generate_wages_report(week.store, other_buyer_filter).details == []


def test_discount_report_splits_invoice_and_payment_discounts(week):
    """Invoice discounts and payment discounts are totalled apart."""

    report = reports.generate_discount_report(week.store)

    assert [row.type for row in report.details] == ["Invoice Discount", "Payment Discount"]
    assert report.summary.total_invoice_discounts == Decimal("100")
    assert report.summary.total_payment_discounts == Decimal("50")
    assert report.summary.total_discounts == Decimal("150")


def test_adjustments_report_splits_by_sign(week):
    """Positive and negative adjustments are summed separately."""

    core_logic.update_buyer_invoice(
        week.seeded.context,
        core_logic.UpdateBuyerInvoiceCommand(invoice_id=week.invoice.id, adjustments=Decimal("30")),
    )

    report = reports.generate_adjustments_report(week.store)

    assert report.summary.invoice_count == 1
    assert report.summary.positive_adjustments == Decimal("30")
    assert report.summary.negative_adjustments == Decimal("0")


def test_sales_and_purchase_registers(week):
    """Registers show nett, paid and balance per invoice."""

    sales = reports.generate_sales_report(week.store)
    purchases = reports.generate_purchase_report(week.store)

    assert (sales.summary.total_amount, sales.summary.total_paid, sales.summary.total_balance) == (
        Decimal("2150"),
        Decimal("1050"),
        Decimal("1000"),
    )
    assert (purchases.summary.total_paid, purchases.summary.total_balance) == (Decimal("1000"), Decimal("725"))


def test_profit_and_loss(week):
    """Commission and wages less other expenses give the net profit."""

    statement = reports.generate_profit_and_loss(week.store)

    assert statement.total_commission == Decimal("200")
    assert statement.other_revenue == Decimal("225")
    assert statement.operating_expenses == Decimal("200")
    assert statement.net_profit == Decimal("225")


def test_product_sales_report(week):
    """Each product reports quantity, value and average price."""

    report = reports.generate_product_sales_report(week.store)
    rows = {row.product_name: row for row in report.details}

    assert rows["Tomato"].quantity_sold == Decimal("10")
    assert rows["Onion"].average_price == Decimal("200")
    assert report.summary.total_value == Decimal("2000")
    assert rows["Tomato"].buyer_count == 1


def test_cash_book_carries_opening_balance(week):
    """Movements before the window become the opening balance."""

    book = reports.generate_cash_book(
        week.store, reports.ReportFilter(start_date=date(2024, 3, 6), end_date=date(2024, 3, 6))
    )

    assert book.opening_balance == Decimal("1000")
    assert book.total_expense == Decimal("1200")
    assert book.closing_balance == Decimal("-200")
    assert [transaction.description for transaction in book.transactions][-1] == "Market fee"


def test_inverted_date_range_yields_empty_report(week):
    """A start after the end returns nothing rather than raising."""

    report_filter = reports.ReportFilter(start_date=date(2024, 3, 10), end_date=date(2024, 3, 1))

    assert reports.generate_sales_report(week.store, report_filter).details == []
    assert reports.generate_cash_book(week.store, report_filter).transactions == []
