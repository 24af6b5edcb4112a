"""Integration tests describing end-to-end Mandi Ledger workflows.

These scenarios drive the business layer against a real workbook, persisting
and reloading between steps so every figure is checked after a round trip
through the data access layer.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from mandi_ledger import core_logic, reports
from mandi_ledger.constants import EntityType, EntryStatus, SupplierInvoiceStatus
from mandi_ledger.errors import BusinessRuleViolation

MORNING = datetime(2024, 3, 1, 6, 0, tzinfo=UTC)


def _register_master_data(context: core_logic.RuntimeContext) -> None:
    """Add one buyer, one supplier and two products under stable external ids."""

    core_logic.add_buyer(context, core_logic.BuyerDetails(buyer_name="Ravi Traders", external_id="B-1"))
    core_logic.add_supplier(context, core_logic.SupplierDetails(supplier_name="Gopal Farms", external_id="S-1"))
    core_logic.add_product(context, core_logic.ProductDetails(product_name="Tomato", external_id="P-1"))
    core_logic.add_product(context, core_logic.ProductDetails(product_name="Onion", external_id="P-2"))


def _deliver_and_sell(context: core_logic.RuntimeContext, *, external_id: str = "E-1"):
    entry = core_logic.create_entry(
        context,
        core_logic.CreateEntryCommand(
            supplier_id="S-1",
            items=[
                core_logic.EntryItemInput(product_id="P-1", quantity=Decimal("10")),
                core_logic.EntryItemInput(product_id="P-2", quantity=Decimal("5")),
            ],
            timestamp=MORNING,
            external_id=external_id,
        ),
    )
    for item, rate in zip(entry.items, ("100", "200")):
        core_logic.record_sale(
            context,
            core_logic.SaleCommand(entry_item_id=item.id, buyer_id="B-1", rate_per_quantity=Decimal(rate)),
        )
    return entry


def _reload(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    core_logic.persist_context(context)
    return core_logic.refresh_context(context)


def test_trading_day_survives_a_round_trip(runtime_context):
    """Deliver, auction, invoice and settle with a reload between each stage."""

    context = runtime_context
    _register_master_data(context)
    context = _reload(context)

    entry = _deliver_and_sell(context)
    context = _reload(context)

    invoice = core_logic.create_buyer_invoice(
        context,
        core_logic.BuyerInvoiceCommand(
            buyer_id="B-1",
            entry_item_ids=[item.id for item in entry.items],
            discount=Decimal("100"),
            timestamp=MORNING + timedelta(hours=8),
        ),
    )
    supplier_invoice = core_logic.create_supplier_invoice(
        context,
        core_logic.SupplierInvoiceCommand(entry_ids=["E-1"], timestamp=MORNING + timedelta(hours=9)),
    )
    context = _reload(context)

    core_logic.record_buyer_payment(
        context,
        core_logic.BuyerPaymentCommand(buyer_id="B-1", amount=Decimal("1000"), timestamp=MORNING + timedelta(days=1)),
    )
    core_logic.record_supplier_payment(
        context,
        core_logic.SupplierPaymentCommand(supplier_id="S-1", amount=Decimal("1725"), timestamp=MORNING + timedelta(days=1)),
    )
    context = _reload(context)

    store = context.store
    buyer = store.get_buyer("B-1")
    supplier = store.get_supplier("S-1")
    assert store.get_entry("E-1").status == EntryStatus.INVOICED
    assert store.invoices[invoice.id].nett_amount == Decimal("2150")
    assert store.invoices[invoice.id].paid_amount == Decimal("1000")
    assert buyer.outstanding == Decimal("1050")
    assert store.supplier_invoices[supplier_invoice.id].status == SupplierInvoiceStatus.PAID
    assert supplier.outstanding == Decimal("0")

    ledger = reports.generate_ledger(store, reports.ReportFilter(entity_id="B-1"), EntityType.BUYER)
    assert ledger.summary.closing_balance == buyer.outstanding


def test_advance_recorded_before_reload_is_absorbed_by_invoice(runtime_context):
    """An advance saved to the workbook still lands on the later supplier invoice."""

    context = runtime_context
    _register_master_data(context)
    entry = _deliver_and_sell(context)
    core_logic.record_supplier_payment(
        context,
        core_logic.SupplierPaymentCommand(
            supplier_id="S-1", amount=Decimal("500"), entry_ids=[entry.id], timestamp=MORNING
        ),
    )
    context = _reload(context)
    assert context.store.get_supplier("S-1").outstanding == Decimal("500")

    supplier_invoice = core_logic.create_supplier_invoice(
        context,
        core_logic.SupplierInvoiceCommand(entry_ids=[entry.id], timestamp=MORNING + timedelta(hours=2)),
    )
    context = _reload(context)

    stored = context.store.supplier_invoices[supplier_invoice.id]
    assert stored.advance_paid == Decimal("500")
    assert stored.final_payable == Decimal("1225")
    assert stored.status == SupplierInvoiceStatus.PARTIALLY_PAID
    assert context.store.get_supplier("S-1").outstanding == Decimal("-1225")


def test_numbering_continues_after_reload(runtime_context):
    """Serials and invoice numbers pick up from the saved workbook."""

    context = runtime_context
    _register_master_data(context)
    first = _deliver_and_sell(context)
    core_logic.create_buyer_invoice(
        context,
        core_logic.BuyerInvoiceCommand(buyer_id="B-1", entry_item_ids=[first.items[0].id], timestamp=MORNING),
    )
    context = _reload(context)

    core_logic.add_supplier(context, core_logic.SupplierDetails(supplier_name="Meena Orchards", external_id="S-2"))
    second = core_logic.create_entry(
        context,
        core_logic.CreateEntryCommand(
            supplier_id="S-2",
            items=[core_logic.EntryItemInput(product_id="P-1", quantity=Decimal("4"))],
            timestamp=MORNING + timedelta(hours=1),
        ),
    )
    invoice = core_logic.create_buyer_invoice(
        context,
        core_logic.BuyerInvoiceCommand(buyer_id="B-1", entry_item_ids=[first.items[1].id], timestamp=MORNING),
    )

    assert first.serial_number == "0301-001"
    assert second.serial_number == "0301-002"
    assert invoice.invoice_number == "BI-20240301-002"


def test_refresh_discards_unsaved_changes(runtime_context):
    """Reloading from disk drops anything that was never persisted."""

    context = runtime_context
    _register_master_data(context)
    context = _reload(context)

    core_logic.add_buyer(context, core_logic.BuyerDetails(buyer_name="Unsaved Buyer"))
    refreshed = core_logic.refresh_context(context)

    assert [buyer.buyer_name for buyer in core_logic.list_buyers(refreshed)] == ["Ravi Traders"]


def test_rejected_operation_never_reaches_the_workbook(runtime_context):
    """A rolled back overpayment leaves the saved ledger unchanged."""

    context = runtime_context
    _register_master_data(context)
    entry = _deliver_and_sell(context)
    core_logic.create_buyer_invoice(
        context,
        core_logic.BuyerInvoiceCommand(
            buyer_id="B-1", entry_item_ids=[item.id for item in entry.items], wages=Decimal("0"), timestamp=MORNING
        ),
    )

    with pytest.raises(BusinessRuleViolation):
        core_logic.record_buyer_payment(
            context,
            core_logic.BuyerPaymentCommand(buyer_id="B-1", amount=Decimal("5000"), timestamp=MORNING),
        )
    context = _reload(context)

    assert context.store.transactions == {}
    assert context.store.get_buyer("B-1").outstanding == Decimal("2000")


def test_cancel_and_delete_transaction_persist(runtime_context):
    """Cancelled entries and removed payments stay that way after a reload."""

    context = runtime_context
    _register_master_data(context)
    entry = _deliver_and_sell(context)
    invoice = core_logic.create_buyer_invoice(
        context,
        core_logic.BuyerInvoiceCommand(
            buyer_id="B-1", entry_item_ids=[entry.items[0].id], wages=Decimal("0"), timestamp=MORNING
        ),
    )
    payment = core_logic.record_buyer_payment(
        context,
        core_logic.BuyerPaymentCommand(buyer_id="B-1", amount=Decimal("600"), timestamp=MORNING),
    )
    spare = core_logic.create_entry(
        context,
        core_logic.CreateEntryCommand(
            supplier_id="S-1",
            items=[core_logic.EntryItemInput(product_id="P-2", quantity=Decimal("3"))],
            timestamp=MORNING + timedelta(days=1),
        ),
    )
    core_logic.cancel_entry(context, spare.id)
    context = _reload(context)

    core_logic.delete_cash_flow_transaction(context, payment.id)
    context = _reload(context)

    store = context.store
    assert store.entries[spare.id].status == EntryStatus.CANCELLED
    assert store.invoices[invoice.id].paid_amount == Decimal("0")
    assert store.get_buyer("B-1").outstanding == Decimal("1000")
    summary = core_logic.reconcile_ledger(context)
    assert summary.total_receivable == Decimal("1000")
