"""Unit tests for entry status derivation."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from mandi_ledger.constants import EntryStatus
from mandi_ledger.entry_status import refresh_entry_status, resolve_status
from mandi_ledger.models import Entry, EntryItem


def _item(item_id: str = "ei_1", **overrides) -> EntryItem:
    values = {
        "id": item_id,
        "sub_serial_number": 1,
        "product_id": "p_1",
        "quantity": Decimal("10"),
    }
    values.update(overrides)
    return EntryItem(**values)


def _entry(*items: EntryItem, status: EntryStatus = EntryStatus.PENDING) -> Entry:
    return Entry(
        id="e_1",
        serial_number="0301-001",
        supplier_id="s_1",
        created_at=datetime(2024, 3, 1, tzinfo=UTC),
        items=list(items),
        status=status,
    )


def test_entry_without_items_is_pending():
    """An empty entry stays Pending."""

    assert resolve_status(_entry()) == EntryStatus.PENDING


def test_cancelled_is_terminal_even_with_invoiced_items():
    """Cancelled wins over every linkage rule."""

    entry = _entry(_item(supplier_invoice_id="si_1"), status=EntryStatus.CANCELLED)
    assert resolve_status(entry) == EntryStatus.CANCELLED


def test_any_supplier_invoiced_item_makes_entry_invoiced():
    """One item on a supplier invoice is enough for Invoiced."""

    entry = _entry(_item("ei_1", supplier_invoice_id="si_1"), _item("ei_2"))
    assert resolve_status(entry) == EntryStatus.INVOICED


def test_all_items_on_buyer_invoices_is_auctioned():
    """Every item linked to a buyer invoice yields Auctioned."""

    entry = _entry(
        _item("ei_1", buyer_id="b_1", rate_per_quantity=Decimal("5"), invoice_id="inv_1"),
        _item("ei_2", buyer_id="b_2", rate_per_quantity=Decimal("6"), invoice_id="inv_2"),
    )
    assert resolve_status(entry) == EntryStatus.AUCTIONED


def test_all_items_sold_but_not_invoiced_is_draft():
    """Buyer and rate on every item yields Draft."""

    entry = _entry(
        _item("ei_1", buyer_id="b_1", rate_per_quantity=Decimal("5")),
        _item("ei_2", buyer_id="b_1", rate_per_quantity=Decimal("6"), invoice_id="inv_1"),
    )
    assert resolve_status(entry) == EntryStatus.DRAFT


@pytest.mark.parametrize(
    "overrides",
    [
        {},
        {"buyer_id": "b_1"},
        {"rate_per_quantity": Decimal("5")},
    ],
)
def test_partially_sold_entry_is_pending(overrides):
    """A single unsold item keeps the entry Pending."""

    entry = _entry(_item("ei_1", buyer_id="b_1", rate_per_quantity=Decimal("5")), _item("ei_2", **overrides))
    assert resolve_status(entry) == EntryStatus.PENDING


def test_refresh_entry_status_updates_totals_and_status():
    """refresh_entry_status should write totals and the derived status."""

    entry = _entry(
        _item("ei_1", quantity=Decimal("10"), buyer_id="b_1", rate_per_quantity=Decimal("100"), sub_total=Decimal("1000")),
        _item("ei_2", quantity=Decimal("5"), buyer_id="b_1", rate_per_quantity=Decimal("200"), sub_total=Decimal("1000")),
    )

    status = refresh_entry_status(entry)

    assert status == EntryStatus.DRAFT
    assert entry.status == EntryStatus.DRAFT
    assert entry.total_quantities == Decimal("15")
    assert entry.total_amount == Decimal("2000")


def test_refresh_entry_status_is_idempotent():
    """Running the resolver twice changes nothing."""

    entry = _entry(_item(buyer_id="b_1", rate_per_quantity=Decimal("5"), sub_total=Decimal("50"), invoice_id="inv_1"))
    first = refresh_entry_status(entry)
    second = refresh_entry_status(entry)
    assert first == second == EntryStatus.AUCTIONED
