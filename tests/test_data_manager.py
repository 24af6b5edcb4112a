"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
import json
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from mandi_ledger import core_logic, data_manager
from mandi_ledger.constants import EntryStatus, ExpenseCategory, SheetName
from mandi_ledger.reconciler import reconcile


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_parent(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=master_workbook.xlsx")
    nested = tmp_path / "nested" / "deeper"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    result = data_manager.find_config_file()
    assert result == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "BusinessName") == "Test Mandi"
    assert parser.get("Defaults", "CommissionRate") == "10"


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    parser = configparser.ConfigParser()
    bundle = config_factory(make_relative=True, commission_rate="8")
    parser.read(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.commission_rate == Decimal("8")
    assert settings.supplier_wage_rate == Decimal("5")
    assert settings.buyer_wage_rate == Decimal("10")


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_bad_number(tmp_path):
    """Non-numeric defaults are reported as ValueError."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=book.xlsx\nBusinessName=X\nSchemaVersion=1.0.0\n"
        "[Defaults]\nCommissionRate=ten\n"
    )
    with pytest.raises(ValueError, match="CommissionRate"):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)
    data_manager.validate_workbook(workbook)


def test_open_workbook_missing_file_raises(tmp_path):
    """Opening a missing workbook should raise FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_validate_workbook_reports_missing_sheet(master_workbook_path):
    """A workbook without a managed sheet fails validation."""

    workbook = openpyxl.load_workbook(master_workbook_path)
    workbook.remove(workbook[SheetName.CASH_FLOW.value])

    with pytest.raises(KeyError, match="CashFlow"):
        data_manager.validate_workbook(workbook)


def test_replace_rows_keeps_header(master_workbook_path):
    """replace_rows overwrites data rows and leaves the header in place."""

    workbook = data_manager.open_workbook(master_workbook_path)
    sheet_name = SheetName.PRODUCTS.value
    data_manager.replace_rows(workbook, sheet_name, [["p_1", "Tomato", "Tomato", None], ["p_2", "Onion", "", None]])
    written = data_manager.replace_rows(workbook, sheet_name, [["p_3", "Chilli", "Chilli", "LEG-3"]])

    rows = list(data_manager.iter_sheet_rows(workbook, sheet_name))
    assert written == 1
    assert rows == [("p_3", "Chilli", "Chilli", "LEG-3")]
    assert [cell.value for cell in workbook[sheet_name][1]] == list(data_manager.SHEET_COLUMNS[sheet_name])


def test_save_workbook_creates_parent_directories(tmp_path, master_workbook_path):
    """save_workbook should create missing folders for the destination."""

    workbook = data_manager.open_workbook(master_workbook_path)
    destination = tmp_path / "exports" / "copy.xlsx"

    data_manager.save_workbook(workbook, destination)

    assert destination.exists()


def test_store_round_trip_through_workbook(seeded, master_workbook_path):
    """write_store followed by load_store reproduces every record."""

    context = seeded.context
    moment = datetime(2024, 3, 1, 9, 30, tzinfo=UTC)
    entry = core_logic.create_entry(
        context,
        core_logic.CreateEntryCommand(
            supplier_id=seeded.supplier.id,
            items=[
                core_logic.EntryItemInput(
                    product_id=seeded.product.id,
                    quantity=Decimal("10"),
                    gross_weight=Decimal("512.5"),
                    shute_weight=Decimal("12.5"),
                ),
                core_logic.EntryItemInput(product_id=seeded.other_product.id, quantity=Decimal("5")),
            ],
            timestamp=moment,
            external_id="LEGACY-E1",
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
            buyer_id=seeded.buyer.id, entry_item_ids=[item.id for item in entry.items], timestamp=moment
        ),
    )
    supplier_invoice = core_logic.create_supplier_invoice(
        context,
        core_logic.SupplierInvoiceCommand(entry_ids=[entry.id], timestamp=moment),
    )
    payment = core_logic.record_supplier_payment(
        context,
        core_logic.SupplierPaymentCommand(supplier_id=seeded.supplier.id, amount=Decimal("725"), timestamp=moment),
    )

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.write_store(workbook, context.store)
    data_manager.save_workbook(workbook, master_workbook_path)

    loaded = data_manager.load_store(data_manager.open_workbook(master_workbook_path))
    reconcile(loaded)

    assert set(loaded.buyers) == set(context.store.buyers)
    loaded_entry = loaded.get_entry("LEGACY-E1")
    assert loaded_entry.id == entry.id
    assert loaded_entry.created_at == moment
    assert loaded_entry.status == EntryStatus.INVOICED
    assert [item.nett_weight for item in loaded_entry.items] == [Decimal("500"), Decimal("0")]
    assert loaded.invoices[invoice.id].items[1].sub_total == Decimal("1000")
    assert loaded.supplier_invoices[supplier_invoice.id].nett_amount == Decimal("1725")
    assert loaded.supplier_invoices[supplier_invoice.id].paid_amount == Decimal("725")
    assert loaded.transactions[payment.id].category == ExpenseCategory.SUPPLIER_PAYMENT
    assert loaded.transactions[payment.id].related_invoice_ids == [supplier_invoice.id]
    assert loaded.sequence == context.store.sequence
    assert loaded.buyers[seeded.buyer.id].outstanding == context.store.buyers[seeded.buyer.id].outstanding


def test_load_store_drops_orphan_items(master_workbook_path):
    """Entry items whose entry is missing are skipped."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.replace_rows(
        workbook,
        SheetName.ENTRY_ITEMS.value,
        [["e_missing", "ei_1", 1, "p_1", 3, 0, 0, 0, None, None, 0, None, None]],
    )

    store = data_manager.load_store(workbook)

    assert store.entries == {}


def test_load_store_reads_naive_dates_as_utc(master_workbook_path):
    """Hand-entered timestamps without a zone are read as UTC."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.replace_rows(
        workbook,
        SheetName.ENTRIES.value,
        [["e_1", "0301-001", "s_1", "2024-03-01T09:30:00", 0, 0, "Pending", 0, None]],
    )

    store = data_manager.load_store(workbook)

    assert store.entries["e_1"].created_at == datetime(2024, 3, 1, 9, 30, tzinfo=UTC)


def test_camel_case():
    """snake_case names map onto camelCase keys."""

    assert data_manager.camel_case("balance_brought_forward") == "balanceBroughtForward"
    assert data_manager.camel_case("id") == "id"


def test_to_payload_is_json_ready(seeded):
    """Payloads use camelCase keys, plain numbers and ISO dates."""

    transaction = core_logic.record_other_expense(
        seeded.context,
        core_logic.ExpenseCommand(
            amount=Decimal("12.5"),
            description="Tea",
            timestamp=datetime(2024, 3, 1, 9, 30, tzinfo=UTC),
        ),
    )

    payload = data_manager.to_payload(transaction)

    assert payload["amount"] == 12.5
    assert payload["discount"] == 0
    assert payload["category"] == "Other"
    assert payload["date"] == "2024-03-01T09:30:00+00:00"
    assert payload["relatedInvoiceIds"] == []
    json.dumps(payload)
