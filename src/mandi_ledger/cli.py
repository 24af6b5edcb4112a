"""Command-line entry points for the Mandi Ledger toolkit.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the business
layer. Write commands persist the workbook when they succeed; read commands
print their report as JSON on stdout.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, data_manager, log, reports
from .constants import EntityType, PaymentMethod


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    writes: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="mandi-cli",
        description="Command-line tools for the Mandi Ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as entries, invoices and payments."""
    specs = {
        "add-buyer": register_add_buyer_command(subparsers),
        "add-supplier": register_add_supplier_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "create-entry": register_create_entry_command(subparsers),
        "sell-item": register_sell_item_command(subparsers),
        "cancel-entry": register_cancel_entry_command(subparsers),
        "delete-entry": register_delete_entry_command(subparsers),
        "create-invoice": register_create_invoice_command(subparsers),
        "delete-invoice": register_delete_invoice_command(subparsers),
        "create-supplier-invoice": register_create_supplier_invoice_command(subparsers),
        "delete-supplier-invoice": register_delete_supplier_invoice_command(subparsers),
        "record-payment": register_record_payment_command(subparsers),
        "record-supplier-payment": register_record_supplier_payment_command(subparsers),
        "delete-transaction": register_delete_transaction_command(subparsers),
        "reconcile": register_reconcile_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as ledgers and reports."""
    specs = {
        "ledger": register_ledger_command(subparsers),
        "buyer-balances": register_buyer_balances_command(subparsers),
        "supplier-balances": register_supplier_balances_command(subparsers),
        "aging": register_aging_command(subparsers),
        "commission": register_commission_command(subparsers),
        "wages": register_wages_command(subparsers),
        "discounts": register_discounts_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_date_window(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start-date", type=date.fromisoformat, default=None, help="First day (YYYY-MM-DD).")
    parser.add_argument("--end-date", type=date.fromisoformat, default=None, help="Last day (YYYY-MM-DD).")


def _add_timestamp(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--date",
        dest="timestamp",
        type=datetime.fromisoformat,
        default=None,
        help="ISO-8601 timestamp (defaults to now, UTC).",
    )


def register_add_buyer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-buyer``."""
    name = "add-buyer"
    help_text = "Register a new buyer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--display-name", default=None)
        parser.add_argument("--alias", default=None)
        parser.add_argument("--token-number", default=None)
        parser.add_argument("--contact-number", default=None)
        parser.add_argument("--place", default=None)
        parser.add_argument("--description", default=None)
        parser.add_argument("--external-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_buyer)


def register_add_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-supplier``."""
    name = "add-supplier"
    help_text = "Register a new supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--display-name", default=None)
        parser.add_argument("--contact-number", default=None)
        parser.add_argument("--place", default=None)
        parser.add_argument("--bank-account-details", default=None)
        parser.add_argument("--external-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_supplier)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--display-name", default=None)
        parser.add_argument("--external-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_create_entry_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``create-entry``."""
    name = "create-entry"
    help_text = "Record a supplier delivery."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            help="Lot as PRODUCT_ID:QUANTITY[:GROSS_WEIGHT[:SHUTE_WEIGHT]]; repeat per lot.",
        )
        _add_timestamp(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_create_entry)


def register_sell_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sell-item``."""
    name = "sell-item"
    help_text = "Record the auction of an entry item to a buyer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item-id", required=True)
        parser.add_argument("--buyer-id", required=True)
        parser.add_argument("--rate", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sell_item)


def register_cancel_entry_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cancel-entry``."""
    name = "cancel-entry"
    help_text = "Cancel an entry that has no invoiced items."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--entry-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cancel_entry)


def register_delete_entry_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-entry``."""
    name = "delete-entry"
    help_text = "Delete an entry none of whose items has been auctioned."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--entry-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_entry)


def register_create_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``create-invoice``."""
    name = "create-invoice"
    help_text = "Invoice sold items to a buyer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--buyer-id", required=True)
        parser.add_argument("--item-id", dest="item_ids", action="append", required=True)
        parser.add_argument("--wages", default=None, help="Defaults to the per-unit buyer wage.")
        parser.add_argument("--adjustments", default="0")
        parser.add_argument("--discount", default="0")
        _add_timestamp(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_create_invoice)


def register_delete_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-invoice``."""
    name = "delete-invoice"
    help_text = "Delete a buyer invoice and release its items."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--invoice-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_invoice)


def register_create_supplier_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``create-supplier-invoice``."""
    name = "create-supplier-invoice"
    help_text = "Settle one or more entries of a supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--entry-id", dest="entry_ids", action="append", required=True)
        parser.add_argument("--commission-rate", default=None, help="Percent; defaults to config.ini.")
        parser.add_argument("--wages", default=None, help="Defaults to the per-unit supplier wage.")
        parser.add_argument("--adjustments", default="0")
        _add_timestamp(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_create_supplier_invoice)


def register_delete_supplier_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-supplier-invoice``."""
    name = "delete-supplier-invoice"
    help_text = "Delete a supplier invoice and release its entries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--invoice-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_supplier_invoice)


def register_record_payment_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``record-payment``."""
    name = "record-payment"
    help_text = "Record money received from a buyer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--buyer-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--discount", default="0")
        parser.add_argument("--method", choices=[member.value for member in PaymentMethod], default=PaymentMethod.CASH.value)
        parser.add_argument("--reference", default=None)
        parser.add_argument("--description", default=None)
        parser.add_argument("--invoice-id", dest="invoice_ids", action="append", default=[])
        _add_timestamp(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_record_payment)


def register_record_supplier_payment_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``record-supplier-payment``."""
    name = "record-supplier-payment"
    help_text = "Pay a supplier, or advance money against uninvoiced entries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--method", choices=[member.value for member in PaymentMethod], default=PaymentMethod.CASH.value)
        parser.add_argument("--reference", default=None)
        parser.add_argument("--description", default=None)
        parser.add_argument("--invoice-id", dest="invoice_ids", action="append", default=[])
        parser.add_argument(
            "--entry-id",
            dest="entry_ids",
            action="append",
            default=[],
            help="Entry covered by an advance; only used without --invoice-id.",
        )
        _add_timestamp(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_record_supplier_payment)


def register_delete_transaction_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-transaction``."""
    name = "delete-transaction"
    help_text = "Delete a cash book line and rebuild balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_transaction)


def register_reconcile_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``reconcile``."""
    name = "reconcile"
    help_text = "Rebuild every balance from invoices and the cash book."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reconcile)


def register_ledger_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``ledger``."""
    name = "ledger"
    help_text = "Print the running-balance ledger of a buyer or supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--entity-type", choices=[member.value for member in EntityType], required=True)
        parser.add_argument("--entity-id", required=True)
        _add_date_window(parser)
        parser.add_argument(
            "--carry-forward",
            action="store_true",
            help="Open with the balance accumulated before --start-date.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_ledger_report, writes=False)


def register_buyer_balances_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``buyer-balances``."""
    name = "buyer-balances"
    help_text = "Print every buyer with an outstanding balance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--as-of", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_buyer_balances_report, writes=False
    )


def register_supplier_balances_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``supplier-balances``."""
    name = "supplier-balances"
    help_text = "Print every supplier still owed money."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--as-of", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_supplier_balances_report, writes=False
    )


def register_aging_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``aging``."""
    name = "aging"
    help_text = "Print unpaid buyer invoices grouped by age."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--as-of", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_aging_report, writes=False)


def register_commission_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``commission``."""
    name = "commission"
    help_text = "Print commission earned on supplier invoices."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_date_window(parser)
        parser.add_argument("--supplier-id", dest="entity_id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_commission_report, writes=False
    )


def register_wages_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``wages``."""
    name = "wages"
    help_text = "Print handling wages charged on invoices."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_date_window(parser)
        parser.add_argument(
            "--entity-type",
            choices=[member.value for member in EntityType],
            default=EntityType.BUYER.value,
            help="Wages on buyer invoices (default) or on supplier invoices.",
        )
        parser.add_argument("--entity-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_wages_report, writes=False)


def register_discounts_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``discounts``."""
    name = "discounts"
    help_text = "Print invoice and payment discounts granted to buyers."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_date_window(parser)
        parser.add_argument("--buyer-id", dest="entity_id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_discounts_report, writes=False
    )


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / data_manager.CONFIG_FILE_NAME
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def _optional_decimal(raw: Optional[str]) -> Optional[Decimal]:
    return Decimal(raw) if raw is not None else None


def parse_item_spec(raw: str) -> core_logic.EntryItemInput:
    """Parse ``PRODUCT_ID:QUANTITY[:GROSS_WEIGHT[:SHUTE_WEIGHT]]``.

    Raises:
        ValueError: If ``raw`` has too few or too many parts.
    """
    parts = raw.split(":")
    if not 2 <= len(parts) <= 4:
        raise ValueError(f"Invalid item '{raw}': expected PRODUCT_ID:QUANTITY[:GROSS[:SHUTE]]")
    weights = [Decimal(part) for part in parts[2:]] + [Decimal("0")] * (4 - len(parts))
    return core_logic.EntryItemInput(
        product_id=parts[0],
        quantity=Decimal(parts[1]),
        gross_weight=weights[0],
        shute_weight=weights[1],
    )


def translate_add_buyer(args: argparse.Namespace) -> core_logic.BuyerDetails:
    """Translate CLI args into buyer details."""
    return core_logic.BuyerDetails(
        buyer_name=args.name,
        display_name=args.display_name,
        alias=args.alias,
        token_number=args.token_number,
        contact_number=args.contact_number,
        place=args.place,
        description=args.description,
        external_id=args.external_id,
    )


def translate_add_supplier(args: argparse.Namespace) -> core_logic.SupplierDetails:
    """Translate CLI args into supplier details."""
    return core_logic.SupplierDetails(
        supplier_name=args.name,
        display_name=args.display_name,
        contact_number=args.contact_number,
        place=args.place,
        bank_account_details=args.bank_account_details,
        external_id=args.external_id,
    )


def translate_add_product(args: argparse.Namespace) -> core_logic.ProductDetails:
    """Translate CLI args into product details."""
    return core_logic.ProductDetails(
        product_name=args.name,
        display_name=args.display_name,
        external_id=args.external_id,
    )


def translate_create_entry(args: argparse.Namespace) -> core_logic.CreateEntryCommand:
    """Translate CLI args into an entry command object."""
    return core_logic.CreateEntryCommand(
        supplier_id=args.supplier_id,
        items=[parse_item_spec(raw) for raw in args.items],
        timestamp=args.timestamp,
    )


def translate_sell_item(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        entry_item_id=args.item_id,
        buyer_id=args.buyer_id,
        rate_per_quantity=Decimal(args.rate),
    )


def translate_create_invoice(args: argparse.Namespace) -> core_logic.BuyerInvoiceCommand:
    """Translate CLI args into a buyer invoice command object."""
    return core_logic.BuyerInvoiceCommand(
        buyer_id=args.buyer_id,
        entry_item_ids=list(args.item_ids),
        wages=_optional_decimal(args.wages),
        adjustments=Decimal(args.adjustments),
        discount=Decimal(args.discount),
        timestamp=args.timestamp,
    )


def translate_create_supplier_invoice(args: argparse.Namespace) -> core_logic.SupplierInvoiceCommand:
    """Translate CLI args into a supplier invoice command object."""
    return core_logic.SupplierInvoiceCommand(
        entry_ids=list(args.entry_ids),
        commission_rate=_optional_decimal(args.commission_rate),
        wages=_optional_decimal(args.wages),
        adjustments=Decimal(args.adjustments),
        timestamp=args.timestamp,
    )


def translate_record_payment(args: argparse.Namespace) -> core_logic.BuyerPaymentCommand:
    """Translate CLI args into a buyer payment command object."""
    return core_logic.BuyerPaymentCommand(
        buyer_id=args.buyer_id,
        amount=Decimal(args.amount),
        discount=Decimal(args.discount),
        method=PaymentMethod(args.method),
        reference=args.reference,
        description=args.description,
        invoice_ids=tuple(args.invoice_ids),
        timestamp=args.timestamp,
    )


def translate_record_supplier_payment(args: argparse.Namespace) -> core_logic.SupplierPaymentCommand:
    """Translate CLI args into a supplier payment command object."""
    return core_logic.SupplierPaymentCommand(
        supplier_id=args.supplier_id,
        amount=Decimal(args.amount),
        method=PaymentMethod(args.method),
        reference=args.reference,
        description=args.description,
        invoice_ids=tuple(args.invoice_ids),
        entry_ids=tuple(args.entry_ids),
        timestamp=args.timestamp,
    )


def translate_report_filter(args: argparse.Namespace) -> reports.ReportFilter:
    """Translate CLI args into a report filter."""
    return reports.ReportFilter(
        start_date=getattr(args, "start_date", None),
        end_date=getattr(args, "end_date", None),
        entity_id=getattr(args, "entity_id", None),
    )


def emit_payload(report: Any) -> None:
    """Print ``report`` as indented camelCase JSON."""
    print(json.dumps(data_manager.to_payload(report), indent=2))


def run_add_buyer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-buyer workflow in the BLL."""
    buyer = core_logic.add_buyer(context, translate_add_buyer(args))
    emit_payload(buyer)
    return 0


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-supplier workflow in the BLL."""
    supplier = core_logic.add_supplier(context, translate_add_supplier(args))
    emit_payload(supplier)
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.add_product(context, translate_add_product(args))
    emit_payload(product)
    return 0


def run_create_entry(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the create-entry workflow via the BLL."""
    entry = core_logic.create_entry(context, translate_create_entry(args))
    emit_payload(entry)
    return 0


def run_sell_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the auction workflow via the BLL."""
    item = core_logic.record_sale(context, translate_sell_item(args))
    emit_payload(item)
    return 0


def run_cancel_entry(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.cancel_entry(context, args.entry_id)
    return 0


def run_delete_entry(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_entry(context, args.entry_id)
    return 0


def run_create_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the buyer invoice workflow via the BLL."""
    invoice = core_logic.create_buyer_invoice(context, translate_create_invoice(args))
    emit_payload(invoice)
    return 0


def run_delete_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_buyer_invoice(context, args.invoice_id)
    return 0


def run_create_supplier_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the supplier invoice workflow via the BLL."""
    supplier_invoice = core_logic.create_supplier_invoice(context, translate_create_supplier_invoice(args))
    emit_payload(supplier_invoice)
    return 0


def run_delete_supplier_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_supplier_invoice(context, args.invoice_id)
    return 0


def run_record_payment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the buyer payment workflow via the BLL."""
    transaction = core_logic.record_buyer_payment(context, translate_record_payment(args))
    emit_payload(transaction)
    return 0


def run_record_supplier_payment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the supplier payment workflow via the BLL."""
    transaction = core_logic.record_supplier_payment(context, translate_record_supplier_payment(args))
    emit_payload(transaction)
    return 0


def run_delete_transaction(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_cash_flow_transaction(context, args.transaction_id)
    return 0


def run_reconcile(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a full reconciliation and print its summary."""
    emit_payload(core_logic.reconcile_ledger(context))
    return 0


def run_ledger_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the ledger reporting workflow."""
    report = reports.generate_ledger(
        context.store,
        translate_report_filter(args),
        EntityType(args.entity_type),
        carry_forward=args.carry_forward,
    )
    emit_payload(report)
    return 0


def run_buyer_balances_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit_payload(reports.generate_buyer_balance_sheet(context.store, args.as_of))
    return 0


def run_supplier_balances_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit_payload(reports.generate_supplier_balance_sheet(context.store, args.as_of))
    return 0


def run_aging_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit_payload(reports.generate_invoice_aging(context.store, args.as_of))
    return 0


def run_commission_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit_payload(reports.generate_commission_report(context.store, translate_report_filter(args)))
    return 0


def run_wages_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the wages reporting workflow for buyer or supplier invoices."""
    report_filter = translate_report_filter(args)
    if EntityType(args.entity_type) == EntityType.SUPPLIER:
        emit_payload(reports.generate_supplier_wages_report(context.store, report_filter))
    else:
        emit_payload(reports.generate_wages_report(context.store, report_filter))
    return 0


def run_discounts_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit_payload(reports.generate_discount_report(context.store, translate_report_filter(args)))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        spec = command_table.get(args.command)
        if spec is not None and spec.writes:
            core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and spec is not None and spec.writes:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
