"""Command-line entry points for the till.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into calls on the business layer and printing the
results. Each invocation seeds a fresh in-memory store from the catalog
workbook; nothing is written back when the command exits.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import core_logic, log, reporting
from .cart import line_total
from .constants import DiscountType, SaleState, TenderType
from .errors import BusinessRuleViolation, NotSettled, OutOfStock


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


@dataclass(frozen=True)
class CheckoutRequest:
    """A complete sale described on the command line."""

    items: List[Tuple[str, int]]
    tenders: List[Tuple[TenderType, str]]
    discounts: List[Tuple[str, str, DiscountType]] = field(default_factory=list)
    cashier_email: Optional[str] = None


def format_money(amount: Decimal) -> str:
    """Render whole currency units with dot thousand separators (``Rp 55.000``)."""
    return "Rp " + f"{amount:,}".replace(",", ".")


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="till-cli",
        description="Command-line front end for the Till point of sale.",
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
    sale_specs = register_sale_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*sale_specs.values(), *read_specs.values()])


def register_sale_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare the commands that ring up sales."""
    specs = {
        "checkout": register_checkout_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only commands such as catalog listings and reports."""
    specs = {
        "catalog": register_catalog_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "report": register_report_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_checkout_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``checkout``."""
    name = "checkout"
    help_text = "Ring up a sale, take payment and print the receipt summary."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            metavar="CODE[:QTY]",
            help="Product id, SKU or barcode with an optional quantity (repeatable).",
        )
        parser.add_argument(
            "--discount",
            dest="discounts",
            action="append",
            default=[],
            metavar="PRODUCT_ID:VALUE[%]",
            help="Per-line discount; a trailing %% means percentage, otherwise a fixed amount.",
        )
        parser.add_argument(
            "--tender",
            dest="tenders",
            action="append",
            required=True,
            metavar="TYPE:AMOUNT",
            help="Payment in order of submission; for cash AMOUNT is the cash received.",
        )
        parser.add_argument("--cashier", dest="cashier", default=None, help="Cashier email (defaults to config).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_checkout)


def register_catalog_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``catalog``."""
    name = "catalog"
    help_text = "List products, optionally filtered by name/SKU and category."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.add_argument("--category", default=None)
        parser.add_argument("--in-stock", dest="in_stock", action="store_true", help="Hide sold-out products.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_catalog)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    name = "low-stock"
    help_text = "List products at or below their minimum stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_low_stock)


def register_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Display the sales report and optionally export it to .xlsx."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--export", type=Path, default=None, help="Write the report workbook to this path.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
    core_logic.ensure_schema_version(context)
    return context


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


def parse_item(raw: str) -> Tuple[str, int]:
    """Split ``CODE[:QTY]`` into its parts."""
    code, _, quantity = raw.partition(":")
    if not code:
        raise ValueError(f"Invalid item: {raw!r}")
    return code, int(quantity) if quantity else 1


def parse_tender(raw: str) -> Tuple[TenderType, str]:
    """Split ``TYPE:AMOUNT`` into a tender type and its amount text."""
    kind, _, amount = raw.partition(":")
    if not amount:
        raise ValueError(f"Invalid tender: {raw!r}")
    return TenderType(kind.strip().lower()), amount.strip()


def parse_discount(raw: str) -> Tuple[str, str, DiscountType]:
    """Split ``PRODUCT_ID:VALUE[%]`` into product, value and discount type."""
    product_id, _, value = raw.partition(":")
    if not product_id or not value:
        raise ValueError(f"Invalid discount: {raw!r}")
    if value.endswith("%"):
        return product_id, value[:-1], DiscountType.PERCENTAGE
    return product_id, value, DiscountType.FIXED


def translate_checkout(args: argparse.Namespace) -> CheckoutRequest:
    """Translate CLI args into a checkout request."""
    return CheckoutRequest(
        items=[parse_item(raw) for raw in args.items],
        tenders=[parse_tender(raw) for raw in args.tenders],
        discounts=[parse_discount(raw) for raw in args.discounts],
        cashier_email=args.cashier,
    )


def perform_checkout(context: core_logic.RuntimeContext, request: CheckoutRequest) -> core_logic.TransactionRecord:
    """Drive a sale session through cart, payment and commit."""
    cashier = core_logic.login(context, request.cashier_email) if request.cashier_email else None
    session = core_logic.open_sale(context, cashier)
    for code, quantity in request.items:
        line = session.add_product(code)
        if line is None:
            raise OutOfStock(f"'{code}' is out of stock")
        target = line.quantity - 1 + quantity
        if target != line.quantity:
            session.set_quantity(line.product_id, target)
    for product_id, value, discount_type in request.discounts:
        session.set_discount(product_id, value, discount_type)

    session.begin_payment()
    for tender_type, amount in request.tenders:
        if tender_type == TenderType.CASH:
            session.submit_tender(tender_type, cash_received=amount)
        else:
            session.submit_tender(tender_type, amount)
    if session.state != SaleState.SETTLED:
        raise NotSettled(f"Remaining balance {format_money(session.remaining)} is unpaid")
    return session.commit()


def print_receipt(transaction: core_logic.TransactionRecord) -> None:
    print(f"Receipt {transaction.receipt_number} ({transaction.transaction_id})")
    print(f"Cashier: {transaction.cashier.name}")
    for line in transaction.lines:
        print(f"  {line.product.name} x{line.quantity}  {format_money(line_total(line))}")
    print(f"Subtotal: {format_money(transaction.subtotal)}")
    print(f"Tax:      {format_money(transaction.tax)}")
    print(f"Total:    {format_money(transaction.total)}")
    for tender in transaction.tenders:
        print(f"  {tender.tender_type.value}: {format_money(tender.amount)}")
    print(f"Change:   {format_money(transaction.change)}")


def run_checkout(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the checkout workflow via the BLL."""
    request = translate_checkout(args)
    transaction = perform_checkout(context, request)
    print_receipt(transaction)
    return 0


def run_catalog(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the catalog listing."""
    products = core_logic.search_products(
        context,
        args.search,
        category=args.category,
        in_stock_only=args.in_stock,
    )
    default = context.settings.default_min_stock
    for product in products:
        status = reporting.stock_status(product, default).value
        print(f"{product.product_id}\t{product.sku}\t{product.name}\t{format_money(product.price)}\t{product.stock}\t{status}")
    return 0


def run_low_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the low-stock listing."""
    for product in reporting.list_low_stock(context):
        print(f"{product.product_id}\t{product.sku}\t{product.name}\t{product.stock}")
    return 0


def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sales reporting workflow."""
    report = reporting.calculate_sales_report(context)
    print(f"Today revenue:   {format_money(report.today_revenue)}")
    print(f"Monthly revenue: {format_money(report.monthly_revenue)}")
    print(f"Total revenue:   {format_money(report.total_revenue)}")
    print(f"Total profit:    {format_money(report.total_profit)}")
    for entry in report.top_products:
        print(f"  {entry.name}: {entry.quantity} sold, {format_money(entry.revenue)}")
    if args.export is not None:
        path = reporting.export_report(context, args.export)
        print(f"Report written to {path}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
