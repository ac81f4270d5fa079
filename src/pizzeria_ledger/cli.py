"""Command-line entry points for the pizzeria ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the engines, and
printing reports. Keeping the CLI thin means every cascade and linkage rule
lives in the engines, never here.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import cascade, core_logic, expansion, integrity, log, reports, transfer
from .constants import RESET_CONFIRMATION_TEXT, MenuCategory
from .errors import NotConnected, NotFound, ValidationError, WriteFailure


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def decimal_arg(raw: str) -> Decimal:
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"not a number: {raw!r}") from exc
    if not value.is_finite():
        raise argparse.ArgumentTypeError(f"not a finite number: {raw!r}")
    return value


def date_arg(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO date (YYYY-MM-DD): {raw!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pizzeria-cli",
        description="Command-line tools for the Pizzeria ledger.",
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


def _command(
    name: str,
    help_text: str,
    configure: Callable[[argparse.ArgumentParser], None],
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        configure(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def _no_arguments(parser: argparse.ArgumentParser) -> None:
    return None


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and deletions."""
    specs = {
        "add-menu-item": _command("add-menu-item", "Add an item to the menu.", _configure_menu_item, run_add_menu_item),
        "add-customization": _command(
            "add-customization", "Add a pizza customization.", _configure_customization, run_add_customization
        ),
        "sale": _command("sale", "Record a sale with its COGS and tax entries.", _configure_sale, run_sale),
        "expense": _command("expense", "Record a free-form operating expense.", _configure_expense, run_expense),
        "purchase": _command(
            "purchase", "Record an inventory purchase and its expense.", _configure_purchase, run_purchase
        ),
        "payroll": _command("payroll", "Record a payroll run and its expense.", _configure_payroll, run_payroll),
        "edit-transaction": _command(
            "edit-transaction", "Edit a free-form transaction.", _configure_edit_transaction, run_edit_transaction
        ),
        "edit-inventory": _command(
            "edit-inventory", "Edit an inventory item and its expense.", _configure_edit_inventory, run_edit_inventory
        ),
        "edit-payroll": _command(
            "edit-payroll", "Edit a payroll entry and its expense.", _configure_edit_payroll, run_edit_payroll
        ),
        "delete-transaction": _command(
            "delete-transaction",
            "Delete a transaction and every linked record.",
            _configure_id("transaction_id"),
            run_delete_transaction,
        ),
        "delete-inventory": _command(
            "delete-inventory",
            "Delete an inventory item and its expense.",
            _configure_id("item_id"),
            run_delete_inventory,
        ),
        "delete-payroll": _command(
            "delete-payroll",
            "Delete a payroll entry and its expense.",
            _configure_id("entry_id"),
            run_delete_payroll,
        ),
        "reset": _command("reset", "Erase all ledger data and re-seed the menu.", _configure_reset, run_reset),
        "import": _command("import", "Replace the ledger with a JSON export.", _configure_import, run_import),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports and exports."""
    specs = {
        "pnl": _command("pnl", "Display profit and loss totals.", _no_arguments, run_pnl_report),
        "profitability": _command(
            "profitability", "Display profitability per menu item.", _configure_profitability, run_profitability_report
        ),
        "inventory": _command("inventory", "Display inventory status.", _configure_inventory, run_inventory_report),
        "log": _command("log", "Display the transaction log, newest first.", _no_arguments, run_log_report),
        "check": _command("check", "Verify ledger link integrity.", _no_arguments, run_check),
        "export": _command("export", "Write all ledger data as JSON.", _configure_output, run_export),
        "export-csv": _command("export-csv", "Write the P&L listing as CSV.", _configure_output, run_export_csv),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _configure_id(dest: str) -> Callable[[argparse.ArgumentParser], None]:
    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(f"--{dest.replace('_', '-')}", dest=dest, required=True)

    return configure


def _configure_menu_item(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", required=True)
    parser.add_argument("--price", type=decimal_arg, required=True)
    parser.add_argument("--cost", type=decimal_arg, required=True)
    parser.add_argument("--category", choices=[c.value for c in MenuCategory], default=MenuCategory.PIZZA.value)


def _configure_customization(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", required=True)
    parser.add_argument("--price", type=decimal_arg, required=True)
    parser.add_argument("--cost", type=decimal_arg, required=True)


def _configure_sale(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--menu-item-id", required=True)
    parser.add_argument("--quantity", type=int, default=1)
    parser.add_argument("--date", type=date_arg, default=None, help="Sale date (defaults to today).")
    parser.add_argument("--customization-id", action="append", default=[], dest="customization_ids")
    parser.add_argument(
        "--no-tax",
        action="store_true",
        help="The price does not include sales tax, so no tax entry is written.",
    )


def _configure_expense(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--amount", type=decimal_arg, required=True)
    parser.add_argument("--description", required=True)
    parser.add_argument("--category", required=True)
    parser.add_argument("--date", type=date_arg, default=None)


def _configure_purchase(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", required=True)
    parser.add_argument("--quantity", type=decimal_arg, required=True)
    parser.add_argument("--unit", required=True)
    parser.add_argument("--total-cost", type=decimal_arg, required=True)
    parser.add_argument("--purchase-date", type=date_arg, default=None)
    parser.add_argument("--expiry-date", type=date_arg, required=True)


def _configure_payroll(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--employee-name", required=True)
    parser.add_argument("--gross-pay", type=decimal_arg, required=True)
    parser.add_argument("--deductions", type=decimal_arg, default=Decimal("0"))
    parser.add_argument("--pay-date", type=date_arg, default=None)


def _configure_edit_transaction(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--transaction-id", required=True)
    parser.add_argument("--amount", type=decimal_arg)
    parser.add_argument("--description")
    parser.add_argument("--category")
    parser.add_argument("--date", type=date_arg)


def _configure_edit_inventory(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--item-id", required=True)
    parser.add_argument("--name")
    parser.add_argument("--quantity", type=decimal_arg)
    parser.add_argument("--unit")
    parser.add_argument("--total-cost", type=decimal_arg)
    parser.add_argument("--purchase-date", type=date_arg)
    parser.add_argument("--expiry-date", type=date_arg)


def _configure_edit_payroll(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--entry-id", required=True)
    parser.add_argument("--employee-name")
    parser.add_argument("--gross-pay", type=decimal_arg)
    parser.add_argument("--deductions", type=decimal_arg)
    parser.add_argument("--pay-date", type=date_arg)


def _configure_reset(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--confirm",
        required=True,
        help=f"Type {RESET_CONFIRMATION_TEXT} to permanently erase all data.",
    )


def _configure_import(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--input", type=Path, required=True)


def _configure_output(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--output", type=Path, default=None, help="File to write (defaults to stdout).")


def _configure_profitability(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--by-id",
        action="store_true",
        help="Attribute cost of goods by menu item id instead of by name.",
    )


def _configure_inventory(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--today", type=date_arg, default=None)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
    try:
        core_logic.ensure_schema_version(context)
    except RuntimeError:
        core_logic.close_context(context)
        raise
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


def translate_sale(args: argparse.Namespace) -> expansion.SaleCommand:
    """Translate CLI args into a sale command object."""
    return expansion.SaleCommand(
        menu_item_id=args.menu_item_id,
        quantity=args.quantity,
        date=args.date or date.today(),
        includes_tax=not args.no_tax,
        customization_ids=tuple(args.customization_ids or ()),
    )


def translate_expense(args: argparse.Namespace) -> expansion.ExpenseCommand:
    return expansion.ExpenseCommand(
        amount=args.amount,
        description=args.description,
        category=args.category,
        date=args.date or date.today(),
    )


def translate_purchase(args: argparse.Namespace) -> expansion.InventoryPurchaseCommand:
    return expansion.InventoryPurchaseCommand(
        name=args.name,
        quantity=args.quantity,
        unit=args.unit,
        total_cost=args.total_cost,
        purchase_date=args.purchase_date or date.today(),
        expiry_date=args.expiry_date,
    )


def translate_payroll(args: argparse.Namespace) -> expansion.PayrollCommand:
    return expansion.PayrollCommand(
        employee_name=args.employee_name,
        gross_pay=args.gross_pay,
        deductions=args.deductions,
        pay_date=args.pay_date or date.today(),
    )


def translate_inventory_update(args: argparse.Namespace) -> expansion.InventoryUpdate:
    return expansion.InventoryUpdate(
        name=args.name,
        quantity=args.quantity,
        unit=args.unit,
        total_cost=args.total_cost,
        purchase_date=args.purchase_date,
        expiry_date=args.expiry_date,
    )


def translate_payroll_update(args: argparse.Namespace) -> expansion.PayrollUpdate:
    return expansion.PayrollUpdate(
        employee_name=args.employee_name,
        gross_pay=args.gross_pay,
        deductions=args.deductions,
        pay_date=args.pay_date,
    )


def translate_transaction_update(args: argparse.Namespace) -> cascade.TransactionUpdate:
    return cascade.TransactionUpdate(
        amount=args.amount,
        description=args.description,
        category=args.category,
        date=args.date,
    )


def _money(value: Decimal) -> str:
    return f"${value:,.2f}"


def run_add_menu_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    record = core_logic.add_menu_item(
        context, name=args.name, price=args.price, cost=args.cost, category=args.category
    )
    print(record.menu_item_id)
    return 0


def run_add_customization(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    record = core_logic.add_customization(context, name=args.name, price=args.price, cost=args.cost)
    print(record.customization_id)
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the expansion engine."""
    records = expansion.record_sale(context, translate_sale(args))
    for record in records:
        print(f"{record.transaction_id}  {record.category:<20} {_money(record.amount)}")
    return 0


def run_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    record = expansion.record_expense(context, translate_expense(args))
    print(record.transaction_id)
    return 0


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    item, transaction = expansion.record_inventory_purchase(context, translate_purchase(args))
    print(f"{item.item_id} -> {transaction.transaction_id}")
    return 0


def run_payroll(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    entry, transaction = expansion.record_payroll(context, translate_payroll(args))
    print(f"{entry.entry_id} -> {transaction.transaction_id} (net {_money(entry.net_pay)})")
    return 0


def run_edit_transaction(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    cascade.update_transaction(context, args.transaction_id, translate_transaction_update(args))
    return 0


def run_edit_inventory(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    expansion.update_inventory_item(context, args.item_id, translate_inventory_update(args))
    return 0


def run_edit_payroll(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    expansion.update_payroll_entry(context, args.entry_id, translate_payroll_update(args))
    return 0


def _print_cascade(result: cascade.CascadeResult) -> None:
    for transaction_id in result.transaction_ids:
        print(f"deleted transaction {transaction_id}")
    for item_id in result.inventory_ids:
        print(f"deleted inventory item {item_id}")
    for entry_id in result.payroll_ids:
        print(f"deleted payroll entry {entry_id}")


def run_delete_transaction(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _print_cascade(cascade.delete_transaction(context, args.transaction_id))
    return 0


def run_delete_inventory(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _print_cascade(cascade.delete_inventory_item(context, args.item_id))
    return 0


def run_delete_payroll(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _print_cascade(cascade.delete_payroll_entry(context, args.entry_id))
    return 0


def run_reset(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    if args.confirm != RESET_CONFIRMATION_TEXT:
        raise ValidationError(f"Reset not confirmed; pass --confirm {RESET_CONFIRMATION_TEXT}")
    cascade.reset_all_data(context)
    return 0


def run_import(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    counts = transfer.import_json(context, args.input.read_text(encoding="utf-8"))
    for name, count in counts.items():
        print(f"{name}: {count}")
    return 0


def run_pnl_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the profit and loss report."""
    summary = reports.calculate_profit_and_loss(core_logic.list_transactions(context))
    print(f"Total revenue:  {_money(summary.total_revenue)}")
    print(f"Total expenses: {_money(summary.total_expenses)}")
    print(f"Net profit:     {_money(summary.net_profit)}")
    return 0


def run_profitability_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    attribution = reports.ATTRIBUTE_BY_MENU_ITEM_ID if args.by_id else reports.ATTRIBUTE_BY_DESCRIPTION
    rows = reports.calculate_profitability(
        core_logic.list_menu_items(context),
        core_logic.list_transactions(context),
        attribution=attribution,
    )
    for row in rows:
        print(
            f"{row.name:<24} {row.units_sold:>5} {_money(row.total_revenue):>12} "
            f"{_money(row.total_cost):>12} {_money(row.net_profit):>12} {row.margin * 100:>6.1f}%"
        )
    totals = reports.profitability_totals(rows)
    print(
        f"{'Total':<24} {totals.units_sold:>5} {_money(totals.total_revenue):>12} "
        f"{_money(totals.total_cost):>12} {_money(totals.net_profit):>12} {totals.margin * 100:>6.1f}%"
    )
    return 0


def run_inventory_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    rows = reports.calculate_inventory_status(
        core_logic.list_inventory(context),
        today=args.today,
        low_stock_threshold=context.settings.low_stock_threshold,
        expiry_soon_days=context.settings.expiry_soon_days,
    )
    for row in rows:
        status = row.status.value if row.status else ""
        print(f"{row.item.name:<24} {row.item.quantity} {row.item.unit:<6} {row.days_to_expiry:>5}d  {status}")
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transaction log reporting workflow."""
    for record in reports.ledger_newest_first(core_logic.list_transactions(context)):
        locked = "" if cascade.is_independently_editable(record) else " [locked]"
        print(
            f"{record.date.isoformat()}  {record.transaction_id}  {record.transaction_type:<7} "
            f"{record.category:<20} {_money(record.amount):>12}  {record.description}{locked}"
        )
    return 0


def run_check(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    problems = integrity.check_context(context)
    for problem in problems:
        print(problem)
    return 1 if problems else 0


def _emit(text: str, output: Optional[Path]) -> None:
    if output is None:
        sys.stdout.write(text)
        return
    output.write_text(text, encoding="utf-8")
    log.info("Wrote '%s'", output)


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _emit(transfer.export_json(context), args.output)
    return 0


def run_export_csv(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _emit(transfer.export_pnl_csv(core_logic.list_transactions(context)), args.output)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    log.error("%s", error)
    if isinstance(error, ValidationError):
        return 2
    if isinstance(error, (NotFound, FileNotFoundError)):
        return 3
    if isinstance(error, NotConnected):
        return 4
    if isinstance(error, WriteFailure):
        return 5
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    context: Optional[core_logic.RuntimeContext] = None
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
    finally:
        if context is not None:
            core_logic.close_context(context)
