"""Command-line entry points for the reporting dashboard.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into calls on the orchestration layer. Keeping the CLI
thin means the web front-end and the terminal share the same filters, queries
and exports.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, exporters, log
from .constants import ReportName
from .errors import DashboardError
from .web import create_app


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="dashboard-cli",
        description="Serve and export the ERP sales and inventory reports.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    specs = [
        register_serve_command(subparsers),
        register_refresh_inventory_command(subparsers),
        register_inventory_status_command(subparsers),
        register_export_command(subparsers),
    ]
    for spec in specs:
        spec.register(subparsers)
    return build_command_table(specs)


def register_serve_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``serve``."""
    name = "serve"
    help_text = "Run the dashboard web server."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--host", default=None, help="Override [Server] Host.")
        parser.add_argument("--port", type=int, default=None, help="Override [Server] Port.")
        parser.add_argument("--debug", action="store_true", help="Enable the Flask debugger.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_serve)


def register_refresh_inventory_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``refresh-inventory``."""
    name = "refresh-inventory"
    help_text = "Reload the inventory snapshot from the ERP."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_refresh_inventory)


def register_inventory_status_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``inventory-status``."""
    name = "inventory-status"
    help_text = "Show the size and age of the cached inventory snapshot."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_inventory_status)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Write a report to an .xlsx file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("report", choices=[member.value for member in ReportName])
        parser.add_argument("--output", type=Path, required=True)
        parser.add_argument("--start", default=None, help="Period start (YYYY-MM-DD).")
        parser.add_argument("--end", default=None, help="Period end (YYYY-MM-DD).")
        parser.add_argument("--date", dest="day", default=None, help="Closing day (YYYY-MM-DD).")
        parser.add_argument("--store", dest="stores", action="append", default=[])
        parser.add_argument("--advisor", dest="advisors", action="append", default=[])
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(config_path)


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


def run_serve(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Start the Flask development server on the configured address."""
    host = args.host or context.settings.host
    port = args.port or context.settings.port
    app = create_app(context)
    log.info("Serving dashboard on http://%s:%d", host, port)
    app.run(host=host, port=port, debug=args.debug)
    return 0


def run_refresh_inventory(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the manual inventory refresh."""
    snapshot = core_logic.refresh_inventory(context)
    log.info("Inventory snapshot captured at %s", snapshot.captured_at.isoformat())
    return 0


def run_inventory_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Report on the cached snapshot without querying the ERP."""
    snapshot = core_logic.load_inventory(context)
    if snapshot is None:
        log.info("No inventory snapshot cached at '%s'", context.cache.path)
        return 0
    log.info(
        "Inventory snapshot: %d items captured at %s",
        snapshot.item_count,
        snapshot.captured_at.isoformat(),
    )
    return 0


def build_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> BytesIO:
    """Translate CLI args into the filters of ``args.report`` and export it."""
    report = ReportName(args.report)
    if report is ReportName.DAILY:
        filters = core_logic.resolve_daily_filters(
            context, start=args.start, end=args.end, stores=args.stores, advisors=args.advisors)
        return exporters.export_daily_report(core_logic.build_daily_report(context, filters))
    if report is ReportName.ACCUMULATED:
        filters = core_logic.resolve_accumulated_filters(
            context, start=args.start, end=args.end, branches=args.stores, advisors=args.advisors)
        return exporters.export_accumulated_report(core_logic.build_accumulated_report(context, filters))
    if report is ReportName.DAILY_CLOSING:
        filters = core_logic.resolve_closing_filters(day=args.day, stores=args.stores)
        return exporters.export_daily_closing(core_logic.build_daily_closing(context, filters))

    snapshot = core_logic.load_inventory(context)
    if snapshot is None:
        raise FileNotFoundError(f"No inventory snapshot cached at '{context.cache.path}'")
    return exporters.export_inventory(snapshot)


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write the requested report export to ``args.output``."""
    buffer = build_export(context, args)
    output = Path(args.output).expanduser()
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(buffer.getvalue())
    log.info("Exported %s to '%s'", args.report, output)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, DashboardError):
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


if __name__ == "__main__":
    raise SystemExit(main())
