"""
Command line entry point.

Usage:
    og-exporter [--url URL] [--config PATH] [options]

``--dry-run`` prints the merged query definitions, ``--explain`` lists the
statements each definition will run; without either the HTTP server starts.
"""

from __future__ import annotations

import argparse
import sys
from typing import Any, Sequence

import structlog
import uvicorn
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from ogexporter import __version__
from ogexporter.config import Settings, dump_query_table, load_query_table, parse_listen_address
from ogexporter.core.errors import ConfigurationError, main_with_error_handling
from ogexporter.logging import configure_logging
from ogexporter.metrics.table import QueryTable

logger = structlog.get_logger()

console = Console()

# argparse dest -> Settings field
_SETTING_FLAGS = {
    "url": "url",
    "config": "config_path",
    "constant_labels": "constant_labels",
    "namespace": "namespace",
    "listen_address": "listen_address",
    "telemetry_path": "telemetry_path",
    "time_to_string": "time_to_string",
    "parallel": "parallel",
    "scrape_timeout": "scrape_timeout",
    "max_requests": "max_requests",
    "fallback_charset": "fallback_charset",
    "fail_fast": "fail_fast",
    "disable_exporter_metrics": "disable_exporter_metrics",
    "log_level": "log_level",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="og-exporter",
        description="Prometheus exporter for openGauss and PostgreSQL-compatible databases",
    )
    parser.add_argument("--version", action="version", version=f"og-exporter {__version__}")
    parser.add_argument("--url", help="Target database url (OG_EXPORTER_URL)")
    parser.add_argument("--config", help="Path to a query config file or directory (OG_EXPORTER_CONFIG_PATH)")
    parser.add_argument("--constant-labels", help="Comma separated label=value pairs added to every sample")
    parser.add_argument("--namespace", help="Prefix of built-in metrics (default: pg)")
    parser.add_argument("--web.listen-address", dest="listen_address", help="Address to listen on (default: :9153)")
    parser.add_argument("--web.telemetry-path", dest="telemetry_path", help="Path under which to expose metrics")
    parser.add_argument("--web.max-requests", dest="max_requests", type=int, help="Maximum parallel scrapes, 0 disables")
    parser.add_argument(
        "--time-to-string",
        action="store_true",
        default=None,
        help="Render timestamp label values as RFC 3339 strings",
    )
    parser.add_argument("--parallel", type=int, help="Query definitions run concurrently per scrape")
    parser.add_argument("--scrape-timeout", type=float, help="Seconds before unfinished queries are cancelled")
    parser.add_argument("--fallback-charset", help="Charset used to repair non UTF-8 labels (default: GBK)")
    parser.add_argument("--fail-fast", action="store_true", default=None, help="Do not retry the initial connection")
    parser.add_argument(
        "--web.disable-exporter-metrics",
        dest="disable_exporter_metrics",
        action="store_true",
        default=None,
        help="Exclude process and platform metrics of the exporter itself",
    )
    parser.add_argument("--log.level", dest="log_level", help="Log level (default: INFO)")
    parser.add_argument("--dry-run", action="store_true", help="Print the loaded query definitions and exit")
    parser.add_argument("--explain", action="store_true", help="Print planned statements and exit")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Environment/.env settings with explicit flags taking precedence."""
    overrides: dict[str, Any] = {}
    for dest, setting in _SETTING_FLAGS.items():
        value = getattr(args, dest, None)
        if value is not None:
            overrides[setting] = value
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"invalid settings: {e}") from e


def explain_table(table: QueryTable) -> Table:
    explained = Table(title="Planned queries")
    explained.add_column("Query", style="bold")
    explained.add_column("Priority", justify="right")
    explained.add_column("Statement")
    explained.add_column("Status")
    explained.add_column("Timeout", justify="right")
    explained.add_column("Labels")

    for name, definition in table.items():
        for statement in definition.statements:
            enabled = definition.enabled and statement.enabled
            explained.add_row(
                name,
                str(definition.priority),
                statement.name,
                "[green]enable[/green]" if enabled else "[red]disable[/red]",
                f"{statement.timeout:g}s" if statement.timeout else "-",
                ", ".join(definition.label_names) or "-",
            )
    return explained


def serve(settings: Settings) -> int:
    from ogexporter.api.main import create_app

    host, port = parse_listen_address(settings.listen_address)
    logger.info("starting_exporter", version=__version__, host=host, port=port, path=settings.telemetry_path)
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)
    return 0


@main_with_error_handling
def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings_from_args(args)
    configure_logging(settings.log_level)

    if args.dry_run or args.explain:
        table = load_query_table(settings.config_path)
        if args.dry_run:
            console.print(
                dump_query_table(table), markup=False, highlight=False, emoji=False, soft_wrap=True, end=""
            )
        if args.explain:
            console.print(explain_table(table))
        return 0

    return serve(settings)


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
