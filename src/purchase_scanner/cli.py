"""Command-line interface for Purchase Scanner.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

import structlog

from purchase_scanner import __version__
from purchase_scanner.config import Settings, get_settings
from purchase_scanner.exceptions import PurchaseScannerError
from purchase_scanner.extraction import PurchaseExtractor
from purchase_scanner.models import RawEmail
from purchase_scanner.rules import load_rule_tables

logger = structlog.get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="purchase-scanner", description="Purchase Scanner")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_parser = subparsers.add_parser("scan", help="Scan a Gmail account for clothing purchases")
    scan_parser.add_argument("--account", required=True, help="Account identifier (token file name)")
    scan_parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="How many days back to search (default: settings default_days_back)",
    )
    scan_parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite purchase database (default: settings purchases_db_path)",
    )

    parse_parser = subparsers.add_parser("parse", help="Extract the purchase from one saved email body")
    parse_parser.add_argument("file", type=Path, help="File holding the HTML or plain-text body")
    parse_parser.add_argument("--subject", default="", help="Email subject")
    parse_parser.add_argument("--from", dest="from_raw", default="", help="From header")

    list_parser = subparsers.add_parser("purchases", help="List stored purchases for an account")
    list_parser.add_argument("--account", required=True, help="Account identifier")
    list_parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite purchase database (default: settings purchases_db_path)",
    )
    list_parser.add_argument("--limit", type=int, default=50, help="Max results")

    return parser


async def _cmd_scan(args: argparse.Namespace, settings: Settings) -> int:
    from purchase_scanner.gmail import GmailClient
    from purchase_scanner.scan import PurchaseScanner
    from purchase_scanner.wardrobe import PurchaseRepository

    tables = load_rule_tables(settings.rule_tables_path)
    repo = PurchaseRepository(args.db or settings.purchases_db_path, tables)
    repo.initialize()

    scanner = PurchaseScanner(
        GmailClient(settings),
        PurchaseExtractor.from_settings(settings),
        repo,
        tables=tables,
        default_days_back=settings.default_days_back,
    )

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except (NotImplementedError, RuntimeError):
        pass

    result = await scanner.scan(args.account, args.days, cancel=cancel)
    print(
        f"Scanned {result.scanned} emails: {result.found} with purchases, "
        f"{result.new} new items, {result.duplicates} duplicate orders, "
        f"{result.skipped} skipped, {result.failed} failed"
        + (" (cancelled)" if result.cancelled else "")
    )
    return 0


def _cmd_parse(args: argparse.Namespace, settings: Settings) -> int:
    body = args.file.read_text(encoding="utf-8", errors="replace")
    email = RawEmail(id=args.file.name, subject=args.subject, from_raw=args.from_raw, body=body)

    purchase = PurchaseExtractor.from_settings(settings).parse_receipt(email)
    output = {
        "purchase": purchase.model_dump(mode="json", by_alias=True),
        "verdicts": [v.model_dump(mode="json") for v in purchase.verdicts],
    }
    print(json.dumps(output, indent=2))
    return 0


def _cmd_purchases(args: argparse.Namespace, settings: Settings) -> int:
    from purchase_scanner.wardrobe import PurchaseRepository

    repo = PurchaseRepository(args.db or settings.purchases_db_path, load_rule_tables(settings.rule_tables_path))
    repo.initialize()

    for p in repo.list_purchases(args.account, limit=args.limit):
        price = f"{p.price:.2f}" if p.price is not None else "-"
        print(f"{p.purchase_date.isoformat()}\t{p.store}\t{p.item_name}\t{p.item_type or '-'}\t{price}")

    stats = repo.stats(args.account)
    print(
        f"\n{stats.total_items} items in {stats.total_orders} orders "
        f"from {stats.unique_stores} stores ({stats.total_spent:.2f} spent)"
    )
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Purchase Scanner CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()

    # Configure logging; stdout is reserved for command output
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )

    parser = _build_parser()
    parsed = parser.parse_args(args)

    logger.info("purchase_scanner_started", version=__version__, command=parsed.command, debug=settings.debug)

    try:
        if parsed.command == "scan":
            return asyncio.run(_cmd_scan(parsed, settings))
        if parsed.command == "parse":
            return _cmd_parse(parsed, settings)
        if parsed.command == "purchases":
            return _cmd_purchases(parsed, settings)
    except PurchaseScannerError as exc:
        logger.error("command_failed", command=parsed.command, error_type=type(exc).__name__, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    logger.error("unknown_command", command=parsed.command)
    return 2


if __name__ == "__main__":
    sys.exit(main())
