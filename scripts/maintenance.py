#!/usr/bin/env python
"""Database maintenance commands.

  purge       delete snapshots/changes older than CW_RETENTION_DAYS (or --days)
  clear-from  delete everything collected on/after a date (re-collection)
  clear-index delete one or more indices' data (optionally from a date)
  expired     delete data for contracts expired before a date (default today - 7d)
  dedupe      remove same-minute duplicate snapshots and change records
  integrity   print the integrity report
  quality     print data-quality statistics
  eod         reconcile a trading date (--force re-runs, --merge-only refreshes circuit fields)

Exit Codes:
  0 success
  2 configuration failure
"""
from __future__ import annotations

import argparse
import datetime as dt
import logging
import os
import sys
from pathlib import Path

_SCRIPT_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _SCRIPT_DIR.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

import orjson
from dotenv import load_dotenv

from circuitwatch.config.runtime_config import get_runtime_config
from circuitwatch.orchestrator.bootstrap import bootstrap_runtime
from circuitwatch.storage.db import Database
from circuitwatch.storage.retention import DataCleanup
from circuitwatch.utils.exceptions import ConfigError
from circuitwatch.utils.logging_utils import setup_logging
from circuitwatch.utils.market_hours import MarketCalendar

logger = logging.getLogger("maintenance")


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="circuitwatch maintenance")
    p.add_argument("--db-url", default=None, help="Override CW_DB_URL")
    sub = p.add_subparsers(dest="command", required=True)

    purge = sub.add_parser("purge")
    purge.add_argument("--days", type=int, default=None)

    clear_from = sub.add_parser("clear-from")
    clear_from.add_argument("date", type=dt.date.fromisoformat)
    clear_from.add_argument("--keep-changes", action="store_true", help="Keep circuit change records")

    clear_index = sub.add_parser("clear-index")
    clear_index.add_argument("indices", help="Comma separated index names")
    clear_index.add_argument("--from", dest="from_day", type=dt.date.fromisoformat, default=None)

    expired = sub.add_parser("expired")
    expired.add_argument("--before", type=dt.date.fromisoformat, default=None)

    sub.add_parser("dedupe")
    sub.add_parser("integrity")
    sub.add_parser("quality")

    eod = sub.add_parser("eod")
    eod.add_argument("date", type=dt.date.fromisoformat)
    eod.add_argument("--force", action="store_true")
    eod.add_argument("--merge-only", action="store_true")
    eod.add_argument("--config", default=None)
    return p.parse_args(argv)


def _print(data: object) -> None:
    sys.stdout.write(orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS).decode() + "\n")


def run_eod(args: argparse.Namespace) -> int:
    try:
        ctx = bootstrap_runtime(args.config, db_url=args.db_url, start_metrics=False)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2
    try:
        if args.merge_only:
            summary = ctx.reconciler.merge_circuit_limits(args.date)
        else:
            summary = ctx.reconciler.reconcile(args.date, force=args.force)
    finally:
        ctx.db.dispose()
    _print({
        "trading_date": summary.trading_date.isoformat(),
        "processed": summary.processed,
        "created": summary.created,
        "updated": summary.updated,
        "merged": summary.merged,
        "skipped": summary.skipped,
        "errors": summary.errors,
        "already_done": summary.already_done,
    })
    return 0


def main(argv: list[str]) -> int:
    load_dotenv(_PROJECT_ROOT / ".env")
    args = parse_args(argv)
    setup_logging(os.environ.get("CW_LOG_LEVEL", "INFO"))
    if args.command == "eod":
        return run_eod(args)

    rcfg = get_runtime_config()
    try:
        calendar = MarketCalendar.from_env()
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2
    db = Database(args.db_url or rcfg.db_url)
    db.create_all()
    cleanup = DataCleanup(db, calendar)
    try:
        if args.command == "purge":
            _print(cleanup.purge_older_than(args.days if args.days is not None else rcfg.retention.retention_days))
        elif args.command == "clear-from":
            _print(cleanup.clear_data_from(args.date, include_circuit_changes=not args.keep_changes))
        elif args.command == "clear-index":
            names = [n.strip() for n in args.indices.split(",") if n.strip()]
            _print(cleanup.clear_index_data(names, args.from_day))
        elif args.command == "expired":
            _print(cleanup.remove_expired_contracts(args.before, grace_days=rcfg.retention.expired_grace_days))
        elif args.command == "dedupe":
            _print({
                "snapshots": cleanup.remove_duplicate_snapshots(),
                "circuit_changes": cleanup.remove_duplicate_changes(),
            })
        elif args.command == "integrity":
            _print(cleanup.integrity_report())
        elif args.command == "quality":
            _print(cleanup.data_quality_stats())
    finally:
        db.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
