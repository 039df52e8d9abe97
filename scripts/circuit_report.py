#!/usr/bin/env python
"""Circuit change report for one trading date.

Usage:
  python scripts/circuit_report.py                 # today (or last trading day)
  python scripts/circuit_report.py --date 2024-12-24 --index NIFTY --severity Critical
  python scripts/circuit_report.py --alerts --hours 6
"""
from __future__ import annotations

import argparse
import datetime as dt
import sys
from pathlib import Path

_SCRIPT_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _SCRIPT_DIR.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from circuitwatch.config.runtime_config import get_runtime_config
from circuitwatch.storage.circuit_changes import CircuitChangeRepository, ChangeStatistics
from circuitwatch.storage.db import Database
from circuitwatch.storage.models import CircuitChangeRow
from circuitwatch.utils.market_hours import MarketCalendar

_SEVERITY_STYLE = {"Critical": "bold red", "High": "red", "Medium": "yellow", "Low": "green"}


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Circuit limit change report")
    p.add_argument("--date", type=dt.date.fromisoformat, default=None, help="Trading date (YYYY-MM-DD)")
    p.add_argument("--index", default=None, help="Restrict to one underlying")
    p.add_argument("--severity", default=None, choices=sorted(_SEVERITY_STYLE), help="Restrict to one severity")
    p.add_argument("--alerts", action="store_true", help="Show critical/breach alerts instead of the day's changes")
    p.add_argument("--hours", type=int, default=24, help="Alert lookback window in hours")
    p.add_argument("--limit", type=int, default=200, help="Max rows to print")
    p.add_argument("--db-url", default=None, help="Override CW_DB_URL")
    return p.parse_args(argv)


def changes_table(title: str, rows: list[CircuitChangeRow], limit: int) -> Table:
    table = Table(title=title, expand=True)
    for col in ("Time", "Symbol", "Type", "Lower", "Upper", "LC %", "UC %", "Severity", "Price", "Breach", "Reason"):
        table.add_column(col)
    for r in rows[:limit]:
        table.add_row(
            r.detected_at.strftime("%H:%M:%S"),
            r.trading_symbol,
            r.change_type,
            f"{r.previous_lower:.2f} -> {r.new_lower:.2f}",
            f"{r.previous_upper:.2f} -> {r.new_upper:.2f}",
            f"{r.lower_change_pct:+.1f}",
            f"{r.upper_change_pct:+.1f}",
            f"[{_SEVERITY_STYLE.get(r.severity, '')}]{r.severity}[/]",
            f"{r.current_price:.2f}",
            "yes" if r.is_breach_alert else "",
            r.change_reason,
        )
    return table


def stats_table(stats: ChangeStatistics) -> Table:
    table = Table(title=f"Summary {stats.trading_date}")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Changes", str(stats.total))
    table.add_row("Instruments", str(stats.instruments))
    table.add_row("Breach alerts", str(stats.breach_alerts))
    for name, count in sorted(stats.by_underlying.items()):
        table.add_row(f"  {name}", str(count))
    for sev, count in sorted(stats.by_severity.items()):
        table.add_row(f"  {sev}", str(count))
    return table


def main(argv: list[str]) -> int:
    load_dotenv(_PROJECT_ROOT / ".env")
    args = parse_args(argv)
    console = Console()
    calendar = MarketCalendar.from_env()
    db = Database(args.db_url or get_runtime_config().db_url)
    db.create_all()
    repo = CircuitChangeRepository(db, calendar)
    try:
        _render(console, repo, calendar, args)
    finally:
        db.dispose()
    return 0


def _render(console: Console, repo: CircuitChangeRepository, calendar: MarketCalendar,
            args: argparse.Namespace) -> None:
    if args.alerts:
        rows = repo.critical_alerts(calendar.now(), hours=args.hours)
        console.print(changes_table(f"Critical / breach alerts (last {args.hours}h)", rows, args.limit))
        return

    day = args.date or calendar.today()
    if not calendar.is_trading_day(day):
        console.print(f"[yellow]{day} is not a trading day; showing {calendar.previous_trading_day(day)}[/]")
        day = calendar.previous_trading_day(day)
    rows = repo.changes_for_date(day, underlying=args.index, severity=args.severity)
    console.print(changes_table(f"Circuit changes {day}", rows, args.limit))
    console.print(stats_table(repo.statistics(day)))


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
