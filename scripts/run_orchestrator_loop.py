#!/usr/bin/env python
"""Circuit-limit tracking runner.

Features:
  * bootstrap_runtime + run_loop (quote polling in the main thread)
  * catalog refresh, EOD reconciliation and retention on daemon threads
  * Honors CW_LOOP_MAX_CYCLES (or --cycles mapped to env) for bounded runs

CLI cycles vs env precedence:
  If --cycles > 0 we set CW_LOOP_MAX_CYCLES unless already provided.

Exit Codes:
  0 success
  2 bootstrap / configuration failure
  3 unrecoverable loop exception
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

_SCRIPT_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _SCRIPT_DIR.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from dotenv import load_dotenv

from circuitwatch.orchestrator.bootstrap import (
    bootstrap_runtime,
    install_signal_handlers,
    run_poll_loop,
    shutdown_runtime,
    start_background_loops,
)
from circuitwatch.utils.exceptions import ConfigError
from circuitwatch.utils.logging_utils import setup_logging
from circuitwatch.version import get_version

logger = logging.getLogger("run_orchestrator_loop")


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Circuit limit tracker")
    p.add_argument("--config", default=None, help="Index config JSON path (default config/circuitwatch_config.json)")
    p.add_argument("--interval", type=float, default=0.0, help="Poll interval seconds (0 = CW_POLL_INTERVAL_SECONDS)")
    p.add_argument("--cycles", type=int, default=0, help="Number of poll cycles (0=unbounded)")
    p.add_argument("--indices", default="", help="Comma list restricting tracked indices (sets CW_INDICES)")
    p.add_argument("--log-file", default=None, help="Optional log file path")
    p.add_argument("--no-background", action="store_true", help="Only poll quotes (no catalog/EOD/retention threads)")
    return p.parse_args(argv)


def ensure_env(args: argparse.Namespace) -> None:
    if args.cycles > 0 and not os.environ.get("CW_LOOP_MAX_CYCLES"):
        os.environ["CW_LOOP_MAX_CYCLES"] = str(args.cycles)
    if args.indices:
        os.environ["CW_INDICES"] = args.indices
    if args.interval > 0:
        os.environ["CW_POLL_INTERVAL_SECONDS"] = str(args.interval)


def main(argv: list[str]) -> int:
    load_dotenv(_PROJECT_ROOT / ".env")
    args = parse_args(argv)
    ensure_env(args)
    setup_logging(os.environ.get("CW_LOG_LEVEL", "INFO"), args.log_file)
    try:
        ctx = bootstrap_runtime(args.config)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2
    except Exception:
        logger.exception("Bootstrap failed")
        return 2

    install_signal_handlers(ctx)
    if not args.no_background:
        start_background_loops(ctx)
    logger.info(
        "Starting tracker version=%s poll_interval=%.1fs max_cycles=%s background=%s",
        get_version(), ctx.config.poll.interval_seconds, os.environ.get("CW_LOOP_MAX_CYCLES"), not args.no_background,
    )
    rc = 0
    try:
        run_poll_loop(ctx)
    except Exception:
        logger.exception("Unrecoverable loop failure")
        rc = 3
    finally:
        shutdown_runtime(ctx)
    return rc


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
