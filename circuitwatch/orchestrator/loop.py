"""Interval loop shared by every background concern.

Each loop runs ``cycle_fn`` every ``interval`` seconds until the context's
shutdown flag is set. A failing cycle is logged and the loop carries on;
the wait between cycles wakes early on shutdown.
"""
from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable

from circuitwatch.orchestrator.context import RuntimeContext

logger = logging.getLogger(__name__)


def _max_cycles_from_env() -> int | None:
    raw = os.environ.get('CW_LOOP_MAX_CYCLES')
    if not raw:
        return None
    try:
        parsed = int(raw)
    except ValueError:
        logger.warning("[loop] Invalid CW_LOOP_MAX_CYCLES=%r (must be int)", raw)
        return None
    if parsed <= 0:
        logger.debug("[loop] Ignoring non-positive CW_LOOP_MAX_CYCLES=%s", raw)
        return None
    return parsed


def run_loop(ctx: RuntimeContext, *, cycle_fn: Callable[[RuntimeContext], None], interval: float,
             name: str = "loop", gate: Callable[[], bool] | None = None,
             max_cycles: int | None = None) -> int:
    """Run ``cycle_fn`` until shutdown; returns the number of executed cycles.

    ``gate`` returning True skips a cycle without counting it. ``max_cycles``
    (or CW_LOOP_MAX_CYCLES when not given) bounds executed cycles; 0 means
    unbounded regardless of the environment.
    """
    if max_cycles is None:
        max_cycles = _max_cycles_from_env()
    elif max_cycles <= 0:
        max_cycles = None
    if max_cycles is not None:
        logger.info("[%s] Max cycles limit enabled: %s", name, max_cycles)
    logger.info("[%s] Starting loop interval=%s", name, interval)
    executed = 0
    try:
        while not ctx.shutdown:
            start = time.monotonic()
            try:
                if gate is not None and gate():
                    logger.debug("[%s] Skipping cycle (gated)", name)
                else:
                    cycle_fn(ctx)
                    executed += 1
                    if max_cycles is not None and executed >= max_cycles:
                        logger.info("[%s] Reached max cycles (%s) -> terminating", name, max_cycles)
                        break
            except KeyboardInterrupt:
                logger.info("[%s] KeyboardInterrupt received inside cycle; initiating shutdown", name)
                ctx.shutdown = True
                break
            except Exception:
                logger.exception("[%s] Cycle execution failed", name)
            sleep_for = max(0.0, interval - (time.monotonic() - start))
            if sleep_for and ctx.wait(sleep_for):
                break
    except KeyboardInterrupt:
        logger.info("[%s] KeyboardInterrupt (outer) -> graceful shutdown", name)
        ctx.shutdown = True
    finally:
        logger.info("[%s] Loop terminated after %d cycles", name, executed)
    return executed


__all__ = ["run_loop"]
