"""Runtime configuration snapshot.

A typed, frozen view of the environment-derived knobs the pipeline reads,
built once and passed through ``RuntimeContext`` instead of scattered
``os.getenv`` calls.

Environment (defaults in parentheses):
  CW_POLL_INTERVAL_SECONDS (60)     quote poll cycle period
  CW_CATALOG_REFRESH_SECONDS (300)  instrument catalog refresh interval
  CW_QUOTE_BATCH_SIZE (500)         tokens per quote call, capped at 500
  CW_INTER_BATCH_DELAY_MS (100)     throttle between quote batches
  CW_DUPLICATE_WINDOW_SECONDS (300) change duplicate-suppression window
  CW_EOD_DELAY_MINUTES (15)         wait after close before EOD processing
  CW_EOD_CHECK_SECONDS (300)        EOD loop wake-up interval
  CW_EOD_INTRADAY_FALLBACK (off)    derive EOD bar from snapshots if broker bar missing
  CW_RETENTION_DAYS (90)            horizon for snapshots / change records
  CW_EXPIRED_GRACE_DAYS (7)         keep expired contracts this long
  CW_RETENTION_INTERVAL_SECONDS (3600)
  CW_DB_URL (sqlite:///data/circuitwatch.db)
  CW_METRICS_ENABLED (on) / CW_METRICS_HOST (0.0.0.0) / CW_METRICS_PORT (9109)
  CW_AUTH_ALERT_FILE (data/auth_alert.json)
  CW_LOOP_MAX_CYCLES                bounded runs (dev/test)
  CW_INDICES                        comma list restricting enabled indices
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from circuitwatch.utils.env_flags import env_bool, env_float, env_int, env_str

__all__ = [
    "MAX_QUOTE_BATCH",
    "PollSettings",
    "DetectorSettings",
    "EODSettings",
    "RetentionSettings",
    "MetricsSettings",
    "RuntimeConfig",
    "build_runtime_config",
    "get_runtime_config",
]

logger = logging.getLogger(__name__)

# broker per-call instrument limit for quote()
MAX_QUOTE_BATCH = 500

@dataclass(frozen=True)
class PollSettings:
    interval_seconds: float = 60.0
    catalog_refresh_seconds: float = 300.0
    batch_size: int = MAX_QUOTE_BATCH
    inter_batch_delay_ms: int = 100
    max_cycles: int | None = None

@dataclass(frozen=True)
class DetectorSettings:
    duplicate_window_seconds: float = 300.0

@dataclass(frozen=True)
class EODSettings:
    delay_minutes: int = 15
    check_interval_seconds: float = 300.0
    intraday_fallback: bool = False

@dataclass(frozen=True)
class RetentionSettings:
    retention_days: int = 90
    expired_grace_days: int = 7
    interval_seconds: float = 3600.0

@dataclass(frozen=True)
class MetricsSettings:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 9109

@dataclass(frozen=True)
class RuntimeConfig:
    poll: PollSettings
    detector: DetectorSettings
    eod: EODSettings
    retention: RetentionSettings
    metrics: MetricsSettings
    db_url: str = "sqlite:///data/circuitwatch.db"
    auth_alert_file: str = "data/auth_alert.json"
    enabled_indices: tuple[str, ...] = ()

_singleton: RuntimeConfig | None = None


def _batch_size() -> int:
    size = env_int("CW_QUOTE_BATCH_SIZE", MAX_QUOTE_BATCH)
    if size > MAX_QUOTE_BATCH or size <= 0:
        logger.warning("runtime_config.batch_size_clamped requested=%s max=%s", size, MAX_QUOTE_BATCH)
        return MAX_QUOTE_BATCH
    return size


def build_runtime_config() -> RuntimeConfig:
    max_cycles = env_int("CW_LOOP_MAX_CYCLES", 0)
    raw_indices = env_str("CW_INDICES", "")
    enabled = tuple(p.strip().upper() for p in raw_indices.split(",") if p.strip())
    return RuntimeConfig(
        poll=PollSettings(
            interval_seconds=env_float("CW_POLL_INTERVAL_SECONDS", 60.0),
            catalog_refresh_seconds=env_float("CW_CATALOG_REFRESH_SECONDS", 300.0),
            batch_size=_batch_size(),
            inter_batch_delay_ms=env_int("CW_INTER_BATCH_DELAY_MS", 100),
            max_cycles=max_cycles if max_cycles > 0 else None,
        ),
        detector=DetectorSettings(
            duplicate_window_seconds=env_float("CW_DUPLICATE_WINDOW_SECONDS", 300.0),
        ),
        eod=EODSettings(
            delay_minutes=env_int("CW_EOD_DELAY_MINUTES", 15),
            check_interval_seconds=env_float("CW_EOD_CHECK_SECONDS", 300.0),
            intraday_fallback=env_bool("CW_EOD_INTRADAY_FALLBACK", False),
        ),
        retention=RetentionSettings(
            retention_days=env_int("CW_RETENTION_DAYS", 90),
            expired_grace_days=env_int("CW_EXPIRED_GRACE_DAYS", 7),
            interval_seconds=env_float("CW_RETENTION_INTERVAL_SECONDS", 3600.0),
        ),
        metrics=MetricsSettings(
            enabled=env_bool("CW_METRICS_ENABLED", True),
            host=os.getenv("CW_METRICS_HOST", "0.0.0.0"),
            port=env_int("CW_METRICS_PORT", 9109),
        ),
        db_url=env_str("CW_DB_URL", "sqlite:///data/circuitwatch.db"),
        auth_alert_file=env_str("CW_AUTH_ALERT_FILE", "data/auth_alert.json"),
        enabled_indices=enabled,
    )


def get_runtime_config(refresh: bool = False) -> RuntimeConfig:
    global _singleton
    if _singleton is None or refresh:
        _singleton = build_runtime_config()
    return _singleton
