"""Operator-visible authentication state.

When the broker rejects our credentials the poller does not crash; it raises
the ``needs_reauth`` flag here and writes a small JSON alert file that an
operator (or a token refresh job) can watch. The flag clears itself on the
next successful broker call.
"""
from __future__ import annotations

import datetime as dt
import logging
import threading
from pathlib import Path

import orjson

logger = logging.getLogger(__name__)


class AuthState:
    __slots__ = ("_lock", "needs_reauth", "last_error", "since", "failures", "alert_file")

    def __init__(self, alert_file: str | Path | None = None) -> None:
        self._lock = threading.Lock()
        self.needs_reauth = False
        self.last_error: str | None = None
        self.since: dt.datetime | None = None
        self.failures = 0
        self.alert_file = Path(alert_file) if alert_file else None

    def record_failure(self, exc: BaseException, now: dt.datetime | None = None) -> bool:
        """Flag re-auth; returns True only on the ok -> needs_reauth transition."""
        with self._lock:
            self.failures += 1
            self.last_error = str(exc)
            if self.needs_reauth:
                return False
            self.needs_reauth = True
            self.since = now or dt.datetime.now()
        logger.error("auth.needs_reauth err=%s", exc)
        self._write_alert()
        return True

    def record_success(self) -> None:
        with self._lock:
            if not self.needs_reauth:
                return
            self.needs_reauth = False
            self.failures = 0
            self.since = None
        logger.info("auth.recovered")
        self._clear_alert()

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "needs_reauth": self.needs_reauth,
                "last_error": self.last_error,
                "since": self.since.isoformat() if self.since else None,
                "failures": self.failures,
            }

    def _write_alert(self) -> None:
        if self.alert_file is None:
            return
        try:
            self.alert_file.parent.mkdir(parents=True, exist_ok=True)
            self.alert_file.write_bytes(orjson.dumps(self.snapshot(), option=orjson.OPT_INDENT_2))
        except OSError as e:
            logger.warning("auth.alert_write_failed path=%s err=%s", self.alert_file, e)

    def _clear_alert(self) -> None:
        if self.alert_file is None:
            return
        try:
            self.alert_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("auth.alert_clear_failed path=%s err=%s", self.alert_file, e)


__all__ = ["AuthState"]
