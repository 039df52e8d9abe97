"""Unified logging setup for circuitwatch."""
from __future__ import annotations

import logging
import os
import sys

import orjson

from circuitwatch.utils.env_flags import is_truthy_env

DEFAULT_FORMAT = '%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s'

SUPPRESSED_LOGGERS = [
    'urllib3', 'requests', 'kiteconnect.connection', 'sqlalchemy.engine',
]


class JsonFormatter(logging.Formatter):
    """One JSON object per line (enabled with CW_JSON_LOGS=1)."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            'ts': record.created,
            'level': record.levelname,
            'logger': record.name,
            'thread': record.threadName,
            'msg': record.getMessage(),
        }
        if record.exc_info:
            payload['exc_info'] = self.formatException(record.exc_info)
        return orjson.dumps(payload).decode('utf-8')


def setup_logging(level: str = 'INFO', log_file: str | None = None, fmt: str = DEFAULT_FORMAT) -> logging.Logger:
    """Configure root logging.

    Console handler uses ``fmt`` (or JSON lines when CW_JSON_LOGS is set).
    File handler, when ``log_file`` is given, always uses DEFAULT_FORMAT.
    Existing root handlers are removed so repeated calls do not duplicate output.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(log_level)
    for h in root.handlers[:]:
        root.removeHandler(h)
        h.close()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(log_level)
    if is_truthy_env('CW_JSON_LOGS'):
        console.setFormatter(JsonFormatter())
    else:
        console.setFormatter(logging.Formatter(fmt))
    root.addHandler(console)

    if log_file:
        try:
            directory = os.path.dirname(log_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            fh = logging.FileHandler(log_file, encoding='utf-8')
            fh.setLevel(log_level)
            fh.setFormatter(logging.Formatter(DEFAULT_FORMAT))
            root.addHandler(fh)
        except OSError as e:
            root.error("Failed to create log file handler path=%s err=%s", log_file, e)

    for name in SUPPRESSED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root

__all__ = ["setup_logging", "JsonFormatter", "DEFAULT_FORMAT"]
