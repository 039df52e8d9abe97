"""Kite client factory.

Isolates creation of the underlying KiteConnect client so the adapter can
focus on mapping and error handling, and tests can hand in any object that
satisfies ``KiteLike``.
"""
from __future__ import annotations

import datetime as dt
import logging
import os
from dataclasses import dataclass
from typing import Any, Protocol

from kiteconnect import KiteConnect

from circuitwatch.broker.kite.types import HistoricalBarTD, InstrumentTD, QuoteTD
from circuitwatch.utils.env_flags import env_float

logger = logging.getLogger(__name__)

_PRIMARY_API_KEY_VARS = ("KITE_API_KEY", "KITE_APIKEY")
_PRIMARY_ACCESS_TOKEN_VARS = ("KITE_ACCESS_TOKEN", "KITE_ACCESSTOKEN")

class KiteLike(Protocol):  # subset of KiteConnect used by the adapter
    def instruments(self, exchange: str | None = None) -> list[InstrumentTD]: ...
    def quote(self, *instruments: Any) -> dict[str, QuoteTD]: ...
    def historical_data(self, instrument_token: int, from_date: dt.datetime, to_date: dt.datetime,
                        interval: str, continuous: bool = False, oi: bool = False) -> list[HistoricalBarTD]: ...

_DEF_TIMEOUT = 5.0
_DEF_INSTRUMENTS_TIMEOUT = 20.0


def _first_env(names: tuple[str, ...]) -> str | None:
    for key in names:
        v = os.environ.get(key)
        if v:
            return v
    return None


@dataclass(frozen=True)
class ClientConfig:
    api_key: str | None
    access_token: str | None
    timeout: float = _DEF_TIMEOUT
    instruments_timeout: float = _DEF_INSTRUMENTS_TIMEOUT

    def is_complete(self) -> bool:
        return bool(self.api_key and self.access_token)

    @classmethod
    def from_env(cls) -> ClientConfig:
        cfg = cls(
            api_key=_first_env(_PRIMARY_API_KEY_VARS),
            access_token=_first_env(_PRIMARY_ACCESS_TOKEN_VARS),
            timeout=env_float("KITE_TIMEOUT_SEC", _DEF_TIMEOUT),
            instruments_timeout=env_float("CW_KITE_INSTRUMENTS_TIMEOUT_SEC", _DEF_INSTRUMENTS_TIMEOUT),
        )
        if not cfg.is_complete():
            logger.debug("client_config.incomplete api_key=%s access_token=%s", bool(cfg.api_key), bool(cfg.access_token))
        return cfg


def create_kite_client(cfg: ClientConfig) -> KiteLike | None:
    """Instantiate a KiteConnect client.

    Returns None if credentials are missing; the caller decides whether that
    is fatal (service start) or just means "needs re-auth".
    """
    if not cfg.is_complete():
        logger.warning("Kite client not created (missing credentials)")
        return None
    kc = KiteConnect(api_key=cfg.api_key, timeout=int(max(1, cfg.instruments_timeout)))
    kc.set_access_token(cfg.access_token)
    logger.debug("Kite client created (timeout=%s)", cfg.timeout)
    return kc


__all__ = ["KiteLike", "ClientConfig", "create_kite_client"]
