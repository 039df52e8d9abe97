"""Registry of tracked underlying indices.

Each entry names the derivatives exchange the option chain lists on, the
spot symbol used for the underlying OHLC context, and the contract lot size.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class IndexConfig:
    name: str
    exchange: str  # derivatives segment, NFO or BFO
    spot_symbol: str  # EXCHANGE:TRADINGSYMBOL of the index itself
    lot_size: int
    enabled: bool = True


DEFAULT_INDICES: tuple[IndexConfig, ...] = (
    IndexConfig("NIFTY", "NFO", "NSE:NIFTY 50", 25),
    IndexConfig("BANKNIFTY", "NFO", "NSE:NIFTY BANK", 15),
    IndexConfig("FINNIFTY", "NFO", "NSE:NIFTY FIN SERVICE", 25),
    IndexConfig("MIDCPNIFTY", "NFO", "NSE:NIFTY MID SELECT", 50),
    IndexConfig("SENSEX", "BFO", "BSE:SENSEX", 10),
    IndexConfig("BANKEX", "BFO", "BSE:BANKEX", 15),
)


def exchanges_for(indices: tuple[IndexConfig, ...] | list[IndexConfig]) -> list[str]:
    """Distinct derivatives exchanges (stable order) for the enabled indices."""
    return list(dict.fromkeys(ix.exchange for ix in indices if ix.enabled))


def by_name(indices: tuple[IndexConfig, ...] | list[IndexConfig]) -> dict[str, IndexConfig]:
    return {ix.name: ix for ix in indices if ix.enabled}


__all__ = ["IndexConfig", "DEFAULT_INDICES", "exchanges_for", "by_name"]
