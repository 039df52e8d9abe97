"""SQLAlchemy ORM tables.

All datetimes are naive market-local time (see ``MarketCalendar.now``).

Write patterns:
  instruments             upsert by instrument_token
  option_snapshots        append-only
  circuit_changes         append-only, natural key (token, detected_at, new bounds)
  historical_option_data  upsert by (instrument_token, trading_date)
"""
from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class InstrumentRow(Base):
    __tablename__ = "instruments"

    instrument_token: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    exchange_token: Mapped[str] = mapped_column(String(32), default="")
    trading_symbol: Mapped[str] = mapped_column(String(64), nullable=False)
    underlying: Mapped[str] = mapped_column(String(32), nullable=False)
    strike: Mapped[float] = mapped_column(Float, nullable=False)
    option_type: Mapped[str] = mapped_column(String(2), nullable=False)
    expiry: Mapped[date] = mapped_column(Date, nullable=False)
    exchange: Mapped[str] = mapped_column(String(8), nullable=False)
    lot_size: Mapped[int] = mapped_column(Integer, default=0)
    tick_size: Mapped[float] = mapped_column(Float, default=0.05)
    is_expired: Mapped[bool] = mapped_column(Boolean, default=False)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_instruments_underlying_expiry", "underlying", "expiry"),
    )


class SnapshotRow(Base):
    __tablename__ = "option_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    instrument_token: Mapped[int] = mapped_column(BigInteger, nullable=False)
    trading_symbol: Mapped[str] = mapped_column(String(64), nullable=False)
    underlying: Mapped[str] = mapped_column(String(32), nullable=False)
    strike: Mapped[float] = mapped_column(Float, nullable=False)
    option_type: Mapped[str] = mapped_column(String(2), nullable=False)
    expiry: Mapped[date] = mapped_column(Date, nullable=False)
    last_price: Mapped[float] = mapped_column(Float, default=0.0)
    open: Mapped[float] = mapped_column(Float, default=0.0)
    high: Mapped[float] = mapped_column(Float, default=0.0)
    low: Mapped[float] = mapped_column(Float, default=0.0)
    close: Mapped[float] = mapped_column(Float, default=0.0)
    net_change: Mapped[float] = mapped_column(Float, default=0.0)
    volume: Mapped[int] = mapped_column(BigInteger, default=0)
    open_interest: Mapped[int] = mapped_column(BigInteger, default=0)
    lower_circuit_limit: Mapped[float] = mapped_column(Float, default=0.0)
    upper_circuit_limit: Mapped[float] = mapped_column(Float, default=0.0)
    circuit_status: Mapped[str] = mapped_column(String(24), default="Normal")
    implied_volatility: Mapped[float] = mapped_column(Float, default=0.0)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    captured_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True)
    validation_message: Mapped[str] = mapped_column(String(255), default="")
    trading_status: Mapped[str] = mapped_column(String(24), default="Normal")

    __table_args__ = (
        Index("ix_option_snapshots_token_captured", "instrument_token", "captured_at"),
        Index("ix_option_snapshots_captured_at", "captured_at"),
    )


class CircuitChangeRow(Base):
    __tablename__ = "circuit_changes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    instrument_token: Mapped[int] = mapped_column(BigInteger, nullable=False)
    trading_symbol: Mapped[str] = mapped_column(String(64), nullable=False)
    underlying: Mapped[str] = mapped_column(String(32), nullable=False)
    strike: Mapped[float] = mapped_column(Float, nullable=False)
    option_type: Mapped[str] = mapped_column(String(2), nullable=False)
    expiry: Mapped[date] = mapped_column(Date, nullable=False)
    previous_lower: Mapped[float] = mapped_column(Float, default=0.0)
    previous_upper: Mapped[float] = mapped_column(Float, default=0.0)
    new_lower: Mapped[float] = mapped_column(Float, nullable=False)
    new_upper: Mapped[float] = mapped_column(Float, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    change_type: Mapped[str] = mapped_column(String(16), nullable=False)
    lower_change_pct: Mapped[float] = mapped_column(Float, default=0.0)
    upper_change_pct: Mapped[float] = mapped_column(Float, default=0.0)
    range_change_pct: Mapped[float] = mapped_column(Float, default=0.0)
    severity: Mapped[str] = mapped_column(String(16), default="Low")
    change_reason: Mapped[str] = mapped_column(String(64), default="")
    is_breach_alert: Mapped[bool] = mapped_column(Boolean, default=False)
    current_price: Mapped[float] = mapped_column(Float, default=0.0)
    volume: Mapped[int] = mapped_column(BigInteger, default=0)
    open_interest: Mapped[int] = mapped_column(BigInteger, default=0)
    # underlying index context at detection time
    index_open: Mapped[float] = mapped_column(Float, default=0.0)
    index_high: Mapped[float] = mapped_column(Float, default=0.0)
    index_low: Mapped[float] = mapped_column(Float, default=0.0)
    index_close: Mapped[float] = mapped_column(Float, default=0.0)
    index_last_price: Mapped[float] = mapped_column(Float, default=0.0)
    index_change: Mapped[float] = mapped_column(Float, default=0.0)
    index_circuit_status: Mapped[str] = mapped_column(String(24), default="Normal")

    __table_args__ = (
        UniqueConstraint("instrument_token", "detected_at", "new_lower", "new_upper",
                         name="uq_circuit_changes_natural_key"),
        Index("ix_circuit_changes_token_detected", "instrument_token", "detected_at"),
        Index("ix_circuit_changes_detected_at", "detected_at"),
    )


class HistoricalRow(Base):
    __tablename__ = "historical_option_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    instrument_token: Mapped[int] = mapped_column(BigInteger, nullable=False)
    trading_symbol: Mapped[str] = mapped_column(String(64), nullable=False)
    underlying: Mapped[str] = mapped_column(String(32), nullable=False)
    strike: Mapped[float] = mapped_column(Float, nullable=False)
    option_type: Mapped[str] = mapped_column(String(2), nullable=False)
    expiry: Mapped[date] = mapped_column(Date, nullable=False)
    trading_date: Mapped[date] = mapped_column(Date, nullable=False)
    open: Mapped[float] = mapped_column(Float, default=0.0)
    high: Mapped[float] = mapped_column(Float, default=0.0)
    low: Mapped[float] = mapped_column(Float, default=0.0)
    close: Mapped[float] = mapped_column(Float, default=0.0)
    change: Mapped[float] = mapped_column(Float, default=0.0)
    percent_change: Mapped[float] = mapped_column(Float, default=0.0)
    volume: Mapped[int] = mapped_column(BigInteger, default=0)
    open_interest: Mapped[int] = mapped_column(BigInteger, default=0)
    oi_change: Mapped[int] = mapped_column(BigInteger, default=0)
    lower_circuit_limit: Mapped[float] = mapped_column(Float, default=0.0)
    upper_circuit_limit: Mapped[float] = mapped_column(Float, default=0.0)
    circuit_limit_changed: Mapped[bool] = mapped_column(Boolean, default=False)
    trading_status: Mapped[str] = mapped_column(String(24), default="Normal")
    implied_volatility: Mapped[float] = mapped_column(Float, default=0.0)
    captured_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True)
    validation_message: Mapped[str] = mapped_column(String(255), default="")

    __table_args__ = (
        UniqueConstraint("instrument_token", "trading_date", name="uq_historical_token_date"),
        Index("ix_historical_trading_date", "trading_date"),
    )


__all__ = ["Base", "InstrumentRow", "SnapshotRow", "CircuitChangeRow", "HistoricalRow"]
