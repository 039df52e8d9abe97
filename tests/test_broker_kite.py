import datetime as dt

import pytest
from kiteconnect import exceptions as kite_exc

from circuitwatch.broker.errors import (
    KIND_AUTH,
    KIND_REJECTED,
    KIND_TIMEOUT,
    KIND_TRANSIENT,
    classify_broker_exception,
)
from circuitwatch.broker.kite import ClientConfig, KiteBroker, create_kite_client
from circuitwatch.utils.exceptions import AuthenticationError, TransientFetchError


class FakeKite:
    def __init__(self):
        self.quote_payload = {}
        self.instruments_payload = []
        self.history = []
        self.raise_exc = None
        self.calls = 0

    def instruments(self, exchange=None):
        self.calls += 1
        if self.raise_exc is not None:
            raise self.raise_exc
        return self.instruments_payload

    def quote(self, *instruments):
        self.calls += 1
        if self.raise_exc is not None:
            raise self.raise_exc
        return self.quote_payload

    def historical_data(self, instrument_token, from_date, to_date, interval, continuous=False, oi=False):
        self.calls += 1
        if self.raise_exc is not None:
            raise self.raise_exc
        return self.history


def _broker(client):
    return KiteBroker(client, ClientConfig(api_key="k", access_token="t", timeout=2.0, instruments_timeout=2.0))


def test_classification():
    assert classify_broker_exception(kite_exc.TokenException("bad")) == KIND_AUTH
    assert classify_broker_exception(kite_exc.NetworkException("down")) == KIND_TRANSIENT
    assert classify_broker_exception(TimeoutError("slow")) == KIND_TIMEOUT
    assert classify_broker_exception(RuntimeError("Too many requests")) == KIND_TRANSIENT
    assert classify_broker_exception(kite_exc.InputException("bad instrument_token")) == KIND_REJECTED


def test_get_quotes_maps_string_keys_to_tokens():
    client = FakeKite()
    client.quote_payload = {
        "1001": {"last_price": 110, "lower_circuit_limit": 100, "upper_circuit_limit": 120, "volume": 5},
        "1002": "garbage",
    }
    quotes = _broker(client).get_quotes([1001, 1002])
    assert list(quotes) == [1001]
    assert quotes[1001].upper_circuit_limit == 120.0


def test_get_quotes_rejects_oversized_batch():
    with pytest.raises(ValueError):
        _broker(FakeKite()).get_quotes(list(range(1, 502)))


def test_auth_failure_is_translated():
    client = FakeKite()
    client.raise_exc = kite_exc.TokenException("Incorrect `api_key` or `access_token`.")
    with pytest.raises(AuthenticationError):
        _broker(client).get_quotes([1])


def test_network_failure_is_transient_and_quotes_not_retried():
    client = FakeKite()
    client.raise_exc = kite_exc.NetworkException("gateway timeout")
    with pytest.raises(TransientFetchError):
        _broker(client).get_quotes([1])
    assert client.calls == 1


def test_instrument_download_is_retried(monkeypatch):
    monkeypatch.setenv("CW_RETRY_MAX_ATTEMPTS", "3")
    client = FakeKite()
    client.raise_exc = kite_exc.NetworkException("reset")
    with pytest.raises(TransientFetchError):
        _broker(client).list_instruments("NFO")
    assert client.calls == 3


def test_list_instruments_filters_to_options():
    client = FakeKite()
    client.instruments_payload = [
        {"instrument_token": 1, "tradingsymbol": "NIFTY24DECFUT", "name": "NIFTY", "instrument_type": "FUT",
         "expiry": dt.date(2024, 12, 26), "exchange": "NFO"},
        {"instrument_token": 2, "tradingsymbol": "NIFTY24DEC25000CE", "name": "NIFTY", "instrument_type": "CE",
         "strike": 25000, "expiry": dt.date(2024, 12, 26), "exchange": "NFO"},
    ]
    out = _broker(client).list_instruments("NFO")
    assert [i.instrument_token for i in out] == [2]


def test_unexpected_instrument_payload_is_empty():
    client = FakeKite()
    client.instruments_payload = {"error": "maintenance"}
    assert _broker(client).list_instruments("NFO") == []


def test_daily_bar_picks_requested_date():
    client = FakeKite()
    client.history = [
        {"date": dt.datetime(2024, 12, 23), "open": 1, "high": 1, "low": 1, "close": 1, "volume": 1, "oi": 1},
        {"date": dt.datetime(2024, 12, 24), "open": 2, "high": 3, "low": 1, "close": 2.5, "volume": 9, "oi": 4},
    ]
    bar = _broker(client).get_daily_bar(1001, dt.date(2024, 12, 24))
    assert bar is not None and bar.close == 2.5
    assert _broker(client).get_daily_bar(1001, dt.date(2024, 12, 20)) is None


def test_client_factory_needs_credentials(monkeypatch):
    monkeypatch.delenv("KITE_API_KEY", raising=False)
    monkeypatch.delenv("KITE_APIKEY", raising=False)
    monkeypatch.delenv("KITE_ACCESS_TOKEN", raising=False)
    monkeypatch.delenv("KITE_ACCESSTOKEN", raising=False)
    assert create_kite_client(ClientConfig.from_env()) is None
