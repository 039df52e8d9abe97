import json

import pytest

from circuitwatch.config.indices import DEFAULT_INDICES, exchanges_for
from circuitwatch.config.loader import load_index_config
from circuitwatch.config.runtime_config import MAX_QUOTE_BATCH, build_runtime_config, get_runtime_config
from circuitwatch.utils.exceptions import ConfigError


def _write(tmp_path, payload):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_default_registry_covers_both_exchanges():
    assert {ix.name for ix in DEFAULT_INDICES} == {
        "NIFTY", "BANKNIFTY", "FINNIFTY", "MIDCPNIFTY", "SENSEX", "BANKEX",
    }
    assert exchanges_for(DEFAULT_INDICES) == ["NFO", "BFO"]


def test_load_file_and_restrict(tmp_path):
    path = _write(tmp_path, {"indices": [
        {"name": "nifty", "exchange": "NFO", "spot_symbol": "NSE:NIFTY 50", "lot_size": 25},
        {"name": "SENSEX", "exchange": "BFO", "spot_symbol": "BSE:SENSEX", "lot_size": 10},
        {"name": "BANKEX", "exchange": "BFO", "spot_symbol": "BSE:BANKEX", "lot_size": 15, "enabled": False},
    ]})
    all_active = load_index_config(path)
    assert [ix.name for ix in all_active] == ["NIFTY", "SENSEX"]
    assert [ix.name for ix in load_index_config(path, ("SENSEX",))] == ["SENSEX"]


def test_schema_violation_is_config_error(tmp_path):
    path = _write(tmp_path, {"indices": [{"name": "NIFTY", "exchange": "NSE", "spot_symbol": "x", "lot_size": 0}]})
    with pytest.raises(ConfigError):
        load_index_config(path)


def test_unknown_enabled_index_and_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_index_config(tmp_path / "absent.json")
    path = _write(tmp_path, {"indices": [
        {"name": "NIFTY", "exchange": "NFO", "spot_symbol": "NSE:NIFTY 50", "lot_size": 25},
    ]})
    with pytest.raises(ConfigError):
        load_index_config(path, ("NOPE",))


def test_runtime_config_env(monkeypatch):
    monkeypatch.setenv("CW_QUOTE_BATCH_SIZE", "900")
    monkeypatch.setenv("CW_INDICES", "nifty, sensex")
    monkeypatch.setenv("CW_EOD_INTRADAY_FALLBACK", "yes")
    monkeypatch.setenv("CW_LOOP_MAX_CYCLES", "0")
    cfg = build_runtime_config()
    assert cfg.poll.batch_size == MAX_QUOTE_BATCH
    assert cfg.enabled_indices == ("NIFTY", "SENSEX")
    assert cfg.eod.intraday_fallback is True
    assert cfg.poll.max_cycles is None
    assert cfg.detector.duplicate_window_seconds == 300.0


def test_runtime_config_singleton_refresh(monkeypatch):
    first = get_runtime_config(refresh=True)
    assert get_runtime_config() is first
    monkeypatch.setenv("CW_POLL_INTERVAL_SECONDS", "30")
    assert get_runtime_config(refresh=True).poll.interval_seconds == 30.0
