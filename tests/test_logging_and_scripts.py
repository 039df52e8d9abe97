import logging

import orjson
import pytest

from circuitwatch.utils.logging_utils import JsonFormatter, setup_logging


@pytest.fixture()
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for h in root.handlers[:]:
        root.removeHandler(h)
        h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


def test_setup_logging_writes_file(tmp_path, restore_root_logging):
    log_file = tmp_path / "logs" / "cw.log"
    root = setup_logging("debug", str(log_file))
    assert root.level == logging.DEBUG
    logging.getLogger("circuitwatch.test").info("poller.cycle outcome=ok")
    for h in root.handlers:
        h.flush()
    assert "poller.cycle outcome=ok" in log_file.read_text(encoding="utf-8")
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_json_formatter():
    record = logging.LogRecord("circuitwatch.x", logging.WARNING, __file__, 1, "token=%s", (42,), None)
    payload = orjson.loads(JsonFormatter().format(record))
    assert payload["msg"] == "token=42"
    assert payload["level"] == "WARNING"


def _no_logging_setup(*args, **kwargs):
    return logging.getLogger()


def test_maintenance_integrity_command(tmp_path, monkeypatch, capsys):
    import scripts.maintenance as maintenance

    monkeypatch.setattr(maintenance, "setup_logging", _no_logging_setup)
    monkeypatch.setattr(maintenance, "load_dotenv", lambda *a, **k: False)
    url = f"sqlite:///{tmp_path / 'cw.db'}"
    assert maintenance.main(["--db-url", url, "integrity"]) == 0
    report = orjson.loads(capsys.readouterr().out)
    assert report["snapshots"] == 0 and report["snapshots_by_index"] == {}
    assert maintenance.main(["--db-url", url, "purge", "--days", "30"]) == 0
    assert orjson.loads(capsys.readouterr().out) == {"snapshots": 0, "circuit_changes": 0}


def test_circuit_report_renders_empty_day(tmp_path, monkeypatch, capsys):
    import scripts.circuit_report as circuit_report

    monkeypatch.setattr(circuit_report, "load_dotenv", lambda *a, **k: False)
    url = f"sqlite:///{tmp_path / 'cw.db'}"
    assert circuit_report.main(["--db-url", url, "--date", "2024-12-25"]) == 0
    out = capsys.readouterr().out
    assert "not a trading day" in out
    assert "Circuit changes 2024-12-24" in out
