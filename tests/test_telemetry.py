import json
import logging
import uuid

import pytest

from eterm import telemetry
from eterm.telemetry import LogLevel, TelemetryService


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    monkeypatch.delenv("ET_NO_TELEMETRY", raising=False)
    monkeypatch.delenv("ET_TELEMETRY_URL", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    yield
    if telemetry.exists():
        telemetry.get().shutdown()
        telemetry.destroy()


def _service(tmp_path, sender=None, allow=True):
    return TelemetryService(
        allow,
        str(tmp_path / "db"),
        "Test",
        sender=sender,
        config_path=str(tmp_path / "et" / "telemetry.ini"),
        poll_interval=0.01,
    )


@pytest.mark.parametrize(
    "level, name",
    [
        (LogLevel.GLOBAL, "Global"),
        (LogLevel.TRACE, "Trace"),
        (LogLevel.DEBUG, "Debug"),
        (LogLevel.FATAL, "Fatal"),
        (LogLevel.ERROR, "Error"),
        (LogLevel.WARNING, "Warning"),
        (LogLevel.VERBOSE, "Verbose"),
        (LogLevel.INFO, "Info"),
        (LogLevel.UNKNOWN, "Unknown"),
        ("bogus", "Unknown"),
    ],
)
def test_level_name(level, name):
    assert telemetry.level_name(level) == name


def test_from_logging_maps_levels():
    assert LogLevel.from_logging(logging.CRITICAL) is LogLevel.FATAL
    assert LogLevel.from_logging(logging.ERROR) is LogLevel.ERROR
    assert LogLevel.from_logging(logging.INFO) is LogLevel.INFO


def test_telemetry_id_round_trip(tmp_path):
    path = str(tmp_path / "sub" / "telemetry.ini")
    first = telemetry.load_or_create_telemetry_id(path)
    second = telemetry.load_or_create_telemetry_id(path)
    assert first == second
    assert first.version == 4


def test_telemetry_id_reads_existing_file(tmp_path):
    path = tmp_path / "telemetry.ini"
    known = uuid.uuid4()
    path.write_text(f"[Sentry]\nId = {known}\n")
    assert telemetry.load_or_create_telemetry_id(str(path)) == known


def test_telemetry_config_without_id_is_rejected(tmp_path):
    path = tmp_path / "telemetry.ini"
    path.write_text("[Sentry]\nOther = 1\n")
    with pytest.raises(ValueError, match="Invalid telemetry config"):
        telemetry.load_or_create_telemetry_id(str(path))


def test_disabled_by_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("ET_NO_TELEMETRY", "1")
    service = _service(tmp_path)
    assert service.allowed is False
    assert service.telemetry_id == uuid.UUID(int=0)
    assert not (tmp_path / "et" / "telemetry.ini").exists()


def test_creation_prints_notice_once(tmp_path, capsys):
    _service(tmp_path).shutdown()
    assert "ET_NO_TELEMETRY" in capsys.readouterr().out
    _service(tmp_path).shutdown()
    assert capsys.readouterr().out == ""


def test_shutdown_flushes_buffer_to_sender(tmp_path):
    payloads = []
    service = _service(tmp_path, sender=payloads.append)
    service.log_to_datadog("Session Started", LogLevel.INFO, "main.py", 42)
    service.shutdown()
    messages = [m for p in payloads for m in json.loads(p)]
    assert len(messages) == 1
    message = messages[0]
    assert message["message"] == "Session Started"
    assert message["level"] == "Info"
    assert message["Application"] == "Eternal Terminal"
    assert message["Environment"] == "Test"
    assert message["File"] == "main.py"
    assert message["Line"] == "42"
    assert message["TelemetryId"] == str(service.telemetry_id)
    assert service.log_buffer == []


def test_buffer_is_bounded(tmp_path):
    service = _service(tmp_path, allow=False)
    for index in range(telemetry.MAX_BUFFERED_MESSAGES + 10):
        service.log_to_datadog(str(index), LogLevel.ERROR, "f", index)
    assert len(service.log_buffer) == telemetry.MAX_BUFFERED_MESSAGES + 1


def test_log_to_sentry_only_when_allowed(tmp_path):
    denied = _service(tmp_path, allow=False)
    denied.log_to_sentry(LogLevel.FATAL, "crash")
    assert denied.log_buffer == []

    allowed = _service(tmp_path)
    allowed.log_to_sentry(LogLevel.FATAL, "crash")
    allowed.shutdown()
    assert allowed.log_buffer[0]["message"] == "crash"
    assert allowed.log_buffer[0]["level"] == "fatal"


def test_logging_errors_are_captured(tmp_path):
    service = _service(tmp_path)
    try:
        logging.getLogger("eterm.sample").error("boom")
        logging.getLogger("eterm.sample").warning("ignored")
        logging.getLogger("stdout").error("not captured")
    finally:
        service.shutdown()
    assert len(service.log_buffer) == 1
    assert service.log_buffer[0]["message"].startswith("boom\n")
    assert service.log_buffer[0]["level"] == "Error"


def test_logging_stops_after_shutdown(tmp_path):
    service = _service(tmp_path)
    service.shutdown()
    service.shutdown()
    logging.getLogger("eterm.sample").error("after")
    assert service.log_buffer == []
    assert service.shutting_down is True


def test_singleton_lifecycle(tmp_path):
    assert telemetry.exists() is False
    with pytest.raises(RuntimeError, match="singleton"):
        telemetry.get()
    service = telemetry.create(False, str(tmp_path / "db"), "Client")
    assert telemetry.exists() is True
    assert telemetry.get() is service
    service.shutdown()
    telemetry.destroy()
    assert telemetry.exists() is False