"""Anonymous error reporting for the terminal client and server.

Errors logged through :mod:`logging` are collected into a bounded buffer
and handed in JSON batches to a sender running on a background thread.
"""

from __future__ import annotations

import atexit
import configparser
import enum
import json
import logging
import os
import sys
import threading
import time
import urllib.request
import uuid
from typing import Any, Callable

import platformdirs

from .pseudo_user_terminal import ET_VERSION

APPLICATION = "Eternal Terminal"
MAX_BUFFERED_MESSAGES = 16 * 1024
FLUSH_BATCH_SIZE = 1024
FLUSH_INTERVAL = 30.0
POLL_INTERVAL = 0.1
TELEMETRY_URL_ENV = "ET_TELEMETRY_URL"
DISABLE_ENV = "ET_NO_TELEMETRY"

_NOTICE = (
    "Eternal Terminal collects crashes and errors in order to help us improve "
    "your experience.\nThe data collected is anonymous.\nYou can opt-out of "
    "telemetry by setting the environment variable ET_NO_TELEMETRY to any "
    "non-empty value."
)

Sender = Callable[[str], Any]


class LogLevel(enum.Enum):
    """Severity of a reported message."""

    GLOBAL = "Global"
    TRACE = "Trace"
    DEBUG = "Debug"
    FATAL = "Fatal"
    ERROR = "Error"
    WARNING = "Warning"
    VERBOSE = "Verbose"
    INFO = "Info"
    UNKNOWN = "Unknown"

    @classmethod
    def from_logging(cls, levelno: int) -> "LogLevel":
        """The level matching a :mod:`logging` level number."""
        if levelno >= logging.CRITICAL:
            return cls.FATAL
        if levelno >= logging.ERROR:
            return cls.ERROR
        if levelno >= logging.WARNING:
            return cls.WARNING
        if levelno >= logging.INFO:
            return cls.INFO
        if levelno >= logging.DEBUG:
            return cls.DEBUG
        return cls.UNKNOWN


def level_name(level: Any) -> str:
    """Display name of a level; anything unrecognised is ``"Unknown"``."""
    if isinstance(level, LogLevel):
        return level.value
    return LogLevel.UNKNOWN.value


_CRASH_LEVELS = {
    LogLevel.INFO: "info",
    LogLevel.WARNING: "warning",
    LogLevel.ERROR: "error",
    LogLevel.FATAL: "fatal",
}


def _crash_level(level: LogLevel) -> str:
    return _CRASH_LEVELS.get(level, "debug")


def default_config_path() -> str:
    """Where the telemetry id is stored for this user."""
    return os.path.join(platformdirs.user_config_dir("et"), "telemetry.ini")


def load_or_create_telemetry_id(config_path: str) -> uuid.UUID:
    """Read the stored telemetry id, or create and store a new one."""
    if os.path.exists(config_path):
        parser = configparser.ConfigParser()
        try:
            with open(config_path, encoding="utf-8") as handle:
                parser.read_file(handle)
        except (OSError, configparser.Error) as exc:
            raise ValueError(f"Invalid config file: {config_path}") from exc
        raw_id = parser.get("Sentry", "Id", fallback=None)
        if raw_id is None:
            raise ValueError("Invalid telemetry config")
        try:
            return uuid.UUID(raw_id)
        except ValueError as exc:
            raise ValueError("Invalid telemetry config") from exc

    telemetry_id = uuid.uuid4()
    directory = os.path.dirname(config_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    parser = configparser.ConfigParser()
    parser.optionxform = str  # keep the key's case as written
    parser["Sentry"] = {"Id": str(telemetry_id)}
    with open(config_path, "w", encoding="utf-8") as handle:
        parser.write(handle)
    return telemetry_id


def _http_sender(url: str) -> Sender:
    def send(payload: str) -> None:
        request = urllib.request.Request(
            url,
            data=payload.encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(request, timeout=1.0) as response:
            response.read()

    return send


class _TelemetryHandler(logging.Handler):
    """Forwards error records from :mod:`logging` to the service."""

    def __init__(self, service: "TelemetryService") -> None:
        super().__init__(level=logging.ERROR)
        self.service = service
        self.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    def emit(self, record: logging.LogRecord) -> None:
        if record.name == "stdout":
            return
        try:
            text = record.getMessage() + "\n" + self.format(record)
            level = LogLevel.from_logging(record.levelno)
            if level is LogLevel.FATAL:
                self.service.log_to_sentry(level, text)
            if level in (LogLevel.FATAL, LogLevel.ERROR):
                self.service.log_to_datadog(text, level, record.pathname, record.lineno)
        except Exception:  # never let reporting break the caller
            self.handleError(record)


class TelemetryService:
    """Buffers error reports and ships them in batches on a worker thread."""

    def __init__(
        self,
        allow: bool,
        database_path: str,
        environment: str,
        sender: Sender | None = None,
        config_path: str | None = None,
        flush_interval: float = FLUSH_INTERVAL,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self.allowed = bool(allow) and not os.environ.get(DISABLE_ENV)
        self.database_path = database_path
        self.environment = environment
        self.telemetry_id = uuid.UUID(int=0)
        self.log_buffer: list[dict[str, str]] = []
        self.shutting_down = False
        self.flush_interval = flush_interval
        self.poll_interval = poll_interval
        self._lock = threading.RLock()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None
        self._handler: _TelemetryHandler | None = None

        if not self.allowed:
            return

        path = config_path or default_config_path()
        existed = os.path.exists(path)
        self.telemetry_id = load_or_create_telemetry_id(path)
        if not existed:
            print(_NOTICE)

        if sender is None:
            url = os.environ.get(TELEMETRY_URL_ENV)
            if url:
                sender = _http_sender(url)
        self._sender = sender

        self._handler = _TelemetryHandler(self)
        logging.getLogger().addHandler(self._handler)

        if sender is not None:
            self._thread = threading.Thread(
                target=self._send_loop, name="telemetry", daemon=True
            )
            self._thread.start()

    def _send_loop(self) -> None:
        next_dump = time.monotonic()
        while True:
            with self._lock:
                last_run = self.shutting_down
                pending = len(self.log_buffer)
            if pending and (
                pending >= FLUSH_BATCH_SIZE or next_dump < time.monotonic() or last_run
            ):
                next_dump = time.monotonic() + self.flush_interval
                with self._lock:
                    payload = json.dumps(self.log_buffer, indent=4)
                    self.log_buffer.clear()
                try:
                    self._sender(payload)
                except Exception as exc:  # a lost batch is not worth a crash
                    print(f"Failed to send telemetry: {exc}", file=sys.stderr)
            if last_run:
                break
            self._wake.wait(self.poll_interval)

    def log_to_sentry(self, level: LogLevel, message: str) -> None:
        """Record a crash-level event."""
        if not self.allowed:
            return
        event = {
            "message": message,
            "level": _crash_level(level),
            "logger": "stderr",
            "Environment": self.environment,
            "Release": f"EternalTerminal@{ET_VERSION}",
            "TelemetryId": str(self.telemetry_id),
        }
        with self._lock:
            if len(self.log_buffer) > MAX_BUFFERED_MESSAGES:
                return
            self.log_buffer.append(event)

    def log_to_datadog(
        self, log_text: str, level: LogLevel, filename: str, line: int
    ) -> None:
        """Queue a log message; dropped when the buffer is full."""
        message = {
            "message": log_text,
            "level": level_name(level),
            "Environment": self.environment,
            "Application": APPLICATION,
            "Version": ET_VERSION,
            "TelemetryId": str(self.telemetry_id),
            "File": filename,
            "Line": str(line),
        }
        with self._lock:
            if len(self.log_buffer) > MAX_BUFFERED_MESSAGES:
                return
            self.log_buffer.append(message)

    def shutdown(self) -> None:
        """Send what is left and stop the worker; later calls do nothing."""
        with self._lock:
            if self.shutting_down:
                return
            self.shutting_down = True
        if self._handler is not None:
            logging.getLogger().removeHandler(self._handler)
            self._handler = None
        self._wake.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None


_instance: TelemetryService | None = None
_atexit_registered = False


def _shutdown_instance() -> None:
    if _instance is not None:
        print("Shutting down telemetry", file=sys.stderr)
        _instance.shutdown()


def create(
    allow: bool, database_path: str, environment: str, sender: Sender | None = None
) -> TelemetryService:
    """Create the process-wide service, replacing any earlier one."""
    global _instance, _atexit_registered
    _instance = TelemetryService(allow, database_path, environment, sender)
    if not _atexit_registered:
        atexit.register(_shutdown_instance)
        _atexit_registered = True
    return _instance


def get() -> TelemetryService:
    """The process-wide service."""
    if _instance is None:
        raise RuntimeError("Tried to get a singleton before it was created!")
    return _instance


def exists() -> bool:
    return _instance is not None


def destroy() -> None:
    """Forget the process-wide service."""
    global _instance
    if _instance is not None and not _instance.shutting_down:
        print("Destroyed telemetryService without a shutdown", file=sys.stderr)
    _instance = None