"""Receiver that turns the application's own log records into metrics."""

from __future__ import annotations

import json
import logging
import sys
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from metricchute.core import TRACE, Container, Handler, Metric, get_log_level

METADATA_FIELDS = ("category", "level")

_internal = logging.getLogger("metricchute.receiver.logrus")
_internal.propagate = False

_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

_LEVEL_NAMES = {
    TRACE: "trace",
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warning",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}


def _parse_time(value: Any) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"log entry time must be a string, got {value!r}")
    text = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    return datetime.fromisoformat(text)


@dataclass(eq=False)
class LogReceiver:
    """Divert log records, as metrics, to ``handler``."""

    loglevel: str = ""
    handler: Handler | None = None

    def _configure(self) -> None:
        if not _internal.handlers:
            _internal.addHandler(logging.StreamHandler(sys.stdout))
        if self.loglevel:
            _internal.setLevel(get_log_level(self.loglevel))

    def start(self, logger: logging.Logger | None = None) -> "LogForwardingHandler":
        """Attach to ``logger`` (the root logger by default); returns the attached handler."""
        _internal.debug("starting logger")
        self._configure()
        hook = LogForwardingHandler(self)
        (logger if logger is not None else logging.getLogger()).addHandler(hook)
        return hook

    def write(self, payload: bytes) -> int:
        """Turn one JSON log entry into a container and send it on."""
        try:
            data = json.loads(payload)
        except ValueError:
            _internal.error("failed to unmarshal log entry for sending it to log receiver")
            raise
        if not isinstance(data, dict):
            raise ValueError("log entry must be a JSON object")
        metadata = {name: data.get(name) for name in METADATA_FIELDS}
        if "time" not in data:
            raise ValueError("log entry has no time")
        try:
            timestamp: datetime | None = _parse_time(data["time"])
        except ValueError:
            _internal.error("failed to parse timestamp %r", data["time"])
            timestamp = None
        container = Container(metrics=[Metric(time=timestamp, metadata=metadata, data=data)])
        try:
            self.handler.transform_and_send(container)
        except Exception as err:
            _internal.error("failed to send log entry: %s", err)
        return len(payload)


class LogForwardingHandler(logging.Handler):
    """Logging handler that serialises every record and passes it to a writer."""

    def __init__(self, writer: LogReceiver, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.writer = writer
        self._local = threading.local()

    def emit(self, record: logging.LogRecord) -> None:
        if getattr(self._local, "active", False):
            return
        self._local.active = True
        try:
            entry = {key: value for key, value in vars(record).items() if key not in _RESERVED}
            entry["message"] = record.getMessage()
            entry["time"] = datetime.fromtimestamp(record.created, tz=timezone.utc).astimezone().isoformat()
            entry["level"] = _LEVEL_NAMES.get(record.levelno, record.levelname.lower())
            try:
                payload = json.dumps(entry, default=str).encode()
            except (TypeError, ValueError):
                print("Failed to convert log entry to json")
                return
            try:
                self.writer.write(payload)
            except Exception as err:
                print("Write to handler failed", err)
        except Exception:
            self.handleError(record)
        finally:
            self._local.active = False