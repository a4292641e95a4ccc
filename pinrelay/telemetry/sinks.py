"""
Telemetry sinks - Where per-event records go.

Every processed event produces exactly one TelemetryRecord
{stream_key, deployment_version, duration_ms, outcome}. Sinks must not
break event processing; CompositeSink logs and skips a failing sink.
"""

import json
import logging
import queue
import sys
from abc import ABC, abstractmethod
from logging.handlers import QueueListener
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from pydantic import ValidationError
from pythonjsonlogger.json import JsonFormatter

from pinrelay.models.telemetry import TelemetryRecord

logger = logging.getLogger(__name__)

TELEMETRY_LOGGER = "pinrelay.telemetry.events"


class TelemetrySink(ABC):
    """Receives one record per processed event."""

    @abstractmethod
    def emit(self, record: TelemetryRecord) -> None:
        """Consume a record."""

    def close(self) -> None:
        """Flush and release resources."""


class LogTelemetrySink(TelemetrySink):
    """
    Emits records as JSON log lines on a dedicated logger.

    The logger gets its own JSON handler and does not propagate, so the
    records stay machine-readable whatever the root log format is.
    """

    def __init__(self, logger_name: str = TELEMETRY_LOGGER, stream=None):
        self.logger = logging.getLogger(logger_name)
        if not self.logger.handlers:
            handler = logging.StreamHandler(stream or sys.stdout)
            handler.setFormatter(JsonFormatter("%(asctime)s %(name)s %(message)s"))
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.INFO)
            self.logger.propagate = False

    def emit(self, record: TelemetryRecord) -> None:
        self.logger.info("event_telemetry", extra=record.model_dump(mode="json"))


class JsonlTelemetrySink(TelemetrySink):
    """
    Appends records to a JSONL file, one record per line.

    ``emit`` only enqueues the line; a QueueListener thread does the file
    append, so actors on the event loop never wait on disk. ``close`` drains
    the queue.
    """

    def __init__(self, path: Path):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._queue: "queue.SimpleQueue[logging.LogRecord]" = queue.SimpleQueue()
        self._handler = logging.FileHandler(self.path, mode='a', encoding='utf-8', delay=True)
        self._handler.setFormatter(logging.Formatter("%(message)s"))
        self._listener: Optional[QueueListener] = QueueListener(self._queue, self._handler)
        self._listener.start()

    def emit(self, record: TelemetryRecord) -> None:
        if self._listener is None:
            raise RuntimeError(f"Telemetry file {self.path} is closed")
        self._queue.put_nowait(logging.makeLogRecord({"msg": record.model_dump_json()}))

    def close(self) -> None:
        if self._listener is None:
            return
        self._listener.stop()
        self._listener = None
        self._handler.close()


class CompositeSink(TelemetrySink):
    """Fans a record out to several sinks."""

    def __init__(self, sinks: Iterable[TelemetrySink]):
        self.sinks: List[TelemetrySink] = list(sinks)

    def emit(self, record: TelemetryRecord) -> None:
        for sink in self.sinks:
            try:
                sink.emit(record)
            except Exception:
                logger.exception("telemetry_sink_failed sink=%s", type(sink).__name__)

    def close(self) -> None:
        for sink in self.sinks:
            try:
                sink.close()
            except Exception:
                logger.exception("telemetry_sink_close_failed sink=%s", type(sink).__name__)


def read_jsonl(path: Path, skip_invalid: bool = True) -> Iterator[TelemetryRecord]:
    """
    Read records written by JsonlTelemetrySink.

    Args:
        path: JSONL file
        skip_invalid: Skip unreadable lines instead of raising
    """
    if not path.exists():
        return
    with open(path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield TelemetryRecord.model_validate(json.loads(line))
            except (json.JSONDecodeError, ValidationError) as e:
                if not skip_invalid:
                    raise
                logger.warning("telemetry_line_skipped path=%s line=%d error=%s", path, line_no, e)


def build_default_sink(jsonl_path: Optional[Path] = None, extra: Iterable[TelemetrySink] = ()) -> TelemetrySink:
    """Log sink, plus a JSONL file when a path is given, plus any extra sinks."""
    sinks: List[TelemetrySink] = [LogTelemetrySink()]
    if jsonl_path is not None:
        sinks.append(JsonlTelemetrySink(jsonl_path))
    sinks.extend(extra)
    return CompositeSink(sinks)
