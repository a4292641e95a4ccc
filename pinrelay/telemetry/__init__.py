"""Telemetry emission and rollback monitoring."""

from pinrelay.telemetry.sinks import (
    CompositeSink,
    JsonlTelemetrySink,
    LogTelemetrySink,
    TelemetrySink,
    build_default_sink,
    read_jsonl,
)
from pinrelay.telemetry.monitor import RollbackMonitor, RollbackStatus, percentile

__all__ = [
    "CompositeSink",
    "JsonlTelemetrySink",
    "LogTelemetrySink",
    "TelemetrySink",
    "build_default_sink",
    "read_jsonl",
    "RollbackMonitor",
    "RollbackStatus",
    "percentile",
]
