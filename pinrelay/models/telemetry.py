"""Telemetry record emitted once per processed event."""

from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field


class Outcome(str, Enum):
    """How processing of an event ended."""
    SUCCESS = "success"
    SEND_FAILED = "send_failed"
    PIN_FAILED = "pin_failed"
    PERSIST_FAILED = "persist_failed"
    ERROR = "error"


class TelemetryRecord(BaseModel):
    """Duration and outcome of one event, grouped by deployment version."""
    stream_key: str
    deployment_version: str
    duration_ms: float = Field(..., ge=0)
    outcome: Outcome
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
