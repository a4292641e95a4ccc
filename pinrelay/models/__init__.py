"""Data models for the relay."""

from pinrelay.models.event import (
    EventPayload,
    InboundEvent,
    ProcessResult,
    RouteTarget,
    UnpinOutcome,
)
from pinrelay.models.state import ActorState
from pinrelay.models.telemetry import (
    Outcome,
    TelemetryRecord,
)

__all__ = [
    # Event models
    "EventPayload",
    "InboundEvent",
    "ProcessResult",
    "RouteTarget",
    "UnpinOutcome",
    # State models
    "ActorState",
    # Telemetry models
    "Outcome",
    "TelemetryRecord",
]
