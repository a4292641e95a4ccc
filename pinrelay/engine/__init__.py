"""Core engine components for the relay."""

from pinrelay.engine.actor import ActorPool, StreamActor
from pinrelay.engine.formatter import CardFormatter
from pinrelay.engine.router import EventRouter, RouteTable

__all__ = [
    "ActorPool",
    "StreamActor",
    "CardFormatter",
    "EventRouter",
    "RouteTable",
]
