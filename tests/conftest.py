"""
Pytest configuration and fixtures.
"""
from typing import Any, List, Tuple

import pytest

from pinrelay.engine.actor import ActorPool
from pinrelay.engine.router import EventRouter, RouteTable
from pinrelay.models.event import InboundEvent

from tests.fakes import FakeGateway, ListSink, RecordingStore


@pytest.fixture
def call_log() -> List[Tuple[str, Any]]:
    """Shared, ordered log of store and gateway calls."""
    return []


@pytest.fixture
def gateway(call_log) -> FakeGateway:
    return FakeGateway(log=call_log)


@pytest.fixture
def store(call_log) -> RecordingStore:
    return RecordingStore(log=call_log)


@pytest.fixture
def sink() -> ListSink:
    return ListSink()


@pytest.fixture
def pool(store, gateway, sink) -> ActorPool:
    return ActorPool(
        store,
        gateway,
        telemetry=sink,
        deployment_version="v-test",
        pin_retries=1,
        step_timeout=5.0,
    )


@pytest.fixture
def route_table() -> RouteTable:
    return RouteTable.from_dict({
        "routes": {
            "mobile-app": {"topic": "101"},
            "forum-polish": {"topic": "102"},
        },
        "default": {"route": "forum-polish"},
    })


@pytest.fixture
def router(route_table, pool) -> EventRouter:
    return EventRouter(route_table, pool)


def make_event(action: str = "review", subject_id: int = 42, stream_key: str = "mobile-app",
               topic: str = "101", source: str = "") -> InboundEvent:
    return InboundEvent(
        stream_key=stream_key,
        topic=topic,
        action=action,
        subject_id=subject_id,
        source=source,
    )


@pytest.fixture
def event_factory():
    return make_event
