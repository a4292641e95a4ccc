"""In-process fakes for the gateway, state store and telemetry sink."""

import asyncio
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from pinrelay.adapters.gateway import MessagingGateway, UnpinResult
from pinrelay.errors import PersistenceError
from pinrelay.models.state import ActorState
from pinrelay.models.telemetry import TelemetryRecord
from pinrelay.store.state_store import InMemoryStateStore
from pinrelay.telemetry.sinks import TelemetrySink


class FakeGateway(MessagingGateway):
    """
    Records every call in ``log`` and keeps a pinned set like a chat would.

    ``send_delays``, ``send_errors``, ``pin_errors`` and ``unpin_errors``
    are consumed one entry per call; ``None`` means "behave normally".
    """

    def __init__(self, log: Optional[List[Tuple[str, Any]]] = None, first_id: int = 1001):
        self.log = log if log is not None else []
        self.pinned: Set[int] = set()
        self.sent: Dict[int, Tuple[str, str]] = {}
        self._next_id = first_id
        self.send_delays: Deque[Optional[float]] = deque()
        self.send_errors: Deque[Optional[Exception]] = deque()
        self.pin_errors: Deque[Optional[Exception]] = deque()
        self.unpin_errors: Deque[Optional[Exception]] = deque()
        self.in_flight = 0
        self.max_in_flight = 0
        self.pin_calls: List[int] = []
        self.unpin_calls: List[int] = []

    @staticmethod
    def _take(queue: Deque):
        return queue.popleft() if queue else None

    def _enter(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)

    def _leave(self) -> None:
        self.in_flight -= 1

    async def unpin(self, message_id: int, topic: str) -> UnpinResult:
        self._enter()
        try:
            self.log.append(("unpin", message_id))
            self.unpin_calls.append(message_id)
            await asyncio.sleep(0)
            error = self._take(self.unpin_errors)
            if error:
                raise error
            if message_id in self.pinned:
                self.pinned.discard(message_id)
                return UnpinResult.SUCCESS
            return UnpinResult.NOT_FOUND
        finally:
            self._leave()

    async def send(self, text: str, topic: str) -> int:
        self._enter()
        try:
            self.log.append(("send.start", text))
            delay = self._take(self.send_delays)
            await asyncio.sleep(delay or 0)
            error = self._take(self.send_errors)
            if error:
                self.log.append(("send.error", text))
                raise error
            message_id = self._next_id
            self._next_id += 1
            self.sent[message_id] = (text, topic)
            self.log.append(("send.end", message_id))
            return message_id
        finally:
            self._leave()

    async def pin(self, message_id: int, topic: str) -> None:
        self._enter()
        try:
            self.log.append(("pin", message_id))
            self.pin_calls.append(message_id)
            await asyncio.sleep(0)
            error = self._take(self.pin_errors)
            if error:
                raise error
            self.pinned.add(message_id)
        finally:
            self._leave()


class RecordingStore(InMemoryStateStore):
    """InMemoryStateStore that logs get/put and can fail puts on demand."""

    def __init__(self, log: Optional[List[Tuple[str, Any]]] = None):
        super().__init__()
        self.log = log if log is not None else []
        self.fail_puts = 0

    async def get(self, stream_key: str) -> Optional[ActorState]:
        self.log.append(("store.get", stream_key))
        await asyncio.sleep(0)
        return await super().get(stream_key)

    async def put(self, state: ActorState) -> None:
        await asyncio.sleep(0)
        if self.fail_puts:
            self.fail_puts -= 1
            self.log.append(("store.put.error", state.pinned_message_id))
            raise PersistenceError("disk full")
        await super().put(state)
        self.log.append(("store.put", state.pinned_message_id))


class ListSink(TelemetrySink):
    def __init__(self):
        self.records: List[TelemetryRecord] = []

    def emit(self, record: TelemetryRecord) -> None:
        self.records.append(record)
