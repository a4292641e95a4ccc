"""
Stream actors - Strictly serialized processing per stream key.

Each stream key gets one StreamActor with its own FIFO queue and a single
worker task, so at most one event per key is in flight and events run in
arrival order. Actors for different keys share nothing and run
concurrently on the event loop.

Per event, an actor:
1. reads the pinned message id from the state store
2. unpins it (not-found counts as success, other failures are logged)
3. renders the card
4. sends the card (failure aborts the event)
5. pins the new message
6. persists the new id
and emits one telemetry record whatever the outcome.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Dict, List, Optional, TypeVar

from pinrelay.adapters.gateway import MessagingGateway, UnpinResult
from pinrelay.config import config
from pinrelay.engine.formatter import CardFormatter
from pinrelay.errors import GatewayError, TransientGatewayError
from pinrelay.models.event import InboundEvent, ProcessResult, UnpinOutcome
from pinrelay.models.state import ActorState
from pinrelay.models.telemetry import Outcome, TelemetryRecord
from pinrelay.store.state_store import StateStore
from pinrelay.telemetry.sinks import LogTelemetrySink, TelemetrySink

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STOP = object()


class StreamActor:
    """The single serialized execution unit for one stream key."""

    def __init__(
        self,
        stream_key: str,
        store: StateStore,
        gateway: MessagingGateway,
        formatter: Optional[CardFormatter] = None,
        telemetry: Optional[TelemetrySink] = None,
        deployment_version: Optional[str] = None,
        pin_retries: Optional[int] = None,
        step_timeout: Optional[float] = None,
    ):
        """
        Initialize the actor.

        Args:
            stream_key: Key this actor owns
            store: State store holding the pinned message id
            gateway: Messaging gateway for unpin/send/pin
            formatter: Card formatter
            telemetry: Sink receiving one record per event
            deployment_version: Version tag stamped on telemetry
            pin_retries: Compensating re-pin attempts after a transient pin failure
            step_timeout: Bound on each gateway step in seconds
        """
        self.stream_key = stream_key
        self.store = store
        self.gateway = gateway
        self.formatter = formatter or CardFormatter()
        self.telemetry = telemetry or LogTelemetrySink()
        self.deployment_version = deployment_version or config.deployment_version
        self.pin_retries = pin_retries if pin_retries is not None else config.pin_retries
        self.step_timeout = step_timeout if step_timeout is not None else config.step_timeout

        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def pending(self) -> int:
        """Events queued but not yet started."""
        return self._queue.qsize()

    def submit(self, event: InboundEvent) -> "asyncio.Future[ProcessResult]":
        """
        Enqueue an event and return a future for its result.

        The future carries this event's error only; later events are
        processed regardless.
        """
        if event.stream_key != self.stream_key:
            raise ValueError(f"Event for {event.stream_key!r} sent to actor {self.stream_key!r}")
        if self._closed:
            raise RuntimeError(f"Actor {self.stream_key!r} is closed")

        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((event, future))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name=f"actor:{self.stream_key}")
        return future

    async def aclose(self) -> None:
        """Finish queued events, then stop the worker."""
        if self._closed:
            return
        self._closed = True
        if self._worker is not None and not self._worker.done():
            self._queue.put_nowait(_STOP)
            await self._worker

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    return
                event, future = item
                try:
                    result = await self.process(event)
                except Exception as e:
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(result)
            finally:
                self._queue.task_done()

    async def process(self, event: InboundEvent) -> ProcessResult:
        """Run the full unpin / send / pin / persist sequence for one event."""
        started = time.perf_counter()
        outcome = Outcome.ERROR
        stage = Outcome.PERSIST_FAILED
        try:
            state = await self.store.get(self.stream_key)
            previous_id = state.pinned_message_id if state else None

            stage = Outcome.ERROR
            unpin_outcome = await self._unpin_previous(previous_id, event.topic)
            card = self.formatter.render(event)

            stage = Outcome.SEND_FAILED
            message_id = await self._bounded("sendMessage", self.gateway.send(card, event.topic))

            stage = Outcome.PIN_FAILED
            await self._pin(message_id, event.topic)

            stage = Outcome.PERSIST_FAILED
            await self.store.put(ActorState(
                stream_key=self.stream_key,
                pinned_message_id=message_id,
                updated_at=datetime.now(timezone.utc),
            ))

            outcome = Outcome.SUCCESS
            duration_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "event_processed stream=%s action=%s subject=%s message_id=%s previous=%s unpin=%s",
                self.stream_key, event.action, event.subject_id, message_id, previous_id,
                unpin_outcome.value,
            )
            return ProcessResult(
                stream_key=self.stream_key,
                topic=event.topic,
                message_id=message_id,
                previous_message_id=previous_id,
                unpin_outcome=unpin_outcome,
                duration_ms=duration_ms,
            )
        except Exception as e:
            outcome = stage
            logger.error(
                "event_failed stream=%s action=%s subject=%s outcome=%s error=%s",
                self.stream_key, event.action, event.subject_id, outcome.value, e,
            )
            raise
        finally:
            self._emit(outcome, (time.perf_counter() - started) * 1000)

    async def _unpin_previous(self, previous_id: Optional[int], topic: str) -> UnpinOutcome:
        if previous_id is None:
            return UnpinOutcome.SKIPPED
        try:
            result = await self._bounded("unpinChatMessage", self.gateway.unpin(previous_id, topic))
        except GatewayError as e:
            logger.warning(
                "unpin_failed stream=%s message_id=%s error=%s", self.stream_key, previous_id, e
            )
            return UnpinOutcome.FAILED
        if result == UnpinResult.NOT_FOUND:
            return UnpinOutcome.NOT_FOUND
        return UnpinOutcome.UNPINNED

    async def _pin(self, message_id: int, topic: str) -> None:
        for attempt in range(self.pin_retries + 1):
            try:
                await self._bounded("pinChatMessage", self.gateway.pin(message_id, topic))
                return
            except TransientGatewayError as e:
                if attempt >= self.pin_retries:
                    raise
                logger.warning(
                    "pin_retry stream=%s message_id=%s attempt=%d error=%s",
                    self.stream_key, message_id, attempt + 1, e,
                )

    async def _bounded(self, method: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.step_timeout)
        except asyncio.TimeoutError:
            raise TransientGatewayError(method, f"Timed out after {self.step_timeout}s")

    def _emit(self, outcome: Outcome, duration_ms: float) -> None:
        record = TelemetryRecord(
            stream_key=self.stream_key,
            deployment_version=self.deployment_version,
            duration_ms=duration_ms,
            outcome=outcome,
        )
        try:
            self.telemetry.emit(record)
        except Exception:
            logger.exception("telemetry_emit_failed stream=%s", self.stream_key)


class ActorPool:
    """
    Registry of stream actors, one per key.

    Lookup and insert happen without an await in between, so on a single
    event loop an actor is created exactly once per key.
    """

    def __init__(
        self,
        store: StateStore,
        gateway: MessagingGateway,
        formatter: Optional[CardFormatter] = None,
        telemetry: Optional[TelemetrySink] = None,
        deployment_version: Optional[str] = None,
        pin_retries: Optional[int] = None,
        step_timeout: Optional[float] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.formatter = formatter or CardFormatter()
        self.telemetry = telemetry or LogTelemetrySink()
        self.deployment_version = deployment_version
        self.pin_retries = pin_retries
        self.step_timeout = step_timeout
        self._actors: Dict[str, StreamActor] = {}

    def get(self, stream_key: str) -> StreamActor:
        actor = self._actors.get(stream_key)
        if actor is None:
            actor = StreamActor(
                stream_key,
                store=self.store,
                gateway=self.gateway,
                formatter=self.formatter,
                telemetry=self.telemetry,
                deployment_version=self.deployment_version,
                pin_retries=self.pin_retries,
                step_timeout=self.step_timeout,
            )
            self._actors[stream_key] = actor
            logger.debug("actor_created stream=%s", stream_key)
        return actor

    async def submit(self, event: InboundEvent) -> ProcessResult:
        """Queue an event on its stream's actor and wait for the result."""
        return await self.get(event.stream_key).submit(event)

    def keys(self) -> List[str]:
        return sorted(self._actors)

    def __len__(self) -> int:
        return len(self._actors)

    async def aclose(self) -> None:
        """Drain every actor's queue and stop the workers."""
        await asyncio.gather(*(actor.aclose() for actor in self._actors.values()))
