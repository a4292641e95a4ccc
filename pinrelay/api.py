"""
pinrelay API Server
FastAPI server receiving webhook events and relaying them to Telegram
"""

import hmac
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Request

from pinrelay import __version__
from pinrelay.adapters.gateway import MessagingGateway
from pinrelay.adapters.telegram import TelegramClient, TelegramGateway
from pinrelay.config import RelayConfig, config
from pinrelay.engine.actor import ActorPool
from pinrelay.engine.router import EventRouter, RouteTable
from pinrelay.errors import (
    EventValidationError,
    PermanentGatewayError,
    PersistenceError,
    TransientGatewayError,
)
from pinrelay.store.state_store import FileStateStore, StateStore
from pinrelay.telemetry.monitor import RollbackMonitor
from pinrelay.telemetry.sinks import CompositeSink, TelemetrySink, build_default_sink

logger = logging.getLogger(__name__)


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def create_app(
    settings: Optional[RelayConfig] = None,
    route_table: Optional[RouteTable] = None,
    store: Optional[StateStore] = None,
    gateway: Optional[MessagingGateway] = None,
    telemetry: Optional[TelemetrySink] = None,
    monitor: Optional[RollbackMonitor] = None,
) -> FastAPI:
    """
    Build the relay application.

    Collaborators not passed in are built from settings on startup, so
    importing this module never touches the network or the filesystem.
    """
    settings = settings or config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Wire router, actors, store, gateway and telemetry; drain on shutdown."""
        state_store = store
        if state_store is None:
            settings.ensure_directories()
            state_store = FileStateStore(base_dir=settings.state_dir, timeout=settings.store_timeout)

        messaging = gateway or TelegramGateway(TelegramClient(
            bot_token=settings.telegram_bot_token,
            chat_id=settings.telegram_chat_id,
            base_url=settings.telegram_base_url,
            timeout=settings.gateway_timeout,
            retry_count=settings.gateway_retry,
            backoff_base=settings.gateway_backoff_base,
            backoff_max=settings.gateway_backoff_max,
        ))

        rollback_monitor = monitor or RollbackMonitor(
            threshold_ms=settings.rollback_p99_threshold_ms,
            window=timedelta(hours=settings.rollback_window_hours),
            min_samples=settings.rollback_min_samples,
        )
        sink = CompositeSink([
            telemetry or build_default_sink(settings.telemetry_file),
            rollback_monitor,
        ])

        actors = ActorPool(
            state_store,
            messaging,
            telemetry=sink,
            deployment_version=settings.deployment_version,
            pin_retries=settings.pin_retries,
            step_timeout=settings.step_timeout,
        )
        table = route_table or RouteTable.load(settings.routes_config_path)

        app.state.store = state_store
        app.state.gateway = messaging
        app.state.monitor = rollback_monitor
        app.state.actors = actors
        app.state.router = EventRouter(table, actors)
        logger.info(
            "relay_started version=%s routes=%s default=%s",
            settings.deployment_version, sorted(table.routes), table.default.stream_key,
        )

        yield

        await actors.aclose()
        if telemetry is None:
            sink.close()
        if gateway is None:
            await messaging.aclose()

    app = FastAPI(
        title="pinrelay",
        description="Relays webhook events to one pinned Telegram card per stream",
        version=__version__,
        lifespan=lifespan,
    )

    def check_credential(authorization: Optional[str], relay_token: Optional[str]) -> None:
        if not settings.inbound_token:
            return
        presented = _bearer(authorization) or relay_token or ""
        if not hmac.compare_digest(presented.encode(), settings.inbound_token.encode()):
            raise HTTPException(status_code=401, detail="Invalid or missing credential")

    @app.get("/")
    async def root():
        """API root"""
        return {
            "name": "pinrelay",
            "version": __version__,
            "deployment_version": settings.deployment_version,
            "docs": "/docs",
        }

    @app.get("/api/v1/system/health")
    async def health():
        """Health check"""
        return {"status": "ok", "actors": len(app.state.actors)}

    @app.post("/api/v1/events")
    @app.post("/api/v1/events/{hint}")
    async def receive_event(
        request: Request,
        hint: Optional[str] = None,
        authorization: Optional[str] = Header(None),
        x_relay_token: Optional[str] = Header(None),
        x_relay_stream: Optional[str] = Header(None),
    ):
        """Accept one event; responds once it is pinned and persisted."""
        check_credential(authorization, x_relay_token)

        try:
            payload = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Body must be valid JSON")

        try:
            result = await app.state.router.dispatch(payload, hint or x_relay_stream)
        except EventValidationError as e:
            raise HTTPException(status_code=400, detail={"message": str(e), "errors": e.errors})
        except TransientGatewayError as e:
            raise HTTPException(status_code=503, detail=str(e))
        except PermanentGatewayError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=500, detail=str(e))

        return {"status": "ok", **result.model_dump(mode="json")}

    @app.get("/api/v1/streams")
    async def list_streams():
        """List streams with stored state"""
        try:
            keys = await app.state.store.list_keys()
        except PersistenceError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"streams": keys}

    @app.get("/api/v1/streams/{stream_key}")
    async def get_stream(stream_key: str):
        """Current pinned state of a stream"""
        try:
            state = await app.state.store.get(stream_key)
        except PersistenceError as e:
            raise HTTPException(status_code=500, detail=str(e))
        if state is None:
            raise HTTPException(status_code=404, detail="Stream has no state")
        return state.model_dump(mode="json")

    @app.get("/api/v1/monitor")
    async def monitor_status():
        """Rolling p99 per deployment version"""
        statuses = app.state.monitor.statuses()
        return {
            "deployment_version": settings.deployment_version,
            "versions": [s.model_dump(mode="json") for s in statuses],
        }

    return app


app = create_app()
