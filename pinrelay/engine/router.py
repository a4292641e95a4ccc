"""
Event Router - Resolves inbound events to a stream and dispatches them.

The route table is static: loaded once at startup, never mutated by the
relay. Unknown or missing routing hints fall back to the default entry.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from pinrelay.config import config
from pinrelay.engine.actor import ActorPool
from pinrelay.errors import EventValidationError, RouteConfigError
from pinrelay.models.event import EventPayload, InboundEvent, ProcessResult, RouteTarget

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default:"


class RouteTable:
    """
    Static mapping of routing hints to {stream_key, topic}.

    File format (YAML):

        routes:
          mobile-app:
            topic: "101"
          forum-polish:
            stream_key: forum-polish
            topic: "102"
        default:
          route: forum-polish

    ``stream_key`` defaults to the hint. A default given as ``route: <hint>``
    shares that route's stream; a default with its own ``stream_key`` is
    namespaced as ``default:<stream_key>`` so it never aliases a route.
    """

    def __init__(self, routes: Dict[str, RouteTarget], default: RouteTarget):
        self._routes = dict(routes)
        self.default = default

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "RouteTable":
        """
        Load the route table from a YAML file, or the built-in default.

        Args:
            config_path: Path to routes YAML. Defaults to config.routes_config_path.
        """
        config_path = config_path or config.routes_config_path
        if config_path and config_path.exists():
            with open(config_path, 'r', encoding='utf-8') as f:
                try:
                    data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise RouteConfigError(f"Invalid YAML in {config_path}: {e}") from e
            logger.info("routes_loaded path=%s", config_path)
        else:
            data = cls._default_config()
        return cls.from_dict(data)

    @staticmethod
    def _default_config() -> Dict[str, Any]:
        """Two streams with forum-polish as the fallback."""
        return {
            "routes": {
                "mobile-app": {"topic": config.topic_mobile},
                "forum-polish": {"topic": config.topic_forum},
            },
            "default": {"route": "forum-polish"},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RouteTable":
        if not isinstance(data, dict):
            raise RouteConfigError("Route config must be a mapping")

        raw_routes = data.get("routes") or {}
        if not isinstance(raw_routes, dict):
            raise RouteConfigError("'routes' must be a mapping of hint -> route")

        routes: Dict[str, RouteTarget] = {}
        topics_by_key: Dict[str, str] = {}
        for hint, entry in raw_routes.items():
            target = cls._parse_target(str(hint), entry)
            known_topic = topics_by_key.setdefault(target.stream_key, target.topic)
            if known_topic != target.topic:
                raise RouteConfigError(
                    f"Stream {target.stream_key!r} is mapped to topics {known_topic!r} and {target.topic!r}"
                )
            routes[str(hint)] = target

        raw_default = data.get("default")
        if not isinstance(raw_default, dict):
            raise RouteConfigError("A 'default' entry is required")

        if "route" in raw_default:
            alias = str(raw_default["route"])
            if alias not in routes:
                raise RouteConfigError(f"Default refers to unknown route {alias!r}")
            default = routes[alias]
        else:
            target = cls._parse_target("default", raw_default)
            default = RouteTarget(
                stream_key=f"{DEFAULT_NAMESPACE}{target.stream_key}",
                topic=target.topic,
            )

        return cls(routes, default)

    @staticmethod
    def _parse_target(hint: str, entry: Any) -> RouteTarget:
        if not isinstance(entry, dict) or "topic" not in entry:
            raise RouteConfigError(f"Route {hint!r} needs a 'topic'")
        topic = entry["topic"]
        return RouteTarget(
            stream_key=str(entry.get("stream_key") or hint),
            topic="" if topic is None else str(topic),
        )

    def resolve(self, hint: Optional[str]) -> RouteTarget:
        """Look up a hint; absent or unknown hints get the default entry."""
        if hint:
            target = self._routes.get(hint.strip())
            if target is not None:
                return target
            logger.info("route_fallback hint=%s default=%s", hint, self.default.stream_key)
        return self.default

    @property
    def routes(self) -> Dict[str, RouteTarget]:
        return dict(self._routes)


class EventRouter:
    """Validates inbound payloads and hands them to the owning stream actor."""

    def __init__(self, route_table: RouteTable, actors: ActorPool):
        self.route_table = route_table
        self.actors = actors

    def build_event(self, payload: Any, hint: Optional[str] = None) -> InboundEvent:
        """
        Validate a raw payload and resolve its route.

        Raises:
            EventValidationError: Payload is not an object or misses required fields
        """
        if not isinstance(payload, dict):
            raise EventValidationError("Event body must be a JSON object")

        try:
            parsed = EventPayload.model_validate(payload)
        except ValidationError as e:
            errors = [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]
            raise EventValidationError("Malformed event payload", errors=errors) from e

        target = self.route_table.resolve(hint)
        return InboundEvent(
            stream_key=target.stream_key,
            topic=target.topic,
            action=parsed.action,
            subject_id=parsed.subject_id,
            source=parsed.source,
        )

    async def dispatch(self, payload: Any, hint: Optional[str] = None) -> ProcessResult:
        """Build the event and wait for its actor to process it."""
        event = self.build_event(payload, hint)
        return await self.actors.submit(event)
