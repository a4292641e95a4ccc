"""
Tests for the route table and event router.
"""
import pytest
from pydantic import ValidationError

from pinrelay.engine.router import RouteTable
from pinrelay.errors import EventValidationError, RouteConfigError


class TestRouteTable:

    def test_resolves_known_hint(self, route_table):
        target = route_table.resolve("mobile-app")
        assert target.stream_key == "mobile-app"
        assert target.topic == "101"

    @pytest.mark.parametrize("hint", [None, "", "unknown-stream"])
    def test_unknown_or_missing_hint_falls_back_to_default(self, route_table, hint):
        target = route_table.resolve(hint)
        assert target.stream_key == "forum-polish"
        assert target.topic == "102"

    def test_default_with_own_key_is_namespaced(self):
        table = RouteTable.from_dict({
            "routes": {"mobile-app": {"topic": "101"}},
            "default": {"stream_key": "mobile-app", "topic": "999"},
        })

        assert table.default.stream_key == "default:mobile-app"
        assert table.resolve("nope").topic == "999"
        assert table.resolve("mobile-app").stream_key == "mobile-app"

    def test_hints_can_share_a_stream(self):
        table = RouteTable.from_dict({
            "routes": {"ios": {"stream_key": "mobile-app", "topic": 7}, "android": {"stream_key": "mobile-app", "topic": 7}},
            "default": {"route": "ios"},
        })

        assert table.resolve("ios") == table.resolve("android")
        assert table.resolve("ios").topic == "7"

    @pytest.mark.parametrize("data", [
        [],
        {"routes": {"a": {"topic": "1"}}},
        {"routes": {"a": {"topic": "1"}}, "default": {"route": "b"}},
        {"routes": {"a": {"stream_key": "s"}}, "default": {"route": "a"}},
        {"routes": ["a"], "default": {"route": "a"}},
        {
            "routes": {"a": {"stream_key": "s", "topic": "1"}, "b": {"stream_key": "s", "topic": "2"}},
            "default": {"route": "a"},
        },
    ])
    def test_malformed_config_is_rejected(self, data):
        with pytest.raises(RouteConfigError):
            RouteTable.from_dict(data)

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "routes.yaml"
        path.write_text(
            "routes:\n"
            "  mobile-app:\n"
            "    topic: 101\n"
            "default:\n"
            "  stream_key: fallback\n"
            "  topic: 5\n",
            encoding="utf-8",
        )

        table = RouteTable.load(path)

        assert table.resolve("mobile-app").topic == "101"
        assert table.default.stream_key == "default:fallback"

    def test_load_without_file_uses_builtin_routes(self, tmp_path):
        table = RouteTable.load(tmp_path / "missing.yaml")

        assert set(table.routes) == {"mobile-app", "forum-polish"}
        assert table.default.stream_key == "forum-polish"

    def test_invalid_yaml_is_rejected(self, tmp_path):
        path = tmp_path / "routes.yaml"
        path.write_text("routes: [unclosed\n", encoding="utf-8")

        with pytest.raises(RouteConfigError):
            RouteTable.load(path)


class TestEventRouter:

    def test_build_event_resolves_route(self, router):
        event = router.build_event({"action": "review", "subjectId": 42}, "mobile-app")

        assert event.stream_key == "mobile-app"
        assert event.topic == "101"
        assert event.action == "review"
        assert event.subject_id == 42
        assert event.source == ""

    def test_github_style_payload_is_accepted(self, router):
        event = router.build_event(
            {"action": "opened", "number": 7, "repository": {"full_name": "acme/app"}},
            "mobile-app",
        )

        assert event.subject_id == 7
        assert event.source == "acme/app"

    def test_unrecognized_hint_uses_default(self, router):
        event = router.build_event({"action": "push", "subjectId": 1}, "does-not-exist")

        assert event.stream_key == "forum-polish"
        assert event.topic == "102"

    @pytest.mark.parametrize("payload", [
        {},
        {"action": "review"},
        {"subjectId": 42},
        {"action": "   ", "subjectId": 42},
        {"action": "review", "subjectId": "forty-two"},
        ["action", "review"],
        "review",
    ])
    def test_malformed_payload_is_rejected(self, router, payload):
        with pytest.raises(EventValidationError):
            router.build_event(payload, "mobile-app")

    def test_validation_error_lists_fields(self, router):
        with pytest.raises(EventValidationError) as exc:
            router.build_event({"action": "review"}, "mobile-app")

        assert exc.value.errors
        assert "subject" in exc.value.errors[0]["field"].lower()

    def test_event_is_immutable(self, router):
        event = router.build_event({"action": "review", "subjectId": 42}, "mobile-app")

        with pytest.raises(ValidationError):
            event.action = "push"

    @pytest.mark.asyncio
    async def test_dispatch_reaches_actor(self, router, gateway, store):
        result = await router.dispatch({"action": "review", "subjectId": 42}, "mobile-app")

        assert result.message_id == 1001
        assert (await store.get("mobile-app")).pinned_message_id == 1001

    @pytest.mark.asyncio
    async def test_malformed_event_is_never_dispatched(self, router, gateway, call_log):
        with pytest.raises(EventValidationError):
            await router.dispatch({"action": "review"}, "mobile-app")

        assert call_log == []
        assert len(router.actors) == 0
