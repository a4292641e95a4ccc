"""
Tests for card rendering.
"""
from pinrelay.engine.formatter import CardFormatter, escape_markdown_v2

from tests.conftest import make_event


def test_default_card():
    card = CardFormatter().render(make_event("review", 42))
    assert card == "*review* \\#42"


def test_card_with_source():
    card = CardFormatter().render(make_event("push", 7, source="acme/mobile-app"))
    assert card == "*push* \\#7 – acme/mobile\\-app"


def test_user_text_is_escaped():
    card = CardFormatter().render(make_event("ready_for_review", 1, source="a.b"))
    assert card == "*ready\\_for\\_review* \\#1 – a\\.b"


def test_rendering_is_deterministic():
    formatter = CardFormatter()
    event = make_event("review", 42, source="acme/app")
    assert formatter.render(event) == formatter.render(event)


def test_custom_template():
    formatter = CardFormatter("{{ stream_key }}: {{ action | md }} {{ subject_id }}")
    assert formatter.render(make_event("merged", 3)) == "mobile-app: merged 3"


def test_escape_all_special_characters():
    assert escape_markdown_v2("_*[]()~`>#+-=|{}.!\\") == (
        "\\_\\*\\[\\]\\(\\)\\~\\`\\>\\#\\+\\-\\=\\|\\{\\}\\.\\!\\\\"
    )
