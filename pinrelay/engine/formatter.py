"""
Card formatter - Renders the status card for an event.

Rendering is a pure function of the event: no clock, no state, no I/O.
"""

import re
from typing import Optional

from jinja2 import Environment, StrictUndefined

from pinrelay.models.event import InboundEvent

MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")

DEFAULT_CARD_TEMPLATE = (
    "*{{ action | md }}* \\#{{ subject_id }}"
    "{% if source %} – {{ source | md }}{% endif %}"
)


def escape_markdown_v2(value) -> str:
    """Escape text for Telegram MarkdownV2."""
    return MARKDOWN_V2_SPECIAL.sub(r"\\\1", str(value))


class CardFormatter:
    """Builds OutboundCard text from an InboundEvent with a Jinja2 template."""

    def __init__(self, template: Optional[str] = None):
        env = Environment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=False)
        env.filters["md"] = escape_markdown_v2
        self.template = env.from_string(template or DEFAULT_CARD_TEMPLATE)

    def render(self, event: InboundEvent) -> str:
        return self.template.render(
            action=event.action,
            subject_id=event.subject_id,
            source=event.source,
            stream_key=event.stream_key,
        )
