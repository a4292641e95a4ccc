"""Per-stream durable state."""

from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field


class ActorState(BaseModel):
    """
    The state a stream actor keeps between events.

    At most one message id is current per stream; absent state means
    nothing has been pinned yet.
    """
    stream_key: str = Field(..., description="Stream this state belongs to")
    pinned_message_id: Optional[int] = Field(None, description="Currently pinned card")
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the state was last written",
    )
