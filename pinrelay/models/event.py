"""
Inbound event data models.

An event arrives as a raw JSON body, is validated into an EventPayload,
routed to a RouteTarget and frozen into an InboundEvent before it reaches
the owning stream actor.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from pydantic import AliasChoices, BaseModel, Field, model_validator


class EventPayload(BaseModel):
    """The fields the relay needs from a webhook body."""
    action: str = Field(..., min_length=1, description="What happened, e.g. review or push")
    subject_id: int = Field(
        ...,
        validation_alias=AliasChoices("subjectId", "subject_id", "number"),
        description="Numeric id of the subject (PR, issue, build)",
    )
    source: str = Field(
        "",
        validation_alias=AliasChoices("source", "repo"),
        description="Where the event came from, e.g. a repository name",
    )

    model_config = {
        "str_strip_whitespace": True,
        "extra": "ignore",
    }

    @model_validator(mode="before")
    @classmethod
    def pick_repository_name(cls, data: Any) -> Any:
        # GitHub webhooks carry the repo under repository.full_name
        if isinstance(data, dict) and not data.get("source") and not data.get("repo"):
            repository = data.get("repository")
            if isinstance(repository, dict) and repository.get("full_name"):
                data = {**data, "source": repository["full_name"]}
        return data


class RouteTarget(BaseModel):
    """Stream key and forum topic for one routing hint."""
    stream_key: str = Field(..., min_length=1, description="Serialization domain")
    topic: str = Field(..., description="Forum topic (message thread) id")

    model_config = {"frozen": True}


class InboundEvent(BaseModel):
    """A validated, routed event. Immutable once accepted by the router."""
    stream_key: str
    topic: str
    action: str
    subject_id: int
    source: str = ""
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}


class UnpinOutcome(str, Enum):
    """What step 2 of processing did with the previous card."""
    SKIPPED = "skipped"
    UNPINNED = "unpinned"
    NOT_FOUND = "not_found"
    FAILED = "failed"


class ProcessResult(BaseModel):
    """Result of an event that completed all steps."""
    stream_key: str
    topic: str
    message_id: int = Field(..., description="Id of the new pinned card")
    previous_message_id: Optional[int] = Field(None, description="Id that was pinned before")
    unpin_outcome: UnpinOutcome = UnpinOutcome.SKIPPED
    duration_ms: float = 0.0
