"""
Messaging Gateway - The three remote operations a stream actor needs.

Implementations wrap a messaging platform and apply their own bounded
retry; callers only see a result or a GatewayError.
"""

from abc import ABC, abstractmethod
from enum import Enum


class UnpinResult(str, Enum):
    """Outcome of an unpin. Both values count as success."""
    SUCCESS = "success"
    NOT_FOUND = "not_found"


class MessagingGateway(ABC):
    """Unpin / send / pin against one chat, addressed per topic."""

    @abstractmethod
    async def unpin(self, message_id: int, topic: str) -> UnpinResult:
        """Unpin a message. A message that is gone or not pinned is NOT_FOUND."""

    @abstractmethod
    async def send(self, text: str, topic: str) -> int:
        """Post a card to a topic and return its message id."""

    @abstractmethod
    async def pin(self, message_id: int, topic: str) -> None:
        """Pin a message."""

    async def aclose(self) -> None:
        """Release network resources."""
