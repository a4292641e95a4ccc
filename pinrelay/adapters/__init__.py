"""External system adapters for the relay."""

from pinrelay.adapters.gateway import MessagingGateway, UnpinResult
from pinrelay.adapters.telegram import TelegramClient, TelegramGateway

__all__ = [
    "MessagingGateway",
    "UnpinResult",
    "TelegramClient",
    "TelegramGateway",
]
