"""
Telegram Gateway - Adapter for maintaining pinned cards in a Telegram forum.

Wraps the three Bot API methods the relay needs (unpinChatMessage,
sendMessage, pinChatMessage) with bounded retry for transient failures.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from pinrelay.adapters.gateway import MessagingGateway, UnpinResult
from pinrelay.config import config
from pinrelay.errors import GatewayError, PermanentGatewayError, TransientGatewayError

logger = logging.getLogger(__name__)

NOT_FOUND_MARKERS = (
    "message to unpin not found",
    "message not found",
    "message_id_invalid",
)


class TelegramClient:
    """
    Minimal async client for the Telegram Bot API.

    Every call is addressed to the configured chat. HTTP 5xx, 429,
    timeouts and transport errors are retried with exponential backoff;
    anything else raises PermanentGatewayError on the first attempt.
    """

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_count: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep=asyncio.sleep,
    ):
        """
        Initialize the Telegram client.

        Args:
            bot_token: Bot token issued by BotFather
            chat_id: Forum supergroup chat ID
            base_url: Bot API base URL
            timeout: Seconds allowed per HTTP call
            retry_count: Retries after the first attempt for transient failures
            backoff_base: First backoff delay in seconds
            backoff_max: Upper bound for any single delay
            http_client: Preconfigured httpx client (tests inject a MockTransport)
            sleep: Coroutine used for backoff delays
        """
        self.bot_token = bot_token or config.telegram_bot_token
        self.chat_id = chat_id or config.telegram_chat_id

        if not self.bot_token or not self.chat_id:
            raise ValueError(
                "Telegram bot token and chat id must be configured. "
                "Set PINRELAY_TELEGRAM_BOT_TOKEN and PINRELAY_TELEGRAM_CHAT_ID."
            )

        self.base_url = (base_url or config.telegram_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else config.gateway_timeout
        self.retry_count = retry_count if retry_count is not None else config.gateway_retry
        self.backoff_base = backoff_base if backoff_base is not None else config.gateway_backoff_base
        self.backoff_max = backoff_max if backoff_max is not None else config.gateway_backoff_max
        self._http = http_client
        self._sleep = sleep

    @property
    def http(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)

    async def call(self, method: str, payload: Dict[str, Any]) -> Any:
        """
        Call a Bot API method and return its ``result`` field.

        Args:
            method: Bot API method name, e.g. sendMessage
            payload: Method parameters; chat_id is added

        Raises:
            TransientGatewayError: Retries exhausted on a retryable failure
            PermanentGatewayError: Non-retryable failure
        """
        url = f"{self.base_url}/bot{self.bot_token}/{method}"
        body = {"chat_id": self.chat_id, **payload}
        last_error: Optional[GatewayError] = None

        for attempt in range(self.retry_count + 1):
            delay = self._backoff(attempt)
            try:
                resp = await self.http.post(url, json=body, timeout=self.timeout)
            except httpx.TimeoutException as e:
                last_error = TransientGatewayError(method, f"Timeout: {e!r}")
            except httpx.TransportError as e:
                last_error = TransientGatewayError(method, f"Transport error: {e!r}")
            else:
                data = self._decode(resp)
                description = data.get("description") or resp.reason_phrase or f"HTTP {resp.status_code}"
                code = data.get("error_code", resp.status_code)

                if resp.status_code == 429 or resp.status_code >= 500:
                    last_error = TransientGatewayError(method, description, code=code)
                    retry_after = (data.get("parameters") or {}).get("retry_after")
                    if retry_after:
                        delay = min(float(retry_after), self.backoff_max)
                elif resp.status_code >= 400 or not data.get("ok"):
                    raise PermanentGatewayError(method, description, code=code)
                else:
                    return data.get("result")

            if attempt < self.retry_count:
                logger.warning(
                    "telegram_retry method=%s attempt=%d/%d delay=%.2fs error=%s",
                    method, attempt + 1, self.retry_count + 1, delay, last_error,
                )
                await self._sleep(delay)

        logger.error("telegram_gave_up method=%s error=%s", method, last_error)
        raise last_error

    @staticmethod
    def _decode(resp: httpx.Response) -> Dict[str, Any]:
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}


def _thread_id(topic: str) -> Optional[int]:
    """Forum topics are numeric thread ids; an empty topic is the General thread."""
    topic = (topic or "").strip()
    if not topic:
        return None
    try:
        return int(topic)
    except ValueError:
        raise PermanentGatewayError("sendMessage", f"Topic {topic!r} is not a numeric thread id")


class TelegramGateway(MessagingGateway):
    """MessagingGateway backed by the Telegram Bot API."""

    def __init__(self, client: Optional[TelegramClient] = None):
        self._client = client

    @property
    def client(self) -> TelegramClient:
        """Get or create the Telegram client."""
        if self._client is None:
            self._client = TelegramClient()
        return self._client

    async def unpin(self, message_id: int, topic: str) -> UnpinResult:
        try:
            await self.client.call("unpinChatMessage", {"message_id": message_id})
        except PermanentGatewayError as e:
            if any(marker in e.description.lower() for marker in NOT_FOUND_MARKERS):
                logger.info("unpin_not_found message_id=%s topic=%s", message_id, topic)
                return UnpinResult.NOT_FOUND
            raise
        return UnpinResult.SUCCESS

    async def send(self, text: str, topic: str) -> int:
        payload: Dict[str, Any] = {
            "text": text,
            "parse_mode": "MarkdownV2",
            "disable_web_page_preview": True,
        }
        thread_id = _thread_id(topic)
        if thread_id is not None:
            payload["message_thread_id"] = thread_id

        result = await self.client.call("sendMessage", payload)
        if not isinstance(result, dict) or "message_id" not in result:
            raise PermanentGatewayError("sendMessage", "Response carried no message_id")
        return int(result["message_id"])

    async def pin(self, message_id: int, topic: str) -> None:
        await self.client.call(
            "pinChatMessage",
            {"message_id": message_id, "disable_notification": True},
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self.client.aclose()
