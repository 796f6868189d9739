import asyncio
from typing import Awaitable, Callable, Optional

import httpx

from supportbot.logging_config import get_logger
from supportbot.services.result import EMPTY_MESSAGE, RECONCILE_ERROR, SEND_ERROR, Result
from supportbot.services.retry import retry_async

logger = get_logger("platform_client")

SEND_MESSAGE_MUTATION = """mutation sendMessage($input: SendMessageInput!) {
  sendMessage(input: $input)
}"""

FEED_TYPE_PREFIXES = (
    ("chat_feed_", "chat_feed"),
    ("dms_feed_", "dms_feed"),
    ("forum_feed_", "forum_feed"),
)
DEFAULT_FEED_TYPE = "chat_feed"

EXPERIENCES_PAGE_SIZE = 50
EXPERIENCES_MAX_PAGES = 100


class PlatformAPIError(Exception):
    pass


def feed_type_for(feed_id: str) -> str:
    for prefix, feed_type in FEED_TYPE_PREFIXES:
        if feed_id.startswith(prefix):
            return feed_type
    return DEFAULT_FEED_TYPE


def truncate_message(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


class PlatformClient:
    """Outbound calls to the community platform: message sends and the experience directory."""

    def __init__(
        self,
        api_key: str,
        bot_user_id: str = "",
        api_url: str = "https://api.whop.com",
        *,
        max_message_length: int = 2000,
        max_retries: int = 3,
        retry_delay_ms: int = 1000,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep_func: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.api_key = api_key
        self.bot_user_id = bot_user_id
        self.api_url = api_url.rstrip("/")
        self.max_message_length = max_message_length
        self.max_retries = max_retries
        self.retry_delay = retry_delay_ms / 1000
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._sleep = sleep_func or asyncio.sleep

    def _headers(self) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.bot_user_id:
            headers["x-on-behalf-of"] = self.bot_user_id
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)

    async def _post_message(self, feed_id: str, text: str) -> str:
        payload = {
            "query": SEND_MESSAGE_MUTATION,
            "variables": {
                "input": {
                    "feedId": feed_id,
                    "feedType": feed_type_for(feed_id),
                    "message": text,
                }
            },
        }
        async with self._client() as client:
            response = await client.post(f"{self.api_url}/public-graphql", headers=self._headers(), json=payload)

        if response.status_code != 200:
            raise PlatformAPIError(f"HTTP {response.status_code}: {response.text[:200]}")
        data = response.json()
        if data.get("errors"):
            raise PlatformAPIError(f"GraphQL error: {data['errors']}")

        sent = (data.get("data") or {}).get("sendMessage")
        if not sent:
            raise PlatformAPIError("No data returned from sendMessage mutation")
        return sent if isinstance(sent, str) else ""

    async def send_message(self, feed_id: str, text: str) -> Result[str]:
        """Send text to a feed. On success the value is the sent message id (may be empty)."""
        text = text.strip()
        if not text:
            logger.warning("Attempted to send empty message", extra={"context": {"feed_id": feed_id}})
            return Result.failure("Message is empty", EMPTY_MESSAGE)

        if len(text) > self.max_message_length:
            logger.warning(
                "Message truncated due to length",
                extra={"context": {"feed_id": feed_id, "original_length": len(text)}},
            )
            text = truncate_message(text, self.max_message_length)

        try:
            message_id = await retry_async(
                lambda: self._post_message(feed_id, text),
                max_retries=self.max_retries,
                base_delay=self.retry_delay,
                operation="send_message",
                sleep_func=self._sleep,
            )
        except (httpx.HTTPError, PlatformAPIError, ValueError) as exc:
            logger.error(
                "Failed to send message after retries",
                extra={"context": {"feed_id": feed_id, "error": str(exc)}},
            )
            return Result.failure(str(exc), SEND_ERROR)

        logger.debug("Message sent", extra={"context": {"feed_id": feed_id, "message_id": message_id}})
        return Result.success(message_id)

    async def list_channel_mappings(self) -> Result[list[tuple[str, str]]]:
        """Every (channel group id, tenant id) pair known to the platform directory."""
        mappings: list[tuple[str, str]] = []
        page = 1
        try:
            async with self._client() as client:
                while page <= EXPERIENCES_MAX_PAGES:
                    response = await client.get(
                        f"{self.api_url}/api/v5/app/experiences",
                        headers=self._headers(),
                        params={"page": page, "per": EXPERIENCES_PAGE_SIZE},
                    )
                    if response.status_code != 200:
                        return Result.failure(f"HTTP {response.status_code}", RECONCILE_ERROR)

                    body = response.json()
                    experiences = body.get("data") or []
                    for experience in experiences:
                        experience_id = experience.get("id")
                        company_id = experience.get("company_id")
                        if experience_id and company_id:
                            mappings.append((experience_id, company_id))

                    total_pages = (body.get("pagination") or {}).get("total_pages") or page
                    if not experiences or page >= total_pages:
                        break
                    page += 1
        except (httpx.HTTPError, ValueError) as exc:
            return Result.failure(str(exc), RECONCILE_ERROR)

        return Result.success(mappings)
