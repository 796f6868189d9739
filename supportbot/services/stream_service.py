"""Persistent websocket connection to the platform event stream."""

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

from supportbot.logging_config import get_logger
from supportbot.services.retry import backoff_delay

logger = get_logger("stream_service")


class StreamExhaustedError(Exception):
    """Reconnect attempts are exhausted; the process should exit non-zero."""


class StreamClient:
    def __init__(
        self,
        url: str,
        api_key: str,
        handler: Callable[[Any], Awaitable[None]],
        *,
        bot_user_id: str = "",
        base_delay_ms: int = 1000,
        max_delay_ms: int = 30000,
        max_attempts: int = 10,
        connect_factory: Optional[Callable[..., Any]] = None,
        sleep_func: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.bot_user_id = bot_user_id
        self.handler = handler
        self.base_delay = base_delay_ms / 1000
        self.max_delay = max_delay_ms / 1000
        self.max_attempts = max_attempts
        self._connect = connect_factory or connect
        self._sleep = sleep_func or asyncio.sleep
        self.reconnect_attempts = 0
        self.connected = False
        self.frames_received = 0

    def _headers(self) -> dict:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self.bot_user_id:
            headers["x-on-behalf-of"] = self.bot_user_id
        return headers

    async def run(self) -> None:
        """Consume the stream forever, reconnecting with backoff. Raises StreamExhaustedError."""
        while True:
            try:
                await self._consume_once()
            except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                logger.warning(
                    "Stream connection failed",
                    extra={"context": {"error": str(exc), "reconnect_attempts": self.reconnect_attempts}},
                )
            finally:
                self.connected = False

            if self.reconnect_attempts >= self.max_attempts:
                logger.error(
                    "Max reconnection attempts reached",
                    extra={"context": {"attempts": self.reconnect_attempts}},
                )
                raise StreamExhaustedError(f"Gave up after {self.reconnect_attempts} reconnect attempts")

            delay = backoff_delay(self.reconnect_attempts, self.base_delay, self.max_delay)
            self.reconnect_attempts += 1
            logger.info(
                f"Reconnecting in {delay:.1f}s (attempt {self.reconnect_attempts}/{self.max_attempts})"
            )
            await self._sleep(delay)

    async def _consume_once(self) -> None:
        logger.info("Connecting to platform stream", extra={"context": {"url": self.url}})
        async with self._connect(self.url, additional_headers=self._headers()) as websocket:
            self.connected = True
            self.reconnect_attempts = 0
            logger.info("Platform stream connected")
            async for frame in websocket:
                await self._dispatch(frame)
        logger.warning("Platform stream closed")

    async def _dispatch(self, frame: Any) -> None:
        self.frames_received += 1
        try:
            data = json.loads(frame)
        except (TypeError, ValueError):
            logger.debug("Dropping non-JSON frame", extra={"context": {"preview": str(frame)[:100]}})
            return
        try:
            await self.handler(data)
        except Exception as exc:
            logger.error(
                "Stream frame handling failed",
                extra={"context": {"error": str(exc), "preview": str(frame)[:100]}},
                exc_info=True,
            )

    def get_stats(self) -> dict:
        return {
            "connected": self.connected,
            "reconnect_attempts": self.reconnect_attempts,
            "frames_received": self.frames_received,
        }
