"""Per-message orchestration: resolve tenant, load config, decide, send, remember."""

import asyncio
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from supportbot.logging_config import LoggerAdapter, get_logger
from supportbot.schemas.chat import ContextEntry, NormalizedMessage
from supportbot.services.config_cache import TenantConfigCache
from supportbot.services.context_store import ContextStore
from supportbot.services.decision_engine import DecisionEngine
from supportbot.services.ingestion_service import IngestionService
from supportbot.services.platform_client import PlatformClient
from supportbot.services.question_classifier import QuestionClassifier
from supportbot.services.rate_limiter import RateLimiter, send_key
from supportbot.services.tenant_resolver import TenantResolver

logger = get_logger("coordinator")

NOT_CONFIGURED_MESSAGE = (
    "This community hasn't set up the support bot yet. "
    "Please ask the community administrators to configure it."
)
RESET_REPLY = "Conversation context cleared."
RATE_WINDOW_MS = 60_000


class BotCoordinator:
    def __init__(
        self,
        *,
        ingestion: IngestionService,
        resolver: TenantResolver,
        config_cache: TenantConfigCache,
        engine: DecisionEngine,
        context_store: ContextStore,
        platform: PlatformClient,
        rate_limiter: RateLimiter,
        classifier: QuestionClassifier,
        admin_user_id: str = "",
        admin_reset_command: str = "!reset",
        message_rate_limit_per_minute: int = 30,
        in_flight_grace_seconds: float = 5,
        tracked_bot_messages: int = 500,
        sleep_func: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.ingestion = ingestion
        self.resolver = resolver
        self.config_cache = config_cache
        self.engine = engine
        self.context_store = context_store
        self.platform = platform
        self.rate_limiter = rate_limiter
        self.classifier = classifier
        self.admin_user_id = admin_user_id
        self.admin_reset_command = admin_reset_command
        self.message_rate_limit_per_minute = message_rate_limit_per_minute
        self.in_flight_grace_seconds = in_flight_grace_seconds
        self.tracked_bot_messages = tracked_bot_messages
        self._sleep = sleep_func or asyncio.sleep
        self._in_flight: set[tuple[str, str]] = set()
        self._bot_message_ids: OrderedDict[str, None] = OrderedDict()
        self._tasks: set[asyncio.Task] = set()
        self.log = LoggerAdapter(logger, {"component": "coordinator"})

    async def on_envelope(self, envelope: Any) -> None:
        """Stream handler: ingest one decoded frame and process it in the background."""
        message = self.ingestion.ingest(envelope)
        if message is not None:
            self._spawn(self.process_message(message))

    async def process_message(self, message: NormalizedMessage) -> None:
        key = message.key
        if key in self._in_flight:
            self.log.debug("Message already in flight", context={"entity_id": message.entity_id})
            return
        self._in_flight.add(key)

        tenant_id = self.resolver.resolve(message.channel_group_id)
        if tenant_id is None:
            self.resolver.buffer_message(message)
            self._in_flight.discard(key)
            return

        try:
            await self._respond(message, tenant_id)
        except Exception as exc:
            self.log.error(
                "Message processing failed",
                context={"entity_id": message.entity_id, "tenant_id": tenant_id, "error": str(exc)},
                exc_info=True,
            )
        finally:
            self._release_later(key)

    async def _respond(self, message: NormalizedMessage, tenant_id: str) -> None:
        if self._is_reset_command(message):
            self.context_store.clear(tenant_id)
            self.log.info("Context reset by admin", context={"tenant_id": tenant_id})
            await self._send(message.feed_id, RESET_REPLY, tenant_id)
            return

        config = await self.config_cache.get(tenant_id)
        force_respond = self._should_force_respond(message)

        if config.force_mention_only and not force_respond:
            return

        if not config.is_configured:
            if force_respond:
                self.log.info("Tenant not configured, sending notice", context={"tenant_id": tenant_id})
                await self._send(message.feed_id, NOT_CONFIGURED_MESSAGE, tenant_id)
            return

        context_text = self.context_store.format_context(tenant_id)
        answer = await self.engine.decide(message, tenant_id, config, context_text, force_respond)
        if answer is None:
            return

        if await self._send(message.feed_id, answer, tenant_id):
            now = datetime.now(timezone.utc)
            self.context_store.append(
                tenant_id,
                ContextEntry(content=message.content, author=message.author.display_name, is_bot=False, timestamp=now),
            )
            self.context_store.append(
                tenant_id,
                ContextEntry(content=answer, author="assistant", is_bot=True, timestamp=now),
            )

    def _is_reset_command(self, message: NormalizedMessage) -> bool:
        return (
            bool(self.admin_user_id)
            and message.author.id == self.admin_user_id
            and message.content.strip() == self.admin_reset_command
        )

    def _should_force_respond(self, message: NormalizedMessage) -> bool:
        if self.classifier.is_direct_mention(message.content):
            return True
        return self.is_bot_message(message.reply_to_id) and self.classifier.looks_like_question(message.content)

    async def _send(self, feed_id: str, text: str, tenant_id: str) -> bool:
        if not self.rate_limiter.allow(send_key(feed_id), self.message_rate_limit_per_minute, RATE_WINDOW_MS):
            self.log.warning("Send rate limit reached, dropping answer", context={"feed_id": feed_id, "tenant_id": tenant_id})
            return False

        result = await self.platform.send_message(feed_id, text)
        if not result.ok:
            return False
        if result.value:
            self._track_bot_message(result.value)
        return True

    def _track_bot_message(self, message_id: str) -> None:
        self._bot_message_ids[message_id] = None
        while len(self._bot_message_ids) > self.tracked_bot_messages:
            self._bot_message_ids.popitem(last=False)

    def is_bot_message(self, message_id: Optional[str]) -> bool:
        return bool(message_id) and message_id in self._bot_message_ids

    def _release_later(self, key: tuple[str, str]) -> None:
        if self.in_flight_grace_seconds <= 0:
            self._in_flight.discard(key)
            return

        async def _release():
            try:
                await self._sleep(self.in_flight_grace_seconds)
            finally:
                self._in_flight.discard(key)

        self._spawn(_release())

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_replay_consumer(self) -> None:
        """Replay buffered messages whenever the resolver reports a new mapping."""
        while True:
            try:
                event = await self.resolver.events.get()
                messages = self.resolver.take_pending(event.channel_group_id)
                if messages:
                    self.log.info(
                        "Replaying buffered messages",
                        context={
                            "channel_group_id": event.channel_group_id,
                            "tenant_id": event.tenant_id,
                            "count": len(messages),
                        },
                    )
                for message in messages:
                    self._spawn(self.process_message(message))
            except asyncio.CancelledError:
                break
            except Exception as exc:
                self.log.error("Replay consumer failed", context={"error": str(exc)})

    async def perform_maintenance(self) -> dict:
        results = dict(self.ingestion.cleanup())
        results["expired_context_windows"] = self.context_store.expire_idle()
        results["expired_rate_windows"] = self.rate_limiter.sweep()
        results["expired_configs"] = self.config_cache.cleanup_expired()
        results["reconciled_mappings"] = await self.resolver.reconcile(self.platform)
        self.log.info("Maintenance complete", context=results)
        return results

    def get_stats(self) -> dict:
        return {
            "in_flight": len(self._in_flight),
            "tracked_bot_messages": len(self._bot_message_ids),
            "background_tasks": len(self._tasks),
            "ingestion": self.ingestion.get_stats(),
            "resolver": self.resolver.get_stats(),
            "config_cache": self.config_cache.get_stats(),
            "decision_engine": self.engine.get_stats(),
            "context": self.context_store.get_stats(),
            "rate_limiter": self.rate_limiter.get_stats(),
        }

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._in_flight.clear()
