"""Wires every component together once and runs the background loops."""

import asyncio
from typing import Optional

import redis.asyncio as redis_async
from sqlalchemy.orm import sessionmaker

from supportbot.config import Settings
from supportbot.database import build_session_factory, create_tables
from supportbot.logging_config import get_logger
from supportbot.services.answer_cache import AnswerCache
from supportbot.services.config_cache import TenantConfigCache
from supportbot.services.context_store import ContextStore
from supportbot.services.coordinator import BotCoordinator
from supportbot.services.decision_engine import DecisionEngine
from supportbot.services.ingestion_service import IngestionService
from supportbot.services.llm import LLMProvider, OpenRouterProvider
from supportbot.services.platform_client import PlatformClient
from supportbot.services.question_classifier import HeuristicClassifier
from supportbot.services.rate_limiter import RateLimiter
from supportbot.services.stream_service import StreamClient
from supportbot.services.tenant_resolver import TenantResolver
from supportbot.services.tenant_store import TenantStore

logger = get_logger("runtime")


def build_redis_client(settings: Settings):
    if not settings.answer_cache_enabled:
        return None
    return redis_async.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
    )


class BotRuntime:
    def __init__(
        self,
        settings: Settings,
        session_factory: Optional[sessionmaker] = None,
        provider: Optional[LLMProvider] = None,
        platform: Optional[PlatformClient] = None,
        answer_cache: Optional[AnswerCache] = None,
    ):
        self.settings = settings
        self.session_factory = session_factory or build_session_factory(settings.database_url)
        create_tables(self.session_factory)

        self.store = TenantStore(self.session_factory)
        self.rate_limiter = RateLimiter()
        self.config_cache = TenantConfigCache(self.store, ttl_seconds=settings.config_cache_ttl_seconds)
        self.resolver = TenantResolver(
            self.store,
            self.config_cache,
            max_buffered=settings.buffer_max_messages,
            max_attempts=settings.buffer_max_attempts,
            base_delay_ms=settings.buffer_base_delay_ms,
            max_delay_ms=settings.buffer_max_delay_ms,
        )
        self.context_store = ContextStore(
            window_size=settings.context_window_size,
            idle_ttl_seconds=settings.context_idle_ttl_seconds,
        )
        self.classifier = HeuristicClassifier(settings.bot_username, settings.bot_user_id)
        self.provider = provider or OpenRouterProvider(
            api_key=settings.ai_api_key,
            default_model=settings.ai_model,
            base_url=settings.ai_base_url,
            timeout_seconds=settings.ai_timeout_seconds,
        )
        self.answer_cache = answer_cache or AnswerCache(
            build_redis_client(settings),
            ttl_seconds=settings.answer_cache_ttl_seconds,
        )
        self.engine = DecisionEngine(
            self.provider,
            self.rate_limiter,
            self.classifier,
            answer_cache=self.answer_cache,
            ai_rate_limit_per_minute=settings.ai_rate_limit_per_minute,
            max_tokens=settings.ai_max_tokens,
            max_retries=settings.max_retries,
            retry_delay_ms=settings.retry_delay_ms,
        )
        self.platform = platform or PlatformClient(
            api_key=settings.platform_api_key,
            bot_user_id=settings.bot_user_id,
            api_url=settings.platform_api_url,
            max_message_length=settings.max_message_length,
            max_retries=settings.max_retries,
            retry_delay_ms=settings.retry_delay_ms,
        )
        self.ingestion = IngestionService(
            self.resolver,
            bot_user_id=settings.bot_user_id,
            max_message_length=settings.max_message_length,
            dedup_cache_size=settings.dedup_cache_size,
            duplicate_window_seconds=settings.duplicate_window_seconds,
        )
        self.coordinator = BotCoordinator(
            ingestion=self.ingestion,
            resolver=self.resolver,
            config_cache=self.config_cache,
            engine=self.engine,
            context_store=self.context_store,
            platform=self.platform,
            rate_limiter=self.rate_limiter,
            classifier=self.classifier,
            admin_user_id=settings.admin_user_id,
            admin_reset_command=settings.admin_reset_command,
            message_rate_limit_per_minute=settings.message_rate_limit_per_minute,
            in_flight_grace_seconds=settings.in_flight_grace_seconds,
            tracked_bot_messages=settings.tracked_bot_messages,
        )
        self.stream = StreamClient(
            settings.platform_ws_url,
            settings.platform_api_key,
            self.coordinator.on_envelope,
            bot_user_id=settings.bot_user_id,
            base_delay_ms=settings.reconnect_base_delay_ms,
            max_delay_ms=settings.reconnect_max_delay_ms,
            max_attempts=settings.reconnect_max_attempts,
        )

        self.stream_task: Optional[asyncio.Task] = None
        self._loop_tasks: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return self.stream_task is not None and not self.stream_task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        # Mappings must be in memory before the first post arrives.
        await self.resolver.load_persisted()
        self._loop_tasks = [
            asyncio.create_task(self.coordinator.run_replay_consumer()),
            asyncio.create_task(self._maintenance_loop()),
        ]
        self.stream_task = asyncio.create_task(self.stream.run())
        logger.info("Bot runtime started")

    async def wait(self) -> None:
        """Block until the stream gives up. Re-raises StreamExhaustedError."""
        if self.stream_task is None:
            return
        await self.stream_task

    async def _maintenance_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.settings.maintenance_interval_seconds)
                await self.coordinator.perform_maintenance()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error(
                    "Maintenance loop failed",
                    extra={"context": {"error": str(exc)}},
                )

    async def stop(self) -> None:
        tasks = list(self._loop_tasks)
        if self.stream_task is not None:
            tasks.append(self.stream_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_tasks = []
        self.stream_task = None
        await self.coordinator.shutdown()
        await self.resolver.shutdown()
        await self.answer_cache.close()
        logger.info("Bot runtime stopped")

    def get_stats(self) -> dict:
        return {
            "running": self.is_running,
            "stream": self.stream.get_stats(),
            **self.coordinator.get_stats(),
        }
