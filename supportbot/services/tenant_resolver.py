"""Channel-group to tenant resolution.

Mappings arrive on the platform stream, are mirrored into the persistent store
for warm restarts, and are periodically reconciled against the platform's
directory. Messages whose channel group is not mapped yet wait in a bounded
per-group buffer; when a mapping shows up a ``MappingResolved`` event is put on
``events`` and whoever consumes it takes the buffered messages with
``take_pending``.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from supportbot.logging_config import get_logger
from supportbot.schemas.chat import NormalizedMessage
from supportbot.services.config_cache import TenantConfigCache
from supportbot.services.retry import backoff_delay
from supportbot.services.tenant_store import StoreError, TenantStore

logger = get_logger("tenant_resolver")


@dataclass(frozen=True)
class MappingResolved:
    channel_group_id: str
    tenant_id: str


@dataclass
class PendingBuffer:
    messages: deque = field(default_factory=deque)
    attempts: int = 0
    retry_task: Optional[asyncio.Task] = None


class TenantResolver:
    def __init__(
        self,
        store: TenantStore,
        config_cache: TenantConfigCache,
        *,
        max_buffered: int = 50,
        max_attempts: int = 5,
        base_delay_ms: int = 500,
        max_delay_ms: int = 5000,
        sleep_func: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._store = store
        self._config_cache = config_cache
        self._max_buffered = max_buffered
        self._max_attempts = max_attempts
        self._base_delay = base_delay_ms / 1000
        self._max_delay = max_delay_ms / 1000
        self._sleep = sleep_func or asyncio.sleep
        self._mappings: dict[str, str] = {}
        self._pending: dict[str, PendingBuffer] = {}
        self._background: set[asyncio.Task] = set()
        self.events: asyncio.Queue[MappingResolved] = asyncio.Queue()

    def resolve(self, channel_group_id: str) -> Optional[str]:
        return self._mappings.get(channel_group_id)

    def register_mapping(self, channel_group_id: str, tenant_id: str, persist: bool = True) -> bool:
        """Record a mapping. Returns True when it was new or changed."""
        previous = self._mappings.get(channel_group_id)
        if previous == tenant_id:
            return False

        self._mappings[channel_group_id] = tenant_id
        logger.info(
            "Channel mapping registered",
            extra={
                "context": {
                    "channel_group_id": channel_group_id,
                    "tenant_id": tenant_id,
                    "previous_tenant_id": previous,
                }
            },
        )

        if persist:
            self._spawn(self._persist(channel_group_id, tenant_id))
        if previous is not None:
            self._config_cache.invalidate(tenant_id)
        if channel_group_id in self._pending:
            self._publish(channel_group_id, tenant_id)
        return True

    def buffer_message(self, message: NormalizedMessage) -> None:
        channel_group_id = message.channel_group_id
        pending = self._pending.get(channel_group_id)
        if pending is None:
            pending = PendingBuffer()
            self._pending[channel_group_id] = pending

        if len(pending.messages) >= self._max_buffered:
            dropped = pending.messages.popleft()
            logger.warning(
                "Pending buffer full, dropping oldest message",
                extra={"context": {"channel_group_id": channel_group_id, "entity_id": dropped.entity_id}},
            )
        pending.messages.append(message)
        logger.debug(
            "Message buffered awaiting mapping",
            extra={
                "context": {
                    "channel_group_id": channel_group_id,
                    "entity_id": message.entity_id,
                    "buffered": len(pending.messages),
                }
            },
        )

        if pending.retry_task is None or pending.retry_task.done():
            pending.retry_task = self._spawn(self._retry_pending(channel_group_id))

    def take_pending(self, channel_group_id: str) -> list[NormalizedMessage]:
        """Remove and return every message buffered for a channel group."""
        pending = self._pending.pop(channel_group_id, None)
        if pending is None:
            return []
        if pending.retry_task is not None and pending.retry_task is not asyncio.current_task():
            pending.retry_task.cancel()
        return list(pending.messages)

    async def _retry_pending(self, channel_group_id: str) -> None:
        while True:
            pending = self._pending.get(channel_group_id)
            if pending is None:
                return
            await self._sleep(backoff_delay(pending.attempts, self._base_delay, self._max_delay))

            pending = self._pending.get(channel_group_id)
            if pending is None:
                return

            tenant_id = self._mappings.get(channel_group_id)
            if tenant_id is None:
                tenant_id = await self._lookup_persisted(channel_group_id)
            if tenant_id is not None:
                self._publish(channel_group_id, tenant_id)
                return

            pending.attempts += 1
            if pending.attempts >= self._max_attempts:
                self._pending.pop(channel_group_id, None)
                logger.warning(
                    "Mapping never arrived, dropping buffered messages",
                    extra={
                        "context": {
                            "channel_group_id": channel_group_id,
                            "dropped": len(pending.messages),
                            "attempts": pending.attempts,
                        }
                    },
                )
                return

    async def _lookup_persisted(self, channel_group_id: str) -> Optional[str]:
        try:
            tenant_id = await self._store.get_mapping(channel_group_id)
        except StoreError as exc:
            logger.warning(
                "Mapping lookup failed",
                extra={"context": {"channel_group_id": channel_group_id, "error": str(exc)}},
            )
            return None
        if tenant_id is not None:
            self._mappings[channel_group_id] = tenant_id
        return tenant_id

    def _publish(self, channel_group_id: str, tenant_id: str) -> None:
        self.events.put_nowait(MappingResolved(channel_group_id=channel_group_id, tenant_id=tenant_id))

    async def _persist(self, channel_group_id: str, tenant_id: str) -> None:
        try:
            await self._store.put_mapping(channel_group_id, tenant_id)
        except StoreError as exc:
            logger.error(
                "Failed to persist channel mapping",
                extra={"context": {"channel_group_id": channel_group_id, "tenant_id": tenant_id, "error": str(exc)}},
            )

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def load_persisted(self) -> int:
        """Warm the in-memory map from the store. Called before the stream opens."""
        try:
            rows = await self._store.list_mappings()
        except StoreError as exc:
            logger.error("Failed to load persisted mappings", extra={"context": {"error": str(exc)}})
            return 0
        for channel_group_id, tenant_id in rows:
            self._mappings[channel_group_id] = tenant_id
        logger.info(f"Loaded {len(rows)} persisted channel mappings")
        return len(rows)

    async def reconcile(self, platform_client) -> int:
        """Register every new or changed mapping from the platform directory."""
        result = await platform_client.list_channel_mappings()
        if not result.ok:
            logger.warning(
                "Mapping reconciliation failed",
                extra={"context": {"error": result.error, "error_code": result.error_code}},
            )
            return 0

        changed = 0
        for channel_group_id, tenant_id in result.value or []:
            if self.register_mapping(channel_group_id, tenant_id):
                changed += 1
        logger.info(
            "Mapping reconciliation complete",
            extra={"context": {"listed": len(result.value or []), "changed": changed}},
        )
        return changed

    async def shutdown(self) -> None:
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def get_stats(self) -> dict:
        return {
            "mappings": len(self._mappings),
            "pending_buffers": len(self._pending),
            "buffered_messages": sum(len(p.messages) for p in self._pending.values()),
        }
