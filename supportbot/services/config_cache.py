import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import ValidationError

from supportbot.logging_config import get_logger
from supportbot.schemas.tenant import TenantConfig
from supportbot.services.tenant_store import StoreError, TenantStore

logger = get_logger("config_cache")


@dataclass
class _CachedConfig:
    config: TenantConfig
    stored_at: float


def build_tenant_config(raw: Any, tenant_id: str = "") -> TenantConfig:
    """Merge a stored config over the defaults, dropping fields that fail validation."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        logger.warning(
            "Stored tenant config is not an object, using defaults",
            extra={"context": {"tenant_id": tenant_id, "type": type(raw).__name__}},
        )
        raw = {}
    data = dict(raw)
    while True:
        try:
            return TenantConfig.model_validate(data)
        except ValidationError as exc:
            invalid = {str(error["loc"][0]) for error in exc.errors() if error.get("loc")}
            invalid &= set(data)
            logger.warning(
                "Invalid stored tenant config fields, using defaults",
                extra={"context": {"tenant_id": tenant_id, "fields": sorted(invalid)}},
            )
            if not invalid:
                return TenantConfig()
            for key in invalid:
                data.pop(key, None)


class TenantConfigCache:
    """TTL cache in front of the tenant configuration store."""

    def __init__(
        self,
        store: TenantStore,
        ttl_seconds: float = 30,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._store = store
        self._ttl = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: dict[str, _CachedConfig] = {}

    async def get(self, tenant_id: str, force_refresh: bool = False) -> TenantConfig:
        cached = self._entries.get(tenant_id)
        now = self._clock()
        if not force_refresh and cached and now - cached.stored_at < self._ttl:
            return cached.config

        try:
            raw = await self._store.get_tenant_config(tenant_id)
        except StoreError as exc:
            if cached:
                logger.warning(
                    "Config store read failed, serving stale config",
                    extra={"context": {"tenant_id": tenant_id, "error": str(exc)}},
                )
                return cached.config
            logger.error(
                "Config store read failed, serving defaults",
                extra={"context": {"tenant_id": tenant_id, "error": str(exc)}},
            )
            return TenantConfig()

        config = build_tenant_config(raw, tenant_id)
        self._entries[tenant_id] = _CachedConfig(config=config, stored_at=self._clock())
        logger.debug(
            "Tenant config loaded",
            extra={
                "context": {
                    "tenant_id": tenant_id,
                    "enabled": config.enabled,
                    "has_knowledge_base": bool(config.knowledge_base_text),
                    "preset_count": len(config.preset_qa),
                }
            },
        )
        return config

    def invalidate(self, tenant_id: str) -> None:
        if self._entries.pop(tenant_id, None) is not None:
            logger.info("Tenant config cache invalidated", extra={"context": {"tenant_id": tenant_id}})

    def clear(self) -> None:
        self._entries.clear()

    def cleanup_expired(self) -> int:
        now = self._clock()
        expired = [tenant_id for tenant_id, entry in self._entries.items() if now - entry.stored_at >= self._ttl]
        for tenant_id in expired:
            del self._entries[tenant_id]
        return len(expired)

    def get_stats(self) -> dict:
        return {"cached_configs": len(self._entries), "ttl_seconds": self._ttl}
