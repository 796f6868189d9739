import hashlib
import json
from typing import Any, Optional

from redis.exceptions import RedisError

from supportbot.logging_config import get_logger

logger = get_logger("answer_cache")

ANSWER_CACHE_PREFIX = "supportbot:answer"


def build_answer_key(tenant_id: str, normalized_question: str) -> str:
    digest = hashlib.sha256(f"{tenant_id}:{normalized_question}".encode("utf-8")).hexdigest()
    return f"{ANSWER_CACHE_PREFIX}:{tenant_id}:{digest}"


class AnswerCache:
    """Generated answers keyed by (tenant, normalized question), expired by redis TTL.

    A ``None`` client disables the cache. Redis failures read as a miss.
    """

    def __init__(self, client: Optional[Any], ttl_seconds: int = 300):
        self._client = client
        self.ttl_seconds = int(ttl_seconds)
        self.hits = 0
        self.misses = 0

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def get(self, tenant_id: str, normalized_question: str) -> Optional[str]:
        if not self._client:
            return None
        key = build_answer_key(tenant_id, normalized_question)
        try:
            payload = await self._client.get(key)
        except (RedisError, OSError) as exc:
            logger.warning("Answer cache read failed", extra={"context": {"tenant_id": tenant_id, "error": str(exc)}})
            return None

        answer = None
        if payload:
            try:
                data = json.loads(payload)
            except ValueError as exc:
                logger.warning("Answer cache decode failed", extra={"context": {"error": str(exc)}})
                data = None
            answer = data.get("answer") if isinstance(data, dict) else None

        if not isinstance(answer, str) or not answer.strip():
            self.misses += 1
            return None
        self.hits += 1
        return answer

    async def set(self, tenant_id: str, normalized_question: str, answer: str) -> None:
        if not self._client or not answer:
            return
        key = build_answer_key(tenant_id, normalized_question)
        payload = json.dumps({"answer": answer}, ensure_ascii=False)
        try:
            await self._client.setex(key, self.ttl_seconds, payload)
        except (RedisError, OSError) as exc:
            logger.warning("Answer cache write failed", extra={"context": {"tenant_id": tenant_id, "error": str(exc)}})

    async def clear(self) -> int:
        if not self._client:
            return 0
        removed = 0
        try:
            async for key in self._client.scan_iter(match=f"{ANSWER_CACHE_PREFIX}:*"):
                removed += await self._client.delete(key)
        except (RedisError, OSError) as exc:
            logger.warning("Answer cache clear failed", extra={"context": {"error": str(exc)}})
        return removed

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()

    def get_stats(self) -> dict:
        return {
            "answer_cache_enabled": self.enabled,
            "answer_cache_hits": self.hits,
            "answer_cache_misses": self.misses,
        }
