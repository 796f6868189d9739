import asyncio
from typing import Optional
from unittest.mock import AsyncMock, Mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from supportbot.config import Settings
from supportbot.database import build_session_factory, create_tables
from supportbot.schemas.chat import Author, NormalizedMessage
from supportbot.services.tenant_store import TenantStore


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualSleep:
    """Sleep replacement that blocks until the test releases it."""

    def __init__(self):
        self.calls: list[float] = []
        self._waiters: list[asyncio.Future] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        await waiter

    def release(self) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)


class FakeRedis:
    """In-memory stand-in for the redis.asyncio commands the answer cache uses."""

    def __init__(self, clock=None):
        self._clock = clock or FakeClock()
        self._data: dict[str, tuple[str, float]] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    async def get(self, key: str):
        self._check()
        entry = self._data.get(key)
        if entry is None or entry[1] <= self._clock():
            self._data.pop(key, None)
            return None
        return entry[0]

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self._check()
        self._data[key] = (value, self._clock() + ttl)
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        return sum(1 for key in keys if self._data.pop(key, None) is not None)

    async def scan_iter(self, match: str = "*"):
        self._check()
        prefix = match.rstrip("*")
        for key in list(self._data):
            if key.startswith(prefix):
                yield key

    async def aclose(self) -> None:
        pass


async def drain(rounds: int = 20) -> None:
    """Let scheduled tasks run to their next suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_message(
    entity_id: str = "post_1",
    content: str = "How do I get a refund?",
    feed_id: str = "chat_feed_1",
    channel_group_id: str = "exp_1",
    author_id: str = "user_1",
    username: Optional[str] = "alice",
    reply_to_id=None,
) -> NormalizedMessage:
    return NormalizedMessage(
        entity_id=entity_id,
        feed_id=feed_id,
        channel_group_id=channel_group_id,
        content=content,
        author=Author(id=author_id, display_name=username or "User", username=username),
        reply_to_id=reply_to_id,
    )


def make_post_envelope(
    entity_id: str = "post_1",
    content: str = "How do I get a refund?",
    feed_id: str = "chat_feed_1",
    experience_id: str = "exp_1",
    user_id: str = "user_1",
    username: str = "alice",
    **extra,
) -> dict:
    post = {
        "entityId": entity_id,
        "feedId": feed_id,
        "experienceId": experience_id,
        "content": content,
        "user": {"id": user_id, "username": username, "name": username.title()},
    }
    post.update(extra)
    return {"feedEntity": {"dmsPost": post}}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manual_sleep():
    return ManualSleep()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        platform_api_key="platform-key",
        ai_api_key="ai-key",
        bot_user_id="bot_user",
        bot_username="supportbot",
        admin_user_id="admin_user",
        admin_api_token="admin-secret",
        answer_cache_enabled=False,
    )


@pytest.fixture
def session_factory():
    factory = build_session_factory("sqlite://")
    create_tables(factory)
    return factory


@pytest.fixture
def store(session_factory):
    return TenantStore(session_factory)


@pytest.fixture
def mock_store():
    store = Mock()
    store.get_tenant_config = AsyncMock(return_value=None)
    store.put_tenant_config = AsyncMock()
    store.get_mapping = AsyncMock(return_value=None)
    store.put_mapping = AsyncMock()
    store.list_mappings = AsyncMock(return_value=[])
    return store
