"""Stream ingestion: envelope parsing, deduplication and normalisation.

Malformed envelopes are dropped with a debug log; the upstream stream is not
under our control so nothing here raises.
"""

import re
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Any, Callable, Optional

from supportbot.logging_config import get_logger
from supportbot.schemas.chat import Author, NormalizedMessage
from supportbot.schemas.envelope import MappingAdvertisement, parse_envelope

logger = get_logger("ingestion")

FEED_HISTORY_LIMIT = 50
FEED_HISTORY_MAX_AGE_SECONDS = 3600

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_ANGLE_BRACKETS = re.compile(r"[<>]")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")


def sanitize_text(text: str) -> str:
    text = _CONTROL_CHARS.sub("", text)
    text = _ANGLE_BRACKETS.sub("", text)
    return _EXCESS_NEWLINES.sub("\n\n", text).strip()


def truncate_text(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


@dataclass
class _RecentPost:
    content: str
    seen_at: float


class IngestionService:
    def __init__(
        self,
        resolver,
        *,
        bot_user_id: str = "",
        max_message_length: int = 2000,
        dedup_cache_size: int = 2000,
        duplicate_window_seconds: float = 15,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._resolver = resolver
        self._bot_user_id = bot_user_id
        self._max_message_length = max_message_length
        self._dedup_cache_size = dedup_cache_size
        self._duplicate_window = duplicate_window_seconds
        self._clock = clock or time.monotonic
        self._seen_entities: OrderedDict[str, None] = OrderedDict()
        self._last_post_by_author: dict[tuple[str, str], _RecentPost] = {}
        self._feed_history: dict[str, deque] = {}

        if not bot_user_id:
            logger.warning("BOT_USER_ID is not set, the bot's own messages will not be filtered")

    def ingest(self, envelope: Any) -> Optional[NormalizedMessage]:
        parsed = parse_envelope(envelope)
        if parsed is None:
            logger.debug("Dropping unrecognised envelope")
            return None

        if isinstance(parsed, MappingAdvertisement):
            self._resolver.register_mapping(parsed.channel_group_id, parsed.tenant_id)
            return None

        post = parsed.post
        if not post.entity_id:
            logger.debug("Dropping post without entity id")
            return None
        if self._is_seen(post.entity_id):
            logger.debug("Duplicate entity id", extra={"context": {"entity_id": post.entity_id}})
            return None
        self._remember(post.entity_id)

        author_id = post.user.id if post.user else None
        if self._bot_user_id and author_id == self._bot_user_id:
            return None

        raw_text = post.text
        if not isinstance(raw_text, str) or not raw_text.strip():
            logger.debug("Dropping post without text content", extra={"context": {"entity_id": post.entity_id}})
            return None
        if not post.feed_id or not post.experience_id or not author_id:
            logger.debug(
                "Dropping post missing routing fields",
                extra={
                    "context": {
                        "entity_id": post.entity_id,
                        "feed_id": post.feed_id,
                        "channel_group_id": post.experience_id,
                    }
                },
            )
            return None

        content = truncate_text(sanitize_text(raw_text), self._max_message_length)
        if not content:
            return None

        if self._is_repeat(author_id, post.feed_id, content):
            logger.info(
                "Skipping repeated content from author",
                extra={"context": {"author_id": author_id, "feed_id": post.feed_id, "entity_id": post.entity_id}},
            )
            return None

        display_name = post.user.username or post.user.name or "User"
        message = NormalizedMessage(
            entity_id=post.entity_id,
            feed_id=post.feed_id,
            channel_group_id=post.experience_id,
            content=content,
            author=Author(id=author_id, display_name=display_name, username=post.user.username or None),
            reply_to_id=post.replying_to_post_id,
        )
        self._record_history(message)
        return message

    def _is_seen(self, entity_id: str) -> bool:
        if entity_id in self._seen_entities:
            self._seen_entities.move_to_end(entity_id)
            return True
        return False

    def _remember(self, entity_id: str) -> None:
        self._seen_entities[entity_id] = None
        while len(self._seen_entities) > self._dedup_cache_size:
            self._seen_entities.popitem(last=False)

    def _is_repeat(self, author_id: str, feed_id: str, content: str) -> bool:
        now = self._clock()
        key = (author_id, feed_id)
        previous = self._last_post_by_author.get(key)
        self._last_post_by_author[key] = _RecentPost(content=content, seen_at=now)
        return previous is not None and previous.content == content and now - previous.seen_at <= self._duplicate_window

    def _record_history(self, message: NormalizedMessage) -> None:
        history = self._feed_history.get(message.feed_id)
        if history is None:
            history = deque(maxlen=FEED_HISTORY_LIMIT)
            self._feed_history[message.feed_id] = history
        history.append((self._clock(), message))

    def get_feed_history(self, feed_id: str) -> list[NormalizedMessage]:
        return [message for _, message in self._feed_history.get(feed_id, ())]

    def cleanup(self) -> dict:
        """Expire old feed history and stale per-author duplicate records."""
        now = self._clock()
        expired_posts = 0
        for feed_id in list(self._feed_history):
            history = self._feed_history[feed_id]
            while history and now - history[0][0] > FEED_HISTORY_MAX_AGE_SECONDS:
                history.popleft()
                expired_posts += 1
            if not history:
                del self._feed_history[feed_id]

        stale = [key for key, post in self._last_post_by_author.items() if now - post.seen_at > self._duplicate_window]
        for key in stale:
            del self._last_post_by_author[key]

        return {"expired_history_posts": expired_posts, "expired_author_records": len(stale)}

    def get_stats(self) -> dict:
        return {
            "seen_entities": len(self._seen_entities),
            "feeds_with_history": len(self._feed_history),
            "author_records": len(self._last_post_by_author),
        }
