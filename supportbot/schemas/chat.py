from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Author:
    id: str
    display_name: str
    username: Optional[str] = None


@dataclass(frozen=True)
class NormalizedMessage:
    """A chat post accepted by ingestion; consumed once by the coordinator."""

    entity_id: str
    feed_id: str
    channel_group_id: str
    content: str
    author: Author
    reply_to_id: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.entity_id, self.feed_id)


@dataclass(frozen=True)
class ContextEntry:
    content: str
    author: str
    is_bot: bool
    timestamp: datetime
