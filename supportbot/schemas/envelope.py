"""Platform stream envelopes.

The stream delivers two shapes: an experience advertisement that maps a
channel-group id (experience) to its tenant (company bot), and a feed post.
Anything that validates as neither is dropped by the caller.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class WireBot(_WireModel):
    id: str = Field(min_length=1)


class WireExperience(_WireModel):
    id: str = Field(min_length=1)
    bot: WireBot


class WireUser(_WireModel):
    id: Optional[str] = None
    username: Optional[str] = None
    name: Optional[str] = None


class WirePost(_WireModel):
    entity_id: Optional[str] = Field(default=None, alias="entityId")
    feed_id: Optional[str] = Field(default=None, alias="feedId")
    experience_id: Optional[str] = Field(default=None, alias="experienceId")
    content: Any = None
    message: Any = None
    user: Optional[WireUser] = None
    replying_to_post_id: Optional[str] = Field(default=None, alias="replyingToPostId")

    @property
    def text(self) -> Any:
        return self.content if self.content is not None else self.message


class WireFeedEntity(_WireModel):
    dms_post: Optional[WirePost] = Field(default=None, alias="dmsPost")
    post: Optional[WirePost] = None


class MappingAdvertisement(_WireModel):
    channel_group_id: str
    tenant_id: str


class PostEnvelope(_WireModel):
    post: WirePost


def parse_envelope(data: Any) -> Optional[Union[MappingAdvertisement, PostEnvelope]]:
    """Return the envelope shape carried by a decoded stream frame, or None."""
    if not isinstance(data, dict):
        return None

    experience = data.get("experience")
    if isinstance(experience, dict) and isinstance(experience.get("bot"), dict):
        try:
            parsed = WireExperience.model_validate(experience)
        except ValidationError:
            return None
        return MappingAdvertisement(channel_group_id=parsed.id, tenant_id=parsed.bot.id)

    feed_entity = data.get("feedEntity")
    if not isinstance(feed_entity, dict):
        return None
    try:
        entity = WireFeedEntity.model_validate(feed_entity)
    except ValidationError:
        return None

    post = entity.dms_post or entity.post
    if post is None:
        return None
    return PostEnvelope(post=post)
