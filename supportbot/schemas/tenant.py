from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ResponseStyle(str, Enum):
    PROFESSIONAL = "professional"
    FRIENDLY = "friendly"
    CASUAL = "casual"
    TECHNICAL = "technical"
    CUSTOM = "custom"


class PresetQA(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str = ""
    question: str = Field(min_length=1, max_length=500)
    answer: str = Field(min_length=1, max_length=2000)
    enabled: bool = True


class TenantConfig(BaseModel):
    """Tenant-owned bot configuration. Every field has a default so partial records load."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    enabled: bool = False
    knowledge_base_text: str = Field(default="", alias="knowledgeBase")
    custom_instructions: str = ""
    preset_qa: List[PresetQA] = Field(default_factory=list, alias="presetQA")
    response_style: ResponseStyle = ResponseStyle.PROFESSIONAL
    bot_personality: str = "helpful assistant"
    force_mention_only: bool = False

    @property
    def enabled_presets(self) -> List[PresetQA]:
        return [qa for qa in self.preset_qa if qa.enabled]

    @property
    def is_configured(self) -> bool:
        """True when the tenant turned the bot on and gave it something to answer from."""
        return self.enabled and bool(self.knowledge_base_text.strip() or self.enabled_presets)
