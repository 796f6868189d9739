from supportbot.schemas.chat import Author, ContextEntry, NormalizedMessage
from supportbot.schemas.envelope import MappingAdvertisement, PostEnvelope, parse_envelope
from supportbot.schemas.tenant import PresetQA, ResponseStyle, TenantConfig

__all__ = [
    "Author",
    "ContextEntry",
    "NormalizedMessage",
    "MappingAdvertisement",
    "PostEnvelope",
    "parse_envelope",
    "PresetQA",
    "ResponseStyle",
    "TenantConfig",
]
