from supportbot.models.channel_mapping import ChannelMapping
from supportbot.models.tenant_config import TenantConfigRecord

__all__ = [
    "ChannelMapping",
    "TenantConfigRecord",
]
