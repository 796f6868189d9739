from sqlalchemy import Column, DateTime, Text
from sqlalchemy.sql import func

from supportbot.database import Base


class ChannelMapping(Base):
    __tablename__ = "channel_mappings"

    channel_group_id = Column(Text, primary_key=True)
    tenant_id = Column(Text, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
