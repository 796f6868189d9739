from sqlalchemy import JSON, Column, DateTime, Text
from sqlalchemy.sql import func

from supportbot.database import Base


class TenantConfigRecord(Base):
    __tablename__ = "tenant_configs"

    tenant_id = Column(Text, primary_key=True)
    config = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
