import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from insightbot.database import Base


class ChannelInstance(Base):
    __tablename__ = "channel_instances"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False)
    name = Column(Text, nullable=False)  # Evolution API instance name
    api_url = Column(Text, nullable=False)
    api_key = Column(Text, nullable=False)
    is_connected = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True))

    tenant = relationship("Tenant", back_populates="channel_instances")
