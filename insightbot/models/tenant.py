import uuid

from sqlalchemy import Boolean, Column, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from insightbot.database import Base

UNLIMITED_MESSAGES = 999999


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    max_messages_per_month = Column(Integer, default=100)  # 999999 = unlimited
    created_at = Column(TIMESTAMP(timezone=True))

    channel_instances = relationship("ChannelInstance", back_populates="tenant")
    contacts = relationship("AuthorizedContact", back_populates="tenant")
