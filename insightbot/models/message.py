import uuid

from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from insightbot.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False)
    phone = Column(Text, nullable=False, index=True)
    content = Column(Text, nullable=False)
    direction = Column(Text, nullable=False)  # incoming, outgoing
    sender_label = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
