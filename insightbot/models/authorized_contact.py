import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from insightbot.database import Base


class AuthorizedContact(Base):
    __tablename__ = "authorized_contacts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone = Column(Text, nullable=False, index=True)
    name = Column(Text)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False)
    channel_instance_id = Column(UUID(as_uuid=True), ForeignKey("channel_instances.id"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True))

    tenant = relationship("Tenant", back_populates="contacts")
    channel_instance = relationship("ChannelInstance")
    dataset_bindings = relationship(
        "DatasetBinding",
        back_populates="contact",
        order_by="DatasetBinding.position",
    )
