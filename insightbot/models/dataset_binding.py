import uuid

from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from insightbot.database import Base


class DatasetBinding(Base):
    __tablename__ = "dataset_bindings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    contact_id = Column(UUID(as_uuid=True), ForeignKey("authorized_contacts.id"), nullable=False)
    connection_id = Column(UUID(as_uuid=True), ForeignKey("analytics_connections.id"), nullable=False)
    dataset_id = Column(Text, nullable=False)
    dataset_name = Column(Text)
    position = Column(Integer, nullable=False, default=0)

    contact = relationship("AuthorizedContact", back_populates="dataset_bindings")
    connection = relationship("AnalyticsConnection")
