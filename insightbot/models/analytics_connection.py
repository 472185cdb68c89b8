import uuid

from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from insightbot.database import Base


class AnalyticsConnection(Base):
    """Power BI service-principal credentials plus the workspace holding the datasets."""

    __tablename__ = "analytics_connections"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False)
    name = Column(Text)
    azure_tenant_id = Column(Text, nullable=False)
    client_id = Column(Text, nullable=False)
    client_secret = Column(Text, nullable=False)
    workspace_id = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True))
