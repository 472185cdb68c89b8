import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from insightbot.database import Base


class QueryLearning(Base):
    __tablename__ = "query_learning"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False)
    connection_id = Column(UUID(as_uuid=True), ForeignKey("analytics_connections.id"), nullable=False)
    dataset_id = Column(Text, nullable=False)

    user_question = Column(Text)
    question_intent = Column(Text, nullable=False)
    dax_query = Column(Text, nullable=False)
    dax_query_hash = Column(Text, nullable=False)  # md5 of the trimmed query

    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text)
    result_rows = Column(Integer)
    times_reused = Column(Integer, nullable=False, default=0)

    created_at = Column(TIMESTAMP(timezone=True))
    last_used_at = Column(TIMESTAMP(timezone=True))
