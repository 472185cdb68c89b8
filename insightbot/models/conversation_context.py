from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from insightbot.database import Base


class ConversationContext(Base):
    __tablename__ = "conversation_contexts"

    phone = Column(Text, primary_key=True)
    selected_contact_id = Column(UUID(as_uuid=True))
    selected_channel_instance_id = Column(UUID(as_uuid=True))
    connection_id = Column(UUID(as_uuid=True))
    dataset_id = Column(Text)
    dataset_name = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False)  # end of the day of the last write

    @property
    def has_dataset(self) -> bool:
        return bool(self.connection_id and self.dataset_id)
