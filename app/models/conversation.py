import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.database import Base, JSONType


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (UniqueConstraint("connection_id", "contact_identifier", name="uq_conversation_contact"),)

    # uuid5 of connection + contact, see conversation_service.conversation_id_for
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    connection_id = Column(Text, nullable=False, index=True)
    contact_identifier = Column(Text, nullable=False)  # digits only, e.g. 5511999990000
    display_name = Column(Text)
    status = Column(Text, nullable=False, default="active")
    last_message_preview = Column(Text)
    last_message_at = Column(DateTime(timezone=True))
    message_count = Column(Integer, nullable=False, default=0)
    automation_enabled = Column(Boolean, nullable=False, default=False)
    active_training_id = Column(Text)
    active_training_started_at = Column(DateTime(timezone=True))
    tags = Column(JSONType, nullable=False, default=list)
    notes = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    messages = relationship("Message", back_populates="conversation")
