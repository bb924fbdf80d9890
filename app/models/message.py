import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False, index=True)
    connection_id = Column(Text, nullable=False)
    direction = Column(Text, nullable=False)  # inbound, outbound
    body = Column(Text, nullable=False)
    external_id = Column(Text, index=True)
    delivery_status = Column(Text, nullable=False)  # delivered, sent, failed
    created_at = Column(DateTime(timezone=True), nullable=False)
    deleted_at = Column(DateTime(timezone=True))

    conversation = relationship("Conversation", back_populates="messages")
