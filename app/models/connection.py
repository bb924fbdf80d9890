from sqlalchemy import Column, DateTime, Text

from app.database import Base


class Connection(Base):
    __tablename__ = "whatsapp_connections"

    id = Column(Text, primary_key=True)
    name = Column(Text)
    status = Column(Text, nullable=False, default="disconnected")  # connected, disconnected, error
    phone_number = Column(Text)
    user_name = Column(Text)
    updated_at = Column(DateTime(timezone=True))
