import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, Text

from app.database import Base, JSONType


class TrainingRule(Base):
    """Automated-response ruleset, authored in the dashboard and read here."""

    __tablename__ = "whatsapp_training"

    id = Column(Text, primary_key=True, default=lambda: uuid.uuid4().hex)
    connection_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    type = Column(Text, nullable=False, default="prompt")
    content = Column(Text, nullable=False, default="")
    activation_mode = Column(Text, nullable=False, default="keywords")  # always, keywords
    keywords = Column(JSONType, nullable=False, default=list)
    keyword_match_type = Column(Text, nullable=False, default="any")  # any, all
    exit_keywords = Column(JSONType, nullable=False, default=list)
    exit_message = Column(Text)
    inactivity_timeout_minutes = Column(Integer, nullable=False, default=0)
    priority = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))
