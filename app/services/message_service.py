from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.models import Message

INBOUND = "inbound"
OUTBOUND = "outbound"


def save_message(
    db: Session,
    conversation_id: UUID,
    connection_id: str,
    direction: str,
    body: str,
    delivery_status: Optional[str] = None,
    external_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Message:
    """Save message to database."""
    if delivery_status is None:
        delivery_status = "delivered" if direction == INBOUND else "sent"
    message = Message(
        conversation_id=conversation_id,
        connection_id=connection_id,
        direction=direction,
        body=body,
        external_id=external_id,
        delivery_status=delivery_status,
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(message)
    db.flush()
    return message


def find_outbound_by_external_id(db: Session, connection_id: str, external_id: Optional[str]) -> Optional[Message]:
    if not external_id:
        return None
    return (
        db.query(Message)
        .filter(
            Message.connection_id == connection_id,
            Message.external_id == external_id,
            Message.direction == OUTBOUND,
        )
        .first()
    )


def get_recent_history(db: Session, conversation_id: UUID, limit: int = 10, exclude_id: Optional[UUID] = None) -> list[dict]:
    """Last ``limit`` messages, oldest first, as chat-completion turns."""
    query = db.query(Message).filter(
        Message.conversation_id == conversation_id,
        Message.deleted_at.is_(None),
    )
    if exclude_id is not None:
        query = query.filter(Message.id != exclude_id)
    messages = query.order_by(Message.created_at.desc()).limit(limit).all()

    history = []
    for msg in reversed(messages):
        role = "user" if msg.direction == INBOUND else "assistant"
        history.append({"role": role, "content": msg.body})
    return history


def soft_delete_message(db: Session, message: Message) -> None:
    message.deleted_at = datetime.now(timezone.utc)
    db.flush()
