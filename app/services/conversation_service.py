import re
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.models import Conversation
from app.services.training_engine import StickyState

# Namespace for deterministic conversation ids.
CONVERSATION_NAMESPACE = uuid.UUID("6f1c2f4e-8b0a-4d55-9a57-3c1f0e7b9d21")


def normalize_contact(contact: str) -> str:
    """5511 99999-0000@s.whatsapp.net -> 5511999990000"""
    local_part = (contact or "").split("@", 1)[0]
    digits = re.sub(r"[^0-9]", "", local_part)
    return digits or local_part.strip()


def conversation_id_for(connection_id: str, contact: str) -> uuid.UUID:
    return uuid.uuid5(CONVERSATION_NAMESPACE, f"{connection_id}:{normalize_contact(contact)}")


def _insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Unsupported database dialect: {dialect}")


def get_or_create_conversation(
    db: Session,
    connection_id: str,
    contact: str,
    display_name: Optional[str] = None,
    automation_enabled: bool = False,
) -> tuple[Conversation, bool]:
    """Find the conversation for a contact or create it.

    The id is derived from (connection, contact) and the insert ignores
    conflicts, so two concurrent first messages end up on one row.
    Returns (conversation, created).
    """
    contact_identifier = normalize_contact(contact)
    conversation_id = conversation_id_for(connection_id, contact_identifier)

    existing = db.get(Conversation, conversation_id)
    if existing is not None:
        return existing, False

    now = datetime.now(timezone.utc)
    insert = _insert(db)
    stmt = (
        insert(Conversation)
        .values(
            id=conversation_id,
            connection_id=connection_id,
            contact_identifier=contact_identifier,
            display_name=display_name or contact_identifier,
            status="active",
            message_count=0,
            automation_enabled=automation_enabled,
            tags=[],
            notes="",
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing()
    )
    result = db.execute(stmt)
    created = result.rowcount > 0
    conversation = db.get(Conversation, conversation_id)
    return conversation, created


def find_conversation(db: Session, connection_id: str, contact: str) -> Optional[Conversation]:
    return db.get(Conversation, conversation_id_for(connection_id, contact))


def record_activity(
    db: Session,
    conversation: Conversation,
    preview: str,
    *,
    inbound: bool = False,
    display_name: Optional[str] = None,
    at: Optional[datetime] = None,
) -> None:
    """Update last message preview/time (and counters for inbound)."""
    now = at or datetime.now(timezone.utc)
    conversation.last_message_preview = preview or ""
    conversation.last_message_at = now
    conversation.updated_at = now
    if inbound:
        conversation.message_count = (conversation.message_count or 0) + 1
        if display_name:
            conversation.display_name = display_name
    db.flush()


def sticky_state_of(conversation: Conversation, last_activity_at: Optional[datetime] = None) -> StickyState:
    return StickyState(
        active_training_id=conversation.active_training_id,
        started_at=conversation.active_training_started_at,
        last_activity_at=last_activity_at,
    )


def apply_sticky_state(db: Session, conversation: Conversation, state: StickyState) -> bool:
    """Persist the sticky training. Returns True if it changed."""
    if (
        conversation.active_training_id == state.active_training_id
        and conversation.active_training_started_at == state.started_at
    ):
        return False
    conversation.active_training_id = state.active_training_id
    conversation.active_training_started_at = state.started_at
    conversation.updated_at = datetime.now(timezone.utc)
    db.flush()
    return True
