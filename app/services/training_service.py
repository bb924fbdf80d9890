from typing import Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Conversation, TrainingRule
from app.services.training_engine import ActivationMode, KeywordMatchType, Rule

logger = get_logger("training_service")


def to_rule(model: TrainingRule) -> Rule:
    """Convert a stored training into the engine's rule value."""
    try:
        mode = ActivationMode(model.activation_mode or ActivationMode.KEYWORDS.value)
    except ValueError:
        logger.warning(f"Unknown activation mode {model.activation_mode!r} on training {model.id}")
        mode = ActivationMode.KEYWORDS
    try:
        match_type = KeywordMatchType(model.keyword_match_type or KeywordMatchType.ANY.value)
    except ValueError:
        match_type = KeywordMatchType.ANY

    return Rule(
        id=str(model.id),
        name=model.name,
        content=model.content or "",
        activation_mode=mode,
        keywords=tuple(model.keywords or ()),
        keyword_match_type=match_type,
        exit_keywords=tuple(model.exit_keywords or ()),
        exit_message=model.exit_message,
        inactivity_timeout_minutes=model.inactivity_timeout_minutes or 0,
        priority=model.priority if model.priority is not None else 1,
        is_active=bool(model.is_active),
        type=model.type or "prompt",
    )


def load_active_rules(db: Session, connection_id: str) -> list[Rule]:
    """Active trainings of a connection."""
    rows = (
        db.query(TrainingRule)
        .filter(TrainingRule.connection_id == connection_id, TrainingRule.is_active.is_(True))
        .all()
    )
    return [to_rule(row) for row in rows]


def get_active_training_for_chat(db: Session, conversation: Conversation) -> Optional[TrainingRule]:
    """Sticky training of a conversation; clears references to missing or disabled trainings."""
    if not conversation.active_training_id:
        return None

    training = db.get(TrainingRule, conversation.active_training_id)
    if training is None or not training.is_active or training.connection_id != conversation.connection_id:
        logger.info(
            f"Clearing dangling training {conversation.active_training_id} on conversation {conversation.id}"
        )
        deactivate_training(db, conversation)
        return None
    return training


def deactivate_training(db: Session, conversation: Conversation) -> bool:
    """Clear the sticky training. Returns False if nothing was active."""
    if not conversation.active_training_id:
        return False
    conversation.active_training_id = None
    conversation.active_training_started_at = None
    db.flush()
    return True
