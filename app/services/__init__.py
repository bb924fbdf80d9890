from app.services.conversation_service import (
    conversation_id_for,
    get_or_create_conversation,
    normalize_contact,
)
from app.services.message_service import (
    get_recent_history,
    save_message,
)
from app.services.state_machine import (
    ConnectionStatus,
    InvalidTransitionError,
    can_transition,
    transition,
)
