from app.models.connection import Connection
from app.models.conversation import Conversation
from app.models.message import Message
from app.models.training_rule import TrainingRule

__all__ = [
    "Connection",
    "Conversation",
    "Message",
    "TrainingRule",
]
