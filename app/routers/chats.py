from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.chats import ActiveTraining, ActiveTrainingResponse, ResetChatRequest, ResetChatResponse
from app.services.conversation_service import find_conversation
from app.services.training_service import deactivate_training, get_active_training_for_chat

router = APIRouter(prefix="/chats")


@router.get("/active-training", response_model=ActiveTrainingResponse)
def active_training(
    connectionId: str = Query(min_length=1),
    phoneNumber: str = Query(min_length=1),
    db: Session = Depends(get_db),
):
    """The training currently driving replies in a chat, if any."""
    response = ActiveTrainingResponse(connectionId=connectionId, phoneNumber=phoneNumber)
    conversation = find_conversation(db, connectionId, phoneNumber)
    if conversation is None:
        return response

    training = get_active_training_for_chat(db, conversation)
    db.commit()
    if training is None:
        return response

    response.activeTraining = ActiveTraining(
        id=training.id,
        name=training.name,
        type=training.type or "prompt",
        activationMode=training.activation_mode,
        priority=training.priority,
        startedAt=conversation.active_training_started_at,
    )
    return response


@router.post("/reset", response_model=ResetChatResponse)
def reset_chat(request: ResetChatRequest, db: Session = Depends(get_db)):
    """Clear the active training so the next message is matched from scratch."""
    conversation = find_conversation(db, request.connectionId, request.phoneNumber)
    if conversation is None:
        return ResetChatResponse(success=True, message="Chat not found, nothing to reset")

    cleared = deactivate_training(db, conversation)
    db.commit()
    return ResetChatResponse(
        success=True,
        message="Active training cleared" if cleared else "No active training",
        cleared=cleared,
    )
