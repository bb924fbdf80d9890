from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class ActiveTraining(BaseModel):
    id: str
    name: str
    type: str
    activationMode: str
    priority: int
    startedAt: Optional[datetime] = None


class ActiveTrainingResponse(BaseModel):
    connectionId: str
    phoneNumber: str
    activeTraining: Optional[ActiveTraining] = None


class ResetChatRequest(BaseModel):
    connectionId: str = Field(min_length=1, validation_alias=AliasChoices("connectionId", "connection_id"))
    phoneNumber: str = Field(min_length=1, validation_alias=AliasChoices("phoneNumber", "phone_number"))


class ResetChatResponse(BaseModel):
    success: bool
    message: str
    cleared: bool = False
