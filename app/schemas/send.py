from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class SendRequest(BaseModel):
    connectionId: str = Field(min_length=1, validation_alias=AliasChoices("connectionId", "connection_id"))
    phoneNumber: str = Field(min_length=1, validation_alias=AliasChoices("phoneNumber", "phone_number"))
    message: str = Field(min_length=1)
    restore: bool = True


class SendResponse(BaseModel):
    success: bool
    message: str
    messageId: Optional[str] = None
