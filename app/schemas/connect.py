from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class ConnectRequest(BaseModel):
    connectionId: str = Field(
        min_length=1,
        validation_alias=AliasChoices("connectionId", "connection_id"),
    )


class ConnectionStatusResponse(BaseModel):
    connectionId: str
    connected: bool
    status: str
    qrCode: Optional[str] = None
    phoneNumber: Optional[str] = None
    user: Optional[dict] = None
    reconnectPending: bool = False
    error: Optional[str] = None


class DisconnectResponse(BaseModel):
    success: bool
    message: str


class SessionsResponse(BaseModel):
    sessions: list[str]
    total: int
