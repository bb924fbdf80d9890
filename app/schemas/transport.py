from typing import Literal, Optional

from pydantic import BaseModel, Field

from app.services.transport.base import (
    Closed,
    CredentialsUpdated,
    MessageReceived,
    Opened,
    QrIssued,
    TransportEvent,
)


class TransportEventRequest(BaseModel):
    """Event pushed by the messaging bridge for one session."""

    connectionId: str = Field(min_length=1)
    sessionToken: str = Field(min_length=1)
    type: Literal["qr", "open", "close", "credentials", "message"]

    qr: Optional[str] = None
    phoneNumber: Optional[str] = None
    userName: Optional[str] = None
    user: Optional[dict] = None
    reasonCode: Optional[int] = None
    detail: Optional[str] = None
    credentials: Optional[dict] = None
    remoteJid: Optional[str] = None
    text: Optional[str] = None
    messageId: Optional[str] = None
    fromMe: bool = False
    pushName: Optional[str] = None
    timestamp: Optional[int] = None

    def to_event(self) -> TransportEvent:
        if self.type == "qr":
            if not self.qr:
                raise ValueError("qr event without qr payload")
            return QrIssued(qr=self.qr)
        if self.type == "open":
            return Opened(phone_number=self.phoneNumber, user_name=self.userName, user=self.user)
        if self.type == "close":
            return Closed(reason_code=self.reasonCode, detail=self.detail)
        if self.type == "credentials":
            if self.credentials is None:
                raise ValueError("credentials event without credentials")
            return CredentialsUpdated(credentials=self.credentials)
        if not self.remoteJid:
            raise ValueError("message event without remoteJid")
        return MessageReceived(
            remote_jid=self.remoteJid,
            text=self.text,
            message_id=self.messageId,
            from_me=self.fromMe,
            push_name=self.pushName,
            timestamp=self.timestamp,
        )


class TransportEventResponse(BaseModel):
    accepted: bool
