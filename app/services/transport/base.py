import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Optional, Union


class DisconnectReason(IntEnum):
    """Close codes reported by the messaging network client."""

    CONNECTION_LOST = 408
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515


def is_terminal_close(reason_code: Optional[int]) -> bool:
    """Only an explicit logout is final; every other closure is retried."""
    return reason_code == DisconnectReason.LOGGED_OUT


def to_jid(phone_number: str) -> str:
    if "@" in phone_number:
        return phone_number
    return f"{phone_number}@s.whatsapp.net"


def contact_from_jid(remote_jid: str) -> str:
    """5511999990000@s.whatsapp.net -> 5511999990000"""
    return remote_jid.split("@", 1)[0].split(":", 1)[0]


@dataclass
class QrIssued:
    qr: str


@dataclass
class Opened:
    phone_number: Optional[str] = None
    user_name: Optional[str] = None
    user: Optional[dict] = None


@dataclass
class Closed:
    reason_code: Optional[int] = None
    detail: Optional[str] = None


@dataclass
class CredentialsUpdated:
    credentials: dict


@dataclass
class MessageReceived:
    remote_jid: str
    text: Optional[str]
    message_id: Optional[str] = None
    from_me: bool = False
    push_name: Optional[str] = None
    timestamp: Optional[int] = None


TransportEvent = Union[QrIssued, Opened, Closed, CredentialsUpdated, MessageReceived]


@dataclass
class TransportHandle:
    connection_id: str
    session_token: str
    raw: Any = field(default=None, repr=False)


class Transport(ABC):
    """Client for the external messaging network.

    Implementations push ``TransportEvent`` objects onto the queue given to
    ``open`` for as long as the socket lives.
    """

    @abstractmethod
    async def open(
        self,
        connection_id: str,
        credentials: Optional[dict],
        events: "asyncio.Queue[TransportEvent]",
        *,
        session_token: str,
    ) -> TransportHandle:
        """Open a socket, pairing from scratch when credentials is None."""

    @abstractmethod
    async def send(self, handle: TransportHandle, recipient: str, text: str) -> Optional[str]:
        """Send a text message. Returns the transport message id if known."""

    @abstractmethod
    async def logout(self, handle: TransportHandle) -> None:
        """Unpair the device and close the socket."""

    @abstractmethod
    async def close(self, handle: TransportHandle) -> None:
        """Close the socket, keeping the pairing."""
