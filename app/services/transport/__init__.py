from app.services.transport.base import (
    Closed,
    CredentialsUpdated,
    DisconnectReason,
    MessageReceived,
    Opened,
    QrIssued,
    Transport,
    TransportEvent,
    TransportHandle,
    is_terminal_close,
)
from app.services.transport.bridge import BridgeTransport

__all__ = [
    "BridgeTransport",
    "Closed",
    "CredentialsUpdated",
    "DisconnectReason",
    "MessageReceived",
    "Opened",
    "QrIssued",
    "Transport",
    "TransportEvent",
    "TransportHandle",
    "is_terminal_close",
]
