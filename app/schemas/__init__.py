from app.schemas.chats import ActiveTrainingResponse, ResetChatRequest, ResetChatResponse
from app.schemas.connect import ConnectionStatusResponse, ConnectRequest, DisconnectResponse, SessionsResponse
from app.schemas.send import SendRequest, SendResponse
from app.schemas.transport import TransportEventRequest, TransportEventResponse

__all__ = [
    "ActiveTrainingResponse",
    "ConnectRequest",
    "ConnectionStatusResponse",
    "DisconnectResponse",
    "ResetChatRequest",
    "ResetChatResponse",
    "SendRequest",
    "SendResponse",
    "SessionsResponse",
    "TransportEventRequest",
    "TransportEventResponse",
]
