from fastapi import APIRouter, Depends, Header, HTTPException

from app.logging_config import get_logger
from app.schemas.transport import TransportEventRequest, TransportEventResponse
from app.services.gateway import Gateway, get_gateway

router = APIRouter(prefix="/transport")
logger = get_logger("transport_events")


def _check_bridge_token(gateway: Gateway, authorization: str | None) -> None:
    expected = gateway.settings.bridge_token
    if not expected:
        return
    if authorization != f"Bearer {expected}":
        raise HTTPException(status_code=401, detail="Invalid bridge token")


@router.post("/events", response_model=TransportEventResponse)
async def transport_event(
    request: TransportEventRequest,
    authorization: str | None = Header(default=None),
    gateway: Gateway = Depends(get_gateway),
):
    """Event pushed by the messaging bridge; dropped if the session is stale."""
    _check_bridge_token(gateway, authorization)
    try:
        event = request.to_event()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    accepted = await gateway.controller.dispatch_event(request.connectionId, request.sessionToken, event)
    return TransportEventResponse(accepted=accepted)
