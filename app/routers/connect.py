from fastapi import APIRouter, Depends, HTTPException, Query

from app.logging_config import get_logger
from app.schemas.connect import ConnectionStatusResponse, ConnectRequest, DisconnectResponse, SessionsResponse
from app.services.connection_service import ConnectionSnapshot
from app.services.credential_store import CredentialError
from app.services.gateway import Gateway, get_gateway

router = APIRouter()
logger = get_logger("connect_router")


def _to_response(snapshot: ConnectionSnapshot) -> ConnectionStatusResponse:
    return ConnectionStatusResponse(
        connectionId=snapshot.connection_id,
        connected=snapshot.connected,
        status=snapshot.status,
        qrCode=snapshot.qr_code,
        phoneNumber=snapshot.phone_number,
        user=snapshot.user,
        reconnectPending=snapshot.reconnect_pending,
        error=snapshot.error,
    )


@router.post("/connect", response_model=ConnectionStatusResponse)
async def connect(request: ConnectRequest, gateway: Gateway = Depends(get_gateway)):
    """Start (or restore) a connection and report its current status."""
    connection_id = request.connectionId
    try:
        await gateway.controller.start(connection_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CredentialError as e:
        logger.error(f"Cannot start {connection_id}: {e.message}")
        raise HTTPException(status_code=500, detail={"error": e.message, "code": e.code})
    return _to_response(gateway.controller.status(connection_id))


@router.get("/connect", response_model=ConnectionStatusResponse)
async def connection_status(
    connectionId: str = Query(min_length=1),
    gateway: Gateway = Depends(get_gateway),
):
    return _to_response(gateway.controller.status(connectionId))


@router.delete("/connect", response_model=DisconnectResponse)
async def disconnect(
    connectionId: str = Query(min_length=1),
    gateway: Gateway = Depends(get_gateway),
):
    """Log out and delete the stored credentials."""
    try:
        await gateway.controller.stop(connectionId)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return DisconnectResponse(success=True, message="Disconnected")


@router.get("/connect/sessions", response_model=SessionsResponse)
async def list_sessions(gateway: Gateway = Depends(get_gateway)):
    """Connections with stored credentials."""
    sessions = gateway.credentials.list()
    return SessionsResponse(sessions=sessions, total=len(sessions))
