from fastapi import APIRouter, Depends, HTTPException

from app.schemas.send import SendRequest, SendResponse
from app.services.gateway import Gateway, get_gateway
from app.services.outbound_service import send_text

router = APIRouter()


@router.post("/send", response_model=SendResponse)
async def send_message(request: SendRequest, gateway: Gateway = Depends(get_gateway)):
    """Send a text through the connection's live session."""
    result = await send_text(
        gateway.controller,
        request.connectionId,
        request.phoneNumber,
        request.message,
        restore=request.restore,
        restore_timeout=gateway.settings.send_restore_timeout_seconds,
    )
    if not result.ok:
        status_code = 409 if result.not_connected else 502
        raise HTTPException(status_code=status_code, detail={"error": result.error, "code": result.error_code})
    return SendResponse(success=True, message="Message sent", messageId=result.value)
