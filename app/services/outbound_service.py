from typing import Optional

from app.logging_config import get_logger
from app.services.connection_service import ConnectionController
from app.services.credential_store import CredentialError
from app.services.errors import GatewayError, NotConnectedError, SendFailedError
from app.services.result import Result

logger = get_logger("outbound_service")


async def _send_once(controller: ConnectionController, connection_id: str, recipient: str, text: str) -> Optional[str]:
    session = controller.get_live_session(connection_id)
    if session is None:
        raise NotConnectedError("Connection is not connected", connection_id)

    handle = session.handle
    message_id = await controller.transport.send(handle, recipient, text)

    # A reconnect during the send replaced the session this handle belongs to.
    if controller.registry.get(connection_id) is not session:
        logger.warning(f"Session for {connection_id} was superseded during send")
    return message_id


async def send_text(
    controller: ConnectionController,
    connection_id: str,
    recipient: str,
    text: str,
    *,
    restore: bool = False,
    restore_timeout: float = 10.0,
) -> Result[Optional[str]]:
    """Send a text through the live session of a connection.

    With ``restore``, a not-connected failure triggers one ``start`` of the
    connection, a wait of up to ``restore_timeout`` seconds for it to open,
    and one retry. Returns the transport message id.
    """
    try:
        return Result.success(await _send_once(controller, connection_id, recipient, text))
    except NotConnectedError as e:
        if not restore:
            logger.warning(f"Send to {recipient} via {connection_id} failed: {e.message}")
            return Result.from_error(e)
        first_error = e
    except GatewayError as e:
        logger.error(f"Send to {recipient} via {connection_id} failed: {e.message}")
        return Result.from_error(e, SendFailedError.code)

    logger.info(f"Restoring {connection_id} before retrying send: {first_error.message}")
    try:
        await controller.start(connection_id)
    except CredentialError as e:
        logger.error(f"Restore of {connection_id} failed: {e.message}")
        return Result.from_error(e, NotConnectedError.code)

    if not await controller.wait_connected(connection_id, restore_timeout):
        logger.warning(f"Connection {connection_id} did not open within {restore_timeout}s")
        return Result.failure("Connection is not connected", NotConnectedError.code)

    try:
        return Result.success(await _send_once(controller, connection_id, recipient, text))
    except NotConnectedError as e:
        logger.warning(f"Send via {connection_id} still not connected after restore: {e.message}")
        return Result.from_error(e)
    except GatewayError as e:
        logger.error(f"Send to {recipient} via {connection_id} failed after restore: {e.message}")
        return Result.from_error(e, SendFailedError.code)
