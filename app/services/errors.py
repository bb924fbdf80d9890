class GatewayError(Exception):
    """Base class for gateway errors."""

    code = "gateway_error"

    def __init__(self, message: str, connection_id: str | None = None):
        self.message = message
        self.connection_id = connection_id
        super().__init__(message)


class NotConnectedError(GatewayError):
    """No live session for the connection, or the session handle went stale."""

    code = "not_connected"


class SendFailedError(GatewayError):
    code = "send_failed"


class TransportOpenError(GatewayError):
    code = "open_failed"
