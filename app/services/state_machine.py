from enum import Enum


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    QR_PENDING = "qr_pending"
    CONNECTED = "connected"
    ERROR = "error"


VALID_TRANSITIONS = {
    ConnectionStatus.DISCONNECTED: [ConnectionStatus.CONNECTING],
    ConnectionStatus.CONNECTING: [
        ConnectionStatus.QR_PENDING,
        ConnectionStatus.CONNECTED,
        ConnectionStatus.DISCONNECTED,
        ConnectionStatus.ERROR,
    ],
    # A fresh QR replaces the previous one while still pending.
    ConnectionStatus.QR_PENDING: [
        ConnectionStatus.QR_PENDING,
        ConnectionStatus.CONNECTED,
        ConnectionStatus.DISCONNECTED,
        ConnectionStatus.ERROR,
    ],
    ConnectionStatus.CONNECTED: [ConnectionStatus.DISCONNECTED, ConnectionStatus.ERROR],
    ConnectionStatus.ERROR: [ConnectionStatus.CONNECTING],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: ConnectionStatus, to_state: ConnectionStatus):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: ConnectionStatus, to_state: ConnectionStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: ConnectionStatus, to_state: ConnectionStatus) -> ConnectionStatus:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def qr_issued(current_state: ConnectionStatus) -> ConnectionStatus:
    """Transport issued a pairing QR code."""
    return transition(current_state, ConnectionStatus.QR_PENDING)


def opened(current_state: ConnectionStatus) -> ConnectionStatus:
    """Transport reports the socket is open and paired."""
    return transition(current_state, ConnectionStatus.CONNECTED)


def closed(current_state: ConnectionStatus, terminal: bool) -> ConnectionStatus:
    """Socket closed; terminal closures (logged out) end in ERROR."""
    target = ConnectionStatus.ERROR if terminal else ConnectionStatus.DISCONNECTED
    return transition(current_state, target)
