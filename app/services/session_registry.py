"""In-memory sessions, one per connection id."""

import asyncio
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from app.services.state_machine import ConnectionStatus
from app.services.transport.base import TransportEvent, TransportHandle

ACTIVE_STATUSES = {
    ConnectionStatus.CONNECTING,
    ConnectionStatus.QR_PENDING,
    ConnectionStatus.CONNECTED,
}


@dataclass(eq=False)
class Session:
    """Runtime state of one connection.

    ``token`` identifies this particular socket; events and sends carrying an
    older token belong to a superseded session and are rejected.
    """

    connection_id: str
    events: "asyncio.Queue[TransportEvent]"
    token: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: ConnectionStatus = ConnectionStatus.CONNECTING
    handle: Optional[TransportHandle] = None
    last_qr_code: Optional[str] = None
    phone_number: Optional[str] = None
    user: Optional[dict] = None
    reconnect_handle: Optional[asyncio.TimerHandle] = None
    reconnect_attempts: int = 0
    worker: Optional[asyncio.Task] = None
    closed: bool = False
    # Set once the socket reports "open".
    opened: asyncio.Event = field(default_factory=asyncio.Event)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_active(self) -> bool:
        return not self.closed and self.status in ACTIVE_STATUSES

    @property
    def is_connected(self) -> bool:
        return not self.closed and self.status == ConnectionStatus.CONNECTED and self.handle is not None

    @property
    def reconnect_pending(self) -> bool:
        return self.reconnect_handle is not None and not self.reconnect_handle.cancelled()

    def cancel_reconnect(self) -> bool:
        if self.reconnect_handle is None:
            return False
        self.reconnect_handle.cancel()
        self.reconnect_handle = None
        return True


class SessionRegistry:
    """Thread-safe map of connection id -> Session."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}

    def get(self, connection_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(connection_id)

    def put(self, connection_id: str, session: Session) -> Optional[Session]:
        """Store session, returning the entry it superseded (if any)."""
        with self._lock:
            previous = self._sessions.get(connection_id)
            self._sessions[connection_id] = session
        return previous if previous is not session else None

    def put_unless(
        self,
        connection_id: str,
        session: Session,
        keep: Callable[[Session], bool],
    ) -> tuple[Session, Optional[Session]]:
        """Atomically store session unless keep(current) holds.

        Returns (entry now in the registry, superseded entry or None).
        """
        with self._lock:
            current = self._sessions.get(connection_id)
            if current is not None and keep(current):
                return current, None
            self._sessions[connection_id] = session
            return session, current

    def replace(self, connection_id: str, session: Session, expected: Session) -> bool:
        """Store session only if the current entry is still ``expected``."""
        with self._lock:
            if self._sessions.get(connection_id) is not expected:
                return False
            self._sessions[connection_id] = session
            return True

    def remove(self, connection_id: str, expected: Optional[Session] = None) -> Optional[Session]:
        """Remove the entry; with ``expected``, only if it is still that session."""
        with self._lock:
            current = self._sessions.get(connection_id)
            if current is None:
                return None
            if expected is not None and current is not expected:
                return None
            del self._sessions[connection_id]
            return current

    def snapshot(self) -> dict[str, Session]:
        with self._lock:
            return dict(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._sessions
