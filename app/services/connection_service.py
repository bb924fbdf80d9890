"""Connection lifecycle: start, stop, restore and reconnect of sessions."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from app.logging_config import LoggerAdapter, bind_logger
from app.models import Connection
from app.services.credential_store import CredentialStore
from app.services.qr_service import render_qr_data_uri
from app.services.session_registry import Session, SessionRegistry
from app.services.state_machine import ConnectionStatus, InvalidTransitionError, closed, opened, qr_issued
from app.services.transport.base import (
    Closed,
    CredentialsUpdated,
    MessageReceived,
    Opened,
    QrIssued,
    Transport,
    TransportEvent,
    is_terminal_close,
)

MessageHandler = Callable[[str, MessageReceived], Awaitable[None]]

GAVE_UP = "max_reconnect_attempts"


@dataclass
class ConnectionSnapshot:
    connection_id: str
    connected: bool
    status: str
    qr_code: Optional[str] = None
    phone_number: Optional[str] = None
    user: Optional[dict] = None
    reconnect_pending: bool = False
    error: Optional[str] = None


class ConnectionController:
    """Owns the sessions of every connection.

    Each session gets a bounded event queue drained by one worker task, so
    connection events for a connection are handled in arrival order. Inbound
    messages are handed to ``message_handler`` (the ingress pipeline).
    """

    def __init__(
        self,
        registry: SessionRegistry,
        transport: Transport,
        credentials: CredentialStore,
        *,
        session_factory=None,
        message_handler: Optional[MessageHandler] = None,
        reconnect_base_delay: float = 3.0,
        reconnect_max_delay: float = 30.0,
        max_reconnect_attempts: int = 5,
        event_queue_size: int = 256,
        logger: Optional[LoggerAdapter] = None,
    ):
        self.registry = registry
        self.transport = transport
        self.credentials = credentials
        self.session_factory = session_factory
        self.message_handler = message_handler
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self.event_queue_size = event_queue_size
        self.logger = logger or bind_logger("connection")
        self._last_errors: dict[str, str] = {}
        self._tasks: set[asyncio.Task] = set()

    # Public operations

    async def start(self, connection_id: str) -> Session:
        """Open a session unless one is already connecting or connected."""
        current = self.registry.get(connection_id)
        if current is not None and current.is_active:
            return current

        # Unreadable credentials raise before any session is registered.
        credentials = self.credentials.read(connection_id)
        self._last_errors.pop(connection_id, None)
        return await self._open_session(connection_id, credentials, attempts=0)

    async def stop(self, connection_id: str) -> None:
        """Log out and forget the connection. Safe to call repeatedly."""
        log = self.logger.bind(connection_id=connection_id)
        session = self.registry.remove(connection_id)
        self._last_errors.pop(connection_id, None)

        if session is not None:
            session.cancel_reconnect()
            session.closed = True
            if session.handle is not None:
                try:
                    await self.transport.logout(session.handle)
                except Exception as e:
                    log.warning("Logout failed, cleaning up locally", context={"error": str(e)})
            self._cancel_worker(session)

        try:
            self.credentials.delete(connection_id)
        except OSError as e:
            log.error("Failed to delete credentials", context={"error": str(e)})

        if session is not None:
            self._record_status(connection_id, ConnectionStatus.DISCONNECTED)
            log.info("Connection stopped")

    async def restore_all(self) -> dict[str, bool]:
        """Start every connection that has stored credentials."""
        connection_ids = self.credentials.list()
        self.logger.info("Restoring sessions", context={"count": len(connection_ids)})

        results: dict[str, bool] = {}
        for connection_id in connection_ids:
            try:
                await self.start(connection_id)
                results[connection_id] = True
            except Exception as e:
                results[connection_id] = False
                self._last_errors[connection_id] = "restore_failed"
                self.logger.error(
                    "Failed to restore session",
                    context={"connection_id": connection_id, "error": str(e)},
                )
                self._record_status(connection_id, ConnectionStatus.ERROR)

        restored = sum(1 for ok in results.values() if ok)
        self.logger.info("Restore finished", context={"restored": restored, "failed": len(results) - restored})
        return results

    def status(self, connection_id: str) -> ConnectionSnapshot:
        session = self.registry.get(connection_id)
        if session is None:
            error = self._last_errors.get(connection_id)
            status = ConnectionStatus.ERROR if error else ConnectionStatus.DISCONNECTED
            return ConnectionSnapshot(connection_id, connected=False, status=status.value, error=error)

        return ConnectionSnapshot(
            connection_id,
            connected=session.is_connected,
            status=session.status.value,
            qr_code=session.last_qr_code,
            phone_number=session.phone_number,
            user=session.user,
            reconnect_pending=session.reconnect_pending,
            error=self._last_errors.get(connection_id),
        )

    async def wait_connected(self, connection_id: str, timeout: float) -> bool:
        """Wait until the current session of a connection reports open."""
        session = self.registry.get(connection_id)
        if session is None or session.closed:
            return False
        try:
            await asyncio.wait_for(session.opened.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self.get_live_session(connection_id) is session

    def get_live_session(self, connection_id: str) -> Optional[Session]:
        session = self.registry.get(connection_id)
        if session is None or not session.is_connected:
            return None
        return session

    async def dispatch_event(self, connection_id: str, session_token: str, event: TransportEvent) -> bool:
        """Route an event pushed by the bridge to its session's queue.

        Events for a session that has since been superseded are dropped.
        """
        session = self.registry.get(connection_id)
        if session is None or session.closed or session.token != session_token:
            self.logger.warning(
                "Dropping event for stale session",
                context={"connection_id": connection_id, "event": type(event).__name__},
            )
            return False
        await session.events.put(event)
        return True

    async def keepalive(self) -> int:
        """Restart sessions that dropped and have nothing pending. Returns restarts."""
        restarted = 0
        for connection_id, session in self.registry.snapshot().items():
            self.logger.info(
                "Connection status",
                context={"connection_id": connection_id, "status": session.status.value},
            )
            if session.is_active or session.reconnect_pending or session.closed:
                continue
            # Gave up reconnecting; waits for an explicit start.
            if self._last_errors.get(connection_id) == GAVE_UP:
                continue
            try:
                await self.start(connection_id)
                restarted += 1
            except Exception as e:
                self.logger.error(
                    "Keep-alive restart failed",
                    context={"connection_id": connection_id, "error": str(e)},
                )
        return restarted

    async def shutdown(self) -> None:
        """Drop every socket without logging out; credentials stay for restore."""
        for connection_id, session in self.registry.snapshot().items():
            if self.registry.remove(connection_id, expected=session) is None:
                continue
            await self._retire(session)
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    # Internals

    async def _open_session(
        self,
        connection_id: str,
        credentials: Optional[dict],
        attempts: int,
        predecessor: Optional[Session] = None,
    ) -> Optional[Session]:
        """Register and open a new session.

        With ``predecessor`` (a reconnect), the new session is only registered
        if the predecessor is still the registry entry; returns None otherwise.
        """
        log = self.logger.bind(connection_id=connection_id)
        session = Session(
            connection_id=connection_id,
            events=asyncio.Queue(maxsize=self.event_queue_size),
            reconnect_attempts=attempts,
        )
        if predecessor is not None:
            if predecessor.closed or not self.registry.replace(connection_id, session, expected=predecessor):
                log.info("Reconnect dropped, session was stopped or replaced")
                return None
            superseded = predecessor
        else:
            winner, superseded = self.registry.put_unless(
                connection_id, session, keep=lambda current: current.is_active
            )
            if winner is not session:
                return winner
        if superseded is not None:
            await self._retire(superseded)

        session.worker = asyncio.create_task(self._run_worker(session))
        log.info(
            "Opening session",
            context={"restored": credentials is not None, "attempt": attempts},
        )

        try:
            handle = await self.transport.open(connection_id, credentials, session.events, session_token=session.token)
        except Exception as e:
            log.error("Transport open failed", context={"error": str(e)})
            if not session.closed:
                self._set_status(session, ConnectionStatus.DISCONNECTED)
                self._schedule_reconnect(session)
            return session

        if session.closed:
            # Stopped or superseded while the socket was opening.
            await self._close_handle(handle)
            return session

        session.handle = handle
        return session

    async def _run_worker(self, session: Session) -> None:
        log = self.logger.bind(connection_id=session.connection_id)
        while not session.closed:
            event = await session.events.get()
            try:
                await self._handle_event(session, event)
            except Exception as e:
                log.error(
                    "Event handling failed",
                    context={"event": type(event).__name__, "error": str(e)},
                )
            finally:
                session.events.task_done()

    async def _handle_event(self, session: Session, event: TransportEvent) -> None:
        if session.closed:
            return
        if isinstance(event, QrIssued):
            self._on_qr(session, event)
        elif isinstance(event, Opened):
            self._on_open(session, event)
        elif isinstance(event, Closed):
            self._on_close(session, event)
        elif isinstance(event, CredentialsUpdated):
            self.credentials.write(session.connection_id, event.credentials)
        elif isinstance(event, MessageReceived):
            if self.message_handler is not None:
                await self.message_handler(session.connection_id, event)

    def _on_qr(self, session: Session, event: QrIssued) -> None:
        try:
            session.status = qr_issued(session.status)
        except InvalidTransitionError as e:
            self.logger.warning(str(e), context={"connection_id": session.connection_id})
            return
        session.last_qr_code = render_qr_data_uri(event.qr)
        self.logger.info("QR code issued", context={"connection_id": session.connection_id})

    def _on_open(self, session: Session, event: Opened) -> None:
        try:
            session.status = opened(session.status)
        except InvalidTransitionError as e:
            self.logger.warning(str(e), context={"connection_id": session.connection_id})
            return
        session.last_qr_code = None
        session.phone_number = event.phone_number
        session.user = event.user or ({"name": event.user_name} if event.user_name else None)
        session.reconnect_attempts = 0
        session.cancel_reconnect()
        session.opened.set()
        self._last_errors.pop(session.connection_id, None)
        self.logger.info(
            "Connected",
            context={"connection_id": session.connection_id, "phone_number": event.phone_number},
        )
        self._record_status(
            session.connection_id,
            ConnectionStatus.CONNECTED,
            phone_number=event.phone_number,
            user_name=event.user_name,
        )

    def _on_close(self, session: Session, event: Closed) -> None:
        terminal = is_terminal_close(event.reason_code)
        log = self.logger.bind(connection_id=session.connection_id)
        log.info("Connection closed", context={"reason_code": event.reason_code, "terminal": terminal})

        self._set_status(session, ConnectionStatus.ERROR if terminal else ConnectionStatus.DISCONNECTED)
        session.last_qr_code = None

        if terminal:
            session.cancel_reconnect()
            session.closed = True
            self.registry.remove(session.connection_id, expected=session)
            self._last_errors[session.connection_id] = "logged_out"
            try:
                self.credentials.delete(session.connection_id)
            except OSError as e:
                log.error("Failed to delete credentials", context={"error": str(e)})
            self._record_status(session.connection_id, ConnectionStatus.ERROR)
            return

        self._schedule_reconnect(session)
        self._record_status(session.connection_id, ConnectionStatus.DISCONNECTED)

    def _set_status(self, session: Session, target: ConnectionStatus) -> None:
        try:
            session.status = closed(session.status, terminal=target == ConnectionStatus.ERROR)
        except InvalidTransitionError:
            # Duplicate close, or a close for a session that never opened.
            session.status = target

    def _reconnect_delay(self, attempts: int) -> float:
        return min(self.reconnect_base_delay * (2**attempts), self.reconnect_max_delay)

    def _schedule_reconnect(self, session: Session) -> None:
        """Schedule the single reconnect for this session, replacing any pending one."""
        session.cancel_reconnect()
        log = self.logger.bind(connection_id=session.connection_id)

        if session.reconnect_attempts >= self.max_reconnect_attempts:
            session.status = ConnectionStatus.ERROR
            self._last_errors[session.connection_id] = GAVE_UP
            log.error("Giving up reconnecting", context={"attempts": session.reconnect_attempts})
            self._record_status(session.connection_id, ConnectionStatus.ERROR)
            return

        delay = self._reconnect_delay(session.reconnect_attempts)
        loop = asyncio.get_running_loop()
        session.reconnect_handle = loop.call_later(delay, self._fire_reconnect, session)
        log.info("Reconnect scheduled", context={"delay_seconds": delay, "attempt": session.reconnect_attempts + 1})

    def _fire_reconnect(self, session: Session) -> None:
        session.reconnect_handle = None
        if session.closed or self.registry.get(session.connection_id) is not session:
            return
        task = asyncio.create_task(self._reconnect(session))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _reconnect(self, session: Session) -> None:
        connection_id = session.connection_id
        # stop() may have run between the timer firing and this task starting.
        if session.closed or self.registry.get(connection_id) is not session:
            return
        try:
            credentials = self.credentials.read(connection_id)
        except Exception as e:
            self.logger.error("Reconnect aborted", context={"connection_id": connection_id, "error": str(e)})
            session.status = ConnectionStatus.ERROR
            self._last_errors[connection_id] = "restore_failed"
            return
        await self._open_session(
            connection_id, credentials, attempts=session.reconnect_attempts + 1, predecessor=session
        )

    async def _retire(self, session: Session) -> None:
        session.cancel_reconnect()
        session.closed = True
        self._cancel_worker(session)
        if session.handle is not None:
            await self._close_handle(session.handle)

    async def _close_handle(self, handle) -> None:
        try:
            await self.transport.close(handle)
        except Exception as e:
            self.logger.warning(
                "Transport close failed",
                context={"connection_id": handle.connection_id, "error": str(e)},
            )

    def _cancel_worker(self, session: Session) -> None:
        worker = session.worker
        if worker is None or worker.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if worker is not current:
            worker.cancel()

    def _record_status(
        self,
        connection_id: str,
        status: ConnectionStatus,
        phone_number: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> None:
        """Mirror the connection status into the durable store, best-effort."""
        if self.session_factory is None:
            return
        db = self.session_factory()
        try:
            record = db.get(Connection, connection_id)
            if record is None:
                record = Connection(id=connection_id)
                db.add(record)
            record.status = status.value
            if status == ConnectionStatus.CONNECTED:
                record.phone_number = phone_number
                record.user_name = user_name
            record.updated_at = datetime.now(timezone.utc)
            db.commit()
        except Exception as e:
            db.rollback()
            self.logger.error(
                "Failed to persist connection status",
                context={"connection_id": connection_id, "error": str(e)},
            )
        finally:
            db.close()
