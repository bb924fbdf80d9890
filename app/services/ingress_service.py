"""Inbound message processing: persist, pick a training, reply."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from app.logging_config import LoggerAdapter, bind_logger
from app.models import Conversation
from app.services.ai_service import generate_reply
from app.services.connection_service import ConnectionController
from app.services.conversation_service import (
    apply_sticky_state,
    get_or_create_conversation,
    normalize_contact,
    record_activity,
    sticky_state_of,
)
from app.services.llm import LLMProvider
from app.services.message_service import (
    INBOUND,
    OUTBOUND,
    find_outbound_by_external_id,
    get_recent_history,
    save_message,
)
from app.services.outbound_service import send_text
from app.services.training_engine import MatchOutcome, resolve
from app.services.training_service import load_active_rules
from app.services.transport.base import MessageReceived, contact_from_jid

IGNORED_JID_SUFFIXES = ("@broadcast", "@newsletter")


class IngressOutcome(str, Enum):
    IGNORED = "ignored"
    ECHO = "echo"
    STORED = "stored"
    AUTOMATION_DISABLED = "automation_disabled"
    NO_RULE = "no_rule"
    EXITED = "exited"
    REPLIED = "replied"
    REPLY_FAILED = "reply_failed"
    LLM_FAILED = "llm_failed"


@dataclass
class IngressResult:
    outcome: IngressOutcome
    conversation_id: Optional[UUID] = None
    training_id: Optional[str] = None
    reply: Optional[str] = None


def is_user_message(event: MessageReceived) -> bool:
    """Skip status broadcasts and events without text."""
    if not event.remote_jid or event.remote_jid.endswith(IGNORED_JID_SUFFIXES):
        return False
    return bool((event.text or "").strip())


class MessageIngressPipeline:
    """Handles MessageReceived events of every connection.

    Messages of one conversation are processed strictly in arrival order
    (one lock per connection + contact); other conversations run in
    parallel.
    """

    def __init__(
        self,
        controller: ConnectionController,
        session_factory,
        llm: LLMProvider,
        *,
        history_window: int = 10,
        default_automation_enabled: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[LoggerAdapter] = None,
    ):
        self.controller = controller
        self.session_factory = session_factory
        self.llm = llm
        self.history_window = history_window
        self.default_automation_enabled = default_automation_enabled
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logger or bind_logger("ingress")
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._pending: dict[tuple[str, str], int] = {}
        self._tasks: set[asyncio.Task] = set()

    async def submit(self, connection_id: str, event: MessageReceived) -> None:
        """Queue an event behind earlier messages of the same conversation."""
        if not is_user_message(event):
            return
        key = (connection_id, normalize_contact(contact_from_jid(event.remote_jid)))
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._pending[key] = self._pending.get(key, 0) + 1

        task = asyncio.create_task(self._run(key, lock, connection_id, event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, key: tuple[str, str], lock: asyncio.Lock, connection_id: str, event: MessageReceived) -> None:
        try:
            async with lock:
                await self.process(connection_id, event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(
                "Inbound message processing failed",
                context={"connection_id": connection_id, "message_id": event.message_id, "error": str(e)},
                exc_info=True,
            )
        finally:
            self._pending[key] -= 1
            if self._pending[key] <= 0:
                self._pending.pop(key, None)
                self._locks.pop(key, None)

    async def drain(self) -> None:
        """Wait until every submitted message has been processed."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()

    async def process(self, connection_id: str, event: MessageReceived) -> IngressResult:
        """Run one inbound event through the pipeline."""
        if not is_user_message(event):
            return IngressResult(IngressOutcome.IGNORED)

        contact = contact_from_jid(event.remote_jid)
        text = event.text.strip()
        log = self.logger.bind(connection_id=connection_id, contact=contact)

        db = self.session_factory()
        try:
            if event.from_me and find_outbound_by_external_id(db, connection_id, event.message_id):
                log.debug("Ignoring echo of our own send", context={"message_id": event.message_id})
                return IngressResult(IngressOutcome.ECHO)

            conversation, created = get_or_create_conversation(
                db,
                connection_id,
                contact,
                display_name=None if event.from_me else event.push_name,
                automation_enabled=self.default_automation_enabled,
            )
            if created:
                log.info("Conversation created", context={"conversation_id": str(conversation.id)})

            # Inactivity is measured from the message before this one.
            previous_activity = conversation.last_message_at
            now = self.clock()

            message = save_message(
                db,
                conversation.id,
                connection_id,
                OUTBOUND if event.from_me else INBOUND,
                text,
                external_id=event.message_id,
                created_at=now,
            )
            record_activity(
                db,
                conversation,
                text,
                inbound=not event.from_me,
                display_name=None if event.from_me else event.push_name,
                at=now,
            )
            db.commit()

            if event.from_me:
                return IngressResult(IngressOutcome.STORED, conversation.id)
            if not conversation.automation_enabled:
                return IngressResult(IngressOutcome.AUTOMATION_DISABLED, conversation.id)

            rules = load_active_rules(db, connection_id)
            decision = resolve(rules, sticky_state_of(conversation, previous_activity), text, now)
            if decision.dropped:
                log.info(
                    "Training dropped",
                    context={"training_id": conversation.active_training_id, "reason": decision.dropped},
                )
            if decision.outcome == MatchOutcome.ACTIVATED:
                log.info(
                    "Training activated",
                    context={"training_id": decision.rule.id, "keyword": decision.matched_keyword},
                )
            self._persist_sticky_state(db, conversation, decision.state, log)

            if decision.outcome == MatchOutcome.EXITED:
                if decision.exit_message:
                    await self._reply(db, conversation, connection_id, contact, decision.exit_message, log)
                return IngressResult(
                    IngressOutcome.EXITED,
                    conversation.id,
                    training_id=decision.rule.id,
                    reply=decision.exit_message,
                )

            if decision.rule is None:
                return IngressResult(IngressOutcome.NO_RULE, conversation.id)

            history = get_recent_history(db, conversation.id, limit=self.history_window, exclude_id=message.id)
            reply = await generate_reply(
                self.llm, decision.rule, history, text, history_window=self.history_window
            )
            if not reply.ok:
                return IngressResult(IngressOutcome.LLM_FAILED, conversation.id, training_id=decision.rule.id)

            sent = await self._reply(db, conversation, connection_id, contact, reply.value, log)
            return IngressResult(
                IngressOutcome.REPLIED if sent else IngressOutcome.REPLY_FAILED,
                conversation.id,
                training_id=decision.rule.id,
                reply=reply.value,
            )
        finally:
            db.close()

    def _persist_sticky_state(self, db, conversation: Conversation, state, log: LoggerAdapter) -> None:
        try:
            if apply_sticky_state(db, conversation, state):
                db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            log.error("Failed to persist active training", context={"error": str(e)})

    async def _reply(
        self,
        db,
        conversation: Conversation,
        connection_id: str,
        contact: str,
        text: str,
        log: LoggerAdapter,
    ) -> bool:
        """Send text to the contact and store it as an outbound message."""
        result = await send_text(self.controller, connection_id, contact, text)
        if not result.ok:
            log.error("Reply not sent", context={"error": result.error, "code": result.error_code})

        try:
            save_message(
                db,
                conversation.id,
                connection_id,
                OUTBOUND,
                text,
                delivery_status="sent" if result.ok else "failed",
                external_id=result.value if result.ok else None,
                created_at=self.clock(),
            )
            if result.ok:
                record_activity(db, conversation, text, at=self.clock())
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            log.error("Failed to persist reply", context={"error": str(e)})
        return result.ok
