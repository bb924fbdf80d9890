import asyncio
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request

from app.config import Settings
from app.database import SessionLocal
from app.logging_config import get_logger
from app.services.ai_service import build_llm_provider
from app.services.connection_service import ConnectionController
from app.services.credential_store import CredentialStore
from app.services.ingress_service import MessageIngressPipeline
from app.services.llm import LLMProvider
from app.services.session_registry import SessionRegistry
from app.services.transport import BridgeTransport, Transport

keepalive_logger = get_logger("keepalive")


@dataclass
class Gateway:
    """Everything the HTTP layer needs, built once per process."""

    settings: Settings
    session_factory: object
    llm: LLMProvider
    transport: Transport
    registry: SessionRegistry
    credentials: CredentialStore
    controller: ConnectionController
    pipeline: MessageIngressPipeline
    keepalive_task: Optional[asyncio.Task] = field(default=None, repr=False)

    async def startup(self, *, restore: Optional[bool] = None, keepalive: bool = True) -> None:
        if self.settings.restore_on_startup if restore is None else restore:
            await self.controller.restore_all()
        if keepalive and (self.keepalive_task is None or self.keepalive_task.done()):
            self.keepalive_task = asyncio.create_task(self._keepalive_loop())
            keepalive_logger.info("Keep-alive started")

    async def shutdown(self) -> None:
        if self.keepalive_task is not None:
            self.keepalive_task.cancel()
            try:
                await self.keepalive_task
            except asyncio.CancelledError:
                pass
            self.keepalive_task = None
        await self.pipeline.shutdown()
        await self.controller.shutdown()

    async def _keepalive_loop(self) -> None:
        interval_seconds = max(self.settings.keepalive_interval_seconds, 1.0)
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                restarted = await self.controller.keepalive()
                keepalive_logger.info(
                    "Keep-alive sweep",
                    extra={"context": {"sessions": len(self.registry), "restarted": restarted}},
                )
            except asyncio.CancelledError:
                break
            except Exception as exc:
                keepalive_logger.error(
                    "Keep-alive loop failed",
                    extra={"context": {"error": str(exc)}},
                )


def build_gateway(
    settings: Settings,
    *,
    transport: Optional[Transport] = None,
    llm: Optional[LLMProvider] = None,
    session_factory=None,
    credentials: Optional[CredentialStore] = None,
) -> Gateway:
    session_factory = session_factory or SessionLocal
    transport = transport or BridgeTransport(settings.bridge_url, settings.bridge_token)
    llm = llm or build_llm_provider()
    credentials = credentials or CredentialStore(settings.credentials_dir)
    registry = SessionRegistry()

    controller = ConnectionController(
        registry,
        transport,
        credentials,
        session_factory=session_factory,
        reconnect_base_delay=settings.reconnect_base_delay_seconds,
        reconnect_max_delay=settings.reconnect_max_delay_seconds,
        max_reconnect_attempts=settings.max_reconnect_attempts,
        event_queue_size=settings.event_queue_size,
    )
    pipeline = MessageIngressPipeline(
        controller,
        session_factory,
        llm,
        history_window=settings.history_window,
        default_automation_enabled=settings.default_automation_enabled,
    )
    controller.message_handler = pipeline.submit

    return Gateway(
        settings=settings,
        session_factory=session_factory,
        llm=llm,
        transport=transport,
        registry=registry,
        credentials=credentials,
        controller=controller,
        pipeline=pipeline,
    )


def get_gateway(request: Request) -> Gateway:
    """FastAPI dependency: the gateway built at startup."""
    return request.app.state.gateway
