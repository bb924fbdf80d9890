import os
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import init_db
from app.logging_config import get_logger, setup_logging
from app.routers import chats, connect, send, transport_events
from app.services.gateway import Gateway, build_gateway, get_gateway

setup_logging(settings.log_level)
logger = get_logger("main")

app = FastAPI(
    title="ZapGate API",
    description="WhatsApp connection gateway with training-driven auto replies",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(connect.router)
app.include_router(send.router)
app.include_router(chats.router)
app.include_router(transport_events.router)


def _background_enabled() -> bool:
    return not os.environ.get("PYTEST_CURRENT_TEST")


@app.on_event("startup")
async def start_gateway() -> None:
    init_db()
    if getattr(app.state, "gateway", None) is None:
        app.state.gateway = build_gateway(settings)
    enabled = _background_enabled()
    await app.state.gateway.startup(restore=settings.restore_on_startup and enabled, keepalive=enabled)
    logger.info("Gateway started")


@app.on_event("shutdown")
async def stop_gateway() -> None:
    gateway = getattr(app.state, "gateway", None)
    if gateway is None:
        return
    await gateway.shutdown()
    logger.info("Gateway stopped")


@app.get("/health")
async def health(gateway: Gateway = Depends(get_gateway)):
    sessions = gateway.registry.snapshot()
    connections = {
        connection_id: {
            "status": session.status.value,
            "connected": session.is_connected,
            "phoneNumber": session.phone_number,
            "user": session.user,
        }
        for connection_id, session in sessions.items()
    }
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "sessions": {
            "total": len(connections),
            "active": sum(1 for item in connections.values() if item["connected"]),
            "connections": connections,
        },
    }
