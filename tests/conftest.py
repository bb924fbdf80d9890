import asyncio
import itertools
import os
from typing import List, Optional

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

import pytest
from sqlalchemy.orm import sessionmaker

from app.config import Settings
from app.database import build_engine, init_db
from app.models import TrainingRule
from app.services.credential_store import CredentialStore
from app.services.errors import NotConnectedError
from app.services.gateway import build_gateway
from app.services.llm import LLMError, LLMProvider, LLMResponse
from app.services.transport.base import Opened, Transport, TransportHandle


class FakeTransport(Transport):
    """In-memory transport: records calls and lets tests push events."""

    def __init__(self, auto_open: bool = False, phone_number: str = "5511900000000"):
        self.auto_open = auto_open
        self.phone_number = phone_number
        self.opens: list[tuple[str, Optional[dict]]] = []
        self.sends: list[tuple[str, str, str]] = []
        self.logouts: list[str] = []
        self.closes: list[str] = []
        self.queues: dict[str, asyncio.Queue] = {}
        self.fail_open: set[str] = set()
        self.send_error: Optional[Exception] = None
        self.logout_error: Optional[Exception] = None
        self._ids = itertools.count(1)

    async def open(self, connection_id, credentials, events, *, session_token):
        self.opens.append((connection_id, credentials))
        if connection_id in self.fail_open:
            raise ConnectionError(f"cannot open {connection_id}")
        self.queues[connection_id] = events
        if self.auto_open:
            events.put_nowait(Opened(phone_number=self.phone_number, user_name="Loja"))
        return TransportHandle(connection_id=connection_id, session_token=session_token)

    async def send(self, handle, recipient, text):
        if self.send_error is not None:
            raise self.send_error
        if handle.connection_id not in self.queues:
            raise NotConnectedError("no socket", handle.connection_id)
        self.sends.append((handle.connection_id, recipient, text))
        return f"msg-{next(self._ids)}"

    async def logout(self, handle):
        self.logouts.append(handle.connection_id)
        if self.logout_error is not None:
            raise self.logout_error

    async def close(self, handle):
        self.closes.append(handle.connection_id)

    def emit(self, connection_id, event):
        self.queues[connection_id].put_nowait(event)


class FakeLLM(LLMProvider):
    def __init__(self, reply: str = "Olá! Qual o número do seu pedido?", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[list] = []

    async def generate(self, messages, model=None, temperature=0.7, max_tokens=500):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return LLMResponse(content=self.reply, model=model or "fake")


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'zapgate.db'}")
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def credential_store(tmp_path):
    return CredentialStore(tmp_path / "sessions")


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def transport():
    return FakeTransport(auto_open=True)


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        database_url="sqlite://",
        credentials_dir=str(tmp_path / "sessions"),
        restore_on_startup=False,
        send_restore_timeout_seconds=1.0,
    )


@pytest.fixture
def gateway(test_settings, transport, llm, session_factory, credential_store):
    return build_gateway(
        test_settings,
        transport=transport,
        llm=llm,
        session_factory=session_factory,
        credentials=credential_store,
    )


@pytest.fixture
def add_rule(db):
    counter = itertools.count(1)

    def _add_rule(connection_id="shop1", **fields):
        fields.setdefault("id", f"rule-{next(counter)}")
        fields.setdefault("name", fields["id"])
        rule = TrainingRule(connection_id=connection_id, **fields)
        db.add(rule)
        db.commit()
        return rule

    return _add_rule


@pytest.fixture
def mock_llm_error():
    return FakeLLM(error=LLMError("boom"))
