from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.main import app
from app.models import Conversation
from app.services.conversation_service import get_or_create_conversation
from app.services.errors import SendFailedError


@pytest.fixture
def client(gateway, session_factory):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.state.gateway = gateway
    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.gateway = None


def wait_connected(client, gateway, connection_id="shop1"):
    return client.portal.call(gateway.controller.wait_connected, connection_id, 1.0)


class TestConnect:
    def test_connect_starts_session(self, client, gateway, transport):
        response = client.post("/connect", json={"connectionId": "shop1"})

        assert response.status_code == 200
        data = response.json()
        assert data["connectionId"] == "shop1"
        assert data["status"] in ("connecting", "connected")
        assert transport.opens == [("shop1", None)]

    def test_status_after_open(self, client, gateway):
        client.post("/connect", json={"connectionId": "shop1"})
        assert wait_connected(client, gateway)

        data = client.get("/connect", params={"connectionId": "shop1"}).json()
        assert data["connected"] is True
        assert data["status"] == "connected"
        assert data["phoneNumber"] == "5511900000000"
        assert data["qrCode"] is None

    def test_status_unknown_connection(self, client):
        data = client.get("/connect", params={"connectionId": "nope"}).json()
        assert data == {
            "connectionId": "nope",
            "connected": False,
            "status": "disconnected",
            "qrCode": None,
            "phoneNumber": None,
            "user": None,
            "reconnectPending": False,
            "error": None,
        }

    def test_invalid_connection_id(self, client):
        response = client.post("/connect", json={"connectionId": "../etc"})
        assert response.status_code == 400

    def test_missing_connection_id(self, client):
        assert client.post("/connect", json={}).status_code == 422
        assert client.get("/connect").status_code == 422

    def test_disconnect(self, client, gateway, transport, credential_store):
        credential_store.write("shop1", {"me": "x"})
        client.post("/connect", json={"connectionId": "shop1"})
        assert wait_connected(client, gateway)

        response = client.delete("/connect", params={"connectionId": "shop1"})
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert transport.logouts == ["shop1"]
        assert credential_store.read("shop1") is None

        again = client.delete("/connect", params={"connectionId": "shop1"})
        assert again.status_code == 200

    def test_list_sessions(self, client, credential_store):
        credential_store.write("loja-a", {})
        credential_store.write("loja-b", {})

        data = client.get("/connect/sessions").json()
        assert data == {"sessions": ["loja-a", "loja-b"], "total": 2}


class TestSend:
    def test_not_connected_without_restore(self, client):
        response = client.post(
            "/send",
            json={"connectionId": "shop1", "phoneNumber": "5511988887777", "message": "oi", "restore": False},
        )
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "not_connected"

    def test_send_restores_connection(self, client, transport, credential_store):
        credential_store.write("shop1", {"me": "x"})

        response = client.post(
            "/send",
            json={"connectionId": "shop1", "phoneNumber": "5511988887777", "message": "oi"},
        )
        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Message sent", "messageId": "msg-1"}
        assert transport.sends == [("shop1", "5511988887777", "oi")]

    def test_send_failure(self, client, gateway, transport):
        client.post("/connect", json={"connectionId": "shop1"})
        assert wait_connected(client, gateway)
        transport.send_error = SendFailedError("bridge 500", "shop1")

        response = client.post(
            "/send",
            json={"connectionId": "shop1", "phoneNumber": "5511988887777", "message": "oi"},
        )
        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "send_failed"

    def test_missing_fields(self, client):
        assert client.post("/send", json={"connectionId": "shop1"}).status_code == 422


class TestTransportEvents:
    def test_stale_token_not_accepted(self, client):
        client.post("/connect", json={"connectionId": "shop1"})
        response = client.post(
            "/transport/events",
            json={"connectionId": "shop1", "sessionToken": "stale", "type": "open"},
        )
        assert response.status_code == 200
        assert response.json() == {"accepted": False}

    def test_event_routed_to_session(self, client, gateway, make_transport):
        gateway.controller.transport = make_transport(auto_open=False)
        client.post("/connect", json={"connectionId": "shop1"})
        token = gateway.registry.get("shop1").token

        response = client.post(
            "/transport/events",
            json={"connectionId": "shop1", "sessionToken": token, "type": "open", "phoneNumber": "5511"},
        )
        assert response.json() == {"accepted": True}
        assert wait_connected(client, gateway)

    def test_qr_event_without_payload(self, client):
        response = client.post(
            "/transport/events",
            json={"connectionId": "shop1", "sessionToken": "t", "type": "qr"},
        )
        assert response.status_code == 400

    def test_bridge_token_required(self, client, gateway):
        gateway.settings.bridge_token = "secret"
        payload = {"connectionId": "shop1", "sessionToken": "t", "type": "open"}

        assert client.post("/transport/events", json=payload).status_code == 401
        authorized = client.post("/transport/events", json=payload, headers={"Authorization": "Bearer secret"})
        assert authorized.status_code == 200


class TestChats:
    def _conversation(self, session_factory, training_id=None):
        db = session_factory()
        conversation, _ = get_or_create_conversation(db, "shop1", "5511988887777")
        conversation.active_training_id = training_id
        conversation.active_training_started_at = datetime(2026, 3, 1, tzinfo=timezone.utc) if training_id else None
        db.commit()
        db.close()

    def test_active_training(self, client, session_factory, add_rule):
        add_rule(id="vendas", name="Vendas", activation_mode="always", priority=3)
        self._conversation(session_factory, training_id="vendas")

        data = client.get(
            "/chats/active-training", params={"connectionId": "shop1", "phoneNumber": "5511988887777"}
        ).json()
        assert data["activeTraining"]["id"] == "vendas"
        assert data["activeTraining"]["name"] == "Vendas"
        assert data["activeTraining"]["activationMode"] == "always"

    def test_dangling_training_cleared(self, client, session_factory):
        self._conversation(session_factory, training_id="deleted-rule")

        data = client.get(
            "/chats/active-training", params={"connectionId": "shop1", "phoneNumber": "5511988887777"}
        ).json()
        assert data["activeTraining"] is None

        db = session_factory()
        assert db.query(Conversation).one().active_training_id is None
        db.close()

    def test_unknown_chat(self, client):
        data = client.get("/chats/active-training", params={"connectionId": "shop1", "phoneNumber": "1"}).json()
        assert data["activeTraining"] is None

    def test_reset(self, client, session_factory, add_rule):
        add_rule(id="vendas", activation_mode="always")
        self._conversation(session_factory, training_id="vendas")

        response = client.post("/chats/reset", json={"connectionId": "shop1", "phoneNumber": "5511988887777"})
        assert response.json()["cleared"] is True

        again = client.post("/chats/reset", json={"connectionId": "shop1", "phoneNumber": "5511988887777"})
        assert again.json()["cleared"] is False


class TestHealth:
    def test_health_lists_connections(self, client, gateway):
        client.post("/connect", json={"connectionId": "shop1"})
        assert wait_connected(client, gateway)

        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["sessions"]["total"] == 1
        assert data["sessions"]["active"] == 1
        assert data["sessions"]["connections"]["shop1"]["phoneNumber"] == "5511900000000"
