import asyncio
import json
from unittest.mock import patch

import httpx
import pytest

from app.services.errors import GatewayError, NotConnectedError, SendFailedError, TransportOpenError
from app.services.transport import BridgeTransport, TransportHandle

HANDLE = TransportHandle(connection_id="shop1", session_token="tok")


def bridge_responding(handler):
    real_client = httpx.AsyncClient

    def factory(*args, **kwargs):
        return real_client(*args, transport=httpx.MockTransport(handler), **kwargs)

    return patch("app.services.transport.bridge.httpx.AsyncClient", side_effect=factory)


class TestBridgeOpen:
    def test_open_posts_session(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201, json={})

        transport = BridgeTransport("http://bridge:3001/", token="secret")
        with bridge_responding(handler):
            handle = asyncio.run(transport.open("shop1", {"me": "x"}, asyncio.Queue(), session_token="tok"))

        assert handle == HANDLE
        [request] = requests
        assert request.url == "http://bridge:3001/sessions/shop1"
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {"sessionToken": "tok", "credentials": {"me": "x"}}

    def test_open_failure(self):
        transport = BridgeTransport("http://bridge:3001")
        with bridge_responding(lambda request: httpx.Response(500, text="boom")):
            with pytest.raises(TransportOpenError):
                asyncio.run(transport.open("shop1", None, asyncio.Queue(), session_token="tok"))

    def test_bridge_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        transport = BridgeTransport("http://bridge:3001")
        with bridge_responding(handler):
            with pytest.raises(TransportOpenError):
                asyncio.run(transport.open("shop1", None, asyncio.Queue(), session_token="tok"))


class TestBridgeSend:
    def test_send_returns_message_id(self):
        payloads = []

        def handler(request):
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "3EB0ABC"})

        transport = BridgeTransport("http://bridge:3001")
        with bridge_responding(handler):
            message_id = asyncio.run(transport.send(HANDLE, "5511988887777", "oi"))

        assert message_id == "3EB0ABC"
        assert payloads == [{"sessionToken": "tok", "jid": "5511988887777@s.whatsapp.net", "text": "oi"}]

    @pytest.mark.parametrize("status_code", [404, 409, 410])
    def test_no_live_socket(self, status_code):
        transport = BridgeTransport("http://bridge:3001")
        with bridge_responding(lambda request: httpx.Response(status_code)):
            with pytest.raises(NotConnectedError):
                asyncio.run(transport.send(HANDLE, "5511", "oi"))

    def test_other_failure(self):
        transport = BridgeTransport("http://bridge:3001")
        with bridge_responding(lambda request: httpx.Response(502, text="bad gateway")):
            with pytest.raises(SendFailedError):
                asyncio.run(transport.send(HANDLE, "5511", "oi"))

    def test_non_json_body(self):
        transport = BridgeTransport("http://bridge:3001")
        with bridge_responding(lambda request: httpx.Response(200, text="ok")):
            assert asyncio.run(transport.send(HANDLE, "5511", "oi")) is None


class TestBridgeLogout:
    def test_logout_failure(self):
        transport = BridgeTransport("http://bridge:3001")
        with bridge_responding(lambda request: httpx.Response(500)):
            with pytest.raises(GatewayError):
                asyncio.run(transport.logout(HANDLE))

    def test_logout_of_gone_session_is_fine(self):
        transport = BridgeTransport("http://bridge:3001")
        with bridge_responding(lambda request: httpx.Response(404)):
            asyncio.run(transport.logout(HANDLE))

    def test_close_swallows_network_errors(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        transport = BridgeTransport("http://bridge:3001")
        with bridge_responding(handler):
            asyncio.run(transport.close(HANDLE))
