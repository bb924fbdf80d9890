import asyncio
from typing import Optional

import httpx

from app.logging_config import get_logger
from app.services.errors import GatewayError, NotConnectedError, SendFailedError, TransportOpenError
from app.services.transport.base import Transport, TransportEvent, TransportHandle, to_jid

logger = get_logger("transport.bridge")

# Bridge answers these when it has no live socket for the session token.
NOT_CONNECTED_STATUSES = {404, 409, 410}


class BridgeTransport(Transport):
    """Messaging-network client running as an HTTP sidecar (the bridge).

    The bridge owns the actual sockets. Connection and message events come back
    through ``POST /transport/events`` and are routed to the live session by
    ``ConnectionController.dispatch_event``, so the queue given to ``open`` is
    not used here.
    """

    def __init__(self, base_url: str, token: Optional[str] = None, timeout_seconds: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.request(method, f"{self.base_url}{path}", headers=self._headers(), json=json)

    async def open(
        self,
        connection_id: str,
        credentials: Optional[dict],
        events: "asyncio.Queue[TransportEvent]",
        *,
        session_token: str,
    ) -> TransportHandle:
        payload = {"sessionToken": session_token, "credentials": credentials}
        try:
            response = await self._request("POST", f"/sessions/{connection_id}", json=payload)
        except httpx.HTTPError as e:
            raise TransportOpenError(f"Bridge unreachable: {e}", connection_id) from e

        logger.info(f"Bridge open: connection={connection_id}, status={response.status_code}")
        if response.status_code >= 300:
            raise TransportOpenError(
                f"Bridge open failed: {response.status_code} - {response.text[:200]}",
                connection_id,
            )
        return TransportHandle(connection_id=connection_id, session_token=session_token)

    async def send(self, handle: TransportHandle, recipient: str, text: str) -> Optional[str]:
        payload = {"sessionToken": handle.session_token, "jid": to_jid(recipient), "text": text}
        try:
            response = await self._request("POST", f"/sessions/{handle.connection_id}/messages", json=payload)
        except httpx.HTTPError as e:
            raise SendFailedError(f"Bridge unreachable: {e}", handle.connection_id) from e

        if response.status_code in NOT_CONNECTED_STATUSES:
            raise NotConnectedError(f"Bridge has no live socket ({response.status_code})", handle.connection_id)
        if response.status_code >= 300:
            raise SendFailedError(
                f"Bridge send failed: {response.status_code} - {response.text[:200]}",
                handle.connection_id,
            )

        try:
            data = response.json()
        except ValueError:
            return None
        return data.get("id") if isinstance(data, dict) else None

    async def logout(self, handle: TransportHandle) -> None:
        response = await self._request(
            "DELETE", f"/sessions/{handle.connection_id}", json={"sessionToken": handle.session_token}
        )
        if response.status_code >= 300 and response.status_code not in NOT_CONNECTED_STATUSES:
            raise GatewayError(f"Bridge logout failed: {response.status_code}", handle.connection_id)

    async def close(self, handle: TransportHandle) -> None:
        try:
            await self._request(
                "POST",
                f"/sessions/{handle.connection_id}/close",
                json={"sessionToken": handle.session_token},
            )
        except httpx.HTTPError as e:
            logger.warning(f"Bridge close failed for {handle.connection_id}: {e}")
