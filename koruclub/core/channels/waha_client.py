"""WAHA (WhatsApp HTTP API) client for KoruClub."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger


def extract_message_id(response: dict[str, Any]) -> str | None:
    """Pull the message id out of a WAHA send response.

    WAHA engines disagree on the shape: ``{"id": "true_123@g.us_ABC"}`` or
    ``{"id": {"_serialized": "...", ...}}``.
    """
    raw = response.get("id")
    if isinstance(raw, dict):
        raw = raw.get("_serialized")
    return raw if isinstance(raw, str) and raw else None


class WAHAClient:
    """Async client for the WAHA REST API.

    Parameters
    ----------
    base_url : str
        WAHA server URL (e.g. "http://localhost:3000").
    session : str
        WAHA session name.
    api_key : str
        Sent as ``X-Api-Key`` when set.
    """

    def __init__(
        self,
        base_url: str,
        session: str = "default",
        api_key: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.api_key = api_key
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers=self._headers(),
            transport=self._transport,
        )

    async def send_text(self, chat_id: str, text: str) -> dict[str, Any]:
        """Send a text message; returns WAHA's JSON response.

        Raises ``httpx.HTTPStatusError`` on a non-2xx answer.
        """
        payload: dict[str, Any] = {
            "session": self.session,
            "chatId": chat_id,
            "text": text,
        }
        async with self._client(30.0) as client:
            resp = await client.post(f"{self.base_url}/api/sendText", json=payload)
            if resp.status_code not in (200, 201):
                logger.warning(f"WAHA sendText failed ({resp.status_code}): {resp.text[:200]}")
            resp.raise_for_status()
            return resp.json()

    async def send_reaction(self, message_id: str, reaction: str) -> None:
        payload = {"session": self.session, "messageId": message_id, "reaction": reaction}
        async with self._client(10.0) as client:
            resp = await client.put(f"{self.base_url}/api/reaction", json=payload)
            resp.raise_for_status()

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key
        return headers
