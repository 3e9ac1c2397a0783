"""Async client for the Relay endpoints the bridge depends on."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from ..config import settings

DEFAULT_BASE_URL = "https://api.relay.link"


class RelayProvider:
    """Quote, settlement status and chain listing against api.relay.link.

    Each call opens a short-lived client; HTTP errors propagate as
    ``httpx.HTTPStatusError`` so callers can surface Relay's own message via
    :func:`relay_error_message`.
    """

    name = "relay"
    user_agent = "relaybridge/0.1"

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        status_path: Optional[str] = None,
        timeout_s: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.relay_base_url or DEFAULT_BASE_URL).rstrip("/")
        self.status_path = status_path or settings.relay_status_path
        self.timeout_s = timeout_s if timeout_s is not None else settings.request_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_s,
            transport=self._transport,
            headers={"accept": "application/json", "user-agent": self.user_agent},
        )

    async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        async with self._client() as client:
            response = await client.request(method, path, **kwargs)
        response.raise_for_status()
        return response.json()

    async def quote(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST /quote. With ``useDepositAddress`` the answer carries a deposit address step."""
        return await self._send("POST", "/quote", json=payload)

    async def get_status(self, request_id: str) -> Dict[str, Any]:
        return await self._send("GET", self.status_path, params={"requestId": request_id})

    async def get_chains(self) -> List[Dict[str, Any]]:
        data = await self._send("GET", "/chains")
        if isinstance(data, dict):
            return list(data.get("chains") or [])
        return list(data or [])


def relay_error_message(exc: httpx.HTTPStatusError) -> str:
    """Relay's JSON ``message`` if present, else the (truncated) body or status code."""
    try:
        body = exc.response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    text = (exc.response.text or "").strip()
    return text[:200] if text else f"HTTP {exc.response.status_code}"
