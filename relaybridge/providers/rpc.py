"""JSON-RPC balance reads against public chain endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from eth_utils import is_hex_address

from ..config import settings
from ..core.bridge.amounts import format_units
from ..core.bridge.capabilities import BalanceObserver
from ..core.bridge.chain_registry import ChainRegistry, get_registry
from ..core.bridge.constants import ERC20_BALANCE_OF_SELECTOR, NATIVE_PLACEHOLDER


class RpcError(Exception):
    """The node answered with a JSON-RPC error object."""


def _encode_balance_of(owner: str) -> str:
    return ERC20_BALANCE_OF_SELECTOR + owner.lower().replace("0x", "").zfill(64)


class RpcBalanceObserver(BalanceObserver):
    """Balance Observer backed by ``eth_call balanceOf`` / ``eth_getBalance``."""

    name = "rpc"

    def __init__(
        self,
        registry: Optional[ChainRegistry] = None,
        *,
        timeout_s: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._registry = registry or get_registry()
        self.timeout_s = timeout_s if timeout_s is not None else settings.request_timeout_seconds
        self._transport = transport
        self._logger = logger or logging.getLogger(__name__)
        self._request_id = 0

    async def _call(self, rpc_url: str, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": self._request_id}
        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
            response = await client.post(rpc_url, json=payload, headers={"Content-Type": "application/json"})
            response.raise_for_status()
            data: Dict[str, Any] = response.json()
        if data.get("error"):
            raise RpcError(f"{method} failed: {data['error']}")
        return data.get("result")

    async def get_token_balance(self, chain_id: int, token_address: str, owner: str) -> str:
        if not is_hex_address(owner):
            raise ValueError(f"Invalid owner address: {owner!r}")

        chain = self._registry.get(chain_id)
        if token_address.lower() == NATIVE_PLACEHOLDER:
            result = await self._call(chain.rpc_url, "eth_getBalance", [owner, "latest"])
            decimals = chain.native_decimals
        else:
            call = {"to": token_address, "data": _encode_balance_of(owner)}
            result = await self._call(chain.rpc_url, "eth_call", [call, "latest"])
            decimals = self._decimals_for(chain_id, token_address)

        raw = int(result, 16) if result and result != "0x" else 0
        return format_units(raw, decimals, places=decimals)

    def _decimals_for(self, chain_id: int, token_address: str) -> int:
        chain = self._registry.get(chain_id)
        for token in chain.tokens.values():
            if token.address.lower() == token_address.lower():
                return token.decimals
        self._logger.warning("Unknown token %s on chain %s; assuming 18 decimals", token_address, chain_id)
        return 18
