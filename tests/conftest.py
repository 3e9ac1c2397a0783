"""Shared fakes for the bridge tests: wallet, balances, Relay and a settable clock."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest

from relaybridge.core.bridge.capabilities import BalanceObserver, WalletCapability
from relaybridge.core.bridge.chain_registry import ChainRegistry
from relaybridge.core.bridge.models import BridgeRoute, BridgeTimings
from relaybridge.core.bridge.orchestrator import BridgeOrchestrator

BASE = 8453
ARBITRUM = 42161
ETHEREUM = 1

BASE_USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
ARBITRUM_USDC = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"

USER = "0x50ac5cfcc81bb0872e85255d7079f8a529345d16"


def deposit_address(n: int) -> str:
    return f"0xabc{n:037x}"


def relay_quote_response(
    amount: str,
    *,
    request_id: str = "0xreq1",
    address: Optional[str] = None,
    gas_usd: str = "0.30",
    relayer_usd: str = "0.20",
    time_estimate: Any = 12,
) -> Dict[str, Any]:
    """Shape of a Relay ``/quote`` answer for a deposit-address request."""
    return {
        "steps": [
            {
                "id": "deposit",
                "action": "Confirm transaction in your wallet",
                "kind": "transaction",
                "requestId": request_id,
                "depositAddress": address or deposit_address(1),
                "items": [],
            }
        ],
        "fees": {
            "gas": {"amount": "1000", "amountUsd": gas_usd},
            "relayer": {"amount": "2000", "amountUsd": relayer_usd},
            "app": {"amount": "0", "amountUsd": "0"},
        },
        "details": {
            "currencyIn": {"amount": amount},
            "currencyOut": {"amount": str(int(amount) - 500000)},
            "timeEstimate": time_estimate,
        },
    }


class WalletError(Exception):
    """EIP-1193 style provider error."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


# =============================================================================
# Fakes
# =============================================================================

class FakeWallet(WalletCapability):
    """Scriptable wallet.

    switch_mode:
        ok      - moves to the requested chain (and announces it when events are on)
        noop    - reports success but stays put
        reject  - user declines the prompt (code 4001)
        fail    - provider error
    """

    def __init__(
        self,
        chain_id: int = BASE,
        *,
        address: str = USER,
        switch_mode: str = "ok",
        events: bool = False,
        send_error: Optional[Exception] = None,
    ):
        self._address = address
        self.chain_id = chain_id
        self.switch_mode = switch_mode
        self.events = events
        self.send_error = send_error
        self.scripted_chains: List[int] = []
        self.switch_requests: List[int] = []
        self.sent: List[Dict[str, Any]] = []
        self.chain_reads = 0
        self.send_gate: Optional[asyncio.Event] = None
        self._listeners: List[Callable[[int], None]] = []
        self._tx_counter = 0

    @property
    def address(self) -> str:
        return self._address

    async def get_active_chain_id(self) -> int:
        self.chain_reads += 1
        if self.scripted_chains:
            return self.scripted_chains.pop(0)
        return self.chain_id

    async def request_chain_switch(self, chain_id: int) -> None:
        self.switch_requests.append(chain_id)
        if self.switch_mode == "reject":
            raise WalletError("User rejected the request.", code=4001)
        if self.switch_mode == "fail":
            raise WalletError("Internal JSON-RPC error.", code=-32603)
        if self.switch_mode == "ok":
            self.emit_chain_changed(chain_id)

    async def send_transaction(self, to: str, data: str, value: int = 0) -> str:
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.send_error is not None:
            raise self.send_error
        self._tx_counter += 1
        self.sent.append({"to": to, "data": data, "value": value, "chain_id": self.chain_id})
        return "0x" + f"{self._tx_counter:064x}"

    def subscribe_chain_changed(self, callback):
        if not self.events:
            return None
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def emit_chain_changed(self, chain_id: int) -> None:
        self.chain_id = chain_id
        for listener in list(self._listeners):
            listener(chain_id)


class FakeBalances(BalanceObserver):
    def __init__(self, balances: Optional[Dict[int, str]] = None, *, error: Optional[Exception] = None):
        self.balances = balances if balances is not None else {BASE: "100", ARBITRUM: "0"}
        self.error = error
        self.calls: List[tuple] = []

    async def get_token_balance(self, chain_id: int, token_address: str, owner: str) -> str:
        self.calls.append((chain_id, token_address, owner))
        if self.error is not None:
            raise self.error
        return self.balances.get(chain_id, "0")


class FakeRelay:
    """In-memory stand-in for :class:`RelayProvider`.

    ``delays`` maps a base-unit amount string to seconds before its quote
    answers. ``statuses`` is consumed one per status request; the last entry
    repeats. Exceptions in either list are raised instead of returned.
    """

    def __init__(
        self,
        *,
        statuses: Optional[List[Any]] = None,
        delays: Optional[Dict[str, float]] = None,
        quote_errors: Optional[List[Exception]] = None,
    ):
        self.statuses = list(statuses or ["success"])
        self.delays = delays or {}
        self.quote_errors = list(quote_errors or [])
        self.quote_calls: List[Dict[str, Any]] = []
        self.status_calls: List[str] = []
        self.chains: List[Dict[str, Any]] = []

    async def quote(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.quote_calls.append(payload)
        n = len(self.quote_calls)
        delay = self.delays.get(payload["amount"], 0)
        if delay:
            await asyncio.sleep(delay)
        if self.quote_errors:
            raise self.quote_errors.pop(0)
        return relay_quote_response(payload["amount"], request_id=f"0xreq{n}", address=deposit_address(n))

    async def get_status(self, request_id: str) -> Dict[str, Any]:
        self.status_calls.append(request_id)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return {
            "status": status,
            "inTxHashes": ["0x" + "1" * 64],
            "txHashes": {"destination": "0x" + "d" * 64} if status == "success" else {},
        }

    async def get_chains(self) -> List[Dict[str, Any]]:
        return self.chains


class MutableClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# =============================================================================
# Fixtures
# =============================================================================

FAST_TIMINGS = BridgeTimings(
    quote_ttl=timedelta(seconds=30),
    debounce_seconds=0,
    poll_interval_seconds=0,
    poll_max_attempts=5,
    switch_settle_seconds=0,
    switch_event_timeout_seconds=0.05,
    balance_refresh_delay_seconds=0,
)


@pytest.fixture
def registry() -> ChainRegistry:
    return ChainRegistry()


@pytest.fixture
def wallet() -> FakeWallet:
    return FakeWallet()


@pytest.fixture
def balances() -> FakeBalances:
    return FakeBalances()


@pytest.fixture
def relay() -> FakeRelay:
    return FakeRelay(statuses=["pending", "success"])


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def route() -> BridgeRoute:
    return BridgeRoute(source_chain_id=BASE, destination_chain_id=ARBITRUM)


@pytest.fixture
def make_orchestrator(route, wallet, balances, relay, clock, registry):
    """Factory building an orchestrator wired to the fakes with zero-delay timings."""

    def _make(**overrides) -> BridgeOrchestrator:
        kwargs = {
            "registry": registry,
            "relay": relay,
            "timings": FAST_TIMINGS,
            "clock": clock,
        }
        kwargs.update(overrides)
        return BridgeOrchestrator(
            kwargs.pop("route", route),
            kwargs.pop("wallet", wallet),
            kwargs.pop("balances", balances),
            **kwargs,
        )

    return _make
