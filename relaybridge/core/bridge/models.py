"""Typed models used by the bridge subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

from ...config import Settings
from .chain_registry import TokenDescriptor
from .errors import BridgeError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BridgeStatus(str, Enum):
    """States of the bridge orchestrator."""

    IDLE = "idle"
    QUOTING = "quoting"
    READY = "ready"
    CONFIRMING = "confirming"      # Awaiting wallet signature
    SWITCHING = "switching"        # Moving the wallet to the source chain
    DEPOSITING = "depositing"      # Deposit transaction broadcast
    BRIDGING = "bridging"          # Waiting for Relay settlement
    COMPLETE = "complete"
    ERROR = "error"
    WRONG_CHAIN = "wrong_chain"    # Needs manual remediation
    TIMED_OUT = "timed_out"        # Settlement unconfirmed; deposit already sent


class BridgePurpose(str, Enum):
    BRIDGE = "bridge"              # Generic multi-chain bridge
    CHAIN_BRIDGE = "chain_bridge"  # Fixed destination, e.g. funding a trading venue
    GAS_TOPUP = "gas_topup"        # Receive the destination chain's native asset


class TransferStatus(str, Enum):
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    COMPLETE = "complete"
    FAILED = "failed"
    REFUNDED = "refunded"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (
            TransferStatus.COMPLETE,
            TransferStatus.FAILED,
            TransferStatus.REFUNDED,
            TransferStatus.TIMED_OUT,
        )


@dataclass(frozen=True)
class BridgeRoute:
    """Configuration of one orchestrator: where from, where to, what, and why."""

    source_chain_id: int
    destination_chain_id: int
    token: str = "USDC"
    purpose: BridgePurpose = BridgePurpose.BRIDGE

    def __post_init__(self) -> None:
        if self.source_chain_id == self.destination_chain_id:
            raise ValueError("Source and destination chains must differ")


@dataclass(frozen=True)
class BridgeIntent:
    """What the user currently wants to move; rebuilt on every edit."""

    source_chain_id: int
    destination_chain_id: int
    token: TokenDescriptor
    destination_currency: TokenDescriptor
    amount: Decimal
    amount_base_units: int
    recipient: str
    user: str


@dataclass
class BridgeQuote:
    """A priced transfer offer from Relay."""

    request_id: str
    deposit_address: str
    source_chain_id: int
    destination_chain_id: int
    source_amount: int                      # Base units
    dest_amount_estimate: int               # Base units of the destination currency
    dest_decimals: int
    fee_total_usd: Decimal
    fetched_at: datetime
    expires_at: datetime
    fees: Dict[str, Decimal] = field(default_factory=dict)
    time_estimate_seconds: Optional[float] = None
    generation: int = 0
    raw_response: Optional[Dict[str, Any]] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def seconds_until_expiry(self, now: Optional[datetime] = None) -> float:
        return (self.expires_at - (now or utcnow())).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requestId": self.request_id,
            "depositAddress": self.deposit_address,
            "sourceChainId": self.source_chain_id,
            "destinationChainId": self.destination_chain_id,
            "sourceAmount": str(self.source_amount),
            "destAmountEstimate": str(self.dest_amount_estimate),
            "feeTotalUsd": str(self.fee_total_usd),
            "fees": {k: str(v) for k, v in self.fees.items()},
            "expiresAt": self.expires_at.isoformat(),
            "timeEstimateSeconds": self.time_estimate_seconds,
        }


@dataclass
class BridgeTransferRecord:
    """One submitted transfer. Session-scoped; never persisted."""

    request_id: str
    deposit_address: str
    amount_base_units: int
    source_chain_id: int
    tx_hash: Optional[str] = None
    submitted_at: Optional[datetime] = None
    status: TransferStatus = TransferStatus.SUBMITTING
    poll_attempts: int = 0
    destination_tx_hash: Optional[str] = None
    failure_reason: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def in_flight(self) -> bool:
        return not self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "txHash": self.tx_hash,
            "requestId": self.request_id,
            "depositAddress": self.deposit_address,
            "amount": str(self.amount_base_units),
            "sourceChainId": self.source_chain_id,
            "submittedAt": self.submitted_at.isoformat() if self.submitted_at else None,
            "status": self.status.value,
            "pollAttempts": self.poll_attempts,
            "destinationTxHash": self.destination_tx_hash,
            "failureReason": self.failure_reason,
        }


@dataclass
class StateTransition:
    """Record of a state transition."""

    from_state: BridgeStatus
    to_state: BridgeStatus
    reason: Optional[str] = None
    error_kind: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fromState": self.from_state.value,
            "toState": self.to_state.value,
            "reason": self.reason,
            "errorKind": self.error_kind,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class OrchestratorState:
    """Mutable state of one bridge session; reset returns it to idle."""

    current_state: BridgeStatus = BridgeStatus.IDLE
    status_message: str = ""
    error: Optional[BridgeError] = None
    observed_chain_id: Optional[int] = None
    amount_input: str = ""
    intent: Optional[BridgeIntent] = None
    quote: Optional[BridgeQuote] = None
    record: Optional[BridgeTransferRecord] = None
    balances: Dict[int, str] = field(default_factory=dict)
    history: List[StateTransition] = field(default_factory=list)


@dataclass(frozen=True)
class BridgeSnapshot:
    """Read-only view of the orchestrator handed to presentation layers."""

    status: BridgeStatus
    status_message: str
    error: Optional[BridgeError]
    quote: Optional[BridgeQuote]
    tx_hash: Optional[str]
    observed_chain_id: Optional[int]
    route: BridgeRoute
    amount: str = ""
    fallback_url: Optional[str] = None
    balances: Mapping[int, str] = field(default_factory=dict)
    record: Optional[BridgeTransferRecord] = None
    executing: bool = False         # An execute call (e.g. a wallet prompt) has not returned yet

    @property
    def is_busy(self) -> bool:
        return self.executing or self.status in (
            BridgeStatus.QUOTING,
            BridgeStatus.SWITCHING,
            BridgeStatus.CONFIRMING,
            BridgeStatus.DEPOSITING,
            BridgeStatus.BRIDGING,
        )

    @property
    def can_execute(self) -> bool:
        return self.status == BridgeStatus.READY and self.quote is not None

    @property
    def is_wrong_chain(self) -> bool:
        return self.observed_chain_id is not None and self.observed_chain_id != self.route.source_chain_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "statusMessage": self.status_message,
            "error": self.error.to_dict() if self.error else None,
            "quote": self.quote.to_dict() if self.quote else None,
            "txHash": self.tx_hash,
            "observedChainId": self.observed_chain_id,
            "amount": self.amount,
            "fallbackUrl": self.fallback_url,
            "balances": {str(k): v for k, v in self.balances.items()},
            "record": self.record.to_dict() if self.record else None,
            "busy": self.is_busy,
            "sourceChainId": self.route.source_chain_id,
            "destinationChainId": self.route.destination_chain_id,
            "purpose": self.route.purpose.value,
        }


@dataclass(frozen=True)
class BridgeTimings:
    """Timing knobs of one orchestrator session."""

    quote_ttl: timedelta = timedelta(seconds=30)
    debounce_seconds: float = 0.6
    poll_interval_seconds: float = 3.0
    poll_max_attempts: int = 60
    switch_settle_seconds: float = 1.0
    switch_event_timeout_seconds: float = 5.0
    balance_refresh_delay_seconds: float = 2.0

    @classmethod
    def from_settings(cls, config: Settings) -> "BridgeTimings":
        return cls(
            quote_ttl=timedelta(seconds=config.quote_ttl_seconds),
            debounce_seconds=config.quote_debounce_ms / 1000.0,
            poll_interval_seconds=config.settlement_poll_interval_seconds,
            poll_max_attempts=config.settlement_max_attempts,
            switch_settle_seconds=config.chain_switch_settle_seconds,
            switch_event_timeout_seconds=config.chain_switch_event_timeout_seconds,
            balance_refresh_delay_seconds=config.balance_refresh_delay_seconds,
        )
