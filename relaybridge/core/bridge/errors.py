"""
Bridge Error Taxonomy

Every failure the orchestrator can surface carries a technical message for
logs and a short user-facing message for the presentation layer, plus the
remediation actions the user can take. Nothing here retries automatically.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ErrorKind(str, Enum):
    """Classification surfaced on the orchestrator snapshot."""

    QUOTE = "quote_error"
    UNKNOWN_QUOTE_RESPONSE = "unknown_quote_response"
    NO_QUOTE = "no_quote"
    EXPIRED_QUOTE = "expired_quote"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    CHAIN_SWITCH_FAILED = "chain_switch_failed"
    SUBMISSION_REJECTED = "submission_rejected"
    SETTLEMENT_FAILED = "settlement_failed"
    SETTLEMENT_TIMEOUT = "settlement_timeout"
    TRANSFER_IN_FLIGHT = "transfer_in_flight"
    INVALID_AMOUNT = "invalid_amount"
    UNSUPPORTED_CHAIN = "unsupported_chain"
    INVALID_TRANSITION = "invalid_transition"


class Remediation(str, Enum):
    """User-level actions offered alongside an error."""

    RETRY = "retry"
    EDIT_AMOUNT = "edit_amount"
    SWITCH_MANUALLY = "switch_manually"
    USE_FALLBACK_LINK = "use_fallback_link"
    REAUTHENTICATE = "reauthenticate"
    WAIT = "wait"


class SwitchFailureReason(str, Enum):
    USER_REJECTED = "user_rejected"
    TECHNICAL = "technical"
    UNVERIFIED = "unverified"      # switch reported success, chain unchanged
    DRIFT = "drift"                # chain changed again before submission


class SubmissionFailureReason(str, Enum):
    USER_REJECTED = "user_rejected"
    INSUFFICIENT_GAS = "insufficient_gas"
    REVERTED = "reverted"
    NETWORK = "network"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    chain_id: Optional[int] = None
    request_id: Optional[str] = None
    tx_hash: Optional[str] = None
    provider: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class BridgeError(Exception):
    """Base class for all bridge failures."""

    kind: ErrorKind = ErrorKind.QUOTE
    default_user_message = "Something went wrong. Please try again."
    recoverable = True
    remediation: Tuple[Remediation, ...] = (Remediation.RETRY,)
    advisory = False

    def __init__(
        self,
        message: str,
        *,
        user_message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or self.default_user_message
        self.context = context or ErrorContext()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "userMessage": self.user_message,
            "recoverable": self.recoverable,
            "advisory": self.advisory,
            "remediation": [r.value for r in self.remediation],
            "chainId": self.context.chain_id,
            "requestId": self.context.request_id,
            "txHash": self.context.tx_hash,
            "details": self.context.details,
        }


class QuoteError(BridgeError):
    """Network or validation failure obtaining a quote."""

    kind = ErrorKind.QUOTE
    default_user_message = "Couldn't get a bridge quote. Please try again."
    remediation = (Remediation.RETRY, Remediation.EDIT_AMOUNT, Remediation.USE_FALLBACK_LINK)


class UnknownQuoteResponseError(QuoteError):
    """Relay answered, but not with anything we can deposit against."""

    kind = ErrorKind.UNKNOWN_QUOTE_RESPONSE
    default_user_message = "No deposit route is available for this transfer right now. Try the Relay link instead."


class NoQuoteError(BridgeError):
    kind = ErrorKind.NO_QUOTE
    default_user_message = "Enter an amount to get a quote first."
    remediation = (Remediation.EDIT_AMOUNT, Remediation.RETRY)


class ExpiredQuoteError(BridgeError):
    kind = ErrorKind.EXPIRED_QUOTE
    default_user_message = "Your quote expired before it could be sent. Try again."
    remediation = (Remediation.RETRY,)


class InsufficientBalanceError(BridgeError):
    kind = ErrorKind.INSUFFICIENT_BALANCE
    default_user_message = "Insufficient balance"
    remediation = (Remediation.EDIT_AMOUNT,)

    def __init__(
        self,
        message: str = "Insufficient balance",
        *,
        required: Optional[int] = None,
        available: Optional[int] = None,
        token: Optional[str] = None,
        chain_id: Optional[int] = None,
    ):
        super().__init__(
            message,
            context=ErrorContext(
                chain_id=chain_id,
                details={"required": required, "available": available, "token": token},
            ),
        )
        self.required = required
        self.available = available


class ChainSwitchError(BridgeError):
    """The wallet could not be moved to (or kept on) the source chain."""

    kind = ErrorKind.CHAIN_SWITCH_FAILED
    remediation = (
        Remediation.RETRY,
        Remediation.SWITCH_MANUALLY,
        Remediation.USE_FALLBACK_LINK,
        Remediation.REAUTHENTICATE,
    )

    _USER_MESSAGES = {
        SwitchFailureReason.USER_REJECTED: "Network switch was cancelled.",
        SwitchFailureReason.TECHNICAL: "Unable to switch networks. Please log out and log back in, or use the Relay link.",
        SwitchFailureReason.UNVERIFIED: "Wallet is on the wrong network. Please log out and log back in to reset it, or use the Relay link.",
        SwitchFailureReason.DRIFT: "Your wallet changed networks. Switch back and try again.",
    }

    def __init__(
        self,
        message: str,
        *,
        reason: SwitchFailureReason = SwitchFailureReason.TECHNICAL,
        target_chain_id: Optional[int] = None,
        observed_chain_id: Optional[int] = None,
    ):
        super().__init__(
            message,
            user_message=self._USER_MESSAGES[reason],
            context=ErrorContext(
                chain_id=target_chain_id,
                details={"reason": reason.value, "observed_chain_id": observed_chain_id},
            ),
        )
        self.reason = reason
        self.target_chain_id = target_chain_id
        self.observed_chain_id = observed_chain_id

    @property
    def needs_manual_remediation(self) -> bool:
        """A declined prompt can simply be retried; anything else means the wallet is stuck."""
        return self.reason != SwitchFailureReason.USER_REJECTED


class SubmissionError(BridgeError):
    """Signing was declined or the deposit transaction failed."""

    kind = ErrorKind.SUBMISSION_REJECTED
    remediation = (Remediation.RETRY, Remediation.USE_FALLBACK_LINK, Remediation.REAUTHENTICATE)

    _USER_MESSAGES = {
        SubmissionFailureReason.USER_REJECTED: "Transaction cancelled",
        SubmissionFailureReason.INSUFFICIENT_GAS: "Insufficient gas. You need the network's native token to pay for this transaction.",
        SubmissionFailureReason.REVERTED: "The deposit transaction was reverted.",
        SubmissionFailureReason.NETWORK: "Network error. Please log out and log back in, or use the Relay link.",
        SubmissionFailureReason.UNKNOWN: "Bridge failed",
    }

    def __init__(
        self,
        message: str,
        *,
        reason: SubmissionFailureReason = SubmissionFailureReason.UNKNOWN,
        chain_id: Optional[int] = None,
    ):
        super().__init__(
            message,
            user_message=self._USER_MESSAGES[reason],
            context=ErrorContext(chain_id=chain_id, details={"reason": reason.value}),
        )
        self.reason = reason

    @property
    def is_benign(self) -> bool:
        """The user chose not to sign; nothing failed."""
        return self.reason == SubmissionFailureReason.USER_REJECTED


class SettlementFailedError(BridgeError):
    kind = ErrorKind.SETTLEMENT_FAILED
    default_user_message = "Bridge failed - funds will be refunded to your wallet"
    recoverable = False
    remediation = (Remediation.USE_FALLBACK_LINK,)

    def __init__(self, message: str, *, status: str, request_id: Optional[str] = None, tx_hash: Optional[str] = None):
        super().__init__(
            message,
            context=ErrorContext(request_id=request_id, tx_hash=tx_hash, details={"status": status}),
        )
        self.status = status


class SettlementTimeoutError(BridgeError):
    """Relay has not confirmed yet; the deposit itself already happened."""

    kind = ErrorKind.SETTLEMENT_TIMEOUT
    default_user_message = "Taking longer than expected... bridge may still complete"
    advisory = True
    remediation = (Remediation.WAIT,)

    def __init__(self, message: str, *, attempts: int, request_id: Optional[str] = None, tx_hash: Optional[str] = None):
        super().__init__(
            message,
            context=ErrorContext(request_id=request_id, tx_hash=tx_hash, details={"attempts": attempts}),
        )
        self.attempts = attempts


class TransferInFlightError(BridgeError):
    kind = ErrorKind.TRANSFER_IN_FLIGHT
    default_user_message = "A transfer is already in progress."
    remediation = (Remediation.WAIT,)


class InvalidAmountError(BridgeError, ValueError):
    kind = ErrorKind.INVALID_AMOUNT
    default_user_message = "Enter a valid amount."
    remediation = (Remediation.EDIT_AMOUNT,)


class UnsupportedChainError(BridgeError, KeyError):
    kind = ErrorKind.UNSUPPORTED_CHAIN
    default_user_message = "That network isn't supported."
    recoverable = False
    remediation = ()

    def __str__(self) -> str:
        return self.message


class InvalidTransitionError(BridgeError):
    """Raised when a state transition is not in the allowed table."""

    kind = ErrorKind.INVALID_TRANSITION
    recoverable = False
    remediation = ()

    def __init__(self, from_state: Any, to_state: Any, message: Optional[str] = None):
        super().__init__(message or f"Invalid transition from {from_state} to {to_state}")
        self.from_state = from_state
        self.to_state = to_state


# EIP-1193 provider error codes
USER_REJECTED_CODE = 4001
UNRECOGNIZED_CHAIN_CODE = 4902

_REJECTION_PATTERNS = ("user rejected", "rejected the request", "denied", "cancelled", "canceled", "user refused")
_GAS_PATTERNS = ("insufficient funds", "insufficient balance for gas", "gas required exceeds")
_REVERT_PATTERNS = ("revert", "execution reverted", "transaction failed", "out of gas")
_NETWORK_PATTERNS = ("network", "chain", "connection", "timeout", "timed out")


def _error_code(error: Exception) -> Optional[int]:
    code = getattr(error, "code", None)
    if isinstance(code, int):
        return code
    return None


def is_user_rejection(error: Exception) -> bool:
    if _error_code(error) == USER_REJECTED_CODE:
        return True
    message = str(error).lower()
    return any(p in message for p in _REJECTION_PATTERNS)


def classify_submission_error(error: Exception, *, chain_id: Optional[int] = None) -> SubmissionError:
    """Map a raw wallet/transport exception raised while sending the deposit."""
    if isinstance(error, SubmissionError):
        return error

    message = str(error) or error.__class__.__name__
    lowered = message.lower()

    if is_user_rejection(error):
        reason = SubmissionFailureReason.USER_REJECTED
    elif any(p in lowered for p in _GAS_PATTERNS) or ("insufficient" in lowered and "fund" in lowered):
        reason = SubmissionFailureReason.INSUFFICIENT_GAS
    elif any(p in lowered for p in _REVERT_PATTERNS):
        reason = SubmissionFailureReason.REVERTED
    elif any(p in lowered for p in _NETWORK_PATTERNS):
        reason = SubmissionFailureReason.NETWORK
    else:
        reason = SubmissionFailureReason.UNKNOWN

    return SubmissionError(message, reason=reason, chain_id=chain_id)


def classify_switch_error(
    error: Exception,
    *,
    target_chain_id: Optional[int] = None,
    observed_chain_id: Optional[int] = None,
) -> ChainSwitchError:
    """Map an exception raised by the wallet's switch call."""
    if isinstance(error, ChainSwitchError):
        return error

    reason = SwitchFailureReason.USER_REJECTED if is_user_rejection(error) else SwitchFailureReason.TECHNICAL
    return ChainSwitchError(
        str(error) or error.__class__.__name__,
        reason=reason,
        target_chain_id=target_chain_id,
        observed_chain_id=observed_chain_id,
    )
