"""
ERC-20 calldata for the deposit leg.

A Relay deposit-address quote needs exactly one on-chain action from the
user: ``transfer(depositAddress, amount)`` on the source token contract.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from eth_utils import is_hex_address

from .constants import ERC20_TRANSFER_SELECTOR

_WORD_BITS = 256


def _word(value: int) -> str:
    if not 0 <= value < 2 ** _WORD_BITS:
        raise ValueError(f"Value does not fit in a uint256: {value}")
    return f"{value:064x}"


def encode_transfer(recipient: str, amount: int) -> str:
    """``transfer(address,uint256)`` calldata, 0x-prefixed."""
    return ERC20_TRANSFER_SELECTOR + _word(int(recipient, 16)) + _word(amount)


def decode_transfer(data: str) -> Optional[Dict[str, Any]]:
    """Recover ``{"to", "amount"}`` from transfer calldata; ``None`` for any other call."""
    if not data or not data.lower().startswith(ERC20_TRANSFER_SELECTOR):
        return None
    args = data[len(ERC20_TRANSFER_SELECTOR):]
    if len(args) != 128:
        return None
    return {"to": "0x" + args[24:64].lower(), "amount": int(args[64:], 16)}


@dataclass(frozen=True)
class DepositTransfer:
    """The deposit transaction handed to the wallet."""

    chain_id: int
    sender: str
    token: str                      # Contract the call is sent to
    deposit_address: str
    amount: int                     # Base units
    request_id: Optional[str] = None

    @property
    def to_address(self) -> str:
        return self.token

    @property
    def value(self) -> int:
        return 0

    @property
    def data(self) -> str:
        return encode_transfer(self.deposit_address, self.amount)

    def as_call(self) -> Dict[str, str]:
        """JSON-RPC ``eth_sendTransaction`` parameters."""
        return {
            "from": self.sender,
            "to": self.token,
            "data": self.data,
            "value": hex(self.value),
            "chainId": hex(self.chain_id),
        }


def build_deposit_transfer(
    *,
    chain_id: int,
    sender: str,
    token: str,
    deposit_address: str,
    amount: int,
    request_id: Optional[str] = None,
) -> DepositTransfer:
    """Validate the pieces of a deposit and return the transfer.

    Raises:
        ValueError: a malformed address or a non-positive / oversized amount.
    """
    if not is_hex_address(deposit_address):
        raise ValueError(f"Invalid deposit address: {deposit_address!r}")
    if not is_hex_address(token):
        raise ValueError(f"Invalid token contract: {token!r}")
    if amount <= 0:
        raise ValueError("Deposit amount must be positive")
    _word(amount)
    return DepositTransfer(
        chain_id=chain_id,
        sender=sender,
        token=token,
        deposit_address=deposit_address,
        amount=amount,
        request_id=request_id,
    )
