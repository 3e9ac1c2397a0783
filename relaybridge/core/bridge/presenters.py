"""Presentation adapters: render an orchestrator snapshot as a panel.

Presenters are read-only. One exists per :class:`BridgePurpose`; they differ
only in wording, so any of them can render any snapshot.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, List, Optional, Tuple, Type

from .amounts import balance_to_base_units, format_units, to_base_units, try_parse_amount
from .chain_registry import ChainRegistry, TokenDescriptor, get_registry
from .constants import BRIDGE_SOURCE
from .models import BridgePurpose, BridgeSnapshot, BridgeStatus

_PROGRESS_LABELS = {
    BridgeStatus.QUOTING: 'Getting quote...',
    BridgeStatus.SWITCHING: 'Switching network...',
    BridgeStatus.CONFIRMING: 'Confirm in wallet...',
    BridgeStatus.DEPOSITING: 'Sending to bridge...',
    BridgeStatus.BRIDGING: 'Bridging...',
}

# Retry, switch again, or dismiss
_RESTARTABLE_STATES = (
    BridgeStatus.ERROR,
    BridgeStatus.WRONG_CHAIN,
    BridgeStatus.COMPLETE,
    BridgeStatus.TIMED_OUT,
)


def _usd(value: Decimal) -> str:
    return f"${value.quantize(Decimal('0.01'), rounding=ROUND_DOWN)}"


def _format_eta(seconds: Optional[float]) -> Optional[str]:
    if seconds is None or seconds <= 0:
        return None
    if seconds < 90:
        return f"{seconds:.0f} sec"
    return f"{seconds / 60.0:.1f} min"


class BridgePresenter:
    """Generic multi-chain bridge wording."""

    purpose = BridgePurpose.BRIDGE
    panel_id = 'relay_bridge'
    verb = 'Bridge'
    amount_presets: Tuple[str, ...] = ()
    suggested_amount: Optional[str] = None

    def __init__(self, registry: Optional[ChainRegistry] = None):
        self._registry = registry or get_registry()

    def title(self, snapshot: BridgeSnapshot) -> str:
        return f"Bridge to {self._registry.get_chain_name(snapshot.route.destination_chain_id)}"

    def _source_token(self, snapshot: BridgeSnapshot) -> TokenDescriptor:
        return self._registry.token(snapshot.route.source_chain_id, snapshot.route.token)

    def _output_symbol(self, snapshot: BridgeSnapshot) -> str:
        return snapshot.route.token

    def ready_label(self, snapshot: BridgeSnapshot, amount: Decimal) -> str:
        return f"{self.verb} {_usd(amount)} {snapshot.route.token}"

    def action_label(self, snapshot: BridgeSnapshot) -> str:
        status = snapshot.status
        if status in _PROGRESS_LABELS:
            return _PROGRESS_LABELS[status]
        if snapshot.executing:
            # An execute call has not returned, e.g. a prompt left open across a reset
            return 'Waiting for wallet...'
        if status == BridgeStatus.COMPLETE:
            return 'Done'
        if status == BridgeStatus.TIMED_OUT:
            return 'Close'
        if status == BridgeStatus.WRONG_CHAIN:
            return f"Switch to {self._registry.get_chain_name(snapshot.route.source_chain_id)}"

        token = self._source_token(snapshot)
        amount = try_parse_amount(snapshot.amount, token.decimals)
        if amount is None:
            return 'Enter amount'
        balance = snapshot.balances.get(snapshot.route.source_chain_id)
        if balance is not None and to_base_units(amount, token.decimals) > balance_to_base_units(balance, token.decimals):
            return 'Insufficient balance'
        if status == BridgeStatus.ERROR:
            return 'Try again'
        return self.ready_label(snapshot, amount)

    def action_enabled(self, snapshot: BridgeSnapshot) -> bool:
        if snapshot.is_busy:
            return False
        if self.action_label(snapshot) in ('Insufficient balance', 'Enter amount'):
            return False
        if snapshot.status in _RESTARTABLE_STATES:
            return True
        return snapshot.can_execute

    def _quote_payload(self, snapshot: BridgeSnapshot) -> Optional[Dict[str, Any]]:
        quote = snapshot.quote
        if quote is None:
            return None
        token = self._source_token(snapshot)
        return {
            'request_id': quote.request_id,
            'deposit_address': quote.deposit_address,
            'input': {
                'symbol': token.symbol,
                'amount': format_units(quote.source_amount, token.decimals),
            },
            'output': {
                'symbol': self._output_symbol(snapshot),
                'amount_estimate': format_units(quote.dest_amount_estimate, quote.dest_decimals),
            },
            'fees': {
                'total_usd': str(quote.fee_total_usd),
                'breakdown_usd': {name: str(value) for name, value in quote.fees.items()},
            },
            'eta': _format_eta(quote.time_estimate_seconds),
            'expires_at': quote.expires_at.isoformat(),
        }

    def _instructions(self, snapshot: BridgeSnapshot) -> List[str]:
        source = self._registry.get_chain_name(snapshot.route.source_chain_id)
        if snapshot.status == BridgeStatus.WRONG_CHAIN:
            return [
                f"Switch your wallet to {source} and try again.",
                'If switching keeps failing, log out and back in to reset the wallet connection.',
                'You can also finish this transfer on Relay using the link below.',
            ]
        if snapshot.status == BridgeStatus.TIMED_OUT:
            return ['Your deposit was sent. Relay may still deliver it; check back shortly.']
        return [f"Confirm the transfer from {source} in your wallet when prompted."]

    def render(self, snapshot: BridgeSnapshot) -> Dict[str, Any]:
        route = snapshot.route
        payload: Dict[str, Any] = {
            'status': snapshot.status.value,
            'status_message': snapshot.status_message,
            'amount': snapshot.amount,
            'source': {'chain_id': route.source_chain_id, 'name': self._registry.get_chain_name(route.source_chain_id)},
            'destination': {
                'chain_id': route.destination_chain_id,
                'name': self._registry.get_chain_name(route.destination_chain_id),
            },
            'token': route.token,
            'quote': self._quote_payload(snapshot),
            'action': {'label': self.action_label(snapshot), 'enabled': self.action_enabled(snapshot)},
            'fallback_url': snapshot.fallback_url,
            'instructions': self._instructions(snapshot),
            'balances': dict(snapshot.balances),
            'busy': snapshot.is_busy,
        }
        if self.amount_presets:
            payload['presets'] = list(self.amount_presets)
            payload['suggested_amount'] = self.suggested_amount
        if snapshot.tx_hash:
            payload['tx_hash'] = snapshot.tx_hash
            payload['explorer_url'] = self._registry.explorer_tx_url(route.source_chain_id, snapshot.tx_hash)
        if snapshot.error is not None:
            payload['error'] = snapshot.error.to_dict()
            payload['remediation'] = [r.value for r in snapshot.error.remediation]

        return {
            'id': self.panel_id,
            'kind': 'card',
            'title': self.title(snapshot),
            'payload': payload,
            'sources': [BRIDGE_SOURCE],
            'metadata': {
                'status': snapshot.status.value,
                'purpose': self.purpose.value,
                'request_id': snapshot.quote.request_id if snapshot.quote else None,
                'advisory': bool(snapshot.error and snapshot.error.advisory),
            },
        }


class ChainBridgePresenter(BridgePresenter):
    """Fixed-destination funding flow (e.g. moving USDC to a trading venue's chain)."""

    purpose = BridgePurpose.CHAIN_BRIDGE
    panel_id = 'relay_chain_bridge'

    def title(self, snapshot: BridgeSnapshot) -> str:
        return f"Deposit to {self._registry.get_chain_name(snapshot.route.destination_chain_id)}"


class GasTopUpPresenter(BridgePresenter):
    """Bridge a little USDC into the destination chain's native gas token."""

    purpose = BridgePurpose.GAS_TOPUP
    panel_id = 'relay_gas_topup'
    verb = 'Swap'
    amount_presets = ('0.50', '1', '2')
    suggested_amount = '1'

    def __init__(self, registry: Optional[ChainRegistry] = None, *, suggested_amount: Optional[str] = None):
        super().__init__(registry)
        if suggested_amount is not None:
            self.suggested_amount = suggested_amount

    def title(self, snapshot: BridgeSnapshot) -> str:
        return f"Get Gas on {self._registry.get_chain_name(snapshot.route.destination_chain_id)}"

    def _output_symbol(self, snapshot: BridgeSnapshot) -> str:
        return self._registry.get(snapshot.route.destination_chain_id).native_symbol

    def ready_label(self, snapshot: BridgeSnapshot, amount: Decimal) -> str:
        return f"Swap {_usd(amount)} {snapshot.route.token} → {self._output_symbol(snapshot)}"


PRESENTERS: Dict[BridgePurpose, Type[BridgePresenter]] = {
    BridgePurpose.BRIDGE: BridgePresenter,
    BridgePurpose.CHAIN_BRIDGE: ChainBridgePresenter,
    BridgePurpose.GAS_TOPUP: GasTopUpPresenter,
}


def presenter_for(purpose: BridgePurpose, registry: Optional[ChainRegistry] = None) -> BridgePresenter:
    return PRESENTERS[purpose](registry)
