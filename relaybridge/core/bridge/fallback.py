"""Deep links into the Relay web app for finishing a transfer manually."""

from typing import Optional
from urllib.parse import urlencode

from ...config import settings
from .chain_registry import ChainDescriptor


def _matching_destination_currency(
    source_chain: ChainDescriptor,
    destination_chain: ChainDescriptor,
    token_address: str,
) -> str:
    for symbol, token in source_chain.tokens.items():
        if token.address.lower() == token_address.lower():
            counterpart = destination_chain.tokens.get(symbol)
            if counterpart is not None:
                return counterpart.address
    return token_address


def build_fallback_url(
    source_chain: ChainDescriptor,
    destination_chain: ChainDescriptor,
    token_address: str,
    amount_base_units: int,
    recipient: str,
    *,
    destination_currency: Optional[str] = None,
    base_url: Optional[str] = None,
) -> str:
    """Build a pre-filled Relay bridge URL.

    Pure: the same inputs always produce the same string. ``destination_currency``
    defaults to the same token symbol on the destination chain.
    """
    root = (base_url or settings.relay_app_url).rstrip('/')
    to_currency = destination_currency or _matching_destination_currency(source_chain, destination_chain, token_address)
    params = [
        ('fromChainId', str(source_chain.id)),
        ('toChainId', str(destination_chain.id)),
        ('fromCurrency', token_address),
        ('toCurrency', to_currency),
        ('amount', str(int(amount_base_units))),
        ('toAddress', recipient),
    ]
    return f"{root}/bridge/{destination_chain.relay_slug}?{urlencode(params)}"
