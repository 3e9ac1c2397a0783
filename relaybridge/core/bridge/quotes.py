"""Relay quote requests and defensive response parsing."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, NamedTuple, Optional, Tuple

import httpx
from eth_utils import is_hex_address

from ...config import Settings, settings as default_settings
from ...providers.relay import RelayProvider, relay_error_message
from .amounts import balance_to_base_units, to_base_units
from .capabilities import BalanceObserver
from .chain_registry import ChainDescriptor, ChainRef, ChainRegistry, TokenDescriptor
from .errors import ErrorContext, QuoteError, UnknownQuoteResponseError
from .models import BridgeIntent, BridgePurpose, BridgeQuote, BridgeRoute, utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Fee entries that make up the user-visible total
_TOTAL_FEE_KEYS = ('gas', 'relayer')


def _to_decimal(raw: Any) -> Optional[Decimal]:
    if raw is None:
        return None
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, TypeError, ValueError):
        return None
    return value if value.is_finite() else None


def _to_int(raw: Any) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(str(raw))
    except (TypeError, ValueError):
        return None


class ResolvedRoute(NamedTuple):
    source_chain: ChainDescriptor
    destination_chain: ChainDescriptor
    token: TokenDescriptor
    destination_currency: TokenDescriptor


def resolve_route(route: BridgeRoute, registry: ChainRegistry) -> ResolvedRoute:
    """Look up a route's chains and currencies.

    Gas top-ups receive the destination chain's native asset; every other
    purpose receives the same token symbol on the destination chain.

    Raises:
        UnsupportedChainError: a chain or token is not configured.
    """
    source = registry.get(route.source_chain_id)
    destination = registry.get(route.destination_chain_id)
    token = source.token(route.token)
    if route.purpose == BridgePurpose.GAS_TOPUP:
        destination_currency = destination.native_token
    else:
        destination_currency = destination.token(route.token)
    return ResolvedRoute(source, destination, token, destination_currency)


def build_intent(resolved: ResolvedRoute, amount: Decimal, *, user: str, recipient: Optional[str] = None) -> BridgeIntent:
    """Raises ValueError when the recipient or sender is not a hex address."""
    if recipient is not None and not is_hex_address(recipient):
        raise ValueError(f"Invalid recipient address: {recipient!r}")
    if not is_hex_address(user):
        raise ValueError(f"Invalid sender address: {user!r}")
    recipient = recipient or user
    return BridgeIntent(
        source_chain_id=resolved.source_chain.id,
        destination_chain_id=resolved.destination_chain.id,
        token=resolved.token,
        destination_currency=resolved.destination_currency,
        amount=amount,
        amount_base_units=to_base_units(amount, resolved.token.decimals),
        recipient=recipient,
        user=user,
    )


async def select_source_chain(
    registry: ChainRegistry,
    balances: BalanceObserver,
    owner: str,
    candidates: Iterable[ChainRef],
    *,
    token_symbol: Optional[str] = None,
) -> ChainDescriptor:
    """Pick the candidate chain holding the most of ``token_symbol``.

    Balances are compared in base units. Unreadable balances count as zero,
    and ties keep the earlier candidate, so the first one wins when nothing
    is funded.

    Raises:
        UnsupportedChainError: a candidate or its token is not configured.
        ValueError: no candidates were given.
    """
    symbol = token_symbol or default_settings.default_token_symbol
    chains = [registry.resolve(ref) for ref in candidates]
    if not chains:
        raise ValueError("No candidate source chains")
    tokens = [chain.token(symbol) for chain in chains]
    results = await asyncio.gather(
        *(balances.get_token_balance(chain.id, token.address, owner) for chain, token in zip(chains, tokens)),
        return_exceptions=True,
    )

    best, best_units = chains[0], -1
    for chain, token, result in zip(chains, tokens, results):
        if isinstance(result, BaseException):
            logger.warning("Balance read on chain %s failed: %s", chain.id, result)
            result = None
        units = balance_to_base_units(result, token.decimals)
        if units > best_units:
            best, best_units = chain, units
    return best


class QuoteService:
    """Builds Relay deposit-address quote requests and turns responses into :class:`BridgeQuote`.

    Quotes always use ``useDepositAddress`` so the only on-chain action the
    user takes is a token transfer to the returned address.
    """

    def __init__(
        self,
        relay: Optional[RelayProvider] = None,
        *,
        config: Optional[Settings] = None,
        ttl: Optional[timedelta] = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config or default_settings
        self._relay = relay or RelayProvider()
        self._ttl = ttl if ttl is not None else timedelta(seconds=self._config.quote_ttl_seconds)
        self._clock = clock or utcnow
        self._logger = logger or logging.getLogger(__name__)

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def build_request(self, intent: BridgeIntent) -> Dict[str, Any]:
        return {
            'user': intent.user,
            'recipient': intent.recipient,
            'originChainId': intent.source_chain_id,
            'destinationChainId': intent.destination_chain_id,
            'originCurrency': intent.token.address,
            'destinationCurrency': intent.destination_currency.address,
            'amount': str(intent.amount_base_units),
            'tradeType': 'EXACT_INPUT',
            'useDepositAddress': True,
            'refundTo': intent.user,
            'usePermit': False,
            'useExternalLiquidity': False,
            'referrer': self._config.relay_referrer,
        }

    async def fetch_quote(self, intent: BridgeIntent, *, generation: int = 0) -> BridgeQuote:
        """Request a quote for ``intent``.

        Raises:
            QuoteError: transport failure or an HTTP error from Relay.
            UnknownQuoteResponseError: Relay answered without a usable deposit route.
        """
        payload = self.build_request(intent)
        context = ErrorContext(chain_id=intent.source_chain_id, provider='relay')
        try:
            data = await self._relay.quote(payload)
        except httpx.HTTPStatusError as exc:
            detail = relay_error_message(exc)
            self._logger.warning("Relay quote HTTP %s: %s", exc.response.status_code, detail)
            context.details['http_status'] = exc.response.status_code
            raise QuoteError(
                f"Relay quote failed: {detail}",
                user_message=f"Couldn't get a bridge quote: {detail}",
                context=context,
            ) from exc
        except httpx.RequestError as exc:
            self._logger.warning("Relay quote request failed: %s", exc)
            raise QuoteError(f"Relay unreachable: {exc}", context=context) from exc
        except ValueError as exc:
            self._logger.warning("Relay quote returned invalid JSON: %s", exc)
            raise UnknownQuoteResponseError(f"Invalid quote body: {exc}", context=context) from exc

        return self.parse_response(data, intent, fetched_at=self._clock(), generation=generation)

    def parse_response(
        self,
        data: Any,
        intent: BridgeIntent,
        *,
        fetched_at: Optional[datetime] = None,
        generation: int = 0,
    ) -> BridgeQuote:
        context = ErrorContext(chain_id=intent.source_chain_id, provider='relay')
        if not isinstance(data, dict):
            raise UnknownQuoteResponseError(f"Unexpected quote payload type: {type(data).__name__}", context=context)

        deposit_address, request_id = self._find_deposit_step(data)
        if not deposit_address:
            raise UnknownQuoteResponseError("Quote has no step with a deposit address", context=context)
        if not request_id:
            raise UnknownQuoteResponseError("Quote has no request id", context=context)

        details = data.get('details') or {}
        fees_raw = data.get('fees') or {}

        fees: Dict[str, Decimal] = {}
        for name, fee_data in fees_raw.items():
            if isinstance(fee_data, dict):
                amount_usd = _to_decimal(fee_data.get('amountUsd'))
                if amount_usd is not None:
                    fees[name] = amount_usd
        fee_total = sum((fees.get(key, Decimal('0')) for key in _TOTAL_FEE_KEYS), Decimal('0'))

        dest_decimals = intent.destination_currency.decimals
        currency_out = details.get('currencyOut') or {}
        dest_amount = _to_int(currency_out.get('amount'))
        if dest_amount is None:
            if dest_decimals == intent.token.decimals:
                dest_amount = intent.amount_base_units
            else:
                self._logger.warning("Quote %s has no output amount; estimate unavailable", request_id)
                dest_amount = 0

        time_estimate = details.get('timeEstimate')
        try:
            time_estimate_seconds = float(time_estimate) if time_estimate is not None else None
        except (TypeError, ValueError):
            time_estimate_seconds = None

        fetched = fetched_at or self._clock()
        return BridgeQuote(
            request_id=str(request_id),
            deposit_address=deposit_address,
            source_chain_id=intent.source_chain_id,
            destination_chain_id=intent.destination_chain_id,
            source_amount=intent.amount_base_units,
            dest_amount_estimate=dest_amount,
            dest_decimals=dest_decimals,
            fee_total_usd=fee_total,
            fees=fees,
            fetched_at=fetched,
            expires_at=fetched + self._ttl,
            time_estimate_seconds=time_estimate_seconds,
            generation=generation,
            raw_response=data,
        )

    @staticmethod
    def _find_deposit_step(data: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
        for step in data.get('steps') or []:
            if not isinstance(step, dict):
                continue
            address = step.get('depositAddress')
            if isinstance(address, str) and is_hex_address(address):
                return address, step.get('requestId') or data.get('requestId')
        return None, None
