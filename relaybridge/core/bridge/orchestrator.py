"""
Bridge Orchestrator

One state machine per bridge session: amount input, debounced quoting,
network verification, the deposit transfer, and settlement tracking.
Presentation layers observe it through :meth:`BridgeOrchestrator.subscribe`
and drive it with :meth:`set_amount`, :meth:`execute` and :meth:`reset`.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set, Union

from eth_utils import is_hex_address

from ...config import Settings, settings as default_settings
from ...providers.relay import RelayProvider
from .amounts import balance_to_base_units, decimal_to_str, from_base_units, try_parse_amount
from .capabilities import BalanceObserver, WalletCapability
from .chain_registry import ChainDescriptor, ChainRegistry, TokenDescriptor, get_registry
from .constants import IN_FLIGHT_STATES
from .errors import (
    BridgeError,
    ExpiredQuoteError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidTransitionError,
    NoQuoteError,
    QuoteError,
    SettlementFailedError,
    SettlementTimeoutError,
    SwitchFailureReason,
    TransferInFlightError,
    UnknownQuoteResponseError,
    classify_submission_error,
    classify_switch_error,
)
from .fallback import build_fallback_url
from .models import (
    BridgeIntent,
    BridgeQuote,
    BridgeRoute,
    BridgeSnapshot,
    BridgeStatus,
    BridgeTimings,
    BridgeTransferRecord,
    OrchestratorState,
    StateTransition,
    TransferStatus,
    utcnow,
)
from .network import NetworkSwitchCoordinator
from .quotes import Clock, QuoteService, build_intent, resolve_route
from .settlement import SettlementOutcome, SettlementPoller, SettlementResult
from .tx_builder import build_deposit_transfer

Listener = Callable[[BridgeSnapshot], Union[None, Awaitable[None]]]


class BridgeOrchestrator:
    """
    Drives one bridge transfer from amount entry to settlement.

    Features:
    - Validates transitions against the allowed transition map
    - Generation-tagged quotes: only the newest request may update state
    - Re-reads the wallet's chain before every submission
    - At most one transfer in flight; reset never cancels a broadcast transaction
    - Notifies subscribers with a read-only snapshot after every change
    """

    TRANSITIONS: Dict[BridgeStatus, Set[BridgeStatus]] = {
        BridgeStatus.IDLE: {
            BridgeStatus.QUOTING,
            BridgeStatus.ERROR,
        },
        BridgeStatus.QUOTING: {
            BridgeStatus.QUOTING,     # Amount edited mid-request
            BridgeStatus.READY,
            BridgeStatus.ERROR,
            BridgeStatus.IDLE,        # Amount cleared
        },
        BridgeStatus.READY: {
            BridgeStatus.QUOTING,     # Edit or expired quote
            BridgeStatus.SWITCHING,
            BridgeStatus.CONFIRMING,
            BridgeStatus.ERROR,
            BridgeStatus.IDLE,
        },
        BridgeStatus.SWITCHING: {
            BridgeStatus.CONFIRMING,
            BridgeStatus.WRONG_CHAIN,
            BridgeStatus.ERROR,
        },
        BridgeStatus.CONFIRMING: {
            BridgeStatus.QUOTING,      # Quote expired while switching
            BridgeStatus.DEPOSITING,
            BridgeStatus.WRONG_CHAIN,  # Chain drifted before signing
            BridgeStatus.ERROR,
        },
        BridgeStatus.DEPOSITING: {
            BridgeStatus.BRIDGING,
            BridgeStatus.ERROR,
        },
        BridgeStatus.BRIDGING: {
            BridgeStatus.COMPLETE,
            BridgeStatus.ERROR,
            BridgeStatus.TIMED_OUT,
        },
        BridgeStatus.ERROR: {
            BridgeStatus.QUOTING,
            BridgeStatus.IDLE,
        },
        BridgeStatus.WRONG_CHAIN: {
            BridgeStatus.QUOTING,
            BridgeStatus.SWITCHING,
            BridgeStatus.CONFIRMING,  # User switched manually
            BridgeStatus.ERROR,
            BridgeStatus.IDLE,
        },
        BridgeStatus.COMPLETE: {
            BridgeStatus.IDLE,
        },
        BridgeStatus.TIMED_OUT: {
            BridgeStatus.IDLE,
        },
    }

    def __init__(
        self,
        route: BridgeRoute,
        wallet: WalletCapability,
        balances: BalanceObserver,
        *,
        recipient: Optional[str] = None,
        registry: Optional[ChainRegistry] = None,
        relay: Optional[RelayProvider] = None,
        quotes: Optional[QuoteService] = None,
        poller: Optional[SettlementPoller] = None,
        network: Optional[NetworkSwitchCoordinator] = None,
        timings: Optional[BridgeTimings] = None,
        config: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            route: Source/destination chains, token and purpose of this session
            wallet: Injected wallet capability
            balances: Injected balance observer
            recipient: Destination address (defaults to the wallet address)
            registry: Chain registry (defaults to the shared registry)
            relay: Relay client shared by the default quote service and poller
            quotes, poller, network: Collaborator overrides
            timings: Debounce, TTL and polling knobs (defaults from settings)
            clock: Time source for quote expiry
            logger: Optional logger

        Raises:
            UnsupportedChainError: a route chain or token is not in the registry
            ValueError: ``recipient`` is not a hex address
        """
        if recipient is not None and not is_hex_address(recipient):
            raise ValueError(f"Invalid recipient address: {recipient!r}")
        self.route = route
        self.logger = logger or logging.getLogger(__name__)
        self._config = config or default_settings
        self._registry = registry or get_registry()
        self._wallet = wallet
        self._balances = balances
        self._recipient = recipient
        self._timings = timings or BridgeTimings.from_settings(self._config)
        self._clock = clock or utcnow

        self._resolved = resolve_route(route, self._registry)
        self.source_chain: ChainDescriptor = self._resolved.source_chain
        self.destination_chain: ChainDescriptor = self._resolved.destination_chain
        self.token: TokenDescriptor = self._resolved.token
        self.destination_currency: TokenDescriptor = self._resolved.destination_currency

        relay = relay or RelayProvider(
            base_url=self._config.relay_base_url,
            status_path=self._config.relay_status_path,
            timeout_s=self._config.request_timeout_seconds,
        )
        self._quotes = quotes or QuoteService(
            relay,
            config=self._config,
            ttl=self._timings.quote_ttl,
            clock=self._clock,
        )
        self._poller = poller or SettlementPoller(
            relay,
            interval_seconds=self._timings.poll_interval_seconds,
            max_attempts=self._timings.poll_max_attempts,
        )
        self._network = network or NetworkSwitchCoordinator(
            wallet,
            settle_seconds=self._timings.switch_settle_seconds,
            event_timeout_seconds=self._timings.switch_event_timeout_seconds,
        )

        self._state = OrchestratorState()
        self._listeners: List[Listener] = []
        self._listener_tasks: Set[asyncio.Task] = set()

        # Bumped on every amount edit and quote request; stale responses compare unequal
        self._generation = 0
        # Bumped on reset; work started in an earlier session must not touch state
        self._session = 0
        self._execution: Optional[object] = None

        self._debounce_task: Optional[asyncio.Task] = None
        self._quote_tasks: Set[asyncio.Task] = set()
        self._poll_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None

        self._unsubscribe_chain = wallet.subscribe_chain_changed(self._on_wallet_chain_changed)

    # ─────────────────────────────────────────────────────────────────────────
    # State inspection
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def current_state(self) -> BridgeStatus:
        return self._state.current_state

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def history(self) -> List[StateTransition]:
        return list(self._state.history)

    @property
    def is_busy(self) -> bool:
        return self._execution is not None or self.current_state.value in IN_FLIGHT_STATES

    def can_transition_to(self, to_state: BridgeStatus) -> bool:
        return to_state in self.TRANSITIONS.get(self.current_state, set())

    @property
    def recipient(self) -> str:
        return self._recipient or self._wallet.address

    @property
    def fallback_url(self) -> str:
        """Relay web app link for completing the current transfer by hand."""
        intent = self._state.intent
        return build_fallback_url(
            self.source_chain,
            self.destination_chain,
            self.token.address,
            intent.amount_base_units if intent else 0,
            self.recipient,
            destination_currency=self.destination_currency.address,
            base_url=self._config.relay_app_url,
        )

    def snapshot(self) -> BridgeSnapshot:
        state = self._state
        return BridgeSnapshot(
            status=state.current_state,
            status_message=state.status_message,
            error=state.error,
            quote=state.quote,
            tx_hash=state.record.tx_hash if state.record else None,
            observed_chain_id=state.observed_chain_id,
            route=self.route,
            amount=state.amount_input,
            fallback_url=self.fallback_url,
            balances=dict(state.balances),
            record=state.record,
            executing=self._execution is not None,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for snapshots; returns a function that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    def set_amount(self, amount: str) -> None:
        """Record a new amount and (re)start the quote debounce timer.

        Empty, partial or non-positive input clears the quote and returns to
        idle without an error. Must be called from a running event loop.

        Raises:
            TransferInFlightError: a transfer is being submitted or settled.
            InvalidTransitionError: the session has finished; reset first.
        """
        self._ensure_accepting_input()

        state = self._state
        state.amount_input = amount
        self._cancel_debounce()
        self._generation += 1
        state.quote = None

        parsed = try_parse_amount(amount, self.token.decimals)
        if parsed is None:
            state.intent = None
            if self.current_state == BridgeStatus.IDLE:
                state.error = None
                self._notify()
            else:
                self._transition(BridgeStatus.IDLE, reason="Amount cleared")
            return

        state.intent = build_intent(self._resolved, parsed, user=self._wallet.address, recipient=self.recipient)
        self._transition(BridgeStatus.QUOTING, reason=f"Amount set to {amount}")
        generation = self._generation
        self._debounce_task = asyncio.create_task(self._debounced_quote(generation, self._session))

    async def set_max_amount(self) -> Optional[str]:
        """Enter the whole source-chain balance of the bridged token as the amount.

        Returns the amount entered, or ``None`` when the balance is empty or
        could not be read; the current amount is left alone in that case.
        """
        self._ensure_accepting_input()
        session = self._session
        try:
            balance = await self._balances.get_token_balance(
                self.source_chain.id, self.token.address, self._wallet.address
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.warning("Balance read on chain %s failed: %s", self.source_chain.id, exc)
            return None
        if session != self._session:
            return None

        self._state.balances[self.source_chain.id] = balance
        units = balance_to_base_units(balance, self.token.decimals)
        if units <= 0:
            self._notify()
            return None
        amount = decimal_to_str(from_base_units(units, self.token.decimals), places=self.token.decimals)
        self.set_amount(amount)
        return amount

    async def request_quote(self) -> Optional[BridgeQuote]:
        """Fetch a quote for the current amount immediately.

        Returns the quote, or ``None`` when the request failed (state
        ``error``) or was superseded by a newer request.
        """
        self._ensure_accepting_input()
        self._cancel_debounce()

        intent = self._state.intent
        if intent is None:
            self._fail(InvalidAmountError("No amount entered", user_message="Enter an amount to get a quote."))
            return None

        self._generation += 1
        if self.current_state != BridgeStatus.QUOTING:
            self._transition(BridgeStatus.QUOTING, reason="Quote requested")
        return await self._run_quote(self._generation, intent)

    async def execute(self) -> Optional[BridgeTransferRecord]:
        """Submit the deposit for the current quote.

        Returns the transfer record once the deposit is broadcast, or ``None``
        when a precondition, the network switch or the signature failed; the
        failure is recorded in state rather than raised.

        Raises:
            TransferInFlightError: a transfer is already being submitted or settled.
        """
        if self.is_busy:
            raise TransferInFlightError(f"Cannot execute while {self.current_state.value}")

        self._cancel_debounce()
        token = object()
        self._execution = token
        session = self._session
        try:
            return await self._execute(session)
        finally:
            if self._execution is token:
                self._execution = None
                if session != self._session:
                    # Reset while the wallet was busy; input is accepted again
                    self._notify()

    async def retry(self) -> Optional[BridgeQuote]:
        """Re-quote the preserved amount after an error or a failed network switch."""
        if self.current_state not in (BridgeStatus.ERROR, BridgeStatus.WRONG_CHAIN):
            raise InvalidTransitionError(
                from_state=self.current_state,
                to_state=BridgeStatus.QUOTING,
                message=f"Cannot retry from {self.current_state.value} state",
            )
        if self._state.intent is None:
            self._transition(BridgeStatus.IDLE, reason="Nothing to retry")
            return None
        return await self.request_quote()

    async def reset(self) -> None:
        """Return to idle from any state.

        Cancels the debounce timer, pending quote requests and settlement
        polling. A deposit that was already broadcast is final and keeps
        settling on Relay's side; it is simply no longer tracked here.
        """
        self._session += 1
        self._generation += 1
        tasks = self._cancel_tasks()

        previous = self._state
        if previous.record is not None and previous.record.in_flight and previous.record.tx_hash:
            self.logger.warning(
                "Reset while transfer %s (%s) is settling; it continues on Relay",
                previous.record.request_id,
                previous.record.tx_hash,
            )

        self._state = OrchestratorState(
            observed_chain_id=previous.observed_chain_id,
            balances=previous.balances,
            history=previous.history,
        )
        self._state.current_state = previous.current_state
        if previous.current_state != BridgeStatus.IDLE:
            self._transition(BridgeStatus.IDLE, reason="Reset", force=True)
        else:
            self._notify()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def aclose(self) -> None:
        """Discard the orchestrator: cancel everything and drop subscribers."""
        await self.reset()
        self._listeners.clear()
        if self._unsubscribe_chain is not None:
            self._unsubscribe_chain()
            self._unsubscribe_chain = None
        if self._listener_tasks:
            await asyncio.gather(*list(self._listener_tasks), return_exceptions=True)

    async def refresh_balances(self) -> Dict[int, str]:
        """Re-read the bridged token's balance on both chains."""
        owner = self._wallet.address
        targets = [
            (self.source_chain.id, self.token.address),
            (self.destination_chain.id, self.destination_currency.address),
        ]
        results = await asyncio.gather(
            *(self._balances.get_token_balance(chain_id, address, owner) for chain_id, address in targets),
            return_exceptions=True,
        )
        for (chain_id, _), result in zip(targets, results):
            if isinstance(result, BaseException):
                self.logger.warning("Balance refresh failed on chain %s: %s", chain_id, result)
                continue
            self._state.balances[chain_id] = result
        self._notify()
        return dict(self._state.balances)

    async def wait_until_settled(self) -> BridgeStatus:
        """Wait for settlement tracking (and the follow-up balance refresh) to finish."""
        if self._poll_task is not None:
            await asyncio.gather(self._poll_task, return_exceptions=True)
        # Refresh is scheduled by the poll task on completion
        if self._refresh_task is not None:
            await asyncio.gather(self._refresh_task, return_exceptions=True)
        return self.current_state

    # ─────────────────────────────────────────────────────────────────────────
    # Quoting
    # ─────────────────────────────────────────────────────────────────────────

    async def _debounced_quote(self, generation: int, session: int) -> None:
        await asyncio.sleep(self._timings.debounce_seconds)
        if generation != self._generation or session != self._session:
            return
        intent = self._state.intent
        if intent is None:
            return
        self._debounce_task = None
        task = asyncio.create_task(self._run_quote(generation, intent))
        self._quote_tasks.add(task)
        task.add_done_callback(self._quote_tasks.discard)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self.current_state == BridgeStatus.QUOTING

    async def _run_quote(self, generation: int, intent: BridgeIntent) -> Optional[BridgeQuote]:
        try:
            quote = await self._quotes.fetch_quote(intent, generation=generation)
        except asyncio.CancelledError:
            raise
        except BridgeError as exc:
            if not self._is_current(generation):
                self.logger.debug("Discarding failed quote for superseded generation %d", generation)
                return None
            self._fail(exc)
            return None
        except Exception as exc:
            self.logger.error("Unexpected quote failure: %s", exc, exc_info=True)
            if not self._is_current(generation):
                return None
            self._fail(QuoteError(f"Unexpected quote failure: {exc}"))
            return None

        if not self._is_current(generation):
            self.logger.debug(
                "Discarding quote %s for generation %d (current %d)",
                quote.request_id,
                generation,
                self._generation,
            )
            return None

        self._state.quote = quote
        self._transition(BridgeStatus.READY, reason=f"Quote {quote.request_id}")
        return quote

    # ─────────────────────────────────────────────────────────────────────────
    # Execution
    # ─────────────────────────────────────────────────────────────────────────

    async def _execute(self, session: int) -> Optional[BridgeTransferRecord]:
        state = self._state
        quote = state.quote
        intent = state.intent

        if state.current_state not in (BridgeStatus.READY, BridgeStatus.WRONG_CHAIN) or quote is None or intent is None:
            self._fail(NoQuoteError(f"No usable quote in state {state.current_state.value}"))
            return None
        if intent.amount_base_units <= 0:
            self._fail(InvalidAmountError("Amount must be greater than zero"))
            return None

        # Balance is read now, never trusted from an earlier display
        owner = self._wallet.address
        try:
            balance = await self._balances.get_token_balance(self.source_chain.id, self.token.address, owner)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.warning("Balance read on chain %s failed: %s", self.source_chain.id, exc)
            balance = None
        if session != self._session:
            return None
        if balance is not None:
            state.balances[self.source_chain.id] = balance
        available = balance_to_base_units(balance, self.token.decimals)
        if intent.amount_base_units > available:
            self._fail(InsufficientBalanceError(
                required=intent.amount_base_units,
                available=available,
                token=self.token.symbol,
                chain_id=self.source_chain.id,
            ))
            return None

        requoted = False
        if quote.is_expired(self._clock()):
            quote = await self._requote(quote, intent, session, reason="Quote expired")
            if quote is None:
                return None
            requoted = True

        if not await self._prepare_chain(quote, session):
            return None

        # Switching can outlast the TTL; refresh once more, then verify the chain again
        if quote.is_expired(self._clock()) and not requoted:
            quote = await self._requote(quote, intent, session, reason="Quote expired while confirming")
            if quote is None or not await self._prepare_chain(quote, session):
                return None
        if quote.is_expired(self._clock()):
            self._fail(ExpiredQuoteError(f"Quote {quote.request_id} expired at {quote.expires_at.isoformat()}"))
            return None

        try:
            tx = build_deposit_transfer(
                chain_id=quote.source_chain_id,
                sender=owner,
                token=self.token.address,
                deposit_address=quote.deposit_address,
                amount=intent.amount_base_units,
                request_id=quote.request_id,
            )
        except ValueError as exc:
            self._fail(UnknownQuoteResponseError(f"Cannot build deposit transfer: {exc}"))
            return None
        record = BridgeTransferRecord(
            request_id=quote.request_id,
            deposit_address=quote.deposit_address,
            amount_base_units=intent.amount_base_units,
            source_chain_id=quote.source_chain_id,
        )
        state.record = record

        try:
            tx_hash = await self._wallet.send_transaction(tx.to_address, tx.data, tx.value)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = classify_submission_error(exc, chain_id=quote.source_chain_id)
            record.status = TransferStatus.FAILED
            record.failure_reason = error.reason.value
            if error.is_benign:
                self.logger.info("Deposit signature declined by user")
            else:
                self.logger.warning("Deposit submission failed (%s): %s", error.reason.value, exc)
            if session == self._session:
                self._fail(error)
            return None

        record.tx_hash = tx_hash
        record.submitted_at = self._clock()
        record.status = TransferStatus.SUBMITTED

        if session != self._session:
            # Broadcast is final; the reset session simply stops tracking it
            self.logger.warning("Deposit %s broadcast after reset; settlement not tracked", tx_hash)
            return record

        self._transition(BridgeStatus.DEPOSITING, reason=f"Broadcast {tx_hash}")
        self._transition(BridgeStatus.BRIDGING, reason=f"Tracking Relay request {record.request_id}")
        self._poll_task = asyncio.create_task(self._track_settlement(record, session))
        return record

    async def _requote(
        self, stale: BridgeQuote, intent: BridgeIntent, session: int, *, reason: str
    ) -> Optional[BridgeQuote]:
        self.logger.info("Quote %s expired before submission; requesting a fresh one", stale.request_id)
        self._generation += 1
        self._transition(BridgeStatus.QUOTING, reason=reason)
        quote = await self._run_quote(self._generation, intent)
        if session != self._session:
            return None
        return quote

    async def _prepare_chain(self, quote: BridgeQuote, session: int) -> bool:
        """Put the wallet on the quote's source chain and enter ``confirming``.

        Returns ``False`` when the session was reset or the chain could not be
        verified; the failure is already recorded in state.
        """
        state = self._state
        try:
            active_chain = await self._wallet.get_active_chain_id()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.warning("Could not read active chain: %s", exc)
            active_chain = None
        if session != self._session:
            return False
        state.observed_chain_id = active_chain

        if active_chain != quote.source_chain_id:
            self._transition(BridgeStatus.SWITCHING, reason=f"Wallet on {active_chain}")
            try:
                state.observed_chain_id = await self._network.ensure_chain(quote.source_chain_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = classify_switch_error(
                    exc,
                    target_chain_id=quote.source_chain_id,
                    observed_chain_id=active_chain,
                )
                if session != self._session:
                    return False
                state.observed_chain_id = error.observed_chain_id
                if error.needs_manual_remediation:
                    self._transition(BridgeStatus.WRONG_CHAIN, reason=error.reason.value, error=error)
                else:
                    self._transition(BridgeStatus.ERROR, reason=error.reason.value, error=error)
                return False
            if session != self._session:
                return False

        self._transition(BridgeStatus.CONFIRMING, reason="Awaiting signature")
        try:
            state.observed_chain_id = await self._network.verify_chain(quote.source_chain_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = classify_switch_error(exc, target_chain_id=quote.source_chain_id)
            if session == self._session:
                state.observed_chain_id = error.observed_chain_id
                self._transition(BridgeStatus.WRONG_CHAIN, reason=SwitchFailureReason.DRIFT.value, error=error)
            return False
        return session == self._session

    # ─────────────────────────────────────────────────────────────────────────
    # Settlement
    # ─────────────────────────────────────────────────────────────────────────

    async def _track_settlement(self, record: BridgeTransferRecord, session: int) -> None:
        def _on_attempt(attempt: int, status: Optional[str]) -> None:
            if session != self._session:
                return
            record.poll_attempts = attempt
            self._notify()

        try:
            outcome = await self._poller.poll(record.request_id, on_attempt=_on_attempt)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.error("Settlement tracking for %s crashed: %s", record.request_id, exc, exc_info=True)
            outcome = SettlementOutcome(SettlementResult.TIMED_OUT, attempts=record.poll_attempts)

        if session != self._session:
            return
        self._apply_settlement(record, outcome, session)

    def _apply_settlement(self, record: BridgeTransferRecord, outcome: SettlementOutcome, session: int) -> None:
        record.poll_attempts = outcome.attempts
        record.destination_tx_hash = outcome.destination_tx_hash

        if outcome.result == SettlementResult.COMPLETE:
            record.status = TransferStatus.COMPLETE
            self._transition(BridgeStatus.COMPLETE, reason=f"Relay status {outcome.status}")
            self._refresh_task = asyncio.create_task(self._refresh_after_settlement(session))
        elif outcome.result == SettlementResult.FAILED:
            record.status = TransferStatus.REFUNDED if outcome.status == "refunded" else TransferStatus.FAILED
            record.failure_reason = outcome.status
            error = SettlementFailedError(
                f"Relay request {record.request_id} {outcome.status}",
                status=outcome.status or "failed",
                request_id=record.request_id,
                tx_hash=record.tx_hash,
            )
            self._transition(BridgeStatus.ERROR, reason=f"Relay status {outcome.status}", error=error)
        else:
            record.status = TransferStatus.TIMED_OUT
            error = SettlementTimeoutError(
                f"Relay request {record.request_id} unsettled after {outcome.attempts} checks",
                attempts=outcome.attempts,
                request_id=record.request_id,
                tx_hash=record.tx_hash,
            )
            self._transition(BridgeStatus.TIMED_OUT, reason="Settlement unconfirmed", error=error)

    async def _refresh_after_settlement(self, session: int) -> None:
        await asyncio.sleep(self._timings.balance_refresh_delay_seconds)
        if session == self._session:
            await self.refresh_balances()

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    def _ensure_accepting_input(self) -> None:
        if self.is_busy:
            raise TransferInFlightError(f"Transfer in progress ({self.current_state.value})")
        if self.current_state in (BridgeStatus.COMPLETE, BridgeStatus.TIMED_OUT):
            raise InvalidTransitionError(
                from_state=self.current_state,
                to_state=BridgeStatus.QUOTING,
                message=f"Session is {self.current_state.value}; reset before starting a new transfer",
            )

    def _status_message(self, status: BridgeStatus, error: Optional[BridgeError]) -> str:
        if error is not None:
            return error.user_message
        messages = {
            BridgeStatus.IDLE: "",
            BridgeStatus.QUOTING: "Getting quote...",
            BridgeStatus.READY: "Ready to bridge",
            BridgeStatus.SWITCHING: f"Switching to {self.source_chain.name} network...",
            BridgeStatus.CONFIRMING: "Confirm in your wallet...",
            BridgeStatus.DEPOSITING: "Sending to bridge...",
            BridgeStatus.BRIDGING: "Bridge in progress...",
            BridgeStatus.COMPLETE: "Bridge complete!",
        }
        return messages.get(status, "")

    def _transition(
        self,
        to_state: BridgeStatus,
        *,
        reason: Optional[str] = None,
        error: Optional[BridgeError] = None,
        force: bool = False,
    ) -> StateTransition:
        """Move to ``to_state`` and notify subscribers.

        Raises:
            InvalidTransitionError: If transition is not allowed
        """
        from_state = self.current_state
        if not force and not self.can_transition_to(to_state):
            raise InvalidTransitionError(
                from_state=from_state,
                to_state=to_state,
                message=f"Invalid transition from {from_state.value} to {to_state.value}. "
                        f"Allowed: {sorted(s.value for s in self.TRANSITIONS.get(from_state, set()))}",
            )

        transition = StateTransition(
            from_state=from_state,
            to_state=to_state,
            reason=reason,
            error_kind=error.kind.value if error else None,
        )
        self._state.current_state = to_state
        self._state.error = error
        self._state.status_message = self._status_message(to_state, error)
        self._state.history.append(transition)

        self.logger.info(
            f"Bridge {self.source_chain.key}->{self.destination_chain.key}: {from_state.value} -> {to_state.value}"
            f"{f' ({reason})' if reason else ''}"
        )
        self._notify()
        return transition

    def _fail(self, error: BridgeError) -> None:
        if self.current_state == BridgeStatus.ERROR:
            # Already failed; surface the newer error without a self-transition
            self._state.error = error
            self._state.status_message = error.user_message
            self._notify()
            return
        self._transition(BridgeStatus.ERROR, reason=error.kind.value, error=error)

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                result = listener(snapshot)
            except Exception as e:
                self.logger.error(f"Bridge listener error: {e}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"Bridge listener error: {task.exception()}")

    def _on_wallet_chain_changed(self, chain_id: int) -> None:
        self._state.observed_chain_id = int(chain_id)
        self._notify()

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None:
            self._debounce_task.cancel()
            self._debounce_task = None

    def _cancel_tasks(self) -> List[asyncio.Task]:
        current = asyncio.current_task()
        tasks: List[asyncio.Task] = []
        for task in [self._debounce_task, self._poll_task, self._refresh_task, *self._quote_tasks]:
            if task is not None and task is not current and not task.done():
                task.cancel()
                tasks.append(task)
        self._debounce_task = None
        self._poll_task = None
        self._refresh_task = None
        self._quote_tasks.clear()
        return tasks
