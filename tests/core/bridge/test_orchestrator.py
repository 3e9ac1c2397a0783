"""
Tests for the Bridge Orchestrator

Covers the full transfer lifecycle against in-memory wallet, balance and
Relay fakes: debounced quoting, stale-response suppression, network
switching, quote expiry, submission failures, settlement polling and reset.
"""

import asyncio
import dataclasses
from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import (
    ARBITRUM,
    ARBITRUM_USDC,
    BASE,
    BASE_USDC,
    ETHEREUM,
    FAST_TIMINGS,
    USER,
    FakeBalances,
    FakeRelay,
    FakeWallet,
    WalletError,
    deposit_address,
)
from relaybridge.core.bridge.amounts import to_base_units
from relaybridge.core.bridge.constants import NATIVE_PLACEHOLDER
from relaybridge.core.bridge.errors import (
    ChainSwitchError,
    ExpiredQuoteError,
    InsufficientBalanceError,
    InvalidTransitionError,
    NoQuoteError,
    QuoteError,
    SettlementFailedError,
    SettlementTimeoutError,
    SubmissionError,
    SwitchFailureReason,
    TransferInFlightError,
    UnknownQuoteResponseError,
)
from relaybridge.core.bridge.models import BridgePurpose, BridgeRoute, BridgeStatus, TransferStatus
from relaybridge.core.bridge.tx_builder import decode_transfer


async def wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


async def ready(orchestrator, amount: str):
    """Enter ``amount`` and fetch its quote without waiting for the debounce."""
    orchestrator.set_amount(amount)
    quote = await orchestrator.request_quote()
    assert orchestrator.current_state == BridgeStatus.READY
    return quote


def http_error(status: int, body: dict) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.relay.link/quote")
    response = httpx.Response(status, json=body, request=request)
    return httpx.HTTPStatusError("Relay error", request=request, response=response)


# =============================================================================
# Scenarios
# =============================================================================

class TestScenarios:
    """End-to-end flows through the orchestrator."""

    @pytest.mark.asyncio
    async def test_happy_path_completes_and_refreshes_balances(
        self, make_orchestrator, wallet, balances, relay
    ):
        """25 USDC Base -> Arbitrum with the wallet already on Base."""
        orchestrator = make_orchestrator()
        statuses = []
        orchestrator.subscribe(lambda snapshot: statuses.append(snapshot.status))

        quote = await ready(orchestrator, "25")
        assert quote.fee_total_usd == Decimal("0.50")
        assert quote.deposit_address == deposit_address(1)

        record = await orchestrator.execute()

        assert record is not None
        assert record.tx_hash is not None
        assert await orchestrator.wait_until_settled() == BridgeStatus.COMPLETE

        assert wallet.switch_requests == []
        assert len(wallet.sent) == 1
        assert wallet.sent[0]["to"] == BASE_USDC
        assert decode_transfer(wallet.sent[0]["data"]) == {
            "to": deposit_address(1),
            "amount": 25_000_000,
        }

        assert len(relay.status_calls) == 2
        assert record.status == TransferStatus.COMPLETE
        assert record.poll_attempts == 2
        assert record.destination_tx_hash == "0x" + "d" * 64

        assert (BASE, BASE_USDC, USER) in balances.calls
        assert (ARBITRUM, ARBITRUM_USDC, USER) in balances.calls
        assert orchestrator.snapshot().status_message == "Bridge complete!"
        assert statuses[-1] == BridgeStatus.COMPLETE
        for expected in (BridgeStatus.QUOTING, BridgeStatus.READY, BridgeStatus.CONFIRMING,
                         BridgeStatus.DEPOSITING, BridgeStatus.BRIDGING):
            assert expected in statuses

    @pytest.mark.asyncio
    @pytest.mark.parametrize("events", [False, True])
    async def test_unverified_switch_ends_in_wrong_chain(self, make_orchestrator, events):
        """Switch reports success but the wallet stays on Ethereum."""
        wallet = FakeWallet(chain_id=ETHEREUM, switch_mode="noop", events=events)
        orchestrator = make_orchestrator(wallet=wallet)
        await ready(orchestrator, "10")

        assert await orchestrator.execute() is None

        snapshot = orchestrator.snapshot()
        assert snapshot.status == BridgeStatus.WRONG_CHAIN
        assert wallet.switch_requests == [BASE]
        assert wallet.sent == []
        assert isinstance(snapshot.error, ChainSwitchError)
        assert snapshot.error.reason == SwitchFailureReason.UNVERIFIED
        assert snapshot.observed_chain_id == ETHEREUM
        assert snapshot.is_wrong_chain
        assert snapshot.fallback_url == (
            "https://relay.link/bridge/arbitrum"
            "?fromChainId=8453&toChainId=42161"
            f"&fromCurrency={BASE_USDC}&toCurrency={ARBITRUM_USDC}"
            f"&amount=10000000&toAddress={USER}"
        )

    @pytest.mark.asyncio
    async def test_expired_quote_is_refreshed_before_submission(self, make_orchestrator, wallet, relay, clock):
        """A quote left unused past its TTL is never submitted against."""
        orchestrator = make_orchestrator()
        stale = await ready(orchestrator, "25")

        clock.advance(31)
        assert stale.is_expired(clock())

        record = await orchestrator.execute()

        assert len(relay.quote_calls) == 2
        assert record.request_id == "0xreq2"
        assert len(wallet.sent) == 1
        assert decode_transfer(wallet.sent[0]["data"])["to"] == deposit_address(2)
        reasons = [t.reason for t in orchestrator.history]
        assert "Quote expired" in reasons
        await orchestrator.aclose()


# =============================================================================
# Amount entry and quoting
# =============================================================================

class TestQuoting:
    """Tests for amount entry, debounce and quote freshness."""

    @pytest.mark.asyncio
    async def test_only_newest_quote_is_applied(self, make_orchestrator):
        """Responses for 5 and 10 arrive after the answer for 7 and are dropped."""
        relay = FakeRelay(delays={"5000000": 0.15, "10000000": 0.08})
        orchestrator = make_orchestrator(relay=relay)

        orchestrator.set_amount("5")
        await wait_until(lambda: len(relay.quote_calls) == 1)
        orchestrator.set_amount("10")
        await wait_until(lambda: len(relay.quote_calls) == 2)
        orchestrator.set_amount("7")
        await wait_until(lambda: orchestrator.current_state == BridgeStatus.READY)

        # Let the slower, stale responses land
        await asyncio.sleep(0.25)

        assert [call["amount"] for call in relay.quote_calls] == ["5000000", "10000000", "7000000"]
        assert orchestrator.current_state == BridgeStatus.READY
        assert orchestrator.state.quote.source_amount == 7_000_000
        assert orchestrator.state.quote.request_id == "0xreq3"
        assert [t.to_state for t in orchestrator.history].count(BridgeStatus.READY) == 1

    @pytest.mark.asyncio
    async def test_rapid_edits_are_debounced(self, make_orchestrator, relay):
        orchestrator = make_orchestrator(timings=dataclasses.replace(FAST_TIMINGS, debounce_seconds=0.02))

        for amount in ("1", "12", "125"):
            orchestrator.set_amount(amount)

        await wait_until(lambda: orchestrator.current_state == BridgeStatus.READY)
        assert [call["amount"] for call in relay.quote_calls] == ["125000000"]

    @pytest.mark.asyncio
    async def test_quote_request_payload(self, make_orchestrator, relay):
        orchestrator = make_orchestrator()
        await ready(orchestrator, "25.5")

        payload = relay.quote_calls[0]
        assert payload["originChainId"] == BASE
        assert payload["destinationChainId"] == ARBITRUM
        assert payload["originCurrency"] == BASE_USDC
        assert payload["destinationCurrency"] == ARBITRUM_USDC
        assert payload["amount"] == "25500000"
        assert payload["useDepositAddress"] is True
        assert payload["tradeType"] == "EXACT_INPUT"
        assert payload["user"] == USER
        assert payload["recipient"] == USER
        assert payload["refundTo"] == USER

    @pytest.mark.asyncio
    async def test_gas_topup_quotes_native_destination(self, make_orchestrator, relay):
        route = BridgeRoute(BASE, ARBITRUM, purpose=BridgePurpose.GAS_TOPUP)
        orchestrator = make_orchestrator(route=route)

        await ready(orchestrator, "1")

        assert relay.quote_calls[0]["destinationCurrency"] == NATIVE_PLACEHOLDER
        assert orchestrator.state.quote.dest_decimals == 18

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["", "0", "0.", "abc", "-5", "1.1234567"])
    async def test_unusable_input_returns_to_idle_without_error(self, make_orchestrator, relay, raw):
        orchestrator = make_orchestrator()
        await ready(orchestrator, "25")

        orchestrator.set_amount(raw)
        await asyncio.sleep(0.01)

        assert orchestrator.current_state == BridgeStatus.IDLE
        assert orchestrator.state.quote is None
        assert orchestrator.state.error is None
        assert len(relay.quote_calls) == 1

    @pytest.mark.asyncio
    async def test_quote_http_error_surfaces_relay_message(self, make_orchestrator):
        relay = FakeRelay(quote_errors=[http_error(400, {"message": "Amount too low"})])
        orchestrator = make_orchestrator(relay=relay)

        orchestrator.set_amount("0.01")
        assert await orchestrator.request_quote() is None

        snapshot = orchestrator.snapshot()
        assert snapshot.status == BridgeStatus.ERROR
        assert isinstance(snapshot.error, QuoteError)
        assert "Amount too low" in snapshot.error.user_message
        assert snapshot.amount == "0.01"

        # The amount survives the error, so retry can quote again
        quote = await orchestrator.retry()
        assert quote is not None
        assert orchestrator.current_state == BridgeStatus.READY

    @pytest.mark.asyncio
    async def test_response_without_deposit_address_is_unknown(self, make_orchestrator, relay):
        relay.quote = AsyncMock(return_value={"steps": [{"id": "approve", "items": []}], "fees": {}})
        orchestrator = make_orchestrator()

        orchestrator.set_amount("5")
        await orchestrator.request_quote()

        assert orchestrator.current_state == BridgeStatus.ERROR
        assert isinstance(orchestrator.state.error, UnknownQuoteResponseError)

    @pytest.mark.asyncio
    async def test_request_quote_without_amount_fails(self, make_orchestrator, relay):
        orchestrator = make_orchestrator()

        assert await orchestrator.request_quote() is None

        assert orchestrator.current_state == BridgeStatus.ERROR
        assert relay.quote_calls == []


# =============================================================================
# Max amount
# =============================================================================

class TestMaxAmount:
    """Filling the amount from the source-chain balance."""

    @pytest.mark.asyncio
    async def test_max_enters_whole_balance(self, make_orchestrator, relay):
        orchestrator = make_orchestrator(balances=FakeBalances({BASE: "100.123456"}))

        assert await orchestrator.set_max_amount() == "100.123456"
        await wait_until(lambda: orchestrator.current_state == BridgeStatus.READY)

        assert orchestrator.state.amount_input == "100.123456"
        assert orchestrator.state.intent.amount_base_units == 100_123_456
        assert relay.quote_calls[-1]["amount"] == "100123456"
        assert orchestrator.state.balances[BASE] == "100.123456"

    @pytest.mark.asyncio
    async def test_max_never_exceeds_balance(self, make_orchestrator):
        orchestrator = make_orchestrator(balances=FakeBalances({BASE: "12.3456789"}))

        assert await orchestrator.set_max_amount() == "12.345678"
        assert orchestrator.state.intent.amount_base_units == 12_345_678
        await orchestrator.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("balances", [
        FakeBalances({BASE: "0"}),
        FakeBalances(error=RuntimeError("rpc down")),
    ])
    async def test_max_without_balance_keeps_amount(self, make_orchestrator, relay, balances):
        orchestrator = make_orchestrator(balances=balances)

        assert await orchestrator.set_max_amount() is None

        assert orchestrator.current_state == BridgeStatus.IDLE
        assert orchestrator.state.amount_input == ""
        assert relay.quote_calls == []


# =============================================================================
# Execution preconditions
# =============================================================================

class TestExecutionPreconditions:
    """Checks that run before anything is sent."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0.000001", "1", "25", "99.99", "100"])
    async def test_exactly_one_transfer_of_the_entered_amount(self, make_orchestrator, wallet, amount):
        orchestrator = make_orchestrator()
        await ready(orchestrator, amount)

        await orchestrator.execute()

        assert len(wallet.sent) == 1
        decoded = decode_transfer(wallet.sent[0]["data"])
        assert decoded["amount"] == to_base_units(Decimal(amount), 6)
        await orchestrator.aclose()

    @pytest.mark.asyncio
    async def test_execute_without_quote(self, make_orchestrator, wallet):
        orchestrator = make_orchestrator()

        assert await orchestrator.execute() is None

        assert orchestrator.current_state == BridgeStatus.ERROR
        assert isinstance(orchestrator.state.error, NoQuoteError)
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_insufficient_balance_blocks_submission(self, make_orchestrator, wallet):
        orchestrator = make_orchestrator(balances=FakeBalances({BASE: "10"}))
        await ready(orchestrator, "25")

        await orchestrator.execute()

        error = orchestrator.state.error
        assert orchestrator.current_state == BridgeStatus.ERROR
        assert isinstance(error, InsufficientBalanceError)
        assert error.required == 25_000_000
        assert error.available == 10_000_000
        assert orchestrator.snapshot().status_message == "Insufficient balance"
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_unreadable_balance_counts_as_zero(self, make_orchestrator, wallet):
        orchestrator = make_orchestrator(balances=FakeBalances(error=RuntimeError("rpc down")))
        await ready(orchestrator, "1")

        await orchestrator.execute()

        assert isinstance(orchestrator.state.error, InsufficientBalanceError)
        assert orchestrator.state.error.available == 0
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_quote_that_keeps_expiring_is_rejected(self, make_orchestrator, relay, clock):
        """Every chain read costs 20s, so even the refreshed quote is stale at send time."""
        class SlowWallet(FakeWallet):
            async def get_active_chain_id(self) -> int:
                clock.advance(20)
                return await super().get_active_chain_id()

        wallet = SlowWallet()
        orchestrator = make_orchestrator(wallet=wallet)
        await ready(orchestrator, "25")

        assert await orchestrator.execute() is None

        assert len(relay.quote_calls) == 2
        assert orchestrator.current_state == BridgeStatus.ERROR
        assert isinstance(orchestrator.state.error, ExpiredQuoteError)
        assert "Getting a new one" not in orchestrator.snapshot().status_message
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_quote_expiring_during_switch_is_refreshed(self, make_orchestrator, relay, clock):
        class SlowSwitchWallet(FakeWallet):
            async def request_chain_switch(self, chain_id: int) -> None:
                clock.advance(31)
                await super().request_chain_switch(chain_id)

        wallet = SlowSwitchWallet(chain_id=ETHEREUM)
        orchestrator = make_orchestrator(wallet=wallet)
        await ready(orchestrator, "25")

        record = await orchestrator.execute()

        assert len(relay.quote_calls) == 2
        assert wallet.switch_requests == [BASE]
        assert record.request_id == "0xreq2"
        assert len(wallet.sent) == 1
        assert decode_transfer(wallet.sent[0]["data"]) == {"to": deposit_address(2), "amount": 25_000_000}
        assert "Quote expired while confirming" in [t.reason for t in orchestrator.history]
        await orchestrator.aclose()

    @pytest.mark.asyncio
    async def test_execute_cancels_pending_debounce(self, make_orchestrator, relay):
        orchestrator = make_orchestrator(timings=dataclasses.replace(FAST_TIMINGS, debounce_seconds=0.05))
        orchestrator.set_amount("25")

        assert await orchestrator.execute() is None
        await asyncio.sleep(0.1)

        assert isinstance(orchestrator.state.error, NoQuoteError)
        assert orchestrator.current_state == BridgeStatus.ERROR
        assert relay.quote_calls == []

    @pytest.mark.asyncio
    async def test_invalid_recipient_rejected(self, make_orchestrator):
        with pytest.raises(ValueError):
            make_orchestrator(recipient="0xnot-an-address")


# =============================================================================
# Network switching
# =============================================================================

class TestNetworkSwitching:
    """Tests for chain verification around submission."""

    @pytest.mark.asyncio
    async def test_switch_then_submit(self, make_orchestrator):
        wallet = FakeWallet(chain_id=ETHEREUM, switch_mode="ok", events=True)
        orchestrator = make_orchestrator(wallet=wallet)
        await ready(orchestrator, "25")

        record = await orchestrator.execute()

        assert record is not None
        assert wallet.switch_requests == [BASE]
        assert len(wallet.sent) == 1
        assert wallet.sent[0]["chain_id"] == BASE
        states = [t.to_state for t in orchestrator.history]
        assert states.index(BridgeStatus.SWITCHING) < states.index(BridgeStatus.CONFIRMING)
        await orchestrator.aclose()

    @pytest.mark.asyncio
    async def test_declined_switch_is_retryable_error(self, make_orchestrator):
        wallet = FakeWallet(chain_id=ETHEREUM, switch_mode="reject")
        orchestrator = make_orchestrator(wallet=wallet)
        await ready(orchestrator, "25")

        await orchestrator.execute()

        assert orchestrator.current_state == BridgeStatus.ERROR
        assert orchestrator.state.error.reason == SwitchFailureReason.USER_REJECTED
        assert wallet.switch_requests == [BASE]
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_switch_provider_error_needs_manual_remediation(self, make_orchestrator):
        wallet = FakeWallet(chain_id=ETHEREUM, switch_mode="fail")
        orchestrator = make_orchestrator(wallet=wallet)
        await ready(orchestrator, "25")

        await orchestrator.execute()

        assert orchestrator.current_state == BridgeStatus.WRONG_CHAIN
        assert orchestrator.state.error.reason == SwitchFailureReason.TECHNICAL
        assert len(wallet.switch_requests) == 1
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_chain_drift_before_signing(self, make_orchestrator, wallet):
        wallet.scripted_chains = [BASE, ETHEREUM]
        orchestrator = make_orchestrator()
        await ready(orchestrator, "25")

        await orchestrator.execute()

        assert orchestrator.current_state == BridgeStatus.WRONG_CHAIN
        assert orchestrator.state.error.reason == SwitchFailureReason.DRIFT
        assert orchestrator.state.observed_chain_id == ETHEREUM
        assert wallet.switch_requests == []
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_manual_switch_then_execute_from_wrong_chain(self, make_orchestrator):
        wallet = FakeWallet(chain_id=ETHEREUM, switch_mode="noop")
        orchestrator = make_orchestrator(wallet=wallet)
        await ready(orchestrator, "25")
        await orchestrator.execute()
        assert orchestrator.current_state == BridgeStatus.WRONG_CHAIN

        # User fixes the wallet by hand
        wallet.chain_id = BASE
        record = await orchestrator.execute()

        assert record is not None
        assert len(wallet.sent) == 1
        await orchestrator.aclose()

    @pytest.mark.asyncio
    async def test_chain_events_update_snapshot(self, make_orchestrator):
        wallet = FakeWallet(events=True)
        orchestrator = make_orchestrator(wallet=wallet)

        wallet.emit_chain_changed(ETHEREUM)

        snapshot = orchestrator.snapshot()
        assert snapshot.observed_chain_id == ETHEREUM
        assert snapshot.is_wrong_chain

        await orchestrator.aclose()
        assert wallet._listeners == []


# =============================================================================
# Submission
# =============================================================================

class TestSubmission:
    """Tests for signing outcomes and the single-transfer guard."""

    @pytest.mark.asyncio
    async def test_declined_signature(self, make_orchestrator, wallet):
        wallet.send_error = WalletError("User rejected the request.", code=4001)
        orchestrator = make_orchestrator()
        await ready(orchestrator, "25")

        assert await orchestrator.execute() is None

        error = orchestrator.state.error
        assert orchestrator.current_state == BridgeStatus.ERROR
        assert isinstance(error, SubmissionError)
        assert error.is_benign
        assert orchestrator.snapshot().status_message == "Transaction cancelled"
        assert orchestrator.state.record.status == TransferStatus.FAILED

        wallet.send_error = None
        await orchestrator.retry()
        assert await orchestrator.execute() is not None
        assert len(wallet.sent) == 1
        await orchestrator.aclose()

    @pytest.mark.asyncio
    async def test_insufficient_gas_is_classified(self, make_orchestrator, wallet):
        wallet.send_error = WalletError("insufficient funds for gas * price + value")
        orchestrator = make_orchestrator()
        await ready(orchestrator, "25")

        await orchestrator.execute()

        assert "Insufficient gas" in orchestrator.state.error.user_message
        assert not orchestrator.state.error.is_benign

    @pytest.mark.asyncio
    async def test_commands_rejected_while_busy(self, make_orchestrator, wallet):
        gate = asyncio.Event()
        wallet.send_gate = gate
        orchestrator = make_orchestrator(timings=dataclasses.replace(FAST_TIMINGS, poll_interval_seconds=0.05))
        await ready(orchestrator, "25")

        task = asyncio.create_task(orchestrator.execute())
        await wait_until(lambda: orchestrator.current_state == BridgeStatus.CONFIRMING)

        assert orchestrator.is_busy
        with pytest.raises(TransferInFlightError):
            await orchestrator.execute()
        with pytest.raises(TransferInFlightError):
            orchestrator.set_amount("1")

        gate.set()
        await task

        assert orchestrator.current_state == BridgeStatus.BRIDGING
        with pytest.raises(TransferInFlightError):
            orchestrator.set_amount("1")
        with pytest.raises(TransferInFlightError):
            await orchestrator.execute()

        await orchestrator.wait_until_settled()
        assert len(wallet.sent) == 1

    @pytest.mark.asyncio
    async def test_reset_while_awaiting_signature_does_not_track_broadcast(self, make_orchestrator, wallet, relay):
        gate = asyncio.Event()
        wallet.send_gate = gate
        orchestrator = make_orchestrator()
        await ready(orchestrator, "25")

        task = asyncio.create_task(orchestrator.execute())
        await wait_until(lambda: orchestrator.current_state == BridgeStatus.CONFIRMING)
        await orchestrator.reset()

        snapshots = []
        orchestrator.subscribe(snapshots.append)
        assert orchestrator.current_state == BridgeStatus.IDLE
        # The wallet prompt is still open
        with pytest.raises(TransferInFlightError):
            orchestrator.set_amount("1")
        assert orchestrator.snapshot().is_busy
        assert orchestrator.snapshot().to_dict()["busy"] is True

        gate.set()
        record = await task
        await asyncio.sleep(0.01)

        assert record.tx_hash is not None
        assert relay.status_calls == []
        assert orchestrator.current_state == BridgeStatus.IDLE
        assert snapshots and not snapshots[-1].is_busy
        orchestrator.set_amount("1")


# =============================================================================
# Settlement
# =============================================================================

class TestSettlement:
    """Tests for settlement outcomes."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal,record_status", [
        ("refunded", TransferStatus.REFUNDED),
        ("failed", TransferStatus.FAILED),
    ])
    async def test_failed_settlement(self, make_orchestrator, terminal, record_status):
        relay = FakeRelay(statuses=["pending", terminal])
        orchestrator = make_orchestrator(relay=relay)
        await ready(orchestrator, "25")

        record = await orchestrator.execute()
        assert await orchestrator.wait_until_settled() == BridgeStatus.ERROR

        error = orchestrator.state.error
        assert isinstance(error, SettlementFailedError)
        assert error.status == terminal
        assert not error.recoverable
        assert record.status == record_status
        assert "refunded" in orchestrator.snapshot().status_message

    @pytest.mark.asyncio
    async def test_unsettled_transfer_times_out(self, make_orchestrator):
        relay = FakeRelay(statuses=["pending"])
        orchestrator = make_orchestrator(relay=relay)
        await ready(orchestrator, "25")

        record = await orchestrator.execute()
        assert await orchestrator.wait_until_settled() == BridgeStatus.TIMED_OUT

        assert len(relay.status_calls) == FAST_TIMINGS.poll_max_attempts
        assert isinstance(orchestrator.state.error, SettlementTimeoutError)
        assert orchestrator.state.error.advisory
        assert record.status == TransferStatus.TIMED_OUT
        assert orchestrator.snapshot().status_message.startswith("Taking longer than expected")

        with pytest.raises(InvalidTransitionError):
            orchestrator.set_amount("5")
        await orchestrator.reset()
        assert orchestrator.current_state == BridgeStatus.IDLE
        orchestrator.set_amount("5")

    @pytest.mark.asyncio
    async def test_transport_errors_use_up_attempts(self, make_orchestrator):
        relay = FakeRelay(statuses=[httpx.ConnectError("unreachable"), "success"])
        orchestrator = make_orchestrator(relay=relay)
        await ready(orchestrator, "25")

        record = await orchestrator.execute()

        assert await orchestrator.wait_until_settled() == BridgeStatus.COMPLETE
        assert record.poll_attempts == 2

    @pytest.mark.asyncio
    async def test_no_polling_after_reset(self, make_orchestrator):
        relay = FakeRelay(statuses=["pending"])
        timings = dataclasses.replace(FAST_TIMINGS, poll_interval_seconds=0.005, poll_max_attempts=1000)
        orchestrator = make_orchestrator(relay=relay, timings=timings)
        await ready(orchestrator, "25")
        await orchestrator.execute()
        await wait_until(lambda: len(relay.status_calls) >= 2)

        await orchestrator.reset()
        calls = len(relay.status_calls)
        await asyncio.sleep(0.05)

        assert len(relay.status_calls) == calls
        assert orchestrator.current_state == BridgeStatus.IDLE
        assert orchestrator.snapshot().record is None


# =============================================================================
# Observers and lifecycle
# =============================================================================

class TestObservers:
    """Tests for subscribe/notify and reset."""

    @pytest.mark.asyncio
    async def test_sync_and_async_listeners(self, make_orchestrator):
        orchestrator = make_orchestrator()
        seen_sync = []
        seen_async = []

        async def on_change(snapshot):
            seen_async.append(snapshot.status)

        orchestrator.subscribe(seen_sync.append)
        unsubscribe = orchestrator.subscribe(on_change)

        await ready(orchestrator, "25")
        await asyncio.sleep(0)

        assert [s.status for s in seen_sync][-1] == BridgeStatus.READY
        assert seen_async[-1] == BridgeStatus.READY

        unsubscribe()
        await orchestrator.reset()
        await asyncio.sleep(0)
        assert seen_async[-1] == BridgeStatus.READY
        assert seen_sync[-1].status == BridgeStatus.IDLE

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_transitions(self, make_orchestrator):
        orchestrator = make_orchestrator()

        def broken(snapshot):
            raise RuntimeError("render failed")

        orchestrator.subscribe(broken)
        await ready(orchestrator, "25")

        assert orchestrator.current_state == BridgeStatus.READY

    @pytest.mark.asyncio
    async def test_reset_keeps_balances_and_history(self, make_orchestrator):
        orchestrator = make_orchestrator()
        await orchestrator.refresh_balances()
        await ready(orchestrator, "25")

        await orchestrator.reset()

        state = orchestrator.state
        assert state.current_state == BridgeStatus.IDLE
        assert state.amount_input == ""
        assert state.quote is None
        assert state.balances == {BASE: "100", ARBITRUM: "0"}
        assert orchestrator.history[-1].reason == "Reset"

    @pytest.mark.asyncio
    async def test_retry_only_from_failure_states(self, make_orchestrator):
        orchestrator = make_orchestrator()

        with pytest.raises(InvalidTransitionError):
            await orchestrator.retry()

    @pytest.mark.asyncio
    async def test_snapshot_serializes(self, make_orchestrator):
        orchestrator = make_orchestrator()
        await ready(orchestrator, "25")

        data = orchestrator.snapshot().to_dict()

        assert data["status"] == "ready"
        assert data["quote"]["requestId"] == "0xreq1"
        assert data["quote"]["sourceAmount"] == "25000000"
        assert data["purpose"] == "bridge"
        assert data["fallbackUrl"].startswith("https://relay.link/bridge/arbitrum?")
