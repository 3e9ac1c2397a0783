"""Moves the wallet onto the transfer's source chain and verifies it stayed there."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .capabilities import WalletCapability
from .errors import ChainSwitchError, SwitchFailureReason, classify_switch_error

Sleep = Callable[[float], Awaitable[None]]


class NetworkSwitchCoordinator:
    """Network switch with a single verification step.

    When the wallet publishes chain-changed notifications the coordinator
    waits (bounded) for the target chain to be announced. Otherwise it waits a
    short settle period and re-reads the active chain once. A switch that
    reports success but leaves the wallet elsewhere fails as ``unverified``;
    there is no retry loop.
    """

    def __init__(
        self,
        wallet: WalletCapability,
        *,
        settle_seconds: float = 1.0,
        event_timeout_seconds: float = 5.0,
        sleep: Optional[Sleep] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._wallet = wallet
        self._settle_seconds = settle_seconds
        self._event_timeout_seconds = event_timeout_seconds
        self._sleep = sleep or asyncio.sleep
        self._logger = logger or logging.getLogger(__name__)

    async def ensure_chain(self, target_chain_id: int) -> int:
        """Return the active chain id once it equals ``target_chain_id``.

        Raises:
            ChainSwitchError: the switch was declined, failed, or could not be verified.
        """
        current = await self._wallet.get_active_chain_id()
        if current == target_chain_id:
            return current

        self._logger.info("Requesting chain switch %s -> %s", current, target_chain_id)

        arrived = asyncio.Event()

        def _on_chain_changed(chain_id: int) -> None:
            if int(chain_id) == target_chain_id:
                arrived.set()

        # Subscribe before asking so a fast wallet cannot announce the change unseen
        unsubscribe = self._wallet.subscribe_chain_changed(_on_chain_changed)
        try:
            try:
                await self._wallet.request_chain_switch(target_chain_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = classify_switch_error(exc, target_chain_id=target_chain_id, observed_chain_id=current)
                if error.reason == SwitchFailureReason.USER_REJECTED:
                    self._logger.info("Chain switch to %s declined by user", target_chain_id)
                else:
                    self._logger.warning("Chain switch to %s failed: %s", target_chain_id, exc)
                raise error from exc

            if unsubscribe is not None:
                try:
                    await asyncio.wait_for(arrived.wait(), timeout=self._event_timeout_seconds)
                    return target_chain_id
                except asyncio.TimeoutError:
                    self._logger.warning(
                        "No chain-changed event for %s within %.1fs; re-reading active chain",
                        target_chain_id,
                        self._event_timeout_seconds,
                    )
            else:
                await self._sleep(self._settle_seconds)
        finally:
            if unsubscribe is not None:
                unsubscribe()

        observed = await self._wallet.get_active_chain_id()
        if observed != target_chain_id:
            self._logger.warning(
                "Chain switch reported success but wallet is on %s (expected %s)",
                observed,
                target_chain_id,
            )
            raise ChainSwitchError(
                f"Wallet still on chain {observed} after switching to {target_chain_id}",
                reason=SwitchFailureReason.UNVERIFIED,
                target_chain_id=target_chain_id,
                observed_chain_id=observed,
            )
        return observed

    async def verify_chain(self, expected_chain_id: int) -> int:
        """Re-read the active chain immediately before submission.

        Raises:
            ChainSwitchError: with reason ``drift`` when the wallet moved.
        """
        observed = await self._wallet.get_active_chain_id()
        if observed != expected_chain_id:
            self._logger.warning("Active chain drifted to %s before submission (expected %s)", observed, expected_chain_id)
            raise ChainSwitchError(
                f"Active chain {observed} does not match quote source chain {expected_chain_id}",
                reason=SwitchFailureReason.DRIFT,
                target_chain_id=expected_chain_id,
                observed_chain_id=observed,
            )
        return observed
