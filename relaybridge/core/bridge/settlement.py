"""Bounded polling of Relay's settlement status endpoint."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ...providers.relay import RelayProvider
from .constants import SETTLEMENT_FAILURE_STATUSES, SETTLEMENT_SUCCESS_STATUSES

Sleep = Callable[[float], Awaitable[None]]
AttemptCallback = Callable[[int, Optional[str]], None]


class SettlementResult(str, Enum):
    COMPLETE = "complete"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class SettlementOutcome:
    result: SettlementResult
    attempts: int
    status: Optional[str] = None            # Last status string Relay reported
    destination_tx_hash: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.result == SettlementResult.COMPLETE


def _destination_tx_hash(data: Dict[str, Any]) -> Optional[str]:
    hashes = data.get("txHashes")
    if isinstance(hashes, dict):
        return hashes.get("destination")
    if isinstance(hashes, list) and hashes:
        last = hashes[-1]
        if isinstance(last, dict):
            return last.get("txHash") or last.get("hash")
        return str(last)
    return None


class SettlementPoller:
    """Polls ``/intents/status`` until a terminal status or the attempt cap.

    Polling always terminates: ``success``/``completed`` complete it,
    ``failed``/``refunded`` fail it, and reaching ``max_attempts`` yields an
    advisory timeout. Transport errors use up an attempt. Cancelling the task
    running :meth:`poll` stops further requests.
    """

    def __init__(
        self,
        relay: Optional[RelayProvider] = None,
        *,
        interval_seconds: float = 3.0,
        max_attempts: int = 60,
        sleep: Optional[Sleep] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._relay = relay or RelayProvider()
        self._interval = interval_seconds
        self._max_attempts = max_attempts
        self._sleep = sleep or asyncio.sleep
        self._logger = logger or logging.getLogger(__name__)

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def poll(self, request_id: str, *, on_attempt: Optional[AttemptCallback] = None) -> SettlementOutcome:
        last_status: Optional[str] = None
        for attempt in range(1, self._max_attempts + 1):
            await self._sleep(self._interval)
            try:
                data = await self._relay.get_status(request_id)
            except (httpx.HTTPError, ValueError) as exc:
                self._logger.warning("Status check %d/%d for %s failed: %s", attempt, self._max_attempts, request_id, exc)
                if on_attempt:
                    on_attempt(attempt, None)
                continue

            status = str(data.get("status") or "").lower() if isinstance(data, dict) else ""
            last_status = status or last_status
            if on_attempt:
                on_attempt(attempt, status or None)

            if status in SETTLEMENT_SUCCESS_STATUSES:
                self._logger.info("Relay request %s settled after %d checks", request_id, attempt)
                return SettlementOutcome(
                    SettlementResult.COMPLETE,
                    attempts=attempt,
                    status=status,
                    destination_tx_hash=_destination_tx_hash(data),
                )
            if status in SETTLEMENT_FAILURE_STATUSES:
                self._logger.warning("Relay request %s ended with status %s", request_id, status)
                return SettlementOutcome(
                    SettlementResult.FAILED,
                    attempts=attempt,
                    status=status,
                    destination_tx_hash=_destination_tx_hash(data),
                )

        self._logger.warning("Relay request %s still unsettled after %d checks", request_id, self._max_attempts)
        return SettlementOutcome(SettlementResult.TIMED_OUT, attempts=self._max_attempts, status=last_status)
