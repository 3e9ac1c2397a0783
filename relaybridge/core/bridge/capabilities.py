from abc import ABC, abstractmethod
from typing import Callable, Optional

ChainChangedCallback = Callable[[int], None]
Unsubscribe = Callable[[], None]


class WalletCapability(ABC):
    """Wallet operations the orchestrator needs, injected by the host application."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Connected account address"""
        pass

    @abstractmethod
    async def get_active_chain_id(self) -> int:
        """Chain the wallet is currently connected to"""
        pass

    @abstractmethod
    async def request_chain_switch(self, chain_id: int) -> None:
        """Ask the wallet to move to ``chain_id``; raises if the request fails or is declined"""
        pass

    @abstractmethod
    async def send_transaction(self, to: str, data: str, value: int = 0) -> str:
        """Sign and broadcast a transaction on the active chain, returning its hash"""
        pass

    def subscribe_chain_changed(self, callback: ChainChangedCallback) -> Optional[Unsubscribe]:
        """Register for chain-changed notifications.

        Wallets without notifications return ``None``; the caller then falls
        back to re-reading the active chain.
        """
        return None


class BalanceObserver(ABC):
    """Read-only token balance source"""

    @abstractmethod
    async def get_token_balance(self, chain_id: int, token_address: str, owner: str) -> str:
        """Balance of ``owner`` as a decimal string in whole-token units"""
        pass
