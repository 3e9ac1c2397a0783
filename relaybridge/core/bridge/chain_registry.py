"""Static chain registry for the networks the bridge supports."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from ...config import Settings, settings as default_settings
from .constants import CHAIN_METADATA, NATIVE_PLACEHOLDER
from .errors import UnsupportedChainError


@dataclass(frozen=True)
class TokenDescriptor:
    symbol: str
    address: str
    decimals: int

    @property
    def is_native(self) -> bool:
        return self.address.lower() == NATIVE_PLACEHOLDER


@dataclass(frozen=True)
class ChainDescriptor:
    """A supported network: id, native asset, token contracts and endpoints."""

    id: int
    key: str
    name: str
    native_symbol: str
    native_decimals: int
    rpc_url: str
    explorer_url: str
    relay_slug: str
    tokens: Mapping[str, TokenDescriptor] = field(default_factory=dict)
    aliases: Tuple[str, ...] = ()

    @property
    def native_token(self) -> TokenDescriptor:
        return TokenDescriptor(self.native_symbol, NATIVE_PLACEHOLDER, self.native_decimals)

    def token(self, symbol: str) -> TokenDescriptor:
        found = self.tokens.get(symbol.upper())
        if found is None:
            raise UnsupportedChainError(
                f"{symbol} is not configured on {self.name}",
                user_message=f"{symbol} isn't supported on {self.name}.",
            )
        return found

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_hash}"

    def explorer_address_url(self, address: str) -> str:
        return f"{self.explorer_url.rstrip('/')}/address/{address}"


ChainRef = Union[int, str]


class ChainRegistry:
    """Chain metadata with alias lookup.

    Loaded from the built-in metadata at startup. ``refresh_from_relay`` can
    narrow the set to the chains Relay currently has enabled; the static data
    stays authoritative for addresses and endpoints.

    Usage:
        registry = ChainRegistry()
        base = registry.get(8453)
        registry.get_chain_id("arb")  # 42161
    """

    ALIAS_EXPANSIONS = {
        "ethereum": ["eth", "mainnet", "l1"],
        "arbitrum": ["arb"],
        "optimism": ["op"],
        "polygon": ["matic"],
    }

    def __init__(
        self,
        metadata: Optional[Mapping[int, Mapping[str, Any]]] = None,
        *,
        config: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._config = config or default_settings
        self._chains: Dict[int, ChainDescriptor] = {}
        self._alias_to_id: Dict[str, int] = {}
        self._disabled: Set[int] = set()
        self._load(metadata if metadata is not None else CHAIN_METADATA)

    def _load(self, metadata: Mapping[int, Mapping[str, Any]]) -> None:
        chains: Dict[int, ChainDescriptor] = {}
        aliases: Dict[str, int] = {}
        for chain_id, details in metadata.items():
            descriptor = self._build_descriptor(int(chain_id), details)
            chains[descriptor.id] = descriptor
            for alias in descriptor.aliases:
                # First wins
                aliases.setdefault(alias, descriptor.id)
        self._chains = chains
        self._alias_to_id = aliases

    def _build_descriptor(self, chain_id: int, details: Mapping[str, Any]) -> ChainDescriptor:
        tokens = {
            symbol.upper(): TokenDescriptor(symbol.upper(), token['address'], int(token['decimals']))
            for symbol, token in (details.get('tokens') or {}).items()
        }
        name = details.get('name') or f"Chain {chain_id}"
        key = details.get('key') or name.lower()
        return ChainDescriptor(
            id=chain_id,
            key=key,
            name=name,
            native_symbol=details.get('native_symbol', 'ETH'),
            native_decimals=int(details.get('native_decimals', 18)),
            rpc_url=self._config.rpc_url_for(chain_id, details.get('rpc_url', '')),
            explorer_url=details.get('explorer_url', ''),
            relay_slug=details.get('relay_slug') or key,
            tokens=tokens,
            aliases=tuple(sorted(self._generate_aliases(chain_id, name, key, details.get('aliases') or []))),
        )

    def _generate_aliases(self, chain_id: int, name: str, key: str, explicit: Iterable[str]) -> Set[str]:
        aliases: Set[str] = {a.lower().strip() for a in explicit}
        lowered = name.lower().strip()
        aliases.update({lowered, key.lower(), str(chain_id)})

        words = lowered.split()
        if len(words) > 1:
            aliases.add(words[0])
            aliases.add("".join(words))

        for base_name, expansions in self.ALIAS_EXPANSIONS.items():
            if base_name in lowered:
                aliases.update(expansions)

        # "base mainnet" -> "base"
        for alias in list(aliases):
            if alias.endswith(" mainnet"):
                aliases.add(alias[: -len(" mainnet")])

        aliases.discard("")
        return aliases

    # ─────────────────────────────────────────────────────────────────────────
    # Public lookup methods
    # ─────────────────────────────────────────────────────────────────────────

    def get_chain_id(self, alias: str) -> Optional[int]:
        """Look up chain ID by alias. Returns None if not found."""
        return self._alias_to_id.get(alias.lower().strip())

    def resolve(self, ref: ChainRef) -> ChainDescriptor:
        """Resolve a chain id or alias, raising UnsupportedChainError when unknown or disabled."""
        chain_id: Optional[int]
        if isinstance(ref, int):
            chain_id = ref
        else:
            chain_id = self.get_chain_id(ref)
        if chain_id is None:
            raise UnsupportedChainError(f"Unknown chain: {ref!r}")
        return self.get(chain_id)

    def get(self, chain_id: int) -> ChainDescriptor:
        descriptor = self._chains.get(chain_id)
        if descriptor is None or chain_id in self._disabled:
            raise UnsupportedChainError(f"Chain {chain_id} is not supported")
        return descriptor

    def find(self, chain_id: int) -> Optional[ChainDescriptor]:
        if chain_id in self._disabled:
            return None
        return self._chains.get(chain_id)

    def get_chain_name(self, chain_id: Optional[int]) -> str:
        descriptor = self._chains.get(chain_id) if chain_id is not None else None
        return descriptor.name if descriptor else f"Chain {chain_id}"

    def token(self, chain_id: int, symbol: str) -> TokenDescriptor:
        return self.get(chain_id).token(symbol)

    def explorer_tx_url(self, chain_id: int, tx_hash: str) -> str:
        return self.get(chain_id).explorer_tx_url(tx_hash)

    def is_chain_supported(self, chain_id: int) -> bool:
        return chain_id in self._chains and chain_id not in self._disabled

    def supported_chains(self) -> List[ChainDescriptor]:
        return [c for cid, c in sorted(self._chains.items()) if cid not in self._disabled]

    def get_all_aliases(self) -> Dict[str, int]:
        return dict(self._alias_to_id)

    async def refresh_from_relay(self, relay: Any) -> bool:
        """Mark chains Relay reports as disabled (or does not list) as unsupported.

        Returns False and keeps the current data if Relay cannot be reached.
        """
        try:
            chains_data = await relay.get_chains()
        except Exception as exc:
            self._logger.warning("Failed to refresh chain registry from Relay: %s", exc)
            return False

        enabled: Set[int] = set()
        for chain in chains_data:
            chain_id = chain.get("id")
            if chain_id is None or chain.get("disabled", False):
                continue
            try:
                enabled.add(int(chain_id))
            except (TypeError, ValueError):
                continue

        if not enabled:
            self._logger.warning("Relay returned no enabled chains; keeping static registry")
            return False

        self._disabled = {cid for cid in self._chains if cid not in enabled}
        self._logger.info(
            "Chain registry refreshed: %d supported, %d disabled by Relay",
            len(self._chains) - len(self._disabled),
            len(self._disabled),
        )
        return True

    @property
    def chain_count(self) -> int:
        return len(self.supported_chains())


# Module-level singleton for convenience
_default_registry: Optional[ChainRegistry] = None


def get_registry() -> ChainRegistry:
    """Get or create the default chain registry."""
    global _default_registry
    if _default_registry is None:
        _default_registry = ChainRegistry()
    return _default_registry
