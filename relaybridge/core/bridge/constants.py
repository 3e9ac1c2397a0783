"""Constants and metadata for bridge orchestration."""

from typing import Any, Dict

NATIVE_PLACEHOLDER = '0x0000000000000000000000000000000000000000'

CHAIN_METADATA: Dict[int, Dict[str, Any]] = {
    1: {
        'key': 'ethereum',
        'name': 'Ethereum',
        'aliases': ['ethereum', 'eth', 'mainnet', 'ethereum mainnet', 'l1'],
        'native_symbol': 'ETH',
        'native_decimals': 18,
        'rpc_url': 'https://eth.llamarpc.com',
        'explorer_url': 'https://etherscan.io',
        'relay_slug': 'ethereum',
        'tokens': {
            'USDC': {'address': '0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48', 'decimals': 6},
        },
    },
    10: {
        'key': 'optimism',
        'name': 'Optimism',
        'aliases': ['optimism', 'op'],
        'native_symbol': 'ETH',
        'native_decimals': 18,
        'rpc_url': 'https://mainnet.optimism.io',
        'explorer_url': 'https://optimistic.etherscan.io',
        'relay_slug': 'optimism',
        'tokens': {
            'USDC': {'address': '0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85', 'decimals': 6},
        },
    },
    137: {
        'key': 'polygon',
        'name': 'Polygon',
        'aliases': ['polygon', 'matic', 'polygon pos'],
        'native_symbol': 'POL',
        'native_decimals': 18,
        'rpc_url': 'https://polygon-rpc.com',
        'explorer_url': 'https://polygonscan.com',
        'relay_slug': 'polygon',
        'tokens': {
            # Native USDC, not bridged USDC.e
            'USDC': {'address': '0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359', 'decimals': 6},
        },
    },
    8453: {
        'key': 'base',
        'name': 'Base',
        'aliases': ['base', 'base mainnet'],
        'native_symbol': 'ETH',
        'native_decimals': 18,
        'rpc_url': 'https://mainnet.base.org',
        'explorer_url': 'https://basescan.org',
        'relay_slug': 'base',
        'tokens': {
            'USDC': {'address': '0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913', 'decimals': 6},
        },
    },
    42161: {
        'key': 'arbitrum',
        'name': 'Arbitrum',
        'aliases': ['arbitrum', 'arb', 'arbitrum one'],
        'native_symbol': 'ETH',
        'native_decimals': 18,
        'rpc_url': 'https://arb1.arbitrum.io/rpc',
        'explorer_url': 'https://arbiscan.io',
        'relay_slug': 'arbitrum',
        'tokens': {
            'USDC': {'address': '0xaf88d065e77c8cC2239327C5EDb3A432268e5831', 'decimals': 6},
        },
    },
}

# ERC-20 selectors
ERC20_TRANSFER_SELECTOR = '0xa9059cbb'  # transfer(address,uint256)
ERC20_BALANCE_OF_SELECTOR = '0x70a08231'  # balanceOf(address)

# Relay settlement statuses
SETTLEMENT_SUCCESS_STATUSES = frozenset({'success', 'completed'})
SETTLEMENT_FAILURE_STATUSES = frozenset({'failed', 'refunded'})

# States in which a transfer is being driven and commands must be rejected
IN_FLIGHT_STATES = frozenset({'switching', 'confirming', 'depositing', 'bridging'})

BRIDGE_SOURCE = {'name': 'Relay', 'url': 'https://relay.link'}
