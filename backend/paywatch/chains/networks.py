"""
Static network metadata for the chains paywatch can watch.

Provides:
- Chain ids and public RPC fallbacks per EVM network
- ERC-20 token contracts (and their decimals) accepted on each network
- A single source of truth for which (chain, asset) pairs are supported

Runtime settings (see paywatch.config) override RPC URLs and contracts.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


# Sentinel stored as address_index for intents that share one receive address
SHARED_ADDRESS_INDEX = -1

SOLANA_CHAIN = "solana"
SOLANA_ASSET = "SOL"
LAMPORTS_PER_SOL = 1_000_000_000


@dataclass(frozen=True)
class TokenConfig:
    """An ERC-20 token accepted on an EVM network."""

    symbol: str
    contract: str
    decimals: int


@dataclass(frozen=True)
class EvmNetworkConfig:
    """Everything an EVM monitor needs to know about its chain."""

    name: str
    chain_id: int
    rpc_urls: List[str]
    native_asset: str = "ETH"
    native_decimals: int = 18
    tokens: Dict[str, TokenConfig] = field(default_factory=dict)

    @property
    def assets(self) -> Tuple[str, ...]:
        return (self.native_asset, *self.tokens.keys())

    def token(self, symbol: str) -> Optional[TokenConfig]:
        return self.tokens.get(symbol)


@dataclass(frozen=True)
class SolanaNetworkConfig:
    """Solana has no per-payment addressing: one shared receive address."""

    rpc_url: str
    receive_address: str
    name: str = SOLANA_CHAIN
    native_asset: str = SOLANA_ASSET

    @property
    def assets(self) -> Tuple[str, ...]:
        return (self.native_asset,)


BASE_NETWORK = EvmNetworkConfig(
    name="base",
    chain_id=8453,
    rpc_urls=[
        "https://mainnet.base.org",
        "https://base-rpc.publicnode.com",
    ],
    tokens={
        "USDC": TokenConfig(symbol="USDC", contract="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", decimals=6),
    },
)

ETHEREUM_NETWORK = EvmNetworkConfig(
    name="ethereum",
    chain_id=1,
    rpc_urls=[
        "https://ethereum-rpc.publicnode.com",
        "https://eth.llamarpc.com",
    ],
    tokens={
        "USDC": TokenConfig(symbol="USDC", contract="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", decimals=6),
    },
)

KNOWN_EVM_NETWORKS: Dict[str, EvmNetworkConfig] = {
    BASE_NETWORK.name: BASE_NETWORK,
    ETHEREUM_NETWORK.name: ETHEREUM_NETWORK,
}

DEFAULT_SOLANA_RPC = "https://api.mainnet-beta.solana.com"
