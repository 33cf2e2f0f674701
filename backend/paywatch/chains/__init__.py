"""
Chain access package.

This package provides:
- Static network metadata (chain ids, token contracts, RPC fallbacks)
- EvmChainClient with a failover RPC pool
- SolanaChainClient for signature history and balance deltas
"""

from .evm import EvmChainClient, NativeTransfer, TokenTransfer, decode_native_transfer, decode_transfer_log
from .networks import (
    BASE_NETWORK,
    ETHEREUM_NETWORK,
    KNOWN_EVM_NETWORKS,
    EvmNetworkConfig,
    SolanaNetworkConfig,
    TokenConfig,
)
from .providers import ProviderManager, RPCProviderError
from .solana import SignatureInfo, SolanaChainClient

__all__ = [
    "EvmChainClient",
    "SolanaChainClient",
    "SignatureInfo",
    "TokenTransfer",
    "NativeTransfer",
    "decode_transfer_log",
    "decode_native_transfer",
    "ProviderManager",
    "RPCProviderError",
    "EvmNetworkConfig",
    "SolanaNetworkConfig",
    "TokenConfig",
    "BASE_NETWORK",
    "ETHEREUM_NETWORK",
    "KNOWN_EVM_NETWORKS",
]
