"""
Chain monitors.

This package provides:
- EvmChainMonitor: watermark-driven log and block scanning for one EVM chain
- SolanaChainMonitor: signature scanning of the shared SOL receive address
- TolerancePolicy: accepted deviation per payment kind
"""

from .evm import EvmChainMonitor
from .solana import SolanaChainMonitor
from .tolerance import TolerancePolicy

__all__ = [
    "EvmChainMonitor",
    "SolanaChainMonitor",
    "TolerancePolicy",
]
