"""
EVM chain client - thin read-only Web3 wrapper used by the EVM monitor.

Exposes exactly what reconciliation needs:
- current block height
- ERC-20 Transfer logs for a token contract over a block range
- full transactions of a block (for native-currency transfers)

Every RPC failure is reported as ChainClientError and fails the pool over to
the next endpoint; decoding helpers raise ValueError on malformed entries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, List, Mapping, Optional, TypeVar

from hexbytes import HexBytes
from web3 import Web3

from paywatch.chains.networks import EvmNetworkConfig
from paywatch.chains.providers import DEFAULT_RPC_TIMEOUT, ProviderManager
from paywatch.errors import ChainClientError

logger = logging.getLogger(__name__)

# keccak("Transfer(address,address,uint256)")
TRANSFER_TOPIC = Web3.to_hex(Web3.keccak(text="Transfer(address,address,uint256)"))

T = TypeVar("T")


@dataclass
class TokenTransfer:
    """A decoded ERC-20 Transfer log."""

    tx_hash: str
    to_address: str
    raw_amount: int
    block_number: Optional[int] = None
    log_index: Optional[int] = None

    def amount(self, decimals: int) -> Decimal:
        return Decimal(self.raw_amount) / (Decimal(10) ** decimals)


@dataclass
class NativeTransfer:
    """A transaction moving native currency to ``to_address``."""

    tx_hash: str
    to_address: str
    value_wei: int

    def amount(self, decimals: int = 18) -> Decimal:
        return Decimal(self.value_wei) / (Decimal(10) ** decimals)


def decode_transfer_log(log: Mapping[str, Any]) -> TokenTransfer:
    """Decode destination and amount from a Transfer log.

    Raises:
        ValueError: If the log is not a well-formed ERC-20 Transfer
    """
    topics = log.get("topics") or []
    if len(topics) < 3:
        raise ValueError(f"Transfer log has {len(topics)} topics, expected 3")
    if HexBytes(topics[0]) != HexBytes(TRANSFER_TOPIC):
        raise ValueError("Log is not an ERC-20 Transfer event")

    to_topic = bytes(HexBytes(topics[2]))
    if len(to_topic) != 32:
        raise ValueError(f"Destination topic has {len(to_topic)} bytes, expected 32")

    data = bytes(HexBytes(log.get("data") or b""))
    if len(data) != 32:
        raise ValueError(f"Transfer data has {len(data)} bytes, expected 32")

    tx_hash = log.get("transactionHash")
    if not tx_hash:
        raise ValueError("Transfer log has no transaction hash")

    return TokenTransfer(
        tx_hash=Web3.to_hex(HexBytes(tx_hash)),
        to_address=Web3.to_checksum_address("0x" + to_topic[-20:].hex()),
        raw_amount=int.from_bytes(data, "big"),
        block_number=log.get("blockNumber"),
        log_index=log.get("logIndex"),
    )


def decode_native_transfer(tx: Mapping[str, Any]) -> Optional[NativeTransfer]:
    """Return the native transfer carried by ``tx``, or None for contract creations and zero-value txs.

    Raises:
        ValueError: If the transaction is malformed
    """
    to_address = tx.get("to")
    value = tx.get("value") or 0
    if not to_address or int(value) <= 0:
        return None

    tx_hash = tx.get("hash")
    if not tx_hash:
        raise ValueError("Transaction has no hash")

    return NativeTransfer(
        tx_hash=Web3.to_hex(HexBytes(tx_hash)),
        to_address=Web3.to_checksum_address(to_address),
        value_wei=int(value),
    )


class EvmChainClient:
    """Read-only access to one EVM chain through a failover RPC pool."""

    def __init__(
        self,
        network: EvmNetworkConfig,
        timeout: int = DEFAULT_RPC_TIMEOUT,
        providers: Optional[ProviderManager] = None,
    ) -> None:
        self.network = network
        self.providers = providers or ProviderManager(network.rpc_urls, network.chain_id, timeout=timeout)

    def block_number(self) -> int:
        return self._call("eth_blockNumber", lambda w3: int(w3.eth.block_number))

    def get_transfer_logs(self, contract: str, from_block: int, to_block: int) -> List[Mapping[str, Any]]:
        """Raw Transfer logs emitted by ``contract`` in ``[from_block, to_block]``."""
        log_filter = {
            "address": Web3.to_checksum_address(contract),
            "topics": [TRANSFER_TOPIC],
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        return self._call("eth_getLogs", lambda w3: list(w3.eth.get_logs(log_filter)))

    def get_block_transactions(self, number: int) -> List[Mapping[str, Any]]:
        def fetch(w3: Web3) -> List[Mapping[str, Any]]:
            block = w3.eth.get_block(number, full_transactions=True)
            if not block:
                return []
            return list(block.get("transactions") or [])

        return self._call("eth_getBlockByNumber", fetch)

    def _call(self, method: str, fn: Callable[[Web3], T]) -> T:
        url = None
        try:
            w3 = self.providers.get_web3()
            url = self.providers.current_url
            return fn(w3)
        except Exception as e:
            if url is not None:
                self.providers.mark_endpoint_unhealthy(url, str(e))
            raise ChainClientError(f"[{self.network.name}] {method} failed: {e}") from e
