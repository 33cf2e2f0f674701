"""
Solana chain client - signature history and balance deltas for one address.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from solana.rpc.api import Client
from solders.pubkey import Pubkey
from solders.signature import Signature

from paywatch.errors import ChainClientError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10  # seconds


@dataclass
class SignatureInfo:
    signature: str
    failed: bool = False


class SolanaChainClient:
    """Thin wrapper over solana-py's synchronous RPC client."""

    def __init__(self, rpc_url: str, timeout: float = DEFAULT_TIMEOUT, client: Optional[Client] = None) -> None:
        self.rpc_url = rpc_url
        self.client = client or Client(rpc_url, timeout=timeout)

    def latest_signature(self, address: str) -> Optional[str]:
        """Newest signature touching ``address``, or None if it has no history."""
        signatures = self.signatures_since(address, until=None, limit=1)
        return signatures[0].signature if signatures else None

    def signatures_since(self, address: str, until: Optional[str], limit: int) -> List[SignatureInfo]:
        """Signatures newer than ``until``, newest first."""
        try:
            response = self.client.get_signatures_for_address(
                Pubkey.from_string(address),
                until=Signature.from_string(until) if until else None,
                limit=limit,
            )
        except Exception as e:
            raise ChainClientError(f"[solana] getSignaturesForAddress failed: {e}") from e

        return [SignatureInfo(signature=str(item.signature), failed=item.err is not None) for item in response.value]

    def balance_delta(self, signature: str, address: str) -> Optional[int]:
        """Lamports gained (or lost) by ``address`` in transaction ``signature``.

        Returns None when the transaction is unavailable or does not touch the address.
        """
        try:
            response = self.client.get_transaction(
                Signature.from_string(signature),
                max_supported_transaction_version=0,
            )
        except Exception as e:
            raise ChainClientError(f"[solana] getTransaction {signature} failed: {e}") from e

        tx = response.value
        if tx is None or tx.transaction.meta is None:
            return None

        meta = tx.transaction.meta
        message = tx.transaction.transaction.message
        # jsonParsed messages carry ParsedAccount entries, raw ones carry Pubkeys
        account_keys = [str(getattr(key, "pubkey", key)) for key in message.account_keys]
        try:
            idx = account_keys.index(address)
        except ValueError:
            return None

        return int(meta.post_balances[idx]) - int(meta.pre_balances[idx])
