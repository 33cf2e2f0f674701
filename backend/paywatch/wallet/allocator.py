"""
Watch-only HD address allocation.

Addresses are derived from an extended public key (xpub) on the non-hardened
path ``0/{index}`` relative to the key, so the server can hand out receive
addresses but can never spend from them.
"""

from __future__ import annotations

import logging
from typing import Optional

from bip32 import BIP32
from eth_keys import keys
from sqlalchemy import select, update

from paywatch.errors import ConfigurationError, DerivationError
from paywatch.ledger.database import Database
from paywatch.ledger.models import AddressCounter

logger = logging.getLogger(__name__)

# Derivation path relative to the xpub (the xpub usually sits at m/44'/60'/0')
RECEIVE_BRANCH = 0


class AddressAllocator:
    """Hands out derivation indices and turns them into EVM receive addresses."""

    def __init__(self, db: Database, xpub: Optional[str]) -> None:
        """
        Args:
            db: Ledger store holding the persisted address counter
            xpub: Extended public key (may be empty; derivation then raises ConfigurationError)
        """
        self.db = db
        self.xpub = (xpub or "").strip()
        self._node: Optional[BIP32] = None

    def allocate(self) -> int:
        """Reserve the next derivation index.

        The increment and the read happen in one serialised transaction, so
        concurrent callers always receive distinct, contiguous indices.
        """
        with self.db.transaction() as session:
            session.execute(
                update(AddressCounter)
                .where(AddressCounter.id == 1)
                .values(next_index=AddressCounter.next_index + 1)
                .execution_options(synchronize_session=False)
            )
            next_index = session.scalar(select(AddressCounter.next_index).where(AddressCounter.id == 1))
        if next_index is None:
            raise ConfigurationError("Address counter missing; call Database.init_schema() first")
        index = next_index - 1
        logger.debug(f"Allocated address index {index}")
        return index

    def derive_address(self, index: int) -> str:
        """Derive the checksummed EVM address for ``index``.

        Raises:
            ConfigurationError: If no extended public key is configured
            DerivationError: If the index is negative or the key is malformed
        """
        if not isinstance(index, int) or index < 0:
            raise DerivationError(f"Derivation index must be a non-negative integer, got {index!r}")
        return _derive(self._root(), index)

    def allocate_address(self) -> tuple[int, str]:
        # An index is burned if derivation fails; it is never handed out twice
        index = self.allocate()
        return index, self.derive_address(index)

    def _root(self) -> BIP32:
        if not self.xpub:
            raise ConfigurationError("XPUB environment variable is required for address derivation")
        if self._node is None:
            try:
                self._node = BIP32.from_xpub(self.xpub)
            except Exception as e:
                raise DerivationError(f"Malformed extended public key: {e}") from e
        return self._node


def _derive(node: BIP32, index: int) -> str:
    try:
        pubkey = node.get_pubkey_from_path(f"m/{RECEIVE_BRANCH}/{index}")
        return keys.PublicKey.from_compressed_bytes(pubkey).to_checksum_address()
    except Exception as e:
        raise DerivationError(f"Failed to derive address for index {index}: {e}") from e

