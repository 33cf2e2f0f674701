"""
Solana monitor.

All SOL intents share one receive address, so a payment can only be told apart
by its amount. Each tick lists signatures newer than the high-water mark,
computes the receive address's balance delta per successful transaction and
assigns it to the pending intent whose expected amount is closest among those
within the tolerance band.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Callable, List, Optional, Protocol

from paywatch.chains.networks import LAMPORTS_PER_SOL, SolanaNetworkConfig
from paywatch.chains.solana import SignatureInfo
from paywatch.ledger.models import PaymentIntent
from paywatch.ledger.store import PaymentLedger
from paywatch.monitors.tolerance import TolerancePolicy, within_band
from paywatch.tasks import PeriodicTask

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 15.0  # seconds
DEFAULT_PAGE_SIZE = 20  # signatures per tick

PaymentCallback = Callable[[PaymentIntent, str, Decimal], Any]


class SolanaClient(Protocol):
    def latest_signature(self, address: str) -> Optional[str]: ...

    def signatures_since(self, address: str, until: Optional[str], limit: int) -> List[SignatureInfo]: ...

    def balance_delta(self, signature: str, address: str) -> Optional[int]: ...


def closest_match(
    delta: Decimal,
    intents: List[PaymentIntent],
    tolerance: Decimal,
) -> Optional[PaymentIntent]:
    """Pick the intent a shared-address deposit of ``delta`` SOL pays for.

    Eligible intents are those whose expected amount lies within ``tolerance``
    of ``delta`` on either side, so an overpayment well above every pending
    amount matches nothing. The one with the smallest absolute difference wins,
    ties going to the oldest intent.
    """
    eligible = [i for i in intents if within_band(delta, Decimal(i.amount_crypto), tolerance)]
    if not eligible:
        return None

    ranked = sorted(eligible, key=lambda i: (abs(delta - Decimal(i.amount_crypto)), i.created_at, i.id))
    best = ranked[0]
    if len(ranked) > 1:
        logger.info(
            f"Deposit of {delta} SOL is within tolerance of {len(ranked)} intents; chose {best.id} "
            f"(expected {best.amount_crypto}) over {[i.id for i in ranked[1:]]}"
        )
    return best


class SolanaChainMonitor(PeriodicTask):
    """Watches the shared Solana receive address for SOL payments."""

    def __init__(
        self,
        network: SolanaNetworkConfig,
        client: SolanaClient,
        ledger: PaymentLedger,
        on_payment: PaymentCallback,
        tolerance: Optional[TolerancePolicy] = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        super().__init__(interval)
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        self.network = network
        self.client = client
        self.ledger = ledger
        self.on_payment = on_payment
        self.tolerance = tolerance or TolerancePolicy()
        self.page_size = page_size
        self.name = f"monitor:{network.name}"

        self.last_signature: Optional[str] = None
        self.anchored = False

    @property
    def address(self) -> str:
        return self.network.receive_address

    def initialize(self) -> None:
        """Anchor at the newest existing signature; older history is never scanned."""
        self.last_signature = self.client.latest_signature(self.address)
        self.anchored = True
        logger.info(f"[{self.name}] Watching {self.address} after signature {self.last_signature}")

    def tick(self) -> int:
        if not self.anchored:
            self.initialize()
            return 0

        pending = self.ledger.get_pending_intents(chain=self.network.name, asset=self.network.native_asset)
        if not pending:
            return 0

        signatures = self.client.signatures_since(self.address, until=self.last_signature, limit=self.page_size)
        if not signatures:
            return 0
        if len(signatures) >= self.page_size:
            logger.warning(
                f"[{self.name}] {len(signatures)} new signatures (page full); older ones in this "
                f"burst are not examined"
            )

        newest = signatures[0].signature
        waiting = list(pending)
        matched = 0

        # RPC returns newest first; assign in chronological order
        for info in reversed(signatures):
            if info.failed:
                continue
            try:
                lamports = self.client.balance_delta(info.signature, self.address)
            except (ValueError, IndexError, AttributeError, TypeError) as e:
                logger.warning(f"[{self.name}] Skipping malformed transaction {info.signature}: {e}")
                continue
            if lamports is None or lamports <= 0:
                continue

            delta = Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)
            intent = closest_match(delta, waiting, self.tolerance.solana)
            if intent is None:
                logger.info(f"[{self.name}] Deposit of {delta} SOL ({info.signature}) matches no pending intent")
                continue

            logger.info(
                f"[{self.name}] SOL payment detected! {delta} SOL for intent {intent.id} "
                f"(expected {intent.amount_crypto}, tx: {info.signature})"
            )
            self.on_payment(intent, info.signature, delta)
            waiting.remove(intent)
            matched += 1

        self.last_signature = newest
        return matched
