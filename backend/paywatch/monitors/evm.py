"""
EVM chain monitor.

One instance per EVM chain. Each tick:
1. Reads the block height; nothing to do unless it moved past a watermark.
2. Loads the chain's pending intents (none: fast-forward the watermarks).
3. Scans ERC-20 Transfer logs over (last_block, current] for every token with
   pending intents.
4. Scans full blocks for native transfers. Each tick covers the blocks the head
   advanced since the previous tick plus ``native_scan_window`` blocks of
   backlog, capped at ``MAX_NATIVE_BLOCKS_PER_TICK``, so the native watermark
   keeps pace with fast chains and any lag shrinks every tick.
5. Invokes the reconciliation callback for every accepted match.

Watermarks only move over ranges that were actually scanned, so an RPC
failure mid-tick makes the next tick re-derive the same range.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Protocol

from paywatch.chains.evm import decode_native_transfer, decode_transfer_log
from paywatch.chains.networks import EvmNetworkConfig, TokenConfig
from paywatch.ledger.models import PaymentIntent
from paywatch.ledger.store import PaymentLedger
from paywatch.monitors.tolerance import TolerancePolicy, minimum_accepted, satisfies
from paywatch.tasks import PeriodicTask

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 15.0  # seconds
DEFAULT_NATIVE_SCAN_WINDOW = 5  # backlog blocks per tick on top of head advance
MAX_NATIVE_BLOCKS_PER_TICK = 50
PaymentCallback = Callable[[PaymentIntent, str, Decimal], Any]


class EvmClient(Protocol):
    def block_number(self) -> int: ...

    def get_transfer_logs(self, contract: str, from_block: int, to_block: int) -> List[Any]: ...

    def get_block_transactions(self, number: int) -> List[Any]: ...


def _by_address(intents: List[PaymentIntent]) -> Dict[str, List[PaymentIntent]]:
    grouped: Dict[str, List[PaymentIntent]] = defaultdict(list)
    for intent in intents:
        grouped[intent.pay_address.lower()].append(intent)
    return grouped


class EvmChainMonitor(PeriodicTask):
    """Watches one EVM chain for token and native payments to intent addresses."""

    def __init__(
        self,
        network: EvmNetworkConfig,
        client: EvmClient,
        ledger: PaymentLedger,
        on_payment: PaymentCallback,
        tolerance: Optional[TolerancePolicy] = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        native_scan_window: int = DEFAULT_NATIVE_SCAN_WINDOW,
    ) -> None:
        super().__init__(interval)
        if native_scan_window < 1:
            raise ValueError(f"native_scan_window must be >= 1, got {native_scan_window}")
        self.network = network
        self.client = client
        self.ledger = ledger
        self.on_payment = on_payment
        self.tolerance = tolerance or TolerancePolicy()
        self.native_scan_window = native_scan_window
        self.name = f"monitor:{network.name}"

        # Highest block scanned for token logs / native transfers
        self.last_block: Optional[int] = None
        self.native_block: Optional[int] = None
        # Chain head seen by the previous tick
        self._head: Optional[int] = None

    def initialize(self) -> None:
        """Start from the chain head; history before start is never scanned."""
        current = self.client.block_number()
        self.last_block = current
        self.native_block = current
        self._head = current
        logger.info(f"[{self.name}] Starting from block {current}")

    def tick(self) -> int:
        """Run one scan. Returns the number of accepted matches."""
        current = self.client.block_number()
        advance = max(0, current - self._head) if self._head is not None else 0
        self._head = current

        if self.last_block is None or self.native_block is None:
            self.last_block = self.native_block = current
            logger.info(f"[{self.name}] Watermark established at block {current}")
            return 0

        if current <= self.last_block and current <= self.native_block:
            return 0

        pending = self.ledger.get_pending_intents(chain=self.network.name)
        if not pending:
            self.last_block = max(self.last_block, current)
            self.native_block = max(self.native_block, current)
            return 0

        token_intents: Dict[str, List[PaymentIntent]] = defaultdict(list)
        native_intents: List[PaymentIntent] = []
        for intent in pending:
            if intent.asset == self.network.native_asset:
                native_intents.append(intent)
            elif self.network.token(intent.asset) is not None:
                token_intents[intent.asset].append(intent)
            else:
                logger.debug(f"[{self.name}] Intent {intent.id} has unsupported asset {intent.asset}")

        matched = 0
        if current > self.last_block:
            from_block = self.last_block + 1
            if token_intents:
                logger.info(
                    f"[{self.name}] Scanning blocks {from_block}-{current} for "
                    f"{sum(len(v) for v in token_intents.values())} pending token payments"
                )
            for symbol, intents in token_intents.items():
                matched += self._scan_token(self.network.token(symbol), from_block, current, intents)
            self.last_block = current

        if current > self.native_block:
            if native_intents:
                matched += self._scan_native(current, advance, native_intents)
            else:
                self.native_block = current

        return matched

    def _scan_token(self, token: TokenConfig, from_block: int, to_block: int, intents: List[PaymentIntent]) -> int:
        """Match Transfer logs of ``token`` against intents. One log satisfies at most one intent."""
        logs = self.client.get_transfer_logs(token.contract, from_block, to_block)
        waiting = _by_address(intents)
        matched = 0

        for log in logs:
            try:
                transfer = decode_transfer_log(log)
            except (ValueError, TypeError) as e:
                logger.warning(f"[{self.name}] Skipping malformed {token.symbol} log: {e}")
                continue

            candidates = waiting.get(transfer.to_address.lower())
            if not candidates:
                continue

            amount = transfer.amount(token.decimals)
            intent = next(
                (c for c in candidates if satisfies(amount, Decimal(c.amount_crypto), self.tolerance.token)),
                None,
            )
            if intent is None:
                expected = Decimal(candidates[0].amount_crypto)
                logger.info(
                    f"[{self.name}] Underpayment: {amount} {token.symbol} to {transfer.to_address} "
                    f"(need >= {minimum_accepted(expected, self.tolerance.token)}, tx {transfer.tx_hash})"
                )
                continue

            logger.info(
                f"[{self.name}] {token.symbol} payment detected! {amount} {token.symbol} to "
                f"{transfer.to_address} (tx: {transfer.tx_hash})"
            )
            self.on_payment(intent, transfer.tx_hash, amount)
            candidates.remove(intent)
            matched += 1

        return matched

    def _scan_native(self, current: int, advance: int, intents: List[PaymentIntent]) -> int:
        """Scan blocks after the native watermark.

        The budget is the head advance since the previous tick plus
        ``native_scan_window``, so a backlog drains by at least the window each
        tick instead of growing when the chain produces more blocks per tick
        than the window.
        """
        budget = min(advance + self.native_scan_window, MAX_NATIVE_BLOCKS_PER_TICK)
        start = self.native_block + 1
        end = min(current, self.native_block + budget)
        waiting = _by_address(intents)
        matched = 0

        for number in range(start, end + 1):
            for tx in self.client.get_block_transactions(number):
                try:
                    transfer = decode_native_transfer(tx)
                except (ValueError, TypeError) as e:
                    logger.warning(f"[{self.name}] Skipping malformed transaction in block {number}: {e}")
                    continue
                if transfer is None:
                    continue

                candidates = waiting.get(transfer.to_address.lower())
                if not candidates:
                    continue

                amount = transfer.amount(self.network.native_decimals)
                intent = next(
                    (c for c in candidates if satisfies(amount, Decimal(c.amount_crypto), self.tolerance.native)),
                    None,
                )
                if intent is None:
                    logger.info(
                        f"[{self.name}] Underpayment: {amount} {self.network.native_asset} to "
                        f"{transfer.to_address} (tx {transfer.tx_hash})"
                    )
                    continue

                logger.info(
                    f"[{self.name}] {self.network.native_asset} payment detected! {amount} to "
                    f"{transfer.to_address} (tx: {transfer.tx_hash})"
                )
                self.on_payment(intent, transfer.tx_hash, amount)
                candidates.remove(intent)
                matched += 1

            self.native_block = number

        if end < current:
            logger.info(f"[{self.name}] Native scan at block {end}, chain head {current}; catching up next tick")
        return matched
