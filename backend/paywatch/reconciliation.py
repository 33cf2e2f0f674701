"""
Reconciliation callback shared by every chain monitor.

Monitors call it at least once per matching transaction. The ledger's
conditional pending -> confirmed transition makes repeat calls harmless, and
delivery is attempted only by the call that actually performed it.
"""

import logging
from decimal import Decimal
from typing import Optional, Protocol

from paywatch.ledger.models import PaymentIntent, Product
from paywatch.ledger.store import Confirmation, PaymentLedger

logger = logging.getLogger(__name__)


class Deliverer(Protocol):
    def deliver(self, intent: PaymentIntent, product: Optional[Product]) -> bool: ...


class Reconciler:
    """Confirms matched intents and hands them to the delivery collaborator."""

    def __init__(self, ledger: PaymentLedger, deliverer: Optional[Deliverer] = None) -> None:
        self.ledger = ledger
        self.deliverer = deliverer

    def __call__(self, intent: PaymentIntent, tx_ref: str, observed_amount: Decimal) -> Confirmation:
        confirmation = self.ledger.confirm_intent(intent.id, tx_ref)
        if not confirmation.applied:
            logger.info(
                f"Observation {tx_ref} for intent {intent.id} ignored (status={confirmation.status}, "
                f"confirmed by {confirmation.tx_ref})"
            )
            return confirmation

        logger.info(
            f"Payment confirmed: {intent.id} {observed_amount} {intent.asset} on {intent.chain} "
            f"(expected {intent.amount_crypto}, tx {tx_ref})"
        )
        self._deliver(intent.id)
        return confirmation

    def _deliver(self, intent_id: str) -> None:
        if self.deliverer is None:
            return

        confirmed = self.ledger.get_intent(intent_id)
        product = self.ledger.get_product(confirmed.product_ref)
        try:
            delivered = self.deliverer.deliver(confirmed, product)
        except Exception as e:
            # Confirmation stands; the buyer can still redeem the credential
            logger.error(f"Delivery for intent {intent_id} raised: {e}")
            return
        if not delivered:
            logger.warning(f"Delivery for intent {intent_id} failed; credential remains redeemable")
