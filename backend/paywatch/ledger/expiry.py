import logging
from datetime import timedelta
from typing import Callable, Optional

from paywatch.ledger.models import utcnow
from paywatch.ledger.store import PaymentLedger
from paywatch.tasks import PeriodicTask

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL = 60.0  # seconds
DEFAULT_PAYMENT_TIMEOUT = timedelta(minutes=30)


class ExpirySweeper(PeriodicTask):
    """Expires pending intents that aged past the payment timeout."""

    name = "expiry-sweep"

    def __init__(
        self,
        ledger: PaymentLedger,
        timeout: timedelta = DEFAULT_PAYMENT_TIMEOUT,
        interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Optional[Callable] = None,
    ) -> None:
        super().__init__(interval)
        self.ledger = ledger
        self.timeout = timeout
        self.clock = clock or utcnow

    def tick(self) -> int:
        return self.ledger.expire_pending_older_than(self.clock() - self.timeout)
