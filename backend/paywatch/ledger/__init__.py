"""
Payment ledger package.

This package provides:
- SQLAlchemy models for intents, products and the address counter
- PaymentLedger with atomic, idempotent state transitions
- ExpirySweeper, the periodic pending -> expired sweep
"""

from .database import Database
from .expiry import ExpirySweeper
from .models import (
    STATUS_CONFIRMED,
    STATUS_DELIVERED,
    STATUS_EXPIRED,
    STATUS_PENDING,
    AddressCounter,
    PaymentIntent,
    Product,
)
from .store import Confirmation, PaymentLedger

__all__ = [
    "Database",
    "ExpirySweeper",
    "PaymentLedger",
    "Confirmation",
    "PaymentIntent",
    "Product",
    "AddressCounter",
    "STATUS_PENDING",
    "STATUS_CONFIRMED",
    "STATUS_DELIVERED",
    "STATUS_EXPIRED",
]
