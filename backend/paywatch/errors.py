"""
Exception hierarchy for paywatch.

Low-level library errors (web3, solana, SQLAlchemy, requests) are wrapped into
these at the component boundary so callers only ever handle domain errors.
"""


class PaywatchError(Exception):
    """Base exception for the payment reconciliation backend."""


class ConfigurationError(PaywatchError):
    """Raised when a component is missing required configuration (xpub, RPC URL, ...)."""


class DerivationError(PaywatchError):
    """Raised when an address cannot be derived from the extended public key."""


class PriceUnavailable(PaywatchError):
    """Raised when no sufficiently fresh price is cached for an asset."""

    def __init__(self, asset: str, reason: str = "no fresh price"):
        super().__init__(f"Price unavailable for {asset}: {reason}")
        self.asset = asset


class ChainClientError(PaywatchError):
    """Transient failure talking to a chain node. Retried on the next tick."""


class UnknownProduct(PaywatchError):
    """Raised when a checkout references a missing or inactive product."""


class UnsupportedAsset(PaywatchError):
    """Raised when a (chain, asset) pair has no monitor able to watch it."""
