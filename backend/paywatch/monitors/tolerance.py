"""
Reconciliation tolerance policy.

EVM payments go to a per-intent address, so any transfer at or above
``expected * (1 - tolerance)`` settles the intent: the tolerance is an
accepted shortfall. Solana payments share one address and are told apart by
amount alone, so a deposit must lie within ``expected * tolerance`` on either
side.
"""

from dataclasses import dataclass
from decimal import Decimal

DEFAULT_TOKEN_TOLERANCE = Decimal("0.01")  # 1% for ERC-20 transfers
DEFAULT_NATIVE_TOLERANCE = Decimal("0.005")  # 0.5% for native EVM transfers
DEFAULT_SOLANA_TOLERANCE = Decimal("0.005")  # 0.5% band for SOL balance deltas


@dataclass(frozen=True)
class TolerancePolicy:
    token: Decimal = DEFAULT_TOKEN_TOLERANCE
    native: Decimal = DEFAULT_NATIVE_TOLERANCE
    solana: Decimal = DEFAULT_SOLANA_TOLERANCE

    def __post_init__(self) -> None:
        for name in ("token", "native", "solana"):
            value = getattr(self, name)
            if not Decimal("0") <= value < Decimal("1"):
                raise ValueError(f"{name} tolerance must be in [0, 1), got {value}")


def minimum_accepted(expected: Decimal, tolerance: Decimal) -> Decimal:
    """Smallest observed amount that still satisfies ``expected``."""
    return expected * (Decimal("1") - tolerance)


def satisfies(observed: Decimal, expected: Decimal, tolerance: Decimal) -> bool:
    return observed >= minimum_accepted(expected, tolerance)


def within_band(observed: Decimal, expected: Decimal, tolerance: Decimal) -> bool:
    """Two-sided match for amount-identified payments."""
    return abs(observed - expected) <= expected * tolerance
