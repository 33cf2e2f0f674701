"""
Paywatch - non-custodial multi-chain payment reconciliation.

Buyers pay to watch-only addresses; chain monitors match observed transfers
against pending payment intents and the ledger confirms each intent once.
"""

__version__ = "0.1.0"
