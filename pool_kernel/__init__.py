"""
Pool Kernel

Accounting and settlement core for a multi-tranche credit pool:
- Loss-ordered tranche and first-loss-cover ledger
- Credit billing records and receivables
- Epoch-batched redemption bookkeeping
- Atomic, all-or-nothing state transitions
"""

__version__ = "0.1.0"
