"""
Recurring Ledger

Recurring-transaction projection and reconciliation core for a personal
finance ledger: billing cycles, recurrence rules with per-occurrence
overrides, offline-first persistence and budget materialization.
"""

from ledger.orchestrator import LedgerEngine, create_ledger

__version__ = "0.1.0"

__all__ = [
    "LedgerEngine",
    "create_ledger",
    "__version__",
]
