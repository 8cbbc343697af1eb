"""Ledger core: balance accumulation and the transaction lifecycle."""

from pocket_ledger.ledger.balance import BalanceAccumulator, BalanceCheck
from pocket_ledger.ledger.lifecycle import TransactionLifecycleController

__all__ = [
    "BalanceAccumulator",
    "BalanceCheck",
    "TransactionLifecycleController",
]
