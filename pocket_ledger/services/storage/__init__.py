"""
Storage Services Package

Provides the abstract ledger/audit storage interfaces and the SQLite
implementation. Business logic only depends on the interfaces.
"""

from pocket_ledger.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
)
from pocket_ledger.services.storage.sqlite import SQLiteLedgerStorage

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    # SQLite implementation
    "SQLiteLedgerStorage",
]
