"""Services package."""

from pocket_ledger.services.storage import (
    AuditStorageInterface,
    LedgerStorageInterface,
    SQLiteLedgerStorage,
)

__all__ = [
    "AuditStorageInterface",
    "LedgerStorageInterface",
    "SQLiteLedgerStorage",
]
