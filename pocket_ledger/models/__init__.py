"""
Data Models Package

This package contains all Pydantic models used in Pocket Ledger.
All data flowing through the system must conform to these schemas.
"""

from pocket_ledger.models.ledger import (
    Category,
    CategoryCreate,
    CategoryType,
    CategoryUpdate,
    Transaction,
    TransactionCreate,
    TransactionFilters,
    TransactionPage,
    TransactionRow,
    TransactionType,
    Wallet,
    WalletCreate,
    WalletUpdate,
)
from pocket_ledger.models.stats import (
    CategoryBreakdown,
    DailyPoint,
    DateRange,
    Period,
    PeriodKind,
    StatsReport,
    TypeTotals,
    WalletBalance,
    WalletBalanceSummary,
    savings_rate,
)
from pocket_ledger.models.proposal import (
    EntityRef,
    TransactionProposal,
    ValidationIssue,
    ValidationResult,
)
from pocket_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Category",
    "CategoryCreate",
    "CategoryType",
    "CategoryUpdate",
    "Transaction",
    "TransactionCreate",
    "TransactionFilters",
    "TransactionPage",
    "TransactionRow",
    "TransactionType",
    "Wallet",
    "WalletCreate",
    "WalletUpdate",
    # Statistics models
    "CategoryBreakdown",
    "DailyPoint",
    "DateRange",
    "Period",
    "PeriodKind",
    "StatsReport",
    "TypeTotals",
    "WalletBalance",
    "WalletBalanceSummary",
    "savings_rate",
    # Proposal models
    "EntityRef",
    "TransactionProposal",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
