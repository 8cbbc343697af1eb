"""
Abstract Storage Interface

DESIGN DECISION: Business logic talks to an abstract ledger store.
This allows us to:
1. Run the ledger on SQLite today and another engine later
2. Exercise the non-transactional compensation path in tests
3. Keep balance rules out of the persistence layer

The store knows nothing about balance semantics. It offers row operations
plus one primitive the accumulator builds on: an atomic balance increment.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pocket_ledger.models.audit import AuditEvent
from pocket_ledger.models.ledger import (
    Category,
    CategoryCreate,
    CategoryUpdate,
    Transaction,
    TransactionCreate,
    TransactionFilters,
    TransactionPage,
    TransactionRow,
    Wallet,
    WalletCreate,
    WalletUpdate,
)


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Any storage implementation must implement these methods. Unknown ids
    raise ``NotFoundError``; nothing here returns None for a missing record.
    """

    #: Whether ``transaction()`` can roll back. Stores that cannot are
    #: protected by compensating writes in the lifecycle controller.
    supports_transactions: bool = True

    @abstractmethod
    async def open(self) -> None:
        """Acquire the underlying handle and make sure the schema exists."""

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying handle. Safe to call twice."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager:
        """
        One atomic unit of work.

        Every write performed inside the block commits together or not at
        all. Nested use from the same task joins the outer unit.
        """

    # -------------------------------------------------------------------------
    # Wallets
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_wallets(self, include_archived: bool = False) -> list[Wallet]:
        """Wallets in creation order."""

    @abstractmethod
    async def get_wallet(self, wallet_id: int) -> Wallet:
        pass

    @abstractmethod
    async def create_wallet(self, data: WalletCreate) -> Wallet:
        """
        Create a wallet whose balance starts at its opening balance.

        Args:
            data: Validated creation request

        Returns:
            The stored wallet with its assigned id
        """

    @abstractmethod
    async def update_wallet(self, wallet_id: int, data: WalletUpdate) -> Wallet:
        """
        Merge the provided fields into an existing wallet.

        A provided ``balance`` re-seeds the wallet: the opening balance moves
        by the same delta so the stored balance still equals opening balance
        plus transaction history.
        """

    @abstractmethod
    async def archive_wallet(self, wallet_id: int) -> Wallet:
        """Mark a wallet archived. Idempotent."""

    @abstractmethod
    async def adjust_balance(self, wallet_id: int, delta: Decimal) -> Decimal:
        """
        Atomically add ``delta`` to a wallet's balance.

        Returns:
            The balance after the increment
        """

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_categories(self, include_archived: bool = False) -> list[Category]:
        """Categories ordered by name."""

    @abstractmethod
    async def get_category(self, category_id: int) -> Category:
        pass

    @abstractmethod
    async def create_category(self, data: CategoryCreate) -> Category:
        pass

    @abstractmethod
    async def update_category(self, category_id: int, data: CategoryUpdate) -> Category:
        """Merge the provided fields. An explicit ``budget_limit=None`` clears it."""

    @abstractmethod
    async def archive_category(self, category_id: int) -> Category:
        """Mark a category archived. Idempotent."""

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_transaction(self, data: TransactionCreate) -> Transaction:
        """
        Persist a transaction row. Does NOT touch any balance.

        Missing ``date`` defaults to today, missing ``currency`` to the
        source wallet's currency.

        Raises:
            NotFoundError: If a referenced wallet or category does not exist
        """

    @abstractmethod
    async def get_transaction(self, transaction_id: int) -> Transaction:
        pass

    @abstractmethod
    async def delete_transaction_row(self, transaction_id: int) -> None:
        """Remove a transaction row. Does NOT touch any balance."""

    @abstractmethod
    async def query_transactions(
        self,
        filters: Optional[TransactionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> TransactionPage:
        """
        Filtered, paginated transaction listing.

        Rows are ordered newest first (date, then creation time) and joined
        with category and wallet display fields. ``total_count`` is the
        number of matches ignoring limit/offset.
        """

    @abstractmethod
    async def list_transactions(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[TransactionRow]:
        """Every joined row inside the inclusive range, oldest first."""

    @abstractmethod
    async def list_wallet_transactions(self, wallet_id: int) -> list[Transaction]:
        """Every transaction using the wallet as source or destination."""


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events for one user action, in chronological order."""

    @abstractmethod
    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent events, newest first."""
