"""
Transaction Lifecycle Controller

A transaction is either nonexistent, active, or deleted (terminal). The
only transitions are:

    create:  nonexistent -> active   (insert row, then apply deltas)
    remove:  active -> deleted       (reverse deltas, then delete row)

Each transition runs as one atomic unit of the store, so a row is never
visible without its balance effect or vice versa. There is no amend:
editing is remove followed by create.

On a store without transactions the same guarantee is approximated with
compensating writes: a failed apply deletes the inserted row, a failed row
delete re-applies the reversed deltas.
"""

from typing import Optional

import structlog

from pocket_ledger.errors import ConsistencyError
from pocket_ledger.ledger.balance import BalanceAccumulator
from pocket_ledger.models.ledger import Transaction, TransactionCreate, TransactionType
from pocket_ledger.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)


class TransactionLifecycleController:
    """Pairs every row write with its balance update."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        accumulator: Optional[BalanceAccumulator] = None,
    ):
        self._storage = storage
        self._accumulator = accumulator or BalanceAccumulator(storage)

    @property
    def accumulator(self) -> BalanceAccumulator:
        return self._accumulator

    async def create(self, data: TransactionCreate) -> Transaction:
        """
        Record a transaction and apply its balance deltas atomically.

        Args:
            data: Validated request (amount > 0, wallet required)

        Returns:
            The stored transaction

        Raises:
            NotFoundError: If a referenced wallet or category does not exist
            ConsistencyError: If the balance update failed; nothing persisted
        """
        if data.type == TransactionType.TRANSFER and data.wallet_destination_id is None:
            logger.warning("transfer_without_destination", wallet_id=data.wallet_id)

        if self._storage.supports_transactions:
            async with self._storage.transaction():
                transaction = await self._storage.insert_transaction(data)
                await self._accumulator.apply(transaction)
            return transaction

        transaction = await self._storage.insert_transaction(data)
        try:
            await self._accumulator.apply(transaction)
        except Exception as e:
            await self._compensate(
                "insert",
                transaction,
                self._storage.delete_transaction_row(transaction.id),
            )
            if isinstance(e, ConsistencyError):
                raise
            raise ConsistencyError(
                f"Transaction {transaction.id} could not be applied",
                details={"transaction_id": transaction.id},
            ) from e
        return transaction

    async def remove(self, transaction_id: int) -> Transaction:
        """
        Reverse a transaction's balance effect and delete its row.

        The reversal uses the stored row, never caller-supplied fields.

        Returns:
            The removed transaction

        Raises:
            NotFoundError: If the id does not exist
            ConsistencyError: If the reversal could not be completed
        """
        if self._storage.supports_transactions:
            async with self._storage.transaction():
                transaction = await self._storage.get_transaction(transaction_id)
                await self._accumulator.reverse(transaction)
                await self._storage.delete_transaction_row(transaction_id)
            return transaction

        transaction = await self._storage.get_transaction(transaction_id)
        await self._accumulator.reverse(transaction)
        try:
            await self._storage.delete_transaction_row(transaction_id)
        except Exception as e:
            await self._compensate(
                "delete",
                transaction,
                self._accumulator.apply(transaction),
            )
            raise ConsistencyError(
                f"Transaction {transaction_id} could not be deleted",
                details={"transaction_id": transaction_id},
            ) from e
        return transaction

    async def _compensate(self, step: str, transaction: Transaction, undo) -> None:
        try:
            await undo
        except Exception as e:
            # Ledger is now out of balance; verify_all() will report the drift
            logger.critical(
                "compensation_failed",
                step=step,
                transaction_id=transaction.id,
                error=str(e),
            )
            raise ConsistencyError(
                f"Could not undo failed {step} of transaction {transaction.id}",
                details={"transaction_id": transaction.id, "step": step},
            ) from e
        logger.warning("compensated", step=step, transaction_id=transaction.id)
