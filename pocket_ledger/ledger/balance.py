"""
Balance Accumulator

Translates a transaction into signed per-wallet balance deltas and applies
or reverses them through the store's atomic increment.

    type      source     destination
    income    +amount    -
    expense   -amount    -
    transfer  -amount    +amount (only when a destination is set)

A transfer without a destination only debits its source.

Reversal is the exact negation of application: amounts are two-place
Decimals and the store keeps integer hundredths, so apply then reverse
restores every balance to the unit.
"""

from decimal import Decimal
from typing import Optional

import structlog
from pydantic import BaseModel, computed_field

from pocket_ledger.errors import ConsistencyError, NotFoundError
from pocket_ledger.models.ledger import Transaction, TransactionType
from pocket_ledger.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)


class BalanceCheck(BaseModel):
    """Stored balance of one wallet next to the one its history implies."""

    wallet_id: int
    stored: Decimal
    expected: Decimal

    @computed_field
    @property
    def drift(self) -> Decimal:
        return self.stored - self.expected

    @computed_field
    @property
    def consistent(self) -> bool:
        return self.drift == 0


class BalanceAccumulator:
    """Keeps wallet balances equal to opening balance plus applied history."""

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    @staticmethod
    def deltas(transaction: Transaction) -> dict[int, Decimal]:
        """Signed balance change per wallet for one transaction."""
        amount = transaction.amount
        changes: dict[int, Decimal] = {}

        def add(wallet_id: int, delta: Decimal) -> None:
            changes[wallet_id] = changes.get(wallet_id, Decimal("0")) + delta

        if transaction.type == TransactionType.INCOME:
            add(transaction.wallet_id, amount)
        elif transaction.type == TransactionType.EXPENSE:
            add(transaction.wallet_id, -amount)
        elif transaction.type == TransactionType.TRANSFER:
            add(transaction.wallet_id, -amount)
            if transaction.wallet_destination_id is not None:
                add(transaction.wallet_destination_id, amount)

        return changes

    async def _adjust(self, changes: dict[int, Decimal], transaction_id: int) -> None:
        applied: list[tuple[int, Decimal]] = []
        for wallet_id, delta in changes.items():
            try:
                await self._storage.adjust_balance(wallet_id, delta)
            except NotFoundError as e:
                if not self._storage.supports_transactions:
                    # No rollback available: undo the wallets already moved
                    for done_id, done_delta in reversed(applied):
                        await self._storage.adjust_balance(done_id, -done_delta)
                raise ConsistencyError(
                    f"Balance of wallet {wallet_id} could not be adjusted "
                    f"for transaction {transaction_id}",
                    details={"wallet_id": wallet_id, "transaction_id": transaction_id},
                ) from e
            applied.append((wallet_id, delta))

    async def apply(self, transaction: Transaction) -> dict[int, Decimal]:
        """
        Apply a transaction's deltas.

        Must run inside the same store unit as the row insert so that a
        failure here rolls both back.

        Returns:
            The deltas that were applied

        Raises:
            ConsistencyError: If a referenced wallet cannot be adjusted
        """
        changes = self.deltas(transaction)
        await self._adjust(changes, transaction.id)
        return changes

    async def reverse(self, transaction: Transaction) -> dict[int, Decimal]:
        """Undo a previously applied transaction using its stored fields."""
        changes = {
            wallet_id: -delta
            for wallet_id, delta in self.deltas(transaction).items()
        }
        await self._adjust(changes, transaction.id)
        return changes

    async def recompute_balance(
        self,
        wallet_id: int,
        opening_balance: Optional[Decimal] = None,
    ) -> Decimal:
        """
        Reconstruct a wallet's balance from its transaction history.

        Args:
            wallet_id: Wallet to reconstruct
            opening_balance: Seed to start from; the wallet's stored
                opening balance when omitted
        """
        wallet = await self._storage.get_wallet(wallet_id)
        total = wallet.opening_balance if opening_balance is None else Decimal(opening_balance)

        for transaction in await self._storage.list_wallet_transactions(wallet_id):
            total += self.deltas(transaction).get(wallet_id, Decimal("0"))

        return total.quantize(Decimal("0.01"))

    async def verify(self, wallet_id: int) -> BalanceCheck:
        # Stored balance and history are read under one unit so a concurrent
        # write cannot land between them
        async with self._storage.transaction():
            wallet = await self._storage.get_wallet(wallet_id)
            check = BalanceCheck(
                wallet_id=wallet_id,
                stored=wallet.balance,
                expected=await self.recompute_balance(wallet_id),
            )
        if not check.consistent:
            logger.warning(
                "balance_drift",
                wallet_id=wallet_id,
                stored=str(check.stored),
                expected=str(check.expected),
            )
        return check

    async def verify_all(self) -> list[BalanceCheck]:
        """Check every wallet, archived ones included."""
        wallets = await self._storage.list_wallets(include_archived=True)
        return [await self.verify(wallet.id) for wallet in wallets]
