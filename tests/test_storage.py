"""
Tests for the SQLite ledger store

Runs against a real database file per test.
"""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from pocket_ledger.errors import NotFoundError, ValidationError
from pocket_ledger.models.audit import AuditEvent, AuditEventType
from pocket_ledger.models.ledger import (
    CategoryUpdate,
    TransactionFilters,
    TransactionType,
    WalletCreate,
    WalletUpdate,
)
from pocket_ledger.services.storage import SQLiteLedgerStorage


class TestWallets:
    """Wallet persistence"""

    @pytest.mark.asyncio
    async def test_create_wallet_defaults(self, make_wallet):
        """Currency falls back to the store default; balance starts at opening"""
        wallet = await make_wallet("Efectivo", opening_balance="150000")

        assert wallet.id is not None
        assert wallet.currency == "COP"
        assert wallet.balance == Decimal("150000")
        assert wallet.opening_balance == Decimal("150000")
        assert wallet.archived is False

    @pytest.mark.asyncio
    async def test_negative_opening_balance(self, make_wallet):
        """Credit cards start in debt"""
        wallet = await make_wallet("Tarjeta", opening_balance="-350000")
        assert wallet.balance == Decimal("-350000")

    @pytest.mark.asyncio
    async def test_get_unknown_wallet(self, storage):
        with pytest.raises(NotFoundError) as exc_info:
            await storage.get_wallet(999)
        assert exc_info.value.entity == "wallet"

    @pytest.mark.asyncio
    async def test_archive_hides_wallet_and_is_idempotent(self, storage, make_wallet):
        cash = await make_wallet("Cash")
        bank = await make_wallet("Bank")

        await storage.archive_wallet(cash.id)
        again = await storage.archive_wallet(cash.id)

        assert again.archived is True
        assert [w.id for w in await storage.list_wallets()] == [bank.id]
        assert len(await storage.list_wallets(include_archived=True)) == 2

    @pytest.mark.asyncio
    async def test_archive_unknown_wallet(self, storage):
        with pytest.raises(NotFoundError):
            await storage.archive_wallet(404)

    @pytest.mark.asyncio
    async def test_update_merges_given_fields(self, storage, make_wallet):
        wallet = await make_wallet("Cash", emoji="💵")

        updated = await storage.update_wallet(wallet.id, WalletUpdate(name="Pocket"))

        assert updated.name == "Pocket"
        assert updated.emoji == "💵"

    @pytest.mark.asyncio
    async def test_balance_reseed_shifts_opening_balance(self, storage, make_wallet):
        """Setting a balance keeps balance == opening + history"""
        wallet = await make_wallet("Cash", opening_balance="100")

        updated = await storage.update_wallet(
            wallet.id, WalletUpdate(balance=Decimal("250"))
        )

        assert updated.balance == Decimal("250")
        assert updated.opening_balance == Decimal("250")

    @pytest.mark.asyncio
    async def test_adjust_balance_is_relative(self, storage, make_wallet):
        wallet = await make_wallet("Cash", opening_balance="100")

        assert await storage.adjust_balance(wallet.id, Decimal("-40.50")) == Decimal("59.50")
        assert await storage.adjust_balance(wallet.id, Decimal("0.50")) == Decimal("60.00")

    @pytest.mark.asyncio
    async def test_adjust_unknown_wallet(self, storage):
        with pytest.raises(NotFoundError):
            await storage.adjust_balance(12, Decimal("1"))


class TestCategories:
    """Category persistence"""

    @pytest.mark.asyncio
    async def test_budget_limit_round_trip(self, make_category):
        category = await make_category("Fun", budget_limit=Decimal("200000"))
        assert category.budget_limit == Decimal("200000")

    @pytest.mark.asyncio
    async def test_clear_budget_limit(self, storage, make_category):
        """An explicit None clears the limit; omitting it leaves it alone"""
        category = await make_category("Fun", budget_limit=Decimal("200000"))

        renamed = await storage.update_category(category.id, CategoryUpdate(name="Ocio"))
        assert renamed.budget_limit == Decimal("200000")

        cleared = await storage.update_category(category.id, CategoryUpdate(budget_limit=None))
        assert cleared.budget_limit is None
        assert cleared.name == "Ocio"

    @pytest.mark.asyncio
    async def test_archived_categories_hidden(self, storage, make_category):
        food = await make_category("Food")
        await make_category("Rent")

        await storage.archive_category(food.id)

        assert [c.name for c in await storage.list_categories()] == ["Rent"]
        assert len(await storage.list_categories(include_archived=True)) == 2

    @pytest.mark.asyncio
    async def test_get_unknown_category(self, storage):
        with pytest.raises(NotFoundError):
            await storage.get_category(77)


class TestTransactionRows:
    """Raw row writes (balances are the accumulator's job)"""

    @pytest.mark.asyncio
    async def test_insert_does_not_touch_balance(self, storage, make_wallet, tx_request):
        wallet = await make_wallet("Cash", opening_balance="1000")

        transaction = await storage.insert_transaction(
            tx_request("expense", "400", wallet.id)
        )

        assert transaction.currency == "COP"
        assert transaction.date == date.today()
        assert (await storage.get_wallet(wallet.id)).balance == Decimal("1000")

    @pytest.mark.asyncio
    async def test_currency_defaults_to_source_wallet(self, storage, make_wallet, tx_request):
        wallet = await make_wallet("Dollars", currency="USD")

        transaction = await storage.insert_transaction(tx_request("income", "5", wallet.id))

        assert transaction.currency == "USD"

    @pytest.mark.asyncio
    async def test_insert_unknown_references(self, storage, make_wallet, tx_request):
        wallet = await make_wallet("Cash")

        with pytest.raises(NotFoundError):
            await storage.insert_transaction(tx_request("expense", "1", 999))
        with pytest.raises(NotFoundError):
            await storage.insert_transaction(tx_request("expense", "1", wallet.id, category_id=5))

        page = await storage.query_transactions()
        assert page.total_count == 0

    @pytest.mark.asyncio
    async def test_archived_wallet_still_accepted(self, storage, make_wallet, tx_request):
        wallet = await make_wallet("Old")
        await storage.archive_wallet(wallet.id)

        transaction = await storage.insert_transaction(tx_request("expense", "1", wallet.id))

        assert transaction.wallet_id == wallet.id

    @pytest.mark.asyncio
    async def test_delete_unknown_row(self, storage):
        with pytest.raises(NotFoundError):
            await storage.delete_transaction_row(3)


class TestQueryTransactions:
    """Filtering, ordering and pagination"""

    @pytest.fixture
    def seed(self, storage, make_wallet, make_category, tx_request):
        async def _seed():
            cash = await make_wallet("Cash")
            bank = await make_wallet("Bank")
            food = await make_category("Food")
            rows = [
                tx_request("expense", "10", cash.id, category_id=food.id, date=date(2024, 5, 1)),
                tx_request("income", "500", bank.id, date=date(2024, 5, 2)),
                tx_request("expense", "20", cash.id, category_id=food.id, date=date(2024, 5, 2)),
                tx_request(
                    "transfer", "50", bank.id,
                    wallet_destination_id=cash.id, date=date(2024, 5, 3),
                ),
                tx_request("expense", "30", bank.id, date=date(2024, 6, 1)),
            ]
            for request in rows:
                await storage.insert_transaction(request)
            return cash, bank, food
        return _seed

    @pytest.mark.asyncio
    async def test_newest_first(self, storage, seed):
        await seed()

        page = await storage.query_transactions()

        assert page.total_count == 5
        assert [row.date for row in page.rows] == [
            date(2024, 6, 1),
            date(2024, 5, 3),
            date(2024, 5, 2),
            date(2024, 5, 2),
            date(2024, 5, 1),
        ]
        # Same date: most recently recorded first
        assert page.rows[2].amount == Decimal("20")
        assert page.rows[3].amount == Decimal("500")

    @pytest.mark.asyncio
    async def test_joined_display_fields(self, storage, seed):
        await seed()

        page = await storage.query_transactions(
            TransactionFilters(type=TransactionType.TRANSFER)
        )

        row = page.rows[0]
        assert row.wallet_name == "Bank"
        assert row.wallet_destination_name == "Cash"
        assert row.category_name is None

    @pytest.mark.asyncio
    async def test_filter_by_category_and_type(self, storage, seed):
        _, _, food = await seed()

        page = await storage.query_transactions(
            TransactionFilters(type=TransactionType.EXPENSE, category_id=food.id)
        )

        assert page.total_count == 2
        assert all(row.category_name == "Food" for row in page.rows)

    @pytest.mark.asyncio
    async def test_wallet_filter_matches_source_only(self, storage, seed):
        """Money transferred in is not listed under the destination"""
        cash, _, _ = await seed()

        page = await storage.query_transactions(TransactionFilters(wallet_id=cash.id))

        assert page.total_count == 2
        assert all(row.wallet_id == cash.id for row in page.rows)

    @pytest.mark.asyncio
    async def test_date_bounds_inclusive(self, storage, seed):
        await seed()

        page = await storage.query_transactions(
            TransactionFilters(date_from=date(2024, 5, 2), date_to=date(2024, 5, 3))
        )

        assert page.total_count == 3

    @pytest.mark.asyncio
    async def test_pagination_keeps_total(self, storage, seed):
        await seed()

        first = await storage.query_transactions(limit=2)
        second = await storage.query_transactions(limit=2, offset=2)
        past_end = await storage.query_transactions(limit=2, offset=10)

        assert len(first.rows) == 2
        assert len(second.rows) == 2
        assert {r.id for r in first.rows}.isdisjoint({r.id for r in second.rows})
        assert past_end.rows == []
        assert past_end.total_count == 5

    @pytest.mark.asyncio
    async def test_negative_paging_rejected(self, storage):
        with pytest.raises(ValidationError):
            await storage.query_transactions(limit=-1)
        with pytest.raises(ValidationError):
            await storage.query_transactions(offset=-1)

    @pytest.mark.asyncio
    async def test_list_wallet_transactions_includes_destination(self, storage, seed):
        cash, _, _ = await seed()

        rows = await storage.list_wallet_transactions(cash.id)

        assert len(rows) == 3
        assert sum(1 for row in rows if row.wallet_destination_id == cash.id) == 1


class TestUnitOfWork:
    """Explicit transactions"""

    @pytest.mark.asyncio
    async def test_rollback_on_error(self, storage):
        with pytest.raises(RuntimeError):
            async with storage.transaction():
                await storage.create_wallet(WalletCreate(name="Ghost"))
                raise RuntimeError("abort")

        assert await storage.list_wallets(include_archived=True) == []

    @pytest.mark.asyncio
    async def test_nested_unit_joins_outer(self, storage):
        """Store methods open their own unit; inside a caller's unit they join it"""
        async with storage.transaction():
            await storage.create_wallet(WalletCreate(name="A"))
            await storage.create_wallet(WalletCreate(name="B"))

        assert len(await storage.list_wallets()) == 2

    @pytest.mark.asyncio
    async def test_unit_reads_its_own_writes(self, storage):
        async with storage.transaction():
            wallet = await storage.create_wallet(WalletCreate(name="A"))
            assert (await storage.get_wallet(wallet.id)).name == "A"

    @pytest.mark.asyncio
    async def test_other_task_waits_for_commit(self, storage):
        async with storage.transaction():
            await storage.create_wallet(WalletCreate(name="A"))
            reader = asyncio.create_task(storage.list_wallets())
            await asyncio.sleep(0.05)
            assert not reader.done()

        assert [w.name for w in await reader] == ["A"]

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "persist.db"
        async with SQLiteLedgerStorage(path) as store:
            await store.create_wallet(WalletCreate(name="Cash", opening_balance=Decimal("12.5")))

        async with SQLiteLedgerStorage(path) as store:
            wallets = await store.list_wallets()

        assert wallets[0].balance == Decimal("12.50")


class TestAuditEvents:
    """Audit trail persistence"""

    @pytest.mark.asyncio
    async def test_events_by_correlation_id(self, storage):
        correlation_id = uuid4()
        await storage.append_event(AuditEvent(
            event_type=AuditEventType.WALLET_CREATED,
            entity_type="wallet",
            entity_id="1",
            correlation_id=correlation_id,
            description="Wallet 'Cash' created",
            details={"amount": Decimal("1.5")},
        ))
        await storage.append_event(AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            description="unrelated",
        ))

        events = await storage.get_events_by_correlation_id(correlation_id)

        assert len(events) == 1
        assert events[0].event_type == AuditEventType.WALLET_CREATED
        assert events[0].details == {"amount": "1.5"}
        assert len(await storage.get_recent_events()) == 2
