"""
Tests for the transaction lifecycle controller

Covers the transactional path (SQLite units of work) and the compensation
path used by stores without transactions.
"""

import asyncio
import random
from decimal import Decimal

import pytest
import pytest_asyncio

from pocket_ledger.errors import ConsistencyError, NotFoundError
from pocket_ledger.ledger import TransactionLifecycleController
from pocket_ledger.models.ledger import WalletCreate
from pocket_ledger.services.storage import SQLiteLedgerStorage
from pocket_ledger.stats import StatisticsAggregator


class FlakyStorage(SQLiteLedgerStorage):
    """SQLite store with switchable failures on balance and row writes."""

    def __init__(self, *args, transactional: bool = True, **kwargs):
        super().__init__(*args, **kwargs)
        self.supports_transactions = transactional
        self.fail_adjust_for: set[int] = set()
        self.fail_delete = False
        self.fail_adjust_after_delete = False

    async def adjust_balance(self, wallet_id, delta):
        if wallet_id in self.fail_adjust_for:
            raise NotFoundError("wallet", wallet_id)
        return await super().adjust_balance(wallet_id, delta)

    async def delete_transaction_row(self, transaction_id):
        if self.fail_delete:
            if self.fail_adjust_after_delete:
                self.fail_adjust_for.update(
                    w.id for w in await self.list_wallets(include_archived=True)
                )
            raise RuntimeError("disk full")
        return await super().delete_transaction_row(transaction_id)


class GatedStorage(SQLiteLedgerStorage):
    """SQLite store that parks inside the balance update until released."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gated = False
        self.fail = False
        self.parked = asyncio.Event()
        self.release = asyncio.Event()

    async def adjust_balance(self, wallet_id, delta):
        if self.gated:
            self.parked.set()
            await self.release.wait()
            if self.fail:
                raise NotFoundError("wallet", wallet_id)
        return await super().adjust_balance(wallet_id, delta)


async def _balances(storage) -> dict[int, Decimal]:
    return {w.id: w.balance for w in await storage.list_wallets(include_archived=True)}


@pytest_asyncio.fixture(params=[True, False], ids=["transactional", "compensating"])
async def flaky(request, tmp_path) -> FlakyStorage:
    store = FlakyStorage(tmp_path / "flaky.db", transactional=request.param)
    await store.open()
    yield store
    await store.close()


class TestLifecycle:
    """Happy path on the real store"""

    @pytest.mark.asyncio
    async def test_create_then_remove_restores_balances(self, storage, make_wallet, tx_request):
        """Wallet A: +1000, -400, delete the expense, transfer 300 to B, delete it"""
        controller = TransactionLifecycleController(storage)
        a = await make_wallet("A")

        await controller.create(tx_request("income", "1000", a.id))
        assert (await storage.get_wallet(a.id)).balance == Decimal("1000")

        expense = await controller.create(tx_request("expense", "400", a.id))
        assert (await storage.get_wallet(a.id)).balance == Decimal("600")

        await controller.remove(expense.id)
        assert (await storage.get_wallet(a.id)).balance == Decimal("1000")

        b = await make_wallet("B")
        transfer = await controller.create(
            tx_request("transfer", "300", a.id, wallet_destination_id=b.id)
        )
        assert await _balances(storage) == {a.id: Decimal("700"), b.id: Decimal("300")}

        await controller.remove(transfer.id)
        assert await _balances(storage) == {a.id: Decimal("1000"), b.id: Decimal("0")}

    @pytest.mark.asyncio
    async def test_transfer_conserves_total(self, storage, make_wallet, tx_request):
        controller = TransactionLifecycleController(storage)
        a = await make_wallet("A", opening_balance="500")
        b = await make_wallet("B", opening_balance="-200")
        before = sum((await _balances(storage)).values())

        await controller.create(tx_request("transfer", "123.45", a.id, wallet_destination_id=b.id))

        assert sum((await _balances(storage)).values()) == before

    @pytest.mark.asyncio
    async def test_transfer_without_destination(self, storage, make_wallet, tx_request):
        controller = TransactionLifecycleController(storage)
        a = await make_wallet("A", opening_balance="500")

        await controller.create(tx_request("transfer", "100", a.id))

        assert (await storage.get_wallet(a.id)).balance == Decimal("400")

    @pytest.mark.asyncio
    async def test_unknown_wallet_persists_nothing(self, storage, make_wallet, tx_request):
        controller = TransactionLifecycleController(storage)
        a = await make_wallet("A", opening_balance="500")

        with pytest.raises(NotFoundError):
            await controller.create(
                tx_request("transfer", "100", a.id, wallet_destination_id=404)
            )

        assert (await storage.query_transactions()).total_count == 0
        assert (await storage.get_wallet(a.id)).balance == Decimal("500")

    @pytest.mark.asyncio
    async def test_remove_twice(self, storage, make_wallet, tx_request):
        """Deleted is terminal"""
        controller = TransactionLifecycleController(storage)
        a = await make_wallet("A")
        transaction = await controller.create(tx_request("income", "10", a.id))

        removed = await controller.remove(transaction.id)
        assert removed.id == transaction.id

        with pytest.raises(NotFoundError):
            await controller.remove(transaction.id)
        assert (await storage.get_wallet(a.id)).balance == Decimal("0")


class TestFailureAtomicity:
    """Failures leave no half-applied transaction, with or without store transactions"""

    @pytest.mark.asyncio
    async def test_failed_apply_leaves_nothing(self, flaky, tx_request):
        controller = TransactionLifecycleController(flaky)
        a = await flaky.create_wallet(WalletCreate(name="A", opening_balance=Decimal("1000")))
        b = await flaky.create_wallet(WalletCreate(name="B"))
        flaky.fail_adjust_for = {b.id}

        with pytest.raises(ConsistencyError):
            await controller.create(
                tx_request("transfer", "300", a.id, wallet_destination_id=b.id)
            )

        assert (await flaky.query_transactions()).total_count == 0
        assert await _balances(flaky) == {a.id: Decimal("1000"), b.id: Decimal("0")}

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_row_and_balance(self, flaky, tx_request):
        controller = TransactionLifecycleController(flaky)
        a = await flaky.create_wallet(WalletCreate(name="A"))
        transaction = await controller.create(tx_request("income", "250", a.id))
        flaky.fail_delete = True

        with pytest.raises((ConsistencyError, RuntimeError)):
            await controller.remove(transaction.id)

        assert (await flaky.get_transaction(transaction.id)).amount == Decimal("250")
        assert (await flaky.get_wallet(a.id)).balance == Decimal("250")


class TestCompensationFailure:
    """When the undo itself fails the drift is reported, not hidden"""

    @pytest.mark.asyncio
    async def test_drift_detected_after_failed_compensation(self, tmp_path, tx_request):
        async with FlakyStorage(tmp_path / "broken.db", transactional=False) as store:
            controller = TransactionLifecycleController(store)
            a = await store.create_wallet(WalletCreate(name="A"))
            transaction = await controller.create(tx_request("income", "250", a.id))
            store.fail_delete = True
            store.fail_adjust_after_delete = True

            with pytest.raises(ConsistencyError) as exc_info:
                await controller.remove(transaction.id)
            assert exc_info.value.details["step"] == "delete"

            store.fail_adjust_for = set()
            checks = await controller.accumulator.verify_all()

        assert [check.consistent for check in checks] == [False]
        assert checks[0].drift == Decimal("-250")


async def _observed(store, aggregator, wallet_id) -> tuple[Decimal, Decimal]:
    """Income recorded and wallet balance, as another task sees them"""
    totals = await aggregator.totals_by_type()
    wallet = await store.get_wallet(wallet_id)
    return totals.income, wallet.balance


class TestReadIsolation:
    """Readers in other tasks never see a unit that has not committed"""

    @pytest.mark.asyncio
    async def test_read_waits_for_open_unit(self, tmp_path, tx_request):
        async with GatedStorage(tmp_path / "gated.db") as store:
            controller = TransactionLifecycleController(store)
            a = await store.create_wallet(WalletCreate(name="A"))
            store.gated = True

            writer = asyncio.create_task(controller.create(tx_request("income", "1000", a.id)))
            await store.parked.wait()
            reader = asyncio.create_task(_observed(store, StatisticsAggregator(store), a.id))
            await asyncio.sleep(0.05)
            assert not reader.done()

            store.release.set()
            await writer
            income, balance = await reader

        assert income == balance == Decimal("1000")

    @pytest.mark.asyncio
    async def test_read_after_rollback_sees_nothing(self, tmp_path, tx_request):
        async with GatedStorage(tmp_path / "gated.db") as store:
            controller = TransactionLifecycleController(store)
            a = await store.create_wallet(WalletCreate(name="A"))
            store.gated = True
            store.fail = True

            writer = asyncio.create_task(controller.create(tx_request("income", "1000", a.id)))
            await store.parked.wait()
            reader = asyncio.create_task(_observed(store, StatisticsAggregator(store), a.id))

            store.release.set()
            with pytest.raises(ConsistencyError):
                await writer
            income, balance = await reader

        assert income == balance == Decimal("0")


class TestConcurrency:
    """Concurrent lifecycle operations keep stored balances equal to history"""

    @pytest.mark.asyncio
    async def test_concurrent_creates_on_one_wallet(self, flaky, tx_request):
        controller = TransactionLifecycleController(flaky)
        a = await flaky.create_wallet(WalletCreate(name="A", opening_balance=Decimal("100")))

        # Odd amounts are income, even ones expense: +100 -110
        created = await asyncio.gather(*(
            controller.create(tx_request("income" if n % 2 else "expense", n, a.id))
            for n in range(1, 21)
        ))

        assert len({t.id for t in created}) == 20
        assert (await flaky.get_wallet(a.id)).balance == Decimal("90")
        assert all(check.consistent for check in await controller.accumulator.verify_all())

    @pytest.mark.asyncio
    async def test_concurrent_creates_and_removes(self, flaky, tx_request):
        controller = TransactionLifecycleController(flaky)
        a = await flaky.create_wallet(WalletCreate(name="A"))
        b = await flaky.create_wallet(WalletCreate(name="B"))
        doomed = [
            await controller.create(tx_request("transfer", "10", a.id, wallet_destination_id=b.id))
            for _ in range(10)
        ]

        await asyncio.gather(
            *(controller.remove(t.id) for t in doomed),
            *(controller.create(tx_request("income", "5", b.id)) for _ in range(10)),
        )

        assert await _balances(flaky) == {a.id: Decimal("0"), b.id: Decimal("50")}
        assert (await flaky.query_transactions()).total_count == 10
        assert all(check.consistent for check in await controller.accumulator.verify_all())

    @pytest.mark.parametrize("seed", [7, 42, 2024])
    @pytest.mark.asyncio
    async def test_random_history_conserves_balances(self, storage, make_wallet, tx_request, seed):
        rng = random.Random(seed)
        controller = TransactionLifecycleController(storage)
        wallets = [
            await make_wallet(f"W{i}", opening_balance=rng.randint(0, 5000)) for i in range(3)
        ]
        live: dict[int, Decimal] = {}

        for _ in range(80):
            if live and rng.random() < 0.3:
                transaction_id = rng.choice(sorted(live))
                await controller.remove(transaction_id)
                del live[transaction_id]
                continue

            kind = rng.choice(["income", "expense", "transfer"])
            source = rng.choice(wallets).id
            fields = {}
            if kind == "transfer" and rng.random() < 0.8:
                fields["wallet_destination_id"] = rng.choice(
                    [w.id for w in wallets if w.id != source]
                )
            amount = Decimal(rng.randint(1, 500000)) / 100
            created = await controller.create(tx_request(kind, amount, source, **fields))

            # Net change of the sum over all wallets
            if kind == "income":
                live[created.id] = amount
            elif kind == "expense" or "wallet_destination_id" not in fields:
                live[created.id] = -amount
            else:
                live[created.id] = Decimal("0")

        stored = await storage.list_wallets(include_archived=True)
        for wallet in stored:
            assert await controller.accumulator.recompute_balance(wallet.id) == wallet.balance
        assert sum(w.balance for w in stored) == (
            sum(w.opening_balance for w in wallets) + sum(live.values())
        )
