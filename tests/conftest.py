"""
Shared fixtures for Pocket Ledger tests.

Every test gets its own SQLite file under tmp_path; model-backed agents get
a stub model so no real API call is ever made.
"""

from decimal import Decimal
from types import SimpleNamespace
from typing import Optional

import pytest
import pytest_asyncio

from pocket_ledger.audit import AuditLogger
from pocket_ledger.config import AppSettings, GeminiSettings
from pocket_ledger.models.ledger import CategoryCreate, TransactionCreate, WalletCreate
from pocket_ledger.orchestrator import LedgerService
from pocket_ledger.services.storage import SQLiteLedgerStorage


class StubModel:
    """Stands in for a Gemini model: replays canned answers and records calls."""

    def __init__(self, *answers, error: Optional[Exception] = None):
        self.answers = list(answers)
        self.error = error
        self.calls = []

    async def generate_content_async(self, contents):
        self.calls.append(contents)
        if self.error is not None:
            raise self.error
        text = self.answers.pop(0) if self.answers else ""
        return SimpleNamespace(text=text)


@pytest.fixture
def app_settings(tmp_path) -> AppSettings:
    return AppSettings(
        database_path=str(tmp_path / "ledger.db"),
        default_currency="COP",
        query_page_limit=50,
        daily_window_days=30,
        min_proposal_confidence=0.6,
    )


@pytest.fixture
def gemini_settings() -> GeminiSettings:
    return GeminiSettings(api_key="test-key", retry_attempts=1)


@pytest_asyncio.fixture
async def storage(tmp_path) -> SQLiteLedgerStorage:
    """Open ledger store on a fresh database file"""
    store = SQLiteLedgerStorage(tmp_path / "ledger.db", default_currency="COP")
    await store.open()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def service(storage, app_settings) -> LedgerService:
    """Ledger service whose audit trail lands in the same database"""
    return LedgerService(storage, audit_logger=AuditLogger(storage), settings=app_settings)


@pytest.fixture
def make_wallet(storage):
    async def _make(name: str = "Cash", opening_balance="0", **fields):
        return await storage.create_wallet(
            WalletCreate(name=name, opening_balance=Decimal(str(opening_balance)), **fields)
        )
    return _make


@pytest.fixture
def make_category(storage):
    async def _make(name: str = "Food", budget_limit=None, **fields):
        return await storage.create_category(
            CategoryCreate(name=name, budget_limit=budget_limit, **fields)
        )
    return _make


@pytest.fixture
def tx_request():
    """Build a TransactionCreate with sensible defaults."""
    def _build(type="expense", amount="100", wallet_id=1, **fields) -> TransactionCreate:
        return TransactionCreate(
            type=type, amount=Decimal(str(amount)), wallet_id=wallet_id, **fields
        )
    return _build


@pytest.fixture
def stub_model():
    """Factory for StubModel instances"""
    return StubModel
