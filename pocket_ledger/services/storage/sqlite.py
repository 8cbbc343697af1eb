"""
SQLite Storage Implementation

DESIGN DECISION: SQLite (through aiosqlite) is the ledger backend because:
1. A personal ledger is single-user; one local file is enough
2. Real transactions: a row write and its balance update commit together
3. Balance increments happen inside the engine (balance = balance + ?)

Money is stored as INTEGER hundredths, dates as ISO text. Creation
timestamps keep microseconds so that same-day ordering is stable.

The connection runs in autocommit mode (isolation_level=None) and units of
work are opened explicitly with BEGIN IMMEDIATE, which takes the write lock
up front. All tasks share one connection, so every statement (reads too)
is serialised by an asyncio lock: a reader waits for an open unit to commit
or roll back instead of seeing its uncommitted rows. Nested units from the
same task join the outer one.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Union
from uuid import UUID

import aiosqlite
import structlog

from pocket_ledger.errors import NotFoundError, ValidationError
from pocket_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
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
    from_minor_units,
    to_minor_units,
    utcnow,
)
from pocket_ledger.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
)


logger = structlog.get_logger(__name__)

IN_MEMORY = ":memory:"

SCHEMA = """
CREATE TABLE IF NOT EXISTS wallets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    emoji TEXT NOT NULL,
    color TEXT NOT NULL,
    currency TEXT NOT NULL,
    balance INTEGER NOT NULL DEFAULT 0,
    opening_balance INTEGER NOT NULL DEFAULT 0,
    is_archived INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    emoji TEXT NOT NULL,
    color TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'both',
    budget_limit INTEGER,
    is_archived INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL CHECK (type IN ('income', 'expense', 'transfer')),
    amount INTEGER NOT NULL CHECK (amount > 0),
    currency TEXT NOT NULL,
    category_id INTEGER REFERENCES categories(id),
    wallet_id INTEGER NOT NULL REFERENCES wallets(id),
    wallet_destination_id INTEGER REFERENCES wallets(id),
    description TEXT NOT NULL DEFAULT '',
    ai_generated INTEGER NOT NULL DEFAULT 0,
    raw_input TEXT,
    date TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date);
CREATE INDEX IF NOT EXISTS idx_transactions_wallet ON transactions(wallet_id);
CREATE INDEX IF NOT EXISTS idx_transactions_destination ON transactions(wallet_destination_id);
CREATE INDEX IF NOT EXISTS idx_transactions_category ON transactions(category_id);

CREATE TABLE IF NOT EXISTS audit_events (
    event_id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    entity_type TEXT,
    entity_id TEXT,
    correlation_id TEXT,
    description TEXT NOT NULL,
    details_json TEXT NOT NULL DEFAULT '{}',
    error_kind TEXT,
    error_message TEXT,
    is_user_action INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_audit_correlation ON audit_events(correlation_id);
"""

JOINED_TRANSACTION_SELECT = """
SELECT
    t.*,
    c.name AS category_name,
    c.emoji AS category_emoji,
    c.color AS category_color,
    w.name AS wallet_name,
    w.emoji AS wallet_emoji,
    w.color AS wallet_color,
    d.name AS wallet_destination_name,
    d.emoji AS wallet_destination_emoji
FROM transactions t
LEFT JOIN categories c ON c.id = t.category_id
LEFT JOIN wallets w ON w.id = t.wallet_id
LEFT JOIN wallets d ON d.id = t.wallet_destination_id
"""


def _timestamp() -> str:
    return utcnow().isoformat(timespec="microseconds")


class SQLiteLedgerStorage(LedgerStorageInterface, AuditStorageInterface):
    """
    SQLite implementation of the ledger store and the audit log.

    Usage:
        async with SQLiteLedgerStorage("ledger.db") as storage:
            wallet = await storage.create_wallet(WalletCreate(name="Cash"))
    """

    supports_transactions = True

    def __init__(
        self,
        db_path: Union[Path, str] = IN_MEMORY,
        default_currency: str = "COP",
    ):
        self._db_path = str(db_path)
        self._default_currency = default_currency
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._owner: Optional[asyncio.Task] = None
        self._in_unit = False

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        if self._conn is not None:
            return

        if self._db_path != IN_MEMORY:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA busy_timeout=30000")
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.executescript(SCHEMA)
        self._conn = conn

        logger.info("ledger_store_opened", db_path=self._db_path)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("ledger_store_closed", db_path=self._db_path)

    async def __aenter__(self) -> "SQLiteLedgerStorage":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Ledger store is not open")
        return self._conn

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        """
        Hold the shared connection for the current task.

        Every statement goes through this lock, reads included, so another
        task never observes the half-applied writes of an open unit. The
        task that already holds it passes straight through.
        """
        task = asyncio.current_task()
        if self._owner is not None and self._owner is task:
            yield
            return

        async with self._lock:
            self._owner = task
            try:
                yield
            finally:
                self._owner = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        One atomic unit: commit on success, roll back on any exception.

        Re-entering from the task that already owns the unit joins it, so
        store methods can open their own unit and still compose into a
        caller's larger one.
        """
        conn = self._connection()

        async with self._exclusive():
            if self._in_unit:
                yield conn
                return

            self._in_unit = True
            try:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    await conn.execute("ROLLBACK")
                    raise
                await conn.execute("COMMIT")
            finally:
                self._in_unit = False

    async def _fetchone(self, sql: str, params: tuple = ()) -> Optional[aiosqlite.Row]:
        async with self._exclusive():
            async with self._connection().execute(sql, params) as cursor:
                return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        async with self._exclusive():
            async with self._connection().execute(sql, params) as cursor:
                return list(await cursor.fetchall())

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_wallet(row: aiosqlite.Row) -> Wallet:
        return Wallet(
            id=row["id"],
            name=row["name"],
            emoji=row["emoji"],
            color=row["color"],
            currency=row["currency"],
            balance=from_minor_units(row["balance"]),
            opening_balance=from_minor_units(row["opening_balance"]),
            archived=bool(row["is_archived"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_category(row: aiosqlite.Row) -> Category:
        limit = row["budget_limit"]
        return Category(
            id=row["id"],
            name=row["name"],
            emoji=row["emoji"],
            color=row["color"],
            type=CategoryType(row["type"]),
            budget_limit=from_minor_units(limit) if limit is not None else None,
            archived=bool(row["is_archived"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _transaction_fields(row: aiosqlite.Row) -> dict:
        return {
            "id": row["id"],
            "type": TransactionType(row["type"]),
            "amount": from_minor_units(row["amount"]),
            "currency": row["currency"],
            "category_id": row["category_id"],
            "wallet_id": row["wallet_id"],
            "wallet_destination_id": row["wallet_destination_id"],
            "description": row["description"],
            "ai_generated": bool(row["ai_generated"]),
            "raw_input": row["raw_input"],
            "date": date.fromisoformat(row["date"]),
            "created_at": datetime.fromisoformat(row["created_at"]),
        }

    def _row_to_transaction(self, row: aiosqlite.Row) -> Transaction:
        return Transaction(**self._transaction_fields(row))

    def _row_to_joined(self, row: aiosqlite.Row) -> TransactionRow:
        return TransactionRow(
            **self._transaction_fields(row),
            category_name=row["category_name"],
            category_emoji=row["category_emoji"],
            category_color=row["category_color"],
            wallet_name=row["wallet_name"],
            wallet_emoji=row["wallet_emoji"],
            wallet_color=row["wallet_color"],
            wallet_destination_name=row["wallet_destination_name"],
            wallet_destination_emoji=row["wallet_destination_emoji"],
        )

    # -------------------------------------------------------------------------
    # Wallets
    # -------------------------------------------------------------------------

    async def list_wallets(self, include_archived: bool = False) -> list[Wallet]:
        sql = "SELECT * FROM wallets"
        if not include_archived:
            sql += " WHERE is_archived = 0"
        rows = await self._fetchall(sql + " ORDER BY id")
        return [self._row_to_wallet(row) for row in rows]

    async def get_wallet(self, wallet_id: int) -> Wallet:
        row = await self._fetchone("SELECT * FROM wallets WHERE id = ?", (wallet_id,))
        if row is None:
            raise NotFoundError("wallet", wallet_id)
        return self._row_to_wallet(row)

    async def create_wallet(self, data: WalletCreate) -> Wallet:
        opening = to_minor_units(data.opening_balance)
        async with self.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO wallets
                    (name, emoji, color, currency, balance, opening_balance, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data.name,
                    data.emoji,
                    data.color,
                    data.currency or self._default_currency,
                    opening,
                    opening,
                    _timestamp(),
                ),
            )
            return await self.get_wallet(cursor.lastrowid)

    async def update_wallet(self, wallet_id: int, data: WalletUpdate) -> Wallet:
        fields = data.model_dump(exclude_unset=True)
        assignments: list[str] = []
        params: list[Any] = []

        async with self.transaction() as conn:
            current = await self.get_wallet(wallet_id)

            for column in ("name", "emoji", "color", "currency"):
                if fields.get(column) is not None:
                    assignments.append(f"{column} = ?")
                    params.append(fields[column])

            if fields.get("archived") is not None:
                assignments.append("is_archived = ?")
                params.append(int(fields["archived"]))

            if fields.get("balance") is not None:
                # Re-seed: keep balance == opening + history
                target = to_minor_units(fields["balance"])
                shift = target - to_minor_units(current.balance)
                assignments.append("balance = ?")
                params.append(target)
                assignments.append("opening_balance = opening_balance + ?")
                params.append(shift)

            if not assignments:
                return current

            await conn.execute(
                f"UPDATE wallets SET {', '.join(assignments)} WHERE id = ?",
                (*params, wallet_id),
            )
            return await self.get_wallet(wallet_id)

    async def archive_wallet(self, wallet_id: int) -> Wallet:
        async with self.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE wallets SET is_archived = 1 WHERE id = ?", (wallet_id,)
            )
            if cursor.rowcount == 0:
                raise NotFoundError("wallet", wallet_id)
            return await self.get_wallet(wallet_id)

    async def adjust_balance(self, wallet_id: int, delta: Decimal) -> Decimal:
        async with self.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE wallets SET balance = balance + ? WHERE id = ?",
                (to_minor_units(delta), wallet_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("wallet", wallet_id)
            row = await self._fetchone(
                "SELECT balance FROM wallets WHERE id = ?", (wallet_id,)
            )
            return from_minor_units(row["balance"])

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def list_categories(self, include_archived: bool = False) -> list[Category]:
        sql = "SELECT * FROM categories"
        if not include_archived:
            sql += " WHERE is_archived = 0"
        rows = await self._fetchall(sql + " ORDER BY name COLLATE NOCASE, id")
        return [self._row_to_category(row) for row in rows]

    async def get_category(self, category_id: int) -> Category:
        row = await self._fetchone(
            "SELECT * FROM categories WHERE id = ?", (category_id,)
        )
        if row is None:
            raise NotFoundError("category", category_id)
        return self._row_to_category(row)

    async def create_category(self, data: CategoryCreate) -> Category:
        limit = to_minor_units(data.budget_limit) if data.budget_limit is not None else None
        async with self.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO categories
                    (name, emoji, color, type, budget_limit, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (data.name, data.emoji, data.color, data.type.value, limit, _timestamp()),
            )
            return await self.get_category(cursor.lastrowid)

    async def update_category(self, category_id: int, data: CategoryUpdate) -> Category:
        fields = data.model_dump(exclude_unset=True)
        assignments: list[str] = []
        params: list[Any] = []

        async with self.transaction() as conn:
            current = await self.get_category(category_id)

            for column in ("name", "emoji", "color"):
                if fields.get(column) is not None:
                    assignments.append(f"{column} = ?")
                    params.append(fields[column])

            if fields.get("type") is not None:
                assignments.append("type = ?")
                params.append(CategoryType(fields["type"]).value)

            if "budget_limit" in fields:
                # Explicit None clears the limit
                limit = fields["budget_limit"]
                assignments.append("budget_limit = ?")
                params.append(to_minor_units(limit) if limit is not None else None)

            if fields.get("archived") is not None:
                assignments.append("is_archived = ?")
                params.append(int(fields["archived"]))

            if not assignments:
                return current

            await conn.execute(
                f"UPDATE categories SET {', '.join(assignments)} WHERE id = ?",
                (*params, category_id),
            )
            return await self.get_category(category_id)

    async def archive_category(self, category_id: int) -> Category:
        async with self.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE categories SET is_archived = 1 WHERE id = ?", (category_id,)
            )
            if cursor.rowcount == 0:
                raise NotFoundError("category", category_id)
            return await self.get_category(category_id)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def insert_transaction(self, data: TransactionCreate) -> Transaction:
        async with self.transaction() as conn:
            # Archived wallets and categories remain valid references
            source = await self.get_wallet(data.wallet_id)
            if data.wallet_destination_id is not None:
                await self.get_wallet(data.wallet_destination_id)
            if data.category_id is not None:
                await self.get_category(data.category_id)

            cursor = await conn.execute(
                """
                INSERT INTO transactions (
                    type, amount, currency, category_id, wallet_id,
                    wallet_destination_id, description, ai_generated,
                    raw_input, date, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data.type.value,
                    to_minor_units(data.amount),
                    data.currency or source.currency,
                    data.category_id,
                    data.wallet_id,
                    data.wallet_destination_id,
                    data.description,
                    int(data.ai_generated),
                    data.raw_input,
                    (data.date or date.today()).isoformat(),
                    _timestamp(),
                ),
            )
            return await self.get_transaction(cursor.lastrowid)

    async def get_transaction(self, transaction_id: int) -> Transaction:
        row = await self._fetchone(
            "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
        )
        if row is None:
            raise NotFoundError("transaction", transaction_id)
        return self._row_to_transaction(row)

    async def delete_transaction_row(self, transaction_id: int) -> None:
        async with self.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM transactions WHERE id = ?", (transaction_id,)
            )
            if cursor.rowcount == 0:
                raise NotFoundError("transaction", transaction_id)

    @staticmethod
    def _filter_clauses(filters: Optional[TransactionFilters]) -> tuple[list[str], list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if filters is None:
            return clauses, params

        if filters.type is not None:
            clauses.append("t.type = ?")
            params.append(filters.type.value)
        if filters.category_id is not None:
            clauses.append("t.category_id = ?")
            params.append(filters.category_id)
        if filters.wallet_id is not None:
            # Source wallet only; transfers in are not listed under the destination
            clauses.append("t.wallet_id = ?")
            params.append(filters.wallet_id)
        if filters.date_from is not None:
            clauses.append("t.date >= ?")
            params.append(filters.date_from.isoformat())
        if filters.date_to is not None:
            clauses.append("t.date <= ?")
            params.append(filters.date_to.isoformat())

        return clauses, params

    async def query_transactions(
        self,
        filters: Optional[TransactionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> TransactionPage:
        if limit < 0 or offset < 0:
            raise ValidationError(
                "limit and offset must be non-negative",
                details={"limit": limit, "offset": offset},
            )

        clauses, params = self._filter_clauses(filters)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        async with self._exclusive():
            rows = await self._fetchall(
                f"""
                {JOINED_TRANSACTION_SELECT}
                {where}
                ORDER BY t.date DESC, t.created_at DESC, t.id DESC
                LIMIT ? OFFSET ?
                """,
                (*params, limit, offset),
            )
            matches = await self._fetchone(
                f"SELECT COUNT(*) AS matches FROM transactions t {where}",
                tuple(params),
            )

        return TransactionPage(
            rows=[self._row_to_joined(row) for row in rows],
            total_count=matches["matches"],
        )

    async def list_transactions(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[TransactionRow]:
        clauses, params = self._filter_clauses(
            TransactionFilters(date_from=date_from, date_to=date_to)
        )
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        rows = await self._fetchall(
            f"""
            {JOINED_TRANSACTION_SELECT}
            {where}
            ORDER BY t.date, t.created_at, t.id
            """,
            tuple(params),
        )
        return [self._row_to_joined(row) for row in rows]

    async def list_wallet_transactions(self, wallet_id: int) -> list[Transaction]:
        rows = await self._fetchall(
            """
            SELECT * FROM transactions
            WHERE wallet_id = ? OR wallet_destination_id = ?
            ORDER BY id
            """,
            (wallet_id, wallet_id),
        )
        return [self._row_to_transaction(row) for row in rows]

    # -------------------------------------------------------------------------
    # Audit log
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row["event_id"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            event_type=AuditEventType(row["event_type"]),
            severity=AuditSeverity(row["severity"]),
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            correlation_id=UUID(row["correlation_id"]) if row["correlation_id"] else None,
            description=row["description"],
            details=json.loads(row["details_json"]),
            error_kind=row["error_kind"],
            error_message=row["error_message"],
            is_user_action=bool(row["is_user_action"]),
        )

    async def append_event(self, event: AuditEvent) -> bool:
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO audit_events (
                    event_id, timestamp, event_type, severity, entity_type,
                    entity_id, correlation_id, description, details_json,
                    error_kind, error_message, is_user_action
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(event.event_id),
                    event.timestamp.isoformat(timespec="microseconds"),
                    event.event_type.value,
                    event.severity.value,
                    event.entity_type,
                    event.entity_id,
                    str(event.correlation_id) if event.correlation_id else None,
                    event.description,
                    json.dumps(event.details, default=str),
                    event.error_kind,
                    event.error_message,
                    int(event.is_user_action),
                ),
            )
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        rows = await self._fetchall(
            "SELECT * FROM audit_events WHERE correlation_id = ? ORDER BY timestamp",
            (str(correlation_id),),
        )
        return [self._row_to_event(row) for row in rows]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        rows = await self._fetchall(
            "SELECT * FROM audit_events ORDER BY timestamp DESC LIMIT ?",
            (limit,),
        )
        return [self._row_to_event(row) for row in rows]
