"""
Statistics Aggregator

DESIGN DECISION: Aggregation is DETERMINISTIC and read-only.
Every figure is computed from stored rows in Python, with Decimal
arithmetic, over an inclusive date range. Nothing is estimated and
nothing is written.

Derived flags (over budget, savings rate) live on the result models and
are recomputed on every read.
"""

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Optional

from pocket_ledger.models.ledger import TransactionRow, TransactionType
from pocket_ledger.models.stats import (
    ZERO,
    CategoryBreakdown,
    DailyPoint,
    DateRange,
    Period,
    StatsReport,
    TypeTotals,
    WalletBalance,
    WalletBalanceSummary,
)
from pocket_ledger.services.storage import LedgerStorageInterface


UNCATEGORIZED = "Uncategorized"
DEFAULT_WINDOW_DAYS = 30


class StatisticsAggregator:
    """
    Computes period-scoped totals, category breakdowns and daily series.

    GUARANTEES:
    - Only reports what is stored
    - Every transaction type is present in totals, zero when absent
    - Transactions on archived wallets still count toward totals
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        window_days: int = DEFAULT_WINDOW_DAYS,
        today: Optional[Callable[[], date]] = None,
    ):
        self._storage = storage
        self._window_days = window_days
        self._today = today or date.today

    async def _rows(self, period: Optional[DateRange]) -> list[TransactionRow]:
        period = period or DateRange()
        return await self._storage.list_transactions(period.start, period.end)

    async def totals_by_type(self, period: Optional[DateRange] = None) -> TypeTotals:
        """Sum of amounts per type inside the range."""
        sums = {tx_type: ZERO for tx_type in TransactionType}
        for row in await self._rows(period):
            sums[row.type] += row.amount

        return TypeTotals(
            income=sums[TransactionType.INCOME],
            expense=sums[TransactionType.EXPENSE],
            transfer=sums[TransactionType.TRANSFER],
        )

    async def expense_by_category(
        self,
        period: Optional[DateRange] = None,
    ) -> list[CategoryBreakdown]:
        """
        Expense total per category, largest first.

        Expenses without a category are grouped under a synthetic
        "Uncategorized" bucket. Categories without expenses are omitted.
        """
        totals: dict[Optional[int], Decimal] = defaultdict(lambda: ZERO)
        counts: dict[Optional[int], int] = defaultdict(int)

        for row in await self._rows(period):
            if row.type != TransactionType.EXPENSE:
                continue
            totals[row.category_id] += row.amount
            counts[row.category_id] += 1

        if not totals:
            return []

        categories = {
            category.id: category
            for category in await self._storage.list_categories(include_archived=True)
        }

        breakdown = []
        for category_id, total in totals.items():
            category = categories.get(category_id)
            breakdown.append(
                CategoryBreakdown(
                    category_id=category_id,
                    name=category.name if category else UNCATEGORIZED,
                    emoji=category.emoji if category else None,
                    color=category.color if category else None,
                    budget_limit=category.budget_limit if category else None,
                    total=total,
                    count=counts[category_id],
                )
            )

        breakdown.sort(key=lambda item: (-item.total, item.name))
        return breakdown

    async def daily_series(
        self,
        period: Optional[DateRange] = None,
        window_days: Optional[int] = None,
    ) -> list[DailyPoint]:
        """
        Income and expense per date over the trailing window.

        The window ends at the range end or today, whichever comes first,
        and reaches back ``window_days`` days. The series is sparse: dates
        without transactions produce no point.
        """
        window_days = self._window_days if window_days is None else window_days
        if window_days < 0:
            raise ValueError("window_days cannot be negative")

        today = self._today()
        anchor = min(period.end, today) if period and period.end else today
        rows = await self._storage.list_transactions(
            anchor - timedelta(days=window_days), anchor
        )

        points: dict[date, DailyPoint] = {}
        for row in rows:
            point = points.setdefault(row.date, DailyPoint(date=row.date))
            if row.type == TransactionType.INCOME:
                point.income += row.amount
            elif row.type == TransactionType.EXPENSE:
                point.expense += row.amount

        return [points[day] for day in sorted(points)]

    async def wallet_balances(self) -> WalletBalanceSummary:
        """
        Balances of every non-archived wallet.

        The total is a plain sum across currencies; no conversion happens.
        """
        wallets = await self._storage.list_wallets()
        balances = [
            WalletBalance(
                id=wallet.id,
                name=wallet.name,
                emoji=wallet.emoji,
                color=wallet.color,
                currency=wallet.currency,
                balance=wallet.balance,
            )
            for wallet in wallets
        ]
        return WalletBalanceSummary(
            wallets=balances,
            total_balance=sum((item.balance for item in balances), ZERO),
        )

    async def report(self, period: Optional[Period] = None) -> StatsReport:
        """Everything above for one period selector (current month by default)."""
        resolved = (period or Period.month()).resolve(self._today())
        return StatsReport(
            period=resolved,
            totals=await self.totals_by_type(resolved),
            by_category=await self.expense_by_category(resolved),
            by_day=await self.daily_series(resolved),
            balances=await self.wallet_balances(),
        )
