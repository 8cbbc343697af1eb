"""
Statistics Models

Read-only shapes produced by the statistics aggregator. Derived flags
(over budget, savings rate) are computed properties, never stored.
"""

import datetime as dt
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field, model_validator


ZERO = Decimal("0.00")


def savings_rate(income: Decimal, expense: Decimal) -> Decimal:
    """
    (income - expense) / income, rounded to four places.

    Undefined when there is no income; reported as 0.
    """
    if not income:
        return Decimal("0")
    return ((income - expense) / income).quantize(Decimal("0.0001"))


class DateRange(BaseModel):
    """Inclusive [start, end] date range. A missing bound is unbounded."""

    start: Optional[date] = None
    end: Optional[date] = None

    @model_validator(mode='after')
    def validate_bounds(self) -> 'DateRange':
        if self.start and self.end and self.end < self.start:
            raise ValueError("Range end cannot be before start")
        return self

    @property
    def is_unbounded(self) -> bool:
        return self.start is None and self.end is None

    def contains(self, day: date) -> bool:
        if self.start and day < self.start:
            return False
        if self.end and day > self.end:
            return False
        return True


class PeriodKind(str, Enum):
    """Period selector accepted by stats queries."""
    MONTH = "month"
    RANGE = "range"
    ALL = "all"


class Period(BaseModel):
    """
    A period selector: the current calendar month, explicit bounds, or all.

    Resolution is deterministic given "today".
    """

    kind: PeriodKind = PeriodKind.MONTH
    start: Optional[date] = None
    end: Optional[date] = None

    @model_validator(mode='after')
    def validate_range(self) -> 'Period':
        if self.kind == PeriodKind.RANGE and self.start is None:
            raise ValueError("A range period needs a start date")
        if self.start and self.end and self.end < self.start:
            raise ValueError("Range end cannot be before start")
        return self

    @classmethod
    def month(cls) -> 'Period':
        return cls(kind=PeriodKind.MONTH)

    @classmethod
    def all(cls) -> 'Period':
        return cls(kind=PeriodKind.ALL)

    @classmethod
    def between(cls, start: date, end: Optional[date] = None) -> 'Period':
        return cls(kind=PeriodKind.RANGE, start=start, end=end)

    def resolve(self, today: Optional[date] = None) -> DateRange:
        """Turn the selector into concrete bounds."""
        today = today or date.today()

        if self.kind == PeriodKind.ALL:
            return DateRange()

        if self.kind == PeriodKind.MONTH:
            start = today.replace(day=1)
            if today.month == 12:
                end = today.replace(year=today.year + 1, month=1, day=1) - timedelta(days=1)
            else:
                end = today.replace(month=today.month + 1, day=1) - timedelta(days=1)
            return DateRange(start=start, end=end)

        # Explicit range: an open end means "up to today", or a single day
        # when the range starts in the future
        return DateRange(start=self.start, end=self.end or max(self.start, today))


class TypeTotals(BaseModel):
    """Sum of amounts per transaction type. Every type is always present."""

    income: Decimal = ZERO
    expense: Decimal = ZERO
    transfer: Decimal = ZERO

    @computed_field
    @property
    def net(self) -> Decimal:
        return self.income - self.expense

    @computed_field
    @property
    def savings_rate(self) -> Decimal:
        return savings_rate(self.income, self.expense)


class CategoryBreakdown(BaseModel):
    """Expense total for one category (or the uncategorized bucket)."""

    category_id: Optional[int] = Field(
        default=None,
        description="None for the uncategorized bucket"
    )
    name: str
    emoji: Optional[str] = None
    color: Optional[str] = None
    budget_limit: Optional[Decimal] = None
    total: Decimal
    count: int = Field(ge=0)

    @computed_field
    @property
    def over_budget(self) -> bool:
        return self.budget_limit is not None and self.total > self.budget_limit


class DailyPoint(BaseModel):
    """Income and expense sums for one calendar date."""

    date: dt.date
    income: Decimal = ZERO
    expense: Decimal = ZERO


class WalletBalance(BaseModel):
    """Balance snapshot of one non-archived wallet."""

    id: int
    name: str
    emoji: str
    color: str
    currency: str
    balance: Decimal


class WalletBalanceSummary(BaseModel):
    """
    Snapshot of every active wallet.

    total_balance is the raw sum across currencies: no conversion happens.
    """

    wallets: list[WalletBalance] = Field(default_factory=list)
    total_balance: Decimal = ZERO


class StatsReport(BaseModel):
    """Everything a stats query returns for one period."""

    period: DateRange
    totals: TypeTotals
    by_category: list[CategoryBreakdown] = Field(default_factory=list)
    by_day: list[DailyPoint] = Field(default_factory=list)
    balances: WalletBalanceSummary
