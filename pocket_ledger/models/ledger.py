"""
Core Ledger Models for Pocket Ledger

These models define the strict schemas for wallets, categories and
transactions, and for the requests that create or change them.

DESIGN DECISION: Money is a Decimal with at most two decimal places.
Stores persist it as integer hundredths so that applying and then
reversing a transaction is exact (no float drift).
"""

import datetime as dt
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


MINOR_UNITS = 100

DEFAULT_WALLET_EMOJI = "💳"
DEFAULT_WALLET_COLOR = "#6366f1"
DEFAULT_CATEGORY_EMOJI = "📦"
DEFAULT_CATEGORY_COLOR = "#8b5cf6"


def to_minor_units(amount: Decimal) -> int:
    """Convert a money amount to integer hundredths."""
    return int((Decimal(amount) * MINOR_UNITS).to_integral_value())


def from_minor_units(value: int) -> Decimal:
    """Convert integer hundredths back to a two-place Decimal."""
    return (Decimal(int(value)) / MINOR_UNITS).quantize(Decimal("0.01"))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """Closed set of transaction kinds."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class CategoryType(str, Enum):
    """
    Classification hint for a category.

    NOT enforced against transaction type: an "expense" category may still
    label an income transaction.
    """
    INCOME = "income"
    EXPENSE = "expense"
    BOTH = "both"


# =============================================================================
# STORED RECORDS
# =============================================================================

class Wallet(BaseModel):
    """
    A named store of money with a currency and a current balance.

    The balance may go negative (e.g. credit-card debt).
    """

    id: int
    name: str
    emoji: str = DEFAULT_WALLET_EMOJI
    color: str = DEFAULT_WALLET_COLOR
    currency: str
    balance: Decimal = Field(
        ...,
        description="Current balance (opening balance + applied transactions)"
    )
    opening_balance: Decimal = Field(
        ...,
        description="Seed balance the wallet's history is reconstructed from"
    )
    archived: bool = False
    created_at: datetime


class Category(BaseModel):
    """A label for transactions, optionally capped by a monthly budget."""

    id: int
    name: str
    emoji: str = DEFAULT_CATEGORY_EMOJI
    color: str = DEFAULT_CATEGORY_COLOR
    type: CategoryType = CategoryType.BOTH
    budget_limit: Optional[Decimal] = Field(
        default=None,
        description="Monthly ceiling; None means unlimited"
    )
    archived: bool = False
    created_at: datetime


class Transaction(BaseModel):
    """One dated monetary event."""

    id: int
    type: TransactionType
    amount: Decimal
    currency: str
    category_id: Optional[int] = None
    wallet_id: int
    wallet_destination_id: Optional[int] = None
    description: str = ""
    ai_generated: bool = False
    raw_input: Optional[str] = None
    date: dt.date
    created_at: datetime


class TransactionRow(Transaction):
    """A transaction joined with its category and wallet display fields."""

    category_name: Optional[str] = None
    category_emoji: Optional[str] = None
    category_color: Optional[str] = None
    wallet_name: Optional[str] = None
    wallet_emoji: Optional[str] = None
    wallet_color: Optional[str] = None
    wallet_destination_name: Optional[str] = None
    wallet_destination_emoji: Optional[str] = None


class TransactionPage(BaseModel):
    """One page of a transaction query plus the unpaginated match count."""

    rows: list[TransactionRow] = Field(default_factory=list)
    total_count: int = Field(ge=0)


# =============================================================================
# REQUESTS
# =============================================================================

class WalletCreate(BaseModel):
    """Fields accepted when a wallet is created."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    emoji: str = Field(default=DEFAULT_WALLET_EMOJI, max_length=16)
    color: str = Field(default=DEFAULT_WALLET_COLOR, max_length=32)
    currency: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=10,
        description="Currency code; the configured default when omitted"
    )
    opening_balance: Decimal = Field(
        default=Decimal("0"),
        decimal_places=2,
        description="Initial balance (may be negative)"
    )


class WalletUpdate(BaseModel):
    """Partial wallet update. Only fields that were provided are merged."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    emoji: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=32)
    currency: Optional[str] = Field(default=None, min_length=1, max_length=10)
    balance: Optional[Decimal] = Field(
        default=None,
        decimal_places=2,
        description="Re-seed the balance; the opening balance shifts by the same delta"
    )
    archived: Optional[bool] = None


class CategoryCreate(BaseModel):
    """Fields accepted when a category is created."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    emoji: str = Field(default=DEFAULT_CATEGORY_EMOJI, max_length=16)
    color: str = Field(default=DEFAULT_CATEGORY_COLOR, max_length=32)
    type: CategoryType = CategoryType.BOTH
    budget_limit: Optional[Decimal] = Field(
        default=None,
        gt=0,
        decimal_places=2,
    )

    @field_validator("budget_limit", mode="before")
    @classmethod
    def zero_means_unlimited(cls, v):
        # A falsy limit from a form means "no limit"
        if v in (0, "0", ""):
            return None
        return v


class CategoryUpdate(BaseModel):
    """Partial category update. Passing budget_limit=None clears the limit."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    emoji: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=32)
    type: Optional[CategoryType] = None
    budget_limit: Optional[Decimal] = Field(default=None, gt=0, decimal_places=2)
    archived: Optional[bool] = None

    @field_validator("budget_limit", mode="before")
    @classmethod
    def zero_means_unlimited(cls, v):
        if v in (0, "0", ""):
            return None
        return v


class TransactionCreate(BaseModel):
    """
    A transaction proposal ready to be committed.

    type, amount and wallet_id are required; everything else has a default.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    type: TransactionType
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Always positive; the type decides the sign"
    )
    currency: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=10,
        description="Defaults to the source wallet's currency"
    )
    category_id: Optional[int] = None
    wallet_id: int
    wallet_destination_id: Optional[int] = None
    description: str = Field(default="", max_length=500)
    ai_generated: bool = False
    raw_input: Optional[str] = Field(default=None, max_length=2000)
    date: Optional[dt.date] = Field(
        default=None,
        description="Calendar date of the event; today when omitted"
    )

    @field_validator("description", mode="before")
    @classmethod
    def none_is_empty(cls, v):
        return "" if v is None else v

    @model_validator(mode="after")
    def validate_destination(self) -> "TransactionCreate":
        """A transfer cannot move money into its own source wallet."""
        if (
            self.type == TransactionType.TRANSFER
            and self.wallet_destination_id is not None
            and self.wallet_destination_id == self.wallet_id
        ):
            raise ValueError("Transfer destination must differ from the source wallet")
        return self


class TransactionFilters(BaseModel):
    """Filter set for transaction queries. All bounds are inclusive."""
    model_config = ConfigDict(extra="forbid")

    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    wallet_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @model_validator(mode="after")
    def validate_range(self) -> "TransactionFilters":
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to cannot be before date_from")
        return self
