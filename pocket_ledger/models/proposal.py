"""
Proposal Models

A proposal is a CANDIDATE transaction produced by the interpreter from free
text. It is NOT committed until the user confirms it.

Entity references may point at wallets or categories that do not exist yet
(id=None, exists=False); the referenced entity is created from the proposal's
name/emoji right before the transaction is committed.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pocket_ledger.models.ledger import TransactionType, utcnow


class EntityRef(BaseModel):
    """Reference to a wallet or category as understood by the interpreter."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    name: Optional[str] = Field(default=None, max_length=100)
    emoji: Optional[str] = Field(default=None, max_length=16)
    exists: bool = False

    @property
    def resolved(self) -> bool:
        return self.exists and self.id is not None


class TransactionProposal(BaseModel):
    """
    Structured interpretation of a free-text transaction description.

    CRITICAL: This is PROPOSED data, NOT verified.
    It MUST go through user confirmation before being committed.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    proposal_id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=utcnow)

    type: TransactionType = TransactionType.EXPENSE
    amount: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="0 when the interpreter found no amount"
    )
    currency: Optional[str] = Field(default=None, max_length=10)
    description: str = Field(default="", max_length=500)
    category: Optional[EntityRef] = None
    wallet: EntityRef = Field(default_factory=EntityRef)
    wallet_destination: Optional[EntityRef] = None
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    clarification: Optional[str] = Field(
        default=None,
        description="Question for the user when the text was ambiguous"
    )
    raw_text: str = Field(default="", description="Original user text")

    @field_validator("amount", mode="before")
    @classmethod
    def round_amount(cls, v):
        # Models sometimes answer 20000.000001
        if v is None:
            return Decimal("0")
        return Decimal(str(v)).quantize(Decimal("0.01"))


class ValidationIssue(BaseModel):
    """A single problem found while validating a proposal."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'unknown_reference')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage proposal validation.

    Stage 1: Schema validation (required fields, amounts)
    Stage 2: Semantic validation (references, confidence, clarifications)
    """

    proposal_id: UUID
    validated_at: datetime = Field(default_factory=utcnow)

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool
    can_commit: bool = Field(
        ...,
        description="Can the user confirm this proposal as is?"
    )

    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
