"""
Two-Stage Proposal Validation

DESIGN DECISION: An interpreted proposal is validated in two stages
before the user is asked to confirm it.

STAGE 1 - SCHEMA VALIDATION:
- An amount was found
- A source wallet was named
- A transfer does not point back at its own source

STAGE 2 - SEMANTIC VALIDATION:
- Referenced ids still exist in the ledger
- Low interpreter confidence or an open clarification question
- Absurd amounts
- Currency mismatch with the source wallet

IMPORTANT: Validation NEVER silently fixes issues.
It reports them for human review.
"""

from decimal import Decimal
from typing import Optional

from pocket_ledger.config import AppSettings, get_settings
from pocket_ledger.errors import NotFoundError
from pocket_ledger.models.ledger import TransactionType, Wallet
from pocket_ledger.models.proposal import (
    EntityRef,
    TransactionProposal,
    ValidationIssue,
    ValidationResult,
)
from pocket_ledger.services.storage import LedgerStorageInterface


def _same_entity(a: EntityRef, b: EntityRef) -> bool:
    if a.id is not None and b.id is not None:
        return a.id == b.id
    if a.name and b.name:
        return a.name.strip().lower() == b.name.strip().lower()
    return False


class ProposalValidator:
    """
    Validates transaction proposals through a two-stage pipeline.

    Stage 1: Schema validation (no storage needed)
    Stage 2: Semantic validation (checks references against storage)
    """

    def __init__(
        self,
        storage: Optional[LedgerStorageInterface] = None,
        settings: Optional[AppSettings] = None,
    ):
        """
        Args:
            storage: Ledger store used to check references.
                     If None, reference checks are skipped.
            settings: Thresholds; the global app settings when omitted.
        """
        self._storage = storage
        self._settings = settings or get_settings().app

    def _validate_schema(
        self,
        proposal: TransactionProposal,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if proposal.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="No amount was found in the message",
                severity="error",
                suggested_fix="Say how much, e.g. '20 mil'",
            ))

        if proposal.wallet.id is None and not proposal.wallet.name:
            issues.append(ValidationIssue(
                field="wallet",
                issue_type="missing",
                message="No wallet was identified",
                severity="error",
                suggested_fix="Pick the wallet the money came from",
            ))

        if proposal.type == TransactionType.TRANSFER:
            destination = proposal.wallet_destination
            if destination is None:
                issues.append(ValidationIssue(
                    field="wallet_destination",
                    issue_type="missing",
                    message="Transfer has no destination wallet; only the source will be debited",
                    severity="warning",
                    suggested_fix="Pick the wallet the money goes to",
                ))
            elif _same_entity(proposal.wallet, destination):
                issues.append(ValidationIssue(
                    field="wallet_destination",
                    issue_type="invalid_value",
                    message="Transfer destination is the same as the source wallet",
                    severity="error",
                    suggested_fix="Pick a different destination wallet",
                ))

        has_errors = any(issue.severity == "error" for issue in issues)
        return not has_errors, issues

    async def _check_reference(
        self,
        field: str,
        ref: Optional[EntityRef],
        entity: str,
    ) -> tuple[Optional[Wallet], list[ValidationIssue]]:
        """Check that a resolved reference still exists; note ones to create."""
        if ref is None:
            return None, []

        if not ref.resolved:
            if not ref.name:
                return None, []
            return None, [ValidationIssue(
                field=field,
                issue_type="new_reference",
                message=f"{entity.capitalize()} '{ref.name}' does not exist yet and will be created",
                severity="info",
            )]

        if self._storage is None:
            return None, []

        try:
            if entity == "wallet":
                record = await self._storage.get_wallet(ref.id)
            else:
                record = await self._storage.get_category(ref.id)
        except NotFoundError:
            return None, [ValidationIssue(
                field=field,
                issue_type="unknown_reference",
                message=f"{entity.capitalize()} {ref.id} no longer exists",
                severity="error",
                suggested_fix=f"Pick an existing {entity}",
            )]

        issues = []
        if record.archived:
            issues.append(ValidationIssue(
                field=field,
                issue_type="archived_reference",
                message=f"{entity.capitalize()} '{record.name}' is archived",
                severity="warning",
            ))
        return (record if entity == "wallet" else None), issues

    async def _validate_semantic(
        self,
        proposal: TransactionProposal,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if proposal.confidence < self._settings.min_proposal_confidence:
            issues.append(ValidationIssue(
                field="confidence",
                issue_type="low_confidence",
                message=f"Interpretation confidence is low ({proposal.confidence:.0%})",
                severity="warning",
                suggested_fix="Please review all fields carefully",
            ))

        if proposal.clarification:
            issues.append(ValidationIssue(
                field="clarification",
                issue_type="needs_clarification",
                message=proposal.clarification,
                severity="warning",
            ))

        if proposal.amount > Decimal(str(self._settings.max_transaction_amount)):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount {proposal.amount:,.2f} is unusually large",
                severity="warning",
                suggested_fix="Check that the amount was heard correctly",
            ))

        wallet, wallet_issues = await self._check_reference("wallet", proposal.wallet, "wallet")
        issues.extend(wallet_issues)
        _, destination_issues = await self._check_reference(
            "wallet_destination", proposal.wallet_destination, "wallet"
        )
        issues.extend(destination_issues)
        _, category_issues = await self._check_reference(
            "category", proposal.category, "category"
        )
        issues.extend(category_issues)

        if wallet and proposal.currency and proposal.currency != wallet.currency:
            issues.append(ValidationIssue(
                field="currency",
                issue_type="currency_mismatch",
                message=(
                    f"Proposal is in {proposal.currency} but wallet "
                    f"'{wallet.name}' holds {wallet.currency}"
                ),
                severity="warning",
            ))

        has_errors = any(issue.severity == "error" for issue in issues)
        return not has_errors, issues

    async def validate(self, proposal: TransactionProposal) -> ValidationResult:
        """
        Run both validation stages.

        Stage 2 only runs when stage 1 passes.
        """
        all_issues: list[ValidationIssue] = []

        schema_valid, schema_issues = self._validate_schema(proposal)
        all_issues.extend(schema_issues)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = await self._validate_semantic(proposal)
            all_issues.extend(semantic_issues)

        warnings = [issue.message for issue in all_issues if issue.severity == "warning"]
        is_valid = schema_valid and semantic_valid

        return ValidationResult(
            proposal_id=proposal.proposal_id,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=is_valid,
            can_commit=is_valid,
            issues=all_issues,
            warnings=warnings,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed! Please confirm the transaction."

        lines = []

        if result.has_errors:
            lines.append("❌ The transaction cannot be saved yet:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        lines.append("")
        if result.can_commit:
            lines.append("You can still confirm, but please review carefully.")
        else:
            lines.append("Please fix the issues above before confirming.")

        return "\n".join(lines)
