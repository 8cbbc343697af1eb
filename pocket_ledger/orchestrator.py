"""
Main Orchestrator for Pocket Ledger

This module ties the components together and defines the two entry
points callers use:
1. LedgerService: wallets, categories, transactions, statistics
2. ProposalFlow: voice/text -> proposal -> validate -> confirm -> commit

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every transaction write goes through the lifecycle controller
- No interpreted proposal persists without explicit confirmation
- Every mutation and every failure is audited

Inputs may be plain dicts (as they arrive from a transport) or request
models. Every failure surfaces as a LedgerError subclass with a ``kind``.
"""

import functools
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Union
from uuid import UUID

import structlog

from pocket_ledger.agents import InterpretationAgent, ReviewAgent, TranscriptionAgent
from pocket_ledger.audit import AuditLogger, create_correlation_id
from pocket_ledger.config import AppSettings, get_settings
from pocket_ledger.errors import ValidationError, build_request
from pocket_ledger.ledger import BalanceCheck, TransactionLifecycleController
from pocket_ledger.models.audit import AuditEventType
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
)
from pocket_ledger.models.proposal import (
    EntityRef,
    TransactionProposal,
    ValidationResult,
)
from pocket_ledger.models.stats import Period, StatsReport
from pocket_ledger.services.storage import LedgerStorageInterface, SQLiteLedgerStorage
from pocket_ledger.stats import StatisticsAggregator
from pocket_ledger.validation import ProposalValidator


logger = structlog.get_logger(__name__)

Payload = Union[dict, Any]


def audited(operation: str):
    """Audit any exception that ends ``operation``, then re-raise it."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except Exception as e:
                await self._audit.log_failure(
                    e, operation, correlation_id=kwargs.get("correlation_id")
                )
                raise
        return wrapper
    return decorator


class LedgerService:
    """
    Transport-agnostic facade over the ledger.

    Usage:
        async with LedgerService(SQLiteLedgerStorage("ledger.db")) as ledger:
            wallet = await ledger.create_wallet({"name": "Cash"})
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._settings = settings or get_settings().app
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._lifecycle = TransactionLifecycleController(storage)
        self._aggregator = StatisticsAggregator(
            storage, window_days=self._settings.daily_window_days
        )

    @property
    def settings(self) -> AppSettings:
        return self._settings

    @property
    def storage(self) -> LedgerStorageInterface:
        return self._storage

    @property
    def audit(self) -> AuditLogger:
        return self._audit

    @property
    def aggregator(self) -> StatisticsAggregator:
        return self._aggregator

    @property
    def accumulator(self):
        return self._lifecycle.accumulator

    async def open(self) -> None:
        await self._storage.open()

    async def close(self) -> None:
        await self._storage.close()

    async def __aenter__(self) -> "LedgerService":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Wallets
    # -------------------------------------------------------------------------

    async def list_wallets(self, include_archived: bool = False) -> list[Wallet]:
        return await self._storage.list_wallets(include_archived=include_archived)

    @audited("create_wallet")
    async def create_wallet(
        self,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Wallet:
        request = build_request(WalletCreate, data)
        wallet = await self._storage.create_wallet(request)
        await self._audit.log_entity_changed(
            AuditEventType.WALLET_CREATED,
            "wallet",
            wallet.id,
            wallet.name,
            changes=request.model_dump(mode="json"),
            correlation_id=correlation_id,
        )
        return wallet

    @audited("update_wallet")
    async def update_wallet(
        self,
        wallet_id: int,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Wallet:
        request = build_request(WalletUpdate, data)
        wallet = await self._storage.update_wallet(wallet_id, request)
        await self._audit.log_entity_changed(
            AuditEventType.WALLET_UPDATED,
            "wallet",
            wallet.id,
            wallet.name,
            changes=request.model_dump(mode="json", exclude_unset=True),
            correlation_id=correlation_id,
        )
        return wallet

    @audited("archive_wallet")
    async def archive_wallet(
        self,
        wallet_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Wallet:
        wallet = await self._storage.archive_wallet(wallet_id)
        await self._audit.log_entity_changed(
            AuditEventType.WALLET_ARCHIVED,
            "wallet",
            wallet.id,
            wallet.name,
            correlation_id=correlation_id,
        )
        return wallet

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def list_categories(self, include_archived: bool = False) -> list[Category]:
        return await self._storage.list_categories(include_archived=include_archived)

    @audited("create_category")
    async def create_category(
        self,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Category:
        request = build_request(CategoryCreate, data)
        category = await self._storage.create_category(request)
        await self._audit.log_entity_changed(
            AuditEventType.CATEGORY_CREATED,
            "category",
            category.id,
            category.name,
            changes=request.model_dump(mode="json"),
            correlation_id=correlation_id,
        )
        return category

    @audited("update_category")
    async def update_category(
        self,
        category_id: int,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Category:
        request = build_request(CategoryUpdate, data)
        category = await self._storage.update_category(category_id, request)
        await self._audit.log_entity_changed(
            AuditEventType.CATEGORY_UPDATED,
            "category",
            category.id,
            category.name,
            changes=request.model_dump(mode="json", exclude_unset=True),
            correlation_id=correlation_id,
        )
        return category

    @audited("archive_category")
    async def archive_category(
        self,
        category_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Category:
        category = await self._storage.archive_category(category_id)
        await self._audit.log_entity_changed(
            AuditEventType.CATEGORY_ARCHIVED,
            "category",
            category.id,
            category.name,
            correlation_id=correlation_id,
        )
        return category

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @audited("create_transaction")
    async def create_transaction(
        self,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """Record a transaction and move the wallet balances it touches."""
        request = build_request(TransactionCreate, data)
        transaction = await self._lifecycle.create(request)
        await self._audit.log_transaction_created(
            transaction,
            self.accumulator.deltas(transaction),
            correlation_id=correlation_id,
        )
        return transaction

    @audited("delete_transaction")
    async def delete_transaction(
        self,
        transaction_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """Delete a transaction and undo its balance effect."""
        transaction = await self._lifecycle.remove(transaction_id)
        reversed_deltas = {
            wallet_id: -delta
            for wallet_id, delta in self.accumulator.deltas(transaction).items()
        }
        await self._audit.log_transaction_deleted(
            transaction,
            reversed_deltas,
            correlation_id=correlation_id,
        )
        return transaction

    async def get_transaction(self, transaction_id: int) -> Transaction:
        return await self._storage.get_transaction(transaction_id)

    @audited("query_transactions")
    async def query_transactions(
        self,
        filters: Optional[Payload] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> TransactionPage:
        request = build_request(TransactionFilters, filters or {})
        return await self._storage.query_transactions(
            request,
            limit=self._settings.query_page_limit if limit is None else limit,
            offset=offset,
        )

    # -------------------------------------------------------------------------
    # Statistics and consistency
    # -------------------------------------------------------------------------

    @audited("stats")
    async def stats(self, period: Optional[Payload] = None) -> StatsReport:
        """Totals, category breakdown, daily series and balances for a period."""
        selector = build_request(Period, period) if period is not None else Period.month()
        return await self._aggregator.report(selector)

    async def period_transactions(self, report: StatsReport) -> list[TransactionRow]:
        return await self._storage.list_transactions(report.period.start, report.period.end)

    async def verify_balances(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> list[BalanceCheck]:
        """Compare every stored balance with the one its history implies."""
        checks = await self.accumulator.verify_all()
        for check in checks:
            if not check.consistent:
                await self._audit.log_balance_drift(
                    check.wallet_id,
                    check.stored,
                    check.expected,
                    correlation_id=correlation_id,
                )
        return checks


class ProposalFlow:
    """
    Orchestrates the natural-language entry flow.

    Flow:
    1. Transcribe -> voice note to text (optional)
    2. Interpret -> text to TransactionProposal
    3. Validate -> two-stage validation
    4. Review -> present to user (PAUSE - require confirmation)
    5. Commit -> create missing wallet/category, then the transaction

    Human confirmation (step 4) is MANDATORY.
    The system NEVER auto-commits.
    """

    def __init__(
        self,
        service: LedgerService,
        interpreter: Optional[InterpretationAgent] = None,
        transcriber: Optional[TranscriptionAgent] = None,
        reviewer: Optional[ReviewAgent] = None,
        validator: Optional[ProposalValidator] = None,
    ):
        self._service = service
        self._audit = service.audit
        self._interpreter = interpreter or InterpretationAgent()
        self._transcriber = transcriber or TranscriptionAgent()
        self._reviewer = reviewer or ReviewAgent()
        self._validator = validator or ProposalValidator(
            service.storage, settings=service.settings
        )

    @audited("transcribe")
    async def transcribe(
        self,
        audio: bytes,
        mime_type: str = "audio/webm",
        correlation_id: Optional[UUID] = None,
    ) -> str:
        correlation_id = correlation_id or create_correlation_id()
        text = await self._transcriber.transcribe(audio, mime_type)
        await self._audit.log_audio_transcribed(
            mime_type=mime_type,
            size_bytes=len(audio),
            text_length=len(text),
            correlation_id=correlation_id,
        )
        return text

    @audited("interpret")
    async def interpret(
        self,
        text: str,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[TransactionProposal, ValidationResult]:
        """
        Interpret text against the active wallets and categories.

        Returns:
            (proposal, validation) - show both to the user before commit
        """
        correlation_id = correlation_id or create_correlation_id()

        proposal = await self._interpreter.interpret(
            text,
            await self._service.list_wallets(),
            await self._service.list_categories(),
        )
        await self._audit.log_proposal_interpreted(
            proposal_id=proposal.proposal_id,
            tx_type=proposal.type.value,
            confidence=proposal.confidence,
            needs_clarification=proposal.clarification is not None,
            correlation_id=correlation_id,
        )

        validation = await self._validator.validate(proposal)
        if not validation.is_valid:
            await self._audit.log_proposal_validation_failed(
                proposal_id=proposal.proposal_id,
                issues=[issue.model_dump() for issue in validation.issues],
                correlation_id=correlation_id,
            )

        return proposal, validation

    def summarize(self, validation: ValidationResult) -> str:
        return self._validator.get_user_friendly_summary(validation)

    async def _ensure_wallet(
        self,
        ref: EntityRef,
        proposal: TransactionProposal,
        created: list[str],
        correlation_id: UUID,
    ) -> int:
        if ref.resolved:
            return ref.id
        fields = {"name": ref.name, "currency": proposal.currency}
        if ref.emoji:
            fields["emoji"] = ref.emoji
        wallet = await self._service.create_wallet(fields, correlation_id=correlation_id)
        created.append(f"wallet:{wallet.id}")
        return wallet.id

    async def _ensure_category(
        self,
        ref: Optional[EntityRef],
        proposal: TransactionProposal,
        created: list[str],
        correlation_id: UUID,
    ) -> Optional[int]:
        if ref is None or (not ref.resolved and not ref.name):
            return None
        if ref.resolved:
            return ref.id
        fields = {
            "name": ref.name,
            "type": (
                CategoryType.INCOME
                if proposal.type == TransactionType.INCOME
                else CategoryType.EXPENSE
            ),
        }
        if ref.emoji:
            fields["emoji"] = ref.emoji
        category = await self._service.create_category(fields, correlation_id=correlation_id)
        created.append(f"category:{category.id}")
        return category.id

    async def commit(
        self,
        proposal: TransactionProposal,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Commit a proposal the user confirmed.

        CRITICAL: This is called ONLY after explicit user confirmation.
        Missing wallets/categories are created in the same unit of work as
        the transaction, so a failed commit leaves nothing behind.

        Raises:
            ValidationError: If the proposal still has blocking issues
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            transaction, created = await self._commit(proposal, correlation_id)
        except Exception as e:
            # Events written inside the unit were rolled back with it
            await self._audit.log_failure(e, "commit_proposal", correlation_id=correlation_id)
            raise

        await self._audit.log_proposal_committed(
            proposal_id=proposal.proposal_id,
            transaction_id=transaction.id,
            created_entities=created,
            correlation_id=correlation_id,
        )
        return transaction

    async def _commit(
        self,
        proposal: TransactionProposal,
        correlation_id: UUID,
    ) -> tuple[Transaction, list[str]]:
        validation = await self._validator.validate(proposal)
        if not validation.can_commit:
            raise ValidationError(
                "Proposal cannot be committed: "
                + "; ".join(i.message for i in validation.issues if i.severity == "error"),
                details={"issues": [issue.model_dump() for issue in validation.issues]},
            )

        created: list[str] = []
        async with self._service.storage.transaction():
            wallet_id = await self._ensure_wallet(
                proposal.wallet, proposal, created, correlation_id
            )
            destination_id = None
            if proposal.type == TransactionType.TRANSFER and proposal.wallet_destination:
                destination_id = await self._ensure_wallet(
                    proposal.wallet_destination, proposal, created, correlation_id
                )
            category_id = await self._ensure_category(
                proposal.category, proposal, created, correlation_id
            )

            transaction = await self._service.create_transaction(
                {
                    "type": proposal.type,
                    "amount": proposal.amount,
                    "currency": proposal.currency,
                    "category_id": category_id,
                    "wallet_id": wallet_id,
                    "wallet_destination_id": destination_id,
                    "description": proposal.description,
                    "ai_generated": True,
                    "raw_input": proposal.raw_text or None,
                },
                correlation_id=correlation_id,
            )

        return transaction, created

    async def reject(
        self,
        proposal: TransactionProposal,
        reason: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Record that the user discarded the proposal."""
        await self._audit.log_proposal_rejected(
            proposal_id=proposal.proposal_id,
            reason=reason,
            correlation_id=correlation_id or create_correlation_id(),
        )

    @audited("review")
    async def review(self, period: Optional[Payload] = None) -> str:
        """Plain-text review of a period, generated only from its figures."""
        report = await self._service.stats(period)
        transactions = await self._service.period_transactions(report)
        return await self._reviewer.review(report, transactions)


def create_app_components(
    db_path: Optional[Union[Path, str]] = None,
    use_agents: bool = True,
) -> tuple[LedgerService, Optional[ProposalFlow]]:
    """
    Factory function to create all application components.

    The returned service is not open yet: use ``async with service`` or
    ``await service.open()``.

    Args:
        db_path: Ledger database; the configured one when omitted
        use_agents: Whether to build the Gemini-backed proposal flow.
                    Set to False to run the ledger without a model.

    Returns:
        (ledger_service, proposal_flow)
    """
    settings = get_settings().app
    storage = SQLiteLedgerStorage(
        db_path or settings.database_file,
        default_currency=settings.default_currency,
    )
    service = LedgerService(storage, audit_logger=AuditLogger(storage), settings=settings)

    proposal_flow = None
    if use_agents:
        try:
            proposal_flow = ProposalFlow(
                service,
                interpreter=InterpretationAgent(default_currency=settings.default_currency),
            )
        except Exception as e:
            # Gemini not configured - the ledger still works without it
            logger.warning("agents_not_configured", error=str(e))

    return service, proposal_flow


@asynccontextmanager
async def open_ledger(
    db_path: Optional[Union[Path, str]] = None,
) -> AsyncIterator[LedgerService]:
    """Open a ledger for the duration of a block, without the model."""
    service, _ = create_app_components(db_path, use_agents=False)
    async with service:
        yield service
