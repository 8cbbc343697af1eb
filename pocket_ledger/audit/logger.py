"""
Audit Logger

DESIGN DECISION: Every ledger mutation and every failure is logged.
This provides:
1. Traceability of each balance change back to a user action
2. Debugging capability when a balance looks wrong
3. A persistent history next to the ledger itself

The audit logger:
- Is async so it composes with the store
- Never breaks the main flow: a failed audit write is logged, not raised
- Supports correlation IDs to trace related events
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from pocket_ledger.errors import LedgerError
from pocket_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from pocket_ledger.models.ledger import Transaction
from pocket_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def _format_deltas(deltas: dict[int, Decimal]) -> dict[int, str]:
    return {wallet_id: str(delta) for wallet_id, delta in deltas.items()}


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (JSON through structlog)
    2. The audit table of the ledger store, when one is given
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger("pocket_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_entity_changed(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: int,
        name: str,
        changes: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a wallet or category create/update/archive."""
        event = AuditEventBuilder.entity_changed(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            name=name,
            changes=changes,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_created(
        self,
        transaction: Transaction,
        deltas: dict[int, Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.transaction_created(
            transaction_id=transaction.id,
            tx_type=transaction.type.value,
            amount=str(transaction.amount),
            deltas=_format_deltas(deltas),
            ai_generated=transaction.ai_generated,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_deleted(
        self,
        transaction: Transaction,
        deltas: dict[int, Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.transaction_deleted(
            transaction_id=transaction.id,
            tx_type=transaction.type.value,
            amount=str(transaction.amount),
            deltas=_format_deltas(deltas),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_audio_transcribed(
        self,
        mime_type: str,
        size_bytes: int,
        text_length: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.audio_transcribed(
            mime_type=mime_type,
            size_bytes=size_bytes,
            text_length=text_length,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_proposal_interpreted(
        self,
        proposal_id: UUID,
        tx_type: str,
        confidence: float,
        needs_clarification: bool,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.proposal_interpreted(
            proposal_id=proposal_id,
            tx_type=tx_type,
            confidence=confidence,
            needs_clarification=needs_clarification,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_proposal_validation_failed(
        self,
        proposal_id: UUID,
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.proposal_validation_failed(
            proposal_id=proposal_id,
            issues=issues,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_proposal_committed(
        self,
        proposal_id: UUID,
        transaction_id: int,
        created_entities: list[str],
        correlation_id: UUID,
    ) -> None:
        """Log user confirmation of an interpreted transaction."""
        event = AuditEventBuilder.proposal_committed(
            proposal_id=proposal_id,
            transaction_id=transaction_id,
            created_entities=created_entities,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_proposal_rejected(
        self,
        proposal_id: UUID,
        reason: Optional[str],
        correlation_id: UUID,
    ) -> None:
        """Log user rejection."""
        event = AuditEventBuilder.proposal_rejected(
            proposal_id=proposal_id,
            reason=reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_balance_drift(
        self,
        wallet_id: int,
        stored: Decimal,
        expected: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.balance_drift(
            wallet_id=wallet_id,
            stored=str(stored),
            expected=str(expected),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_failure(
        self,
        error: Exception,
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failed operation with the kind of the error that ended it."""
        if isinstance(error, LedgerError):
            kind, message, details = error.kind, error.message, error.details
        else:
            kind, message, details = "system", str(error), {"type": type(error).__name__}

        event = AuditEventBuilder.failure(
            kind=kind,
            operation=operation,
            error_message=message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., one voice entry).
    Pass it through all subsequent operations.
    """
    return uuid4()
