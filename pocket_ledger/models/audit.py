"""
Audit Models for Pocket Ledger

Every mutation of the ledger and every failure is logged for audit purposes.
This provides:
1. Complete traceability of balance changes
2. Debugging information when things go wrong
3. Ability to reconstruct what the user did and when

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from pocket_ledger.models.ledger import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Wallets
    WALLET_CREATED = "wallet_created"
    WALLET_UPDATED = "wallet_updated"
    WALLET_ARCHIVED = "wallet_archived"

    # Categories
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_ARCHIVED = "category_archived"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_DELETED = "transaction_deleted"

    # Proposal flow
    AUDIO_TRANSCRIBED = "audio_transcribed"
    PROPOSAL_INTERPRETED = "proposal_interpreted"
    PROPOSAL_VALIDATION_FAILED = "proposal_validation_failed"
    PROPOSAL_COMMITTED = "proposal_committed"
    PROPOSAL_REJECTED = "proposal_rejected"

    # Consistency checks
    BALANCE_DRIFT_DETECTED = "balance_drift_detected"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    CONSISTENCY_FAILURE = "consistency_failure"
    COLLABORATOR_ERROR = "collaborator_error"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every significant action creates one of these.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'wallet', 'transaction', 'proposal')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one voice entry end to end)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_kind: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(tx, correlation_id)
        event = AuditEventBuilder.failure(error, operation, correlation_id)
    """

    @staticmethod
    def entity_changed(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: int,
        name: str,
        changes: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=str(entity_id),
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} {verb}: {name}",
            details=changes or {},
            is_user_action=True,
        )

    @staticmethod
    def transaction_created(
        transaction_id: int,
        tx_type: str,
        amount: str,
        deltas: dict[int, str],
        ai_generated: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=str(transaction_id),
            correlation_id=correlation_id,
            description=f"Transaction recorded: {tx_type} {amount}",
            details={
                "type": tx_type,
                "amount": amount,
                "balance_deltas": {str(k): v for k, v in deltas.items()},
                "ai_generated": ai_generated,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: int,
        tx_type: str,
        amount: str,
        deltas: dict[int, str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=str(transaction_id),
            correlation_id=correlation_id,
            description=f"Transaction deleted and reversed: {tx_type} {amount}",
            details={
                "type": tx_type,
                "amount": amount,
                "reversed_deltas": {str(k): v for k, v in deltas.items()},
            },
            is_user_action=True,
        )

    @staticmethod
    def audio_transcribed(
        mime_type: str,
        size_bytes: int,
        text_length: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUDIO_TRANSCRIBED,
            entity_type="audio",
            correlation_id=correlation_id,
            description=f"Voice input transcribed ({text_length} characters)",
            details={
                "mime_type": mime_type,
                "size_bytes": size_bytes,
            },
            is_user_action=True,
        )

    @staticmethod
    def proposal_interpreted(
        proposal_id: UUID,
        tx_type: str,
        confidence: float,
        needs_clarification: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROPOSAL_INTERPRETED,
            entity_type="proposal",
            entity_id=str(proposal_id),
            correlation_id=correlation_id,
            description=f"Text interpreted as {tx_type} with {confidence:.0%} confidence",
            details={
                "type": tx_type,
                "confidence": confidence,
                "needs_clarification": needs_clarification,
            },
        )

    @staticmethod
    def proposal_validation_failed(
        proposal_id: UUID,
        issues: list[dict],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROPOSAL_VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="proposal",
            entity_id=str(proposal_id),
            correlation_id=correlation_id,
            description=f"Proposal validation failed with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def proposal_committed(
        proposal_id: UUID,
        transaction_id: int,
        created_entities: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROPOSAL_COMMITTED,
            entity_type="proposal",
            entity_id=str(proposal_id),
            correlation_id=correlation_id,
            description="User confirmed proposal",
            details={
                "transaction_id": transaction_id,
                "created_entities": created_entities,
            },
            is_user_action=True,
        )

    @staticmethod
    def proposal_rejected(
        proposal_id: UUID,
        reason: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROPOSAL_REJECTED,
            entity_type="proposal",
            entity_id=str(proposal_id),
            correlation_id=correlation_id,
            description="User rejected proposal",
            details={"reason": reason or "No reason provided"},
            is_user_action=True,
        )

    @staticmethod
    def balance_drift(
        wallet_id: int,
        stored: str,
        expected: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_DRIFT_DETECTED,
            severity=AuditSeverity.ERROR,
            entity_type="wallet",
            entity_id=str(wallet_id),
            correlation_id=correlation_id,
            description=f"Wallet {wallet_id} balance drift: stored {stored}, expected {expected}",
            details={"stored": stored, "expected": expected},
        )

    @staticmethod
    def failure(
        kind: str,
        operation: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type, severity = {
            "validation": (AuditEventType.VALIDATION_FAILED, AuditSeverity.WARNING),
            "not_found": (AuditEventType.VALIDATION_FAILED, AuditSeverity.WARNING),
            "consistency": (AuditEventType.CONSISTENCY_FAILURE, AuditSeverity.CRITICAL),
            "collaborator": (AuditEventType.COLLABORATOR_ERROR, AuditSeverity.ERROR),
        }.get(kind, (AuditEventType.SYSTEM_ERROR, AuditSeverity.ERROR))
        return AuditEvent(
            event_type=event_type,
            severity=severity,
            description=f"{operation} failed ({kind})",
            error_kind=kind,
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
