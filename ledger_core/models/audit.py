"""
Audit Models for Ledger Core

Every identity transition and every money-moving write is logged.
This provides:
1. Complete traceability of who recorded what
2. Debugging information when aggregates drift
3. A record of self-healing actions (rebuilt or stale phone mappings)

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ledger_core.models.ledger import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Identity
    ADMIN_BOOTSTRAPPED = "admin_bootstrapped"
    SESSION_RESOLVED = "session_resolved"
    SESSION_UNREGISTERED = "session_unregistered"
    PHONE_MAPPING_REBUILT = "phone_mapping_rebuilt"
    PHONE_MAPPING_STALE = "phone_mapping_stale"
    PHONE_MAPPING_INCONSISTENT = "phone_mapping_inconsistent"
    RECIPIENT_JOINED = "recipient_joined"
    ACCESS_CODE_REDEEMED = "access_code_redeemed"

    # Recipient lifecycle
    RECIPIENT_CREATED = "recipient_created"
    RECIPIENT_DELETION_STARTED = "recipient_deletion_started"
    RECIPIENT_DELETED = "recipient_deleted"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_DELETED = "transaction_deleted"

    # Aggregates
    AGGREGATE_UPDATE_FAILED = "aggregate_update_failed"
    AGGREGATE_RECOMPUTED = "aggregate_recomputed"
    LEDGER_RECONCILED = "ledger_reconciled"

    # System events
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

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'recipient', 'transaction', 'ledger')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    ledger_id: Optional[str] = Field(
        default=None,
        description="Ledger the event belongs to, when there is one"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., a create and its summary update)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

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
            "ledger_id": self.ledger_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_document(self) -> dict:
        """
        Convert to a document for the auditEvents collection.

        Keys are camelCase like every other stored document.
        """
        return {
            "eventId": str(self.event_id),
            "timestamp": self.timestamp,
            "eventType": self.event_type.value,
            "severity": self.severity.value,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "ledgerId": self.ledger_id,
            "correlationId": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "errorCode": self.error_code,
            "errorMessage": self.error_message,
            "isUserAction": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(txn_id, ledger_id, ...)
        event = AuditEventBuilder.recipient_joined(recipient_id, ledger_id)
    """

    @staticmethod
    def admin_bootstrapped(
        admin_id: str,
        ledger_id: str,
        created_admin: bool,
        created_ledger: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ADMIN_BOOTSTRAPPED,
            entity_type="admin",
            entity_id=admin_id,
            ledger_id=ledger_id,
            description="Admin identity bootstrapped from whitelist",
            details={
                "created_admin": created_admin,
                "created_ledger": created_ledger,
            },
        )

    @staticmethod
    def session_resolved(
        role: str,
        uid: str,
        ledger_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_RESOLVED,
            entity_type="session",
            entity_id=uid,
            ledger_id=ledger_id,
            description=f"Session resolved as {role}",
            details={"role": role},
            is_user_action=True,
        )

    @staticmethod
    def session_unregistered(phone_suffix: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_UNREGISTERED,
            entity_type="session",
            description="Login attempted with an unregistered phone",
            details={"phone_suffix": phone_suffix},
            is_user_action=True,
        )

    @staticmethod
    def phone_mapping_rebuilt(
        recipient_id: str,
        ledger_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PHONE_MAPPING_REBUILT,
            severity=AuditSeverity.WARNING,
            entity_type="recipient",
            entity_id=recipient_id,
            ledger_id=ledger_id,
            description="Missing phone mapping rebuilt from recipient record",
        )

    @staticmethod
    def phone_mapping_stale(
        recipient_id: str,
        ledger_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PHONE_MAPPING_STALE,
            severity=AuditSeverity.WARNING,
            entity_type="recipient",
            entity_id=recipient_id,
            ledger_id=ledger_id,
            description="Phone mapping pointed at a missing recipient and was removed",
        )

    @staticmethod
    def phone_mapping_inconsistent(
        recipient_id: str,
        mapping_ledger_id: str,
        recipient_ledger_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PHONE_MAPPING_INCONSISTENT,
            severity=AuditSeverity.ERROR,
            entity_type="recipient",
            entity_id=recipient_id,
            ledger_id=mapping_ledger_id,
            description="Phone mapping ledger differs from recipient ledger; login refused",
            details={
                "mapping_ledger_id": mapping_ledger_id,
                "recipient_ledger_id": recipient_ledger_id,
            },
        )

    @staticmethod
    def recipient_joined(
        recipient_id: str,
        ledger_id: str,
        via: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECIPIENT_JOINED,
            entity_type="recipient",
            entity_id=recipient_id,
            ledger_id=ledger_id,
            description=f"Recipient joined via {via}",
            details={"via": via},
            is_user_action=True,
        )

    @staticmethod
    def access_code_redeemed(
        code: str,
        recipient_id: str,
        ledger_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCESS_CODE_REDEEMED,
            entity_type="access_code",
            entity_id=code,
            ledger_id=ledger_id,
            description="Access code redeemed",
            details={"recipient_id": recipient_id},
            is_user_action=True,
        )

    @staticmethod
    def recipient_created(
        recipient_id: str,
        ledger_id: str,
        bound_to: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECIPIENT_CREATED,
            entity_type="recipient",
            entity_id=recipient_id,
            ledger_id=ledger_id,
            description=f"Recipient created (bound to {bound_to})",
            details={"bound_to": bound_to},
            is_user_action=True,
        )

    @staticmethod
    def recipient_deletion_started(
        recipient_id: str,
        ledger_id: str,
        resumed: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECIPIENT_DELETION_STARTED,
            severity=AuditSeverity.WARNING if resumed else AuditSeverity.INFO,
            entity_type="recipient",
            entity_id=recipient_id,
            ledger_id=ledger_id,
            description="Resuming recipient cascade delete" if resumed else "Recipient cascade delete started",
            details={"resumed": resumed},
            is_user_action=True,
        )

    @staticmethod
    def recipient_deleted(
        recipient_id: str,
        ledger_id: str,
        transactions_deleted: int,
        batches: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECIPIENT_DELETED,
            entity_type="recipient",
            entity_id=recipient_id,
            ledger_id=ledger_id,
            description=f"Recipient deleted with {transactions_deleted} transactions",
            details={
                "transactions_deleted": transactions_deleted,
                "batches": batches,
            },
        )

    @staticmethod
    def transaction_created(
        txn_id: str,
        ledger_id: str,
        recipient_id: str,
        direction: str,
        amount_cents: int,
        created_by_uid: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=txn_id,
            ledger_id=ledger_id,
            correlation_id=correlation_id,
            description=f"Transaction recorded: {direction} {amount_cents} cents",
            details={
                "recipient_id": recipient_id,
                "direction": direction,
                "amount_cents": amount_cents,
                "created_by_uid": created_by_uid,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        txn_id: str,
        ledger_id: str,
        recipient_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=txn_id,
            ledger_id=ledger_id,
            correlation_id=correlation_id,
            description="Transaction hard-deleted",
            details={"recipient_id": recipient_id},
            is_user_action=True,
        )

    @staticmethod
    def aggregate_update_failed(
        recipient_id: str,
        ledger_id: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AGGREGATE_UPDATE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="recipient_summary",
            entity_id=recipient_id,
            ledger_id=ledger_id,
            correlation_id=correlation_id,
            description=f"Summary {operation} failed; summary left stale until next recompute",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def aggregate_recomputed(
        recipient_id: str,
        ledger_id: str,
        net_cents: Optional[int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AGGREGATE_RECOMPUTED,
            entity_type="recipient_summary",
            entity_id=recipient_id,
            ledger_id=ledger_id,
            correlation_id=correlation_id,
            description="Summary recomputed from transactions",
            details={"net_cents": net_cents, "removed": net_cents is None},
        )

    @staticmethod
    def ledger_reconciled(
        ledger_id: str,
        recipients_checked: int,
        corrections: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_RECONCILED,
            severity=AuditSeverity.WARNING if corrections else AuditSeverity.INFO,
            entity_type="ledger",
            entity_id=ledger_id,
            ledger_id=ledger_id,
            description=f"Ledger reconciled: {corrections} of {recipients_checked} summaries corrected",
            details={
                "recipients_checked": recipients_checked,
                "corrections": corrections,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
