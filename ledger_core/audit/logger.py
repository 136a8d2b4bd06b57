"""
Audit Logger

DESIGN DECISION: Every identity transition and every money-moving write
is logged. This provides:
1. Complete traceability of who recorded what
2. A trail for every self-healing action the engine takes
3. The warning trail for summaries left stale by a failed increment

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger_core.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from ledger_core.models.ledger import LedgerTransaction
from ledger_core.services.storage.interface import AUDIT_EVENTS, DocumentRef, DocumentStore


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog for JSON output through the stdlib logging levels.

    Call once at startup; create_engine() does this from AppSettings.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
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


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The auditEvents collection (when a store is given)
    """

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
    ):
        """
        Initialize audit logger.

        Args:
            store: Document store for persistence.
                   If None, only logs locally.
        """
        self._store = store
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to the store if available.

        Returns True if the store write succeeded (or no store configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._store:
            try:
                await self._store.set(
                    DocumentRef(AUDIT_EVENTS, str(event.event_id)),
                    event.to_document(),
                )
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    async def log_admin_bootstrapped(
        self,
        admin_id: str,
        ledger_id: str,
        created_admin: bool,
        created_ledger: bool,
    ) -> None:
        """Log creation of a missing admin and/or ledger."""
        await self.log(AuditEventBuilder.admin_bootstrapped(
            admin_id=admin_id,
            ledger_id=ledger_id,
            created_admin=created_admin,
            created_ledger=created_ledger,
        ))

    async def log_session_resolved(self, role: str, uid: str, ledger_id: str) -> None:
        await self.log(AuditEventBuilder.session_resolved(role=role, uid=uid, ledger_id=ledger_id))

    async def log_session_unregistered(self, phone_normalized: str) -> None:
        """Only the last four digits are recorded."""
        await self.log(AuditEventBuilder.session_unregistered(phone_suffix=phone_normalized[-4:]))

    async def log_phone_mapping_rebuilt(self, recipient_id: str, ledger_id: str) -> None:
        await self.log(AuditEventBuilder.phone_mapping_rebuilt(recipient_id, ledger_id))

    async def log_phone_mapping_stale(self, recipient_id: str, ledger_id: str) -> None:
        await self.log(AuditEventBuilder.phone_mapping_stale(recipient_id, ledger_id))

    async def log_phone_mapping_inconsistent(
        self,
        recipient_id: str,
        mapping_ledger_id: str,
        recipient_ledger_id: str,
    ) -> None:
        await self.log(AuditEventBuilder.phone_mapping_inconsistent(
            recipient_id=recipient_id,
            mapping_ledger_id=mapping_ledger_id,
            recipient_ledger_id=recipient_ledger_id,
        ))

    async def log_recipient_joined(self, recipient_id: str, ledger_id: str, via: str) -> None:
        await self.log(AuditEventBuilder.recipient_joined(recipient_id, ledger_id, via))

    async def log_access_code_redeemed(self, code: str, recipient_id: str, ledger_id: str) -> None:
        await self.log(AuditEventBuilder.access_code_redeemed(code, recipient_id, ledger_id))

    # -------------------------------------------------------------------------
    # Recipient lifecycle
    # -------------------------------------------------------------------------

    async def log_recipient_created(self, recipient_id: str, ledger_id: str, bound_to: str) -> None:
        await self.log(AuditEventBuilder.recipient_created(recipient_id, ledger_id, bound_to))

    async def log_recipient_deletion_started(
        self,
        recipient_id: str,
        ledger_id: str,
        resumed: bool,
    ) -> None:
        await self.log(AuditEventBuilder.recipient_deletion_started(recipient_id, ledger_id, resumed))

    async def log_recipient_deleted(
        self,
        recipient_id: str,
        ledger_id: str,
        transactions_deleted: int,
        batches: int,
    ) -> None:
        await self.log(AuditEventBuilder.recipient_deleted(
            recipient_id=recipient_id,
            ledger_id=ledger_id,
            transactions_deleted=transactions_deleted,
            batches=batches,
        ))

    # -------------------------------------------------------------------------
    # Transactions and aggregates
    # -------------------------------------------------------------------------

    async def log_transaction_created(
        self,
        txn: LedgerTransaction,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transaction write."""
        await self.log(AuditEventBuilder.transaction_created(
            txn_id=txn.txn_id,
            ledger_id=txn.ledger_id,
            recipient_id=txn.recipient_id,
            direction=txn.direction.value,
            amount_cents=txn.amount_cents,
            created_by_uid=txn.created_by_uid,
            correlation_id=correlation_id,
        ))

    async def log_transaction_deleted(
        self,
        txn: LedgerTransaction,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(
            txn_id=txn.txn_id,
            ledger_id=txn.ledger_id,
            recipient_id=txn.recipient_id,
            correlation_id=correlation_id,
        ))

    async def log_aggregate_update_failed(
        self,
        recipient_id: str,
        ledger_id: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a summary left stale. The transaction itself stands."""
        await self.log(AuditEventBuilder.aggregate_update_failed(
            recipient_id=recipient_id,
            ledger_id=ledger_id,
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_aggregate_recomputed(
        self,
        recipient_id: str,
        ledger_id: str,
        net_cents: Optional[int],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.aggregate_recomputed(
            recipient_id=recipient_id,
            ledger_id=ledger_id,
            net_cents=net_cents,
            correlation_id=correlation_id,
        ))

    async def log_ledger_reconciled(
        self,
        ledger_id: str,
        recipients_checked: int,
        corrections: int,
    ) -> None:
        await self.log(AuditEventBuilder.ledger_reconciled(ledger_id, recipients_checked, corrections))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., recording a payment).
    Pass it through all subsequent operations.
    """
    return uuid4()
