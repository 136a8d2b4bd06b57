"""
Main Orchestrator for Ledger Core

This module ties together the engine components and defines the
consumer-facing operations:
1. Session resolution (phone or access code -> session)
2. Transaction create / delete with summary maintenance
3. Recipient create / cascade delete
4. Summary reads, statement feed and reconciliation

DESIGN DECISION: The orchestrator enforces the create -> apply_delta
contract:
- The transaction write is atomic with the recipient check
- apply_delta runs once afterwards and is never retried
- A failed apply_delta is a warning, not an error: the transaction stands
  and the next recompute (any delete, or reconcile_ledger) converges the
  summaries
- If the recipient was cascade-deleted while apply_delta ran, the late
  increments are undone before returning

Every step is audited.
"""

from datetime import date, datetime
from typing import Iterable, Optional, Union
from uuid import UUID

import structlog

from ledger_core.audit import AuditLogger, configure_logging, create_correlation_id
from ledger_core.config import Settings, get_settings
from ledger_core.errors import AggregateUpdateFailedError, StorageError
from ledger_core.ledger import (
    AggregateMaintainer,
    IdentityDirectory,
    RecipientLifecycle,
    TransactionStore,
)
from ledger_core.models.ledger import (
    AdminWhitelistEntry,
    CascadeReport,
    Direction,
    LedgerSummary,
    LedgerTransaction,
    ReconciliationReport,
    Recipient,
    RecipientSession,
    RecipientSummary,
    Session,
)
from ledger_core.services.storage.firestore import FirestoreDocumentStore
from ledger_core.services.storage.interface import DocumentStore

logger = structlog.get_logger(__name__)


class LedgerEngine:
    """
    Facade over the engine components.

    Components are public attributes so callers needing finer control
    (e.g. a recompute of a single recipient) can reach them directly.
    """

    def __init__(
        self,
        store: DocumentStore,
        admin_whitelist: Iterable[AdminWhitelistEntry] = (),
        audit_logger: Optional[AuditLogger] = None,
        delete_batch_size: int = 400,
        access_code_length: int = 8,
        fallback_recipient_name: str = "Recipient",
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()

        self.identity = IdentityDirectory(store, admin_whitelist, audit_logger=self._audit)
        self.transactions = TransactionStore(store, fallback_recipient_name=fallback_recipient_name)
        self.aggregates = AggregateMaintainer(store, audit_logger=self._audit)
        self.recipients = RecipientLifecycle(
            store,
            self.aggregates,
            admin_phones=self.identity.admin_phones,
            batch_size=delete_batch_size,
            access_code_length=access_code_length,
            audit_logger=self._audit,
        )

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    async def resolve_session(self, phone: str) -> Optional[Session]:
        """Resolve a phone to a session; None means not registered."""
        return await self.identity.resolve(phone)

    async def redeem_access_code(self, code: str, joined_name: str) -> RecipientSession:
        return await self.identity.redeem_access_code(code, joined_name)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def create_transaction(
        self,
        ledger_id: str,
        recipient_id: str,
        direction: Union[Direction, str],
        amount_cents: int,
        created_by_uid: str,
        txn_at: Optional[datetime] = None,
        recipient_name_snapshot: Optional[str] = None,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """
        Record a transaction and update the summaries.

        Returns:
            The new transaction id

        Raises:
            InvalidArgumentError, NotFoundError, LedgerMismatchError:
                Nothing was written
            StorageError: The transaction write itself failed
        """
        correlation_id = correlation_id or create_correlation_id()

        record = await self.transactions.create(
            ledger_id=ledger_id,
            recipient_id=recipient_id,
            direction=direction,
            amount_cents=amount_cents,
            created_by_uid=created_by_uid,
            txn_at=txn_at,
            recipient_name_snapshot=recipient_name_snapshot,
            note=note,
        )
        await self._audit.log_transaction_created(record, correlation_id=correlation_id)

        # At most once; a retry would double-count whatever already landed
        try:
            await self.aggregates.apply_delta(
                recipient_id=record.recipient_id,
                ledger_id=record.ledger_id,
                direction=record.direction,
                amount_cents=record.amount_cents,
                txn_at=record.txn_at,
            )
        except AggregateUpdateFailedError as e:
            logger.warning(
                "aggregate_update_failed",
                txn_id=record.txn_id,
                recipient_id=record.recipient_id,
                error=str(e),
            )
            await self._audit.log_aggregate_update_failed(
                recipient_id=record.recipient_id,
                ledger_id=record.ledger_id,
                operation="apply_delta",
                error_message=str(e),
                correlation_id=correlation_id,
            )

        await self._settle_if_recipient_deleted(record, correlation_id)
        return record.txn_id

    async def _settle_if_recipient_deleted(
        self,
        record: LedgerTransaction,
        correlation_id: UUID,
    ) -> None:
        """Undo increments that landed after a cascade delete of the recipient."""
        try:
            recipient = await self.recipients.get_recipient(record.recipient_id)
            if recipient is not None and not recipient.deleting:
                return
            logger.warning(
                "late_delta_discarded",
                txn_id=record.txn_id,
                recipient_id=record.recipient_id,
            )
            await self.aggregates.discard_recipient(record.recipient_id, record.ledger_id)
        except StorageError as e:
            logger.warning(
                "aggregate_recompute_failed",
                txn_id=record.txn_id,
                recipient_id=record.recipient_id,
                error=str(e),
            )
            await self._audit.log_aggregate_update_failed(
                recipient_id=record.recipient_id,
                ledger_id=record.ledger_id,
                operation="discard_recipient",
                error_message=str(e),
                correlation_id=correlation_id,
            )

    async def delete_transaction(
        self,
        txn_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerTransaction:
        """
        Hard-delete a transaction, then recompute both summaries.

        Returns the deleted record. A failed recompute is logged as a
        warning; the delete itself stands.

        Raises:
            NotFoundError: If the transaction does not exist
        """
        correlation_id = correlation_id or create_correlation_id()

        record = await self.transactions.delete(txn_id)
        await self._audit.log_transaction_deleted(record, correlation_id=correlation_id)

        try:
            await self.aggregates.recompute(record.recipient_id, record.ledger_id)
        except StorageError as e:
            logger.warning(
                "aggregate_recompute_failed",
                txn_id=record.txn_id,
                recipient_id=record.recipient_id,
                error=str(e),
            )
            await self._audit.log_aggregate_update_failed(
                recipient_id=record.recipient_id,
                ledger_id=record.ledger_id,
                operation="recompute",
                error_message=str(e),
                correlation_id=correlation_id,
            )

        return record

    async def list_transactions(
        self,
        ledger_id: str,
        recipient_id: Optional[str] = None,
        start: Optional[Union[date, datetime]] = None,
        end: Optional[Union[date, datetime]] = None,
    ) -> list[LedgerTransaction]:
        """Transactions for a statement, ordered by (txn_at, txn_id)."""
        return await self.transactions.list_transactions(
            ledger_id, recipient_id=recipient_id, start=start, end=end
        )

    # -------------------------------------------------------------------------
    # Recipients
    # -------------------------------------------------------------------------

    async def create_recipient(
        self,
        ledger_id: str,
        recipient_name: str,
        phone_number: str,
    ) -> str:
        """Create a phone-bound recipient. Returns its id."""
        recipient = await self.recipients.create_with_phone(ledger_id, recipient_name, phone_number)
        return recipient.recipient_id

    async def create_recipient_with_access_code(
        self,
        ledger_id: str,
        recipient_name: str,
    ) -> tuple[str, str]:
        """Create a code-bound recipient. Returns (recipient_id, access_code)."""
        recipient = await self.recipients.create_with_access_code(ledger_id, recipient_name)
        return recipient.recipient_id, recipient.access_code

    async def list_recipients(self, ledger_id: str) -> list[Recipient]:
        return await self.recipients.list_recipients(ledger_id)

    async def delete_recipient(self, recipient_id: str) -> CascadeReport:
        """Cascade-delete a recipient. Safe to repeat after a partial failure."""
        return await self.recipients.delete_recipient(recipient_id)

    async def resume_pending_deletions(self, ledger_id: str) -> list[CascadeReport]:
        return await self.recipients.resume_pending_deletions(ledger_id)

    # -------------------------------------------------------------------------
    # Summaries
    # -------------------------------------------------------------------------

    async def get_recipient_summary(self, recipient_id: str) -> Optional[RecipientSummary]:
        return await self.aggregates.get_recipient_summary(recipient_id)

    async def get_ledger_summary(self, ledger_id: str) -> Optional[LedgerSummary]:
        return await self.aggregates.get_ledger_summary(ledger_id)

    async def list_recipient_summaries(self, ledger_id: str) -> list[RecipientSummary]:
        return await self.aggregates.list_recipient_summaries(ledger_id)

    async def reconcile_ledger(self, ledger_id: str) -> ReconciliationReport:
        """
        Recompute every summary in a ledger.

        The engine never schedules this itself; run it periodically from
        an external scheduler.
        """
        report = await self.aggregates.reconcile_ledger(ledger_id)
        if report.drift_found:
            logger.warning(
                "ledger_drift_corrected",
                ledger_id=ledger_id,
                corrections=len(report.corrections),
            )
        return report

    async def close(self) -> None:
        await self._store.close()


def create_engine(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
) -> LedgerEngine:
    """
    Factory function to create a fully wired engine.

    Args:
        settings: Defaults to get_settings()
        store: Document store to use. Defaults to Firestore built from
               FirestoreSettings. Pass InMemoryDocumentStore for local runs.

    Returns:
        LedgerEngine, with audit events persisted to the same store
    """
    settings = settings or get_settings()
    ledger_settings = settings.ledger

    configure_logging(settings.app.log_level)

    if store is None:
        store = FirestoreDocumentStore.from_settings(
            settings.firestore,
            timeout_seconds=ledger_settings.store_timeout_seconds,
        )

    return LedgerEngine(
        store=store,
        admin_whitelist=ledger_settings.admin_whitelist,
        audit_logger=AuditLogger(store),
        delete_batch_size=ledger_settings.delete_batch_size,
        access_code_length=ledger_settings.access_code_length,
        fallback_recipient_name=ledger_settings.fallback_recipient_name,
    )
