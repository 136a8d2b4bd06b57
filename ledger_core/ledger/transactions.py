"""
Transaction Store

Creates and hard-deletes immutable transaction records.

CRITICAL: create() reads the recipient and writes the transaction in one
atomic unit. A transaction is never written against a recipient that is
missing, being deleted, or owned by another ledger.

Summaries are NOT touched here. The caller applies the delta afterwards
(see AggregateMaintainer.apply_delta).
"""

from datetime import date, datetime, time, timezone
from typing import Any, Optional, Union

import structlog
from pydantic import ValidationError

from ledger_core.errors import InvalidArgumentError, LedgerMismatchError, NotFoundError
from ledger_core.models.ledger import (
    Direction,
    GeneratedId,
    LedgerTransaction,
    Recipient,
    utc_now,
)
from ledger_core.services.storage.interface import (
    RECIPIENTS,
    SERVER_TIMESTAMP,
    TRANSACTIONS,
    DocumentRef,
    DocumentStore,
    StoreTransaction,
)
from ledger_core.validation.amounts import require_positive_cents, require_text

logger = structlog.get_logger(__name__)

DateLike = Union[date, datetime]


def parse_direction(direction: Union[Direction, str]) -> Direction:
    try:
        return Direction(direction)
    except ValueError:
        raise InvalidArgumentError(f"Direction must be SENT or RECEIVED, got {direction!r}")


def _day_start(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        value = value.astimezone(timezone.utc).date() if value.tzinfo else value.date()
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _day_end(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        value = value.astimezone(timezone.utc).date() if value.tzinfo else value.date()
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


async def load_transactions(
    store: DocumentStore,
    filters: dict[str, Any],
) -> list[LedgerTransaction]:
    """Read every transaction matching filters, ordered by (txn_at, txn_id)."""
    docs = await store.query(TRANSACTIONS, filters)
    transactions = [
        LedgerTransaction.from_document({"txnId": doc.id, **doc.data})
        for doc in docs
    ]
    transactions.sort(key=lambda t: (t.txn_at, t.txn_id))
    return transactions


class TransactionStore:
    """Atomic create and hard delete of ledger transactions."""

    def __init__(
        self,
        store: DocumentStore,
        fallback_recipient_name: str = "Recipient",
    ):
        self._store = store
        self._fallback_name = fallback_recipient_name

    async def create(
        self,
        ledger_id: str,
        recipient_id: str,
        direction: Union[Direction, str],
        amount_cents: int,
        created_by_uid: str,
        txn_at: Optional[datetime] = None,
        recipient_name_snapshot: Optional[str] = None,
        note: Optional[str] = None,
    ) -> LedgerTransaction:
        """
        Write one transaction after checking its recipient.

        Args:
            ledger_id: Ledger the transaction belongs to
            recipient_id: Counterparty; must belong to ledger_id
            direction: SENT or RECEIVED
            amount_cents: Positive integer minor units
            created_by_uid: Uid of the admin recording it
            txn_at: Business date; defaults to now
            recipient_name_snapshot: Name to freeze on the record;
                defaults to the recipient's current name
            note: Optional free text

        Returns:
            The written transaction (created_at is assigned by the store)

        Raises:
            InvalidArgumentError: Before any I/O, on bad input
            NotFoundError: Recipient is absent or being deleted
            LedgerMismatchError: Recipient belongs to another ledger
        """
        ledger_id = require_text(ledger_id, "Ledger id")
        recipient_id = require_text(recipient_id, "Recipient id")
        created_by_uid = require_text(created_by_uid, "Creator uid")
        amount_cents = require_positive_cents(amount_cents)
        direction = parse_direction(direction)
        snapshot = recipient_name_snapshot.strip() if recipient_name_snapshot else None
        note = note.strip() if note and note.strip() else None

        try:
            draft = LedgerTransaction(
                txn_id=GeneratedId().value,
                ledger_id=ledger_id,
                recipient_id=recipient_id,
                direction=direction,
                amount_cents=amount_cents,
                note=note,
                txn_at=txn_at or utc_now(),
                created_by_uid=created_by_uid,
                recipient_name_snapshot=snapshot or self._fallback_name,
            )
        except ValidationError as e:
            raise InvalidArgumentError(str(e)) from e

        recipient_ref = DocumentRef(RECIPIENTS, recipient_id)
        txn_ref = DocumentRef(TRANSACTIONS, draft.txn_id)

        async def _write(txn: StoreTransaction) -> LedgerTransaction:
            data = await txn.get(recipient_ref)
            if data is None:
                raise NotFoundError("Recipient not found.")
            recipient = Recipient.from_document({"recipientId": recipient_id, **data})
            if recipient.deleting:
                raise NotFoundError("Recipient is being deleted.")
            if recipient.ledger_id != ledger_id:
                raise LedgerMismatchError("Recipient does not belong to this ledger.")

            record = draft
            if snapshot is None:
                record = draft.model_copy(update={
                    "recipient_name_snapshot": recipient.recipient_name or self._fallback_name,
                })
            txn.create(txn_ref, {**record.to_document(), "createdAt": SERVER_TIMESTAMP})
            return record

        record = await self._store.run_transaction(_write)
        logger.info(
            "transaction_written",
            txn_id=record.txn_id,
            ledger_id=ledger_id,
            recipient_id=recipient_id,
            direction=direction.value,
            amount_cents=amount_cents,
        )
        return record

    async def delete(self, txn_id: str) -> LedgerTransaction:
        """
        Hard-delete a transaction. Returns the record as it was.

        Raises:
            NotFoundError: If no such transaction exists
        """
        txn_id = require_text(txn_id, "Transaction id")
        ref = DocumentRef(TRANSACTIONS, txn_id)

        async def _delete(txn: StoreTransaction) -> LedgerTransaction:
            data = await txn.get(ref)
            if data is None:
                raise NotFoundError("Transaction not found.")
            txn.delete(ref)
            return LedgerTransaction.from_document({"txnId": txn_id, **data})

        record = await self._store.run_transaction(_delete)
        logger.info("transaction_deleted", txn_id=txn_id, ledger_id=record.ledger_id)
        return record

    async def get(self, txn_id: str) -> Optional[LedgerTransaction]:
        data = await self._store.get(DocumentRef(TRANSACTIONS, require_text(txn_id, "Transaction id")))
        if data is None:
            return None
        return LedgerTransaction.from_document({"txnId": txn_id, **data})

    async def list_transactions(
        self,
        ledger_id: str,
        recipient_id: Optional[str] = None,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
    ) -> list[LedgerTransaction]:
        """
        Statement feed: transactions ordered by (txn_at, txn_id).

        Bounds are whole UTC days. start includes its whole day, end
        includes its whole day and defaults to today. Without start,
        everything up to end is returned.
        """
        filters: dict[str, Any] = {"ledgerId": require_text(ledger_id, "Ledger id")}
        if recipient_id is not None:
            filters["recipientId"] = require_text(recipient_id, "Recipient id")

        upper = _day_end(end if end is not None else utc_now())
        lower = _day_start(start) if start is not None else None
        if lower is not None and lower > upper:
            raise InvalidArgumentError("Start date must not be after end date.")

        transactions = await load_transactions(self._store, filters)
        return [
            t for t in transactions
            if t.txn_at <= upper and (lower is None or t.txn_at >= lower)
        ]
