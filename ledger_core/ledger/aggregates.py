"""
Aggregate Maintainer

Keeps RecipientSummary and LedgerSummary in step with the transactions.

DESIGN DECISION: The two update paths are deliberately asymmetric.

apply_delta (after a create):
- Atomic increments on both summaries plus a max-merge of lastTxnAt
- Runs outside the unit that wrote the transaction
- NOT idempotent: call it at most once per create, never retry it

recompute (after a delete, and from reconcile_ledger):
- Re-reads every existing transaction and overwrites the summary
- Deletes the summary when no transactions remain
- Idempotent; the only path treated as authoritative
"""

import asyncio
from datetime import datetime, timezone
from typing import Iterable, Optional, Union

import structlog

from ledger_core.audit import AuditLogger
from ledger_core.errors import AggregateUpdateFailedError
from ledger_core.ledger.transactions import load_transactions, parse_direction
from ledger_core.models.ledger import (
    Direction,
    LedgerSummary,
    LedgerTransaction,
    ReconciliationReport,
    RecipientSummary,
    SummaryCorrection,
    TransactionTotals,
    as_utc,
)
from ledger_core.services.storage.interface import (
    LEDGER_SUMMARIES,
    RECIPIENT_SUMMARIES,
    SERVER_TIMESTAMP,
    DocumentRef,
    DocumentStore,
)

logger = structlog.get_logger(__name__)

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def summarize_transactions(transactions: Iterable[LedgerTransaction]) -> TransactionTotals:
    """Totals over raw transactions."""
    totals = TransactionTotals()
    for txn in transactions:
        totals.add(txn)
    return totals


def summarize_by_recipient(
    transactions: Iterable[LedgerTransaction],
) -> dict[str, TransactionTotals]:
    """Totals over raw transactions, per recipient id."""
    totals: dict[str, TransactionTotals] = {}
    for txn in transactions:
        totals.setdefault(txn.recipient_id, TransactionTotals()).add(txn)
    return totals


def _totals_differ(stored: Optional[dict], totals: TransactionTotals) -> bool:
    if stored is None:
        return totals.count > 0
    if totals.count == 0:
        return True
    return (
        stored.get("totalSentCents", 0) != totals.total_sent_cents
        or stored.get("totalReceivedCents", 0) != totals.total_received_cents
        or stored.get("netCents", 0) != totals.net_cents
    )


class AggregateMaintainer:
    """Incremental and authoritative maintenance of the derived summaries."""

    def __init__(
        self,
        store: DocumentStore,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()

    # -------------------------------------------------------------------------
    # Incremental path
    # -------------------------------------------------------------------------

    async def apply_delta(
        self,
        recipient_id: str,
        ledger_id: str,
        direction: Union[Direction, str],
        amount_cents: int,
        txn_at: datetime,
    ) -> None:
        """
        Add one new transaction to both summaries.

        Raises:
            AggregateUpdateFailedError: If either increment failed. The other
                may have landed; recompute converges both.
        """
        direction = parse_direction(direction)
        sent = amount_cents if direction == Direction.SENT else 0
        received = amount_cents if direction == Direction.RECEIVED else 0
        deltas = {
            "totalSentCents": sent,
            "totalReceivedCents": received,
            "netCents": sent - received,
        }
        latest = {"lastTxnAt": as_utc(txn_at)}

        results = await asyncio.gather(
            self._store.increment(
                DocumentRef(RECIPIENT_SUMMARIES, recipient_id),
                deltas,
                fields={"recipientId": recipient_id, "ledgerId": ledger_id},
                max_fields=latest,
            ),
            self._store.increment(
                DocumentRef(LEDGER_SUMMARIES, ledger_id),
                deltas,
                fields={"ledgerId": ledger_id},
                max_fields=latest,
            ),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            raise AggregateUpdateFailedError(
                f"Summary increment failed for recipient {recipient_id}: {failures[0]}"
            ) from failures[0]

    # -------------------------------------------------------------------------
    # Authoritative path
    # -------------------------------------------------------------------------

    async def _write_recipient_summary(
        self,
        recipient_id: str,
        ledger_id: str,
        totals: TransactionTotals,
    ) -> Optional[RecipientSummary]:
        ref = DocumentRef(RECIPIENT_SUMMARIES, recipient_id)
        if totals.count == 0:
            await self._store.delete(ref)
            return None

        summary = RecipientSummary(
            recipient_id=recipient_id,
            ledger_id=ledger_id,
            total_sent_cents=totals.total_sent_cents,
            total_received_cents=totals.total_received_cents,
            net_cents=totals.net_cents,
            last_txn_at=totals.last_txn_at,
        )
        await self._store.set(ref, {**summary.to_document(), "updatedAt": SERVER_TIMESTAMP})
        return summary

    async def _write_ledger_summary(
        self,
        ledger_id: str,
        totals: TransactionTotals,
    ) -> Optional[LedgerSummary]:
        ref = DocumentRef(LEDGER_SUMMARIES, ledger_id)
        if totals.count == 0:
            await self._store.delete(ref)
            return None

        summary = LedgerSummary(
            ledger_id=ledger_id,
            total_sent_cents=totals.total_sent_cents,
            total_received_cents=totals.total_received_cents,
            net_cents=totals.net_cents,
            last_txn_at=totals.last_txn_at,
        )
        await self._store.set(ref, {**summary.to_document(), "updatedAt": SERVER_TIMESTAMP})
        return summary

    async def recompute_recipient(
        self,
        recipient_id: str,
        ledger_id: str,
    ) -> Optional[RecipientSummary]:
        """Rebuild one recipient summary. Returns None if it was removed."""
        transactions = await load_transactions(
            self._store, {"ledgerId": ledger_id, "recipientId": recipient_id}
        )
        summary = await self._write_recipient_summary(
            recipient_id, ledger_id, summarize_transactions(transactions)
        )
        await self._audit.log_aggregate_recomputed(
            recipient_id=recipient_id,
            ledger_id=ledger_id,
            net_cents=summary.net_cents if summary else None,
        )
        return summary

    async def recompute_ledger(self, ledger_id: str) -> Optional[LedgerSummary]:
        """Rebuild the ledger summary. Returns None if it was removed."""
        transactions = await load_transactions(self._store, {"ledgerId": ledger_id})
        summary = await self._write_ledger_summary(ledger_id, summarize_transactions(transactions))
        logger.info(
            "ledger_summary_recomputed",
            ledger_id=ledger_id,
            net_cents=summary.net_cents if summary else None,
        )
        return summary

    async def recompute(
        self,
        recipient_id: str,
        ledger_id: str,
    ) -> tuple[Optional[RecipientSummary], Optional[LedgerSummary]]:
        """Rebuild both summaries touched by a recipient's transactions."""
        recipient_summary, ledger_summary = await asyncio.gather(
            self.recompute_recipient(recipient_id, ledger_id),
            self.recompute_ledger(ledger_id),
        )
        return recipient_summary, ledger_summary

    async def discard_recipient(
        self,
        recipient_id: str,
        ledger_id: str,
    ) -> Optional[LedgerSummary]:
        """
        Drop a deleted recipient's summary and rebuild the ledger summary.

        Undoes increments that landed after (or during) the recipient's
        cascade delete.
        """
        await self._store.delete(DocumentRef(RECIPIENT_SUMMARIES, recipient_id))
        ledger_summary = await self.recompute_ledger(ledger_id)
        await self._audit.log_aggregate_recomputed(
            recipient_id=recipient_id,
            ledger_id=ledger_id,
            net_cents=None,
        )
        return ledger_summary

    async def reconcile_ledger(self, ledger_id: str) -> ReconciliationReport:
        """
        Recompute every summary in a ledger from its transactions.

        Covers recipients that have transactions and recipients that only
        have a (now orphaned) summary. Meant to be run periodically by an
        external scheduler so create-only ledgers cannot drift forever.
        """
        transactions = await load_transactions(self._store, {"ledgerId": ledger_id})
        by_recipient = summarize_by_recipient(transactions)

        stored_docs = await self._store.query(RECIPIENT_SUMMARIES, {"ledgerId": ledger_id})
        stored = {doc.id: doc.data for doc in stored_docs}

        corrections: list[SummaryCorrection] = []
        recipient_ids = sorted(set(by_recipient) | set(stored))
        for recipient_id in recipient_ids:
            totals = by_recipient.get(recipient_id, TransactionTotals())
            current = stored.get(recipient_id)
            if _totals_differ(current, totals):
                corrections.append(SummaryCorrection(
                    recipient_id=recipient_id,
                    stored_net_cents=current.get("netCents") if current else None,
                    actual_net_cents=totals.net_cents if totals.count else None,
                ))
            await self._write_recipient_summary(recipient_id, ledger_id, totals)

        ledger_totals = summarize_transactions(transactions)
        stored_ledger = await self._store.get(DocumentRef(LEDGER_SUMMARIES, ledger_id))
        if _totals_differ(stored_ledger, ledger_totals):
            corrections.append(SummaryCorrection(
                stored_net_cents=stored_ledger.get("netCents") if stored_ledger else None,
                actual_net_cents=ledger_totals.net_cents if ledger_totals.count else None,
            ))
        ledger_summary = await self._write_ledger_summary(ledger_id, ledger_totals)

        report = ReconciliationReport(
            ledger_id=ledger_id,
            recipients_checked=len(recipient_ids),
            corrections=corrections,
            ledger_summary=ledger_summary,
        )
        await self._audit.log_ledger_reconciled(
            ledger_id=ledger_id,
            recipients_checked=report.recipients_checked,
            corrections=len(corrections),
        )
        return report

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_recipient_summary(self, recipient_id: str) -> Optional[RecipientSummary]:
        data = await self._store.get(DocumentRef(RECIPIENT_SUMMARIES, recipient_id))
        if data is None:
            return None
        return RecipientSummary.from_document({"recipientId": recipient_id, **data})

    async def get_ledger_summary(self, ledger_id: str) -> Optional[LedgerSummary]:
        data = await self._store.get(DocumentRef(LEDGER_SUMMARIES, ledger_id))
        if data is None:
            return None
        return LedgerSummary.from_document({"ledgerId": ledger_id, **data})

    async def list_recipient_summaries(self, ledger_id: str) -> list[RecipientSummary]:
        """Every recipient summary in a ledger, most recent activity first."""
        docs = await self._store.query(RECIPIENT_SUMMARIES, {"ledgerId": ledger_id})
        summaries = [
            RecipientSummary.from_document({"recipientId": doc.id, **doc.data})
            for doc in docs
        ]
        summaries.sort(key=lambda s: s.recipient_id)
        summaries.sort(key=lambda s: s.last_txn_at or _NEVER, reverse=True)
        return summaries
