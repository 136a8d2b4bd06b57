"""Tests for summary maintenance: deltas, recompute and reconciliation."""

from datetime import datetime, timezone

import pytest

from conftest import ADMIN_PHONE
from ledger_core.audit import AuditLogger
from ledger_core.errors import AggregateUpdateFailedError, StoreUnavailableError
from ledger_core.ledger import AggregateMaintainer, summarize_by_recipient, summarize_transactions
from ledger_core.models.ledger import Direction, LedgerTransaction
from ledger_core.orchestrator import LedgerEngine
from ledger_core.services.storage import (
    AUDIT_EVENTS,
    LEDGER_SUMMARIES,
    RECIPIENT_SUMMARIES,
    DocumentRef,
    InMemoryDocumentStore,
)


class FailingIncrementStore(InMemoryDocumentStore):
    """Every increment fails, as if the store went away right after the write."""

    async def increment(self, ref, deltas, fields=None, max_fields=None):
        raise StoreUnavailableError("increment rejected")


def at(day: int) -> datetime:
    return datetime(2024, 1, day, tzinfo=timezone.utc)


def txn(txn_id, recipient_id, direction, amount, day=1) -> LedgerTransaction:
    return LedgerTransaction(
        txn_id=txn_id,
        ledger_id="l1",
        recipient_id=recipient_id,
        direction=direction,
        amount_cents=amount,
        txn_at=at(day),
        created_by_uid="admin_1",
        recipient_name_snapshot="Ravi",
    )


class TestSummarize:
    """Tests for the pure summary helpers."""

    def test_summarize_transactions(self):
        totals = summarize_transactions([
            txn("a", "r1", Direction.SENT, 500, day=3),
            txn("b", "r2", Direction.RECEIVED, 200, day=7),
        ])
        assert (totals.total_sent_cents, totals.total_received_cents, totals.net_cents) == (500, 200, 300)
        assert totals.last_txn_at == at(7)

    def test_summarize_empty(self):
        totals = summarize_transactions([])
        assert totals.count == 0
        assert totals.last_txn_at is None

    def test_summarize_by_recipient(self):
        by_recipient = summarize_by_recipient([
            txn("a", "r1", Direction.SENT, 500),
            txn("b", "r1", Direction.RECEIVED, 200),
            txn("c", "r2", Direction.RECEIVED, 50),
        ])
        assert by_recipient["r1"].net_cents == 300
        assert by_recipient["r2"].net_cents == -50


class TestSumInvariant:
    """The recipient summary always converges to the sum of its transactions."""

    @pytest.mark.asyncio
    async def test_create_create_delete_scenario(self, engine, admin_ledger):
        ledger_id = await admin_ledger()
        recipient_id = await engine.create_recipient(ledger_id, "Ravi", "+91 98765 43210")
        admin_uid = (await engine.resolve_session(ADMIN_PHONE)).uid

        sent_id = await engine.create_transaction(ledger_id, recipient_id, "SENT", 500, admin_uid)
        assert (await engine.get_recipient_summary(recipient_id)).net_cents == 500

        await engine.create_transaction(ledger_id, recipient_id, "RECEIVED", 200, admin_uid)
        assert (await engine.get_recipient_summary(recipient_id)).net_cents == 300

        await engine.delete_transaction(sent_id)
        summary = await engine.get_recipient_summary(recipient_id)
        assert summary.net_cents == -200
        assert summary.total_sent_cents == 0
        assert summary.total_received_cents == 200

        ledger_summary = await engine.get_ledger_summary(ledger_id)
        assert ledger_summary.net_cents == -200
        assert ledger_summary.total_sent_cents == 0

    @pytest.mark.asyncio
    async def test_last_txn_at_never_regresses(self, engine, admin_ledger):
        ledger_id = await admin_ledger()
        recipient_id = await engine.create_recipient(ledger_id, "Ravi", "+91 98765 43210")

        await engine.create_transaction(ledger_id, recipient_id, "SENT", 1, "admin", txn_at=at(10))
        await engine.create_transaction(ledger_id, recipient_id, "SENT", 1, "admin", txn_at=at(5))

        assert (await engine.get_recipient_summary(recipient_id)).last_txn_at == at(10)
        assert (await engine.get_ledger_summary(ledger_id)).last_txn_at == at(10)

    @pytest.mark.asyncio
    async def test_summary_removed_when_last_transaction_deleted(self, engine, store, admin_ledger):
        ledger_id = await admin_ledger()
        recipient_id = await engine.create_recipient(ledger_id, "Ravi", "+91 98765 43210")
        txn_id = await engine.create_transaction(ledger_id, recipient_id, "SENT", 500, "admin")

        await engine.delete_transaction(txn_id)

        assert await engine.get_recipient_summary(recipient_id) is None
        assert await engine.get_ledger_summary(ledger_id) is None
        assert recipient_id not in store.snapshot(RECIPIENT_SUMMARIES)

    @pytest.mark.asyncio
    async def test_recompute_is_idempotent(self, engine, admin_ledger):
        ledger_id = await admin_ledger()
        recipient_id = await engine.create_recipient(ledger_id, "Ravi", "+91 98765 43210")
        await engine.create_transaction(ledger_id, recipient_id, "SENT", 500, "admin")

        first = await engine.aggregates.recompute(recipient_id, ledger_id)
        second = await engine.aggregates.recompute(recipient_id, ledger_id)

        assert first == second
        assert first[0].net_cents == 500


class TestApplyDelta:
    """Tests for the incremental path and how its failures degrade."""

    @pytest.mark.asyncio
    async def test_apply_delta_raises_typed_error(self):
        maintainer = AggregateMaintainer(FailingIncrementStore())
        with pytest.raises(AggregateUpdateFailedError):
            await maintainer.apply_delta("r1", "l1", Direction.SENT, 500, at(1))

    @pytest.mark.asyncio
    async def test_transaction_stands_when_delta_fails(self, whitelist):
        store = FailingIncrementStore()
        engine = LedgerEngine(store, admin_whitelist=whitelist, audit_logger=AuditLogger(store))
        ledger_id = (await engine.resolve_session(ADMIN_PHONE)).ledger_id
        recipient_id = await engine.create_recipient(ledger_id, "Ravi", "+91 98765 43210")

        txn_id = await engine.create_transaction(ledger_id, recipient_id, "SENT", 500, "admin")

        listed = await engine.list_transactions(ledger_id)
        assert [t.txn_id for t in listed] == [txn_id]
        assert await engine.get_recipient_summary(recipient_id) is None
        events = [doc["eventType"] for doc in store.snapshot(AUDIT_EVENTS).values()]
        assert "aggregate_update_failed" in events

        report = await engine.reconcile_ledger(ledger_id)

        assert report.drift_found
        assert (await engine.get_recipient_summary(recipient_id)).net_cents == 500
        assert (await engine.get_ledger_summary(ledger_id)).net_cents == 500

    @pytest.mark.asyncio
    async def test_naive_txn_at_taken_as_utc(self):
        maintainer = AggregateMaintainer(InMemoryDocumentStore())

        await maintainer.apply_delta("r1", "l1", Direction.SENT, 500, at(1))
        await maintainer.apply_delta("r1", "l1", Direction.SENT, 100, datetime(2024, 1, 5))

        summary = await maintainer.get_recipient_summary("r1")
        assert summary.net_cents == 600
        assert summary.last_txn_at == at(5)


class TestReconcile:
    """Tests for on-demand ledger reconciliation."""

    @pytest.mark.asyncio
    async def test_clean_ledger_has_no_drift(self, engine, admin_ledger):
        ledger_id = await admin_ledger()
        recipient_id = await engine.create_recipient(ledger_id, "Ravi", "+91 98765 43210")
        await engine.create_transaction(ledger_id, recipient_id, "SENT", 500, "admin")

        report = await engine.reconcile_ledger(ledger_id)

        assert not report.drift_found
        assert report.recipients_checked == 1
        assert report.ledger_summary.net_cents == 500

    @pytest.mark.asyncio
    async def test_corrects_drift_and_orphans(self, engine, store, admin_ledger):
        ledger_id = await admin_ledger()
        recipient_id = await engine.create_recipient(ledger_id, "Ravi", "+91 98765 43210")
        await engine.create_transaction(ledger_id, recipient_id, "SENT", 500, "admin")
        await store.set(DocumentRef(RECIPIENT_SUMMARIES, recipient_id), {"netCents": 999}, merge=True)
        await store.set(DocumentRef(RECIPIENT_SUMMARIES, "ghost"), {
            "recipientId": "ghost",
            "ledgerId": ledger_id,
            "totalSentCents": 10,
            "totalReceivedCents": 0,
            "netCents": 10,
        })

        report = await engine.reconcile_ledger(ledger_id)

        corrected = {c.recipient_id: c for c in report.corrections}
        assert corrected[recipient_id].stored_net_cents == 999
        assert corrected[recipient_id].actual_net_cents == 500
        assert corrected["ghost"].actual_net_cents is None
        assert report.recipients_checked == 2
        assert (await engine.get_recipient_summary(recipient_id)).net_cents == 500
        assert "ghost" not in store.snapshot(RECIPIENT_SUMMARIES)

    @pytest.mark.asyncio
    async def test_restores_missing_ledger_summary(self, engine, store, admin_ledger):
        ledger_id = await admin_ledger()
        recipient_id = await engine.create_recipient(ledger_id, "Ravi", "+91 98765 43210")
        await engine.create_transaction(ledger_id, recipient_id, "RECEIVED", 250, "admin")
        await store.delete(DocumentRef(LEDGER_SUMMARIES, ledger_id))

        report = await engine.reconcile_ledger(ledger_id)

        assert [c.recipient_id for c in report.corrections] == [None]
        assert (await engine.get_ledger_summary(ledger_id)).net_cents == -250


class TestSummaryReads:
    """Tests for summary listing."""

    @pytest.mark.asyncio
    async def test_list_recent_first(self, engine, admin_ledger):
        ledger_id = await admin_ledger()
        older = await engine.create_recipient(ledger_id, "Older", "+91 90000 00001")
        newer = await engine.create_recipient(ledger_id, "Newer", "+91 90000 00002")
        await engine.create_transaction(ledger_id, older, "SENT", 1, "admin", txn_at=at(1))
        await engine.create_transaction(ledger_id, newer, "SENT", 1, "admin", txn_at=at(9))

        summaries = await engine.list_recipient_summaries(ledger_id)
        assert [s.recipient_id for s in summaries] == [newer, older]
