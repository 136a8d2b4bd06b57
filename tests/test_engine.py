"""End-to-end tests through LedgerEngine and its factory."""

from uuid import uuid4

import pytest
from pydantic import ValidationError

from conftest import ADMIN_PHONE, ADMIN_PHONE_NORMALIZED
from ledger_core.audit import AuditLogger
from ledger_core.config import AppSettings, LedgerSettings, Settings
from ledger_core.errors import LedgerMismatchError, NotFoundError
from ledger_core.orchestrator import LedgerEngine, create_engine
from ledger_core.services.storage import (
    AUDIT_EVENTS,
    TRANSACTIONS,
    DocumentRef,
    InMemoryDocumentStore,
)

WHITELIST_JSON = '[{"phoneNumber": "+91 9161293962", "adminName": "Vaibhav"}]'


class FailingAuditStore(InMemoryDocumentStore):
    """Audit writes fail; everything else works."""

    async def set(self, ref, data, merge=False):
        if ref.collection == AUDIT_EVENTS:
            raise RuntimeError("audit sink down")
        await super().set(ref, data, merge=merge)


class TestSettings:
    """Tests for engine configuration."""

    def test_whitelist_from_env(self, monkeypatch):
        monkeypatch.setenv("LEDGER_ADMIN_WHITELIST", WHITELIST_JSON)
        settings = LedgerSettings()
        assert settings.admin_phones == frozenset({ADMIN_PHONE_NORMALIZED})
        assert settings.admin_whitelist[0].admin_name == "Vaibhav"

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LEDGER_ADMIN_WHITELIST", raising=False)
        settings = LedgerSettings()
        assert settings.admin_whitelist == []
        assert settings.delete_batch_size == 400
        assert settings.store_timeout_seconds == 10.0

    def test_log_level_validated(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        assert AppSettings().log_level == "DEBUG"

        monkeypatch.setenv("LOG_LEVEL", "LOUD")
        with pytest.raises(ValidationError):
            AppSettings()

    def test_batch_size_capped_at_store_limit(self, monkeypatch):
        monkeypatch.setenv("LEDGER_DELETE_BATCH_SIZE", "600")
        with pytest.raises(ValidationError):
            LedgerSettings()


class TestCreateEngine:
    """Tests for the factory."""

    @pytest.mark.asyncio
    async def test_wires_whitelist_and_store(self, monkeypatch):
        monkeypatch.setenv("LEDGER_ADMIN_WHITELIST", WHITELIST_JSON)
        monkeypatch.setenv("LEDGER_DELETE_BATCH_SIZE", "50")
        store = InMemoryDocumentStore()

        engine = create_engine(Settings(), store=store)
        session = await engine.resolve_session(ADMIN_PHONE)

        assert session.admin_name == "Vaibhav"
        # Audit events land on the same store
        assert store.snapshot(AUDIT_EVENTS)
        await engine.close()


class TestEngineFlows:
    """Tests for the consumer-facing operations."""

    @pytest.mark.asyncio
    async def test_foreign_ledger_write_rejected(self, engine, store, admin_ledger):
        ledger_id = await admin_ledger()
        recipient_id = await engine.create_recipient(ledger_id, "Ravi", "+91 98765 43210")
        await store.set(DocumentRef("ledgers", "ledger_other"), {"ledgerId": "ledger_other"})

        with pytest.raises(LedgerMismatchError):
            await engine.create_transaction("ledger_other", recipient_id, "SENT", 500, "admin")

        assert store.snapshot(TRANSACTIONS) == {}
        assert await engine.get_recipient_summary(recipient_id) is None

    @pytest.mark.asyncio
    async def test_delete_unknown_transaction(self, engine):
        with pytest.raises(NotFoundError):
            await engine.delete_transaction("missing")

    @pytest.mark.asyncio
    async def test_transaction_events_share_correlation_id(self, engine, store, admin_ledger):
        ledger_id = await admin_ledger()
        recipient_id = await engine.create_recipient(ledger_id, "Ravi", "+91 98765 43210")
        correlation_id = uuid4()

        txn_id = await engine.create_transaction(
            ledger_id, recipient_id, "SENT", 500, "admin", correlation_id=correlation_id
        )

        created = [
            doc for doc in store.snapshot(AUDIT_EVENTS).values()
            if doc["eventType"] == "transaction_created"
        ]
        assert len(created) == 1
        assert created[0]["entityId"] == txn_id
        assert created[0]["correlationId"] == str(correlation_id)

    @pytest.mark.asyncio
    async def test_audit_failure_never_breaks_flow(self, whitelist):
        store = FailingAuditStore()
        engine = LedgerEngine(store, admin_whitelist=whitelist, audit_logger=AuditLogger(store))

        ledger_id = (await engine.resolve_session(ADMIN_PHONE)).ledger_id
        recipient_id = await engine.create_recipient(ledger_id, "Ravi", "+91 98765 43210")
        await engine.create_transaction(ledger_id, recipient_id, "SENT", 500, "admin")

        assert (await engine.get_recipient_summary(recipient_id)).net_cents == 500
        assert store.snapshot(AUDIT_EVENTS) == {}

    @pytest.mark.asyncio
    async def test_list_recipients(self, engine, admin_ledger):
        ledger_id = await admin_ledger()
        await engine.create_recipient(ledger_id, "zed", "+91 90000 00001")
        await engine.create_recipient(ledger_id, "Amit", "+91 90000 00002")

        names = [r.recipient_name for r in await engine.list_recipients(ledger_id)]
        assert names == ["Amit", "zed"]
