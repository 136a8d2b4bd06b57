"""
Tests for Ledger Core

Test strategy:
1. Unit tests for individual components (models, validators)
2. Integration tests for flows against the in-memory store
3. No real Firestore calls in tests
"""

import pytest
from datetime import datetime, timezone
from uuid import uuid4

from ledger_core.models.ledger import (
    AdminSession,
    AdminWhitelistEntry,
    DerivedId,
    Direction,
    GeneratedId,
    LedgerTransaction,
    ReconciliationReport,
    Recipient,
    RecipientStatus,
    SessionRole,
    SummaryCorrection,
    TransactionTotals,
    admin_id_for,
    ledger_id_for,
    recipient_uid_for,
)
from ledger_core.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


def make_txn(**overrides) -> LedgerTransaction:
    fields = dict(
        txn_id="t1",
        ledger_id="ledger_919161293962",
        recipient_id="r1",
        direction=Direction.SENT,
        amount_cents=500,
        txn_at=datetime(2024, 1, 10, tzinfo=timezone.utc),
        created_by_uid="admin_919161293962",
        recipient_name_snapshot="Ravi",
    )
    fields.update(overrides)
    return LedgerTransaction(**fields)


class TestIdentityScheme:
    """Tests for derived and generated ids."""

    def test_derived_ids_follow_phone(self):
        assert admin_id_for("919161293962").value == "admin_919161293962"
        assert ledger_id_for("919161293962").value == "ledger_919161293962"
        assert str(recipient_uid_for("919161293962")) == "recipient_919161293962"

    def test_derived_id_is_deterministic(self):
        assert admin_id_for("9161293962") == admin_id_for("9161293962")

    def test_derived_id_requires_full_phone(self):
        with pytest.raises(ValueError):
            DerivedId(prefix="admin", phone_normalized="123")

    def test_generated_ids_are_unique(self):
        assert GeneratedId().value != GeneratedId().value


class TestLedgerModels:
    """Tests for persisted document models."""

    def test_transaction_to_document_uses_camel_case(self):
        doc = make_txn(note="Advance").to_document()
        assert doc["txnId"] == "t1"
        assert doc["amountCents"] == 500
        assert doc["direction"] == "SENT"
        assert doc["createdByRole"] == "ADMIN"
        assert doc["recipientNameSnapshot"] == "Ravi"
        assert "amount_cents" not in doc

    def test_transaction_from_document(self):
        txn = LedgerTransaction.from_document(make_txn().to_document())
        assert txn.direction is Direction.SENT
        assert txn.amount_cents == 500
        assert txn.signed_cents == 500

    def test_received_is_negative(self):
        assert make_txn(direction=Direction.RECEIVED).signed_cents == -500

    @pytest.mark.parametrize("amount", [0, -5, "500", 5.0])
    def test_transaction_amount_must_be_positive_int(self, amount):
        with pytest.raises(ValueError):
            make_txn(amount_cents=amount)

    def test_naive_datetime_taken_as_utc(self):
        txn = make_txn(txn_at=datetime(2024, 1, 10, 9, 30))
        assert txn.txn_at.tzinfo == timezone.utc
        assert txn.txn_at.hour == 9

    def test_recipient_defaults(self):
        recipient = Recipient(recipient_id="r1", ledger_id="l1", recipient_name="  Ravi  ")
        assert recipient.recipient_name == "Ravi"
        assert recipient.status == RecipientStatus.INVITED
        assert not recipient.is_joined
        assert recipient.deleting is False
        assert recipient.to_document()["status"] == "INVITED"

    def test_recipient_ignores_unknown_keys(self):
        recipient = Recipient.from_document({
            "recipientId": "r1",
            "ledgerId": "l1",
            "recipientName": "Ravi",
            "status": "JOINED",
            "someNewClientField": 1,
        })
        assert recipient.is_joined

    def test_whitelist_entry_validates_phone(self):
        entry = AdminWhitelistEntry(phone_number="+91 9161293962", admin_name="Vaibhav")
        assert entry.phone_normalized == "919161293962"
        with pytest.raises(ValueError):
            AdminWhitelistEntry(phone_number="12345", admin_name="Nobody")

    def test_admin_session_role(self):
        session = AdminSession(
            uid="admin_919161293962",
            admin_id="admin_919161293962",
            admin_name="Vaibhav",
            ledger_id="ledger_919161293962",
        )
        assert session.role == SessionRole.ADMIN


class TestTotals:
    """Tests for totals computed from raw transactions."""

    def test_totals_accumulate(self):
        totals = TransactionTotals()
        totals.add(make_txn(txn_id="a", amount_cents=500))
        totals.add(make_txn(
            txn_id="b",
            direction=Direction.RECEIVED,
            amount_cents=200,
            txn_at=datetime(2024, 1, 5, tzinfo=timezone.utc),
        ))
        assert totals.total_sent_cents == 500
        assert totals.total_received_cents == 200
        assert totals.net_cents == 300
        assert totals.count == 2
        assert totals.last_txn_at == datetime(2024, 1, 10, tzinfo=timezone.utc)

    def test_reconciliation_report_counts(self):
        report = ReconciliationReport(
            ledger_id="l1",
            recipients_checked=1,
            corrections=[SummaryCorrection(recipient_id="r1", stored_net_cents=1, actual_net_cents=2)],
        )
        assert report.drift_found

        with pytest.raises(ValueError):
            ReconciliationReport(
                ledger_id="l1",
                recipients_checked=0,
                corrections=[SummaryCorrection(recipient_id="r1")],
            )


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.RECIPIENT_CREATED,
            description="Test event",
        )
        assert event.event_type == AuditEventType.RECIPIENT_CREATED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_audit_event_to_log_dict(self):
        correlation_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description="Test error",
            correlation_id=correlation_id,
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "system_error"
        assert log_dict["severity"] == "error"
        assert log_dict["correlation_id"] == str(correlation_id)

    def test_audit_event_to_document(self):
        event = AuditEventBuilder.recipient_joined("r1", "l1", via="phone")
        doc = event.to_document()
        assert doc["eventType"] == "recipient_joined"
        assert doc["entityId"] == "r1"
        assert doc["ledgerId"] == "l1"
        assert doc["isUserAction"] is True

    def test_builder_transaction_created(self):
        event = AuditEventBuilder.transaction_created(
            txn_id="t1",
            ledger_id="l1",
            recipient_id="r1",
            direction="SENT",
            amount_cents=500,
            created_by_uid="admin_1",
        )
        assert event.entity_type == "transaction"
        assert event.details["amount_cents"] == 500

    def test_builder_aggregate_failure_is_warning(self):
        event = AuditEventBuilder.aggregate_update_failed("r1", "l1", "apply_delta", "boom")
        assert event.severity == AuditSeverity.WARNING
        assert event.error_message == "boom"

    def test_builder_reconciled_severity_follows_corrections(self):
        assert AuditEventBuilder.ledger_reconciled("l1", 3, 0).severity == AuditSeverity.INFO
        assert AuditEventBuilder.ledger_reconciled("l1", 3, 1).severity == AuditSeverity.WARNING
