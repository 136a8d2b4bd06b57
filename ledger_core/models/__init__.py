"""
Data Models Package

This package contains all Pydantic models used by Ledger Core.
Every document read from or written to the store conforms to these schemas.
"""

from ledger_core.models.ledger import (
    AccessCode,
    AccessCodeStatus,
    Admin,
    AdminSession,
    AdminWhitelistEntry,
    CascadeReport,
    DerivedId,
    Direction,
    GeneratedId,
    Ledger,
    LedgerDocument,
    LedgerSummary,
    LedgerTransaction,
    PhoneMapping,
    ReconciliationReport,
    Recipient,
    RecipientSession,
    RecipientStatus,
    RecipientSummary,
    Session,
    SessionRole,
    SummaryCorrection,
    TransactionTotals,
    admin_id_for,
    as_utc,
    ledger_id_for,
    recipient_uid_for,
    utc_now,
)
from ledger_core.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "AccessCode",
    "AccessCodeStatus",
    "Admin",
    "AdminSession",
    "AdminWhitelistEntry",
    "CascadeReport",
    "DerivedId",
    "Direction",
    "GeneratedId",
    "Ledger",
    "LedgerDocument",
    "LedgerSummary",
    "LedgerTransaction",
    "PhoneMapping",
    "ReconciliationReport",
    "Recipient",
    "RecipientSession",
    "RecipientStatus",
    "RecipientSummary",
    "Session",
    "SessionRole",
    "SummaryCorrection",
    "TransactionTotals",
    "admin_id_for",
    "as_utc",
    "ledger_id_for",
    "recipient_uid_for",
    "utc_now",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
