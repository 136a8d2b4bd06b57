"""
Storage Services Package

Provides the abstract document-store interface and concrete implementations.
Firestore is the production backend; the in-memory store backs the tests.
"""

from ledger_core.services.storage.interface import (
    ACCESS_CODES,
    ADMINS,
    AUDIT_EVENTS,
    LEDGER_SUMMARIES,
    LEDGERS,
    MAX_BATCH_SIZE,
    PHONE_MAPPINGS,
    RECIPIENT_SUMMARIES,
    RECIPIENTS,
    SERVER_TIMESTAMP,
    TRANSACTIONS,
    DocumentExistsError,
    DocumentRef,
    DocumentStore,
    StorageError,
    StoredDocument,
    StoreTimeoutError,
    StoreTransaction,
    StoreUnavailableError,
    TransactionConflictError,
)
from ledger_core.services.storage.memory import InMemoryDocumentStore

__all__ = [
    # Collections
    "ACCESS_CODES",
    "ADMINS",
    "AUDIT_EVENTS",
    "LEDGER_SUMMARIES",
    "LEDGERS",
    "MAX_BATCH_SIZE",
    "PHONE_MAPPINGS",
    "RECIPIENT_SUMMARIES",
    "RECIPIENTS",
    "SERVER_TIMESTAMP",
    "TRANSACTIONS",
    # Interfaces
    "DocumentRef",
    "DocumentStore",
    "StoredDocument",
    "StoreTransaction",
    # Exceptions
    "DocumentExistsError",
    "StorageError",
    "StoreTimeoutError",
    "StoreUnavailableError",
    "TransactionConflictError",
    # In-memory implementation
    "InMemoryDocumentStore",
]
