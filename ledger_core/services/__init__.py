"""Services package."""

from ledger_core.services.storage import (
    DocumentExistsError,
    DocumentRef,
    DocumentStore,
    InMemoryDocumentStore,
    StorageError,
    StoredDocument,
    StoreTimeoutError,
    StoreTransaction,
    StoreUnavailableError,
    TransactionConflictError,
)

__all__ = [
    # Storage services
    "DocumentExistsError",
    "DocumentRef",
    "DocumentStore",
    "InMemoryDocumentStore",
    "StorageError",
    "StoredDocument",
    "StoreTimeoutError",
    "StoreTransaction",
    "StoreUnavailableError",
    "TransactionConflictError",
]
