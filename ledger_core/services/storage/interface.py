"""
Abstract Document Store Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run against Firestore in production
2. Use in-memory storage for testing
3. Keep the consistency engine decoupled from any one SDK

The interface is intentionally small. It offers exactly what the engine
needs from a document store: get-by-key, equality queries, an atomic
read-modify-write unit, batched deletes and atomic numeric increments.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from ledger_core.errors import (
    DocumentExistsError,
    StorageError,
    StoreTimeoutError,
    StoreUnavailableError,
    TransactionConflictError,
)

T = TypeVar("T")


# =============================================================================
# COLLECTIONS
# =============================================================================

ADMINS = "admins"
LEDGERS = "ledgers"
RECIPIENTS = "recipients"
PHONE_MAPPINGS = "recipientPhoneMappings"
ACCESS_CODES = "accessCodes"
TRANSACTIONS = "transactions"
RECIPIENT_SUMMARIES = "recipientSummaries"
LEDGER_SUMMARIES = "ledgerSummaries"
AUDIT_EVENTS = "auditEvents"

# Firestore refuses batches larger than this
MAX_BATCH_SIZE = 500


class _ServerTimestamp:
    """Placeholder resolved to the store's own clock at write time."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class DocumentRef:
    """Address of one document."""

    collection: str
    doc_id: str

    def __post_init__(self) -> None:
        if not self.collection or not self.doc_id:
            raise ValueError("DocumentRef needs a collection and a doc_id")
        if "/" in self.doc_id:
            raise ValueError(f"Document id may not contain '/': {self.doc_id!r}")


@dataclass(frozen=True)
class StoredDocument:
    """A document returned by a query."""

    id: str
    data: dict[str, Any]


class StoreTransaction(ABC):
    """
    One atomic read-modify-write unit.

    All reads must happen before the first write. Writes are buffered and
    applied together when the unit commits; if any document read inside
    the unit changed in the meantime, the whole unit is re-run.
    """

    @abstractmethod
    async def get(self, ref: DocumentRef) -> Optional[dict[str, Any]]:
        """Read a document inside the unit. Returns None if absent."""
        pass

    @abstractmethod
    def create(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        """
        Create a document.

        Raises (at commit):
            DocumentExistsError: If the document already exists
        """
        pass

    @abstractmethod
    def set(self, ref: DocumentRef, data: dict[str, Any], merge: bool = False) -> None:
        """Write a document, replacing it unless merge is True."""
        pass

    @abstractmethod
    def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        """
        Update fields of an existing document.

        Raises (at commit):
            NotFoundError: If the document does not exist
        """
        pass

    @abstractmethod
    def delete(self, ref: DocumentRef) -> None:
        """Delete a document. Deleting an absent document is a no-op."""
        pass


class DocumentStore(ABC):
    """
    Abstract interface for document storage operations.

    Any storage implementation (Firestore, in-memory, etc.)
    must implement these methods.
    """

    max_batch_size: int = MAX_BATCH_SIZE

    @abstractmethod
    async def get(self, ref: DocumentRef) -> Optional[dict[str, Any]]:
        """
        Retrieve a document by key.

        Args:
            ref: The document address

        Returns:
            The document data if found, None otherwise

        Raises:
            StoreUnavailableError, StoreTimeoutError: On transient failures
        """
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any],
        limit: Optional[int] = None,
    ) -> list[StoredDocument]:
        """
        List documents whose fields equal every value in filters.

        Args:
            collection: Collection to search
            filters: {field_name: required_value}, combined with AND
            limit: Maximum number of results

        Returns:
            Matching documents
        """
        pass

    @abstractmethod
    async def set(
        self,
        ref: DocumentRef,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        """
        Write a document, replacing it unless merge is True.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, ref: DocumentRef) -> None:
        """Delete a document. Deleting an absent document is a no-op."""
        pass

    @abstractmethod
    async def delete_batch(self, refs: Sequence[DocumentRef]) -> None:
        """
        Delete several documents in one committed batch.

        Args:
            refs: At most max_batch_size document addresses

        Raises:
            ValueError: If refs exceeds max_batch_size
            StorageError: If the batch fails (nothing in it was deleted)
        """
        pass

    @abstractmethod
    async def increment(
        self,
        ref: DocumentRef,
        deltas: dict[str, int],
        fields: Optional[dict[str, Any]] = None,
        max_fields: Optional[dict[str, datetime]] = None,
    ) -> None:
        """
        Atomically add deltas to numeric fields, creating the document if needed.

        IMPORTANT: Not idempotent. Calling twice adds twice.

        Args:
            ref: The document address
            deltas: {field_name: amount_to_add}; missing fields start at 0
            fields: Plain values merged into the document
            max_fields: Values written only if greater than the stored value
        """
        pass

    @abstractmethod
    async def run_transaction(
        self,
        fn: Callable[[StoreTransaction], Awaitable[T]],
    ) -> T:
        """
        Run fn as one atomic read-modify-write unit and return its result.

        fn may be invoked more than once if it loses a race; it must not
        have side effects outside the StoreTransaction it is given.
        Exceptions raised by fn abort the unit and propagate unchanged.

        Raises:
            TransactionConflictError: If the unit kept losing races
        """
        pass

    async def close(self) -> None:
        """Release client resources. Default is a no-op."""
        return None


__all__ = [
    "ACCESS_CODES",
    "ADMINS",
    "AUDIT_EVENTS",
    "LEDGERS",
    "LEDGER_SUMMARIES",
    "MAX_BATCH_SIZE",
    "PHONE_MAPPINGS",
    "RECIPIENTS",
    "RECIPIENT_SUMMARIES",
    "SERVER_TIMESTAMP",
    "TRANSACTIONS",
    "DocumentExistsError",
    "DocumentRef",
    "DocumentStore",
    "StorageError",
    "StoreTimeoutError",
    "StoreTransaction",
    "StoreUnavailableError",
    "StoredDocument",
    "TransactionConflictError",
]
