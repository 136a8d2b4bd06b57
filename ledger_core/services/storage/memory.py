"""
In-Memory Storage Implementation

DESIGN DECISION: The in-memory store implements the same contract as the
Firestore store, including optimistic transactions:
- every document carries a version that changes on each write
- a transaction remembers the version of every document it read
- at commit, if any of those versions moved, the unit is re-run

Each call yields to the event loop once before touching data, so
concurrent coroutines interleave the way remote clients do. This is what
lets the tests exercise races (double phone claims, double joins) for real.

TRADEOFFS:
- Single process only; nothing is persisted
- Queries scan the whole collection (fine for tests and small demos)
"""

import asyncio
import copy
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import structlog

from ledger_core.errors import NotFoundError
from ledger_core.models.ledger import utc_now
from ledger_core.services.storage.interface import (
    SERVER_TIMESTAMP,
    DocumentExistsError,
    DocumentRef,
    DocumentStore,
    StorageError,
    StoredDocument,
    StoreTransaction,
    TransactionConflictError,
)

T = TypeVar("T")

logger = structlog.get_logger(__name__)


class _Conflict(Exception):
    """A document read inside a transaction changed before commit."""


def _resolve(data: dict[str, Any]) -> dict[str, Any]:
    """Deep-copy data and replace SERVER_TIMESTAMP placeholders."""
    now = utc_now()
    return {
        key: now if value is SERVER_TIMESTAMP else copy.deepcopy(value)
        for key, value in data.items()
    }


class _MemoryTransaction(StoreTransaction):
    def __init__(self, store: "InMemoryDocumentStore"):
        self._store = store
        self._reads: dict[DocumentRef, int] = {}
        self._writes: list[tuple[str, DocumentRef, Optional[dict[str, Any]], bool]] = []

    async def get(self, ref: DocumentRef) -> Optional[dict[str, Any]]:
        if self._writes:
            raise StorageError("Transactions must perform all reads before any writes")
        await asyncio.sleep(0)
        self._reads[ref] = self._store._version(ref)
        return self._store._read(ref)

    def create(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        self._writes.append(("create", ref, data, False))

    def set(self, ref: DocumentRef, data: dict[str, Any], merge: bool = False) -> None:
        self._writes.append(("set", ref, data, merge))

    def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        self._writes.append(("update", ref, data, True))

    def delete(self, ref: DocumentRef) -> None:
        self._writes.append(("delete", ref, None, False))

    def commit(self) -> None:
        """Validate and apply buffered writes. Runs without yielding."""
        for ref, version in self._reads.items():
            if self._store._version(ref) != version:
                raise _Conflict(ref)

        # Check every precondition before applying anything
        pending: dict[DocumentRef, bool] = {}
        for op, ref, _, _ in self._writes:
            exists = pending.get(ref, self._store._exists(ref))
            if op == "create" and exists:
                raise DocumentExistsError(f"Document already exists: {ref.collection}/{ref.doc_id}")
            if op == "update" and not exists:
                raise NotFoundError(f"Document not found: {ref.collection}/{ref.doc_id}")
            pending[ref] = op != "delete"

        for op, ref, data, merge in self._writes:
            if op == "delete":
                self._store._remove(ref)
            else:
                self._store._write(ref, data or {}, merge=merge)


class InMemoryDocumentStore(DocumentStore):
    """
    Dictionary-backed document store.

    Used by the test suite and for local runs without Firestore.
    """

    def __init__(self, max_transaction_attempts: int = 5):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._versions: dict[DocumentRef, int] = {}
        self._max_attempts = max_transaction_attempts

    # -------------------------------------------------------------------------
    # Raw access (no yielding)
    # -------------------------------------------------------------------------

    def _version(self, ref: DocumentRef) -> int:
        return self._versions.get(ref, 0)

    def _exists(self, ref: DocumentRef) -> bool:
        return ref.doc_id in self._collections.get(ref.collection, {})

    def _read(self, ref: DocumentRef) -> Optional[dict[str, Any]]:
        data = self._collections.get(ref.collection, {}).get(ref.doc_id)
        return copy.deepcopy(data) if data is not None else None

    def _write(self, ref: DocumentRef, data: dict[str, Any], merge: bool) -> None:
        collection = self._collections.setdefault(ref.collection, {})
        resolved = _resolve(data)
        if merge and ref.doc_id in collection:
            collection[ref.doc_id].update(resolved)
        else:
            collection[ref.doc_id] = resolved
        self._versions[ref] = self._version(ref) + 1

    def _remove(self, ref: DocumentRef) -> None:
        collection = self._collections.get(ref.collection, {})
        if ref.doc_id in collection:
            del collection[ref.doc_id]
        self._versions[ref] = self._version(ref) + 1

    def snapshot(self, collection: str) -> dict[str, dict[str, Any]]:
        """Copy of every document in a collection, keyed by id."""
        return copy.deepcopy(self._collections.get(collection, {}))

    # -------------------------------------------------------------------------
    # DocumentStore
    # -------------------------------------------------------------------------

    async def get(self, ref: DocumentRef) -> Optional[dict[str, Any]]:
        await asyncio.sleep(0)
        return self._read(ref)

    async def query(
        self,
        collection: str,
        filters: dict[str, Any],
        limit: Optional[int] = None,
    ) -> list[StoredDocument]:
        await asyncio.sleep(0)
        results = []
        for doc_id in sorted(self._collections.get(collection, {})):
            data = self._collections[collection][doc_id]
            if all(data.get(field) == value for field, value in filters.items()):
                results.append(StoredDocument(id=doc_id, data=copy.deepcopy(data)))
                if limit is not None and len(results) >= limit:
                    break
        return results

    async def set(
        self,
        ref: DocumentRef,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        await asyncio.sleep(0)
        self._write(ref, data, merge=merge)

    async def delete(self, ref: DocumentRef) -> None:
        await asyncio.sleep(0)
        self._remove(ref)

    async def delete_batch(self, refs: Sequence[DocumentRef]) -> None:
        if len(refs) > self.max_batch_size:
            raise ValueError(f"Batch of {len(refs)} exceeds limit of {self.max_batch_size}")
        await asyncio.sleep(0)
        for ref in refs:
            self._remove(ref)

    async def increment(
        self,
        ref: DocumentRef,
        deltas: dict[str, int],
        fields: Optional[dict[str, Any]] = None,
        max_fields: Optional[dict[str, datetime]] = None,
    ) -> None:
        await asyncio.sleep(0)
        current = self._read(ref) or {}
        update: dict[str, Any] = dict(fields or {})
        for field, delta in deltas.items():
            update[field] = (current.get(field) or 0) + delta
        for field, value in (max_fields or {}).items():
            stored = current.get(field)
            if stored is None or value > stored:
                update[field] = value
        self._write(ref, update, merge=True)

    async def run_transaction(
        self,
        fn: Callable[[StoreTransaction], Awaitable[T]],
    ) -> T:
        for attempt in range(1, self._max_attempts + 1):
            transaction = _MemoryTransaction(self)
            result = await fn(transaction)
            try:
                transaction.commit()
            except _Conflict:
                logger.debug("memory_transaction_conflict", attempt=attempt)
                continue
            return result

        raise TransactionConflictError(
            f"Transaction did not commit after {self._max_attempts} attempts"
        )
