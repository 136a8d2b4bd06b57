"""
Firestore Storage Implementation

DESIGN DECISION: Firestore is the production backend because the mobile
client already reads and writes the same collections. The engine and the
app share one source of truth.

Every call goes through _call(), which:
1. Bounds it with an explicit timeout (StoreTimeoutError on expiry)
2. Maps google.api_core errors onto the engine's storage errors

Idempotent calls (get, query, set, delete, batched delete) retry
StoreUnavailableError with exponential backoff. Increments are never
retried: a retried increment that had in fact landed would double-count.
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import structlog
from google.api_core import exceptions as gexc
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.oauth2.service_account import Credentials
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ledger_core.config.settings import FirestoreSettings
from ledger_core.errors import NotFoundError
from ledger_core.services.storage.interface import (
    SERVER_TIMESTAMP,
    DocumentExistsError,
    DocumentRef,
    DocumentStore,
    StorageError,
    StoredDocument,
    StoreTimeoutError,
    StoreTransaction,
    StoreUnavailableError,
)

T = TypeVar("T")

logger = structlog.get_logger(__name__)

_TRANSIENT_EXCEPTIONS = (
    gexc.Aborted,
    gexc.InternalServerError,
    gexc.ResourceExhausted,
    gexc.ServiceUnavailable,
    gexc.TooManyRequests,
)

_retry_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=5),
    retry=retry_if_exception_type(StoreUnavailableError),
    reraise=True,
)


def _encode(data: dict[str, Any]) -> dict[str, Any]:
    """Swap the store-neutral timestamp placeholder for Firestore's."""
    return {
        key: firestore.SERVER_TIMESTAMP if value is SERVER_TIMESTAMP else value
        for key, value in data.items()
    }


class _FirestoreTransaction(StoreTransaction):
    def __init__(self, store: "FirestoreDocumentStore", transaction: firestore.AsyncTransaction):
        self._store = store
        self._transaction = transaction

    async def get(self, ref: DocumentRef) -> Optional[dict[str, Any]]:
        snapshot = await self._store._doc(ref).get(transaction=self._transaction)
        return snapshot.to_dict() if snapshot.exists else None

    def create(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        self._transaction.create(self._store._doc(ref), _encode(data))

    def set(self, ref: DocumentRef, data: dict[str, Any], merge: bool = False) -> None:
        self._transaction.set(self._store._doc(ref), _encode(data), merge=merge)

    def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        self._transaction.update(self._store._doc(ref), _encode(data))

    def delete(self, ref: DocumentRef) -> None:
        self._transaction.delete(self._store._doc(ref))


class FirestoreDocumentStore(DocumentStore):
    """
    Firestore implementation of the document store (async client).
    """

    def __init__(
        self,
        client: firestore.AsyncClient,
        timeout_seconds: float = 10.0,
        collection_prefix: str = "",
    ):
        self._client = client
        self._timeout = timeout_seconds
        self._collection_prefix = collection_prefix.strip()

    @classmethod
    def from_settings(
        cls,
        settings: FirestoreSettings,
        timeout_seconds: float = 10.0,
    ) -> "FirestoreDocumentStore":
        """
        Build a store from configuration.

        Uses service account credentials when a path is configured,
        Application Default Credentials otherwise.
        """
        credentials = None
        if settings.credentials_path:
            try:
                credentials = Credentials.from_service_account_file(settings.credentials_path)
            except FileNotFoundError:
                raise StoreUnavailableError(
                    f"Firestore credentials file not found: {settings.credentials_path}"
                )
            except ValueError as e:
                raise StoreUnavailableError(f"Invalid Firestore credentials: {e}")

        client = firestore.AsyncClient(
            project=settings.project_id,
            credentials=credentials,
            database=settings.database,
        )
        return cls(
            client=client,
            timeout_seconds=timeout_seconds,
            collection_prefix=settings.collection_prefix,
        )

    def _col(self, name: str) -> str:
        return f"{self._collection_prefix}{name}" if self._collection_prefix else name

    def _doc(self, ref: DocumentRef) -> firestore.AsyncDocumentReference:
        return self._client.collection(self._col(ref.collection)).document(ref.doc_id)

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError:
            raise StoreTimeoutError(f"Firestore {operation} timed out after {self._timeout}s")
        except gexc.DeadlineExceeded as e:
            raise StoreTimeoutError(f"Firestore {operation} deadline exceeded: {e}") from e
        except gexc.AlreadyExists as e:
            raise DocumentExistsError(f"Firestore {operation}: {e}") from e
        except gexc.NotFound as e:
            raise NotFoundError(f"Firestore {operation}: {e}") from e
        except _TRANSIENT_EXCEPTIONS as e:
            logger.warning("firestore_transient_error", operation=operation, error=str(e))
            raise StoreUnavailableError(f"Firestore {operation} unavailable: {e}") from e
        except gexc.GoogleAPICallError as e:
            raise StorageError(f"Firestore {operation} failed: {e}") from e

    @_retry_transient
    async def get(self, ref: DocumentRef) -> Optional[dict[str, Any]]:
        snapshot = await self._call("get", self._doc(ref).get())
        return snapshot.to_dict() if snapshot.exists else None

    @_retry_transient
    async def query(
        self,
        collection: str,
        filters: dict[str, Any],
        limit: Optional[int] = None,
    ) -> list[StoredDocument]:
        query = self._client.collection(self._col(collection))
        for field, value in filters.items():
            query = query.where(filter=FieldFilter(field, "==", value))
        if limit is not None:
            query = query.limit(limit)

        async def _collect() -> list[StoredDocument]:
            return [
                StoredDocument(id=snapshot.id, data=snapshot.to_dict() or {})
                async for snapshot in query.stream()
            ]

        return await self._call("query", _collect())

    @_retry_transient
    async def set(
        self,
        ref: DocumentRef,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        await self._call("set", self._doc(ref).set(_encode(data), merge=merge))

    @_retry_transient
    async def delete(self, ref: DocumentRef) -> None:
        await self._call("delete", self._doc(ref).delete())

    @_retry_transient
    async def delete_batch(self, refs: Sequence[DocumentRef]) -> None:
        if len(refs) > self.max_batch_size:
            raise ValueError(f"Batch of {len(refs)} exceeds limit of {self.max_batch_size}")
        batch = self._client.batch()
        for ref in refs:
            batch.delete(self._doc(ref))
        await self._call("delete_batch", batch.commit())

    async def increment(
        self,
        ref: DocumentRef,
        deltas: dict[str, int],
        fields: Optional[dict[str, Any]] = None,
        max_fields: Optional[dict[str, datetime]] = None,
    ) -> None:
        doc_ref = self._doc(ref)

        def _payload(existing: dict[str, Any]) -> dict[str, Any]:
            payload = _encode(fields or {})
            for field, delta in deltas.items():
                payload[field] = firestore.Increment(delta)
            for field, value in (max_fields or {}).items():
                stored = existing.get(field)
                if stored is None or value > stored:
                    payload[field] = value
            return payload

        if not max_fields:
            await self._call("increment", doc_ref.set(_payload({}), merge=True))
            return

        # Firestore has no atomic max; read-compare-write inside a transaction
        @firestore.async_transactional
        async def _apply(transaction: firestore.AsyncTransaction) -> None:
            snapshot = await doc_ref.get(transaction=transaction)
            existing = snapshot.to_dict() if snapshot.exists else {}
            transaction.set(doc_ref, _payload(existing or {}), merge=True)

        await self._call("increment", _apply(self._client.transaction()))

    async def run_transaction(
        self,
        fn: Callable[[StoreTransaction], Awaitable[T]],
    ) -> T:
        @firestore.async_transactional
        async def _run(transaction: firestore.AsyncTransaction) -> T:
            return await fn(_FirestoreTransaction(self, transaction))

        return await self._call("transaction", _run(self._client.transaction()))

    async def close(self) -> None:
        self._client.close()
