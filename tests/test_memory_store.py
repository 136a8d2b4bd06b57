"""Tests for the in-memory document store contract."""

from datetime import datetime, timezone

import pytest

from ledger_core.errors import NotFoundError
from ledger_core.services.storage import (
    SERVER_TIMESTAMP,
    DocumentExistsError,
    DocumentRef,
    InMemoryDocumentStore,
    StorageError,
    TransactionConflictError,
)

REF = DocumentRef("things", "a")


class TestDocumentRef:
    """Tests for document addressing."""

    def test_rejects_slash_and_empty(self):
        with pytest.raises(ValueError):
            DocumentRef("things", "a/b")
        with pytest.raises(ValueError):
            DocumentRef("things", "")


class TestBasicOperations:
    """Tests for get / set / query / delete."""

    @pytest.mark.asyncio
    async def test_set_get_merge(self, store):
        await store.set(REF, {"x": 1, "y": 2})
        await store.set(REF, {"y": 3}, merge=True)
        assert await store.get(REF) == {"x": 1, "y": 3}

        await store.set(REF, {"z": 1})
        assert await store.get(REF) == {"z": 1}

    @pytest.mark.asyncio
    async def test_get_returns_copy(self, store):
        await store.set(REF, {"items": [1]})
        data = await store.get(REF)
        data["items"].append(2)
        assert await store.get(REF) == {"items": [1]}

    @pytest.mark.asyncio
    async def test_server_timestamp_resolved(self, store):
        await store.set(REF, {"createdAt": SERVER_TIMESTAMP})
        created_at = (await store.get(REF))["createdAt"]
        assert isinstance(created_at, datetime)
        assert created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_query_filters_and_limit(self, store):
        for doc_id, owner in [("a", "l1"), ("b", "l2"), ("c", "l1")]:
            await store.set(DocumentRef("things", doc_id), {"ledgerId": owner})

        matches = await store.query("things", {"ledgerId": "l1"})
        assert [doc.id for doc in matches] == ["a", "c"]
        assert len(await store.query("things", {"ledgerId": "l1"}, limit=1)) == 1
        assert await store.query("missing", {}) == []

    @pytest.mark.asyncio
    async def test_delete_batch_limit(self, store):
        refs = [DocumentRef("things", str(i)) for i in range(store.max_batch_size + 1)]
        with pytest.raises(ValueError):
            await store.delete_batch(refs)

    @pytest.mark.asyncio
    async def test_delete_absent_is_noop(self, store):
        await store.delete(REF)
        await store.delete_batch([REF])
        assert await store.get(REF) is None


class TestIncrement:
    """Tests for atomic increments."""

    @pytest.mark.asyncio
    async def test_increment_creates_and_adds(self, store):
        await store.increment(REF, {"n": 5}, fields={"owner": "l1"})
        await store.increment(REF, {"n": -2})
        assert await store.get(REF) == {"n": 3, "owner": "l1"}

    @pytest.mark.asyncio
    async def test_max_fields_never_regress(self, store):
        later = datetime(2024, 1, 10, tzinfo=timezone.utc)
        earlier = datetime(2024, 1, 5, tzinfo=timezone.utc)
        await store.increment(REF, {"n": 1}, max_fields={"last": later})
        await store.increment(REF, {"n": 1}, max_fields={"last": earlier})
        data = await store.get(REF)
        assert data["last"] == later
        assert data["n"] == 2


class TestTransactions:
    """Tests for optimistic transactions."""

    @pytest.mark.asyncio
    async def test_conflict_reruns_unit(self, store):
        await store.set(REF, {"n": 0})
        attempts = 0

        async def bump(txn):
            nonlocal attempts
            attempts += 1
            data = await txn.get(REF)
            if attempts == 1:
                # Concurrent writer sneaks in after our read
                await store.set(REF, {"n": 100})
            txn.set(REF, {"n": data["n"] + 1})
            return attempts

        assert await store.run_transaction(bump) == 2
        assert await store.get(REF) == {"n": 101}

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        store = InMemoryDocumentStore(max_transaction_attempts=2)

        async def always_loses(txn):
            await txn.get(REF)
            await store.set(REF, {"n": 1})
            txn.set(REF, {"n": 2})

        with pytest.raises(TransactionConflictError):
            await store.run_transaction(always_loses)

    @pytest.mark.asyncio
    async def test_create_existing_applies_nothing(self, store):
        await store.set(REF, {"n": 1})
        other = DocumentRef("things", "b")

        async def unit(txn):
            txn.set(other, {"n": 2})
            txn.create(REF, {"n": 3})

        with pytest.raises(DocumentExistsError):
            await store.run_transaction(unit)
        assert await store.get(other) is None
        assert await store.get(REF) == {"n": 1}

    @pytest.mark.asyncio
    async def test_update_missing_fails(self, store):
        async def unit(txn):
            txn.update(REF, {"n": 1})

        with pytest.raises(NotFoundError):
            await store.run_transaction(unit)

    @pytest.mark.asyncio
    async def test_reads_must_precede_writes(self, store):
        async def unit(txn):
            txn.set(REF, {"n": 1})
            await txn.get(REF)

        with pytest.raises(StorageError):
            await store.run_transaction(unit)
        assert await store.get(REF) is None

    @pytest.mark.asyncio
    async def test_exception_in_unit_propagates_unchanged(self, store):
        async def unit(txn):
            await txn.get(REF)
            raise KeyError("nope")

        with pytest.raises(KeyError):
            await store.run_transaction(unit)
