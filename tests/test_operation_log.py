"""
Tests for the operation log store.
"""

import asyncio
from datetime import timedelta

import pytest

from audit_recovery.exceptions import StoreUnavailableError, ValidationError
from audit_recovery.operation_log import (
    NewOperationLogEntry,
    OperationLogFilter,
    OperationLogStore,
    OperationType,
)
from audit_recovery.store import InMemoryDocumentStore


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def log_store(store, clock):
    return OperationLogStore(store, retention_days=30, clock=clock)


class SlowStore(InMemoryDocumentStore):
    """Store whose reads never answer in time."""

    async def get(self, collection, doc_id):
        await asyncio.sleep(1)
        return await super().get(collection, doc_id)


class TestAppend:
    """Test writing entries."""

    @pytest.mark.asyncio
    async def test_append_assigns_id_and_expiry(self, log_store, clock):
        """Test id assignment and expiresAt = timestamp + retention."""
        entry_id = await log_store.log_update(
            "videos", "v1", {"title": "A"}, {"title": "B"}, operated_by="admin_1"
        )

        entry = await log_store.get(entry_id)
        assert entry.id == entry_id
        assert entry.timestamp == clock.now
        assert entry.expires_at == clock.now + timedelta(days=30)
        assert entry.operation_type == OperationType.UPDATE
        assert entry.before_data == {"title": "A"}
        assert entry.after_data == {"title": "B"}
        assert entry.operated_by == "admin_1"

    @pytest.mark.asyncio
    async def test_default_descriptions(self, log_store):
        """Test descriptions are derived when omitted."""
        created = await log_store.log_create("videos", "v1", {"title": "A"}, "admin")
        deleted = await log_store.log_delete("users", "u1", {"name": "B"}, "admin")

        assert (await log_store.get(created)).description == "Created videos document"
        assert (await log_store.get(deleted)).description == "Deleted users document"

    @pytest.mark.asyncio
    async def test_stored_with_camel_case_fields(self, log_store, store):
        """Test the stored document layout."""
        entry_id = await log_store.append(
            {
                "targetCollection": "videos",
                "targetDocId": "v1",
                "operationType": "create",
                "afterData": {"title": "A"},
                "operatedBy": "admin",
                "description": "Imported",
            }
        )

        stored = store.dump("operationLogs")[entry_id]
        assert stored["targetCollection"] == "videos"
        assert stored["operationType"] == "create"
        assert stored["beforeData"] is None
        assert "expiresAt" in stored
        assert "id" not in stored

    @pytest.mark.parametrize(
        "entry",
        [
            {"targetDocId": "v1", "operationType": "update"},
            {"targetCollection": "videos", "operationType": "update"},
            {"targetCollection": "videos", "targetDocId": "v1"},
            {"targetCollection": "videos", "targetDocId": "v1", "operationType": "create"},
            {"targetCollection": "videos", "targetDocId": "v1", "operationType": "delete"},
            {"targetCollection": "videos", "targetDocId": "v1", "operationType": "move"},
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_entries_leave_no_trace(self, log_store, store, entry):
        """Test invalid entries raise ValidationError and write nothing."""
        with pytest.raises(ValidationError):
            await log_store.append(entry)

        assert store.dump("operationLogs") == {}

    @pytest.mark.asyncio
    async def test_stage_writes_only_on_commit(self, log_store, store):
        """Test staged entries appear only once the batch commits."""
        batch = store.batch()
        entry_id = log_store.stage(
            batch,
            NewOperationLogEntry(
                target_collection="videos",
                target_doc_id="v1",
                operation_type=OperationType.CREATE,
                after_data={"title": "A"},
            ),
        )
        assert await log_store.get(entry_id) is None

        await batch.commit()
        assert (await log_store.get(entry_id)).operated_by == "unknown"

    def test_retention_must_be_positive(self, store):
        """Test a zero retention window is refused."""
        with pytest.raises(ValueError):
            OperationLogStore(store, retention_days=0)

    @pytest.mark.asyncio
    async def test_timeout_raises_store_unavailable(self, clock):
        """Test a slow store surfaces StoreUnavailableError."""
        log_store = OperationLogStore(SlowStore(), clock=clock, timeout=0.01)

        with pytest.raises(StoreUnavailableError):
            await log_store.get("anything")


class TestList:
    """Test listing entries."""

    async def _populate(self, log_store, clock):
        ids = []
        for collection, doc_id, actor in [
            ("videos", "v1", "alice"),
            ("videos", "v2", "bob"),
            ("users", "u1", "alice"),
            ("videos", "v1", "bob"),
        ]:
            clock.advance(minutes=1)
            ids.append(
                await log_store.log_update(
                    collection, doc_id, {"n": 1}, {"n": 2}, operated_by=actor
                )
            )
        return ids

    @pytest.mark.asyncio
    async def test_newest_first(self, log_store, clock):
        """Test entries are ordered by timestamp descending."""
        ids = await self._populate(log_store, clock)

        page = await log_store.list()
        assert [e.id for e in page.entries] == list(reversed(ids))
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_filters_are_conjunctive(self, log_store, clock):
        """Test combining collection, doc id and actor filters."""
        ids = await self._populate(log_store, clock)

        page = await log_store.list(
            OperationLogFilter(collection="videos", docId="v1", operatedBy="bob")
        )
        assert [e.id for e in page.entries] == [ids[3]]

        page = await log_store.list(OperationLogFilter(operation_type="delete"))
        assert page.entries == []

    @pytest.mark.asyncio
    async def test_paging(self, log_store, clock):
        """Test nextCursor walks through every entry once."""
        ids = await self._populate(log_store, clock)

        first = await log_store.list(limit=3)
        assert len(first.entries) == 3
        assert first.next_cursor == first.entries[-1].id

        second = await log_store.list(limit=3, cursor=first.next_cursor)
        assert [e.id for e in second.entries] == [ids[0]]
        assert second.next_cursor is None

    @pytest.mark.asyncio
    async def test_limit_is_capped(self, store, clock):
        """Test limit is capped at the configured maximum."""
        log_store = OperationLogStore(store, clock=clock, max_list_limit=2)
        await self._populate(log_store, clock)

        page = await log_store.list(limit=100)
        assert len(page.entries) == 2

    @pytest.mark.asyncio
    async def test_limit_below_one(self, log_store):
        """Test a zero limit is a validation error."""
        with pytest.raises(ValidationError):
            await log_store.list(limit=0)


class TestPurge:
    """Test expiry-based and retention-based purge."""

    @pytest.mark.asyncio
    async def test_purge_boundary_and_idempotence(self, log_store, clock):
        """Test expiresAt <= now is purged, later entries kept, second call is 0."""
        start = clock.now
        first = await log_store.log_create("videos", "v1", {"n": 1}, "admin")
        clock.advance(days=1)
        second = await log_store.log_create("videos", "v2", {"n": 1}, "admin")

        now = start + timedelta(days=30)
        assert await log_store.purge_expired(now) == 1
        assert await log_store.get(first) is None
        assert await log_store.get(second) is not None

        assert await log_store.purge_expired(now) == 0

    @pytest.mark.asyncio
    async def test_purge_uses_clock_by_default(self, log_store, clock):
        """Test purge_expired defaults to the injected clock."""
        await log_store.log_create("videos", "v1", {"n": 1}, "admin")

        assert await log_store.purge_expired() == 0
        clock.advance(days=31)
        assert await log_store.purge_expired() == 1

    @pytest.mark.asyncio
    async def test_purge_spans_multiple_batches(self, clock):
        """Test purging more entries than fit in one batch."""
        store = InMemoryDocumentStore(max_batch_size=3)
        log_store = OperationLogStore(store, retention_days=1, clock=clock)
        for i in range(7):
            await log_store.log_create("videos", f"v{i}", {"n": i}, "admin")

        clock.advance(days=2)
        assert await log_store.purge_expired() == 7
        assert store.dump("operationLogs") == {}

    @pytest.mark.asyncio
    async def test_purge_older_than(self, log_store, clock):
        """Test retention-based purge keeps recent entries."""
        old = await log_store.log_create("videos", "v1", {"n": 1}, "admin")
        clock.advance(days=60)
        recent = await log_store.log_create("videos", "v2", {"n": 1}, "admin")
        clock.advance(days=40)

        assert await log_store.purge_older_than(90) == 1
        assert await log_store.get(old) is None
        assert await log_store.get(recent) is not None

    @pytest.mark.parametrize("days", [0, -5, "30", True])
    @pytest.mark.asyncio
    async def test_purge_older_than_rejects_bad_days(self, log_store, days):
        """Test invalid retention periods."""
        with pytest.raises(ValidationError):
            await log_store.purge_older_than(days)
