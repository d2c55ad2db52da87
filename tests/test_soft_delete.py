"""
Tests for the soft delete lifecycle.

Covers soft delete, restore, the permanent delete grace period, atomic
logging of each transition and the deleted items listing.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from audit_recovery.exceptions import (
    AlreadyDeletedError,
    NotDeletedError,
    NotFoundError,
    NotSoftDeletedError,
    RetentionWindowError,
    StoreUnavailableError,
    ValidationError,
)
from audit_recovery.operation_log import OperationLogFilter, OperationLogStore
from audit_recovery.soft_delete import SoftDeleteService, days_since_deleted
from audit_recovery.store import InMemoryDocumentStore

VIDEO = {
    "title": "Opening Talk",
    "startTime": "2024-04-01T10:00:00Z",
    "isDeleted": False,
    "deletedAt": None,
    "deletedBy": None,
    "updatedAt": None,
}


@pytest.fixture
def store():
    return InMemoryDocumentStore(
        initial={
            "videos": {"video_42": dict(VIDEO), "video_7": dict(VIDEO, title="Other")},
            "users": {"u1": {"discordUsername": "neko"}},
        }
    )


@pytest.fixture
def log_store(store, clock):
    return OperationLogStore(store, retention_days=30, clock=clock)


@pytest.fixture
def service(store, log_store):
    return SoftDeleteService(store, log_store, grace_period_days=30)


async def _doc(store, doc_id, collection="videos"):
    snap = await store.get(collection, doc_id)
    return snap.data if snap else None


class TestSoftDelete:
    """Test the soft delete transition."""

    @pytest.mark.asyncio
    async def test_stamps_flags_and_logs(self, service, store, log_store, clock):
        """Test flags are stamped and an update entry holds both snapshots."""
        entry_id = await service.soft_delete("videos", "video_42", actor="admin_1")

        doc = await _doc(store, "video_42")
        assert doc["isDeleted"] is True
        assert doc["deletedAt"] == clock.now
        assert doc["deletedBy"] == "admin_1"
        assert doc["updatedAt"] == clock.now

        entry = await log_store.get(entry_id)
        assert entry.operation_type == "update"
        assert entry.target_doc_id == "video_42"
        assert entry.before_data == VIDEO
        assert entry.after_data == doc

    @pytest.mark.asyncio
    async def test_missing_document(self, service):
        """Test soft deleting a missing document."""
        with pytest.raises(NotFoundError):
            await service.soft_delete("videos", "nope", actor="admin_1")

    @pytest.mark.asyncio
    async def test_already_deleted(self, service, log_store):
        """Test soft deleting twice fails and logs once."""
        await service.soft_delete("videos", "video_42", actor="admin_1")

        with pytest.raises(AlreadyDeletedError):
            await service.soft_delete("videos", "video_42", actor="admin_2")

        page = await log_store.list()
        assert len(page.entries) == 1

    @pytest.mark.asyncio
    async def test_missing_flag_counts_as_active(self, service, store):
        """Test documents without isDeleted can be soft deleted."""
        await service.soft_delete("users", "u1", actor="admin_1")

        assert (await _doc(store, "u1", "users"))["isDeleted"] is True

    @pytest.mark.asyncio
    async def test_failed_commit_leaves_no_trace(self, service, store):
        """Test the document and its log entry fail together."""
        store.commit = AsyncMock(side_effect=StoreUnavailableError("store down"))

        with pytest.raises(StoreUnavailableError):
            await service.soft_delete("videos", "video_42", actor="admin_1")

        assert (await _doc(store, "video_42"))["isDeleted"] is False
        assert store.dump("operationLogs") == {}

    @pytest.mark.asyncio
    async def test_blank_ids_rejected(self, service):
        """Test blank collection or id is a validation error."""
        with pytest.raises(ValidationError):
            await service.soft_delete("videos", "", actor="admin_1")


class TestRestore:
    """Test restoring soft-deleted documents."""

    @pytest.mark.asyncio
    async def test_round_trip(self, service, store, clock):
        """Test soft delete then restore returns the document to its prior state."""
        await service.soft_delete("videos", "video_42", actor="admin_1")
        clock.advance(hours=3)
        await service.restore("videos", "video_42", actor="admin_1")

        doc = await _doc(store, "video_42")
        assert doc["updatedAt"] == clock.now
        assert {k: v for k, v in doc.items() if k != "updatedAt"} == {
            k: v for k, v in VIDEO.items() if k != "updatedAt"
        }

    @pytest.mark.asyncio
    async def test_restore_is_logged(self, service, log_store):
        """Test restore writes an update entry attributed to the actor."""
        await service.soft_delete("videos", "video_42", actor="admin_1")
        await service.restore("videos", "video_42", actor="admin_2")

        page = await log_store.list(OperationLogFilter(operated_by="admin_2"))
        assert len(page.entries) == 1
        assert page.entries[0].before_data["isDeleted"] is True
        assert page.entries[0].after_data["isDeleted"] is False

    @pytest.mark.asyncio
    async def test_restore_active_document(self, service):
        """Test restoring a document that is not deleted."""
        with pytest.raises(NotDeletedError):
            await service.restore("videos", "video_42")

    @pytest.mark.asyncio
    async def test_restore_missing_document(self, service):
        """Test restoring a missing document."""
        with pytest.raises(NotFoundError):
            await service.restore("videos", "nope")


class TestPermanentDelete:
    """Test the gated permanent delete."""

    @pytest.mark.asyncio
    async def test_video_42_scenario(self, service, store, log_store, clock):
        """Test soft delete, a refused purge after 5 days, then a forced purge."""
        await service.soft_delete("videos", "video_42", actor="admin_1")
        page = await log_store.list(OperationLogFilter(docId="video_42"))
        assert len(page.entries) == 1
        assert page.entries[0].operation_type == "update"
        assert (await _doc(store, "video_42"))["isDeleted"] is True

        clock.advance(days=5)
        with pytest.raises(RetentionWindowError) as exc_info:
            await service.permanent_delete("videos", "video_42", "admin_1", force=False)
        assert exc_info.value.days_since_deleted == 5
        assert exc_info.value.details["daysSinceDeleted"] == 5
        assert await _doc(store, "video_42") is not None

        await service.permanent_delete("videos", "video_42", "admin_1", force=True)
        assert await _doc(store, "video_42") is None

    @pytest.mark.asyncio
    async def test_refusal_mutates_nothing(self, service, store, clock):
        """Test a refused purge leaves the document and log untouched."""
        await service.soft_delete("videos", "video_42", actor="admin_1")
        before = await _doc(store, "video_42")
        logs_before = store.dump("operationLogs")

        clock.advance(days=29, hours=23)
        with pytest.raises(RetentionWindowError) as exc_info:
            await service.permanent_delete("videos", "video_42", "admin_1")

        assert exc_info.value.days_since_deleted == 29
        assert await _doc(store, "video_42") == before
        assert store.dump("operationLogs") == logs_before

    @pytest.mark.asyncio
    async def test_allowed_after_grace_period(self, service, store, log_store, clock):
        """Test purge after 30 days logs a delete entry with the document."""
        await service.soft_delete("videos", "video_42", actor="admin_1")
        deleted_doc = await _doc(store, "video_42")
        clock.advance(days=30)

        entry_id = await service.permanent_delete("videos", "video_42", "admin_1")

        assert await _doc(store, "video_42") is None
        entry = await log_store.get(entry_id)
        assert entry.operation_type == "delete"
        assert entry.before_data == deleted_doc
        assert entry.after_data is None

    @pytest.mark.asyncio
    async def test_logging_can_be_disabled(self, store, log_store, clock):
        """Test permanent deletes without a log entry."""
        service = SoftDeleteService(
            store, log_store, grace_period_days=30, log_permanent_deletes=False
        )
        await service.soft_delete("videos", "video_42", actor="admin_1")
        count_before = len(store.dump("operationLogs"))

        assert await service.permanent_delete("videos", "video_42", "a", force=True) is None
        assert len(store.dump("operationLogs")) == count_before

    @pytest.mark.asyncio
    async def test_active_document_refused(self, service, store):
        """Test active documents must be soft deleted first."""
        with pytest.raises(NotSoftDeletedError):
            await service.permanent_delete("videos", "video_42", "admin_1", force=True)
        assert await _doc(store, "video_42") is not None

    @pytest.mark.asyncio
    async def test_missing_deleted_at_counts_as_zero_days(self, store, log_store):
        """Test a deleted document without deletedAt is inside the window."""
        await store.set("videos", "legacy", {"isDeleted": True})
        service = SoftDeleteService(store, log_store, grace_period_days=1)

        with pytest.raises(RetentionWindowError) as exc_info:
            await service.permanent_delete("videos", "legacy", "admin_1")
        assert exc_info.value.days_since_deleted == 0

    @pytest.mark.asyncio
    async def test_short_grace_period(self, store, log_store, clock):
        """Test an injected grace period is honoured."""
        service = SoftDeleteService(store, log_store, grace_period_days=2)
        await service.soft_delete("videos", "video_42", actor="admin_1")
        clock.advance(days=2)

        await service.permanent_delete("videos", "video_42", "admin_1")
        assert await _doc(store, "video_42") is None

    def test_can_permanently_delete(self, service, clock):
        """Test the eligibility helper."""
        deleted_at = clock.now - timedelta(days=31)

        assert service.can_permanently_delete(
            {"isDeleted": True, "deletedAt": deleted_at}
        )
        assert not service.can_permanently_delete({"isDeleted": True})
        assert not service.can_permanently_delete({"deletedAt": deleted_at})


class TestListDeleted:
    """Test the deleted items listing."""

    @pytest.mark.asyncio
    async def test_sorted_with_days_since_deleted(self, service, clock):
        """Test newest first by default and oldest first on request."""
        await service.soft_delete("videos", "video_7", actor="admin_1")
        clock.advance(days=3)
        await service.soft_delete("videos", "video_42", actor="admin_2")
        clock.advance(days=1)

        page = await service.list_deleted("videos")
        assert [i.id for i in page.items] == ["video_42", "video_7"]
        assert [i.days_since_deleted for i in page.items] == [1, 4]
        assert page.items[0].label == "Opening Talk"
        assert page.items[0].deleted_by == "admin_2"

        page = await service.list_deleted("videos", newest_first=False)
        assert [i.id for i in page.items] == ["video_7", "video_42"]

    @pytest.mark.asyncio
    async def test_merges_collections(self, service, clock):
        """Test listing across every soft delete collection."""
        await service.soft_delete("users", "u1", actor="admin_1")
        clock.advance(days=1)
        await service.soft_delete("videos", "video_42", actor="admin_1")

        page = await service.list_deleted()
        assert [(i.collection, i.id) for i in page.items] == [
            ("videos", "video_42"),
            ("users", "u1"),
        ]
        assert page.items[1].label == "neko"
        assert page.total == 2
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_paging_within_collection(self, service, clock):
        """Test nextCursor is returned when the page is full."""
        await service.soft_delete("videos", "video_7", actor="admin_1")
        clock.advance(days=1)
        await service.soft_delete("videos", "video_42", actor="admin_1")

        first = await service.list_deleted("videos", limit=1)
        assert [i.id for i in first.items] == ["video_42"]
        assert first.next_cursor == "video_42"

        second = await service.list_deleted("videos", limit=1, cursor=first.next_cursor)
        assert [i.id for i in second.items] == ["video_7"]

    @pytest.mark.asyncio
    async def test_unknown_deleter(self, service, store):
        """Test deletedBy falls back to unknown."""
        await store.set("videos", "legacy", {"isDeleted": True, "title": "Old"})

        page = await service.list_deleted("videos")
        assert page.items[0].deleted_by == "unknown"

    @pytest.mark.parametrize(
        "legacy_deleted_at",
        ["2024-04-01T00:00:00Z", {"_seconds": 1711929600}],
    )
    @pytest.mark.asyncio
    async def test_mixed_timestamp_shapes(self, service, store, legacy_deleted_at):
        """Test string and seconds-map timestamps sort alongside datetimes."""
        await store.set(
            "videos",
            "legacy",
            {"title": "Old", "isDeleted": True, "deletedAt": legacy_deleted_at},
        )
        await service.soft_delete("videos", "video_42", actor="admin_1")

        page = await service.list_deleted("videos")
        assert [i.id for i in page.items] == ["video_42", "legacy"]
        assert page.items[1].days_since_deleted == 30

        page = await service.list_deleted("videos", newest_first=False)
        assert [i.id for i in page.items] == ["legacy", "video_42"]

        merged = await service.list_deleted()
        assert [i.id for i in merged.items] == ["video_42", "legacy"]

    @pytest.mark.asyncio
    async def test_unknown_cursor(self, service):
        """Test a cursor naming no deleted item is rejected."""
        await service.soft_delete("videos", "video_42", actor="admin_1")

        with pytest.raises(ValidationError):
            await service.list_deleted("videos", cursor="nope")

    @pytest.mark.asyncio
    async def test_cursor_requires_collection(self, service):
        """Test a cursor without a collection is rejected."""
        with pytest.raises(ValidationError):
            await service.list_deleted(cursor="video_42")

    @pytest.mark.asyncio
    async def test_limit_below_one(self, service):
        """Test a zero limit is rejected."""
        with pytest.raises(ValidationError):
            await service.list_deleted("videos", limit=0)


class TestDaysSinceDeleted:
    """Test the day counting helper."""

    def test_floors_partial_days(self, clock):
        """Test partial days are floored."""
        assert days_since_deleted(clock.now - timedelta(days=4, hours=23), clock.now) == 4

    def test_accepts_iso_strings(self, clock):
        """Test ISO timestamps are accepted."""
        assert days_since_deleted("2024-04-21T12:00:00Z", clock.now) == 10

    def test_missing_is_zero(self, clock):
        """Test a missing timestamp counts as zero days."""
        assert days_since_deleted(None, clock.now) == 0
