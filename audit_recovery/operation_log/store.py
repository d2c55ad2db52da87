"""
Operation log store.

Appends, lists and purges ``OperationLogEntry`` records. This is the only
writer of the log collection. Other services stage entries into their own
atomic batch via ``stage`` so that a mutation and its log entry commit
together.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..config import get_config
from ..exceptions import ValidationError
from ..store import DocumentQuery, DocumentStore, WriteBatch, call_store
from ..time_utils import Clock, to_datetime, utcnow
from .models import (
    NewOperationLogEntry,
    OperationLogEntry,
    OperationLogFilter,
    OperationLogPage,
    OperationType,
)

logger = logging.getLogger(__name__)

EntryInput = Union[NewOperationLogEntry, Dict[str, Any]]

_DEFAULT_DESCRIPTIONS = {
    OperationType.CREATE: "Created {collection} document",
    OperationType.UPDATE: "Updated {collection} document",
    OperationType.DELETE: "Deleted {collection} document",
}


class OperationLogStore:
    """
    Append-only store of operation log entries.

    Example:
        >>> log_store = OperationLogStore(store, retention_days=30)
        >>> entry_id = await log_store.log_update(
        ...     "videos", "video_42", before, after, operated_by="admin_1"
        ... )
        >>> page = await log_store.list(OperationLogFilter(docId="video_42"))
    """

    def __init__(
        self,
        store: DocumentStore,
        retention_days: Optional[int] = None,
        clock: Clock = utcnow,
        collection: Optional[str] = None,
        default_list_limit: Optional[int] = None,
        max_list_limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize the log store.

        Args:
            store: Document store holding the log collection
            retention_days: Days until an entry expires (config default)
            clock: Source of the current time
            collection: Log collection name (config default)
            default_list_limit: Page size when none is requested
            max_list_limit: Upper bound on page size
            timeout: Seconds allowed per store call
        """
        config = get_config()
        self.store = store
        self.retention_days = (
            retention_days if retention_days is not None else config.log_retention_days
        )
        if self.retention_days <= 0:
            raise ValueError("retention_days must be positive")
        self.clock = clock
        self.collection = collection or config.log_collection
        self.default_list_limit = default_list_limit or config.default_list_limit
        self.max_list_limit = max_list_limit or config.max_list_limit
        self.timeout = timeout if timeout is not None else config.store_timeout_seconds

    @property
    def retention_window(self) -> timedelta:
        return timedelta(days=self.retention_days)

    def _build(self, entry: EntryInput) -> OperationLogEntry:
        if isinstance(entry, dict):
            try:
                entry = NewOperationLogEntry.model_validate(entry)
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid log entry: {exc}") from exc

        missing = [
            alias
            for alias, value in (
                ("targetCollection", entry.target_collection),
                ("targetDocId", entry.target_doc_id),
                ("operationType", entry.operation_type),
            )
            if not value
        ]
        if missing:
            raise ValidationError(
                f"Log entry is missing {', '.join(missing)}",
                details={"missing": missing},
            )
        if entry.operation_type == OperationType.CREATE and entry.after_data is None:
            raise ValidationError("A create entry requires afterData")
        if entry.operation_type == OperationType.DELETE and entry.before_data is None:
            raise ValidationError("A delete entry requires beforeData")

        now = self.clock()
        return OperationLogEntry(
            id=uuid.uuid4().hex,
            target_collection=entry.target_collection,
            target_doc_id=entry.target_doc_id,
            operation_type=entry.operation_type,
            before_data=entry.before_data,
            after_data=entry.after_data,
            operated_by=entry.operated_by,
            timestamp=now,
            expires_at=now + self.retention_window,
            description=entry.description
            or _DEFAULT_DESCRIPTIONS[OperationType(entry.operation_type)].format(
                collection=entry.target_collection
            ),
        )

    def stage(self, batch: WriteBatch, entry: EntryInput) -> str:
        """
        Validate an entry and add its write to a caller-owned batch.

        Returns:
            The id the entry will have once the batch commits

        Raises:
            ValidationError: If required fields are missing
        """
        built = self._build(entry)
        batch.set(self.collection, built.id, built.to_document())
        return built.id

    async def append(self, entry: EntryInput) -> str:
        """
        Write a single entry.

        Returns:
            The new entry id

        Raises:
            ValidationError: If required fields are missing
            StoreUnavailableError: If the store does not respond in time
        """
        batch = self.store.batch()
        entry_id = self.stage(batch, entry)
        await call_store(batch.commit(), self.timeout, "append log entry")
        logger.debug(f"Appended operation log entry {entry_id}")
        return entry_id

    async def _record(self, batch: Optional[WriteBatch], **fields: Any) -> str:
        entry = NewOperationLogEntry(**fields)
        if batch is not None:
            return self.stage(batch, entry)
        return await self.append(entry)

    async def log_create(
        self,
        collection: str,
        doc_id: str,
        after_data: Dict[str, Any],
        operated_by: str,
        description: Optional[str] = None,
        batch: Optional[WriteBatch] = None,
    ) -> str:
        return await self._record(
            batch,
            target_collection=collection,
            target_doc_id=doc_id,
            operation_type=OperationType.CREATE,
            after_data=after_data,
            operated_by=operated_by,
            description=description,
        )

    async def log_update(
        self,
        collection: str,
        doc_id: str,
        before_data: Optional[Dict[str, Any]],
        after_data: Dict[str, Any],
        operated_by: str,
        description: Optional[str] = None,
        batch: Optional[WriteBatch] = None,
    ) -> str:
        return await self._record(
            batch,
            target_collection=collection,
            target_doc_id=doc_id,
            operation_type=OperationType.UPDATE,
            before_data=before_data,
            after_data=after_data,
            operated_by=operated_by,
            description=description,
        )

    async def log_delete(
        self,
        collection: str,
        doc_id: str,
        before_data: Dict[str, Any],
        operated_by: str,
        description: Optional[str] = None,
        batch: Optional[WriteBatch] = None,
    ) -> str:
        return await self._record(
            batch,
            target_collection=collection,
            target_doc_id=doc_id,
            operation_type=OperationType.DELETE,
            before_data=before_data,
            operated_by=operated_by,
            description=description,
        )

    async def get(self, entry_id: str) -> Optional[OperationLogEntry]:
        """Fetch one entry by id, or None if it does not exist."""
        if not entry_id:
            raise ValidationError("Log entry id is required")
        snapshot = await call_store(
            self.store.get(self.collection, entry_id), self.timeout, "get log entry"
        )
        if snapshot is None:
            return None
        return OperationLogEntry.from_document(snapshot.id, snapshot.data)

    async def list(
        self,
        filters: Optional[OperationLogFilter] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> OperationLogPage:
        """
        List entries newest first.

        Args:
            filters: Conjunctive filter; None lists everything
            limit: Page size, capped at ``max_list_limit``
            cursor: ``nextCursor`` from the previous page

        Raises:
            ValidationError: If ``limit`` is below 1 or the cursor is unknown
        """
        if limit is None:
            limit = self.default_list_limit
        if limit < 1:
            raise ValidationError("limit must be at least 1", details={"limit": limit})
        limit = min(limit, self.max_list_limit)

        filters = filters or OperationLogFilter()
        query = DocumentQuery(
            collection=self.collection,
            order_by="timestamp",
            descending=True,
            limit=limit,
            start_after=cursor or None,
        )
        if filters.collection:
            query = query.where("targetCollection", "==", filters.collection)
        if filters.operation_type:
            query = query.where("operationType", "==", filters.operation_type)
        if filters.doc_id:
            query = query.where("targetDocId", "==", filters.doc_id)
        if filters.operated_by:
            query = query.where("operatedBy", "==", filters.operated_by)

        snapshots = await call_store(
            self.store.query(query), self.timeout, "list log entries"
        )
        entries = [
            OperationLogEntry.from_document(snap.id, snap.data) for snap in snapshots
        ]
        next_cursor = entries[-1].id if len(entries) == limit else None
        return OperationLogPage(entries=entries, next_cursor=next_cursor)

    async def _purge_where(self, field: str, op: Any, value: datetime) -> int:
        deleted = 0
        page_size = self.store.max_batch_size
        while True:
            query = DocumentQuery(collection=self.collection, limit=page_size).where(
                field, op, value
            )
            snapshots = await call_store(
                self.store.query(query), self.timeout, "find purgeable log entries"
            )
            if not snapshots:
                break

            batch = self.store.batch()
            for snap in snapshots:
                batch.delete(self.collection, snap.id)
            await call_store(batch.commit(), self.timeout, "purge log entries")
            deleted += len(snapshots)

            if len(snapshots) < page_size:
                break
        return deleted

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """
        Delete every entry with ``expiresAt <= now``.

        Idempotent: a second call with no new expirations returns 0.

        Returns:
            Number of entries deleted
        """
        now = to_datetime(now) or self.clock()
        deleted = await self._purge_where("expiresAt", "<=", now)
        logger.info(f"Purged {deleted} expired operation log entries")
        return deleted

    async def purge_older_than(
        self, retention_days: int, now: Optional[datetime] = None
    ) -> int:
        """
        Delete entries whose ``timestamp`` is more than ``retention_days`` old.

        Returns:
            Number of entries deleted
        """
        if isinstance(retention_days, bool) or not isinstance(retention_days, int):
            raise ValidationError("retention_days must be an integer")
        if retention_days < 1:
            raise ValidationError("retention_days must be positive")

        now = to_datetime(now) or self.clock()
        cutoff = now - timedelta(days=retention_days)
        deleted = await self._purge_where("timestamp", "<", cutoff)
        logger.info(
            f"Purged {deleted} operation log entries older than {retention_days} days"
        )
        return deleted
