"""
Service layer for the soft delete lifecycle.

Documents move Active -> SoftDeleted -> Active through ``soft_delete`` and
``restore``, or SoftDeleted -> Purged through ``permanent_delete`` once the
grace period has elapsed. Each transition commits the document write and its
operation log entry in one atomic batch.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config import get_config
from ..exceptions import (
    AlreadyDeletedError,
    NotDeletedError,
    NotFoundError,
    NotSoftDeletedError,
    RetentionWindowError,
    ValidationError,
)
from ..operation_log import NewOperationLogEntry, OperationLogStore, OperationType
from ..store import DocumentQuery, DocumentSnapshot, DocumentStore, call_store
from ..time_utils import Clock
from .models import (
    DELETED_AT,
    DELETED_BY,
    IS_DELETED,
    UPDATED_AT,
    DeletedItem,
    DeletedItemsPage,
    days_since_deleted,
    is_deleted,
)

logger = logging.getLogger(__name__)


class SoftDeleteService:
    """
    Service for soft deleting, restoring and purging documents.

    Example:
        >>> service = SoftDeleteService(store, log_store, grace_period_days=30)
        >>> await service.soft_delete("videos", "video_42", actor="admin_1")
        >>> await service.permanent_delete("videos", "video_42", "admin_1")
        RetentionWindowError: Item can only be permanently deleted after 30 days
    """

    def __init__(
        self,
        store: DocumentStore,
        log_store: OperationLogStore,
        grace_period_days: Optional[int] = None,
        clock: Optional[Clock] = None,
        collections: Optional[List[str]] = None,
        log_permanent_deletes: Optional[bool] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize the soft delete service.

        Args:
            store: Document store holding business documents
            log_store: Operation log that records every transition
            grace_period_days: Days before permanent delete is allowed
            clock: Source of the current time (defaults to the log store's)
            collections: Collections shown by ``list_deleted`` when none given
            log_permanent_deletes: Record permanent deletes in the log
            timeout: Seconds allowed per store call
        """
        config = get_config()
        self.store = store
        self.log_store = log_store
        self.grace_period_days = (
            grace_period_days
            if grace_period_days is not None
            else config.permanent_delete_grace_days
        )
        self.clock = clock or log_store.clock
        self.collections = list(collections or config.soft_delete_collections)
        self.log_permanent_deletes = (
            log_permanent_deletes
            if log_permanent_deletes is not None
            else config.log_permanent_deletes
        )
        self.timeout = timeout if timeout is not None else config.store_timeout_seconds
        self.default_list_limit = config.default_list_limit
        self.max_list_limit = config.max_list_limit

    async def _load(self, collection: str, doc_id: str) -> DocumentSnapshot:
        if not collection or not doc_id:
            raise ValidationError("collection and id are required")
        snapshot = await call_store(
            self.store.get(collection, doc_id), self.timeout, "read document"
        )
        if snapshot is None:
            raise NotFoundError(collection, doc_id)
        return snapshot

    async def _commit_with_log(
        self,
        collection: str,
        doc_id: str,
        before: Dict[str, Any],
        fields: Dict[str, Any],
        actor: str,
        description: Optional[str],
    ) -> str:
        batch = self.store.batch()
        batch.update(collection, doc_id, fields)
        entry_id = self.log_store.stage(
            batch,
            NewOperationLogEntry(
                target_collection=collection,
                target_doc_id=doc_id,
                operation_type=OperationType.UPDATE,
                before_data=before,
                after_data={**before, **fields},
                operated_by=actor,
                description=description,
            ),
        )
        await call_store(batch.commit(), self.timeout, "commit lifecycle change")
        return entry_id

    async def soft_delete(
        self,
        collection: str,
        doc_id: str,
        actor: str,
        description: Optional[str] = None,
    ) -> str:
        """
        Mark a document deleted and log the change.

        Returns:
            Id of the operation log entry

        Raises:
            NotFoundError: Document does not exist
            AlreadyDeletedError: Document is already soft deleted
        """
        snapshot = await self._load(collection, doc_id)
        if is_deleted(snapshot.data):
            raise AlreadyDeletedError(collection, doc_id)

        now = self.clock()
        entry_id = await self._commit_with_log(
            collection,
            doc_id,
            snapshot.data,
            {IS_DELETED: True, DELETED_AT: now, DELETED_BY: actor, UPDATED_AT: now},
            actor,
            description or f"Soft deleted {collection} document",
        )
        logger.info(f"Soft deleted {collection}/{doc_id} by {actor}")
        return entry_id

    async def restore(
        self, collection: str, doc_id: str, actor: str = "unknown"
    ) -> str:
        """
        Bring a soft-deleted document back to active.

        Returns:
            Id of the operation log entry

        Raises:
            NotFoundError: Document does not exist
            NotDeletedError: Document is not soft deleted
        """
        snapshot = await self._load(collection, doc_id)
        if not is_deleted(snapshot.data):
            raise NotDeletedError(collection, doc_id)

        now = self.clock()
        entry_id = await self._commit_with_log(
            collection,
            doc_id,
            snapshot.data,
            {IS_DELETED: False, DELETED_AT: None, DELETED_BY: None, UPDATED_AT: now},
            actor,
            f"Restored deleted {collection} document",
        )
        logger.info(f"Restored {collection}/{doc_id} by {actor}")
        return entry_id

    def can_permanently_delete(
        self, data: Dict[str, Any], now: Optional[datetime] = None
    ) -> bool:
        """Whether a document is soft deleted and past the grace period."""
        if not is_deleted(data):
            return False
        now = now or self.clock()
        return days_since_deleted(data.get(DELETED_AT), now) >= self.grace_period_days

    async def permanent_delete(
        self, collection: str, doc_id: str, actor: str, force: bool = False
    ) -> Optional[str]:
        """
        Remove a soft-deleted document for good.

        The delete is recorded as a ``delete`` log entry in the same batch as
        the removal unless ``log_permanent_deletes`` is off.

        Args:
            collection: Collection name
            doc_id: Document id
            actor: Who is deleting
            force: Skip the grace period check

        Returns:
            Id of the log entry, or None when permanent deletes are not logged

        Raises:
            NotFoundError: Document does not exist
            NotSoftDeletedError: Document was never soft deleted
            RetentionWindowError: Grace period not elapsed and not forced
        """
        snapshot = await self._load(collection, doc_id)
        if not is_deleted(snapshot.data):
            raise NotSoftDeletedError(collection, doc_id)

        elapsed = days_since_deleted(snapshot.data.get(DELETED_AT), self.clock())
        if elapsed < self.grace_period_days and not force:
            logger.warning(
                f"Refused permanent delete of {collection}/{doc_id}: "
                f"{elapsed} of {self.grace_period_days} days elapsed"
            )
            raise RetentionWindowError(elapsed, self.grace_period_days)

        description = f"Permanently deleted {collection} document"
        if force and elapsed < self.grace_period_days:
            description += " (forced)"

        batch = self.store.batch()
        entry_id = None
        if self.log_permanent_deletes:
            entry_id = self.log_store.stage(
                batch,
                NewOperationLogEntry(
                    target_collection=collection,
                    target_doc_id=doc_id,
                    operation_type=OperationType.DELETE,
                    before_data=snapshot.data,
                    operated_by=actor,
                    description=description,
                ),
            )
        batch.delete(collection, doc_id)
        await call_store(batch.commit(), self.timeout, "permanent delete")

        logger.info(
            f"Permanently deleted {collection}/{doc_id} by {actor} "
            f"after {elapsed} days (force={force})"
        )
        return entry_id

    async def list_deleted(
        self,
        collection: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        newest_first: bool = True,
    ) -> DeletedItemsPage:
        """
        List soft-deleted documents ordered by ``deletedAt``.

        With no collection every configured soft delete collection is merged.
        Paging with a cursor requires a single collection.

        Raises:
            ValidationError: Bad limit, or a cursor without a collection
        """
        if limit is None:
            limit = self.default_list_limit
        if limit < 1:
            raise ValidationError("limit must be at least 1", details={"limit": limit})
        limit = min(limit, self.max_list_limit)
        if cursor and not collection:
            raise ValidationError("A cursor requires a collection")

        now = self.clock()
        items: List[DeletedItem] = []
        for name in [collection] if collection else self.collections:
            # deletedAt is ordered after normalising its stored shape
            query = DocumentQuery(collection=name).where(IS_DELETED, "==", True)
            snapshots = await call_store(
                self.store.query(query), self.timeout, "list deleted documents"
            )
            items.extend(
                DeletedItem.from_document(name, snap.id, snap.data, now)
                for snap in snapshots
            )

        dated = [item for item in items if item.deleted_at is not None]
        undated = [item for item in items if item.deleted_at is None]
        dated.sort(key=lambda item: (item.deleted_at, item.id), reverse=newest_first)
        undated.sort(key=lambda item: item.id)
        items = dated + undated

        if cursor:
            ids = [item.id for item in items]
            if cursor not in ids:
                raise ValidationError(
                    f"Invalid cursor: {cursor}", details={"cursor": cursor}
                )
            items = items[ids.index(cursor) + 1 :]
        items = items[:limit]

        next_cursor = items[-1].id if collection and len(items) == limit else None
        return DeletedItemsPage(items=items, next_cursor=next_cursor)
