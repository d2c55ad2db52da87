"""
Cleanup scanner.

Finds documents older than a cutoff and soft deletes a caller-confirmed set
of them in atomic sub-batches. Scanning is read-only and is not logged; only
the resulting batch mutation writes operation log entries.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ..config import RecoveryConfig, get_config
from ..exceptions import (
    AlreadyDeletedError,
    EmptyInputError,
    NotFoundError,
    PartialBatchError,
    ValidationError,
)
from ..operation_log import NewOperationLogEntry, OperationLogStore, OperationType
from ..soft_delete.models import (
    DELETED_AT,
    DELETED_BY,
    IS_DELETED,
    UPDATED_AT,
    is_deleted,
)
from ..store import DocumentQuery, DocumentSnapshot, DocumentStore, call_store
from ..time_utils import Clock, to_datetime
from .models import BatchSoftDeleteResult, CleanupCandidate, CollectionKind

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_SCAN_LIMIT = 100
DEFAULT_SLOT_SCAN_LIMIT = 50


class CleanupScanner:
    """
    Finds stale documents and batch soft deletes them.

    Flat collections are matched on one date field
    (``cleanup_date_fields``). Slot collections (``slot_collections``) hold a
    list of dated slots and report how many of them are past the cutoff.
    """

    def __init__(
        self,
        store: DocumentStore,
        log_store: OperationLogStore,
        config: Optional[RecoveryConfig] = None,
        clock: Optional[Clock] = None,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.log_store = log_store
        self.config = config or get_config()
        self.clock = clock or log_store.clock
        self.timeout = (
            timeout if timeout is not None else self.config.store_timeout_seconds
        )

    def kind_of(self, collection: str) -> CollectionKind:
        """
        Return how a collection is scanned.

        Raises:
            ValidationError: If the collection is not configured for cleanup
        """
        if self.config.is_slot_collection(collection):
            return CollectionKind.SLOTS
        if collection in self.config.cleanup_date_fields:
            return CollectionKind.DOCUMENTS
        raise ValidationError(
            f"Collection {collection!r} is not configured for cleanup",
            details={"collection": collection},
        )

    async def find_stale(
        self,
        collection: str,
        cutoff: Any,
        limit: Optional[int] = None,
        kind: Optional[str] = None,
    ) -> List[CleanupCandidate]:
        """
        Search for documents older than ``cutoff``.

        Stored dates may be datetimes or ISO-8601 strings; unreadable dates
        are skipped with a warning.

        Args:
            collection: Collection to scan
            cutoff: Datetime or ISO-8601 string; earlier is stale
            limit: Maximum documents to scan
            kind: Optional ``documents`` or ``slots``; must match the
                collection's configured kind

        Raises:
            ValidationError: Unknown collection, kind mismatch, bad cutoff or
                limit
        """
        if not collection:
            raise ValidationError("collection is required")
        resolved = self.kind_of(collection)
        if kind is not None and kind not in {k.value for k in CollectionKind}:
            raise ValidationError(f"Unknown cleanup type: {kind!r}")
        if kind is not None and CollectionKind(kind) != resolved:
            raise ValidationError(
                f"Collection {collection!r} is scanned as {resolved.value}, not {kind}"
            )

        try:
            cutoff_dt = to_datetime(cutoff)
        except ValueError as exc:
            raise ValidationError(f"Invalid cutoff: {cutoff!r}") from exc
        if cutoff_dt is None:
            raise ValidationError("cutoff is required")

        if limit is None:
            limit = (
                DEFAULT_SLOT_SCAN_LIMIT
                if resolved == CollectionKind.SLOTS
                else DEFAULT_DOCUMENT_SCAN_LIMIT
            )
        if limit < 1:
            raise ValidationError("limit must be at least 1", details={"limit": limit})
        limit = min(limit, self.config.max_list_limit)

        if resolved == CollectionKind.SLOTS:
            candidates = await self._find_stale_slots(collection, cutoff_dt, limit)
        else:
            candidates = await self._find_stale_documents(collection, cutoff_dt, limit)

        logger.debug(
            f"Cleanup scan of {collection} before {cutoff_dt.isoformat()} "
            f"found {len(candidates)} candidates"
        )
        return candidates

    async def _find_stale_documents(
        self, collection: str, cutoff: datetime, limit: int
    ) -> List[CleanupCandidate]:
        date_field = self.config.cleanup_date_fields[collection]
        query = DocumentQuery(collection=collection).where(IS_DELETED, "!=", True)
        snapshots = await call_store(
            self.store.query(query), self.timeout, "cleanup scan"
        )

        # Dates are compared after coercion so ISO strings and datetimes mix
        dated = []
        for snap in snapshots:
            try:
                value = to_datetime(snap.data.get(date_field))
            except ValueError:
                logger.warning(
                    f"Skipping {collection}/{snap.id} with unreadable {date_field}"
                )
                continue
            if value is not None and value < cutoff:
                dated.append((value, snap))
        dated.sort(key=lambda pair: (pair[0], pair[1].id), reverse=True)

        return [
            CleanupCandidate(
                id=snap.id,
                collection=collection,
                kind=CollectionKind.DOCUMENTS,
                date_field=date_field,
                date_value=value,
                summary=CleanupCandidate.summarize(snap.data),
            )
            for value, snap in dated[:limit]
        ]

    async def _find_stale_slots(
        self, collection: str, cutoff: datetime, limit: int
    ) -> List[CleanupCandidate]:
        layout = self.config.slot_collections[collection]
        query = DocumentQuery(
            collection=collection,
            order_by=layout.order_field,
            descending=True,
            limit=limit,
        ).where(IS_DELETED, "!=", True)
        snapshots = await call_store(
            self.store.query(query), self.timeout, "cleanup slot scan"
        )

        candidates = []
        for snap in snapshots:
            slots = snap.data.get(layout.slots_field) or []
            times = []
            for slot in slots:
                if not isinstance(slot, dict):
                    continue
                try:
                    slot_time = to_datetime(slot.get(layout.slot_time_field))
                except ValueError:
                    logger.warning(
                        f"Skipping slot with unreadable time in {collection}/{snap.id}"
                    )
                    continue
                if slot_time is not None:
                    times.append(slot_time)

            past = [t for t in times if t < cutoff]
            if not past:
                continue
            candidates.append(
                CleanupCandidate(
                    id=snap.id,
                    collection=collection,
                    kind=CollectionKind.SLOTS,
                    date_field=f"{layout.slots_field}.{layout.slot_time_field}",
                    date_value=max(past),
                    summary=CleanupCandidate.summarize(snap.data),
                    total_slot_count=len(slots),
                    past_slot_count=len(past),
                    future_slot_count=len(times) - len(past),
                )
            )
        return candidates

    async def _load_all(
        self, collection: str, ids: Sequence[str]
    ) -> Dict[str, DocumentSnapshot]:
        loaded = {}
        for doc_id in ids:
            snapshot = await call_store(
                self.store.get(collection, doc_id), self.timeout, "read batch document"
            )
            if snapshot is None:
                raise NotFoundError(collection, doc_id)
            loaded[doc_id] = snapshot
        return loaded

    async def batch_soft_delete(
        self,
        collection: str,
        ids: Sequence[str],
        actor: str,
        skip_deleted: bool = False,
    ) -> BatchSoftDeleteResult:
        """
        Soft delete many documents in sequential atomic sub-batches.

        Every id is checked before anything is written. Each sub-batch holds
        the document updates and their log entries, so it is sized to half
        the store's batch limit.

        Args:
            collection: Collection holding the documents
            ids: Document ids; duplicates are ignored
            actor: Who is deleting
            skip_deleted: Report already-deleted ids instead of failing

        Raises:
            EmptyInputError: No ids given
            NotFoundError: An id does not exist (nothing written)
            AlreadyDeletedError: An id is already deleted and
                ``skip_deleted`` is off (nothing written)
            PartialBatchError: A sub-batch failed after earlier ones committed
        """
        if not ids:
            raise EmptyInputError("ids")
        if not collection:
            raise ValidationError("collection is required")
        if any(not isinstance(doc_id, str) or not doc_id for doc_id in ids):
            raise ValidationError("ids must be non-empty strings")
        if self.store.max_batch_size < 2:
            raise ValidationError(
                "Store batch limit must allow at least one document and its log "
                f"entry (got {self.store.max_batch_size})",
                details={"maxBatchSize": self.store.max_batch_size},
            )

        unique_ids = list(dict.fromkeys(ids))
        loaded = await self._load_all(collection, unique_ids)

        pending: List[str] = []
        skipped: List[str] = []
        for doc_id in unique_ids:
            if is_deleted(loaded[doc_id].data):
                if not skip_deleted:
                    raise AlreadyDeletedError(collection, doc_id)
                skipped.append(doc_id)
            else:
                pending.append(doc_id)

        chunk_size = self.store.max_batch_size // 2
        now = self.clock()
        fields = {IS_DELETED: True, DELETED_AT: now, DELETED_BY: actor, UPDATED_AT: now}

        count = 0
        batches = 0
        for start in range(0, len(pending), chunk_size):
            chunk = pending[start : start + chunk_size]
            batch = self.store.batch()
            for doc_id in chunk:
                before = loaded[doc_id].data
                batch.update(collection, doc_id, fields)
                self.log_store.stage(
                    batch,
                    NewOperationLogEntry(
                        target_collection=collection,
                        target_doc_id=doc_id,
                        operation_type=OperationType.UPDATE,
                        before_data=before,
                        after_data={**before, **fields},
                        operated_by=actor,
                        description=f"Cleanup soft delete of {collection} document",
                    ),
                )
            try:
                await call_store(batch.commit(), self.timeout, "batch soft delete")
            except Exception as exc:
                logger.error(
                    f"Batch soft delete of {collection} failed after {batches} "
                    f"sub-batches ({count} documents): {exc}"
                )
                raise PartialBatchError(
                    completed_count=count,
                    completed_batches=batches,
                    remaining_ids=pending[start:],
                    cause=exc,
                ) from exc
            count += len(chunk)
            batches += 1

        logger.info(
            f"Batch soft deleted {count} {collection} documents in {batches} "
            f"sub-batches by {actor} ({len(skipped)} skipped)"
        )
        return BatchSoftDeleteResult(count=count, batches=batches, skipped_ids=skipped)
