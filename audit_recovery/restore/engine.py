"""
Restore engine.

Replays the ``beforeData`` snapshot of an operation log entry onto its target
document. Restores are full overwrites with last-write-wins semantics: there
is no conflict detection against changes made after the entry was written.
Use ``preview`` to inspect the difference first.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import get_config
from ..exceptions import NotFoundError, UnsupportedOperationError, ValidationError
from ..operation_log import (
    NewOperationLogEntry,
    OperationLogEntry,
    OperationLogStore,
    OperationType,
)
from ..soft_delete.models import UPDATED_AT
from ..store import DocumentStore, call_store
from ..time_utils import to_datetime

logger = logging.getLogger(__name__)


class RestorePreview(BaseModel):
    """Read-only comparison of a document with a log entry's snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    log_entry_id: str = Field(..., alias="logEntryId")
    target_collection: str = Field(..., alias="targetCollection")
    target_doc_id: str = Field(..., alias="targetDocId")
    operation_type: str = Field(..., alias="operationType")
    restorable: bool
    reason: Optional[str] = None
    target_exists: bool = Field(..., alias="targetExists")
    modified_since_entry: Optional[bool] = Field(
        None,
        alias="modifiedSinceEntry",
        description="Target updatedAt is later than the entry; None if unknown",
    )
    added: List[str] = Field(default_factory=list, description="Keys to be recreated")
    removed: List[str] = Field(default_factory=list, description="Keys to be dropped")
    changed: List[str] = Field(default_factory=list, description="Keys to be reverted")


class RestoreEngine:
    """Restores documents from operation log snapshots."""

    def __init__(
        self,
        store: DocumentStore,
        log_store: OperationLogStore,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.log_store = log_store
        self.timeout = (
            timeout if timeout is not None else get_config().store_timeout_seconds
        )

    async def _load_entry(self, log_entry_id: str) -> OperationLogEntry:
        if not log_entry_id or not str(log_entry_id).strip():
            raise ValidationError("logEntryId is required")
        entry = await self.log_store.get(log_entry_id)
        if entry is None:
            raise NotFoundError(self.log_store.collection, log_entry_id)
        return entry

    @staticmethod
    def _check_restorable(entry: OperationLogEntry) -> None:
        if entry.operation_type == OperationType.CREATE:
            raise UnsupportedOperationError(
                "Cannot restore a create entry: there is no prior state. "
                "Soft delete the document instead.",
                details={"logEntryId": entry.id, "operationType": "create"},
            )
        if entry.before_data is None:
            raise UnsupportedOperationError(
                f"Log entry {entry.id} has no beforeData to restore",
                details={"logEntryId": entry.id},
            )

    async def restore_from_log(self, log_entry_id: str, actor: str = "unknown") -> str:
        """
        Overwrite the target document with the entry's ``beforeData``.

        A deleted document is recreated at its original id. The restore is
        itself logged as an ``update`` entry in the same batch, so it can be
        undone the same way.

        Returns:
            Id of the restored document

        Raises:
            NotFoundError: Log entry does not exist
            UnsupportedOperationError: Entry is a create or has no snapshot
        """
        entry = await self._load_entry(log_entry_id)
        self._check_restorable(entry)

        collection = entry.target_collection
        doc_id = entry.target_doc_id
        current = await call_store(
            self.store.get(collection, doc_id), self.timeout, "read restore target"
        )

        batch = self.store.batch()
        batch.set(collection, doc_id, entry.before_data or {})
        self.log_store.stage(
            batch,
            NewOperationLogEntry(
                target_collection=collection,
                target_doc_id=doc_id,
                operation_type=OperationType.UPDATE,
                before_data=current.data if current else None,
                after_data=entry.before_data,
                operated_by=actor,
                description=f"Restored from operation log {entry.id}",
            ),
        )
        await call_store(batch.commit(), self.timeout, "restore from log")

        logger.info(
            f"Restored {collection}/{doc_id} from log entry {entry.id} by {actor}"
            + ("" if current else " (document recreated)")
        )
        return doc_id

    async def preview(self, log_entry_id: str) -> RestorePreview:
        """Describe what ``restore_from_log`` would change. Never writes."""
        entry = await self._load_entry(log_entry_id)

        reason = None
        try:
            self._check_restorable(entry)
        except UnsupportedOperationError as exc:
            reason = exc.message

        current = await call_store(
            self.store.get(entry.target_collection, entry.target_doc_id),
            self.timeout,
            "read restore target",
        )
        current_data: Dict[str, Any] = current.data if current else {}
        snapshot: Dict[str, Any] = entry.before_data or {}

        modified: Optional[bool] = None
        if current is not None:
            try:
                updated_at = to_datetime(current_data.get(UPDATED_AT))
            except ValueError:
                updated_at = None
            if updated_at is not None:
                entry_time = to_datetime(entry.timestamp)
                modified = updated_at > entry_time  # type: ignore[operator]

        return RestorePreview(
            log_entry_id=entry.id,
            target_collection=entry.target_collection,
            target_doc_id=entry.target_doc_id,
            operation_type=entry.operation_type,
            restorable=reason is None,
            reason=reason,
            target_exists=current is not None,
            modified_since_entry=modified,
            added=sorted(k for k in snapshot if k not in current_data),
            removed=sorted(k for k in current_data if k not in snapshot),
            changed=sorted(
                k
                for k in snapshot
                if k in current_data and current_data[k] != snapshot[k]
            ),
        )
