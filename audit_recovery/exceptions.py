"""
Exceptions for recovery operations.

Every error carries a ``status_code`` so the administrative surface can map it
to a transport response without inspecting messages. Only
``StoreUnavailableError`` is safe to retry, and only as a whole operation.
"""

from typing import Any, Dict, List, Optional


class RecoveryError(Exception):
    """Base exception for audit log and soft delete operations."""

    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details: Dict[str, Any] = details or {}
        super().__init__(message)


class ValidationError(RecoveryError):
    """Raised when input is malformed. Always raised before any store access."""

    status_code = 400


class EmptyInputError(ValidationError):
    """Raised when a batch operation receives no ids."""

    def __init__(self, field: str = "ids"):
        super().__init__(f"No {field} provided", details={"field": field})


class NotFoundError(RecoveryError):
    """Raised when a document or log entry does not exist."""

    status_code = 404

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(
            f"{collection}/{doc_id} not found",
            details={"collection": collection, "id": doc_id},
        )


class AlreadyDeletedError(RecoveryError):
    """Raised when attempting to soft delete an already deleted document."""

    status_code = 409

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(
            f"{collection}/{doc_id} is already deleted",
            details={"collection": collection, "id": doc_id},
        )


class NotDeletedError(RecoveryError):
    """Raised when attempting to restore a document that is not deleted."""

    status_code = 409

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(
            f"{collection}/{doc_id} is not deleted and cannot be restored",
            details={"collection": collection, "id": doc_id},
        )


class NotSoftDeletedError(RecoveryError):
    """Raised when permanent deletion is attempted on an active document."""

    status_code = 409

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(
            f"{collection}/{doc_id} must be soft-deleted first "
            "before permanent deletion",
            details={"collection": collection, "id": doc_id},
        )


class RetentionWindowError(RecoveryError):
    """Raised when the grace period after soft deletion has not elapsed."""

    status_code = 409

    def __init__(self, days_since_deleted: int, required_days: int):
        self.days_since_deleted = days_since_deleted
        self.required_days = required_days
        super().__init__(
            f"Item can only be permanently deleted after {required_days} days "
            f"({days_since_deleted} days elapsed). Use force=true to override.",
            details={
                "daysSinceDeleted": days_since_deleted,
                "requiredDays": required_days,
            },
        )


class UnsupportedOperationError(RecoveryError):
    """Raised when a log entry cannot be replayed."""

    status_code = 400


class StoreUnavailableError(RecoveryError):
    """Raised when the document store times out or cannot be reached."""

    status_code = 503
    retryable = True


class PartialBatchError(RecoveryError):
    """Raised when a sequence of atomic sub-batches fails partway through.

    ``completed_count`` documents in ``completed_batches`` sub-batches were
    committed; ``remaining_ids`` were not touched and can be resubmitted.
    """

    def __init__(
        self,
        completed_count: int,
        completed_batches: int,
        remaining_ids: List[str],
        cause: Exception,
    ):
        self.completed_count = completed_count
        self.completed_batches = completed_batches
        self.remaining_ids = remaining_ids
        self.cause = cause
        super().__init__(
            f"Batch failed after {completed_batches} sub-batches "
            f"({completed_count} documents committed): {cause}",
            details={
                "completedCount": completed_count,
                "completedBatches": completed_batches,
                "remainingIds": remaining_ids,
            },
        )

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return getattr(self.cause, "retryable", False)
