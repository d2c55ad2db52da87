"""
Audit Recovery Toolkit

Operation logging, soft delete lifecycle, log-based restore and stale record
cleanup for collection-oriented document stores.
"""

__version__ = "1.0.0"

from .admin import Actor, AdminService, error_response
from .cleanup import BatchSoftDeleteResult, CleanupCandidate, CleanupScanner
from .config import RecoveryConfig, configure, get_config, set_config
from .exceptions import (
    AlreadyDeletedError,
    EmptyInputError,
    NotDeletedError,
    NotFoundError,
    NotSoftDeletedError,
    PartialBatchError,
    RecoveryError,
    RetentionWindowError,
    StoreUnavailableError,
    UnsupportedOperationError,
    ValidationError,
)
from .operation_log import (
    OperationLogEntry,
    OperationLogFilter,
    OperationLogStore,
    OperationType,
)
from .restore import RestoreEngine, RestorePreview
from .soft_delete import DeletedItem, SoftDeleteService
from .store import (
    DocumentStore,
    InMemoryDocumentStore,
    SQLDocumentStore,
    get_document_store,
)

__all__ = [
    # Configuration
    "RecoveryConfig",
    "get_config",
    "set_config",
    "configure",
    # Store
    "DocumentStore",
    "InMemoryDocumentStore",
    "SQLDocumentStore",
    "get_document_store",
    # Services
    "OperationLogStore",
    "SoftDeleteService",
    "RestoreEngine",
    "CleanupScanner",
    "AdminService",
    "Actor",
    "error_response",
    # Models
    "OperationLogEntry",
    "OperationLogFilter",
    "OperationType",
    "DeletedItem",
    "RestorePreview",
    "CleanupCandidate",
    "BatchSoftDeleteResult",
    # Exceptions
    "RecoveryError",
    "ValidationError",
    "EmptyInputError",
    "NotFoundError",
    "AlreadyDeletedError",
    "NotDeletedError",
    "NotSoftDeletedError",
    "RetentionWindowError",
    "UnsupportedOperationError",
    "StoreUnavailableError",
    "PartialBatchError",
]
