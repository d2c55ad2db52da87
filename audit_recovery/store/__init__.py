"""
Document store adapters.

The recovery services depend only on ``DocumentStore``. Two adapters ship with
the toolkit: an in-memory store for tests and dry runs, and a SQLAlchemy store
for SQLite or PostgreSQL.
"""

from typing import Optional

from ..config import RecoveryConfig, StorageBackend, get_config
from .base import (
    DocumentQuery,
    DocumentSnapshot,
    DocumentStore,
    FieldFilter,
    WriteBatch,
    WriteOperation,
    call_store,
)
from .memory import InMemoryDocumentStore
from .sql import SQLDocumentStore


def get_document_store(config: Optional[RecoveryConfig] = None) -> DocumentStore:
    """
    Build the store adapter selected by configuration.

    The returned store is not initialized; callers must await
    ``initialize()`` before use.
    """
    config = config or get_config()

    if config.storage_backend == StorageBackend.MEMORY:
        return InMemoryDocumentStore(max_batch_size=config.store_batch_size)

    if not config.database_url:
        raise ValueError(
            f"database_url is required for the {config.storage_backend.value} backend"
        )
    return SQLDocumentStore(
        config.database_url, max_batch_size=config.store_batch_size
    )


__all__ = [
    "DocumentStore",
    "DocumentSnapshot",
    "DocumentQuery",
    "FieldFilter",
    "WriteBatch",
    "WriteOperation",
    "call_store",
    "InMemoryDocumentStore",
    "SQLDocumentStore",
    "get_document_store",
]
