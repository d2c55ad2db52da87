"""
Abstract interface for the document store collaborator.

The recovery services only need keyed get/set/update/delete, filtered and
ordered queries with an id cursor, and atomic batched writes. Adapters
implement ``DocumentStore``; everything else in the toolkit is written
against this interface.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Dict, List, Literal, Optional, TypeVar

from pydantic import BaseModel, Field

from ..exceptions import StoreUnavailableError, ValidationError

T = TypeVar("T")

FilterOp = Literal["==", "!=", "<", "<=", ">", ">="]


class DocumentSnapshot(BaseModel):
    """A document read from the store."""

    collection: str
    id: str
    data: Dict[str, Any] = Field(default_factory=dict)


class FieldFilter(BaseModel):
    """A single ``field op value`` condition."""

    field: str
    op: FilterOp
    value: Any = None


class DocumentQuery(BaseModel):
    """Query over one collection. Filters are conjunctive."""

    collection: str
    filters: List[FieldFilter] = Field(default_factory=list)
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = Field(None, gt=0)
    start_after: Optional[str] = Field(
        None, description="Id of the last document of the previous page"
    )

    def where(self, field: str, op: FilterOp, value: Any) -> "DocumentQuery":
        return self.model_copy(
            update={
                "filters": [
                    *self.filters,
                    FieldFilter(field=field, op=op, value=value),
                ]
            }
        )


class WriteOperation(BaseModel):
    """One staged write inside a batch."""

    kind: Literal["set", "update", "delete"]
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]] = None


class WriteBatch:
    """Collects writes and commits them as one atomic unit."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self.operations: List[WriteOperation] = []

    def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteBatch":
        """Stage a full overwrite (creates the document if missing)."""
        self.operations.append(
            WriteOperation(kind="set", collection=collection, doc_id=doc_id, data=data)
        )
        return self

    def update(
        self, collection: str, doc_id: str, fields: Dict[str, Any]
    ) -> "WriteBatch":
        """Stage a field merge. The commit fails if the document is missing."""
        self.operations.append(
            WriteOperation(
                kind="update", collection=collection, doc_id=doc_id, data=fields
            )
        )
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        """Stage a delete. Deleting a missing document is a no-op."""
        self.operations.append(
            WriteOperation(kind="delete", collection=collection, doc_id=doc_id)
        )
        return self

    def __len__(self) -> int:
        return len(self.operations)

    async def commit(self) -> None:
        if not self.operations:
            return
        if len(self.operations) > self._store.max_batch_size:
            raise ValidationError(
                f"Batch of {len(self.operations)} writes exceeds the store "
                f"maximum of {self._store.max_batch_size}"
            )
        await self._store.commit(list(self.operations))


class DocumentStore(ABC):
    """Abstract base class for document store adapters."""

    max_batch_size: int = 500

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the backend."""
        pass

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        """
        Read a single document.

        Returns:
            Snapshot or None if the document does not exist
        """
        pass

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Overwrite a document, creating it if needed."""
        pass

    @abstractmethod
    async def update(
        self, collection: str, doc_id: str, fields: Dict[str, Any]
    ) -> None:
        """
        Merge fields into an existing document.

        Raises:
            NotFoundError: If the document does not exist
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Remove a document. Missing documents are ignored."""
        pass

    @abstractmethod
    async def query(self, query: DocumentQuery) -> List[DocumentSnapshot]:
        """Run a filtered, ordered query."""
        pass

    @abstractmethod
    async def commit(self, operations: List[WriteOperation]) -> None:
        """
        Apply all operations atomically.

        Raises:
            NotFoundError: If an update targets a missing document; nothing
                is applied
            StoreUnavailableError: If the backend cannot be reached
        """
        pass


async def call_store(
    awaitable: Awaitable[T], timeout: Optional[float], operation: str = "store call"
) -> T:
    """
    Await a store call, mapping a timeout to ``StoreUnavailableError``.

    Args:
        awaitable: The pending store call
        timeout: Seconds to wait, or None to wait indefinitely
        operation: Label used in the error message

    Raises:
        StoreUnavailableError: If the call does not finish within ``timeout``
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise StoreUnavailableError(
            f"Document store timed out after {timeout}s during {operation}",
            details={"operation": operation, "timeout": timeout},
        ) from exc
