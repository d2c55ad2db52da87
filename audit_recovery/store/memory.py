"""In-memory document store, used for tests and dry runs."""

import copy
from typing import Any, Dict, List, Optional

from ..exceptions import NotFoundError
from .base import DocumentQuery, DocumentSnapshot, DocumentStore, WriteOperation
from .query import run_query

Collections = Dict[str, Dict[str, Dict[str, Any]]]


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed store with copy-on-read and all-or-nothing batches."""

    def __init__(
        self, initial: Optional[Collections] = None, max_batch_size: int = 500
    ):
        """
        Initialize the store.

        Args:
            initial: Optional ``{collection: {doc_id: data}}`` seed data
            max_batch_size: Maximum writes accepted by one batch commit
        """
        self._collections: Collections = copy.deepcopy(initial) if initial else {}
        self.max_batch_size = max_batch_size

    async def initialize(self) -> None:
        pass

    def _docs(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    async def get(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        data = self._docs(collection).get(doc_id)
        if data is None:
            return None
        return DocumentSnapshot(
            collection=collection, id=doc_id, data=copy.deepcopy(data)
        )

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._docs(collection)[doc_id] = copy.deepcopy(data)

    async def update(
        self, collection: str, doc_id: str, fields: Dict[str, Any]
    ) -> None:
        docs = self._docs(collection)
        if doc_id not in docs:
            raise NotFoundError(collection, doc_id)
        docs[doc_id].update(copy.deepcopy(fields))

    async def delete(self, collection: str, doc_id: str) -> None:
        self._docs(collection).pop(doc_id, None)

    async def query(self, query: DocumentQuery) -> List[DocumentSnapshot]:
        snapshots = [
            DocumentSnapshot(collection=query.collection, id=doc_id, data=data)
            for doc_id, data in self._docs(query.collection).items()
        ]
        return [
            snap.model_copy(deep=True) for snap in run_query(snapshots, query)
        ]

    async def commit(self, operations: List[WriteOperation]) -> None:
        # Apply to a working copy and swap it in only when every write succeeded
        staged = copy.deepcopy(self._collections)
        for op in operations:
            docs = staged.setdefault(op.collection, {})
            if op.kind == "set":
                docs[op.doc_id] = copy.deepcopy(op.data or {})
            elif op.kind == "update":
                if op.doc_id not in docs:
                    raise NotFoundError(op.collection, op.doc_id)
                docs[op.doc_id].update(copy.deepcopy(op.data or {}))
            else:
                docs.pop(op.doc_id, None)
        self._collections = staged

    def dump(self, collection: str) -> Dict[str, Dict[str, Any]]:
        """Return a copy of every document in a collection."""
        return copy.deepcopy(self._docs(collection))
