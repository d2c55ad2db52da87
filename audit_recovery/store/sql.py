"""
SQL document store built on SQLAlchemy.

Documents live in a single ``documents`` table keyed by ``(collection, doc_id)``
with the payload in a JSON column. Session work runs on worker threads and each
batch commit is one session transaction.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime, String, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..exceptions import NotFoundError, StoreUnavailableError
from ..time_utils import to_datetime, utcnow
from .base import DocumentQuery, DocumentSnapshot, DocumentStore, WriteOperation
from .query import run_query

Base = declarative_base()

_DATE_TAG = "$date"


class DocumentRow(Base):  # type: ignore[valid-type,misc]
    """SQLAlchemy model for stored documents."""

    __tablename__ = "documents"

    collection = Column(String(100), primary_key=True)
    doc_id = Column(String(200), primary_key=True)
    data = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


def encode_value(value: Any) -> Any:
    """Make a document JSON-safe, tagging datetimes so they round-trip."""
    if isinstance(value, datetime):
        return {_DATE_TAG: to_datetime(value).isoformat()}  # type: ignore[union-attr]
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    """Reverse ``encode_value``."""
    if isinstance(value, dict):
        if set(value) == {_DATE_TAG}:
            return to_datetime(value[_DATE_TAG])
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


class SQLDocumentStore(DocumentStore):
    """SQL database backend for the document store."""

    def __init__(self, connection_string: str, max_batch_size: int = 500):
        """
        Initialize SQL document storage.

        Args:
            connection_string: Database connection string
            max_batch_size: Maximum writes accepted by one batch commit
        """
        self.connection_string = connection_string
        self.max_batch_size = max_batch_size
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None  # type: ignore[type-arg]

    async def initialize(self) -> None:
        """Initialize the database."""
        if self.connection_string.startswith("sqlite"):
            # SQLite doesn't support pool_size and max_overflow; sessions run on
            # worker threads, and an in-memory database must share one connection
            in_memory = self.connection_string in ("sqlite://", "sqlite:///:memory:")
            self.engine = create_engine(
                self.connection_string,
                pool_pre_ping=True,
                connect_args={"check_same_thread": False},
                **({"poolclass": StaticPool} if in_memory else {}),
            )
        else:
            self.engine = create_engine(
                self.connection_string,
                pool_pre_ping=True,
                pool_size=10,
                max_overflow=20,
            )

        try:
            await asyncio.to_thread(Base.metadata.create_all, bind=self.engine)
        except OperationalError as exc:
            raise StoreUnavailableError(f"Cannot initialize store: {exc}") from exc

        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )

    def _session(self) -> Session:
        if self.SessionLocal is None:  # nosec B101
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self.SessionLocal()

    @staticmethod
    def _to_snapshot(row: DocumentRow) -> DocumentSnapshot:
        return DocumentSnapshot(
            collection=row.collection, id=row.doc_id, data=decode_value(row.data)
        )

    def _apply(self, session: Session, op: WriteOperation) -> None:
        row = session.get(DocumentRow, (op.collection, op.doc_id))
        if op.kind == "delete":
            if row is not None:
                session.delete(row)
            return

        if op.kind == "update":
            if row is None:
                raise NotFoundError(op.collection, op.doc_id)
            merged = dict(decode_value(row.data))
            merged.update(op.data or {})
            # Reassign so the JSON column is flagged dirty
            row.data = encode_value(merged)
            row.updated_at = utcnow()
            return

        payload = encode_value(op.data or {})
        if row is None:
            session.add(
                DocumentRow(
                    collection=op.collection,
                    doc_id=op.doc_id,
                    data=payload,
                    updated_at=utcnow(),
                )
            )
        else:
            row.data = payload
            row.updated_at = utcnow()

    def _get_sync(
        self, collection: str, doc_id: str
    ) -> Optional[DocumentSnapshot]:
        with self._session() as session:
            row = session.get(DocumentRow, (collection, doc_id))
            return self._to_snapshot(row) if row is not None else None

    def _query_sync(self, collection: str) -> List[DocumentSnapshot]:
        with self._session() as session:
            rows = session.scalars(
                select(DocumentRow).where(DocumentRow.collection == collection)
            ).all()
            return [self._to_snapshot(row) for row in rows]

    def _commit_sync(self, operations: List[WriteOperation]) -> None:
        with self._session() as session:
            try:
                for op in operations:
                    self._apply(session, op)
                session.commit()
            except Exception:
                session.rollback()
                raise

    async def get(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        try:
            return await asyncio.to_thread(self._get_sync, collection, doc_id)
        except (OperationalError, PoolTimeoutError) as exc:
            raise StoreUnavailableError(f"Store read failed: {exc}") from exc

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        await self.commit(
            [
                WriteOperation(
                    kind="set", collection=collection, doc_id=doc_id, data=data
                )
            ]
        )

    async def update(
        self, collection: str, doc_id: str, fields: Dict[str, Any]
    ) -> None:
        await self.commit(
            [
                WriteOperation(
                    kind="update", collection=collection, doc_id=doc_id, data=fields
                )
            ]
        )

    async def delete(self, collection: str, doc_id: str) -> None:
        await self.commit(
            [WriteOperation(kind="delete", collection=collection, doc_id=doc_id)]
        )

    async def query(self, query: DocumentQuery) -> List[DocumentSnapshot]:
        try:
            snapshots = await asyncio.to_thread(self._query_sync, query.collection)
        except (OperationalError, PoolTimeoutError) as exc:
            raise StoreUnavailableError(f"Store query failed: {exc}") from exc
        return run_query(snapshots, query)

    async def commit(self, operations: List[WriteOperation]) -> None:
        # A commit abandoned by a caller timeout still finishes on its thread
        try:
            await asyncio.to_thread(self._commit_sync, operations)
        except (OperationalError, PoolTimeoutError) as exc:
            raise StoreUnavailableError(f"Store write failed: {exc}") from exc

    async def close(self) -> None:
        if self.engine is not None:
            await asyncio.to_thread(self.engine.dispose)
