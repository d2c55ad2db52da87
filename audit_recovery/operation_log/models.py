"""
Data models for the operation log.

Entries are stored with camelCase field names. Snapshots are kept as opaque
mappings so the log has no coupling to business document schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OperationType(str, Enum):
    """Kinds of mutation recorded in the log."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OperationLogEntry(BaseModel):
    """
    Immutable record of one administrative mutation.

    ``beforeData`` is absent for creates and ``afterData`` for deletes.
    """

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, frozen=True)

    id: str = Field(..., description="Unique identifier for the entry")
    target_collection: str = Field(..., alias="targetCollection", min_length=1)
    target_doc_id: str = Field(..., alias="targetDocId", min_length=1)
    operation_type: OperationType = Field(..., alias="operationType")
    before_data: Optional[Dict[str, Any]] = Field(None, alias="beforeData")
    after_data: Optional[Dict[str, Any]] = Field(None, alias="afterData")
    operated_by: str = Field(..., alias="operatedBy", description="Actor id")
    timestamp: datetime = Field(..., description="Time of the mutation")
    expires_at: datetime = Field(
        ..., alias="expiresAt", description="Entry is purgeable from this time"
    )
    description: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        """Return the stored representation (camelCase, without ``id``)."""
        return self.model_dump(by_alias=True, exclude={"id"})

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "OperationLogEntry":
        return cls.model_validate({**data, "id": doc_id})


class NewOperationLogEntry(BaseModel):
    """An entry before the log store assigns its id and expiry."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    target_collection: Optional[str] = Field(None, alias="targetCollection")
    target_doc_id: Optional[str] = Field(None, alias="targetDocId")
    operation_type: Optional[OperationType] = Field(None, alias="operationType")
    before_data: Optional[Dict[str, Any]] = Field(None, alias="beforeData")
    after_data: Optional[Dict[str, Any]] = Field(None, alias="afterData")
    operated_by: str = Field("unknown", alias="operatedBy")
    description: Optional[str] = None


class OperationLogFilter(BaseModel):
    """Conjunctive filter for listing entries. Unset fields match everything."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    collection: Optional[str] = None
    operation_type: Optional[OperationType] = Field(None, alias="operationType")
    doc_id: Optional[str] = Field(None, alias="docId")
    operated_by: Optional[str] = Field(None, alias="operatedBy")

    @field_validator("collection", "doc_id", "operated_by")
    @classmethod
    def blank_is_unset(cls, v: Optional[str]) -> Optional[str]:
        """Treat empty strings from query parameters as no filter."""
        if v is not None and not v.strip():
            return None
        return v


class OperationLogPage(BaseModel):
    """One page of entries, newest first."""

    model_config = ConfigDict(populate_by_name=True)

    entries: List[OperationLogEntry] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(None, alias="nextCursor")
