"""
Data models for cleanup scans and batch soft deletes.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

SUMMARY_FIELDS = ("title", "name", "eventId", "eventName")


class CollectionKind(str, Enum):
    """How the scanner decides a document is stale."""

    DOCUMENTS = "documents"  # one date field per document
    SLOTS = "slots"  # a list of dated slots per document


class CleanupCandidate(BaseModel):
    """A document older than the cutoff. Derived, never stored."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    id: str
    collection: str
    kind: CollectionKind
    date_field: str = Field(..., alias="dateField")
    date_value: Optional[datetime] = Field(
        None, alias="dateValue", description="Latest stale timestamp"
    )
    summary: Dict[str, Any] = Field(default_factory=dict)

    # Slot collections only
    total_slot_count: Optional[int] = Field(None, alias="totalSlotCount")
    past_slot_count: Optional[int] = Field(None, alias="pastSlotCount")
    future_slot_count: Optional[int] = Field(None, alias="futureSlotCount")

    @staticmethod
    def summarize(data: Dict[str, Any]) -> Dict[str, Any]:
        return {field: data[field] for field in SUMMARY_FIELDS if field in data}


class BatchSoftDeleteResult(BaseModel):
    """Outcome of a batch soft delete."""

    model_config = ConfigDict(populate_by_name=True)

    count: int = Field(0, description="Documents soft deleted")
    batches: int = Field(0, description="Atomic sub-batches committed")
    skipped_ids: List[str] = Field(
        default_factory=list,
        alias="skippedIds",
        description="Ids skipped because they were already deleted",
    )
