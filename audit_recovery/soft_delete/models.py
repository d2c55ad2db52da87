"""
Data models for soft delete listings.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..time_utils import days_between, to_datetime

# Reserved keys the lifecycle manager owns on business documents
IS_DELETED = "isDeleted"
DELETED_AT = "deletedAt"
DELETED_BY = "deletedBy"
UPDATED_AT = "updatedAt"

LABEL_FIELDS = ("title", "name", "discordUsername", "eventName")


def is_deleted(data: Dict[str, Any]) -> bool:
    """A missing ``isDeleted`` key counts as active."""
    return data.get(IS_DELETED) is True


def days_since_deleted(deleted_at: Any, now: datetime) -> int:
    """Whole days since soft deletion. A missing timestamp counts as 0."""
    return max(days_between(deleted_at, now), 0)


class DeletedItem(BaseModel):
    """A soft-deleted document as shown in the deleted items view."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    collection: str
    label: Optional[str] = Field(None, description="Display title or name")
    deleted_at: Optional[datetime] = Field(None, alias="deletedAt")
    deleted_by: str = Field("unknown", alias="deletedBy")
    days_since_deleted: int = Field(0, alias="daysSinceDeleted", ge=0)

    @classmethod
    def from_document(
        cls, collection: str, doc_id: str, data: Dict[str, Any], now: datetime
    ) -> "DeletedItem":
        label = next(
            (str(data[field]) for field in LABEL_FIELDS if data.get(field)), None
        )
        return cls(
            id=doc_id,
            collection=collection,
            label=label,
            deleted_at=to_datetime(data.get(DELETED_AT)),
            deleted_by=data.get(DELETED_BY) or "unknown",
            days_since_deleted=days_since_deleted(data.get(DELETED_AT), now),
        )


class DeletedItemsPage(BaseModel):
    """Page of deleted items."""

    model_config = ConfigDict(populate_by_name=True)

    items: List[DeletedItem] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(None, alias="nextCursor")

    @property
    def total(self) -> int:
        return len(self.items)
