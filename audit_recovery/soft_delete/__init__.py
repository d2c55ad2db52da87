"""
Soft Delete Module - two-phase deletion with a permanent delete grace period.
"""

from .models import DeletedItem, DeletedItemsPage, days_since_deleted, is_deleted
from .services import SoftDeleteService

__all__ = [
    "SoftDeleteService",
    "DeletedItem",
    "DeletedItemsPage",
    "days_since_deleted",
    "is_deleted",
]
