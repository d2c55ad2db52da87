"""
Cleanup Module - stale record search and batch soft delete.
"""

from .models import BatchSoftDeleteResult, CleanupCandidate, CollectionKind
from .scanner import CleanupScanner

__all__ = [
    "CleanupScanner",
    "CleanupCandidate",
    "CollectionKind",
    "BatchSoftDeleteResult",
]
