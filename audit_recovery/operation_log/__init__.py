"""
Operation Log Module - immutable, expiring records of admin mutations.
"""

from .models import (
    NewOperationLogEntry,
    OperationLogEntry,
    OperationLogFilter,
    OperationLogPage,
    OperationType,
)
from .store import OperationLogStore

__all__ = [
    "OperationLogStore",
    "OperationLogEntry",
    "NewOperationLogEntry",
    "OperationLogFilter",
    "OperationLogPage",
    "OperationType",
]
