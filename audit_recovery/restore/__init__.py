"""
Restore Module - log replay onto target documents.
"""

from .engine import RestoreEngine, RestorePreview

__all__ = ["RestoreEngine", "RestorePreview"]
