"""
Storage engine.
"""

from .backends import JsonFallbackBackend, StorageCapability, VectorBackend
from .database import DatabaseService, StorageError

__all__ = [
    "DatabaseService",
    "JsonFallbackBackend",
    "StorageCapability",
    "StorageError",
    "VectorBackend",
]
