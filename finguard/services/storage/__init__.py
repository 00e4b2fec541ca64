"""
Storage Services Package

Abstract audit storage interface and the in-memory implementation.
"""

from finguard.services.storage.interface import (
    AuditStorageInterface,
    StorageError,
)
from finguard.services.storage.memory import InMemoryAuditStorage

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    # Exceptions
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
]
