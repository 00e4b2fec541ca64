"""Services package."""

from finguard.services.interface import (
    BackendInvoker,
    EscalationHandler,
    FactPackError,
    FactPackProvider,
    HealthProbe,
)
from finguard.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    StorageError,
)

__all__ = [
    # Collaborators
    "BackendInvoker",
    "EscalationHandler",
    "FactPackError",
    "FactPackProvider",
    "HealthProbe",
    # Storage
    "AuditStorageInterface",
    "InMemoryAuditStorage",
    "StorageError",
]
