"""
In-Memory Audit Storage

Bounded, process-local implementation of AuditStorageInterface.
The oldest events are evicted once the capacity is reached.
"""

import asyncio
from collections import deque
from typing import Optional
from uuid import UUID

from finguard.models.audit import AuditEvent
from finguard.services.storage.interface import AuditStorageInterface, StorageError


class InMemoryAuditStorage(AuditStorageInterface):
    """Audit log kept in a ring buffer."""

    def __init__(self, max_events: int = 10000):
        if max_events < 1:
            raise StorageError("max_events must be at least 1")
        self._events: deque[AuditEvent] = deque(maxlen=max_events)
        self._lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        # Created lazily so the storage can be built outside an event loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def append_event(self, event: AuditEvent) -> bool:
        async with self._get_lock():
            self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]

    def __len__(self) -> int:
        return len(self._events)
