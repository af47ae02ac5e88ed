"""SlotManager protocol -- backend-agnostic replication slot operations."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pg_autopilot.config.models import ReplicationSlotsConfig
from pg_autopilot.slots.models import ReplicationSlot, SlotList


@runtime_checkable
class SlotManager(Protocol):
    """Queries and mutates replication slots on one database instance."""

    async def list(self, pod_name: str, config: ReplicationSlotsConfig) -> SlotList:
        """List the managed slots, raising ``QueryError`` on failure."""
        ...

    async def create(self, slot: ReplicationSlot) -> None:
        """Create *slot*, raising ``CreateError`` on failure."""
        ...

    async def update(self, slot: ReplicationSlot) -> None:
        """Align *slot*'s position, raising ``UpdateError`` on failure."""
        ...

    async def delete(self, slot: ReplicationSlot) -> None:
        """Drop *slot*, raising ``DeleteError`` on failure."""
        ...
