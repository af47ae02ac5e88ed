"""PostgreSQL-backed SlotManager using psycopg3 async connections."""

from __future__ import annotations

from typing import Any

import structlog
from structlog.typing import FilteringBoundLogger

from pg_autopilot.config.models import ReplicationSlotsConfig
from pg_autopilot.errors import CreateError, DeleteError, QueryError, UpdateError
from pg_autopilot.slots.models import ReplicationSlot, SlotList

_LIST_SLOTS = """
SELECT slot_name, slot_type, active, coalesce(restart_lsn::text, '')
FROM pg_catalog.pg_replication_slots
WHERE NOT temporary AND slot_type = 'physical' AND starts_with(slot_name::text, %s)
"""


class PostgresSlotManager:
    """Manages physical replication slots on one PostgreSQL instance.

    A fresh connection is opened for every call so that two managers (primary
    and local) never share a connection or any other mutable state.
    """

    def __init__(
        self,
        dsn: str,
        role: str = "local",
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._dsn = dsn
        self._role = role
        self._log = (logger or structlog.get_logger()).bind(
            component="slots", instance=role
        )

    @property
    def role(self) -> str:
        return self._role

    async def _execute(
        self, query: str, params: tuple[Any, ...]
    ) -> list[tuple[Any, ...]]:
        import psycopg

        async with await psycopg.AsyncConnection.connect(
            self._dsn, autocommit=True
        ) as conn:
            cursor = await conn.execute(query, params)
            if cursor.description is None:
                return []
            return await cursor.fetchall()

    async def list(self, pod_name: str, config: ReplicationSlotsConfig) -> SlotList:
        if config.high_availability is None:
            return SlotList()
        prefix = config.high_availability.slot_prefix
        try:
            rows = await self._execute(_LIST_SLOTS, (prefix,))
        except Exception as exc:
            msg = f"listing replication slots on {self._role}: {exc}"
            raise QueryError(msg) from exc

        slots = SlotList(
            items=[
                ReplicationSlot(
                    slot_name=name,
                    slot_type=slot_type,
                    active=bool(active),
                    restart_lsn=restart_lsn,
                )
                for name, slot_type, active, restart_lsn in rows
            ]
        )
        self._log.debug("slots.listed", pod_name=pod_name, slots=sorted(slots.names))
        return slots

    async def create(self, slot: ReplicationSlot) -> None:
        # Reserve WAL right away only when the primary slot has a position
        try:
            await self._execute(
                "SELECT pg_catalog.pg_create_physical_replication_slot(%s, %s)",
                (slot.slot_name, slot.restart_lsn != ""),
            )
        except Exception as exc:
            msg = f"creating replication slot {slot.slot_name} on {self._role}: {exc}"
            raise CreateError(msg, slot.slot_name) from exc
        self._log.info("slots.slot_created", slot=slot.slot_name)

    async def update(self, slot: ReplicationSlot) -> None:
        if not slot.restart_lsn:
            return
        try:
            await self._execute(
                "SELECT pg_catalog.pg_replication_slot_advance(%s, %s)",
                (slot.slot_name, slot.restart_lsn),
            )
        except Exception as exc:
            msg = f"advancing replication slot {slot.slot_name} on {self._role}: {exc}"
            raise UpdateError(msg, slot.slot_name) from exc
        self._log.debug(
            "slots.slot_advanced", slot=slot.slot_name, restart_lsn=slot.restart_lsn
        )

    async def delete(self, slot: ReplicationSlot) -> None:
        # An active slot cannot be dropped; the next pass will try again
        if slot.active:
            self._log.info("slots.slot_active_not_dropped", slot=slot.slot_name)
            return
        try:
            await self._execute(
                "SELECT pg_catalog.pg_drop_replication_slot(%s)",
                (slot.slot_name,),
            )
        except Exception as exc:
            msg = f"dropping replication slot {slot.slot_name} on {self._role}: {exc}"
            raise DeleteError(msg, slot.slot_name) from exc
        self._log.info("slots.slot_dropped", slot=slot.slot_name)
