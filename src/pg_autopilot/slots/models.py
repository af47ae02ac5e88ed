"""Replication slot snapshot model."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ReplicationSlot:
    """A replication slot as seen on one instance.

    Diffing between instances is by ``slot_name`` only.
    """

    slot_name: str
    slot_type: str = "physical"
    active: bool = False
    restart_lsn: str = ""


@dataclass
class SlotList:
    """Slots listed from one instance during one pass; never cached."""

    items: list[ReplicationSlot] = field(default_factory=list)

    def has(self, slot_name: str) -> bool:
        return any(slot.slot_name == slot_name for slot in self.items)

    @property
    def names(self) -> set[str]:
        return {slot.slot_name for slot in self.items}

    def __len__(self) -> int:
        return len(self.items)
