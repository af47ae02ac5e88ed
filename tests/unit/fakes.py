"""In-memory fakes for the store and slot manager protocols."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable

from pg_autopilot.config.models import ReplicationSlotsConfig
from pg_autopilot.errors import ConflictError, NotFoundError
from pg_autopilot.kube.models import SecretRecord, WebhookConfiguration, WebhookKind
from pg_autopilot.slots.models import ReplicationSlot, SlotList


class InMemorySecretStore:
    """SecretStore with resourceVersion compare-and-swap semantics."""

    def __init__(self) -> None:
        self.records: dict[tuple[str, str], SecretRecord] = {}
        self.calls: list[tuple[str, str]] = []
        self.get_error: Exception | None = None
        self.update_conflicts = 0
        self._version = 0

    def _store(self, record: SecretRecord) -> SecretRecord:
        self._version += 1
        stored = SecretRecord(
            namespace=record.namespace,
            name=record.name,
            data=dict(record.data),
            resource_version=str(self._version),
        )
        self.records[(record.namespace, record.name)] = stored
        return copy.deepcopy(stored)

    async def get_secret(self, namespace: str, name: str) -> SecretRecord:
        self.calls.append(("get", name))
        if self.get_error is not None:
            raise self.get_error
        try:
            return copy.deepcopy(self.records[(namespace, name)])
        except KeyError:
            raise NotFoundError(f"{namespace}/{name}") from None

    async def create_secret(self, record: SecretRecord) -> SecretRecord:
        self.calls.append(("create", record.name))
        if (record.namespace, record.name) in self.records:
            raise ConflictError(f"{record.name} exists")
        return self._store(record)

    async def update_secret(self, record: SecretRecord) -> SecretRecord:
        self.calls.append(("update", record.name))
        current = self.records.get((record.namespace, record.name))
        if current is None:
            raise NotFoundError(record.name)
        if self.update_conflicts > 0:
            self.update_conflicts -= 1
            self._version += 1
            current.resource_version = str(self._version)
            raise ConflictError(f"{record.name} modified concurrently")
        if record.resource_version != current.resource_version:
            raise ConflictError(f"{record.name} has a stale resourceVersion")
        return self._store(record)


class InMemoryWebhookStore:
    """WebhookConfigurationStore keyed by (kind, name)."""

    def __init__(self) -> None:
        self.configs: dict[tuple[WebhookKind, str], WebhookConfiguration] = {}
        self.errors: dict[WebhookKind, Exception] = {}
        self.calls: list[tuple[str, WebhookKind]] = []

    def add(self, kind: WebhookKind, name: str, count: int = 2) -> None:
        webhooks = [
            {
                "name": f"hook-{i}.pg-autopilot.io",
                "clientConfig": {"service": {"name": "svc", "namespace": "ns"}},
                "sideEffects": "None",
            }
            for i in range(count)
        ]
        self.configs[(kind, name)] = WebhookConfiguration(
            kind=kind, name=name, webhooks=webhooks, resource_version="1"
        )

    async def get_webhook_configuration(
        self, kind: WebhookKind, name: str
    ) -> WebhookConfiguration:
        self.calls.append(("get", kind))
        if kind in self.errors:
            raise self.errors[kind]
        try:
            return copy.deepcopy(self.configs[(kind, name)])
        except KeyError:
            raise NotFoundError(name) from None

    async def update_webhook_configuration(
        self, config: WebhookConfiguration
    ) -> WebhookConfiguration:
        self.calls.append(("update", config.kind))
        self.configs[(config.kind, config.name)] = copy.deepcopy(config)
        return config


class FakeSlotManager:
    """SlotManager over a dict of slots, recording every call."""

    def __init__(self, *names: str, active: tuple[str, ...] = ()) -> None:
        self.slots: dict[str, ReplicationSlot] = {
            name: ReplicationSlot(
                slot_name=name, active=name in active, restart_lsn="0/3000060"
            )
            for name in names
        }
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[str, list[Exception]] = {}

    def fail(self, op: str, *errors: Exception) -> None:
        self.failures.setdefault(op, []).extend(errors)

    def _maybe_fail(self, op: str) -> None:
        pending = self.failures.get(op)
        if pending:
            raise pending.pop(0)

    @property
    def names(self) -> set[str]:
        return set(self.slots)

    async def list(self, pod_name: str, config: ReplicationSlotsConfig) -> SlotList:
        self.calls.append(("list", pod_name))
        self._maybe_fail("list")
        return SlotList(items=list(self.slots.values()))

    async def create(self, slot: ReplicationSlot) -> None:
        self.calls.append(("create", slot.slot_name))
        self._maybe_fail("create")
        self.slots[slot.slot_name] = slot

    async def update(self, slot: ReplicationSlot) -> None:
        self.calls.append(("update", slot.slot_name))
        self._maybe_fail("update")
        self.slots[slot.slot_name] = slot

    async def delete(self, slot: ReplicationSlot) -> None:
        self.calls.append(("delete", slot.slot_name))
        self._maybe_fail("delete")
        self.slots.pop(slot.slot_name, None)

    def ops(self, op: str) -> list[str]:
        return [name for kind, name in self.calls if kind == op]


async def eventually(
    predicate: Callable[[], bool], timeout: float = 2.0, step: float = 0.005
) -> None:
    """Poll *predicate* until true or fail after *timeout* seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(step)

