"""Replication slot replicator -- keeps a replica's slots in sync with the primary.

A single long-lived task consumes one event at a time from a merged stream:

* ``ConfigUpdated`` -- pushed by :meth:`ReplicationSlotReplicator.push_config`
* ``Tick``          -- emitted by an internal ticker every update interval
* cancellation      -- :meth:`ReplicationSlotReplicator.stop`, always wins

Configuration is only ever swapped between passes, so passes are strictly
sequential without any lock.  A failed pass is logged and retried on the
next event; a fault escaping the loop body ends the task unless the
restart policy says otherwise.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass, field
from enum import StrEnum

import structlog
from structlog.typing import FilteringBoundLogger

from pg_autopilot.config.models import ReplicationSlotsConfig
from pg_autopilot.errors import AutopilotError
from pg_autopilot.slots.manager import SlotManager

_RESTART_DELAY_SECONDS = 1.0


class ReplicatorState(StrEnum):
    WAITING_FOR_CONFIG = "waiting_for_config"
    IDLE = "idle"
    ACTIVE = "active"
    TERMINATED = "terminated"


class RestartPolicy(StrEnum):
    """What to do when the loop body raises an unexpected exception."""

    NEVER = "never"
    ON_FAILURE = "on_failure"


@dataclass(frozen=True)
class ConfigUpdated:
    config: ReplicationSlotsConfig | None


@dataclass(frozen=True)
class Tick:
    pass


Event = ConfigUpdated | Tick


@dataclass
class SyncResult:
    """Slot names touched on the local instance by one pass."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)


async def synchronize_replication_slots(
    primary: SlotManager,
    local: SlotManager,
    pod_name: str,
    config: ReplicationSlotsConfig,
    log: FilteringBoundLogger | None = None,
) -> SyncResult:
    """Align the slots on *local* with those on *primary*.

    Every primary slot is updated locally, including the ones just created,
    so that slot positions drift back into sync on each pass.  The first
    failing call aborts the pass; nothing is rolled back.
    """
    log = log or structlog.get_logger()
    result = SyncResult()

    in_primary = await primary.list(pod_name, config)
    log.debug("slots.primary_status", slots=sorted(in_primary.names))
    in_local = await local.list(pod_name, config)
    log.debug("slots.local_status", slots=sorted(in_local.names))

    for slot in in_primary.items:
        if not in_local.has(slot.slot_name):
            await local.create(slot)
            result.created.append(slot.slot_name)
        await local.update(slot)
        result.updated.append(slot.slot_name)

    for slot in in_local.items:
        if not in_primary.has(slot.slot_name):
            await local.delete(slot)
            result.deleted.append(slot.slot_name)

    return result


class ReplicationSlotReplicator:
    """Runs :func:`synchronize_replication_slots` whenever configuration or
    the ticker says so, until stopped."""

    def __init__(
        self,
        primary: SlotManager,
        local: SlotManager,
        pod_name: str,
        logger: FilteringBoundLogger | None = None,
        restart_policy: RestartPolicy = RestartPolicy.NEVER,
    ) -> None:
        self._primary = primary
        self._local = local
        self._pod_name = pod_name
        self._restart_policy = restart_policy
        self._log = (logger or structlog.get_logger()).bind(
            component="slot_replicator", pod_name=pod_name
        )
        self._events: asyncio.Queue[Event] = asyncio.Queue()
        self._cancelled = asyncio.Event()
        self._config: ReplicationSlotsConfig | None = None
        self._interval: float | None = None
        self._ticker: asyncio.Task | None = None  # type: ignore[type-arg]
        self._tick_pending = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._state = ReplicatorState.WAITING_FOR_CONFIG
        self.fault: BaseException | None = None
        self.last_result: SyncResult | None = None
        self.passes = 0

    @property
    def state(self) -> ReplicatorState:
        return self._state

    @property
    def config(self) -> ReplicationSlotsConfig | None:
        return self._config

    @property
    def ticking(self) -> bool:
        return self._ticker is not None

    @property
    def interval(self) -> float | None:
        """Period of the running ticker, if any."""
        return self._interval if self._ticker is not None else None

    def push_config(self, config: ReplicationSlotsConfig | None) -> None:
        """Deliver new configuration; it takes effect before the next pass."""
        self._events.put_nowait(ConfigUpdated(config))

    async def start(self) -> None:
        self._task = asyncio.create_task(self._supervise())

    async def stop(self) -> None:
        """Signal cancellation and wait for the in-flight pass to finish."""
        self._cancelled.set()
        if self._task:
            with suppress(asyncio.CancelledError):
                await self._task

    async def wait(self) -> None:
        """Block until the replicator has terminated."""
        if self._task:
            with suppress(asyncio.CancelledError):
                await self._task

    # -- Ticker ----------------------------------------------------------------

    def _start_ticker(self, interval: float) -> None:
        self._stop_ticker()
        self._interval = interval
        self._ticker = asyncio.create_task(self._tick_loop(interval))

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    async def _tick_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            # Ticks are dropped while one is still waiting to be consumed
            if not self._tick_pending:
                self._tick_pending = True
                self._events.put_nowait(Tick())

    # -- Event loop ------------------------------------------------------------

    async def _next_event(self) -> Event | None:
        """Wait for the next event; ``None`` means cancellation."""
        if self._cancelled.is_set():
            return None
        getter = asyncio.ensure_future(self._events.get())
        cancelled = asyncio.ensure_future(self._cancelled.wait())
        try:
            await asyncio.wait(
                {getter, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in (getter, cancelled):
                if not waiter.done():
                    waiter.cancel()
        if self._cancelled.is_set():
            return None
        event = getter.result()
        if isinstance(event, Tick):
            self._tick_pending = False
        return event

    async def _run_loop(self) -> None:
        while True:
            event = await self._next_event()
            if event is None:
                return
            if isinstance(event, ConfigUpdated):
                self._config = event.config
                self._log.info(
                    "slots.config_updated",
                    ha_enabled=event.config is not None and event.config.ha_enabled,
                )

            config = self._config
            # Replication disabled: the ticker resumes with the next config
            if config is None or not config.ha_enabled:
                self._stop_ticker()
                self._state = ReplicatorState.IDLE
                continue

            if self._ticker is None or config.update_interval_seconds != self._interval:
                self._start_ticker(config.update_interval_seconds)
            self._state = ReplicatorState.ACTIVE

            self.passes += 1
            try:
                self.last_result = await synchronize_replication_slots(
                    self._primary,
                    self._local,
                    self._pod_name,
                    config,
                    log=self._log,
                )
            except AutopilotError as exc:
                self._log.error(
                    "slots.sync_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                continue

            result = self.last_result
            if result.created or result.deleted:
                self._log.info(
                    "slots.synchronized",
                    created=result.created,
                    deleted=result.deleted,
                    updated=len(result.updated),
                )

    async def _supervise(self) -> None:
        """Fault boundary around the event loop."""
        self._log.info("slots.replicator_started", policy=self._restart_policy.value)
        try:
            while True:
                try:
                    await self._run_loop()
                    return
                except Exception as exc:
                    self.fault = exc
                    self._log.error(
                        "slots.replicator_crashed", error=str(exc), exc_info=True
                    )
                    if not self._should_restart():
                        return
                self._stop_ticker()
                self._log.warning(
                    "slots.replicator_restarting", delay=_RESTART_DELAY_SECONDS
                )
                await asyncio.sleep(_RESTART_DELAY_SECONDS)
                # Resume with the latest configuration; newer pushes stay queued
                self._events.put_nowait(Tick())
        finally:
            self._stop_ticker()
            self._state = ReplicatorState.TERMINATED
            self._log.info("slots.replicator_terminated")

    def _should_restart(self) -> bool:
        if self._cancelled.is_set():
            return False
        return self._restart_policy == RestartPolicy.ON_FAILURE
