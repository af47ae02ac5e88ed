"""Instance manager -- runs the PKI maintenance and slot replicator loops."""

from __future__ import annotations

import asyncio

import structlog
from structlog.typing import FilteringBoundLogger

from pg_autopilot.config.models import OperatorConfig, ReplicationSlotsConfig
from pg_autopilot.kube.client import KubernetesClient
from pg_autopilot.pki.webhook import WebhookCertificateCoordinator
from pg_autopilot.slots.postgres import PostgresSlotManager
from pg_autopilot.slots.replicator import ReplicationSlotReplicator, RestartPolicy


class InstanceManager:
    """Owns both background loops for one operator pod.

    Each loop runs on its own task; :meth:`run` only blocks on the stop
    signal.  Components receive a logger bound to this pod.
    """

    def __init__(
        self,
        config: OperatorConfig,
        logger: FilteringBoundLogger | None = None,
        restart_policy: RestartPolicy = RestartPolicy.NEVER,
    ) -> None:
        self._config = config
        self._log = (logger or structlog.get_logger()).bind(pod_name=config.pod_name)
        self._stop = asyncio.Event()
        self._kube: KubernetesClient | None = None
        self.coordinator: WebhookCertificateCoordinator | None = None
        self.replicator: ReplicationSlotReplicator | None = None

        if config.webhook.enabled:
            self._kube = KubernetesClient(config.kubernetes)
            self.coordinator = WebhookCertificateCoordinator(
                config.webhook, self._kube, self._kube, logger=self._log
            )

        if config.postgres.primary_dsn is not None:
            self.replicator = ReplicationSlotReplicator(
                primary=PostgresSlotManager(
                    config.postgres.primary_dsn.get_secret_value(),
                    role="primary",
                    logger=self._log,
                ),
                local=PostgresSlotManager(
                    config.postgres.local_dsn.get_secret_value(),
                    role="local",
                    logger=self._log,
                ),
                pod_name=config.pod_name,
                logger=self._log,
                restart_policy=restart_policy,
            )

    async def run(self) -> None:
        """Start both loops and block until :meth:`stop` is called."""
        try:
            if self.coordinator is not None:
                # The webhook server cannot start without its certificates
                await self.coordinator.setup()
                await self.coordinator.start()
            else:
                self._log.info("manager.webhook_disabled")

            if self.replicator is not None:
                await self.replicator.start()
                self.replicator.push_config(self._config.replication_slots)
            else:
                self._log.info(
                    "manager.slot_replication_disabled", reason="no primary_dsn"
                )

            self._log.info("manager.started")
            await self._stop.wait()
        finally:
            await self._shutdown()

    def stop(self) -> None:
        self._stop.set()

    def reload(self, slots_config: ReplicationSlotsConfig) -> None:
        """Push new replication slot configuration to the running replicator."""
        if self.replicator is not None:
            self.replicator.push_config(slots_config)
            self._log.info("manager.config_reloaded")

    async def _shutdown(self) -> None:
        if self.replicator is not None:
            await self.replicator.stop()
        if self.coordinator is not None:
            await self.coordinator.stop()
        if self._kube is not None:
            await self._kube.close()
        self._log.info("manager.stopped")
