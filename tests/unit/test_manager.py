"""Unit tests for the instance manager wiring both loops together."""

from __future__ import annotations

import asyncio

import pytest
from fakes import FakeSlotManager, InMemorySecretStore, InMemoryWebhookStore, eventually

from pg_autopilot.config.models import (
    OperatorConfig,
    ReplicationSlotsConfig,
    WebhookConfig,
)
from pg_autopilot.manager import InstanceManager
from pg_autopilot.pki.webhook import WebhookCertificateCoordinator
from pg_autopilot.slots.replicator import ReplicationSlotReplicator, ReplicatorState


def _config(**overrides: object) -> OperatorConfig:
    values: dict[str, object] = {
        "pod_name": "cluster-example-2",
        "webhook": {"enabled": False},
        "replication_slots": {"update_interval_seconds": 60},
    }
    values.update(overrides)
    return OperatorConfig.model_validate(values)


class TestWiring:
    def test_nothing_enabled(self):
        manager = InstanceManager(_config())
        assert manager.coordinator is None
        assert manager.replicator is None

    def test_primary_dsn_enables_replicator(self):
        manager = InstanceManager(
            _config(postgres={"primary_dsn": "host=cluster-example-rw"})
        )
        assert isinstance(manager.replicator, ReplicationSlotReplicator)
        assert manager.replicator.state == ReplicatorState.WAITING_FOR_CONFIG

    def test_webhook_enables_coordinator(self):
        manager = InstanceManager(
            _config(webhook={"enabled": True}, kubernetes={"token_path": None})
        )
        assert isinstance(manager.coordinator, WebhookCertificateCoordinator)


@pytest.mark.asyncio
class TestRun:
    async def test_run_until_stopped(self, tmp_path):
        config = _config()
        manager = InstanceManager(config)
        secrets, webhooks = InMemorySecretStore(), InMemoryWebhookStore()
        manager.coordinator = WebhookCertificateCoordinator(
            WebhookConfig(cert_dir=str(tmp_path), operator_namespace="ops"),
            secrets,
            webhooks,
        )
        primary, local = FakeSlotManager("_cnpg_a"), FakeSlotManager("_cnpg_b")
        manager.replicator = ReplicationSlotReplicator(
            primary, local, config.pod_name
        )

        task = asyncio.create_task(manager.run())
        await eventually(lambda: local.names == {"_cnpg_a"})

        assert (tmp_path / "tls.crt").exists()
        assert ("ops", "pg-autopilot-ca-secret") in secrets.records

        manager.stop()
        await asyncio.wait_for(task, timeout=2)
        assert manager.replicator.state == ReplicatorState.TERMINATED

    async def test_reload_pushes_slot_config(self):
        config = _config()
        manager = InstanceManager(config)
        primary, local = FakeSlotManager("_cnpg_a"), FakeSlotManager()
        manager.replicator = ReplicationSlotReplicator(
            primary, local, config.pod_name
        )

        task = asyncio.create_task(manager.run())
        await eventually(lambda: manager.replicator.passes == 1)
        manager.reload(ReplicationSlotsConfig(high_availability=None))
        await eventually(lambda: manager.replicator.state == ReplicatorState.IDLE)

        manager.stop()
        await asyncio.wait_for(task, timeout=2)

    async def test_failed_initial_setup_still_shuts_down(self, tmp_path):
        config = _config()
        manager = InstanceManager(config)
        secrets = InMemorySecretStore()
        secrets.get_error = RuntimeError("api server down")
        manager.coordinator = WebhookCertificateCoordinator(
            WebhookConfig(cert_dir=str(tmp_path)), secrets, InMemoryWebhookStore()
        )

        with pytest.raises(RuntimeError):
            await manager.run()
