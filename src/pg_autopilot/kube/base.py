"""Store protocols the certificate coordinator depends on."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pg_autopilot.kube.models import SecretRecord, WebhookConfiguration, WebhookKind


@runtime_checkable
class SecretStore(Protocol):
    """Key-value store of secrets with optimistic concurrency."""

    async def get_secret(self, namespace: str, name: str) -> SecretRecord:
        """Return the record, raising ``NotFoundError`` when absent."""
        ...

    async def create_secret(self, record: SecretRecord) -> SecretRecord:
        """Create the record, raising ``ConflictError`` if it already exists."""
        ...

    async def update_secret(self, record: SecretRecord) -> SecretRecord:
        """Replace the record, raising ``ConflictError`` on a stale version."""
        ...


@runtime_checkable
class WebhookConfigurationStore(Protocol):
    """Access to admission webhook configurations."""

    async def get_webhook_configuration(
        self, kind: WebhookKind, name: str
    ) -> WebhookConfiguration:
        """Return the configuration, raising ``NotFoundError`` when absent."""
        ...

    async def update_webhook_configuration(
        self, config: WebhookConfiguration
    ) -> WebhookConfiguration:
        """Persist the configuration, raising ``ConflictError`` on a race."""
        ...
