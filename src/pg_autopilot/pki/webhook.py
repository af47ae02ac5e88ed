"""Webhook certificate coordinator -- CA, server certificate, caBundle.

One :meth:`WebhookCertificateCoordinator.setup` run walks the whole chain:

1. ensure the root CA secret exists and is not expiring
2. ensure the server certificate secret exists and is not expiring,
   re-signing it with the CA key read from step 1
3. dump the server secret into the certificate directory
4. inject the server certificate into the mutating and validating webhook
   configurations, tolerating their absence

:meth:`~WebhookCertificateCoordinator.start` repeats the run on a fixed
schedule so certificates are renewed before they expire.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import timedelta

import structlog
from structlog.typing import FilteringBoundLogger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pg_autopilot.config.models import WebhookConfig
from pg_autopilot.errors import ConflictError, NotFoundError
from pg_autopilot.kube.base import SecretStore, WebhookConfigurationStore
from pg_autopilot.kube.models import (
    CA_CERT_KEY,
    TLS_CERT_KEY,
    SecretRecord,
    WebhookKind,
)
from pg_autopilot.pki.certs import create_ca
from pg_autopilot.pki.filesystem import dump_secret_to_dir
from pg_autopilot.pki.secrets import (
    generate_ca_secret,
    generate_server_secret,
    parse_ca_secret,
    parse_server_secret,
)

# A lost optimistic-concurrency race is retried against a fresh read
_retry_on_conflict = retry(
    retry=retry_if_exception_type(ConflictError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, max=2),
    reraise=True,
)


class WebhookCertificateCoordinator:
    """Keeps the webhook PKI material present, fresh and published."""

    def __init__(
        self,
        config: WebhookConfig,
        secrets: SecretStore,
        webhooks: WebhookConfigurationStore,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._config = config
        self._secrets = secrets
        self._webhooks = webhooks
        self._log = (logger or structlog.get_logger()).bind(
            component="pki", namespace=config.operator_namespace
        )
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    @property
    def busy(self) -> bool:
        """Whether a setup run is in flight."""
        return self._lock.locked()

    # -- Root CA ---------------------------------------------------------------

    @_retry_on_conflict
    async def ensure_root_ca(self) -> SecretRecord:
        """Return the CA secret, creating or renewing it as needed."""
        namespace = self._config.operator_namespace
        name = self._config.ca_secret_name
        try:
            secret = await self._secrets.get_secret(namespace, name)
        except NotFoundError:
            pair = create_ca(
                name,
                organization=self._config.organization,
                validity=timedelta(days=self._config.ca_validity_days),
            )
            created = await self._secrets.create_secret(
                generate_ca_secret(pair, namespace, name)
            )
            self._log.info("pki.ca_created", name=name)
            return created

        return await self._renew_ca_certificate(secret)

    async def _renew_ca_certificate(self, secret: SecretRecord) -> SecretRecord:
        pair = parse_ca_secret(secret)
        if not pair.is_expiring(threshold=self._config.renewal_threshold):
            return secret

        pair.renew_certificate(pair.parse_private_key())
        secret.data[CA_CERT_KEY] = pair.certificate
        updated = await self._secrets.update_secret(secret)
        self._log.info(
            "pki.ca_renewed", name=secret.name, not_after=pair.not_after.isoformat()
        )
        return updated

    # -- Server certificate ----------------------------------------------------

    @_retry_on_conflict
    async def ensure_certificate(self, ca_secret: SecretRecord) -> SecretRecord:
        """Return the webhook server secret, creating or renewing it as needed."""
        namespace = self._config.operator_namespace
        name = self._config.secret_name
        try:
            secret = await self._secrets.get_secret(namespace, name)
        except NotFoundError:
            ca_pair = parse_ca_secret(ca_secret)
            pair = ca_pair.create_and_sign_pair(
                self._config.hostname,
                validity=timedelta(days=self._config.certificate_validity_days),
            )
            created = await self._secrets.create_secret(
                generate_server_secret(pair, namespace, name)
            )
            self._log.info(
                "pki.certificate_created", name=name, hostname=self._config.hostname
            )
            return created

        return await self._renew_server_certificate(ca_secret, secret)

    async def _renew_server_certificate(
        self, ca_secret: SecretRecord, secret: SecretRecord
    ) -> SecretRecord:
        pair = parse_server_secret(secret)
        if not pair.is_expiring(threshold=self._config.renewal_threshold):
            return secret

        # The CA may have been renewed moments ago: always use the key in hand
        ca_key = parse_ca_secret(ca_secret).parse_private_key()
        pair.renew_certificate(ca_key)
        secret.data[TLS_CERT_KEY] = pair.certificate
        updated = await self._secrets.update_secret(secret)
        self._log.info(
            "pki.certificate_renewed",
            name=secret.name,
            not_after=pair.not_after.isoformat(),
        )
        return updated

    # -- Publication -----------------------------------------------------------

    def dump_secret_to_dir(self, secret: SecretRecord) -> bool:
        return dump_secret_to_dir(secret, self._config.cert_dir, log=self._log)

    def _configuration_name(self, kind: WebhookKind) -> str:
        if kind == WebhookKind.MUTATING:
            return self._config.mutating_webhook_configuration_name
        return self._config.validating_webhook_configuration_name

    async def inject_ca_bundle(
        self, kind: WebhookKind, tls_secret: SecretRecord
    ) -> None:
        """Overwrite every webhook's caBundle with the server certificate."""
        name = self._configuration_name(kind)
        if not name:
            self._log.debug("pki.ca_bundle_injection_disabled", kind=kind.value)
            return

        config = await self._webhooks.get_webhook_configuration(kind, name)
        bundle = tls_secret.data[TLS_CERT_KEY]
        for webhook in config.webhooks:
            webhook.setdefault("clientConfig", {})["caBundle"] = bundle
        await self._webhooks.update_webhook_configuration(config)
        self._log.info(
            "pki.ca_bundle_injected",
            kind=kind.value,
            name=name,
            webhooks=len(config.webhooks),
        )

    # -- Setup -----------------------------------------------------------------

    async def setup(self) -> None:
        """Run the full PKI chain once; concurrent calls are serialized."""
        async with self._lock:
            ca_secret = await self.ensure_root_ca()
            tls_secret = await self.ensure_certificate(ca_secret)
            # File writes stay off the event loop shared with the replicator
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.dump_secret_to_dir, tls_secret)

            for kind in (WebhookKind.MUTATING, WebhookKind.VALIDATING):
                try:
                    await self.inject_ca_bundle(kind, tls_secret)
                except NotFoundError:
                    self._log.info(
                        "pki.webhook_configuration_not_found",
                        kind=kind.value,
                        name=self._configuration_name(kind),
                    )

    # -- Periodic maintenance --------------------------------------------------

    async def run_maintenance(self) -> bool:
        """One scheduled run.  Returns ``False`` if skipped or failed."""
        if self.busy:
            self._log.warning("pki.maintenance_skipped", reason="run in progress")
            return False

        self._log.info("pki.maintenance_started")
        try:
            await self.setup()
        except Exception as exc:
            self._log.error(
                "pki.maintenance_failed",
                ca_secret=self._config.ca_secret_name,
                secret=self._config.secret_name,
                error=str(exc),
                exc_info=True,
            )
            return False
        return True

    async def start(self) -> None:
        """Schedule :meth:`run_maintenance` every maintenance interval."""
        self._task = asyncio.create_task(self._maintenance_loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task

    async def _maintenance_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.maintenance_interval_seconds)
            await self.run_maintenance()
