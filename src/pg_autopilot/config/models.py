"""Pydantic configuration models for the operator instance."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field, SecretStr

SERVICE_ACCOUNT_DIR = "/var/run/secrets/kubernetes.io/serviceaccount"


class LogFormat(StrEnum):
    """Supported log renderers."""

    JSON = "json"
    CONSOLE = "console"


class LoggingConfig(BaseModel):
    """structlog output settings."""

    level: str = "info"
    format: LogFormat = LogFormat.JSON


class KubernetesConfig(BaseModel):
    """Kubernetes API server connection settings.

    Defaults target the in-cluster service account.  ``token`` takes
    precedence over ``token_path`` when both are set.
    """

    api_url: str = "https://kubernetes.default.svc"
    token: SecretStr | None = None
    token_path: str | None = f"{SERVICE_ACCOUNT_DIR}/token"
    ca_path: str | None = f"{SERVICE_ACCOUNT_DIR}/ca.crt"
    verify_tls: bool = True
    timeout_seconds: float = Field(default=30.0, gt=0)


class WebhookConfig(BaseModel):
    """Environment under which the admission webhook server works."""

    enabled: bool = True
    # Where the webhook server expects tls.crt / tls.key
    cert_dir: str = "/run/secrets/pg-autopilot/webhook"
    ca_secret_name: str = "pg-autopilot-ca-secret"
    secret_name: str = "pg-autopilot-webhook-cert"
    service_name: str = "pg-autopilot-webhook-service"
    operator_namespace: str = "pg-autopilot-system"
    # Empty name disables caBundle injection for that kind
    mutating_webhook_configuration_name: str = "pg-autopilot-mutating-webhook"
    validating_webhook_configuration_name: str = "pg-autopilot-validating-webhook"
    organization: str = "pg-autopilot"
    ca_validity_days: int = Field(default=90, ge=1)
    certificate_validity_days: int = Field(default=90, ge=1)
    renewal_threshold: float = Field(default=0.9, gt=0, lt=1)
    maintenance_interval_seconds: float = Field(default=3600.0, gt=0)

    @property
    def hostname(self) -> str:
        return f"{self.service_name}.{self.operator_namespace}.svc"


class HighAvailabilityConfig(BaseModel):
    """Replication slot high-availability switch."""

    enabled: bool = True
    slot_prefix: str = Field(default="_cnpg_", min_length=1)


class ReplicationSlotsConfig(BaseModel):
    """Replication slot synchronization settings pushed to the replicator."""

    update_interval_seconds: float = Field(default=30.0, gt=0)
    high_availability: HighAvailabilityConfig | None = HighAvailabilityConfig()

    @property
    def ha_enabled(self) -> bool:
        return self.high_availability is not None and self.high_availability.enabled


class PostgresConfig(BaseModel):
    """Connection strings for the primary and the local instance."""

    primary_dsn: SecretStr | None = None
    local_dsn: SecretStr = SecretStr("host=/var/run/postgresql dbname=postgres")


class OperatorConfig(BaseModel):
    """Top-level configuration for one operator instance."""

    pod_name: str = Field(min_length=1)
    kubernetes: KubernetesConfig = KubernetesConfig()
    webhook: WebhookConfig = WebhookConfig()
    postgres: PostgresConfig = PostgresConfig()
    replication_slots: ReplicationSlotsConfig = ReplicationSlotsConfig()
    logging: LoggingConfig = LoggingConfig()

