"""Records exchanged with the orchestration API."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

CA_CERT_KEY = "ca.crt"
CA_PRIVATE_KEY_KEY = "ca.key"
TLS_CERT_KEY = "tls.crt"
TLS_PRIVATE_KEY_KEY = "tls.key"


class WebhookKind(StrEnum):
    """Admission webhook configuration kinds."""

    MUTATING = "mutating"
    VALIDATING = "validating"

    @property
    def resource(self) -> str:
        return f"{self.value}webhookconfigurations"


@dataclass
class SecretRecord:
    """A named byte-map record.

    ``resource_version`` is an opaque change token: the store rejects an
    update carrying a stale one and assigns a new one on every write.
    ``raw`` keeps the object as read so that an update only replaces data.
    """

    namespace: str
    name: str
    data: dict[str, bytes] = field(default_factory=dict)
    resource_version: str = ""
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class WebhookConfiguration:
    """An admission webhook configuration and its ordered webhook entries.

    Entries are kept as raw API dicts so that fields other than the CA
    bundle survive a read-modify-write untouched.
    """

    kind: WebhookKind
    name: str
    webhooks: list[dict[str, Any]] = field(default_factory=list)
    resource_version: str = ""
    raw: dict[str, Any] = field(default_factory=dict, repr=False)
