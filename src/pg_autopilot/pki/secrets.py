"""Conversion between key pairs and secret records."""

from __future__ import annotations

from pg_autopilot.errors import MalformedDataError
from pg_autopilot.kube.models import (
    CA_CERT_KEY,
    CA_PRIVATE_KEY_KEY,
    TLS_CERT_KEY,
    TLS_PRIVATE_KEY_KEY,
    SecretRecord,
)
from pg_autopilot.pki.certs import KeyPair, LeafKeyPair


def _field(secret: SecretRecord, key: str) -> bytes:
    value = secret.data.get(key)
    if not value:
        msg = f"Secret {secret.namespace}/{secret.name} is missing '{key}'"
        raise MalformedDataError(msg)
    return value


def generate_ca_secret(pair: KeyPair, namespace: str, name: str) -> SecretRecord:
    return SecretRecord(
        namespace=namespace,
        name=name,
        data={CA_CERT_KEY: pair.certificate, CA_PRIVATE_KEY_KEY: pair.private_key},
    )


def generate_server_secret(pair: KeyPair, namespace: str, name: str) -> SecretRecord:
    return SecretRecord(
        namespace=namespace,
        name=name,
        data={TLS_CERT_KEY: pair.certificate, TLS_PRIVATE_KEY_KEY: pair.private_key},
    )


def parse_ca_secret(secret: SecretRecord) -> KeyPair:
    """Decode the authority pair stored in *secret*.

    Only presence is checked here; the PEM bytes are validated lazily by the
    pair's own parse methods.
    """
    return KeyPair(
        private_key=_field(secret, CA_PRIVATE_KEY_KEY),
        certificate=_field(secret, CA_CERT_KEY),
    )


def parse_server_secret(secret: SecretRecord) -> LeafKeyPair:
    return LeafKeyPair(
        private_key=_field(secret, TLS_PRIVATE_KEY_KEY),
        certificate=_field(secret, TLS_CERT_KEY),
    )
