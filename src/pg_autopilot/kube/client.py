"""Async REST wrapper for the Kubernetes API objects the operator touches."""

from __future__ import annotations

import base64
import ssl
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pg_autopilot.config.models import KubernetesConfig
from pg_autopilot.errors import (
    ConflictError,
    KubernetesAPIError,
    MalformedDataError,
    NotFoundError,
)
from pg_autopilot.kube.models import SecretRecord, WebhookConfiguration, WebhookKind

logger = structlog.get_logger()

_ADMISSION_API = "/apis/admissionregistration.k8s.io/v1"


def _read_token(config: KubernetesConfig) -> str | None:
    if config.token is not None:
        return config.token.get_secret_value()
    if config.token_path and Path(config.token_path).exists():
        return Path(config.token_path).read_text().strip()
    return None


def _verify(config: KubernetesConfig) -> ssl.SSLContext | bool:
    if not config.verify_tls:
        return False
    if config.ca_path and Path(config.ca_path).exists():
        return ssl.create_default_context(cafile=config.ca_path)
    return True


def secret_from_api(body: dict[str, Any]) -> SecretRecord:
    """Decode a v1/Secret body into a SecretRecord."""
    meta = body.get("metadata", {})
    try:
        data = {k: base64.b64decode(v) for k, v in (body.get("data") or {}).items()}
    except (TypeError, ValueError) as exc:
        msg = f"Secret {meta.get('namespace')}/{meta.get('name')} has invalid data"
        raise MalformedDataError(msg) from exc
    return SecretRecord(
        namespace=meta.get("namespace", ""),
        name=meta.get("name", ""),
        data=data,
        resource_version=meta.get("resourceVersion", ""),
        raw=body,
    )


def secret_to_api(record: SecretRecord) -> dict[str, Any]:
    """Encode a SecretRecord as a v1/Secret body.

    Fields of a previously read object (type, labels, owner references)
    are sent back unchanged; only data and resourceVersion are replaced.
    """
    body = {"apiVersion": "v1", "kind": "Secret", "type": "Opaque", **record.raw}
    metadata = dict(body.get("metadata") or {})
    metadata["name"] = record.name
    metadata["namespace"] = record.namespace
    if record.resource_version:
        metadata["resourceVersion"] = record.resource_version
    body["metadata"] = metadata
    body["data"] = {k: base64.b64encode(v).decode() for k, v in record.data.items()}
    body.pop("stringData", None)
    return body


def _encode_bundle(value: bytes | str) -> str:
    if isinstance(value, bytes):
        return base64.b64encode(value).decode()
    return value


def _map_ca_bundle(
    webhook: dict[str, Any], convert: Callable[[Any], Any]
) -> dict[str, Any]:
    client_config = webhook.get("clientConfig")
    if not client_config or client_config.get("caBundle") is None:
        return webhook
    bundle = convert(client_config["caBundle"])
    return {**webhook, "clientConfig": {**client_config, "caBundle": bundle}}


def webhook_configuration_from_api(
    kind: WebhookKind, body: dict[str, Any]
) -> WebhookConfiguration:
    """Decode an admission webhook configuration; caBundle values become bytes."""
    meta = body.get("metadata", {})
    try:
        webhooks = [
            _map_ca_bundle(w, base64.b64decode) for w in body.get("webhooks") or []
        ]
    except (TypeError, ValueError) as exc:
        msg = f"{kind.resource}/{meta.get('name')} has an invalid caBundle"
        raise MalformedDataError(msg) from exc
    return WebhookConfiguration(
        kind=kind,
        name=meta.get("name", ""),
        webhooks=webhooks,
        resource_version=meta.get("resourceVersion", ""),
        raw=body,
    )


def webhook_configuration_to_api(config: WebhookConfiguration) -> dict[str, Any]:
    body = dict(config.raw)
    metadata = dict(body.get("metadata") or {})
    metadata["name"] = config.name
    if config.resource_version:
        metadata["resourceVersion"] = config.resource_version
    body["metadata"] = metadata
    body["webhooks"] = [_map_ca_bundle(w, _encode_bundle) for w in config.webhooks]
    return body


class KubernetesClient:
    """Thin async wrapper around the Kubernetes REST API.

    Implements both :class:`~pg_autopilot.kube.base.SecretStore` and
    :class:`~pg_autopilot.kube.base.WebhookConfigurationStore`.  Updates are
    sent with the record's ``resourceVersion`` so the API server rejects
    stale writes with 409, surfaced as :class:`ConflictError`.
    """

    def __init__(
        self,
        config: KubernetesConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or KubernetesConfig()
        headers = {"Accept": "application/json"}
        token = _read_token(self._config)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=self._config.api_url,
            headers=headers,
            timeout=self._config.timeout_seconds,
            verify=_verify(self._config),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> KubernetesClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- Plumbing --------------------------------------------------------------

    async def _request(
        self, method: str, path: str, body: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            resp = await self._client.request(method, path, json=body)
        except httpx.HTTPError as exc:
            msg = f"{method} {path} failed: {exc}"
            raise KubernetesAPIError(msg) from exc
        if resp.status_code == 404:
            raise NotFoundError(f"{path} not found")
        if resp.status_code == 409:
            raise ConflictError(f"{method} {path} conflicted: {resp.text}")
        if resp.is_error:
            raise KubernetesAPIError(
                f"{method} {path} failed: {resp.status_code} {resp.text}",
                status_code=resp.status_code,
            )
        return resp.json()  # type: ignore[no-any-return]

    @retry(
        retry=retry_if_exception_type(KubernetesAPIError),
        stop=stop_after_attempt(10),
        wait=wait_exponential(multiplier=2, max=30),
        reraise=True,
    )
    async def wait_until_ready(self) -> None:
        """Block until the API server answers its version endpoint."""
        await self._request("GET", "/version")
        logger.info("kubernetes.ready", url=self._config.api_url)

    # -- Secrets ---------------------------------------------------------------

    async def get_secret(self, namespace: str, name: str) -> SecretRecord:
        body = await self._request(
            "GET", f"/api/v1/namespaces/{namespace}/secrets/{name}"
        )
        return secret_from_api(body)

    async def create_secret(self, record: SecretRecord) -> SecretRecord:
        body = await self._request(
            "POST",
            f"/api/v1/namespaces/{record.namespace}/secrets",
            secret_to_api(record),
        )
        logger.info(
            "kubernetes.secret_created", namespace=record.namespace, name=record.name
        )
        return secret_from_api(body)

    async def update_secret(self, record: SecretRecord) -> SecretRecord:
        body = await self._request(
            "PUT",
            f"/api/v1/namespaces/{record.namespace}/secrets/{record.name}",
            secret_to_api(record),
        )
        logger.info(
            "kubernetes.secret_updated", namespace=record.namespace, name=record.name
        )
        return secret_from_api(body)

    # -- Admission webhook configurations --------------------------------------

    async def get_webhook_configuration(
        self, kind: WebhookKind, name: str
    ) -> WebhookConfiguration:
        body = await self._request("GET", f"{_ADMISSION_API}/{kind.resource}/{name}")
        return webhook_configuration_from_api(kind, body)

    async def update_webhook_configuration(
        self, config: WebhookConfiguration
    ) -> WebhookConfiguration:
        body = await self._request(
            "PUT",
            f"{_ADMISSION_API}/{config.kind.resource}/{config.name}",
            webhook_configuration_to_api(config),
        )
        return webhook_configuration_from_api(config.kind, body)
