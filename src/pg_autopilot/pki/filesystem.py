"""Materialize a secret into a directory for the webhook server."""

from __future__ import annotations

import os
from pathlib import Path

import structlog
from structlog.typing import FilteringBoundLogger

from pg_autopilot.kube.models import SecretRecord

# Holds the resourceVersion of the last secret fully written to the directory
RESOURCE_FILE = "resource"
FILE_MODE = 0o600


def _write_private(path: Path, content: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    with os.fdopen(fd, "wb") as f:
        f.write(content)
    # O_CREAT's mode is ignored for files that already exist
    os.chmod(path, FILE_MODE)


def dump_secret_to_dir(
    secret: SecretRecord,
    cert_dir: str | Path,
    log: FilteringBoundLogger | None = None,
) -> bool:
    """Write every data field of *secret* into *cert_dir*.

    Returns ``False`` without touching anything when the sentinel already
    holds ``secret.resource_version``.  The sentinel is written last, so a
    crash halfway through leaves it stale and forces a full rewrite.
    """
    directory = Path(cert_dir)
    resource_file = directory / RESOURCE_FILE

    if resource_file.exists():
        if resource_file.read_text() == secret.resource_version:
            return False

    directory.mkdir(parents=True, exist_ok=True)
    for name, content in secret.data.items():
        _write_private(directory / name, content)
    _write_private(resource_file, secret.resource_version.encode())

    (log or structlog.get_logger()).info(
        "pki.secret_materialized",
        namespace=secret.namespace,
        name=secret.name,
        cert_dir=str(directory),
        resource_version=secret.resource_version,
    )
    return True
