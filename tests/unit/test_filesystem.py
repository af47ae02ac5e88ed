"""Unit tests for secret materialization into the certificate directory."""

from __future__ import annotations

import stat
from pathlib import Path

from pg_autopilot.kube.models import SecretRecord
from pg_autopilot.pki.filesystem import RESOURCE_FILE, dump_secret_to_dir


def _secret(version: str = "100") -> SecretRecord:
    return SecretRecord(
        namespace="ns",
        name="webhook-cert",
        data={"tls.crt": b"CERT", "tls.key": b"KEY"},
        resource_version=version,
    )


def _mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


class TestDumpSecretToDir:
    def test_writes_every_field_and_sentinel(self, tmp_path: Path):
        assert dump_secret_to_dir(_secret(), tmp_path) is True

        assert (tmp_path / "tls.crt").read_bytes() == b"CERT"
        assert (tmp_path / "tls.key").read_bytes() == b"KEY"
        assert (tmp_path / RESOURCE_FILE).read_text() == "100"

    def test_files_are_owner_read_write_only(self, tmp_path: Path):
        (tmp_path / "tls.key").write_bytes(b"old")
        (tmp_path / "tls.key").chmod(0o644)

        dump_secret_to_dir(_secret(), tmp_path)

        for name in ("tls.crt", "tls.key", RESOURCE_FILE):
            assert _mode(tmp_path / name) == 0o600

    def test_unchanged_version_skips_writes(self, tmp_path: Path):
        dump_secret_to_dir(_secret(), tmp_path)
        # A local edit survives because nothing is rewritten
        (tmp_path / "tls.crt").write_bytes(b"TAMPERED")

        assert dump_secret_to_dir(_secret(), tmp_path) is False

        assert (tmp_path / "tls.crt").read_bytes() == b"TAMPERED"
        assert (tmp_path / RESOURCE_FILE).read_text() == "100"

    def test_new_version_rewrites(self, tmp_path: Path):
        dump_secret_to_dir(_secret("100"), tmp_path)
        secret = _secret("101")
        secret.data["tls.crt"] = b"NEW-CERT"

        assert dump_secret_to_dir(secret, tmp_path) is True

        assert (tmp_path / "tls.crt").read_bytes() == b"NEW-CERT"
        assert (tmp_path / RESOURCE_FILE).read_text() == "101"

    def test_stale_sentinel_forces_rewrite(self, tmp_path: Path):
        """A sentinel left behind by an interrupted write never matches."""
        (tmp_path / RESOURCE_FILE).write_text("99")
        (tmp_path / "tls.crt").write_bytes(b"HALF")

        assert dump_secret_to_dir(_secret("100"), tmp_path) is True
        assert (tmp_path / "tls.crt").read_bytes() == b"CERT"

    def test_creates_missing_directory(self, tmp_path: Path):
        target = tmp_path / "certs" / "webhook"

        dump_secret_to_dir(_secret(), target)

        assert (target / "tls.key").read_bytes() == b"KEY"
