"""Unit tests for the typer CLI."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from pg_autopilot.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _pod_name(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("POD_NAME", "cluster-example-1")


class TestValidate:
    def test_defaults_are_valid(self):
        result = runner.invoke(app, ["validate"])
        assert result.exit_code == 0
        assert "pod_name=cluster-example-1" in result.output
        assert "slot replication will not run" in result.output

    def test_file_overrides(self, tmp_path: Path):
        path = tmp_path / "operator.yaml"
        path.write_text(
            "webhook:\n  enabled: false\n"
            "postgres:\n  primary_dsn: host=cluster-example-rw\n"
        )
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 0
        assert "webhook: disabled" in result.output
        assert "will not run" not in result.output

    def test_missing_file(self, tmp_path: Path):
        result = runner.invoke(app, ["validate", str(tmp_path / "absent.yaml")])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_invalid_config(self, tmp_path: Path):
        path = tmp_path / "operator.yaml"
        path.write_text("replication_slots:\n  update_interval_seconds: -1\n")
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 1
        assert "Invalid config" in result.output


class TestSlotsSync:
    def test_requires_primary_dsn(self):
        result = runner.invoke(app, ["slots", "sync"])
        assert result.exit_code == 1
        assert "primary_dsn" in result.output
