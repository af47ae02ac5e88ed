"""Unit tests for default config loading and merging."""

import pytest

from pg_autopilot.config.loader import load_defaults, merge_configs


class TestLoadDefaults:
    def test_loads_operator_defaults(self):
        defaults = load_defaults("operator")
        assert defaults["pod_name"] == "${POD_NAME:-}"
        assert defaults["webhook"]["enabled"] is True
        assert defaults["replication_slots"]["update_interval_seconds"] == 30
        assert "postgres" not in defaults

    def test_missing_defaults_raises(self):
        with pytest.raises(FileNotFoundError, match="nonexistent"):
            load_defaults("nonexistent")


class TestMergeConfigs:
    def test_shallow_override(self):
        result = merge_configs({"a": 1, "b": 2}, {"b": 99})
        assert result == {"a": 1, "b": 99}

    def test_deep_merge(self):
        base = {"webhook": {"secret_name": "a", "service_name": "svc"}}
        result = merge_configs(base, {"webhook": {"secret_name": "b"}})
        assert result["webhook"] == {"secret_name": "b", "service_name": "svc"}

    def test_none_replaces_mapping(self):
        base = {"replication_slots": {"high_availability": {"enabled": True}}}
        result = merge_configs(base, {"replication_slots": {"high_availability": None}})
        assert result["replication_slots"]["high_availability"] is None

    def test_non_mutating(self):
        base = {"a": {"x": 1}}
        merge_configs(base, {"a": {"y": 2}})
        assert "y" not in base["a"]
