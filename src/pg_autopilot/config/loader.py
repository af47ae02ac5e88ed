"""Operator config loading: built-in defaults, a YAML file, the environment.

Layers are combined in this order:

1. ``config/defaults/<name>.yaml`` shipped with the package
2. the operator's YAML file, deep-merged on top
3. ``${VAR}`` / ``${VAR:-default}`` references expanded from the pod env

Expansion runs last so that defaults may reference ``POD_NAME`` and
``OPERATOR_NAMESPACE`` like any user file.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import ValidationError

from pg_autopilot.config.models import OperatorConfig

DEFAULTS_DIR = Path(__file__).parent / "defaults"

_ENV_REF = re.compile(r"\$\{(?P<name>[^}:]+)(?::-(?P<fallback>(?:[^}\\]|\\.)*))?}")


def _expand(text: str) -> str:
    def _lookup(ref: re.Match[str]) -> str:
        name = ref.group("name")
        if name in os.environ:
            return os.environ[name]
        fallback = ref.group("fallback")
        if fallback is None:
            msg = f"Environment variable '{name}' is not set and no default provided"
            raise ValueError(msg)
        return fallback.replace("\\}", "}")

    return _ENV_REF.sub(_lookup, text)


def resolve_env_vars(data: Any) -> Any:
    """Expand env references in every string of a parsed YAML tree."""
    if isinstance(data, dict):
        return {key: resolve_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]
    return _expand(data) if isinstance(data, str) else data


def merge_configs(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Return *base* with *overrides* merged in; mappings merge key by key.

    A non-mapping override (including ``None``) replaces the base value
    outright.  Neither argument is modified.
    """
    merged = dict(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = merge_configs(current, value)
        merged[key] = value
    return merged


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Parse a YAML mapping; an empty document yields ``{}``."""
    source = Path(path)
    if not source.exists():
        msg = f"Config file not found: {source}"
        raise FileNotFoundError(msg)
    try:
        data = yaml.safe_load(source.read_text())
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark else ""
        msg = f"Failed to parse YAML in {source}{where}: {exc}"
        raise ValueError(msg) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {source}, got {type(data).__name__}"
        raise TypeError(msg)
    return cast(dict[str, Any], data)


def load_defaults(name: str = "operator") -> dict[str, Any]:
    """Built-in defaults shipped as ``config/defaults/<name>.yaml``."""
    path = DEFAULTS_DIR / f"{name}.yaml"
    if not path.exists():
        msg = f"Defaults file '{name}' not found at {path}"
        raise FileNotFoundError(msg)
    return load_yaml(path)


def load_operator_config(
    path: str | Path | None = None,
    *,
    defaults: str = "operator",
) -> OperatorConfig:
    """Build the operator config from defaults, *path* and the environment."""
    layered = load_defaults(defaults)
    if path is not None:
        layered = merge_configs(layered, load_yaml(path))
    try:
        return OperatorConfig.model_validate(resolve_env_vars(layered))
    except ValidationError as exc:
        source = path or "built-in defaults"
        msg = f"Invalid operator config ({source}):\n{exc}"
        raise ValueError(msg) from exc
