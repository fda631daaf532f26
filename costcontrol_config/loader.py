"""
Configuration Loader (``costcontrol_config.loader``).

Responsibility
--------------
Load a YAML configuration file and parse it into the frozen dataclasses
of ``costcontrol_config.schema``.  Services never call this directly; the
runtime entry point is ``costcontrol_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key, wrong type, out-of-range value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from costcontrol_config.schema import (
    CostControlConfig,
    DatabaseSettings,
    PlanningSettings,
    ReconciliationSettings,
)

_SECTIONS = {
    "database": DatabaseSettings,
    "reconciliation": ReconciliationSettings,
    "planning": PlanningSettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _coerce(section: str, name: str, expected: type, value: Any) -> Any:
    if expected is bool:
        if not isinstance(value, bool):
            raise ValueError(f"{section}.{name} must be a boolean, got {value!r}")
        return value
    if expected is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{section}.{name} must be an integer, got {value!r}")
        return value
    if expected is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{section}.{name} must be a number, got {value!r}")
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"{section}.{name} must be a string, got {value!r}")
    return value


_TYPE_NAMES = {"bool": bool, "int": int, "float": float, "str": str}


def parse_section(section: str, data: dict[str, Any] | None) -> Any:
    """Parse one section into its settings dataclass, rejecting unknown keys."""
    cls = _SECTIONS[section]
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"Section {section!r} must be a mapping, got {type(data).__name__}")

    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValueError(f"Unknown key(s) in {section!r}: {', '.join(unknown)}")

    kwargs = {
        name: _coerce(section, name, _TYPE_NAMES[str(known[name].type)], value)
        for name, value in data.items()
    }
    return cls(**kwargs)


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the raw configuration mapping."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_config(data: dict[str, Any], source: str = "<inline>") -> CostControlConfig:
    """
    Build a CostControlConfig from a parsed YAML mapping.

    Raises:
        ValueError: on unknown sections/keys or invalid values.
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown configuration section(s): {', '.join(unknown)}")

    return CostControlConfig(
        database=parse_section("database", data.get("database")),
        reconciliation=parse_section("reconciliation", data.get("reconciliation")),
        planning=parse_section("planning", data.get("planning")),
        source=source,
        checksum=compute_checksum(data),
    )
