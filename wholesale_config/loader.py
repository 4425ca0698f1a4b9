"""
Configuration Loader (``wholesale_config.loader``).

Responsibility
--------------
Reads ``defaults.yaml``, deep-merges an optional override file and the
recognised environment variables on top, and parses the result into the
frozen dataclasses of ``wholesale_config.schema``.

Invariants enforced
-------------------
* Unknown keys inside a known section raise ``ValueError``; a typo in an
  override file never silently falls back to a default.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  effective settings.

Failure modes
-------------
* Missing override file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong value types  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from wholesale_config.schema import (
    AppConfig,
    DatabaseSettings,
    LifecycleSettings,
    OrderNumberSettings,
    PlatformSettings,
    ReconciliationSettings,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "WHOLESALE_DATABASE_URL": ("database", "url"),
    "COMMERCE_STORE_DOMAIN": ("platform", "store_domain"),
    "COMMERCE_ACCESS_TOKEN": ("platform", "access_token"),
    "COMMERCE_API_VERSION": ("platform", "api_version"),
}

_SECTIONS: dict[str, type] = {
    "database": DatabaseSettings,
    "platform": PlatformSettings,
    "reconciliation": ReconciliationSettings,
    "order_numbers": OrderNumberSettings,
    "lifecycle": LifecycleSettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_environment(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, dict[str, str]] = {}
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            overrides.setdefault(section, {})[key] = value
    return merge(data, overrides)


def _coerce(value: Any, default: Any, name: str) -> Any:
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false", "1", "0"):
            return value.lower() in ("true", "1")
        raise ValueError(f"{name} must be a boolean, got {value!r}")
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValueError(f"{name} must be an integer, got {value!r}")
        return int(value)
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"{name} must be a number, got {value!r}")
        return float(value)
    if value is None:
        return ""
    return str(value)


def parse_section(cls: type, name: str, data: Mapping[str, Any] | None) -> Any:
    data = dict(data or {})
    defaults = cls()
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown setting(s) in '{name}': {', '.join(unknown)}")
    kwargs = {
        key: _coerce(value, getattr(defaults, key), f"{name}.{key}")
        for key, value in data.items()
    }
    return cls(**kwargs)


def parse_config(data: Mapping[str, Any]) -> AppConfig:
    """Build an ``AppConfig`` from merged raw settings."""
    sections = {
        name: parse_section(cls, name, data.get(name))
        for name, cls in _SECTIONS.items()
    }
    config = AppConfig(**sections)
    return AppConfig(**sections, checksum=compute_checksum(config))


def config_to_dict(config: AppConfig) -> dict[str, Any]:
    data = asdict(config)
    data.pop("checksum", None)
    return data


def compute_checksum(config: AppConfig | Mapping[str, Any]) -> str:
    """
    SHA-256 of the canonical JSON form of the settings.

    Identical settings always produce identical checksums.  The access
    token participates in the hash, so the checksum is safe to log but the
    settings themselves are not.
    """
    data = config_to_dict(config) if isinstance(config, AppConfig) else dict(config)
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
