"""
Configuration Loader (``production_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen dataclasses of
``production_config.schema``.  Runtime callers go through
``production_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Unknown keys in a section raise ``ValueError``; a typo never silently
  falls back to a default.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  source for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range values  -> ``ValueError`` from the dataclass ``__post_init__``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from production_config.schema import (
    IdentifierPolicy,
    OutputPolicy,
    ProductionConfig,
    QuantityPolicy,
    ReadPolicy,
    RollbackPolicy,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _section(data: dict[str, Any], name: str, allowed: tuple[str, ...]) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Section '{name}' must be a mapping")
    unknown = sorted(set(section) - set(allowed))
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {', '.join(unknown)}")
    return section


def parse_quantities(data: dict[str, Any]) -> QuantityPolicy:
    section = _section(data, "quantities", ("volume_places", "percent_places"))
    defaults = QuantityPolicy()
    return QuantityPolicy(
        volume_places=int(section.get("volume_places", defaults.volume_places)),
        percent_places=int(section.get("percent_places", defaults.percent_places)),
    )


def parse_identifiers(data: dict[str, Any]) -> IdentifierPolicy:
    section = _section(
        data,
        "identifiers",
        ("prefix", "width", "max_number", "inherit_code_processes"),
    )
    defaults = IdentifierPolicy()
    return IdentifierPolicy(
        prefix=str(section.get("prefix", defaults.prefix)),
        width=int(section.get("width", defaults.width)),
        max_number=int(section.get("max_number", defaults.max_number)),
        inherit_code_processes=tuple(
            str(name).lower()
            for name in section.get("inherit_code_processes", defaults.inherit_code_processes)
        ),
    )


def parse_outputs(data: dict[str, Any]) -> OutputPolicy:
    section = _section(data, "outputs", ("required_attributes",))
    if "required_attributes" not in section:
        return OutputPolicy()
    return OutputPolicy(
        required_attributes=tuple(str(a) for a in section["required_attributes"]),
    )


def parse_rollback(data: dict[str, Any]) -> RollbackPolicy:
    section = _section(data, "rollback", ("max_attempts", "backoff_seconds"))
    defaults = RollbackPolicy()
    return RollbackPolicy(
        max_attempts=int(section.get("max_attempts", defaults.max_attempts)),
        backoff_seconds=float(section.get("backoff_seconds", defaults.backoff_seconds)),
    )


def parse_reads(data: dict[str, Any]) -> ReadPolicy:
    section = _section(data, "reads", ("fanout_workers",))
    defaults = ReadPolicy()
    return ReadPolicy(
        fanout_workers=int(section.get("fanout_workers", defaults.fanout_workers)),
    )


def parse_config(data: dict[str, Any]) -> ProductionConfig:
    """
    Parse a full configuration set from a dict.

    Raises:
        ValueError: on unknown keys or out-of-range values.
    """
    return ProductionConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        quantities=parse_quantities(data),
        identifiers=parse_identifiers(data),
        outputs=parse_outputs(data),
        rollback=parse_rollback(data),
        reads=parse_reads(data),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> ProductionConfig:
    """Load and parse the configuration set stored at ``path``."""
    return parse_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
