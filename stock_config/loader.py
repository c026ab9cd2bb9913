"""
Configuration Loader (``stock_config.loader``).

Responsibility
--------------
Loads the engine YAML file and parses it into a typed ``EngineConfig``.
The single public entry point for runtime config is
``stock_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key  -> ``ValueError`` (typos must not be silently
  ignored).
* Out-of-range values  -> ``ValueError`` from ``EngineConfig``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import EngineConfig
from stock_kernel.domain.values import QualityStatus

# (section, key) -> EngineConfig field
_FIELD_MAP: dict[tuple[str, str], str] = {
    ("engine", "outbound_quality_filter"): "outbound_quality_filter",
    ("engine", "lot_prefix"): "lot_prefix",
    ("engine", "max_append_attempts"): "max_append_attempts",
    ("scan", "accept_legacy_payload"): "accept_legacy_scan_payload",
    ("quarantine", "exclude_from_receipts"): "exclude_quarantine_from_receipts",
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """Parse a loaded document into EngineConfig; absent keys keep defaults."""
    kwargs: dict[str, Any] = {}
    known_sections = {section for section, _ in _FIELD_MAP}
    for section, values in data.items():
        if section not in known_sections:
            raise ValueError(f"Unknown configuration section: {section!r}")
        if not isinstance(values, dict):
            raise ValueError(f"Section {section!r} must be a mapping")
        for key, value in values.items():
            field_name = _FIELD_MAP.get((section, key))
            if field_name is None:
                raise ValueError(f"Unknown configuration key: {section}.{key}")
            kwargs[field_name] = value

    if "outbound_quality_filter" in kwargs:
        kwargs["outbound_quality_filter"] = QualityStatus.parse(
            kwargs["outbound_quality_filter"]
        )
    if "lot_prefix" in kwargs:
        kwargs["lot_prefix"] = str(kwargs["lot_prefix"])

    return EngineConfig(checksum=compute_checksum(data), **kwargs)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
