"""
stock_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the returned EngineConfig
    by injection; no other component reads configuration files.

Architecture position:
    Configuration -- sits above ``stock_kernel`` and beside
    ``stock_engines``.  The kernel and engines MUST NEVER import from
    ``stock_config``.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``STOCK_CONFIG_TRACE`` log entry with the source path and the checksum
    of the loaded document, tying every ledger write back to the exact
    configuration that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from stock_config.loader import load_yaml_file, parse_engine_config
from stock_config.schema import EngineConfig

_logger = logging.getLogger("stock_kernel.config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "defaults" / "engine.yaml"


def get_active_config(path: Path | str | None = None) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Override YAML file.  Defaults to stock_config/defaults/engine.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the document fails validation.
    """
    source = Path(path) if path is not None else _DEFAULT_CONFIG_FILE
    config = parse_engine_config(load_yaml_file(source))

    _logger.info(
        "STOCK_CONFIG_TRACE",
        extra={
            "trace_type": "STOCK_CONFIG_TRACE",
            "config_path": str(source),
            "checksum": config.checksum,
            "outbound_quality_filter": config.outbound_quality_filter.value,
            "max_append_attempts": config.max_append_attempts,
        },
    )
    return config


__all__ = ["EngineConfig", "get_active_config"]
