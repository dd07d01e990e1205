"""
production_config -- single public entrypoint for production configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the returned
    ``ProductionConfig`` by constructor injection and never read files or
    environment variables themselves.

Architecture position:
    Configuration.  This package imports nothing from ``production_kernel``;
    kernel services depend on its frozen schema types only.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` -- unknown keys or out-of-range values.
"""

from __future__ import annotations

import logging
from pathlib import Path

from production_config.loader import load_config
from production_config.schema import (
    IdentifierPolicy,
    OutputPolicy,
    ProductionConfig,
    QuantityPolicy,
    ReadPolicy,
    RollbackPolicy,
)

_logger = logging.getLogger("production_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | None = None) -> ProductionConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Override path to a configuration YAML file.
            Defaults to production_config/sets/default.yaml.

    Returns:
        ProductionConfig -- frozen, with the checksum of its source.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file fails validation.
    """
    config = load_config(path or _DEFAULT_CONFIG_PATH)

    _logger.info(
        "production_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "ProductionConfig",
    "QuantityPolicy",
    "IdentifierPolicy",
    "OutputPolicy",
    "RollbackPolicy",
    "ReadPolicy",
]
