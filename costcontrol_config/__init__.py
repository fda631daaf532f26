"""
costcontrol_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the returned
    ``CostControlConfig`` (or one of its sections) by injection and never
    read files or environment variables themselves.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
    - ``ValueError`` -- unknown keys, wrong types or out-of-range values.

Audit relevance:
    Every successful load emits a ``cost_config_loaded`` log entry with the
    source path and the checksum of the raw settings.
"""

from __future__ import annotations

import logging
from pathlib import Path

from costcontrol_config.loader import load_yaml_file, parse_config
from costcontrol_config.schema import (
    CostControlConfig,
    DatabaseSettings,
    PlanningSettings,
    ReconciliationSettings,
)

_logger = logging.getLogger("costcontrol_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> CostControlConfig:
    """Load and validate the configuration.

    Args:
        config_path: YAML file to load.  Defaults to the packaged
            ``defaults.yaml``.

    Returns:
        A frozen, validated ``CostControlConfig``.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(path), source=str(path))

    _logger.info(
        "cost_config_loaded",
        extra={
            "source": config.source,
            "checksum": config.checksum,
            "max_attempts": config.reconciliation.max_attempts,
            "timeout_seconds": config.reconciliation.timeout_seconds,
        },
    )
    return config


__all__ = [
    "CostControlConfig",
    "DatabaseSettings",
    "PlanningSettings",
    "ReconciliationSettings",
    "get_active_config",
]
