"""
nursery_config -- single public entrypoint for runtime settings.

Responsibility:
    ``get_active_config()`` is the only way services obtain configuration.
    Settings live in YAML under ``nursery_config/sets/``; an explicit path or
    the ``NURSERY_CONFIG_PATH`` environment variable selects another file.

Architecture position:
    Configuration sits beside ``nursery_kernel``.  Kernel services take plain
    values (correction roles, thresholds, hold days); ``nursery_kernel.api``
    is the bridge that reads the config and passes them in.

Audit relevance:
    Every successful call emits a ``NURSERY_CONFIG_TRACE`` log entry with the
    config id, version and checksum, tying a run to the exact settings used.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from nursery_config.loader import compute_checksum, load_config, parse_config
from nursery_config.schema import (
    LifecycleSettings,
    NurseryConfig,
    ReservationSettings,
    RollupSettings,
    TimelineSettings,
)

_logger = logging.getLogger("nursery_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

ENV_CONFIG_PATH = "NURSERY_CONFIG_PATH"


def get_active_config(path: Path | str | None = None) -> NurseryConfig:
    """Load and validate the active settings.

    Args:
        path: Settings file.  Defaults to ``$NURSERY_CONFIG_PATH`` and then
            to the bundled ``sets/default.yaml``.

    Raises:
        FileNotFoundError: The settings file does not exist.
        ValueError: A setting fails validation.
    """
    resolved = Path(path or os.environ.get(ENV_CONFIG_PATH) or _DEFAULT_CONFIG_PATH)
    config = load_config(resolved)

    _logger.info(
        "NURSERY_CONFIG_TRACE",
        extra={
            "trace_type": "NURSERY_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(resolved),
        },
    )
    return config


__all__ = [
    "LifecycleSettings",
    "NurseryConfig",
    "ReservationSettings",
    "RollupSettings",
    "TimelineSettings",
    "compute_checksum",
    "get_active_config",
    "parse_config",
]
