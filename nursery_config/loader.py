"""
YAML loader for nursery settings.

Reads a settings file, validates each section and returns a frozen
``NurseryConfig``.

Failure modes:
* Missing file    -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad value       -> ``ValueError`` naming the offending key.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from nursery_config.schema import (
    LifecycleSettings,
    NurseryConfig,
    ReservationSettings,
    RollupSettings,
    TimelineSettings,
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


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"{name}: expected a mapping, got {type(value).__name__}")
    return value


def _non_negative_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{key}: expected a non-negative integer, got {value!r}")
    return value


def parse_lifecycle(data: dict[str, Any]) -> LifecycleSettings:
    roles = data.get("correction_roles", list(LifecycleSettings.correction_roles))
    if isinstance(roles, str) or not all(isinstance(r, str) and r for r in roles):
        raise ValueError(f"lifecycle.correction_roles: expected a list of role names, got {roles!r}")
    return LifecycleSettings(correction_roles=tuple(roles))


def parse_rollup(data: dict[str, Any]) -> RollupSettings:
    return RollupSettings(
        low_stock_threshold=_non_negative_int(
            data.get("low_stock_threshold", RollupSettings.low_stock_threshold),
            "rollup.low_stock_threshold",
        ),
    )


def parse_reservation(data: dict[str, Any]) -> ReservationSettings:
    days = data.get("default_hold_days")
    if days is not None:
        days = _non_negative_int(days, "reservation.default_hold_days")
    return ReservationSettings(default_hold_days=days)


def parse_timeline(data: dict[str, Any]) -> TimelineSettings:
    default_limit = _non_negative_int(
        data.get("default_limit", TimelineSettings.default_limit),
        "timeline.default_limit",
    )
    max_limit = _non_negative_int(
        data.get("max_limit", TimelineSettings.max_limit),
        "timeline.max_limit",
    )
    if not 1 <= default_limit <= max_limit:
        raise ValueError(
            f"timeline.default_limit must be between 1 and max_limit ({max_limit}), "
            f"got {default_limit}"
        )
    return TimelineSettings(default_limit=default_limit, max_limit=max_limit)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    SHA-256 of the canonical JSON serialization of ``data``.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> NurseryConfig:
    """Build a NurseryConfig from an already-loaded mapping."""
    return NurseryConfig(
        config_id=str(data.get("config_id", "nursery-default")),
        version=int(data.get("version", 1)),
        lifecycle=parse_lifecycle(_section(data, "lifecycle")),
        rollup=parse_rollup(_section(data, "rollup")),
        reservation=parse_reservation(_section(data, "reservation")),
        timeline=parse_timeline(_section(data, "timeline")),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> NurseryConfig:
    return parse_config(load_yaml_file(path))
