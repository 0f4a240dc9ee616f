"""
Nursery configuration schema.

Frozen dataclasses the YAML settings file is parsed into.  Defaults here are
the values used when a section or key is absent from the file.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class LifecycleSettings:
    correction_roles: tuple[str, ...] = ("manager", "admin")


@dataclass(frozen=True)
class RollupSettings:
    low_stock_threshold: int = 10


@dataclass(frozen=True)
class ReservationSettings:
    default_hold_days: int | None = None  # None = manual release only


@dataclass(frozen=True)
class TimelineSettings:
    default_limit: int = 30
    max_limit: int = 500


@dataclass(frozen=True)
class NurseryConfig:
    """The runtime configuration artifact returned by ``get_active_config()``."""

    config_id: str
    version: int
    lifecycle: LifecycleSettings = field(default_factory=LifecycleSettings)
    rollup: RollupSettings = field(default_factory=RollupSettings)
    reservation: ReservationSettings = field(default_factory=ReservationSettings)
    timeline: TimelineSettings = field(default_factory=TimelineSettings)
    checksum: str = ""
