"""Read-side selectors."""

from nursery_kernel.selectors.rollup_selector import RollupSelector
from nursery_kernel.selectors.timeline_selector import TimelineSelector
from nursery_kernel.selectors.unit_selector import UnitSelector

__all__ = [
    "RollupSelector",
    "TimelineSelector",
    "UnitSelector",
]
