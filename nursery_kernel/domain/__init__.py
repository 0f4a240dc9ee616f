"""
Pure domain layer.

Value objects and pure functions with NO dependencies on the ORM, the
database, the clock or any other I/O.  Everything here is immutable and
deterministic.
"""

from nursery_kernel.domain.allocation import StockGroupPosition, check_allocation
from nursery_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from nursery_kernel.domain.dtos import (
    Actor,
    BulkTransitionResult,
    ClassificationUpdate,
    ContextType,
    ReplayCheck,
    ReservationInfo,
    ReservationStatus,
    TransitionContext,
    TransitionOutcome,
    TransitionResult,
    UnitEventInfo,
    UnitInfo,
)
from nursery_kernel.domain.lifecycle import (
    UNIT_WORKFLOW,
    TransitionKind,
    UnitStatus,
    classify,
    is_terminal,
    normal_targets,
)
from nursery_kernel.domain.rollup import (
    AlertKind,
    AlertSummary,
    BucketCounts,
    ConsistencyWarning,
    GroupKey,
    RollupFilter,
    RollupPolicy,
    RollupReport,
    RollupRow,
    compute_rollup,
)

__all__ = [
    "Actor",
    "AlertKind",
    "AlertSummary",
    "BucketCounts",
    "BulkTransitionResult",
    "ClassificationUpdate",
    "Clock",
    "ConsistencyWarning",
    "ContextType",
    "DeterministicClock",
    "GroupKey",
    "ReplayCheck",
    "ReservationInfo",
    "ReservationStatus",
    "RollupFilter",
    "RollupPolicy",
    "RollupReport",
    "RollupRow",
    "StockGroupPosition",
    "SystemClock",
    "TransitionContext",
    "TransitionKind",
    "TransitionOutcome",
    "TransitionResult",
    "UNIT_WORKFLOW",
    "UnitEventInfo",
    "UnitInfo",
    "UnitStatus",
    "check_allocation",
    "classify",
    "compute_rollup",
    "is_terminal",
    "normal_targets",
]
