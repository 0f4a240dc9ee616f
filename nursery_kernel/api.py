"""
NurseryKernel -- facade over the services and selectors.

Responsibility:
    Wires every service and selector onto one caller-owned session with the
    active configuration, for callers that do not want to assemble them.
    This is also the bridge between ``nursery_config`` and the kernel:
    services take plain values, the facade reads them from the config.

Usage:
    bootstrap("postgresql://localhost/nursery")

    with kernel_scope() as kernel:
        unit = kernel.tag_unit("A-0001", zone_id, species_id, '3"', actor)
        kernel.transition(unit.id, UnitStatus.DIG_ORDERED, actor=actor)
        report = kernel.rollup(RollupFilter(zone_id=zone_id))
"""

from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from nursery_config import NurseryConfig, get_active_config
from nursery_kernel.db.engine import create_tables, init_engine_from_url, session_scope
from nursery_kernel.db.immutability import register_immutability_listeners
from nursery_kernel.domain.clock import Clock, SystemClock
from nursery_kernel.domain.dtos import (
    Actor,
    ClassificationUpdate,
    ReservationInfo,
    TransitionContext,
    TransitionResult,
    UnitEventInfo,
    UnitInfo,
)
from nursery_kernel.domain.lifecycle import UnitStatus
from nursery_kernel.domain.rollup import GroupKey, RollupFilter, RollupPolicy, RollupReport
from nursery_kernel.logging_config import get_logger
from nursery_kernel.selectors.rollup_selector import RollupSelector
from nursery_kernel.selectors.timeline_selector import TimelineSelector
from nursery_kernel.selectors.unit_selector import UnitSelector
from nursery_kernel.services.allocation_service import AllocationService
from nursery_kernel.services.lifecycle_service import LifecycleService

logger = get_logger("api")


class NurseryKernel:
    """
    Every kernel operation on one session.

    Contract:
        The facade never commits; use ``kernel_scope()`` or wrap it in the
        caller's own transaction.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: NurseryConfig | None = None,
    ):
        self.session = session
        self.config = config or get_active_config()
        self.clock = clock or SystemClock()

        self.lifecycle = LifecycleService(
            session,
            clock=self.clock,
            correction_roles=self.config.lifecycle.correction_roles,
        )
        self.allocation = AllocationService(
            session,
            lifecycle=self.lifecycle,
            clock=self.clock,
            default_hold_days=self.config.reservation.default_hold_days,
        )
        self.units = UnitSelector(session)
        self.timelines = TimelineSelector(
            session,
            default_limit=self.config.timeline.default_limit,
            max_limit=self.config.timeline.max_limit,
        )
        self.rollups = RollupSelector(
            session,
            policy=RollupPolicy(low_stock_threshold=self.config.rollup.low_stock_threshold),
        )

    # Lifecycle

    def tag_unit(self, code, zone_id, species_id, size_label, actor, **kwargs) -> UnitInfo:
        return self.lifecycle.tag_unit(code, zone_id, species_id, size_label, actor, **kwargs)

    def transition(
        self,
        unit_id: UUID,
        to_status: UnitStatus | str,
        *,
        actor: Actor,
        notes: str | None = None,
        source: str | None = None,
        force: bool = False,
        expected_status: UnitStatus | str | None = None,
        expected_version: int | None = None,
        context: TransitionContext | None = None,
        classification: ClassificationUpdate | None = None,
    ) -> TransitionResult:
        return self.lifecycle.transition(
            unit_id,
            to_status,
            actor=actor,
            notes=notes,
            source=source,
            force=force,
            expected_status=expected_status,
            expected_version=expected_version,
            context=context,
            classification=classification,
        )

    def relocate(self, unit_id, zone_id, actor, notes=None, source=None) -> UnitInfo:
        return self.lifecycle.relocate(unit_id, zone_id, actor, notes=notes, source=source)

    def unit(self, unit_id: UUID) -> UnitInfo:
        return self.units.get(unit_id)

    # Ledger

    def timeline(
        self, unit_id: UUID, limit: int | None = None, offset: int = 0
    ) -> list[UnitEventInfo]:
        return self.timelines.timeline(unit_id, limit=limit, offset=offset)

    # Rollup

    def rollup(self, filter: RollupFilter | None = None) -> RollupReport:
        return self.rollups.rollup(filter)

    # Allocation

    def allocate(self, group_key: GroupKey, quantity: int, actor: Actor, **kwargs) -> ReservationInfo:
        return self.allocation.allocate(group_key, quantity, actor, **kwargs)

    def allocate_unit(self, unit_id: UUID, actor: Actor, **kwargs) -> TransitionResult:
        return self.allocation.allocate_unit(unit_id, actor, **kwargs)


def bootstrap(database_url: str, echo: bool = False) -> Engine:
    """Initialise the engine, create tables and register append-only listeners."""
    engine = init_engine_from_url(database_url, echo=echo)
    create_tables()
    register_immutability_listeners()
    logger.info("kernel_bootstrapped", extra={"dialect": engine.dialect.name})
    return engine


@contextmanager
def kernel_scope(
    clock: Clock | None = None, config: NurseryConfig | None = None
) -> Iterator[NurseryKernel]:
    """A NurseryKernel inside ``session_scope()``: commit on success, rollback on error."""
    with session_scope() as session:
        yield NurseryKernel(session, clock=clock, config=config)
