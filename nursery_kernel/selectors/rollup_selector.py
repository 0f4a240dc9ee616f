"""
Module: nursery_kernel.selectors.rollup_selector
Responsibility: Loads the unit / planting snapshot and runs the pure rollup
    engine over it.  Logs every derived alert.
Architecture position: Kernel > Selectors.  Read-only; the rollup never
    writes and keeps no cached totals.

Failure modes:
    - None beyond database errors.  Alerts are values in the report, logged
      at WARNING, never raised.
"""

from sqlalchemy import select

from nursery_kernel.domain.lifecycle import UnitStatus
from nursery_kernel.domain.rollup import (
    PlantingSnapshot,
    RollupFilter,
    RollupPolicy,
    RollupReport,
    UnitSnapshot,
    compute_rollup,
)
from nursery_kernel.logging_config import get_logger
from nursery_kernel.models.planting_count import PlantingCount
from nursery_kernel.models.unit import Unit
from nursery_kernel.models.zone import Zone
from nursery_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.rollup")


class RollupSelector(BaseSelector[Unit]):
    """Snapshot loader for the rollup engine."""

    def __init__(self, session, policy: RollupPolicy | None = None):
        super().__init__(session)
        self._policy = policy or RollupPolicy()

    def _apply_sql_filter(self, stmt, model, filter: RollupFilter):
        # Narrow in SQL; compute_rollup applies the same filter again.
        if filter.zone_id is not None:
            stmt = stmt.where(model.zone_id == filter.zone_id)
        if filter.species_id is not None:
            stmt = stmt.where(model.species_id == filter.species_id)
        if filter.size_label is not None:
            stmt = stmt.where(model.size_label == filter.size_label)
        if filter.grade is not None:
            stmt = stmt.where(model.grade == filter.grade)
        if filter.plot_type is not None:
            stmt = stmt.where(Zone.plot_type == filter.plot_type)
        return stmt

    def unit_snapshot(self, filter: RollupFilter | None = None) -> list[UnitSnapshot]:
        filter = filter or RollupFilter()
        stmt = select(
            Unit.id, Unit.zone_id, Unit.species_id, Unit.size_label,
            Unit.grade, Unit.status, Zone.plot_type,
        ).join(Zone, Zone.id == Unit.zone_id)
        rows = self.session.execute(self._apply_sql_filter(stmt, Unit, filter)).all()
        return [
            UnitSnapshot(
                unit_id=row.id,
                zone_id=row.zone_id,
                species_id=row.species_id,
                size_label=row.size_label,
                grade=row.grade,
                status=UnitStatus(row.status),
                plot_type=row.plot_type,
            )
            for row in rows
        ]

    def planting_snapshot(self, filter: RollupFilter | None = None) -> list[PlantingSnapshot]:
        filter = filter or RollupFilter()
        stmt = select(
            PlantingCount.zone_id, PlantingCount.species_id, PlantingCount.size_label,
            PlantingCount.grade, PlantingCount.planned, Zone.plot_type,
        ).join(Zone, Zone.id == PlantingCount.zone_id)
        rows = self.session.execute(self._apply_sql_filter(stmt, PlantingCount, filter)).all()
        return [
            PlantingSnapshot(
                zone_id=row.zone_id,
                species_id=row.species_id,
                size_label=row.size_label,
                grade=row.grade,
                planned=row.planned,
                plot_type=row.plot_type,
            )
            for row in rows
        ]

    def rollup(self, filter: RollupFilter | None = None) -> RollupReport:
        filter = filter or RollupFilter()
        report = compute_rollup(
            self.unit_snapshot(filter),
            self.planting_snapshot(filter),
            policy=self._policy,
            filter=filter,
        )
        for alert in report.alerts:
            logger.warning(
                "rollup_alert",
                extra={
                    "alert_kind": alert.kind.value,
                    "severity": alert.severity,
                    "group_key": alert.key.label(),
                    "detail": alert.message,
                },
            )
        logger.info(
            "rollup_computed",
            extra={
                "row_count": len(report.rows),
                "total_units": report.summary.total,
                "alerts_critical": report.alert_summary.critical,
                "alerts_warning": report.alert_summary.warning,
                "alerts_info": report.alert_summary.info,
            },
        )
        return report
