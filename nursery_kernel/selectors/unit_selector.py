"""
Module: nursery_kernel.selectors.unit_selector
Responsibility: Read-only access to units as UnitInfo DTOs.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import func, select

from nursery_kernel.domain.dtos import UnitInfo
from nursery_kernel.domain.lifecycle import UnitStatus
from nursery_kernel.domain.rollup import GroupKey
from nursery_kernel.exceptions import UnitNotFoundError
from nursery_kernel.models.unit import Unit
from nursery_kernel.selectors.base import BaseSelector


def group_filter(key: GroupKey):
    """WHERE clauses selecting the units of one stock group."""
    clauses = [
        Unit.zone_id == key.zone_id,
        Unit.species_id == key.species_id,
        Unit.size_label == key.size_label,
    ]
    if key.grade is None:
        clauses.append(Unit.grade.is_(None))
    else:
        clauses.append(Unit.grade == key.grade)
    return clauses


class UnitSelector(BaseSelector[Unit]):
    """Queries over the units table."""

    def get(self, unit_id: UUID) -> UnitInfo:
        unit = self.session.execute(
            select(Unit)
            .where(Unit.id == unit_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if unit is None:
            raise UnitNotFoundError(str(unit_id))
        return UnitInfo.from_model(unit)

    def find_by_code(self, code: str) -> UnitInfo | None:
        unit = self.session.execute(
            select(Unit).where(Unit.code == code)
        ).scalar_one_or_none()
        return UnitInfo.from_model(unit) if unit is not None else None

    def in_group(
        self, key: GroupKey, status: UnitStatus | None = None
    ) -> list[UnitInfo]:
        """Units of one stock group, ordered by code."""
        stmt = select(Unit).where(*group_filter(key))
        if status is not None:
            stmt = stmt.where(Unit.status == UnitStatus(status).value)
        units = self.session.execute(stmt.order_by(Unit.code)).scalars()
        return [UnitInfo.from_model(u) for u in units]

    def count_by_status(self, key: GroupKey) -> dict[UnitStatus, int]:
        rows = self.session.execute(
            select(Unit.status, func.count(Unit.id))
            .where(*group_filter(key))
            .group_by(Unit.status)
        ).all()
        return {UnitStatus(status): count for status, count in rows}
