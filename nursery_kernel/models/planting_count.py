"""
Module: nursery_kernel.models.planting_count
Responsibility: Planned / inventoried tree counts per stock group, kept
    outside the per-unit lifecycle.  The rollup compares them with tagged
    units to derive the untagged backlog.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from nursery_kernel.db.base import TrackedBase, UUIDString


class PlantingCount(TrackedBase):
    """How many trees of one group were planted in a zone."""

    __tablename__ = "planting_counts"

    __table_args__ = (
        UniqueConstraint(
            "zone_id", "species_id", "size_label", "grade",
            name="uq_planting_count_group",
        ),
        CheckConstraint("planned >= 0", name="ck_planting_counts_planned"),
    )

    zone_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("zones.id"),
        nullable=False,
    )
    species_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    size_label: Mapped[str] = mapped_column(String(20), nullable=False)
    grade: Mapped[str | None] = mapped_column(String(20), nullable=True)

    planned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
