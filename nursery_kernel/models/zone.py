"""
Module: nursery_kernel.models.zone
Responsibility: ORM persistence for zones (plots) that physically hold units.
Architecture position: Kernel > Models.  May import from db/base.py only.

Zones let rollups be filtered by plot type and let relocation check that the
destination exists.  A zone is reference data; units point at it by id.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from nursery_kernel.db.base import TrackedBase


class Zone(TrackedBase):
    """A plot on a farm."""

    __tablename__ = "zones"

    # Short unique label printed on field maps (e.g. "N-12")
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    farm_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # e.g. "field", "container", "holding_yard"
    plot_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<Zone {self.code}>"
