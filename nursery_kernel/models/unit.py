"""
Module: nursery_kernel.models.unit
Responsibility: ORM persistence for tagged units, one row per physical tree.
Architecture position: Kernel > Models.  May import from db/base.py,
    domain/lifecycle.py and exceptions.py only.

Invariants enforced:
    - status is a member of UnitStatus (CHECK constraint built from the enum).
    - code is unique (UNIQUE constraint) and never changes (ORM listener in
      db/immutability.py + DB trigger).
    - Rows are never deleted (ORM listener + DB trigger).
    - version increases by one on every write; LifecycleService updates the
      row only through a compare-and-set on (status, version).

Failure modes:
    - IntegrityError on a duplicate code or an out-of-enum status.
    - ImmutabilityViolationError on DELETE or on a code change.

Audit relevance:
    ``status`` is a cache of the latest ledger event's ``to_status``; the
    ledger, not this column, is the history.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from nursery_kernel.db.base import TrackedBase, UUIDString
from nursery_kernel.domain.lifecycle import UnitStatus, status_check_sql


class Unit(TrackedBase):
    """
    One physical tree.

    Contract:
        Created by ``LifecycleService.tag_unit`` in ``in_zone`` and mutated
        only by LifecycleService.  Terminal statuses keep the row.
    """

    __tablename__ = "units"

    __table_args__ = (
        CheckConstraint(status_check_sql(), name="ck_units_valid_status"),
        CheckConstraint("version >= 1", name="ck_units_version_positive"),
        Index("idx_unit_group", "species_id", "size_label", "zone_id", "grade"),
        Index("idx_unit_status", "status"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=UnitStatus.IN_ZONE.value,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Classification
    species_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    size_label: Mapped[str] = mapped_column(String(20), nullable=False)
    grade: Mapped[str | None] = mapped_column(String(20), nullable=True)
    height_label: Mapped[str | None] = mapped_column(String(20), nullable=True)

    zone_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("zones.id"),
        nullable=False,
    )

    # Linked context
    deal_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    dig_order_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    tagged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Unit {self.code} {self.status} v{self.version}>"
