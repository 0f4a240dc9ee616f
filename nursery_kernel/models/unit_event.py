"""
Module: nursery_kernel.models.unit_event
Responsibility: ORM persistence for the append-only unit ledger.
Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions.py only.

Invariants enforced:
    - (unit_id, seq) is unique; seq is allocated by EventLedger.
    - Rows are immutable: ORM listeners in db/immutability.py and, on
      PostgreSQL, the triggers in db/sql/01_unit_event.sql reject any
      UPDATE or DELETE.
    - Replaying to_status in seq order reproduces units.status.

Audit relevance:
    This table IS the lifecycle history.  Corrections are recorded with
    ``is_correction = true`` and mandatory notes.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from nursery_kernel.db.base import Base, UUIDString


class UnitEventType(str, Enum):
    STATUS_CHANGE = "status_change"
    CORRECTION = "correction"
    TAGGED = "tagged"
    RELOCATED = "relocated"


class UnitEvent(Base):
    """One immutable entry in a unit's history."""

    __tablename__ = "unit_events"

    __table_args__ = (
        UniqueConstraint("unit_id", "seq", name="uq_unit_event_seq"),
        Index("idx_unit_event_occurred", "unit_id", "occurred_at"),
    )

    unit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("units.id"),
        nullable=False,
    )

    # 1-based position within the unit's history
    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    event_type: Mapped[str] = mapped_column(String(20), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # None only on the "tagged" event that creates the unit
    from_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Free-text origin tag (screen or process name)
    source: Mapped[str | None] = mapped_column(String(100), nullable=True)

    context_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    context_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_correction: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<UnitEvent {self.unit_id}#{self.seq} "
            f"{self.from_status}->{self.to_status}>"
        )
