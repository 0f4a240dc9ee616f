"""
Module: nursery_kernel.models.stock_reservation
Responsibility: ORM persistence for pooled stock reservations and the
    per-group advisory lock rows that serialise pooled allocation.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - 0 <= bound_quantity <= quantity (CHECK constraints).
    - status is one of reserved / released / fulfilled.
    - Exactly one StockGroupLock row per group key (UNIQUE).

Audit relevance:
    A pooled reservation is a promise against a stock group that is not yet
    tied to specific units.  Until it is bound or released it reduces the
    group's allocatable quantity.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from nursery_kernel.db.base import Base, TrackedBase, UUIDString


class StockReservation(TrackedBase):
    """A pooled quantity promised from one stock group."""

    __tablename__ = "stock_reservations"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_reservations_quantity"),
        CheckConstraint(
            "bound_quantity >= 0 AND bound_quantity <= quantity",
            name="ck_stock_reservations_bound",
        ),
        CheckConstraint(
            "status IN ('reserved', 'released', 'fulfilled')",
            name="ck_stock_reservations_valid_status",
        ),
        Index(
            "idx_stock_reservation_group",
            "species_id", "size_label", "zone_id", "grade", "status",
        ),
    )

    zone_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("zones.id"),
        nullable=False,
    )
    species_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    size_label: Mapped[str] = mapped_column(String(20), nullable=False)
    grade: Mapped[str | None] = mapped_column(String(20), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    bound_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="reserved")

    deal_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # None means the reservation is only released manually
    hold_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<StockReservation {self.id} {self.status} "
            f"{self.bound_quantity}/{self.quantity}>"
        )


class StockGroupLock(Base):
    """
    Advisory lock row for one stock group.

    AllocationService locks this row with SELECT ... FOR UPDATE before reading
    the group position, so pooled decisions for the same group serialise.
    """

    __tablename__ = "stock_group_locks"

    __table_args__ = (
        UniqueConstraint("group_key", name="uq_stock_group_lock_key"),
    )

    # Canonical GroupKey.label()
    group_key: Mapped[str] = mapped_column(String(200), nullable=False)

    # Bumped on every pooled decision so the lock row is written under lock
    decisions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
