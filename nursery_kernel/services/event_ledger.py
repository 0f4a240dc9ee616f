"""
EventLedger -- append-only writer for the unit ledger.

Responsibility:
    Inserts one UnitEvent row with the next per-unit ``seq``.  Only
    LifecycleService calls it, always after it has won the compare-and-set
    on the unit row in the same transaction.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - seq is 1-based and contiguous per unit.  The next value is derived from
      the unit's current maximum; concurrent appends for one unit cannot
      interleave because the caller already holds the unit row (its
      compare-and-set UPDATE), and the (unit_id, seq) UNIQUE constraint is
      the backstop.
    - Nothing here updates or deletes an event.

Failure modes:
    - IntegrityError on a duplicate (unit_id, seq).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from nursery_kernel.domain.dtos import TransitionContext
from nursery_kernel.domain.lifecycle import UnitStatus
from nursery_kernel.logging_config import get_logger
from nursery_kernel.models.unit_event import UnitEvent, UnitEventType
from nursery_kernel.services.base import BaseService

logger = get_logger("services.event_ledger")


class EventLedger(BaseService[UnitEvent]):
    """Flush-only appender for unit events."""

    def __init__(self, session: Session):
        super().__init__(session)

    def next_seq(self, unit_id: UUID) -> int:
        current = self.session.execute(
            select(func.max(UnitEvent.seq)).where(UnitEvent.unit_id == unit_id)
        ).scalar_one_or_none()
        return (current or 0) + 1

    def append(
        self,
        unit_id: UUID,
        event_type: UnitEventType,
        to_status: UnitStatus,
        actor_id: UUID,
        occurred_at: datetime,
        from_status: UnitStatus | None = None,
        source: str | None = None,
        context: TransitionContext | None = None,
        notes: str | None = None,
        is_correction: bool = False,
    ) -> UnitEvent:
        """
        Append one event and flush it.

        Preconditions:
            - The unit row exists and was written (or created) by the caller
              in the current transaction.

        Returns:
            The persisted UnitEvent.
        """
        seq = self.next_seq(unit_id)
        row = UnitEvent(
            unit_id=unit_id,
            seq=seq,
            event_type=UnitEventType(event_type).value,
            occurred_at=occurred_at,
            from_status=UnitStatus(from_status).value if from_status else None,
            to_status=UnitStatus(to_status).value,
            actor_id=actor_id,
            source=source,
            context_type=context.context_type.value if context else None,
            context_id=context.context_id if context else None,
            notes=notes,
            is_correction=is_correction,
        )
        self.session.add(row)
        self.session.flush()

        logger.debug(
            "unit_event_appended",
            extra={
                "unit_id": str(unit_id),
                "seq": seq,
                "event_type": row.event_type,
                "to_status": row.to_status,
            },
        )
        return row
