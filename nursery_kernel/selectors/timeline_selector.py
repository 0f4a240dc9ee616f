"""
Module: nursery_kernel.selectors.timeline_selector
Responsibility: Paged, reverse-chronological reads of a unit's ledger, and
    replay of the ledger against the unit's cached status.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - Pages are ordered by (occurred_at DESC, seq DESC); seq breaks ties
      between events stamped with the same instant.
    - ``iter_timeline`` is finite and restartable: each call starts a fresh
      walk from offset 0.
    - Replay folds ``to_status`` in seq order; the result must equal
      ``units.status``.
"""

from typing import Iterator
from uuid import UUID

from sqlalchemy import select

from nursery_kernel.domain.dtos import ReplayCheck, UnitEventInfo
from nursery_kernel.domain.lifecycle import UnitStatus
from nursery_kernel.exceptions import UnitNotFoundError
from nursery_kernel.logging_config import get_logger
from nursery_kernel.models.unit import Unit
from nursery_kernel.models.unit_event import UnitEvent
from nursery_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.timeline")

DEFAULT_LIMIT = 30
MAX_LIMIT = 500


class TimelineSelector(BaseSelector[UnitEvent]):
    """Reads of the unit ledger."""

    def __init__(self, session, default_limit: int = DEFAULT_LIMIT, max_limit: int = MAX_LIMIT):
        super().__init__(session)
        self._default_limit = default_limit
        self._max_limit = max_limit

    def _validate_page(self, limit: int, offset: int) -> None:
        if not 1 <= limit <= self._max_limit:
            raise ValueError(f"limit must be between 1 and {self._max_limit}, got {limit}")
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")

    def timeline(
        self, unit_id: UUID, limit: int | None = None, offset: int = 0
    ) -> list[UnitEventInfo]:
        """
        One page of events, most recent first.

        Raises:
            ValueError: limit outside 1..max_limit or negative offset.
        """
        limit = self._default_limit if limit is None else limit
        self._validate_page(limit, offset)
        rows = self.session.execute(
            select(UnitEvent)
            .where(UnitEvent.unit_id == unit_id)
            .order_by(UnitEvent.occurred_at.desc(), UnitEvent.seq.desc())
            .limit(limit)
            .offset(offset)
        ).scalars()
        return [UnitEventInfo.from_model(row) for row in rows]

    def iter_timeline(
        self, unit_id: UUID, page_size: int | None = None
    ) -> Iterator[UnitEventInfo]:
        """Lazily walk every event, most recent first, one page at a time."""
        page_size = self._default_limit if page_size is None else page_size
        self._validate_page(page_size, 0)
        offset = 0
        while True:
            page = self.timeline(unit_id, limit=page_size, offset=offset)
            yield from page
            if len(page) < page_size:
                return
            offset += page_size

    def history(self, unit_id: UUID) -> list[UnitEventInfo]:
        """Every event in seq order (oldest first)."""
        rows = self.session.execute(
            select(UnitEvent)
            .where(UnitEvent.unit_id == unit_id)
            .order_by(UnitEvent.seq)
        ).scalars()
        return [UnitEventInfo.from_model(row) for row in rows]

    def replay_status(self, unit_id: UUID) -> UnitStatus | None:
        """Status reconstructed from the ledger; None if the unit has no events."""
        status = None
        for event in self.history(unit_id):
            status = event.to_status
        return status

    def verify_replay(self, unit_id: UUID) -> ReplayCheck:
        cached = self.session.execute(
            select(Unit.status)
            .where(Unit.id == unit_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if cached is None:
            raise UnitNotFoundError(str(unit_id))

        events = self.history(unit_id)
        replayed = events[-1].to_status if events else None
        check = ReplayCheck(
            unit_id=unit_id,
            cached_status=UnitStatus(cached),
            replayed_status=replayed,
            event_count=len(events),
        )
        if not check.matches:
            logger.error(
                "replay_mismatch",
                extra={
                    "unit_id": str(unit_id),
                    "cached_status": check.cached_status.value,
                    "replayed_status": replayed.value if replayed else None,
                    "event_count": check.event_count,
                },
            )
        return check
