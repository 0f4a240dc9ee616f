"""
Allocation policy -- whether a pooled stock request may be satisfied.

Responsibility:
    Pure rules for pooled (stock group) allocation: the allocatable quantity
    of a group, the accept / reject decision, reservation hold expiry, and
    the reconciliation check between the pooled layer and the units.

Architecture position:
    Kernel > Domain -- zero I/O.  AllocationService gathers the position under
    the group's advisory lock and calls into this module.

Invariants enforced:
    - A pooled request is accepted only if
      ``available - pooled_outstanding >= quantity``.
    - ``quantity`` must be positive.
    - A group whose pooled outstanding quantity exceeds its available units
      is reported as OVERBOOK; the gap is never clamped away.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Iterable

from nursery_kernel.domain.rollup import (
    AlertKind,
    ConsistencyWarning,
    GroupKey,
    make_warning,
)
from nursery_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    ValidationError,
)


@dataclass(frozen=True)
class StockGroupPosition:
    """
    Both inventory truths for one stock group.

    ``available`` counts units in ready_for_sale.  ``unit_reserved`` counts
    units already in reserved.  ``pooled_outstanding`` is open pooled
    quantity not yet bound to units.
    """
    key: GroupKey
    available: int
    unit_reserved: int
    pooled_outstanding: int

    @property
    def allocatable(self) -> int:
        return max(self.available - self.pooled_outstanding, 0)

    @property
    def overbooked(self) -> bool:
        return self.pooled_outstanding > self.available


def validate_quantity(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise InvalidQuantityError(quantity, "quantity must be an integer")
    if quantity <= 0:
        raise InvalidQuantityError(quantity, "quantity must be positive")


def check_allocation(position: StockGroupPosition, quantity: int) -> None:
    """
    Accept or reject a pooled request against a locked position.

    Raises:
        InvalidQuantityError: quantity is not a positive integer.
        InsufficientStockError: quantity exceeds the allocatable amount.
    """
    validate_quantity(quantity)
    if quantity > position.allocatable:
        raise InsufficientStockError(
            group_key=position.key.label(),
            requested=quantity,
            allocatable=position.allocatable,
        )


def hold_deadline(now: datetime, hold_days: int | None) -> datetime | None:
    """Default hold end for a new reservation; None means manual release only."""
    if hold_days is None:
        return None
    return now + timedelta(days=hold_days)


def normalize_deadline(hold_until: datetime | None) -> datetime | None:
    """
    Convert a caller-supplied hold end to UTC.

    SQLite stores the wall-clock part only, so a non-UTC offset would shift
    the deadline.  Naive values are rejected rather than guessed at.
    """
    if hold_until is None:
        return None
    if hold_until.tzinfo is None or hold_until.utcoffset() is None:
        raise ValidationError("hold_until must be timezone-aware")
    return hold_until.astimezone(UTC)


def is_expired(hold_until: datetime | None, now: datetime) -> bool:
    if hold_until is None:
        return False
    if hold_until.tzinfo is None and now.tzinfo is not None:
        # SQLite hands back naive datetimes; stored values are always UTC.
        hold_until = hold_until.replace(tzinfo=UTC)
    return hold_until <= now


def reconcile_positions(
    positions: Iterable[StockGroupPosition],
) -> list[ConsistencyWarning]:
    """OVERBOOK warnings for every group the pooled layer has over-promised."""
    warnings = []
    for position in sorted(positions, key=lambda p: p.key.sort_key()):
        if position.overbooked:
            warnings.append(make_warning(
                AlertKind.OVERBOOK,
                position.key,
                f"{position.pooled_outstanding} pooled outstanding against "
                f"{position.available} available",
            ))
    return warnings
