"""
AllocationService -- pooled and unit-level sales allocation.

Responsibility:
    Decides whether a pooled stock-group request may be satisfied, records
    pooled reservations, binds them to concrete units, releases them
    (manually or when their hold expires) and reconciles the pooled layer
    against the units.  Unit-level allocation is delegated to
    LifecycleService as a ready_for_sale -> reserved transition.

Architecture position:
    Kernel > Services -- imperative shell.  Pure rules live in
    ``domain/allocation.py``.  Flush only.

Invariants enforced:
    - Pooled decisions for one group serialise on the group's advisory lock
      row (``SELECT ... FOR UPDATE`` on stock_group_locks).  The position is
      read only after the lock is held.
    - A pooled request is granted only if
      ``available - pooled_outstanding >= quantity``.
    - ``bound_quantity`` never exceeds ``quantity``; reaching it closes the
      reservation as fulfilled.
    - Closed reservations (released, fulfilled) are never reopened.

Failure modes:
    - InvalidQuantityError, InsufficientStockError, ReservationClosedError,
      ReservationNotFoundError, UnitNotAllocatableError, ZoneNotFoundError.
    - ConflictError propagated from LifecycleService.

Audit relevance:
    Grants are logged at INFO (``allocation_granted``), rejections at
    WARNING (``allocation_rejected``), releases at INFO and reconciliation
    findings at WARNING.
"""

from datetime import datetime
from typing import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nursery_kernel.domain.allocation import (
    StockGroupPosition,
    check_allocation,
    hold_deadline,
    is_expired,
    normalize_deadline,
    reconcile_positions,
    validate_quantity,
)
from nursery_kernel.domain.clock import Clock, SystemClock
from nursery_kernel.domain.dtos import (
    Actor,
    ContextType,
    ReservationInfo,
    ReservationStatus,
    TransitionContext,
    TransitionResult,
)
from nursery_kernel.domain.lifecycle import UnitStatus
from nursery_kernel.domain.rollup import ConsistencyWarning, GroupKey, RollupFilter
from nursery_kernel.exceptions import (
    ConflictError,
    InsufficientStockError,
    InvalidQuantityError,
    ReservationClosedError,
    ReservationNotFoundError,
    UnitNotAllocatableError,
    ZoneNotFoundError,
)
from nursery_kernel.logging_config import LogContext, get_logger
from nursery_kernel.models.stock_reservation import StockGroupLock, StockReservation
from nursery_kernel.models.unit import Unit
from nursery_kernel.models.zone import Zone
from nursery_kernel.selectors.unit_selector import UnitSelector, group_filter
from nursery_kernel.services.base import BaseService
from nursery_kernel.services.lifecycle_service import LifecycleService

logger = get_logger("services.allocation")


def _reservation_group_filter(key: GroupKey):
    clauses = [
        StockReservation.zone_id == key.zone_id,
        StockReservation.species_id == key.species_id,
        StockReservation.size_label == key.size_label,
    ]
    if key.grade is None:
        clauses.append(StockReservation.grade.is_(None))
    else:
        clauses.append(StockReservation.grade == key.grade)
    return clauses


def _key_of(reservation: StockReservation) -> GroupKey:
    return GroupKey(
        zone_id=reservation.zone_id,
        species_id=reservation.species_id,
        size_label=reservation.size_label,
        grade=reservation.grade,
    )


class AllocationService(BaseService[StockReservation]):
    """
    Pooled reservation policy on top of the unit lifecycle.

    Non-goals:
        - No pricing, no deal documents; ``deal_id`` is an opaque reference.
        - No background expiry; ``release_expired()`` is called by the host.
    """

    def __init__(
        self,
        session: Session,
        lifecycle: LifecycleService | None = None,
        clock: Clock | None = None,
        default_hold_days: int | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._lifecycle = lifecycle or LifecycleService(session, clock=self._clock)
        self._units = UnitSelector(session)
        self._default_hold_days = default_hold_days

    # ------------------------------------------------------------------
    # Locking and positions
    # ------------------------------------------------------------------

    def _lock_group(self, key: GroupKey) -> StockGroupLock:
        """Take the group's advisory lock, creating the lock row on first use."""
        label = key.label()
        stmt = (
            select(StockGroupLock)
            .where(StockGroupLock.group_key == label)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        lock = self.session.execute(stmt).scalar_one_or_none()
        if lock is not None:
            return lock

        # Another caller may create the row at the same moment.
        savepoint = self.session.begin_nested()
        try:
            lock = StockGroupLock(group_key=label, decisions=0)
            self.session.add(lock)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            logger.debug("group_lock_race_retry", extra={"group_key": label})
            savepoint.rollback()
            lock = self.session.execute(stmt).scalar_one()
            return lock
        return self.session.execute(stmt).scalar_one()

    def _pooled_outstanding(self, key: GroupKey) -> int:
        outstanding = self.session.execute(
            select(
                func.coalesce(
                    func.sum(StockReservation.quantity - StockReservation.bound_quantity), 0
                )
            ).where(
                StockReservation.status == ReservationStatus.RESERVED.value,
                *_reservation_group_filter(key),
            )
        ).scalar_one()
        return int(outstanding)

    def position(self, group_key: GroupKey) -> StockGroupPosition:
        """Current position of a group (not locked; may be stale by commit time)."""
        counts = self._units.count_by_status(group_key)
        return StockGroupPosition(
            key=group_key,
            available=counts.get(UnitStatus.READY_FOR_SALE, 0),
            unit_reserved=counts.get(UnitStatus.RESERVED, 0),
            pooled_outstanding=self._pooled_outstanding(group_key),
        )

    def _load_reservation(self, reservation_id: UUID) -> StockReservation:
        reservation = self.session.execute(
            select(StockReservation)
            .where(StockReservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if reservation is None:
            raise ReservationNotFoundError(str(reservation_id))
        return reservation

    def _require_open(self, reservation: StockReservation) -> None:
        if reservation.status != ReservationStatus.RESERVED.value:
            raise ReservationClosedError(str(reservation.id), reservation.status)

    # ------------------------------------------------------------------
    # Pooled allocation
    # ------------------------------------------------------------------

    def allocate(
        self,
        group_key: GroupKey,
        quantity: int,
        actor: Actor,
        deal_id: UUID | None = None,
        notes: str | None = None,
        hold_until: datetime | None = None,
    ) -> ReservationInfo:
        """
        Reserve ``quantity`` units of a stock group without choosing units.

        Raises:
            InvalidQuantityError: quantity is not positive.
            ValidationError: hold_until is naive.
            ZoneNotFoundError: the group's zone does not exist.
            InsufficientStockError: quantity exceeds the allocatable amount.
        """
        validate_quantity(quantity)
        hold_until = normalize_deadline(hold_until)
        if self.session.get(Zone, group_key.zone_id) is None:
            raise ZoneNotFoundError(str(group_key.zone_id))

        with LogContext.bind(actor_id=actor.actor_id):
            lock = self._lock_group(group_key)
            position = self.position(group_key)
            try:
                check_allocation(position, quantity)
            except InsufficientStockError as exc:
                logger.warning(
                    "allocation_rejected",
                    extra={
                        "group_key": group_key.label(),
                        "requested": quantity,
                        "allocatable": exc.allocatable,
                        "deficit": exc.deficit,
                    },
                )
                raise

            now = self._clock.now()
            reservation = StockReservation(
                zone_id=group_key.zone_id,
                species_id=group_key.species_id,
                size_label=group_key.size_label,
                grade=group_key.grade,
                quantity=quantity,
                bound_quantity=0,
                status=ReservationStatus.RESERVED.value,
                deal_id=deal_id,
                notes=notes,
                hold_until=hold_until or hold_deadline(now, self._default_hold_days),
                actor_id=actor.actor_id,
                created_by_id=actor.actor_id,
            )
            self.session.add(reservation)
            lock.decisions += 1
            self.session.flush()

            logger.info(
                "allocation_granted",
                extra={
                    "reservation_id": str(reservation.id),
                    "group_key": group_key.label(),
                    "quantity": quantity,
                    "allocatable_before": position.allocatable,
                    "deal_id": str(deal_id) if deal_id else None,
                },
            )
            return ReservationInfo.from_model(reservation)

    def allocate_unit(
        self,
        unit_id: UUID,
        actor: Actor,
        deal_id: UUID | None = None,
        source: str | None = None,
        expected_status: UnitStatus | str | None = None,
    ) -> TransitionResult:
        """
        Reserve one specific unit: ready_for_sale -> reserved.

        Raises:
            ConflictError: ``expected_status`` does not match.
            UnitNotAllocatableError: the unit is not ready for sale.
        """
        unit = self._units.get(unit_id)
        if expected_status is not None:
            expected = UnitStatus.parse(expected_status)
            if expected != unit.status:
                raise ConflictError(
                    unit_id=str(unit_id),
                    expected_status=expected.value,
                    actual_status=unit.status.value,
                    requested_status=UnitStatus.RESERVED.value,
                )
        if unit.status != UnitStatus.READY_FOR_SALE:
            logger.warning(
                "allocation_rejected",
                extra={"unit_id": str(unit_id), "current_status": unit.status.value},
            )
            raise UnitNotAllocatableError(str(unit_id), unit.status.value)

        key = GroupKey(unit.zone_id, unit.species_id, unit.size_label, unit.grade)
        lock = self._lock_group(key)
        result = self._lifecycle.transition(
            unit_id,
            UnitStatus.RESERVED,
            actor=actor,
            source=source,
            expected_status=UnitStatus.READY_FOR_SALE,
            context=TransitionContext(ContextType.DEAL, deal_id) if deal_id else None,
        )
        lock.decisions += 1
        self.session.flush()
        return result

    def bind_units(
        self,
        reservation_id: UUID,
        unit_ids: Iterable[UUID],
        actor: Actor,
        source: str | None = None,
    ) -> ReservationInfo:
        """
        Fulfil part or all of a pooled reservation with concrete units.

        Each unit must belong to the reservation's group and be ready for
        sale; each is transitioned to reserved.

        Raises:
            ReservationClosedError: reservation is not open.
            InvalidQuantityError: no units, duplicates, or more than remain.
            UnitNotAllocatableError: a unit is outside the group or not ready.
        """
        unit_ids = list(unit_ids)
        reservation = self._load_reservation(reservation_id)
        self._require_open(reservation)

        remaining = reservation.quantity - reservation.bound_quantity
        if not unit_ids:
            raise InvalidQuantityError(0, "no units to bind")
        if len(set(unit_ids)) != len(unit_ids):
            raise InvalidQuantityError(len(unit_ids), "duplicate unit ids")
        if len(unit_ids) > remaining:
            raise InvalidQuantityError(
                len(unit_ids), f"only {remaining} left to bind on reservation {reservation.id}"
            )

        key = _key_of(reservation)
        lock = self._lock_group(key)
        context = (
            TransitionContext(ContextType.DEAL, reservation.deal_id)
            if reservation.deal_id else None
        )
        for unit_id in unit_ids:
            unit = self._units.get(unit_id)
            unit_key = GroupKey(unit.zone_id, unit.species_id, unit.size_label, unit.grade)
            if unit_key != key:
                raise UnitNotAllocatableError(
                    str(unit_id), unit.status.value, reason=f"not in group {key.label()}"
                )
            if unit.status != UnitStatus.READY_FOR_SALE:
                raise UnitNotAllocatableError(str(unit_id), unit.status.value)
            self._lifecycle.transition(
                unit_id,
                UnitStatus.RESERVED,
                actor=actor,
                source=source,
                expected_status=UnitStatus.READY_FOR_SALE,
                context=context,
            )

        reservation.bound_quantity += len(unit_ids)
        reservation.updated_by_id = actor.actor_id
        if reservation.bound_quantity == reservation.quantity:
            reservation.status = ReservationStatus.FULFILLED.value
            reservation.closed_at = self._clock.now()
        lock.decisions += 1
        self.session.flush()

        logger.info(
            "reservation_bound",
            extra={
                "reservation_id": str(reservation.id),
                "bound_now": len(unit_ids),
                "bound_quantity": reservation.bound_quantity,
                "quantity": reservation.quantity,
                "reservation_status": reservation.status,
            },
        )
        return ReservationInfo.from_model(reservation)

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def _close_released(
        self, reservation: StockReservation, actor: Actor | None, notes: str | None, reason: str
    ) -> ReservationInfo:
        reservation.status = ReservationStatus.RELEASED.value
        reservation.closed_at = self._clock.now()
        if actor is not None:
            reservation.updated_by_id = actor.actor_id
        if notes:
            reservation.notes = f"{reservation.notes}\n{notes}" if reservation.notes else notes
        self.session.flush()
        logger.info(
            "reservation_released",
            extra={
                "reservation_id": str(reservation.id),
                "group_key": _key_of(reservation).label(),
                "returned_quantity": reservation.quantity - reservation.bound_quantity,
                "reason": reason,
            },
        )
        return ReservationInfo.from_model(reservation)

    def release(
        self, reservation_id: UUID, actor: Actor, notes: str | None = None
    ) -> ReservationInfo:
        """Release an open reservation; its outstanding quantity returns to the pool."""
        reservation = self._load_reservation(reservation_id)
        self._require_open(reservation)
        return self._close_released(reservation, actor, notes, reason="manual")

    def release_expired(self, actor: Actor | None = None) -> list[ReservationInfo]:
        """Release every open reservation whose hold has passed."""
        now = self._clock.now()
        candidates = self.session.execute(
            select(StockReservation)
            .where(
                StockReservation.status == ReservationStatus.RESERVED.value,
                StockReservation.hold_until.is_not(None),
            )
            .order_by(StockReservation.hold_until, StockReservation.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

        released = []
        for reservation in candidates:
            if is_expired(reservation.hold_until, now):
                released.append(
                    self._close_released(reservation, actor, None, reason="hold_expired")
                )
        if released:
            logger.info("reservations_expired", extra={"released_count": len(released)})
        return released

    # ------------------------------------------------------------------
    # Reads and reconciliation
    # ------------------------------------------------------------------

    def open_reservations(self, group_key: GroupKey | None = None) -> list[ReservationInfo]:
        stmt = select(StockReservation).where(
            StockReservation.status == ReservationStatus.RESERVED.value
        )
        if group_key is not None:
            stmt = stmt.where(*_reservation_group_filter(group_key))
        rows = self.session.execute(stmt.order_by(StockReservation.created_at, StockReservation.id))
        return [ReservationInfo.from_model(r) for r in rows.scalars()]

    def reconcile(self, filter: RollupFilter | None = None) -> list[ConsistencyWarning]:
        """
        OVERBOOK warnings for groups whose open pooled quantity exceeds
        their available units.
        """
        filter = filter or RollupFilter()
        rows = self.session.execute(
            select(
                StockReservation.zone_id,
                StockReservation.species_id,
                StockReservation.size_label,
                StockReservation.grade,
                Zone.plot_type,
            )
            .join(Zone, Zone.id == StockReservation.zone_id)
            .where(StockReservation.status == ReservationStatus.RESERVED.value)
            .distinct()
        ).all()

        positions = []
        for row in rows:
            key = GroupKey(row.zone_id, row.species_id, row.size_label, row.grade)
            if filter.matches(key, row.plot_type):
                positions.append(self.position(key))

        warnings = reconcile_positions(positions)
        for warning in warnings:
            logger.warning(
                "pooled_overbook_detected",
                extra={"group_key": warning.key.label(), "detail": warning.message},
            )
        return warnings

    def units_available(self, group_key: GroupKey) -> list[UUID]:
        """Ids of ready-for-sale units in a group, in code order."""
        return list(
            self.session.execute(
                select(Unit.id)
                .where(Unit.status == UnitStatus.READY_FOR_SALE.value, *group_filter(group_key))
                .order_by(Unit.code)
            ).scalars()
        )
