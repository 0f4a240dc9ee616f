"""
LifecycleService -- the only writer of unit status.

Responsibility:
    Applies a requested status change to one unit: classifies it, enforces
    the notes / force / role rules for corrections, writes the unit through
    a compare-and-set UPDATE and appends the matching ledger event in the
    same flush.  Also tags new units, relocates them between zones and
    applies classification corrections.

Architecture position:
    Kernel > Services -- imperative shell.  Calls the pure validator in
    ``domain/lifecycle.py`` and the EventLedger.  Flush only.

Invariants enforced:
    - Exactly one event per status-changing call; none for a no-op.
    - Unit status and its event are flushed together; the caller's
      transaction commits both or neither.
    - Compare-and-set on (status, version): a write succeeds only if the
      row still holds the status and version read at the start of the call,
      otherwise ConflictError and nothing is written.  Changes made before
      the call are caught only through ``expected_status`` (status moved) or
      ``expected_version`` (any write, including a round trip back to the
      same status).
    - Corrections need non-blank notes (checked first, regardless of force),
      then ``force=True``, then an actor holding a correction role.
    - deal_id / dig_order_id survive only in the statuses that keep the
      commitment (DEAL_BOUND_STATUSES, DIG_ORDER_BOUND_STATUSES).

Failure modes:
    - UnitNotFoundError, ZoneNotFoundError: unknown ids.
    - ConflictError: stale ``expected_status`` or a concurrent write won.
    - CorrectionNotesRequiredError, PermissionDeniedError: correction rules.
    - UnitCodeExistsError: duplicate tag code.

Audit relevance:
    Normal steps are logged at INFO as ``unit_transitioned``; corrections at
    WARNING as ``unit_corrected``.  Rejections are logged at WARNING before
    the exception propagates.
"""

from typing import Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nursery_kernel.domain.clock import Clock, SystemClock
from nursery_kernel.domain.dtos import (
    Actor,
    BulkTransitionResult,
    ClassificationUpdate,
    ContextType,
    TransitionContext,
    TransitionOutcome,
    TransitionResult,
    UnitEventInfo,
    UnitInfo,
)
from nursery_kernel.domain.lifecycle import (
    DEAL_BOUND_STATUSES,
    DIG_ORDER_BOUND_STATUSES,
    TransitionKind,
    UnitStatus,
    classify,
)
from nursery_kernel.exceptions import (
    ConflictError,
    CorrectionNotesRequiredError,
    PermissionDeniedError,
    UnitCodeExistsError,
    UnitNotFoundError,
    ValidationError,
    ZoneNotFoundError,
)
from nursery_kernel.logging_config import LogContext, get_logger
from nursery_kernel.models.unit import Unit
from nursery_kernel.models.unit_event import UnitEventType
from nursery_kernel.models.zone import Zone
from nursery_kernel.services.base import BaseService
from nursery_kernel.services.event_ledger import EventLedger

logger = get_logger("services.lifecycle")

DEFAULT_CORRECTION_ROLES = ("manager", "admin")


def _is_blank(notes: str | None) -> bool:
    return notes is None or not notes.strip()


class LifecycleService(BaseService[Unit]):
    """
    Applies lifecycle transitions to units.

    Contract:
        Every public method takes an explicit ``Actor`` and returns frozen
        DTOs.  Nothing is committed here.

    Non-goals:
        - Does NOT look up roles; the Actor carries them.
        - Does NOT retry on ConflictError; the caller re-reads and decides.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        correction_roles: Iterable[str] = DEFAULT_CORRECTION_ROLES,
        ledger: EventLedger | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._correction_roles = frozenset(correction_roles)
        self._ledger = ledger or EventLedger(session)

    # ------------------------------------------------------------------
    # Reads and the compare-and-set write
    # ------------------------------------------------------------------

    def _load(self, unit_id: UUID) -> Unit:
        # populate_existing: the identity map may hold a stale copy.
        unit = self.session.execute(
            select(Unit)
            .where(Unit.id == unit_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if unit is None:
            raise UnitNotFoundError(str(unit_id))
        return unit

    def _require_zone(self, zone_id: UUID) -> Zone:
        zone = self.session.get(Zone, zone_id)
        if zone is None:
            raise ZoneNotFoundError(str(zone_id))
        return zone

    def _compare_and_set(
        self,
        unit: Unit,
        read_status: UnitStatus,
        read_version: int,
        values: dict,
        actor: Actor,
        requested_status: UnitStatus | None = None,
    ) -> Unit:
        """
        UPDATE the unit only if it still holds ``read_status`` and
        ``read_version``; bump version.  Zero rows -> ConflictError.
        """
        result = self.session.execute(
            update(Unit)
            .where(
                Unit.id == unit.id,
                Unit.status == read_status.value,
                Unit.version == read_version,
            )
            .values(version=Unit.version + 1, updated_by_id=actor.actor_id, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            actual = self.session.execute(
                select(Unit.status).where(Unit.id == unit.id)
            ).scalar_one_or_none()
            logger.warning(
                "unit_write_conflict",
                extra={
                    "unit_id": str(unit.id),
                    "read_status": read_status.value,
                    "read_version": read_version,
                    "actual_status": actual,
                },
            )
            raise ConflictError(
                unit_id=str(unit.id),
                expected_status=read_status.value,
                actual_status=actual,
                requested_status=requested_status.value if requested_status else None,
            )
        self.session.refresh(unit)
        return unit

    @staticmethod
    def _linked_context(
        unit: Unit, new_status: UnitStatus, context: TransitionContext | None
    ) -> dict:
        deal_id = unit.deal_id
        dig_order_id = unit.dig_order_id
        if context is not None:
            if context.context_type == ContextType.DEAL:
                deal_id = context.context_id
            elif context.context_type == ContextType.DIG_ORDER:
                dig_order_id = context.context_id
        if new_status not in DEAL_BOUND_STATUSES:
            deal_id = None
        if new_status not in DIG_ORDER_BOUND_STATUSES:
            dig_order_id = None
        return {"deal_id": deal_id, "dig_order_id": dig_order_id}

    def _authorize_correction(
        self,
        unit: Unit,
        current: UnitStatus,
        requested: UnitStatus,
        actor: Actor,
        notes: str | None,
        force: bool,
    ) -> None:
        if _is_blank(notes):
            logger.warning(
                "correction_rejected",
                extra={
                    "unit_id": str(unit.id),
                    "from_status": current.value,
                    "to_status": requested.value,
                    "reason": "notes_required",
                },
            )
            raise CorrectionNotesRequiredError(str(unit.id), current.value, requested.value)

        reason = None
        if not force:
            reason = "correction requires force=True"
        elif not actor.has_any_role(self._correction_roles):
            reason = (
                "actor holds none of the correction roles "
                f"{sorted(self._correction_roles)}"
            )
        if reason is not None:
            logger.warning(
                "correction_rejected",
                extra={
                    "unit_id": str(unit.id),
                    "from_status": current.value,
                    "to_status": requested.value,
                    "reason": reason,
                },
            )
            raise PermissionDeniedError(
                unit_id=str(unit.id),
                actor_id=str(actor.actor_id),
                current_status=current.value,
                requested_status=requested.value,
                reason=reason,
            )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        unit_id: UUID,
        requested_status: UnitStatus | str,
        *,
        actor: Actor,
        notes: str | None = None,
        source: str | None = None,
        force: bool = False,
        expected_status: UnitStatus | str | None = None,
        expected_version: int | None = None,
        context: TransitionContext | None = None,
        classification: ClassificationUpdate | None = None,
    ) -> TransitionResult:
        """
        Move one unit to ``requested_status``.

        Args:
            unit_id: Unit to change.
            requested_status: Target status (enum or its string value).
            actor: Who is acting, with roles.
            notes: Free text; required for corrections.
            source: Origin tag (screen or process).
            force: Explicit opt-in to correction mode.
            expected_status: The caller's belief about the current status.
                Checked against the authoritative value before anything else.
            expected_version: The unit version the caller last read.  Catches
                changes that returned the unit to the same status since
                then (reserved and corrected back, for instance).
            context: Deal / dig order / shipment that caused the change.
            classification: Relabelling applied in the same write.  Applied
                even when the status change is a no-op.

        Returns:
            TransitionResult; ``event`` is None for a no-op.
        """
        requested = UnitStatus.parse(requested_status)
        expected = UnitStatus.parse(expected_status) if expected_status is not None else None

        with LogContext.bind(unit_id=unit_id, actor_id=actor.actor_id, source=source):
            unit = self._load(unit_id)
            current = UnitStatus(unit.status)

            if expected is not None and expected != current:
                logger.warning(
                    "unit_write_conflict",
                    extra={
                        "unit_id": str(unit.id),
                        "expected_status": expected.value,
                        "actual_status": current.value,
                        "requested_status": requested.value,
                    },
                )
                raise ConflictError(
                    unit_id=str(unit.id),
                    expected_status=expected.value,
                    actual_status=current.value,
                    requested_status=requested.value,
                )

            if expected_version is not None and expected_version != unit.version:
                logger.warning(
                    "unit_write_conflict",
                    extra={
                        "unit_id": str(unit.id),
                        "expected_version": expected_version,
                        "actual_version": unit.version,
                        "requested_status": requested.value,
                    },
                )
                raise ConflictError(
                    unit_id=str(unit.id),
                    expected_status=expected.value if expected else None,
                    actual_status=current.value,
                    requested_status=requested.value,
                    expected_version=expected_version,
                    actual_version=unit.version,
                )

            kind = classify(current, requested)

            if kind == TransitionKind.NO_OP:
                if classification is not None and not classification.is_empty:
                    unit = self._compare_and_set(
                        unit, current, unit.version, classification.values(), actor,
                    )
                logger.debug(
                    "transition_no_op",
                    extra={"unit_id": str(unit.id), "status": current.value},
                )
                return TransitionResult(
                    unit_id=unit.id,
                    outcome=TransitionOutcome.NO_OP,
                    kind=kind,
                    from_status=current,
                    to_status=current,
                    version=unit.version,
                )

            is_correction = kind == TransitionKind.CORRECTION
            if is_correction:
                self._authorize_correction(unit, current, requested, actor, notes, force)

            values = {"status": requested.value}
            values.update(self._linked_context(unit, requested, context))
            if classification is not None:
                values.update(classification.values())

            unit = self._compare_and_set(
                unit, current, unit.version, values, actor, requested_status=requested,
            )
            event = self._ledger.append(
                unit_id=unit.id,
                event_type=UnitEventType.CORRECTION if is_correction else UnitEventType.STATUS_CHANGE,
                from_status=current,
                to_status=requested,
                actor_id=actor.actor_id,
                occurred_at=self._clock.now(),
                source=source,
                context=context,
                notes=notes,
                is_correction=is_correction,
            )

            log_fields = {
                "unit_id": str(unit.id),
                "unit_code": unit.code,
                "from_status": current.value,
                "to_status": requested.value,
                "version": unit.version,
                "event_seq": event.seq,
                "is_correction": is_correction,
            }
            if is_correction:
                logger.warning("unit_corrected", extra=log_fields)
            else:
                logger.info("unit_transitioned", extra=log_fields)

            return TransitionResult(
                unit_id=unit.id,
                outcome=TransitionOutcome.CORRECTED if is_correction else TransitionOutcome.APPLIED,
                kind=kind,
                from_status=current,
                to_status=requested,
                version=unit.version,
                event=UnitEventInfo.from_model(event),
            )

    def transition_many(
        self,
        unit_ids: Iterable[UUID],
        requested_status: UnitStatus | str,
        *,
        actor: Actor,
        notes: str | None = None,
        source: str | None = None,
        force: bool = False,
        context: TransitionContext | None = None,
    ) -> BulkTransitionResult:
        """
        Apply the same transition to several units, in order.

        The first failure propagates; the caller rolls back the batch.
        """
        results = []
        for unit_id in unit_ids:
            results.append(
                self.transition(
                    unit_id,
                    requested_status,
                    actor=actor,
                    notes=notes,
                    source=source,
                    force=force,
                    context=context,
                )
            )
        bulk = BulkTransitionResult(results=tuple(results))
        logger.info(
            "bulk_transition_applied",
            extra={
                "requested_status": UnitStatus.parse(requested_status).value,
                "unit_count": len(bulk.results),
                "changed_count": bulk.changed_count,
            },
        )
        return bulk

    # ------------------------------------------------------------------
    # Tagging, relocation, classification
    # ------------------------------------------------------------------

    def tag_unit(
        self,
        code: str,
        zone_id: UUID,
        species_id: UUID,
        size_label: str,
        actor: Actor,
        grade: str | None = None,
        height_label: str | None = None,
        source: str | None = None,
    ) -> UnitInfo:
        """
        Create a unit in ``in_zone`` and append its ``tagged`` event.

        Raises:
            ValidationError: blank code or size label.
            ZoneNotFoundError: unknown zone.
            UnitCodeExistsError: the code is already in use.
        """
        code = (code or "").strip()
        if not code:
            raise ValidationError("unit code must not be blank")
        if _is_blank(size_label):
            raise ValidationError("size label must not be blank")

        with LogContext.bind(actor_id=actor.actor_id, source=source):
            self._require_zone(zone_id)

            existing = self.session.execute(
                select(Unit.id).where(Unit.code == code)
            ).scalar_one_or_none()
            if existing is not None:
                raise UnitCodeExistsError(code)

            now = self._clock.now()
            unit = Unit(
                code=code,
                status=UnitStatus.IN_ZONE.value,
                version=1,
                species_id=species_id,
                size_label=size_label,
                grade=grade,
                height_label=height_label,
                zone_id=zone_id,
                tagged_at=now,
                created_by_id=actor.actor_id,
            )

            # A concurrent tagger may win the UNIQUE(code) race after our check.
            savepoint = self.session.begin_nested()
            try:
                self.session.add(unit)
                self.session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                raise UnitCodeExistsError(code) from None

            self._ledger.append(
                unit_id=unit.id,
                event_type=UnitEventType.TAGGED,
                from_status=None,
                to_status=UnitStatus.IN_ZONE,
                actor_id=actor.actor_id,
                occurred_at=now,
                source=source,
                context=TransitionContext(ContextType.ZONE, zone_id),
            )

            logger.info(
                "unit_tagged",
                extra={
                    "unit_id": str(unit.id),
                    "unit_code": code,
                    "zone_id": str(zone_id),
                    "species_id": str(species_id),
                    "size_label": size_label,
                },
            )
            return UnitInfo.from_model(unit)

    def relocate(
        self,
        unit_id: UUID,
        zone_id: UUID,
        actor: Actor,
        notes: str | None = None,
        source: str | None = None,
    ) -> UnitInfo:
        """
        Move a unit to another zone without touching its status.

        Appends a ``relocated`` event whose from/to status are both the
        current status.  Moving to the zone the unit is already in is a
        no-op.
        """
        with LogContext.bind(unit_id=unit_id, actor_id=actor.actor_id, source=source):
            unit = self._load(unit_id)
            self._require_zone(zone_id)
            if unit.zone_id == zone_id:
                return UnitInfo.from_model(unit)

            current = UnitStatus(unit.status)
            previous_zone = unit.zone_id
            unit = self._compare_and_set(unit, current, unit.version, {"zone_id": zone_id}, actor)
            self._ledger.append(
                unit_id=unit.id,
                event_type=UnitEventType.RELOCATED,
                from_status=current,
                to_status=current,
                actor_id=actor.actor_id,
                occurred_at=self._clock.now(),
                source=source,
                context=TransitionContext(ContextType.ZONE, zone_id),
                notes=notes,
            )
            logger.info(
                "unit_relocated",
                extra={
                    "unit_id": str(unit.id),
                    "from_zone_id": str(previous_zone),
                    "to_zone_id": str(zone_id),
                },
            )
            return UnitInfo.from_model(unit)

    def correct_classification(
        self,
        unit_id: UUID,
        update: ClassificationUpdate,
        actor: Actor,
    ) -> UnitInfo:
        """Relabel species / size / grade / height.  Bumps version, writes no event."""
        with LogContext.bind(unit_id=unit_id, actor_id=actor.actor_id):
            unit = self._load(unit_id)
            if update.is_empty:
                return UnitInfo.from_model(unit)
            before = {name: getattr(unit, name) for name in update.values()}
            unit = self._compare_and_set(
                unit, UnitStatus(unit.status), unit.version, update.values(), actor,
            )
            logger.info(
                "unit_classification_corrected",
                extra={
                    "unit_id": str(unit.id),
                    "before": {k: str(v) if v is not None else None for k, v in before.items()},
                    "after": {k: str(v) for k, v in update.values().items()},
                    "version": unit.version,
                },
            )
            return UnitInfo.from_model(unit)
