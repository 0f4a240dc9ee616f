"""
DTOs -- immutable values exchanged between the services and their callers.

Responsibility:
    Actor and context values passed into the lifecycle service, and the
    frozen read models (UnitInfo, UnitEventInfo, ReservationInfo) returned by
    services and selectors instead of ORM instances.

Architecture position:
    Kernel > Domain -- zero I/O.  ``from_model()`` class methods are boundary
    converters invoked from services and selectors only.

Invariants enforced:
    - Callers never receive live ORM objects, so a returned value cannot be
      used to bypass the compare-and-set write path.
    - Every write names its Actor explicitly; nothing is read from an ambient
      session user.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from nursery_kernel.domain.lifecycle import TransitionKind, UnitStatus
from nursery_kernel.domain.rollup import GroupKey

if TYPE_CHECKING:
    from nursery_kernel.models.stock_reservation import (
        StockReservation as StockReservationModel,
    )
    from nursery_kernel.models.unit import Unit as UnitModel
    from nursery_kernel.models.unit_event import UnitEvent as UnitEventModel


@dataclass(frozen=True)
class Actor:
    """Who is performing a write, and which roles they hold.

    Role lookup happens outside the kernel; the caller passes the result.
    """
    actor_id: UUID
    roles: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not isinstance(self.roles, frozenset):
            object.__setattr__(self, "roles", frozenset(self.roles))

    def has_any_role(self, roles) -> bool:
        return bool(self.roles & frozenset(roles))


class ContextType(str, Enum):
    """Kind of business document a transition is linked to."""

    DEAL = "deal"
    DIG_ORDER = "dig_order"
    SHIPMENT = "shipment"
    ZONE = "zone"


@dataclass(frozen=True)
class TransitionContext:
    """Business document that caused a transition (deal, dig order, shipment)."""
    context_type: ContextType
    context_id: UUID

    def __post_init__(self) -> None:
        object.__setattr__(self, "context_type", ContextType(self.context_type))


@dataclass(frozen=True)
class ClassificationUpdate:
    """Relabelling of a unit's classification.  ``None`` leaves a field as is."""
    species_id: UUID | None = None
    size_label: str | None = None
    grade: str | None = None
    height_label: str | None = None

    def values(self) -> dict[str, object]:
        return {
            name: value
            for name, value in (
                ("species_id", self.species_id),
                ("size_label", self.size_label),
                ("grade", self.grade),
                ("height_label", self.height_label),
            )
            if value is not None
        }

    @property
    def is_empty(self) -> bool:
        return not self.values()


@dataclass(frozen=True)
class UnitInfo:
    """Read model of a unit."""
    id: UUID
    code: str
    status: UnitStatus
    version: int
    species_id: UUID
    size_label: str
    grade: str | None
    height_label: str | None
    zone_id: UUID
    deal_id: UUID | None
    dig_order_id: UUID | None
    tagged_at: datetime | None

    @classmethod
    def from_model(cls, model: UnitModel) -> UnitInfo:
        return cls(
            id=model.id,
            code=model.code,
            status=UnitStatus(model.status),
            version=model.version,
            species_id=model.species_id,
            size_label=model.size_label,
            grade=model.grade,
            height_label=model.height_label,
            zone_id=model.zone_id,
            deal_id=model.deal_id,
            dig_order_id=model.dig_order_id,
            tagged_at=model.tagged_at,
        )


@dataclass(frozen=True)
class UnitEventInfo:
    """Read model of one ledger event."""
    id: UUID
    unit_id: UUID
    seq: int
    event_type: str
    occurred_at: datetime
    from_status: UnitStatus | None
    to_status: UnitStatus
    actor_id: UUID
    source: str | None
    context_type: str | None
    context_id: UUID | None
    notes: str | None
    is_correction: bool

    @classmethod
    def from_model(cls, model: UnitEventModel) -> UnitEventInfo:
        return cls(
            id=model.id,
            unit_id=model.unit_id,
            seq=model.seq,
            event_type=model.event_type,
            occurred_at=model.occurred_at,
            from_status=UnitStatus(model.from_status) if model.from_status else None,
            to_status=UnitStatus(model.to_status),
            actor_id=model.actor_id,
            source=model.source,
            context_type=model.context_type,
            context_id=model.context_id,
            notes=model.notes,
            is_correction=model.is_correction,
        )


class TransitionOutcome(str, Enum):
    """What a transition call did."""

    APPLIED = "applied"
    CORRECTED = "corrected"
    NO_OP = "no_op"


@dataclass(frozen=True)
class TransitionResult:
    """
    Result of ``LifecycleService.transition``.

    ``event`` is None exactly when ``outcome`` is NO_OP.
    """
    unit_id: UUID
    outcome: TransitionOutcome
    kind: TransitionKind
    from_status: UnitStatus
    to_status: UnitStatus
    version: int
    event: UnitEventInfo | None = None

    @property
    def changed(self) -> bool:
        return self.outcome != TransitionOutcome.NO_OP


@dataclass(frozen=True)
class BulkTransitionResult:
    """Per-unit results of ``transition_many``, in request order."""
    results: tuple[TransitionResult, ...]

    @property
    def changed_count(self) -> int:
        return sum(1 for r in self.results if r.changed)

    @property
    def no_op_count(self) -> int:
        return sum(1 for r in self.results if not r.changed)


@dataclass(frozen=True)
class ReplayCheck:
    """Comparison of a unit's cached status with its ledger replay."""
    unit_id: UUID
    cached_status: UnitStatus
    replayed_status: UnitStatus | None
    event_count: int

    @property
    def matches(self) -> bool:
        return self.cached_status == self.replayed_status


class ReservationStatus(str, Enum):
    """Lifecycle of a pooled stock reservation."""

    RESERVED = "reserved"
    RELEASED = "released"
    FULFILLED = "fulfilled"


@dataclass(frozen=True)
class ReservationInfo:
    """Read model of a pooled stock reservation."""
    id: UUID
    zone_id: UUID
    species_id: UUID
    size_label: str
    grade: str | None
    quantity: int
    bound_quantity: int
    status: ReservationStatus
    deal_id: UUID | None
    notes: str | None
    hold_until: datetime | None
    actor_id: UUID
    closed_at: datetime | None

    @property
    def key(self) -> GroupKey:
        return GroupKey(self.zone_id, self.species_id, self.size_label, self.grade)

    @property
    def outstanding(self) -> int:
        """Quantity promised but not yet bound to units (0 once closed)."""
        if self.status != ReservationStatus.RESERVED:
            return 0
        return self.quantity - self.bound_quantity

    @classmethod
    def from_model(cls, model: StockReservationModel) -> ReservationInfo:
        return cls(
            id=model.id,
            zone_id=model.zone_id,
            species_id=model.species_id,
            size_label=model.size_label,
            grade=model.grade,
            quantity=model.quantity,
            bound_quantity=model.bound_quantity,
            status=ReservationStatus(model.status),
            deal_id=model.deal_id,
            notes=model.notes,
            hold_until=model.hold_until,
            actor_id=model.actor_id,
            closed_at=model.closed_at,
        )
