"""
Unit lifecycle -- the closed status enum and the transition validator.

Responsibility
--------------
Owns the fixed set of statuses a tagged unit can hold and the normal-flow
graph between them.  ``classify(current, requested)`` decides whether a
requested change is a no-op, a normal step, or a correction that needs
notes and elevated permission.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects and functions.  ZERO I/O.
No imports from ``db/``, ``services/``, ``selectors/`` or outer layers.
Never consults the event ledger.

Invariants enforced
-------------------
* ``classify(s, s)`` is ``NO_OP`` for every status.
* Every edge declared in ``UNIT_WORKFLOW`` classifies as ``NORMAL``;
  every other ordered pair classifies as ``CORRECTION``.
* ``rehab``, ``dead`` and ``cancelled`` have no incoming normal edges.
  ``dead`` and ``cancelled`` have no outgoing normal edges.
* The ``units.status`` CHECK constraint is built from ``UnitStatus`` so the
  database and the validator cannot drift apart.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

from nursery_kernel.exceptions import UnknownStatusError


class UnitStatus(str, Enum):
    """Closed set of lifecycle statuses for a tagged unit."""

    IN_ZONE = "in_zone"
    SELECTED_FOR_DIG = "selected_for_dig"
    ROOT_PRUNE_1 = "root_prune_1"
    ROOT_PRUNE_2 = "root_prune_2"
    ROOT_PRUNE_3 = "root_prune_3"
    ROOT_PRUNE_4 = "root_prune_4"
    DIG_ORDERED = "dig_ordered"
    DUG = "dug"
    READY_FOR_SALE = "ready_for_sale"
    RESERVED = "reserved"
    SHIPPED = "shipped"
    PLANTED = "planted"
    SOLD = "sold"
    REHAB = "rehab"
    DEAD = "dead"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: "UnitStatus | str") -> "UnitStatus":
        """Parse an external status string.

        Raises:
            UnknownStatusError: ``value`` is not a member of the enum.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownStatusError(str(value)) from None


class TransitionKind(str, Enum):
    """Outcome of classifying a requested status change."""

    NO_OP = "no_op"
    NORMAL = "normal"
    CORRECTION = "correction"


ROOT_PRUNE_CHAIN: tuple[UnitStatus, ...] = (
    UnitStatus.ROOT_PRUNE_1,
    UnitStatus.ROOT_PRUNE_2,
    UnitStatus.ROOT_PRUNE_3,
    UnitStatus.ROOT_PRUNE_4,
)

TERMINAL_STATUSES: frozenset[UnitStatus] = frozenset(
    {UnitStatus.DEAD, UnitStatus.CANCELLED}
)

# Side branches entered only by correction.
CORRECTION_ONLY_STATUSES: frozenset[UnitStatus] = frozenset(
    {UnitStatus.REHAB, UnitStatus.DEAD, UnitStatus.CANCELLED}
)

# Statuses in which a unit keeps its deal / dig order link.
DEAL_BOUND_STATUSES: frozenset[UnitStatus] = frozenset(
    {
        UnitStatus.RESERVED,
        UnitStatus.SHIPPED,
        UnitStatus.PLANTED,
        UnitStatus.SOLD,
    }
)
DIG_ORDER_BOUND_STATUSES: frozenset[UnitStatus] = frozenset(
    {
        UnitStatus.DIG_ORDERED,
        UnitStatus.DUG,
        UnitStatus.READY_FOR_SALE,
    }
) | DEAL_BOUND_STATUSES


@dataclass(frozen=True)
class Transition:
    """A normal-flow edge of the unit lifecycle.

    ``action`` is the verb a UI offers for the step ("dig", "ship").
    """
    from_status: UnitStatus
    to_status: UnitStatus
    action: str


@dataclass(frozen=True)
class Workflow:
    """Fixed state machine definition.

    Contract: frozen; ``transitions`` reference only members of ``states``.
    ``terminal_states`` have no outgoing transitions.
    """
    name: str
    initial_state: UnitStatus
    states: tuple[UnitStatus, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[UnitStatus, ...] = ()

    def __post_init__(self) -> None:
        known = set(self.states)
        if self.initial_state not in known:
            raise ValueError(f"initial state {self.initial_state} not in states")
        for t in self.transitions:
            if t.from_status not in known or t.to_status not in known:
                raise ValueError(f"transition {t} references an unknown state")
            if t.from_status in self.terminal_states:
                raise ValueError(f"terminal state {t.from_status} has an exit")

    def edges(self) -> frozenset[tuple[UnitStatus, UnitStatus]]:
        return frozenset((t.from_status, t.to_status) for t in self.transitions)


def _prune_transitions() -> tuple[Transition, ...]:
    # Root pruning rounds may be skipped but never undone.
    chain = (UnitStatus.SELECTED_FOR_DIG,) + ROOT_PRUNE_CHAIN
    edges = []
    for i, source in enumerate(chain):
        for target in chain[i + 1:]:
            edges.append(Transition(source, target, action="root_prune"))
    return tuple(edges)


UNIT_WORKFLOW = Workflow(
    name="unit_lifecycle",
    initial_state=UnitStatus.IN_ZONE,
    states=tuple(UnitStatus),
    terminal_states=(UnitStatus.DEAD, UnitStatus.CANCELLED),
    transitions=(
        Transition(UnitStatus.IN_ZONE, UnitStatus.SELECTED_FOR_DIG, action="select"),
        Transition(UnitStatus.IN_ZONE, UnitStatus.DIG_ORDERED, action="order_dig"),
        *_prune_transitions(),
        Transition(UnitStatus.DIG_ORDERED, UnitStatus.DUG, action="dig"),
        Transition(UnitStatus.DUG, UnitStatus.READY_FOR_SALE, action="release_for_sale"),
        Transition(UnitStatus.READY_FOR_SALE, UnitStatus.RESERVED, action="reserve"),
        Transition(UnitStatus.RESERVED, UnitStatus.SHIPPED, action="ship"),
        Transition(UnitStatus.RESERVED, UnitStatus.PLANTED, action="plant"),
        Transition(UnitStatus.RESERVED, UnitStatus.SOLD, action="sell"),
    ),
)

_NORMAL_EDGES = UNIT_WORKFLOW.edges()


def classify(
    current: UnitStatus | str, requested: UnitStatus | str
) -> TransitionKind:
    """Classify a requested status change.

    Pure and total over ``UnitStatus x UnitStatus``.

    Raises:
        UnknownStatusError: either argument is outside the closed enum.
    """
    current = UnitStatus.parse(current)
    requested = UnitStatus.parse(requested)
    if current == requested:
        return TransitionKind.NO_OP
    if (current, requested) in _NORMAL_EDGES:
        return TransitionKind.NORMAL
    return TransitionKind.CORRECTION


@lru_cache(maxsize=None)
def normal_targets(status: UnitStatus | str) -> tuple[UnitStatus, ...]:
    """Statuses reachable from ``status`` in one normal step, in enum order."""
    status = UnitStatus.parse(status)
    targets = {to for (frm, to) in _NORMAL_EDGES if frm == status}
    return tuple(s for s in UnitStatus if s in targets)


def transition_action(current: UnitStatus, requested: UnitStatus) -> str | None:
    """The action verb for a normal edge, or None when the edge is not normal."""
    for t in UNIT_WORKFLOW.transitions:
        if t.from_status == current and t.to_status == requested:
            return t.action
    return None


def is_terminal(status: UnitStatus | str) -> bool:
    return UnitStatus.parse(status) in TERMINAL_STATUSES


def status_check_sql(column: str = "status") -> str:
    """SQL CHECK expression listing every enum value."""
    values = ", ".join(f"'{s.value}'" for s in UnitStatus)
    return f"{column} IN ({values})"
