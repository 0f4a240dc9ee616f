"""
ORM-level append-only enforcement (layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

The unit ledger is the answer to "how did this tree get here".  If an event
could be edited or a unit deleted, the replay invariant (events in seq order
reproduce ``units.status``) would no longer prove anything.

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications made through SQLAlchemy unit-of-work flushes.

  Layer 2: db/sql/*.sql (PostgreSQL triggers)
    - Catches raw SQL and bulk statements at the database.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity     | Rule
-----------|-----------------------------------------------------------
UnitEvent  | Never updated, never deleted
Unit       | Never deleted; ``code`` never changes

Unit status, version, classification and context are written by
LifecycleService through a compare-and-set UPDATE statement, which does not
go through the flush and is not affected by these listeners.

===============================================================================
USAGE
===============================================================================

    from nursery_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup; repeat calls are no-ops

Tests that need to bypass enforcement call ``unregister_immutability_listeners``
and must re-register afterwards.
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from nursery_kernel.exceptions import ImmutabilityViolationError
from nursery_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_unit_event_update(mapper, connection, target):
    """Unit events are never modified."""
    raise _blocked(
        "UnitEvent", target.id, "UPDATE",
        "Unit events are append-only and cannot be modified",
    )


def _check_unit_event_delete(mapper, connection, target):
    """Unit events are never deleted."""
    raise _blocked(
        "UnitEvent", target.id, "DELETE",
        "Unit events are append-only and cannot be deleted",
    )


def _check_unit_delete(mapper, connection, target):
    """Units are retained for audit, including dead and cancelled ones."""
    raise _blocked(
        "Unit", target.id, "DELETE",
        "Units are never deleted; use a terminal status instead",
    )


def _check_unit_code_change(mapper, connection, target):
    """The tag code printed on the tree never changes."""
    history = get_history(target, "code")
    if history.deleted and history.added and history.deleted[0] != history.added[0]:
        raise _blocked(
            "Unit", target.id, "UPDATE",
            f"Unit code is immutable ({history.deleted[0]!r} -> {history.added[0]!r})",
        )


def _listeners():
    from nursery_kernel.models.unit import Unit
    from nursery_kernel.models.unit_event import UnitEvent

    return (
        (UnitEvent, "before_update", _check_unit_event_update),
        (UnitEvent, "before_delete", _check_unit_event_delete),
        (Unit, "before_delete", _check_unit_delete),
        (Unit, "before_update", _check_unit_code_change),
    )


def register_immutability_listeners():
    """
    Register all append-only enforcement listeners.

    Call after the models are importable and before any writes.
    """
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the enforcement listeners.

    WARNING: Only for tests that deliberately violate the rules.
    """
    for target, event_name, fn in _listeners():
        _safe_remove_listener(target, event_name, fn)


def immutability_listeners_registered() -> bool:
    return all(event.contains(t, name, fn) for t, name, fn in _listeners())
