"""
Append-only enforcement for unit events and unit identity.

Two layers are exercised:
- ORM listeners (every backend): UnitEvent UPDATE / DELETE, Unit DELETE and
  Unit code changes raise ImmutabilityViolationError before any SQL runs.
- PostgreSQL triggers (``postgres`` marker): raw SQL that bypasses the ORM
  is rejected by the database itself.
"""

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import DatabaseError

from nursery_kernel.db.immutability import (
    immutability_listeners_registered,
    register_immutability_listeners,
)
from nursery_kernel.domain.lifecycle import UnitStatus
from nursery_kernel.exceptions import ImmutabilityViolationError
from nursery_kernel.models.unit import Unit
from nursery_kernel.models.unit_event import UnitEvent


def _first_event(session, unit_id) -> UnitEvent:
    return session.execute(
        select(UnitEvent).where(UnitEvent.unit_id == unit_id).order_by(UnitEvent.seq)
    ).scalars().first()


class TestOrmGuards:

    def test_listeners_registered(self, db_tables):
        assert immutability_listeners_registered()

    def test_register_is_idempotent(self, db_tables):
        register_immutability_listeners()
        register_immutability_listeners()
        assert immutability_listeners_registered()

    def test_event_update_blocked(self, session, make_unit):
        unit = make_unit(UnitStatus.DIG_ORDERED)
        event = _first_event(session, unit.id)
        event.notes = "rewritten history"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "UnitEvent"

    def test_event_delete_blocked(self, session, make_unit):
        unit = make_unit()
        session.delete(_first_event(session, unit.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_unit_delete_blocked(self, session, make_unit):
        unit = make_unit(UnitStatus.DEAD)
        session.delete(session.get(Unit, unit.id))
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "Unit"

    def test_unit_code_change_blocked(self, session, make_unit):
        unit = make_unit()
        row = session.get(Unit, unit.id)
        row.code = "RETAGGED-1"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_other_unit_fields_may_change(self, session, make_unit):
        unit = make_unit()
        row = session.get(Unit, unit.id)
        row.height_label = "6-8ft"
        session.flush()

    def test_violation_logged(self, session, make_unit, captured_logs):
        unit = make_unit()
        session.delete(_first_event(session, unit.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        records = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert records[0]["operation"] == "DELETE"
        assert records[0]["level"] == "ERROR"


@pytest.mark.postgres
class TestDatabaseTriggers:

    def test_raw_event_update_rejected(self, session, make_unit):
        unit = make_unit()
        with pytest.raises(DatabaseError):
            with session.begin_nested():
                session.execute(
                    text("UPDATE unit_events SET notes = 'x' WHERE unit_id = :uid"),
                    {"uid": str(unit.id)},
                )

    def test_raw_event_delete_rejected(self, session, make_unit):
        unit = make_unit()
        with pytest.raises(DatabaseError):
            with session.begin_nested():
                session.execute(
                    text("DELETE FROM unit_events WHERE unit_id = :uid"), {"uid": str(unit.id)},
                )

    def test_raw_unit_delete_rejected(self, session, make_unit):
        unit = make_unit()
        with pytest.raises(DatabaseError):
            with session.begin_nested():
                session.execute(text("DELETE FROM units WHERE id = :uid"), {"uid": str(unit.id)})

    def test_raw_code_change_rejected(self, session, make_unit):
        unit = make_unit()
        with pytest.raises(DatabaseError):
            with session.begin_nested():
                session.execute(
                    text("UPDATE units SET code = 'X-1' WHERE id = :uid"), {"uid": str(unit.id)},
                )
