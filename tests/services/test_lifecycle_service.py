"""
Tests for LifecycleService.

Covers:
- The happy path from in_zone to shipped, one event per step
- Correction rules: notes first, then force, then role
- Idempotent no-ops, stale expected_status, deal / dig order linking
- Tagging, relocation and classification corrections
"""

from uuid import uuid4

import pytest

from nursery_kernel.domain.dtos import (
    Actor,
    ClassificationUpdate,
    ContextType,
    TransitionContext,
    TransitionOutcome,
)
from nursery_kernel.domain.lifecycle import TransitionKind, UnitStatus
from nursery_kernel.exceptions import (
    ConflictError,
    CorrectionNotesRequiredError,
    PermissionDeniedError,
    UnitCodeExistsError,
    UnitNotFoundError,
    UnknownStatusError,
    ValidationError,
    ZoneNotFoundError,
)
from nursery_kernel.models.unit_event import UnitEventType
from nursery_kernel.services.lifecycle_service import LifecycleService


class TestHappyPath:

    def test_in_zone_to_shipped(self, lifecycle_service, timeline_selector, make_unit, actor):
        unit = make_unit()
        for status in (
            UnitStatus.DIG_ORDERED,
            UnitStatus.DUG,
            UnitStatus.READY_FOR_SALE,
            UnitStatus.RESERVED,
            UnitStatus.SHIPPED,
        ):
            result = lifecycle_service.transition(unit.id, status, actor=actor, source="yard")
            assert result.outcome == TransitionOutcome.APPLIED
            assert result.kind == TransitionKind.NORMAL

        history = timeline_selector.history(unit.id)
        changes = [e for e in history if e.event_type == UnitEventType.STATUS_CHANGE.value]
        assert len(changes) == 5
        assert not any(e.is_correction for e in history)
        assert changes[-1].to_status == UnitStatus.SHIPPED
        assert timeline_selector.replay_status(unit.id) == UnitStatus.SHIPPED

    def test_version_bumps_per_write(self, lifecycle_service, make_unit, actor):
        unit = make_unit()
        assert unit.version == 1
        result = lifecycle_service.transition(unit.id, UnitStatus.DIG_ORDERED, actor=actor)
        assert result.version == 2

    def test_event_fields(self, lifecycle_service, make_unit, actor, deterministic_clock):
        unit = make_unit()
        deterministic_clock.advance_days(3)
        result = lifecycle_service.transition(
            unit.id, "dig_ordered", actor=actor, source="harvest_order", notes="spring dig",
        )
        event = result.event
        assert event.from_status == UnitStatus.IN_ZONE
        assert event.to_status == UnitStatus.DIG_ORDERED
        assert event.actor_id == actor.actor_id
        assert event.source == "harvest_order"
        assert event.notes == "spring dig"
        assert event.seq == 2
        assert event.occurred_at.replace(tzinfo=None) == deterministic_clock.now().replace(tzinfo=None)

    def test_unknown_unit(self, lifecycle_service, actor):
        with pytest.raises(UnitNotFoundError):
            lifecycle_service.transition(uuid4(), UnitStatus.DUG, actor=actor)

    def test_unknown_status(self, lifecycle_service, make_unit, actor):
        unit = make_unit()
        with pytest.raises(UnknownStatusError):
            lifecycle_service.transition(unit.id, "heeled_in", actor=actor)


class TestCorrections:

    def test_blank_notes_rejected_before_force(self, lifecycle_service, make_unit, manager):
        unit = make_unit(UnitStatus.READY_FOR_SALE)
        with pytest.raises(CorrectionNotesRequiredError) as exc_info:
            lifecycle_service.transition(unit.id, UnitStatus.DEAD, actor=manager, notes="", force=False)
        assert isinstance(exc_info.value, ValidationError)

    def test_whitespace_notes_rejected(self, lifecycle_service, make_unit, manager):
        unit = make_unit(UnitStatus.READY_FOR_SALE)
        with pytest.raises(CorrectionNotesRequiredError):
            lifecycle_service.transition(unit.id, UnitStatus.DEAD, actor=manager, notes="  ", force=True)

    def test_notes_without_force_denied(self, lifecycle_service, make_unit, manager):
        unit = make_unit(UnitStatus.READY_FOR_SALE)
        with pytest.raises(PermissionDeniedError) as exc_info:
            lifecycle_service.transition(unit.id, UnitStatus.DEAD, actor=manager, notes="blight")
        assert "force" in exc_info.value.reason

    def test_role_required(self, lifecycle_service, make_unit, actor):
        unit = make_unit(UnitStatus.READY_FOR_SALE)
        with pytest.raises(PermissionDeniedError):
            lifecycle_service.transition(
                unit.id, UnitStatus.DEAD, actor=actor, notes="blight", force=True,
            )

    def test_correction_applied(self, lifecycle_service, timeline_selector, make_unit, manager):
        unit = make_unit(UnitStatus.READY_FOR_SALE)
        result = lifecycle_service.transition(
            unit.id, UnitStatus.DEAD, actor=manager, notes="blight", force=True,
        )
        assert result.outcome == TransitionOutcome.CORRECTED
        assert result.event.is_correction
        assert result.event.event_type == UnitEventType.CORRECTION.value
        assert timeline_selector.history(unit.id)[-1].notes == "blight"

    def test_rejected_correction_writes_nothing(
        self, lifecycle_service, unit_selector, timeline_selector, make_unit, actor
    ):
        unit = make_unit(UnitStatus.READY_FOR_SALE)
        events_before = len(timeline_selector.history(unit.id))
        with pytest.raises(PermissionDeniedError):
            lifecycle_service.transition(unit.id, UnitStatus.IN_ZONE, actor=actor, notes="x", force=True)
        after = unit_selector.get(unit.id)
        assert after.status == UnitStatus.READY_FOR_SALE
        assert after.version == unit.version
        assert len(timeline_selector.history(unit.id)) == events_before

    def test_custom_correction_roles(self, session, deterministic_clock, make_unit):
        unit = make_unit()
        service = LifecycleService(session, clock=deterministic_clock, correction_roles=("yard_lead",))
        lead = Actor(uuid4(), frozenset({"yard_lead"}))
        result = service.transition(unit.id, UnitStatus.REHAB, actor=lead, notes="storm", force=True)
        assert result.to_status == UnitStatus.REHAB

    def test_correction_logged_at_warning(self, lifecycle_service, make_unit, manager, captured_logs):
        unit = make_unit(UnitStatus.DUG)
        lifecycle_service.transition(unit.id, UnitStatus.DIG_ORDERED, actor=manager, notes="undo", force=True)
        records = [r for r in captured_logs() if r["message"] == "unit_corrected"]
        assert len(records) == 1
        assert records[0]["level"] == "WARNING"
        assert records[0]["from_status"] == "dug"
        assert records[0]["actor_id"] == str(manager.actor_id)


class TestNoOpAndConflicts:

    def test_same_status_is_no_op(self, lifecycle_service, timeline_selector, make_unit, actor):
        unit = make_unit(UnitStatus.DUG)
        events_before = len(timeline_selector.history(unit.id))
        result = lifecycle_service.transition(unit.id, UnitStatus.DUG, actor=actor)
        assert result.outcome == TransitionOutcome.NO_OP
        assert result.event is None
        assert result.version == unit.version
        assert len(timeline_selector.history(unit.id)) == events_before

    def test_no_op_applies_classification(self, lifecycle_service, unit_selector, make_unit, actor):
        unit = make_unit(UnitStatus.DUG)
        result = lifecycle_service.transition(
            unit.id, UnitStatus.DUG, actor=actor,
            classification=ClassificationUpdate(height_label="8-10ft"),
        )
        assert not result.changed
        after = unit_selector.get(unit.id)
        assert after.height_label == "8-10ft"
        assert after.version == unit.version + 1

    def test_stale_expected_status(self, lifecycle_service, unit_selector, make_unit, actor):
        unit = make_unit(UnitStatus.RESERVED)
        with pytest.raises(ConflictError) as exc_info:
            lifecycle_service.transition(
                unit.id, UnitStatus.RESERVED, actor=actor,
                expected_status=UnitStatus.READY_FOR_SALE,
            )
        assert exc_info.value.actual_status == "reserved"
        assert unit_selector.get(unit.id).version == unit.version

    def test_transition_many(self, lifecycle_service, make_unit, actor):
        units = [make_unit(UnitStatus.DUG), make_unit(UnitStatus.READY_FOR_SALE)]
        bulk = lifecycle_service.transition_many(
            [u.id for u in units], UnitStatus.READY_FOR_SALE, actor=actor,
        )
        assert bulk.changed_count == 1
        assert bulk.no_op_count == 1
        assert [r.unit_id for r in bulk.results] == [u.id for u in units]


class TestContextLinking:

    def test_dig_order_then_deal(self, lifecycle_service, unit_selector, make_unit, actor):
        unit = make_unit()
        dig_order = uuid4()
        deal = uuid4()
        lifecycle_service.transition(
            unit.id, UnitStatus.DIG_ORDERED, actor=actor,
            context=TransitionContext(ContextType.DIG_ORDER, dig_order),
        )
        lifecycle_service.transition(unit.id, UnitStatus.DUG, actor=actor)
        lifecycle_service.transition(unit.id, UnitStatus.READY_FOR_SALE, actor=actor)
        result = lifecycle_service.transition(
            unit.id, UnitStatus.RESERVED, actor=actor,
            context=TransitionContext(ContextType.DEAL, deal),
        )
        info = unit_selector.get(unit.id)
        assert info.dig_order_id == dig_order
        assert info.deal_id == deal
        assert result.event.context_type == "deal"
        assert result.event.context_id == deal

    def test_leaving_deal_status_clears_deal(self, lifecycle_service, unit_selector, make_unit, manager):
        unit = make_unit(UnitStatus.READY_FOR_SALE)
        lifecycle_service.transition(
            unit.id, UnitStatus.RESERVED, actor=manager,
            context=TransitionContext(ContextType.DEAL, uuid4()),
        )
        lifecycle_service.transition(
            unit.id, UnitStatus.READY_FOR_SALE, actor=manager, notes="deal fell through", force=True,
        )
        assert unit_selector.get(unit.id).deal_id is None


class TestTagging:

    def test_tag_creates_unit_and_event(self, lifecycle_service, timeline_selector, zone, species_id, actor):
        unit = lifecycle_service.tag_unit("A-0001", zone.id, species_id, '3"', actor, grade="A")
        assert unit.status == UnitStatus.IN_ZONE
        assert unit.version == 1
        assert unit.grade == "A"
        history = timeline_selector.history(unit.id)
        assert len(history) == 1
        assert history[0].event_type == UnitEventType.TAGGED.value
        assert history[0].from_status is None
        assert history[0].context_id == zone.id

    def test_duplicate_code(self, lifecycle_service, zone, species_id, actor):
        lifecycle_service.tag_unit("A-0002", zone.id, species_id, '3"', actor)
        with pytest.raises(UnitCodeExistsError):
            lifecycle_service.tag_unit("A-0002", zone.id, species_id, '3"', actor)

    def test_code_is_stripped(self, lifecycle_service, unit_selector, zone, species_id, actor):
        lifecycle_service.tag_unit("  A-0003 ", zone.id, species_id, '3"', actor)
        assert unit_selector.find_by_code("A-0003") is not None

    @pytest.mark.parametrize("code, size", [("", '3"'), ("A-0004", " ")])
    def test_blank_fields(self, lifecycle_service, zone, species_id, actor, code, size):
        with pytest.raises(ValidationError):
            lifecycle_service.tag_unit(code, zone.id, species_id, size, actor)

    def test_unknown_zone(self, lifecycle_service, species_id, actor):
        with pytest.raises(ZoneNotFoundError):
            lifecycle_service.tag_unit("A-0005", uuid4(), species_id, '3"', actor)


class TestRelocateAndClassify:

    def test_relocate(self, lifecycle_service, timeline_selector, make_unit, create_zone, actor):
        unit = make_unit(UnitStatus.DUG)
        holding = create_zone(plot_type="holding")
        info = lifecycle_service.relocate(unit.id, holding.id, actor, notes="to holding yard")
        assert info.zone_id == holding.id
        assert info.status == UnitStatus.DUG
        last = timeline_selector.history(unit.id)[-1]
        assert last.event_type == UnitEventType.RELOCATED.value
        assert last.from_status == last.to_status == UnitStatus.DUG

    def test_relocate_same_zone_is_no_op(self, lifecycle_service, timeline_selector, make_unit, actor):
        unit = make_unit()
        info = lifecycle_service.relocate(unit.id, unit.zone_id, actor)
        assert info.version == unit.version
        assert len(timeline_selector.history(unit.id)) == 1

    def test_correct_classification(self, lifecycle_service, timeline_selector, make_unit, manager):
        unit = make_unit()
        other_species = uuid4()
        info = lifecycle_service.correct_classification(
            unit.id, ClassificationUpdate(species_id=other_species, size_label='5"'), manager,
        )
        assert info.species_id == other_species
        assert info.size_label == '5"'
        assert info.version == unit.version + 1
        assert len(timeline_selector.history(unit.id)) == 1

    def test_empty_classification_is_no_op(self, lifecycle_service, make_unit, manager):
        unit = make_unit()
        info = lifecycle_service.correct_classification(unit.id, ClassificationUpdate(), manager)
        assert info.version == unit.version
