"""
Tests for the pure rollup engine (``nursery_kernel.domain.rollup``).

Invariants tested:
- Status buckets partition the group total; every measure is >= 0.
- The same snapshot in any order yields the same report and fingerprint.
- Alert rules: overbook, depleted, low stock, harvest and tagging backlog.
"""

from uuid import UUID, uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from nursery_kernel.domain.lifecycle import UnitStatus
from nursery_kernel.domain.rollup import (
    BUCKET_BY_STATUS,
    PRIMARY_BUCKETS,
    SUPPLEMENTARY_BUCKETS,
    AlertKind,
    AlertSummary,
    BucketCounts,
    GroupKey,
    PlantingSnapshot,
    RollupFilter,
    RollupPolicy,
    UnitSnapshot,
    compute_rollup,
    count_statuses,
    evaluate_alerts,
)

ZONE_A = UUID("00000000-0000-0000-0000-0000000000a1")
ZONE_B = UUID("00000000-0000-0000-0000-0000000000b2")
MAPLE = UUID("00000000-0000-0000-0000-00000000a001")
OAK = UUID("00000000-0000-0000-0000-00000000a002")


def snap(status, zone=ZONE_A, species=MAPLE, size='3"', grade=None, plot_type="field"):
    return UnitSnapshot(
        unit_id=uuid4(),
        zone_id=zone,
        species_id=species,
        size_label=size,
        grade=grade,
        status=status,
        plot_type=plot_type,
    )


def kinds(report, key):
    return {a.kind for a in report.alerts_for(key)}


class TestBuckets:

    def test_every_status_has_one_bucket(self):
        assert set(BUCKET_BY_STATUS) == set(UnitStatus)
        assert set(BUCKET_BY_STATUS.values()) == set(PRIMARY_BUCKETS + SUPPLEMENTARY_BUCKETS)

    def test_count_statuses(self):
        counts = count_statuses([
            UnitStatus.READY_FOR_SALE,
            UnitStatus.READY_FOR_SALE,
            UnitStatus.RESERVED,
            UnitStatus.DEAD,
            UnitStatus.CANCELLED,
            UnitStatus.ROOT_PRUNE_2,
        ])
        assert counts.total == 6
        assert counts.available == 2
        assert counts.reserved == 1
        assert counts.written_off == 2
        assert counts.growing == 1

    def test_sold_is_not_a_primary_bucket(self):
        counts = count_statuses([UnitStatus.SOLD])
        assert counts.sold == 1
        assert counts.primary_sum == 0

    def test_counts_add(self):
        a = BucketCounts(total=2, available=1, planned=3)
        b = BucketCounts(total=1, reserved=1)
        assert (a + b).to_dict()["total"] == 3
        assert (a + b).planned == 3


class TestComputeRollup:

    def test_scenario_depleted_and_overbooked(self):
        """total 10, available 0, reserved 3 -> depleted and overbook."""
        units = [snap(UnitStatus.RESERVED) for _ in range(3)]
        units += [snap(UnitStatus.IN_ZONE) for _ in range(7)]
        report = compute_rollup(units)

        key = GroupKey(ZONE_A, MAPLE, '3"')
        row = report.row(key)
        assert row.counts.total == 10
        assert row.counts.available == 0
        assert row.counts.reserved == 3
        assert kinds(report, key) >= {AlertKind.OVERBOOK, AlertKind.DEPLETED}

    def test_groups_split_by_zone_species_size_grade(self):
        units = [
            snap(UnitStatus.READY_FOR_SALE),
            snap(UnitStatus.READY_FOR_SALE, zone=ZONE_B),
            snap(UnitStatus.READY_FOR_SALE, species=OAK),
            snap(UnitStatus.READY_FOR_SALE, size='5"'),
            snap(UnitStatus.READY_FOR_SALE, grade="A"),
        ]
        report = compute_rollup(units)
        assert len(report.rows) == 5
        assert report.summary.available == 5

    def test_species_summary(self):
        units = [
            snap(UnitStatus.READY_FOR_SALE),
            snap(UnitStatus.DUG, zone=ZONE_B),
            snap(UnitStatus.READY_FOR_SALE, species=OAK),
        ]
        report = compute_rollup(units)
        maple = next(s for s in report.species if s.species_id == MAPLE)
        assert maple.group_count == 2
        assert maple.counts.total == 2
        assert maple.counts.harvested == 1

    def test_planting_only_group_shows_untagged(self):
        report = compute_rollup([], planting=[
            PlantingSnapshot(ZONE_A, MAPLE, '3"', None, planned=40, plot_type="field"),
        ])
        row = report.row(GroupKey(ZONE_A, MAPLE, '3"'))
        assert row.counts.total == 0
        assert row.counts.untagged == 40
        assert kinds(report, row.key) == {AlertKind.TAGGING_BACKLOG}

    def test_untagged_never_negative(self):
        units = [snap(UnitStatus.IN_ZONE) for _ in range(5)]
        report = compute_rollup(units, planting=[
            PlantingSnapshot(ZONE_A, MAPLE, '3"', None, planned=3),
        ])
        assert report.rows[0].counts.untagged == 0

    def test_filter_by_plot_type(self):
        units = [
            snap(UnitStatus.READY_FOR_SALE, plot_type="field"),
            snap(UnitStatus.READY_FOR_SALE, zone=ZONE_B, plot_type="container"),
        ]
        report = compute_rollup(units, filter=RollupFilter(plot_type="container"))
        assert [r.key.zone_id for r in report.rows] == [ZONE_B]

    def test_filter_by_grade(self):
        units = [snap(UnitStatus.READY_FOR_SALE, grade="A"), snap(UnitStatus.READY_FOR_SALE)]
        report = compute_rollup(units, filter=RollupFilter(grade="A"))
        assert len(report.rows) == 1
        assert report.rows[0].key.grade == "A"

    def test_empty_snapshot(self):
        report = compute_rollup([])
        assert report.rows == ()
        assert report.summary == BucketCounts()
        assert report.alert_summary.total == 0

    def test_alert_summary_counts_severities(self):
        units = [snap(UnitStatus.RESERVED)]
        report = compute_rollup(units)
        assert report.alert_summary == AlertSummary.of(report.alerts)
        assert report.alert_summary.critical == 1
        assert report.alert_summary.warning == 1


class TestAlertRules:

    key = GroupKey(ZONE_A, MAPLE, '3"')

    def test_low_stock_at_threshold(self):
        alerts = evaluate_alerts(self.key, BucketCounts(total=5, available=5), RollupPolicy(5))
        assert [a.kind for a in alerts] == [AlertKind.LOW_STOCK]

    def test_no_low_stock_above_threshold(self):
        alerts = evaluate_alerts(self.key, BucketCounts(total=6, available=6), RollupPolicy(5))
        assert alerts == []

    def test_harvest_backlog(self):
        alerts = evaluate_alerts(
            self.key, BucketCounts(total=4, committed=2, available=2), RollupPolicy(0),
        )
        assert [a.kind for a in alerts] == [AlertKind.HARVEST_BACKLOG]

    def test_empty_group_is_not_depleted(self):
        assert evaluate_alerts(self.key, BucketCounts(), RollupPolicy()) == []

    def test_most_severe_first(self):
        alerts = evaluate_alerts(self.key, BucketCounts(total=3, reserved=3), RollupPolicy())
        severities = [a.severity for a in alerts]
        assert severities == sorted(severities, reverse=True)


unit_strategy = st.builds(
    snap,
    status=st.sampled_from(list(UnitStatus)),
    zone=st.sampled_from([ZONE_A, ZONE_B]),
    species=st.sampled_from([MAPLE, OAK]),
    size=st.sampled_from(['3"', '5"']),
    grade=st.sampled_from([None, "A"]),
)


class TestRollupProperties:

    @given(units=st.lists(unit_strategy, max_size=40))
    @settings(max_examples=60, deadline=None)
    def test_buckets_partition_total(self, units):
        report = compute_rollup(units)
        for row in report.rows:
            counts = row.counts
            assert all(v >= 0 for v in counts.to_dict().values())
            assert counts.primary_sum <= counts.total
            bucket_sum = sum(
                getattr(counts, name) for name in PRIMARY_BUCKETS + SUPPLEMENTARY_BUCKETS
            )
            assert bucket_sum == counts.total
        assert report.summary.total == len(units)

    @given(units=st.lists(unit_strategy, max_size=30), data=st.data())
    @settings(max_examples=40, deadline=None)
    def test_order_does_not_change_report(self, units, data):
        shuffled = data.draw(st.permutations(units))
        first = compute_rollup(units)
        second = compute_rollup(shuffled)
        assert first == second
        assert first.fingerprint() == second.fingerprint()


def test_fingerprint_changes_with_snapshot():
    a = compute_rollup([snap(UnitStatus.READY_FOR_SALE)])
    b = compute_rollup([snap(UnitStatus.DUG)])
    assert a.fingerprint() != b.fingerprint()


@pytest.mark.parametrize("grade, label_suffix", [(None, "/-"), ("B", "/B")])
def test_group_label(grade, label_suffix):
    key = GroupKey(ZONE_A, MAPLE, '3"', grade)
    assert key.label().endswith(label_suffix)
