"""
Rollup engine -- quantity summaries derived from unit statuses.

Responsibility:
    Groups a snapshot of units by zone x species x size x grade, counts each
    group per lifecycle bucket, folds planting counts in to derive the
    untagged gap, summarises per species and overall, and evaluates the
    consistency alert rules.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The RollupSelector
    loads the snapshot; ``compute_rollup`` never touches the database and
    never writes.

Invariants enforced:
    - Every measure is >= 0.
    - The status buckets partition ``total``: each status maps to exactly one
      bucket, so ``available + reserved + committed + harvested + shipped +
      planted <= total`` always holds.
    - The same snapshot always yields the same report and the same
      ``fingerprint()``; rows are ordered by key, never by input order.
    - Overbooking is reported, never clamped.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Iterable
from uuid import UUID

from nursery_kernel.domain.lifecycle import UnitStatus
from nursery_kernel.utils.hashing import hash_payload

# Status -> bucket.  Every UnitStatus appears exactly once.
BUCKET_BY_STATUS: dict[UnitStatus, str] = {
    UnitStatus.IN_ZONE: "growing",
    UnitStatus.SELECTED_FOR_DIG: "growing",
    UnitStatus.ROOT_PRUNE_1: "growing",
    UnitStatus.ROOT_PRUNE_2: "growing",
    UnitStatus.ROOT_PRUNE_3: "growing",
    UnitStatus.ROOT_PRUNE_4: "growing",
    UnitStatus.DIG_ORDERED: "committed",
    UnitStatus.DUG: "harvested",
    UnitStatus.READY_FOR_SALE: "available",
    UnitStatus.RESERVED: "reserved",
    UnitStatus.SHIPPED: "shipped",
    UnitStatus.PLANTED: "planted",
    UnitStatus.SOLD: "sold",
    UnitStatus.REHAB: "rehab",
    UnitStatus.DEAD: "written_off",
    UnitStatus.CANCELLED: "written_off",
}

PRIMARY_BUCKETS = (
    "available", "reserved", "committed", "harvested", "shipped", "planted",
)
SUPPLEMENTARY_BUCKETS = ("growing", "sold", "rehab", "written_off")


@dataclass(frozen=True)
class GroupKey:
    """Rollup / stock group key.  ``grade`` is None where grade is untracked."""
    zone_id: UUID
    species_id: UUID
    size_label: str
    grade: str | None = None

    def sort_key(self) -> tuple[str, str, str, str]:
        return (str(self.species_id), self.size_label, str(self.zone_id), self.grade or "")

    def label(self) -> str:
        grade = self.grade if self.grade is not None else "-"
        return f"{self.species_id}/{self.size_label}/{self.zone_id}/{grade}"

    def to_dict(self) -> dict:
        return {
            "zone_id": str(self.zone_id),
            "species_id": str(self.species_id),
            "size_label": self.size_label,
            "grade": self.grade,
        }


@dataclass(frozen=True)
class UnitSnapshot:
    """The fields of one unit the rollup needs."""
    unit_id: UUID
    zone_id: UUID
    species_id: UUID
    size_label: str
    grade: str | None
    status: UnitStatus
    plot_type: str | None = None

    @property
    def key(self) -> GroupKey:
        return GroupKey(self.zone_id, self.species_id, self.size_label, self.grade)


@dataclass(frozen=True)
class PlantingSnapshot:
    """Planned quantity for one group, counted outside the per-unit machine."""
    zone_id: UUID
    species_id: UUID
    size_label: str
    grade: str | None
    planned: int
    plot_type: str | None = None

    @property
    def key(self) -> GroupKey:
        return GroupKey(self.zone_id, self.species_id, self.size_label, self.grade)


@dataclass(frozen=True)
class RollupFilter:
    """Optional pre-filter.  Unset fields match everything."""
    zone_id: UUID | None = None
    species_id: UUID | None = None
    size_label: str | None = None
    plot_type: str | None = None
    grade: str | None = None

    def matches(self, key: GroupKey, plot_type: str | None) -> bool:
        if self.zone_id is not None and key.zone_id != self.zone_id:
            return False
        if self.species_id is not None and key.species_id != self.species_id:
            return False
        if self.size_label is not None and key.size_label != self.size_label:
            return False
        if self.grade is not None and key.grade != self.grade:
            return False
        if self.plot_type is not None and plot_type != self.plot_type:
            return False
        return True


@dataclass(frozen=True)
class RollupPolicy:
    """Alert thresholds."""
    low_stock_threshold: int = 10


@dataclass(frozen=True)
class BucketCounts:
    """Measures for one group, one species, or the whole snapshot."""
    total: int = 0
    available: int = 0
    reserved: int = 0
    committed: int = 0
    harvested: int = 0
    shipped: int = 0
    planted: int = 0
    growing: int = 0
    sold: int = 0
    rehab: int = 0
    written_off: int = 0
    planned: int = 0
    untagged: int = 0

    def __add__(self, other: BucketCounts) -> BucketCounts:
        return BucketCounts(
            **{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)}
        )

    @property
    def primary_sum(self) -> int:
        return sum(getattr(self, name) for name in PRIMARY_BUCKETS)

    def to_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class RollupRow:
    key: GroupKey
    plot_type: str | None
    counts: BucketCounts

    def to_dict(self) -> dict:
        return {"key": self.key.to_dict(), "plot_type": self.plot_type, **self.counts.to_dict()}


@dataclass(frozen=True)
class SpeciesSummary:
    """One species summarised across every zone, size and grade in the report."""
    species_id: UUID
    group_count: int
    counts: BucketCounts

    def to_dict(self) -> dict:
        return {
            "species_id": str(self.species_id),
            "group_count": self.group_count,
            **self.counts.to_dict(),
        }


class AlertKind(str, Enum):
    OVERBOOK = "overbook"
    DEPLETED = "depleted"
    LOW_STOCK = "low_stock"
    HARVEST_BACKLOG = "harvest_backlog"
    TAGGING_BACKLOG = "tagging_backlog"


SEVERITY_CRITICAL = 3
SEVERITY_WARNING = 2
SEVERITY_INFO = 1

_SEVERITY = {
    AlertKind.OVERBOOK: SEVERITY_CRITICAL,
    AlertKind.DEPLETED: SEVERITY_WARNING,
    AlertKind.LOW_STOCK: SEVERITY_INFO,
    AlertKind.HARVEST_BACKLOG: SEVERITY_INFO,
    AlertKind.TAGGING_BACKLOG: SEVERITY_INFO,
}


@dataclass(frozen=True)
class ConsistencyWarning:
    """A derived alert for one group.  A value, not an exception."""
    kind: AlertKind
    severity: int
    key: GroupKey
    message: str

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "severity": self.severity,
            "key": self.key.to_dict(),
            "message": self.message,
        }


def make_warning(kind: AlertKind, key: GroupKey, message: str) -> ConsistencyWarning:
    return ConsistencyWarning(kind=kind, severity=_SEVERITY[kind], key=key, message=message)


@dataclass(frozen=True)
class AlertSummary:
    critical: int = 0
    warning: int = 0
    info: int = 0

    @property
    def total(self) -> int:
        return self.critical + self.warning + self.info

    @classmethod
    def of(cls, alerts: Iterable[ConsistencyWarning]) -> AlertSummary:
        critical = warning = info = 0
        for alert in alerts:
            if alert.severity >= SEVERITY_CRITICAL:
                critical += 1
            elif alert.severity == SEVERITY_WARNING:
                warning += 1
            else:
                info += 1
        return cls(critical=critical, warning=warning, info=info)


@dataclass(frozen=True)
class RollupReport:
    rows: tuple[RollupRow, ...]
    species: tuple[SpeciesSummary, ...]
    summary: BucketCounts
    alerts: tuple[ConsistencyWarning, ...]
    alert_summary: AlertSummary

    def row(self, key: GroupKey) -> RollupRow | None:
        for row in self.rows:
            if row.key == key:
                return row
        return None

    def alerts_for(self, key: GroupKey) -> tuple[ConsistencyWarning, ...]:
        return tuple(a for a in self.alerts if a.key == key)

    def to_dict(self) -> dict:
        return {
            "rows": [r.to_dict() for r in self.rows],
            "species": [s.to_dict() for s in self.species],
            "summary": self.summary.to_dict(),
            "alerts": [a.to_dict() for a in self.alerts],
        }

    def fingerprint(self) -> str:
        """SHA-256 of the canonical report.  Equal snapshots, equal fingerprints."""
        return hash_payload(self.to_dict())


def evaluate_alerts(
    key: GroupKey, counts: BucketCounts, policy: RollupPolicy
) -> list[ConsistencyWarning]:
    """Apply the alert rules to one group, most severe first."""
    alerts = []
    if counts.reserved > counts.available:
        alerts.append(make_warning(
            AlertKind.OVERBOOK, key,
            f"{counts.reserved} reserved against {counts.available} available",
        ))
    if counts.total > 0 and counts.available == 0:
        alerts.append(make_warning(
            AlertKind.DEPLETED, key,
            f"no units available out of {counts.total}",
        ))
    if 0 < counts.available <= policy.low_stock_threshold:
        alerts.append(make_warning(
            AlertKind.LOW_STOCK, key,
            f"only {counts.available} available",
        ))
    if counts.committed > 0 and counts.harvested == 0:
        alerts.append(make_warning(
            AlertKind.HARVEST_BACKLOG, key,
            f"{counts.committed} committed to harvest, none dug",
        ))
    if counts.untagged > 0:
        alerts.append(make_warning(
            AlertKind.TAGGING_BACKLOG, key,
            f"{counts.untagged} planted trees not yet tagged",
        ))
    return alerts


def count_statuses(statuses: Iterable[UnitStatus]) -> BucketCounts:
    tally = {name: 0 for name in PRIMARY_BUCKETS + SUPPLEMENTARY_BUCKETS}
    total = 0
    for status in statuses:
        tally[BUCKET_BY_STATUS[UnitStatus(status)]] += 1
        total += 1
    return BucketCounts(total=total, **tally)


def compute_rollup(
    units: Iterable[UnitSnapshot],
    planting: Iterable[PlantingSnapshot] = (),
    policy: RollupPolicy | None = None,
    filter: RollupFilter | None = None,
) -> RollupReport:
    """
    Build a RollupReport from a snapshot.

    Groups that only have a planting count appear with ``total == 0`` so the
    tagging backlog is visible before the first unit is tagged.
    """
    policy = policy or RollupPolicy()
    filter = filter or RollupFilter()

    statuses: dict[GroupKey, list[UnitStatus]] = {}
    plot_types: dict[GroupKey, str | None] = {}
    planned: dict[GroupKey, int] = {}

    for unit in units:
        key = unit.key
        if not filter.matches(key, unit.plot_type):
            continue
        statuses.setdefault(key, []).append(unit.status)
        plot_types.setdefault(key, unit.plot_type)

    for count in planting:
        key = count.key
        if not filter.matches(key, count.plot_type):
            continue
        planned[key] = planned.get(key, 0) + max(count.planned, 0)
        plot_types.setdefault(key, count.plot_type)

    rows = []
    alerts: list[ConsistencyWarning] = []
    for key in sorted(set(statuses) | set(planned), key=GroupKey.sort_key):
        counts = count_statuses(statuses.get(key, ()))
        key_planned = planned.get(key, 0)
        counts = BucketCounts(**{
            **counts.to_dict(),
            "planned": key_planned,
            "untagged": max(key_planned - counts.total, 0),
        })
        rows.append(RollupRow(key=key, plot_type=plot_types.get(key), counts=counts))
        alerts.extend(evaluate_alerts(key, counts, policy))

    by_species: dict[UUID, list[RollupRow]] = {}
    for row in rows:
        by_species.setdefault(row.key.species_id, []).append(row)
    species = []
    for species_id in sorted(by_species, key=str):
        species_rows = by_species[species_id]
        total = BucketCounts()
        for row in species_rows:
            total = total + row.counts
        species.append(SpeciesSummary(species_id, len(species_rows), total))

    summary = BucketCounts()
    for row in rows:
        summary = summary + row.counts

    return RollupReport(
        rows=tuple(rows),
        species=tuple(species),
        summary=summary,
        alerts=tuple(alerts),
        alert_summary=AlertSummary.of(alerts),
    )
