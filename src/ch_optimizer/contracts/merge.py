"""Merge candidate, outcome and cycle result types.

All of these live for a single scheduler cycle only. Nothing here is
persisted or cached across cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from ch_optimizer.contracts.enums import CycleStatus, MergeStatus
from ch_optimizer.contracts.errors import VendorError


@dataclass(frozen=True, slots=True)
class PartitionAggregate:
    """One aggregated row of the partition metadata query.

    Not yet filtered by the eligibility policy.
    """

    table: str
    partition_id: str
    partition_name: str
    age: timedelta
    part_count: int
    max_time: datetime
    modified_at: datetime

    @property
    def rollup_time(self) -> datetime:
        """Deadline by which the partition should have been merged."""
        return self.max_time + self.age


@dataclass(frozen=True, slots=True)
class MergeCandidate:
    """A partition that is due for an OPTIMIZE.

    Only built by the querier from aggregates that passed the
    eligibility policy. Ordering key is (table, partition_name, age).
    """

    table: str
    partition_id: str
    partition_name: str
    age: timedelta
    part_count: int
    max_time: datetime
    rollup_time: datetime
    modified_at: datetime

    @classmethod
    def from_aggregate(cls, row: PartitionAggregate) -> MergeCandidate:
        return cls(
            table=row.table,
            partition_id=row.partition_id,
            partition_name=row.partition_name,
            age=row.age,
            part_count=row.part_count,
            max_time=row.max_time,
            rollup_time=row.rollup_time,
            modified_at=row.modified_at,
        )

    @property
    def sort_key(self) -> tuple[str, str, timedelta]:
        return (self.table, self.partition_name, self.age)

    def log_fields(self) -> dict[str, Any]:
        """Fields for the per-candidate debug record."""
        return {
            "table": self.table,
            "partition_id": self.partition_id,
            "partition_name": self.partition_name,
            "age": int(self.age.total_seconds()),
            "parts": self.part_count,
            "max_time": self.max_time.isoformat(),
            "rollup_time": self.rollup_time.isoformat(),
            "modified_at": self.modified_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class MergeOutcome:
    """Result of applying one candidate.

    Use the factory classmethods; ``detail`` and ``vendor`` are only set
    for FAILED outcomes.
    """

    candidate: MergeCandidate
    status: MergeStatus
    detail: str | None = None
    vendor: VendorError | None = None

    @classmethod
    def applied(cls, candidate: MergeCandidate) -> MergeOutcome:
        return cls(candidate=candidate, status=MergeStatus.APPLIED)

    @classmethod
    def already_merging(cls, candidate: MergeCandidate) -> MergeOutcome:
        return cls(candidate=candidate, status=MergeStatus.ALREADY_MERGING)

    @classmethod
    def failed(cls, candidate: MergeCandidate, detail: str, vendor: VendorError | None = None) -> MergeOutcome:
        return cls(candidate=candidate, status=MergeStatus.FAILED, detail=detail, vendor=vendor)

    @property
    def is_success(self) -> bool:
        """APPLIED and ALREADY_MERGING both count as success."""
        return self.status != MergeStatus.FAILED


@dataclass
class CycleResult:
    """Summary of one scheduler cycle.

    Attributes:
        status: Overall cycle status
        candidate_count: Number of eligible partitions found
        outcomes: Per-candidate outcomes in execution order (empty for dry runs)
        error: Detail of the error that aborted the cycle, if any
        duration_seconds: Wall time of the cycle
    """

    status: CycleStatus
    candidate_count: int = 0
    outcomes: list[MergeOutcome] = field(default_factory=list)
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def applied_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == MergeStatus.APPLIED)

    @property
    def already_merging_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == MergeStatus.ALREADY_MERGING)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == MergeStatus.FAILED)

    @property
    def succeeded(self) -> bool:
        return self.status != CycleStatus.FAILED
