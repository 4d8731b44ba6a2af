# src/ch_optimizer/engine/eligibility.py
"""Decides whether an aggregated partition is due for a merge.

A partition is eligible when ALL of:

1. ``modified_at < max_time + age`` OR ``part_count > 1``
   The merge for the current retention age has not been applied, or new
   parts have landed since the last merge.
2. ``modified_at < now - interval``
   The partition was not merged within the last interval.
3. ``interval < age``
   Partitions whose retention age is below the interval are still hot and
   get merged by the server on its own.

All comparisons are strict. The function is pure; ``now`` must come from the
same clock as ``modified_at`` (the server's).
"""

from datetime import datetime, timedelta

from ch_optimizer.contracts.merge import PartitionAggregate


def is_eligible(
    *,
    age: timedelta,
    part_count: int,
    max_time: datetime,
    modified_at: datetime,
    interval: timedelta,
    now: datetime,
) -> bool:
    """Return True if a partition with these aggregated values needs a merge."""
    rollup_time = max_time + age
    return (modified_at < rollup_time or part_count > 1) and modified_at < now - interval and interval < age


def is_aggregate_eligible(row: PartitionAggregate, *, interval: timedelta, now: datetime) -> bool:
    """is_eligible() applied to one metadata query row."""
    return is_eligible(
        age=row.age,
        part_count=row.part_count,
        max_time=row.max_time,
        modified_at=row.modified_at,
        interval=interval,
        now=now,
    )
