# src/ch_optimizer/engine/querier.py
"""MetadataQuerier: find partitions that are due for a merge.

The server aggregates active parts per partition (joined with the table's
graphite retention ages); the eligibility policy and the ordering are
applied here so they do not depend on the server.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Connection, text
from sqlalchemy.exc import SQLAlchemyError

from ch_optimizer.contracts.errors import QueryError
from ch_optimizer.contracts.merge import MergeCandidate, PartitionAggregate
from ch_optimizer.core.logging import get_logger
from ch_optimizer.engine.classifier import extract_vendor_error
from ch_optimizer.engine.eligibility import is_aggregate_eligible

logger = get_logger(__name__)

# Table name is backquoted so `database`.`.inner.table` of materialized
# views can be passed to OPTIMIZE as is.
# Only parts whose own rollup deadline has passed take part in the
# aggregation: toDateTime(max_date + 1) + age < now().
SELECT_PARTITIONS = """
SELECT
    concat('`', p.database, '`.`', p.table, '`') AS table,
    p.partition_id AS partition_id,
    p.partition AS partition_name,
    max(g.age) AS age,
    countDistinct(p.name) AS parts,
    toDateTime(max(p.max_date + 1)) AS max_time,
    min(p.modification_time) AS modified_at
FROM system.parts AS p
INNER JOIN
(
    SELECT
        Tables.database AS database,
        Tables.table AS table,
        age
    FROM system.graphite_retentions
    ARRAY JOIN Tables
    GROUP BY
        database,
        table,
        age
) AS g ON (p.table = g.table) AND (p.database = g.database)
WHERE p.active AND ((toDateTime(p.max_date + 1) + g.age) < now())
GROUP BY
    table,
    partition_name,
    partition_id
"""

SELECT_NOW = "SELECT now()"


def row_to_aggregate(row: Mapping[str, Any]) -> PartitionAggregate:
    """Decode one result row.

    Raises:
        KeyError, TypeError, ValueError: On a malformed row
    """
    max_time = row["max_time"]
    modified_at = row["modified_at"]
    if not isinstance(max_time, datetime) or not isinstance(modified_at, datetime):
        raise TypeError(f"expected datetimes for max_time/modified_at, got {max_time!r}/{modified_at!r}")
    return PartitionAggregate(
        table=str(row["table"]),
        partition_id=str(row["partition_id"]),
        partition_name=str(row["partition_name"]),
        age=timedelta(seconds=int(row["age"])),
        part_count=int(row["parts"]),
        max_time=max_time,
        modified_at=modified_at,
    )


def select_candidates(
    rows: Iterable[PartitionAggregate],
    *,
    interval: timedelta,
    now: datetime,
) -> list[MergeCandidate]:
    """Filter aggregates by the eligibility policy and sort them.

    The sort by (table, partition_name, age) is stable, so rows with equal
    keys keep their input order.
    """
    candidates = [MergeCandidate.from_aggregate(row) for row in rows if is_aggregate_eligible(row, interval=interval, now=now)]
    candidates.sort(key=lambda c: c.sort_key)
    return candidates


class MetadataQuerier:
    """Reads partition metadata and returns merge candidates."""

    def __init__(self, interval: timedelta) -> None:
        """
        Args:
            interval: Minimum spacing between two merges of one partition
        """
        self._interval = interval

    @property
    def interval(self) -> timedelta:
        return self._interval

    def fetch_aggregates(self, conn: Connection) -> tuple[datetime, list[PartitionAggregate]]:
        """Run the metadata query.

        Returns:
            The server's current time and the aggregated rows.

        Raises:
            QueryError: On query or decoding failure
        """
        try:
            now = conn.execute(text(SELECT_NOW)).scalar_one()
            result = conn.execute(text(SELECT_PARTITIONS))
            rows = [row_to_aggregate(row._mapping) for row in result]
        except SQLAlchemyError as e:
            vendor = extract_vendor_error(e)
            raise QueryError(f"Partition metadata query failed: {vendor or e}", vendor=vendor) from e
        except (KeyError, TypeError, ValueError) as e:
            raise QueryError(f"Failed to decode partition metadata row: {e}") from e
        if not isinstance(now, datetime):
            raise QueryError(f"Server returned {now!r} for now()")
        return now, rows

    def candidates(self, conn: Connection) -> list[MergeCandidate]:
        """Return the merge candidates for this cycle, in execution order.

        Raises:
            QueryError: On query or decoding failure
        """
        now, rows = self.fetch_aggregates(conn)
        candidates = select_candidates(rows, interval=self._interval, now=now)
        for candidate in candidates:
            logger.debug("Merge to be applied", **candidate.log_fields())
        return candidates
