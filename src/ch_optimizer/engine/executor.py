# src/ch_optimizer/engine/executor.py
"""MergeExecutor: apply one OPTIMIZE command and classify the outcome.

Database errors never escape apply(): they become MergeOutcome values so a
failing partition does not stop the rest of the cycle.
"""

from sqlalchemy import Connection, text
from sqlalchemy.exc import SQLAlchemyError

from ch_optimizer.contracts.enums import ErrorKind
from ch_optimizer.contracts.merge import MergeCandidate, MergeOutcome
from ch_optimizer.core.logging import get_logger
from ch_optimizer.engine.classifier import ErrorClassifier

logger = get_logger(__name__)


def quote_string(value: str) -> str:
    """Quote a value as a ClickHouse string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def optimize_statement(candidate: MergeCandidate) -> str:
    """Build the OPTIMIZE command for a candidate.

    ``candidate.table`` is already a backquoted identifier from the metadata
    query.
    """
    return f"OPTIMIZE TABLE {candidate.table} PARTITION ID {quote_string(candidate.partition_id)} FINAL"


class MergeExecutor:
    """Applies merges one at a time on the connection it is given."""

    def __init__(self, classifier: ErrorClassifier | None = None) -> None:
        self._classifier = classifier if classifier is not None else ErrorClassifier()

    def apply(self, candidate: MergeCandidate, conn: Connection) -> MergeOutcome:
        """Merge one partition.

        Returns:
            APPLIED on success, ALREADY_MERGING for the benign concurrent
            merge race, FAILED for anything else.
        """
        log = logger.bind(table=candidate.table, partition_name=candidate.partition_name)
        log.info("Going to merge partition", partition_id=candidate.partition_id)

        # Colons are escaped so text() does not read them as bind parameters
        statement = text(optimize_statement(candidate).replace(":", r"\:"))
        try:
            conn.execute(statement)
        except SQLAlchemyError as e:
            kind, vendor = self._classifier.classify(e)
            if kind == ErrorKind.ALREADY_MERGING:
                log.info("The partition is already merging")
                return MergeOutcome.already_merging(candidate)

            detail = f"Fail to merge partition {candidate.partition_name}: {vendor or e}"
            if vendor is not None:
                log.error(
                    "Merge failed",
                    code=vendor.code,
                    message=vendor.message,
                    stack_trace=vendor.stack_trace or None,
                )
            else:
                log.error("Merge failed", error=str(e), error_type=type(e).__name__)
            return MergeOutcome.failed(candidate, detail, vendor)

        log.info("Partition merged")
        return MergeOutcome.applied(candidate)
