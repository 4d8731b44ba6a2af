"""Status codes and kinds shared between the engine, the CLI and the logs."""

from enum import StrEnum


class MergeStatus(StrEnum):
    """Outcome of applying one OPTIMIZE command.

    Values:
        APPLIED: The server accepted the merge
        ALREADY_MERGING: Another merge already covers the partition (benign race)
        FAILED: Any other server or transport error
    """

    APPLIED = "applied"
    ALREADY_MERGING = "already_merging"
    FAILED = "failed"


class CycleStatus(StrEnum):
    """Overall status of one scheduler cycle."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DRY_RUN = "dry_run"


class ErrorKind(StrEnum):
    """Abstract classification of a database error.

    ALREADY_MERGING is the only kind treated as success.
    """

    ALREADY_MERGING = "already_merging"
    VENDOR = "vendor"
    TRANSPORT = "transport"
