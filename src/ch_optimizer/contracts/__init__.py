"""Shared contracts for data types crossing the engine/CLI boundary.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes are NOT re-exported here - import them from
ch_optimizer.core.config.
"""

from ch_optimizer.contracts.enums import CycleStatus, ErrorKind, MergeStatus
from ch_optimizer.contracts.errors import (
    ConnectivityError,
    OptimizerError,
    QueryError,
    StartupError,
    VendorError,
)
from ch_optimizer.contracts.merge import (
    CycleResult,
    MergeCandidate,
    MergeOutcome,
    PartitionAggregate,
)

__all__ = [
    "ConnectivityError",
    "CycleResult",
    "CycleStatus",
    "ErrorKind",
    "MergeCandidate",
    "MergeOutcome",
    "MergeStatus",
    "OptimizerError",
    "PartitionAggregate",
    "QueryError",
    "StartupError",
    "VendorError",
]
