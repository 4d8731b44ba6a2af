"""Merge detection and scheduling engine."""

from ch_optimizer.engine.classifier import ErrorClassifier, extract_vendor_error
from ch_optimizer.engine.eligibility import is_aggregate_eligible, is_eligible
from ch_optimizer.engine.executor import MergeExecutor
from ch_optimizer.engine.querier import MetadataQuerier, select_candidates
from ch_optimizer.engine.scheduler import Scheduler, shutdown_on_signals

__all__ = [
    "ErrorClassifier",
    "MergeExecutor",
    "MetadataQuerier",
    "Scheduler",
    "extract_vendor_error",
    "is_aggregate_eligible",
    "is_eligible",
    "select_candidates",
    "shutdown_on_signals",
]
