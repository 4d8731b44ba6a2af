# src/ch_optimizer/engine/scheduler.py
"""Scheduler: drives merge cycles, once or in a loop.

Cycle:
    connect + ping (retried) -> query candidates -> apply each (or dry run)
    -> close connection

Cycles never overlap. In loop mode the sleep follows the full cycle and the
next query starts only after the sleep. stop() wakes the sleep; a cycle
in progress is finished first, including any merge command in flight.

Failure policy:
    ConnectivityError - the cycle fails; loop mode retries after the sleep
    QueryError        - the cycle fails; loop mode retries after the sleep
    failed merge      - logged, the remaining candidates are still applied
    anything else     - loop mode logs it with the traceback and sleeps as usual
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Connection
from sqlalchemy.exc import SQLAlchemyError

from ch_optimizer.contracts.enums import CycleStatus
from ch_optimizer.contracts.errors import ConnectivityError, QueryError
from ch_optimizer.contracts.merge import CycleResult, MergeCandidate, MergeOutcome
from ch_optimizer.core.config import OptimizerSettings, format_duration
from ch_optimizer.core.database import ClickHouseConnector
from ch_optimizer.core.logging import get_logger
from ch_optimizer.engine.clock import DEFAULT_CLOCK, Clock
from ch_optimizer.engine.executor import MergeExecutor
from ch_optimizer.engine.querier import MetadataQuerier
from ch_optimizer.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager

logger = get_logger(__name__)


class Scheduler:
    """Owns the optimization loop and its start/stop lifecycle.

    Example:
        scheduler = Scheduler(settings, ClickHouseConnector.from_dsn(dsn))
        result = scheduler.run()  # CycleResult in one-shot mode, None in loop mode
    """

    def __init__(
        self,
        settings: OptimizerSettings,
        connector: ClickHouseConnector,
        *,
        querier: MetadataQuerier | None = None,
        executor: MergeExecutor | None = None,
        retry_manager: RetryManager | None = None,
        clock: Clock = DEFAULT_CLOCK,
        stop_event: threading.Event | None = None,
        wait: Callable[[float], bool] | None = None,
    ) -> None:
        """
        Args:
            settings: Resolved, immutable configuration
            connector: Source of per-cycle connections
            querier: Defaults to a MetadataQuerier for the configured interval
            executor: Defaults to a MergeExecutor with the default classifier
            retry_manager: Defaults to retries per clickhouse.connect_* settings
            clock: Monotonic clock for cycle durations
            stop_event: Event that ends the loop when set
            wait: Interruptible sleep; returns True if woken by stop.
                Defaults to stop_event.wait.
        """
        self._settings = settings
        self._connector = connector
        self._querier = querier if querier is not None else MetadataQuerier(settings.clickhouse.optimize_interval)
        self._executor = executor if executor is not None else MergeExecutor()
        self._stop_event = stop_event if stop_event is not None else threading.Event()
        self._wait = wait if wait is not None else self._stop_event.wait
        self._retry = (
            retry_manager
            if retry_manager is not None
            else RetryManager(RetryConfig.from_settings(settings.clickhouse), sleep=self._stop_event.wait)
        )
        self._clock = clock

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def stop(self) -> None:
        """Ask the loop to end after the current cycle."""
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def _open_connection(self) -> Connection:
        """Open a connection and verify it is alive.

        Raises:
            ConnectivityError: If every ping attempt failed
        """

        def attempt() -> Connection:
            conn = self._connector.open()
            try:
                self._connector.ping(conn)
            except BaseException:
                conn.close()
                raise
            return conn

        def on_retry(attempt_number: int, error: BaseException) -> None:
            logger.warning("Ping ClickHouse server failed, retrying", attempt=attempt_number + 1, error=str(error))

        try:
            return self._retry.execute_with_retry(
                attempt,
                is_retryable=lambda e: isinstance(e, SQLAlchemyError),
                on_retry=on_retry,
            )
        except MaxRetriesExceeded as e:
            raise ConnectivityError(e.attempts, e.last_error) from e

    def _apply_all(self, conn: Connection, candidates: list[MergeCandidate]) -> list[MergeOutcome]:
        # One at a time, in candidate order
        return [self._executor.apply(candidate, conn) for candidate in candidates]

    def run_cycle(self) -> CycleResult:
        """Run one full cycle. Never raises for database errors."""
        started = self._clock.monotonic()

        try:
            conn = self._open_connection()
        except ConnectivityError as e:
            logger.error("Ping ClickHouse server failed", attempts=e.attempts, error=str(e.last_error))
            return self._finish(CycleResult(status=CycleStatus.FAILED, error=str(e)), started)

        try:
            try:
                candidates = self._querier.candidates(conn)
            except QueryError as e:
                if e.vendor is not None:
                    logger.error(
                        "Optimization failed",
                        code=e.vendor.code,
                        message=e.vendor.message,
                        stack_trace=e.vendor.stack_trace or None,
                    )
                else:
                    logger.error("Optimization failed", error=str(e))
                return self._finish(CycleResult(status=CycleStatus.FAILED, error=str(e)), started)

            count = len(candidates)
            if self._settings.daemon.dry_run:
                logger.info("DRY RUN. Merges would be applied", count=count)
                return self._finish(CycleResult(status=CycleStatus.DRY_RUN, candidate_count=count), started)

            logger.info("Merges will be applied", count=count)
            outcomes = self._apply_all(conn, candidates)
        finally:
            conn.close()

        status = CycleStatus.SUCCEEDED if all(o.is_success for o in outcomes) else CycleStatus.FAILED
        return self._finish(CycleResult(status=status, candidate_count=count, outcomes=outcomes), started)

    def _finish(self, result: CycleResult, started: float) -> CycleResult:
        result.duration_seconds = self._clock.monotonic() - started
        log = logger.error if result.status == CycleStatus.FAILED else logger.info
        log(
            "Optimization cycle finished",
            status=str(result.status),
            candidates=result.candidate_count,
            applied=result.applied_count,
            already_merging=result.already_merging_count,
            failed=result.failed_count,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    def run_once(self) -> CycleResult:
        """Run exactly one cycle, without sleeping."""
        return self.run_cycle()

    def run_forever(self) -> None:
        """Run cycles with a fixed sleep in between until stop() is called."""
        interval = self._settings.daemon.loop_interval
        logger.debug("Starting loop function", loop_interval=format_duration(interval))
        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            except Exception:
                logger.exception("Optimization cycle crashed")
            if self._stop_event.is_set():
                break
            logger.info("Optimizations round is over, going to sleep", sleep=format_duration(interval))
            if self._wait(interval.total_seconds()):
                break
        logger.info("Optimization loop stopped")

    def run(self) -> CycleResult | None:
        """Run per the daemon settings.

        Returns:
            The cycle result in one-shot mode (dry run included), None in
            loop mode.
        """
        daemon = self._settings.daemon
        if daemon.one_shot or daemon.dry_run:
            return self.run_once()
        self.run_forever()
        return None


@contextmanager
def shutdown_on_signals(scheduler: Scheduler) -> Iterator[threading.Event]:
    """Install SIGINT/SIGTERM handlers that stop the scheduler.

    On first signal: stops the scheduler, restores default SIGINT handler
    (so second Ctrl-C force-kills via KeyboardInterrupt).

    When called from a non-main thread signal registration is skipped -
    Python raises ValueError if signal.signal() is called outside the main
    thread. scheduler.stop() still works.
    """
    if threading.current_thread() is not threading.main_thread():
        yield scheduler.stop_event
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, frame: Any) -> None:
        logger.info("Shutdown requested", signal=signal.Signals(signum).name)
        scheduler.stop()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield scheduler.stop_event
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
