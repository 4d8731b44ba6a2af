# src/ch_optimizer/engine/retry.py
"""RetryManager: Retry logic with tenacity integration.

Used by the scheduler to retry the liveness ping at the start of a cycle:
- Exponential backoff with jitter
- Configurable max attempts
- Retryable error filtering
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from ch_optimizer.core.config import ClickHouseSettings

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

T = TypeVar("T")

# Upper bound on a single backoff pause between ping attempts
MAX_BACKOFF_SECONDS = 30.0


class MaxRetriesExceeded(Exception):
    """Raised when max retry attempts are exceeded."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Max retries ({attempts}) exceeded: {last_error}")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = MAX_BACKOFF_SECONDS  # seconds
    jitter: float = 0.5  # seconds
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        """Factory for no-retry configuration (single attempt)."""
        return cls(max_attempts=1)

    @classmethod
    def from_settings(cls, settings: "ClickHouseSettings") -> "RetryConfig":
        """Factory from the validated ClickHouse settings model."""
        base_delay = settings.connect_retry_delay.total_seconds()
        return cls(
            max_attempts=settings.connect_attempts,
            base_delay=base_delay,
            max_delay=max(base_delay, MAX_BACKOFF_SECONDS),
        )


class RetryManager:
    """Runs an operation with tenacity-driven exponential backoff.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=3))

        conn = manager.execute_with_retry(
            operation=connector.open,
            is_retryable=lambda e: isinstance(e, SQLAlchemyError),
            on_retry=lambda attempt, error: logger.warning("retrying", attempt=attempt),
        )
    """

    def __init__(self, config: RetryConfig, *, sleep: Callable[[float], None] | None = None) -> None:
        """Initialize with config.

        Args:
            config: Retry configuration
            sleep: Replacement for time.sleep between attempts (tests)
        """
        self._config = config
        self._sleep = sleep

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool],
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Execute operation with retry logic.

        Args:
            operation: Operation to execute
            is_retryable: Function to check if error is retryable
            on_retry: Optional callback before each retry (0-based attempt, error)

        Returns:
            Result of operation

        Raises:
            MaxRetriesExceeded: If max attempts exceeded
            Exception: If non-retryable error occurs
        """
        attempt = 0
        last_error: BaseException | None = None

        retrying_kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            retrying_kwargs["sleep"] = self._sleep

        try:
            for attempt_state in Retrying(
                stop=stop_after_attempt(self._config.max_attempts),
                wait=wait_exponential_jitter(
                    initial=self._config.base_delay,
                    max=self._config.max_delay,
                    exp_base=self._config.exponential_base,
                    jitter=self._config.jitter,
                ),
                retry=retry_if_exception(is_retryable),
                reraise=False,  # We catch RetryError and convert to MaxRetriesExceeded
                **retrying_kwargs,
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    try:
                        return operation()
                    except Exception as e:
                        last_error = e
                        # Only announce retries that will actually happen
                        if is_retryable(e) and on_retry and attempt < self._config.max_attempts:
                            on_retry(attempt - 1, e)
                        raise

        except RetryError as e:
            final_error = last_error or e.last_attempt.exception()
            assert final_error is not None, "RetryError without exception is impossible"
            raise MaxRetriesExceeded(attempt, final_error) from e

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover
