"""Exception hierarchy and the vendor error payload.

Propagation rules:
    StartupError      - raised before the scheduler starts; the CLI exits 1
    ConnectivityError - the liveness ping failed after all retries; ends the cycle
    QueryError        - the metadata query failed; ends the cycle
Merge errors never raise out of the executor - they become MergeOutcome values.
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class VendorError:
    """Error details reported by the ClickHouse server.

    Attributes:
        code: Server error code (e.g. 388 for CANNOT_ASSIGN_OPTIMIZE)
        message: Server error message
        stack_trace: Server-side stack trace, empty when the driver has none
    """

    code: int
    message: str
    stack_trace: str = ""

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class OptimizerError(Exception):
    """Base class for all ch-optimizer errors."""


class StartupError(OptimizerError):
    """Raised for configuration and logging setup problems.

    Fatal: the process exits before the first cycle.
    """


class ConnectivityError(OptimizerError):
    """Raised when the server cannot be reached at the start of a cycle."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"ClickHouse ping failed after {attempts} attempt(s): {last_error}")


class QueryError(OptimizerError):
    """Raised when the metadata query or row decoding fails.

    Aborts the current cycle only.
    """

    def __init__(self, message: str, vendor: VendorError | None = None) -> None:
        self.vendor = vendor
        super().__init__(message)
