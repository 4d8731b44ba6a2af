# src/ch_optimizer/engine/classifier.py
"""ErrorClassifier: map database errors to an ErrorKind.

Errors reach us wrapped several layers deep:

    sqlalchemy.exc.DBAPIError
      .orig -> clickhouse_sqlalchemy DatabaseException
        .orig -> clickhouse_driver.errors.ServerException (code, message)

The classifier does not import any driver. It walks ``.orig``, ``__cause__``
and ``__context__`` looking for the first object carrying an integer ``code``
and a string ``message``, which is the shape every clickhouse_driver error
has. Supporting another driver means teaching extract_vendor_error its shape.
"""

from ch_optimizer.contracts.enums import ErrorKind
from ch_optimizer.contracts.errors import VendorError

# CANNOT_ASSIGN_OPTIMIZE
ALREADY_MERGING_CODE = 388
ALREADY_MERGING_MESSAGE = "has already been assigned a merge into"

_STACK_TRACE_MARKER = "Stack trace:"

# Guard against pathological exception cycles
_MAX_CHAIN_DEPTH = 16


def _iter_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    seen: set[int] = set()
    pending: list[BaseException] = [exc]
    while pending and len(chain) < _MAX_CHAIN_DEPTH:
        current = pending.pop(0)
        if id(current) in seen:
            continue
        seen.add(id(current))
        chain.append(current)
        for linked in (getattr(current, "orig", None), current.__cause__, current.__context__):
            if isinstance(linked, BaseException):
                pending.append(linked)
    return chain


def extract_vendor_error(exc: BaseException) -> VendorError | None:
    """Find the server-reported (code, message) inside an exception chain.

    Returns:
        VendorError, or None for errors that never reached the server
        (and carry no driver error code).
    """
    for current in _iter_chain(exc):
        code = getattr(current, "code", None)
        message = getattr(current, "message", None)
        # bool is an int subclass; nothing reports a boolean error code
        if isinstance(code, int) and not isinstance(code, bool) and isinstance(message, str):
            text, _, trace = message.partition(_STACK_TRACE_MARKER)
            return VendorError(code=code, message=text.strip().rstrip("."), stack_trace=trace.strip())
    return None


class ErrorClassifier:
    """Classifies errors raised while talking to ClickHouse.

    Only the exact (code 388, "already been assigned a merge") signature
    is ALREADY_MERGING; everything else is a failure.
    """

    def __init__(
        self,
        *,
        already_merging_code: int = ALREADY_MERGING_CODE,
        already_merging_message: str = ALREADY_MERGING_MESSAGE,
    ) -> None:
        self._code = already_merging_code
        self._message = already_merging_message

    def classify_vendor(self, vendor: VendorError | None) -> ErrorKind:
        if vendor is None:
            return ErrorKind.TRANSPORT
        if vendor.code == self._code and self._message in vendor.message:
            return ErrorKind.ALREADY_MERGING
        return ErrorKind.VENDOR

    def classify(self, exc: BaseException) -> tuple[ErrorKind, VendorError | None]:
        """Classify an exception.

        Returns:
            The ErrorKind and the extracted VendorError (None for TRANSPORT).
        """
        vendor = extract_vendor_error(exc)
        return self.classify_vendor(vendor), vendor
